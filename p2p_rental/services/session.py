"""
Rental session state machine.

Drives one booking from key handover to return:

    PENDING_PAYMENT_COLLECTION -> IDENTITY_VERIFICATION -> CONTRACT_SIGNING
    -> HANDOVER_INSPECTION -> ACTIVE -> RETURN_INSPECTION -> DAMAGE_VERDICT
    -> REVIEW_AND_CLOSE -> COMPLETED

A confirmed booking enters at payment collection; an active one (handover
done in an earlier session) enters at the return inspection. The booking
status is written twice on a full traversal: 'active' when the handover
inspection completes and 'completed' when the session closes. Payment,
identity and contract steps are session-only state.

Abandoning a session writes nothing; the booking keeps its last persisted
status. A failed store call leaves the session on the step it was on.
Steps that write to the store hold a per-session lock, so a repeated request
waits and is then refused at the step check instead of writing twice.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from threading import Lock
from typing import List, Optional, Sequence, Tuple

from p2p_rental.constants import BookingStatus, DEPOSIT_FOR_RESULT
from p2p_rental.errors import InvalidTransitionError, SessionClosedError, StepBlockedError
from p2p_rental.services.contracts import ContractDocument, ContractSignature, generate_contract
from p2p_rental.services.inspection import (
    Angle, InspectionCapture, InspectionResult, STANDARD_ANGLES, HANDOVER, RETURN,
)

logger = logging.getLogger(__name__)

CLEAN_VERDICT = 'clean'
DAMAGE_VERDICT = 'damage'
VERDICTS = (CLEAN_VERDICT, DAMAGE_VERDICT)


class SessionStep(Enum):
    PENDING_PAYMENT_COLLECTION = "PENDING_PAYMENT_COLLECTION"
    IDENTITY_VERIFICATION = "IDENTITY_VERIFICATION"
    CONTRACT_SIGNING = "CONTRACT_SIGNING"
    HANDOVER_INSPECTION = "HANDOVER_INSPECTION"
    ACTIVE = "ACTIVE"
    RETURN_INSPECTION = "RETURN_INSPECTION"
    DAMAGE_VERDICT = "DAMAGE_VERDICT"
    REVIEW_AND_CLOSE = "REVIEW_AND_CLOSE"
    COMPLETED = "COMPLETED"


ENTRY_STEPS = {
    BookingStatus.CONFIRMED: SessionStep.PENDING_PAYMENT_COLLECTION,
    BookingStatus.ACTIVE: SessionStep.RETURN_INSPECTION,
}


@dataclass(frozen=True)
class Transition:
    source: SessionStep
    target: SessionStep
    at: datetime


@dataclass(frozen=True)
class ReviewHandoff:
    """What the review flow needs once the session has closed"""
    booking_id: str
    author_id: str
    target_id: str
    role: str = 'HOST'


def entry_step(status: str) -> SessionStep:
    try:
        return ENTRY_STEPS[status]
    except KeyError:
        raise InvalidTransitionError(f'No rental session can start for a {status} booking')


class RentalSession:

    def __init__(self, booking, listing, renter, store, angles: Sequence[Angle] = STANDARD_ANGLES,
                 clock=datetime.utcnow):
        self._booking = booking
        self._listing = listing
        self._renter = renter
        self._store = store
        self._angles = tuple(angles)
        self._clock = clock

        self._step = entry_step(booking.status)
        self._status = booking.status
        self._history: List[Transition] = []
        self._abandoned = False

        self._fees_paid_online = False
        self._balance_received = False
        self._identity_verified_by: Optional[str] = None
        self._contract: Optional[ContractDocument] = None
        self._signature: Optional[ContractSignature] = None

        self._handover: Optional[InspectionCapture] = None
        self._handover_result: Optional[InspectionResult] = None
        self._return: Optional[InspectionCapture] = None
        self._return_references: Sequence = ()
        self._return_result: Optional[InspectionResult] = None

        self._verdict: Optional[str] = None
        self._notes = ''
        self._dispute_id: Optional[str] = None
        self._deposit_status: Optional[str] = None

        # Serialises the steps that write to the store
        self._lock = Lock()

        if self._step is SessionStep.RETURN_INSPECTION:
            # Handover happened in an earlier session; compare against what it saved
            self._return_references = self._store.load_inspection_photos(self.booking_id, HANDOVER)
            if not self._return_references:
                logger.warning(f"Booking {self.booking_id} has no handover photos; return check is unaided")
            self._return = InspectionCapture(RETURN, self._angles, self._return_references, clock=self._clock)

        logger.info(f"Rental session opened for booking {self.booking_id} at {self._step.value}")

    # ---- state ----

    @property
    def booking_id(self) -> str:
        return self._booking.booking_id

    @property
    def step(self) -> SessionStep:
        return self._step

    @property
    def status(self) -> str:
        """Last booking status this session persisted (or started from)"""
        return self._status

    @property
    def history(self) -> Tuple[Transition, ...]:
        return tuple(self._history)

    @property
    def is_finished(self) -> bool:
        return self._step is SessionStep.COMPLETED

    @property
    def is_abandoned(self) -> bool:
        return self._abandoned

    @property
    def contract(self) -> Optional[ContractDocument]:
        return self._contract

    @property
    def signature(self) -> Optional[ContractSignature]:
        return self._signature

    @property
    def verdict(self) -> Optional[str]:
        return self._verdict

    @property
    def notes(self) -> str:
        return self._notes

    @property
    def dispute_id(self) -> Optional[str]:
        return self._dispute_id

    @property
    def deposit_status(self) -> Optional[str]:
        """'released' or 'held' once the verdict is final"""
        return self._deposit_status

    @property
    def inspection(self) -> Optional[InspectionCapture]:
        """Capture in progress for the current step, if any"""
        if self._step is SessionStep.HANDOVER_INSPECTION:
            return self._handover
        if self._step is SessionStep.RETURN_INSPECTION:
            return self._return
        return None

    @property
    def handover_result(self) -> Optional[InspectionResult]:
        return self._handover_result

    @property
    def return_result(self) -> Optional[InspectionResult]:
        return self._return_result

    def _require(self, *steps: SessionStep):
        if self._abandoned:
            raise SessionClosedError('Session was abandoned')
        if self.is_finished:
            raise SessionClosedError('Session is already completed')
        if self._step not in steps:
            expected = ', '.join(step.value for step in steps)
            raise InvalidTransitionError(f'Action not allowed at {self._step.value} (expected {expected})')

    def _move(self, target: SessionStep):
        transition = Transition(self._step, target, self._clock())
        self._history.append(transition)
        self._step = target
        logger.info(f"Booking {self.booking_id}: {transition.source.value} -> {target.value}")

    def blocked_reason(self) -> Optional[str]:
        """Why the current step cannot advance yet, for display next to its action"""
        if self._abandoned:
            return 'Session was abandoned'
        step = self._step
        if step is SessionStep.PENDING_PAYMENT_COLLECTION:
            return 'Confirm online fees and the on-site balance'
        if step is SessionStep.IDENTITY_VERIFICATION:
            return 'Confirm the renter matches the ID on file'
        if step is SessionStep.CONTRACT_SIGNING:
            return 'Review the contract' if self._contract is None else 'Contract awaits signature'
        if step in (SessionStep.HANDOVER_INSPECTION, SessionStep.RETURN_INSPECTION):
            capture = self.inspection
            return None if capture.is_complete else capture.blocked_reason()
        if step is SessionStep.DAMAGE_VERDICT and self._verdict == DAMAGE_VERDICT and not self._notes.strip():
            return 'Describe the damage before finalizing'
        return None

    # ---- handover ----

    def confirm_payment(self, fees_paid_online: bool, balance_received: bool) -> SessionStep:
        """Online fees settled and the host has the on-site rental balance"""
        self._require(SessionStep.PENDING_PAYMENT_COLLECTION)
        self._fees_paid_online = bool(fees_paid_online)
        self._balance_received = bool(balance_received)
        if not self._fees_paid_online:
            raise StepBlockedError('Online fees have not been confirmed')
        if not self._balance_received:
            raise StepBlockedError('Host has not confirmed receipt of the on-site balance')
        self._move(SessionStep.IDENTITY_VERIFICATION)
        return self._step

    def verify_identity(self, identity_matches: bool, verified_by) -> SessionStep:
        self._require(SessionStep.IDENTITY_VERIFICATION)
        if not identity_matches:
            raise StepBlockedError('Renter identity does not match the ID on file')
        self._identity_verified_by = str(verified_by)
        self._move(SessionStep.CONTRACT_SIGNING)
        return self._step

    def render_contract(self) -> ContractDocument:
        self._require(SessionStep.CONTRACT_SIGNING)
        if self._contract is None:
            self._contract = generate_contract(
                self._listing, self._renter, self._booking.start_date, self._booking.end_date,
                self._booking.total_price, generated_on=self._clock(),
            )
        return self._contract

    def sign_contract(self, signed_by: str) -> SessionStep:
        self._require(SessionStep.CONTRACT_SIGNING)
        if self._contract is None:
            raise StepBlockedError('Review the contract before signing')
        if not signed_by or not str(signed_by).strip():
            raise StepBlockedError('A signature is required')
        self._signature = ContractSignature(
            signed_by=str(signed_by).strip(),
            signed_at=self._clock(),
            contract_type=self._contract.contract_type,
            reference=self._contract.reference,
        )
        self._handover = InspectionCapture(HANDOVER, self._angles, clock=self._clock)
        self._move(SessionStep.HANDOVER_INSPECTION)
        return self._step

    def complete_handover(self) -> SessionStep:
        """Persist the handover photos, then mark the booking active"""
        with self._lock:
            self._require(SessionStep.HANDOVER_INSPECTION)
            result = self._handover.result()

            self._store.record_contract_signature(self.booking_id, self._signature)
            self._store.record_inspection(self.booking_id, result)
            self._store.update_booking_status(self.booking_id, BookingStatus.ACTIVE)

            self._status = BookingStatus.ACTIVE
            self._handover_result = result
            self._move(SessionStep.ACTIVE)
            return self._step

    # ---- return ----

    def start_return(self) -> SessionStep:
        self._require(SessionStep.ACTIVE)
        self._return_references = self._handover_result.photos
        self._return = InspectionCapture(RETURN, self._angles, self._return_references, clock=self._clock)
        self._move(SessionStep.RETURN_INSPECTION)
        return self._step

    def restart_inspection(self) -> InspectionCapture:
        """Throw away the capture in progress and begin the same pass again"""
        self._require(SessionStep.HANDOVER_INSPECTION, SessionStep.RETURN_INSPECTION)
        current = self.inspection
        current.cancel()
        if self._step is SessionStep.HANDOVER_INSPECTION:
            self._handover = InspectionCapture(HANDOVER, self._angles, clock=self._clock)
            return self._handover
        self._return = InspectionCapture(RETURN, self._angles, self._return_references, clock=self._clock)
        return self._return

    def complete_return_inspection(self) -> SessionStep:
        with self._lock:
            self._require(SessionStep.RETURN_INSPECTION)
            result = self._return.result()
            self._store.record_inspection(self.booking_id, result)

            self._return_result = result
            self._verdict = DAMAGE_VERDICT if result.damage_reported else CLEAN_VERDICT
            self._move(SessionStep.DAMAGE_VERDICT)
            return self._step

    def set_verdict(self, verdict: str, notes: str = '') -> None:
        self._require(SessionStep.DAMAGE_VERDICT)
        if verdict not in VERDICTS:
            raise ValueError(f'Unknown verdict: {verdict}')
        self._verdict = verdict
        self._notes = notes or ''

    def finalize_verdict(self) -> SessionStep:
        """Clean releases the deposit; damage needs an incident description, holds it and opens a dispute"""
        with self._lock:
            self._require(SessionStep.DAMAGE_VERDICT)
            if self._verdict == DAMAGE_VERDICT:
                if not self._notes.strip():
                    raise StepBlockedError('Describe the damage before finalizing')
                result = 'damaged'
                self._store.record_verdict(self.booking_id, result, self._notes.strip())
                if self._dispute_id is None:
                    self._dispute_id = self._store.open_dispute(
                        self.booking_id, self._listing.owner_id, 'damage', self._notes.strip(),
                    )
            else:
                result = 'clean'
                self._store.record_verdict(self.booking_id, result)
            self._deposit_status = DEPOSIT_FOR_RESULT[result]
            logger.info(f"Booking {self.booking_id} deposit {self._deposit_status}")
            self._move(SessionStep.REVIEW_AND_CLOSE)
            return self._step

    def close(self) -> ReviewHandoff:
        with self._lock:
            self._require(SessionStep.REVIEW_AND_CLOSE)
            self._store.update_booking_status(self.booking_id, BookingStatus.COMPLETED)
            self._status = BookingStatus.COMPLETED
            self._move(SessionStep.COMPLETED)
        return ReviewHandoff(
            booking_id=self.booking_id,
            author_id=str(self._listing.owner_id),
            target_id=str(self._booking.renter_id),
        )

    def abandon(self) -> None:
        """Leave the flow; nothing is written and the booking keeps its status"""
        if self.is_finished:
            raise SessionClosedError('Session is already completed')
        if self._abandoned:
            return
        capture = self.inspection
        if capture is not None and not capture.is_cancelled:
            capture.cancel()
        self._abandoned = True
        logger.info(f"Rental session for booking {self.booking_id} abandoned at {self._step.value}")

    def to_dict(self) -> dict:
        capture = self.inspection
        return {
            'booking_id': self.booking_id,
            'step': self._step.value,
            'status': self._status,
            'abandoned': self._abandoned,
            'finished': self.is_finished,
            'blocked_reason': None if self.is_finished else self.blocked_reason(),
            'contract': {
                'type': self._contract.contract_type.name,
                'title': self._contract.title,
                'reference': self._contract.reference,
                'external_url': self._contract.external_url,
            } if self._contract else None,
            'signed_by': self._signature.signed_by if self._signature else None,
            'inspection': capture.to_dict() if capture else None,
            'verdict': self._verdict,
            'notes': self._notes,
            'dispute_id': self._dispute_id,
            'deposit_status': self._deposit_status,
            'history': [
                {'from': t.source.value, 'to': t.target.value, 'at': t.at.isoformat()}
                for t in self._history
            ],
        }


class SessionRegistry:
    """Open sessions for this process, one per booking"""

    def __init__(self):
        self._sessions = {}
        self._lock = Lock()

    def open(self, session: RentalSession) -> RentalSession:
        # Reopening replaces whatever was in progress for the booking
        with self._lock:
            previous = self._sessions.get(session.booking_id)
            if previous is not None and not previous.is_finished and not previous.is_abandoned:
                previous.abandon()
            self._sessions[session.booking_id] = session
        return session

    def get(self, booking_id: str) -> Optional[RentalSession]:
        with self._lock:
            return self._sessions.get(booking_id)

    def discard(self, booking_id: str) -> Optional[RentalSession]:
        with self._lock:
            return self._sessions.pop(booking_id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
