"""
Booking persistence.

BookingStore is the contract the rental session depends on; SqlBookingStore
implements it on top of the Flask-SQLAlchemy session. Failures surface as
BookingStoreError and are never retried here. Concurrent writers on the same
booking are not coordinated: the last write wins.
"""
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError

from p2p_rental.constants import BookingStatus, DEPOSIT_FOR_RESULT, STATUS_TRANSITIONS
from p2p_rental.errors import BookingStoreError, InvalidTransitionError
from p2p_rental.models.models import db, Booking, Inspection, Dispute
from p2p_rental.services.contracts import ContractSignature
from p2p_rental.services.inspection import InspectionPhoto, InspectionResult, photos_to_dicts
from p2p_rental.utils.helpers import generate_booking_id, generate_dispute_id

logger = logging.getLogger(__name__)


def check_transition(current: str, new: str) -> None:
    """Raise unless new is a forward step (or cancellation) from current"""
    if new not in STATUS_TRANSITIONS:
        raise InvalidTransitionError(f'Unknown booking status: {new}')
    if new not in STATUS_TRANSITIONS.get(current, ()):
        raise InvalidTransitionError(f'Cannot change booking status from {current} to {new}')


class BookingStore(ABC):

    @abstractmethod
    def create_booking(self, listing_id, renter_id, start_date: datetime, end_date: datetime, total_price,
                       amount_paid_online, balance_due_on_site, payment_method: str, protection_type: str,
                       protection_fee, status: str = BookingStatus.CONFIRMED):
        pass

    @abstractmethod
    def get_booking(self, booking_id: str):
        pass

    @abstractmethod
    def update_booking_status(self, booking_id: str, status: str):
        pass

    @abstractmethod
    def record_contract_signature(self, booking_id: str, signature: ContractSignature) -> None:
        pass

    @abstractmethod
    def record_inspection(self, booking_id: str, result: InspectionResult) -> None:
        pass

    @abstractmethod
    def load_inspection_photos(self, booking_id: str, mode: str) -> List[InspectionPhoto]:
        pass

    @abstractmethod
    def record_verdict(self, booking_id: str, inspection_result: str, notes: Optional[str] = None) -> None:
        pass

    @abstractmethod
    def open_dispute(self, booking_id: str, reporter_id, reason: str, description: str,
                     amount_involved=0) -> str:
        pass


class SqlBookingStore(BookingStore):
    """BookingStore backed by the application database"""

    def __init__(self, session=None):
        self._session = session or db.session

    def _commit(self, action: str):
        try:
            self._session.commit()
        except SQLAlchemyError as e:
            self._session.rollback()
            logger.error(f"Error in {action}: {str(e)}")
            raise BookingStoreError(f'Failed to {action.replace("_", " ")}') from e

    def _require(self, booking_id: str) -> Booking:
        try:
            booking = self._session.get(Booking, booking_id)
        except SQLAlchemyError as e:
            logger.error(f"Error loading booking {booking_id}: {str(e)}")
            raise BookingStoreError('Failed to load booking') from e
        if booking is None:
            raise BookingStoreError(f'Booking not found: {booking_id}')
        return booking

    def create_booking(self, listing_id, renter_id, start_date, end_date, total_price,
                       amount_paid_online, balance_due_on_site, payment_method, protection_type,
                       protection_fee, status=BookingStatus.CONFIRMED):
        if status not in (BookingStatus.PENDING, BookingStatus.CONFIRMED):
            raise InvalidTransitionError(f'New bookings cannot start as {status}')
        if amount_paid_online + balance_due_on_site != total_price:
            raise ValueError('Online amount and on-site balance must add up to the total price')

        booking = Booking(
            booking_id=generate_booking_id(),
            listing_id=listing_id,
            renter_id=renter_id,
            start_date=start_date,
            end_date=end_date,
            total_price=total_price,
            amount_paid_online=amount_paid_online,
            balance_due_on_site=balance_due_on_site,
            payment_method=payment_method,
            protection_type=protection_type,
            protection_fee=protection_fee,
            status=status,
        )
        self._session.add(booking)
        self._commit('create_booking')
        logger.info(f"Booking {booking.booking_id} created for listing {listing_id} with status {status}")
        return booking

    def get_booking(self, booking_id):
        try:
            return self._session.get(Booking, booking_id)
        except SQLAlchemyError as e:
            logger.error(f"Error loading booking {booking_id}: {str(e)}")
            raise BookingStoreError('Failed to load booking') from e

    def update_booking_status(self, booking_id, status):
        booking = self._require(booking_id)
        check_transition(booking.status, status)
        previous = booking.status
        booking.status = status
        self._commit('update_booking_status')
        logger.info(f"Booking {booking_id} status {previous} -> {status}")
        return booking

    def record_contract_signature(self, booking_id, signature):
        booking = self._require(booking_id)
        booking.contract_type = signature.contract_type.name
        booking.contract_signed_by = signature.signed_by
        booking.contract_signed_at = signature.signed_at
        self._commit('record_contract_signature')

    def record_inspection(self, booking_id, result):
        booking = self._require(booking_id)
        # One inspection per mode; a repeated save replaces the earlier one
        inspection = self._session.query(Inspection).filter_by(booking_id=booking_id, mode=result.mode).first()
        if inspection is None:
            inspection = Inspection(booking_id=booking_id, mode=result.mode)
            self._session.add(inspection)
        inspection.photos = photos_to_dicts(result.photos)
        inspection.damage_reported = result.damage_reported

        if result.mode == 'handover':
            booking.has_handover_inspection = True
        else:
            booking.has_return_inspection = True
        self._commit('record_inspection')
        logger.info(f"Saved {result.mode} inspection for booking {booking_id} ({len(result.photos)} photos)")

    def load_inspection_photos(self, booking_id, mode):
        try:
            inspection = self._session.query(Inspection).filter_by(booking_id=booking_id, mode=mode).first()
        except SQLAlchemyError as e:
            logger.error(f"Error loading {mode} inspection for {booking_id}: {str(e)}")
            raise BookingStoreError('Failed to load inspection photos') from e
        if inspection is None:
            return []
        return [InspectionPhoto.from_dict(photo) for photo in inspection.photos]

    def record_verdict(self, booking_id, inspection_result, notes=None):
        booking = self._require(booking_id)
        booking.inspection_result = inspection_result
        booking.damage_notes = notes or None
        booking.deposit_status = DEPOSIT_FOR_RESULT[inspection_result]
        self._commit('record_verdict')
        logger.info(f"Booking {booking_id} inspection result: {inspection_result}, deposit {booking.deposit_status}")

    def open_dispute(self, booking_id, reporter_id, reason, description, amount_involved=0):
        self._require(booking_id)
        dispute = Dispute(
            dispute_id=generate_dispute_id(),
            booking_id=booking_id,
            reporter_id=reporter_id,
            reason=reason,
            description=description,
            amount_involved=amount_involved,
        )
        self._session.add(dispute)
        self._commit('open_dispute')
        logger.info(f"Dispute {dispute.dispute_id} opened on booking {booking_id} ({reason})")
        return dispute.dispute_id
