import threading
from datetime import datetime

import pytest

from p2p_rental.constants import BookingStatus
from p2p_rental.errors import (
    BookingStoreError, ContractUnavailableError, InvalidTransitionError, SessionClosedError, StepBlockedError,
)
from p2p_rental.services.inspection import CLEAN, ISSUE_DETECTED, InspectionPhoto, STANDARD_ANGLES
from p2p_rental.services.session import RentalSession, SessionRegistry, SessionStep
from conftest import RecordingStore, make_booking, make_listing


def clock():
    return datetime(2024, 6, 1, 9, 0)


def capture_all(capture, judgment=None, issue_at=None):
    for index, angle in enumerate(capture.angles):
        capture.capture(index, f'/uploads/{capture.mode}-{angle.angle_id}.jpg', 2)
        if judgment:
            capture.judge(index, ISSUE_DETECTED if index == issue_at else judgment)
        capture.advance()


def hand_over(session):
    session.confirm_payment(fees_paid_online=True, balance_received=True)
    session.verify_identity(True, verified_by=1)
    session.render_contract()
    session.sign_contract('Rita Renter')
    capture_all(session.inspection)
    session.complete_handover()


def bring_back(session, issue_at=None):
    if session.step is SessionStep.ACTIVE:
        session.start_return()
    capture_all(session.inspection, judgment=CLEAN, issue_at=issue_at)
    session.complete_return_inspection()


def open_session(status=BookingStatus.CONFIRMED, listing=None, store=None, renter=None):
    booking = make_booking(status=status)
    store = store or RecordingStore([booking])
    store.bookings.setdefault(booking.booking_id, booking)
    session = RentalSession(booking, listing or make_listing(), renter, store, clock=clock)
    return session, booking, store


def handover_photos():
    return [
        InspectionPhoto(f'/uploads/old-{angle.angle_id}.jpg', angle.angle_id, angle.label, clock(), '2')
        for angle in STANDARD_ANGLES
    ]


def test_confirmed_booking_full_clean_traversal(renter):
    session, booking, store = open_session(renter=renter)
    assert session.step is SessionStep.PENDING_PAYMENT_COLLECTION

    hand_over(session)
    assert session.step is SessionStep.ACTIVE
    assert store.status_writes == [BookingStatus.ACTIVE]

    bring_back(session)
    assert session.verdict == 'clean'
    session.finalize_verdict()
    handoff = session.close()

    assert session.step is SessionStep.COMPLETED
    assert booking.status == BookingStatus.COMPLETED
    assert store.status_writes == [BookingStatus.ACTIVE, BookingStatus.COMPLETED]
    assert ('record_verdict', 'booking-1', 'clean', None) in store.calls
    assert session.deposit_status == 'released'
    assert handoff.author_id == '1'
    assert handoff.target_id == '2'
    assert handoff.role == 'HOST'
    assert [t.target for t in session.history][-1] is SessionStep.COMPLETED


def test_handover_persists_signature_and_photos(renter):
    session, booking, store = open_session(renter=renter)
    hand_over(session)

    names = [call[0] for call in store.calls]
    assert names == ['record_contract_signature', 'record_inspection', 'update_booking_status']
    signature = store.calls[0][2]
    assert signature.signed_by == 'Rita Renter'
    assert signature.reference == session.contract.reference
    assert len(session.handover_result.photos) == 4


def test_active_booking_enters_at_return(renter):
    store = RecordingStore(handover_photos=handover_photos())
    session, booking, store = open_session(BookingStatus.ACTIVE, store=store, renter=renter)

    assert session.step is SessionStep.RETURN_INSPECTION
    assert session.inspection.reference_for(0) == '/uploads/old-front.jpg'

    bring_back(session)
    session.finalize_verdict()
    session.close()

    assert store.status_writes == [BookingStatus.COMPLETED]
    assert booking.status == BookingStatus.COMPLETED


def test_active_booking_without_handover_photos_is_unaided(renter):
    session, booking, store = open_session(BookingStatus.ACTIVE, renter=renter)

    assert not session.inspection.has_references
    bring_back(session)
    assert session.step is SessionStep.DAMAGE_VERDICT


@pytest.mark.parametrize('status', [BookingStatus.PENDING, BookingStatus.COMPLETED, BookingStatus.CANCELLED])
def test_other_statuses_cannot_open_a_session(status, renter):
    with pytest.raises(InvalidTransitionError):
        open_session(status, renter=renter)


def test_payment_needs_both_confirmations(renter):
    session, booking, store = open_session(renter=renter)

    with pytest.raises(StepBlockedError):
        session.confirm_payment(fees_paid_online=True, balance_received=False)
    with pytest.raises(StepBlockedError):
        session.confirm_payment(fees_paid_online=False, balance_received=True)
    assert session.step is SessionStep.PENDING_PAYMENT_COLLECTION


def test_identity_mismatch_blocks(renter):
    session, booking, store = open_session(renter=renter)
    session.confirm_payment(True, True)

    with pytest.raises(StepBlockedError):
        session.verify_identity(False, verified_by=1)
    assert session.step is SessionStep.IDENTITY_VERIFICATION


def test_contract_must_be_rendered_before_signing(renter):
    session, booking, store = open_session(renter=renter)
    session.confirm_payment(True, True)
    session.verify_identity(True, verified_by=1)

    assert session.blocked_reason() == 'Review the contract'
    with pytest.raises(StepBlockedError):
        session.sign_contract('Rita Renter')
    session.render_contract()
    with pytest.raises(StepBlockedError):
        session.sign_contract('   ')
    assert session.step is SessionStep.CONTRACT_SIGNING


def test_missing_custom_contract_blocks_signing(renter):
    listing = make_listing(contract_preference='custom', custom_contract_url=None)
    session, booking, store = open_session(listing=listing, renter=renter)
    session.confirm_payment(True, True)
    session.verify_identity(True, verified_by=1)

    with pytest.raises(ContractUnavailableError):
        session.render_contract()
    assert session.step is SessionStep.CONTRACT_SIGNING


def test_steps_cannot_be_skipped(renter):
    session, booking, store = open_session(renter=renter)

    with pytest.raises(InvalidTransitionError):
        session.start_return()
    with pytest.raises(InvalidTransitionError):
        session.close()
    assert store.calls == []


def test_handover_needs_every_angle(renter):
    session, booking, store = open_session(renter=renter)
    session.confirm_payment(True, True)
    session.verify_identity(True, verified_by=1)
    session.render_contract()
    session.sign_contract('Rita Renter')

    capture = session.inspection
    capture.capture(0, '/uploads/front.jpg', 2)
    capture.advance()

    with pytest.raises(StepBlockedError):
        session.complete_handover()
    assert session.step is SessionStep.HANDOVER_INSPECTION
    assert store.calls == []


def test_damage_verdict_needs_notes(renter):
    session, booking, store = open_session(renter=renter)
    hand_over(session)
    bring_back(session, issue_at=1)

    assert session.verdict == 'damage'
    assert session.blocked_reason() == 'Describe the damage before finalizing'
    with pytest.raises(StepBlockedError):
        session.finalize_verdict()
    session.set_verdict('damage', '   ')
    with pytest.raises(StepBlockedError):
        session.finalize_verdict()
    assert session.step is SessionStep.DAMAGE_VERDICT

    session.set_verdict('damage', 'Deep scratch on the right side')
    session.finalize_verdict()
    session.close()

    assert ('record_verdict', 'booking-1', 'damaged', 'Deep scratch on the right side') in store.calls
    assert ('open_dispute', 'booking-1', 1, 'damage', 'Deep scratch on the right side') in store.calls
    assert session.dispute_id == 'dsp-1'
    assert session.deposit_status == 'held'
    assert booking.status == BookingStatus.COMPLETED


def test_host_can_override_clean_verdict(renter):
    session, booking, store = open_session(renter=renter)
    hand_over(session)
    bring_back(session)

    session.set_verdict('damage')
    with pytest.raises(StepBlockedError):
        session.finalize_verdict()
    with pytest.raises(ValueError):
        session.set_verdict('unsure')


def test_failed_status_write_keeps_step(renter):
    session, booking, store = open_session(renter=renter)
    store.fail_on = 'update_booking_status'

    with pytest.raises(BookingStoreError):
        hand_over(session)
    assert session.step is SessionStep.HANDOVER_INSPECTION
    assert booking.status == BookingStatus.CONFIRMED

    store.fail_on = None
    session.complete_handover()
    assert session.step is SessionStep.ACTIVE
    assert store.status_writes == [BookingStatus.ACTIVE]


def test_failed_close_can_be_retried(renter):
    session, booking, store = open_session(BookingStatus.ACTIVE, renter=renter)
    bring_back(session)
    session.finalize_verdict()

    store.fail_on = 'update_booking_status'
    with pytest.raises(BookingStoreError):
        session.close()
    assert session.step is SessionStep.REVIEW_AND_CLOSE

    store.fail_on = None
    session.close()
    assert session.is_finished


def test_abandon_writes_nothing(renter):
    session, booking, store = open_session(renter=renter)
    session.confirm_payment(True, True)
    session.verify_identity(True, verified_by=1)
    session.render_contract()
    session.sign_contract('Rita Renter')
    capture = session.inspection
    capture.capture(0, '/uploads/front.jpg', 2)

    session.abandon()

    assert store.calls == []
    assert booking.status == BookingStatus.CONFIRMED
    assert capture.is_cancelled
    with pytest.raises(SessionClosedError):
        session.complete_handover()


def test_finished_session_cannot_be_abandoned(renter):
    session, booking, store = open_session(BookingStatus.ACTIVE, renter=renter)
    bring_back(session)
    session.finalize_verdict()
    session.close()

    with pytest.raises(SessionClosedError):
        session.abandon()


def test_restart_inspection_starts_over(renter):
    session, booking, store = open_session(renter=renter)
    session.confirm_payment(True, True)
    session.verify_identity(True, verified_by=1)
    session.render_contract()
    session.sign_contract('Rita Renter')
    session.inspection.capture(0, '/uploads/front.jpg', 2)

    fresh = session.restart_inspection()

    assert fresh is session.inspection
    assert fresh.step == 0
    assert fresh.photo_for(0) is None


def test_registry_replaces_open_session(renter):
    registry = SessionRegistry()
    first, booking, store = open_session(renter=renter)
    registry.open(first)
    second = RentalSession(booking, make_listing(), renter, store, clock=clock)
    registry.open(second)

    assert first.is_abandoned
    assert registry.get('booking-1') is second
    assert len(registry) == 1
    assert registry.discard('booking-1') is second
    assert registry.get('booking-1') is None


def test_session_state_is_serialisable(renter):
    session, booking, store = open_session(renter=renter)
    session.confirm_payment(True, True)

    state = session.to_dict()
    assert state['step'] == 'IDENTITY_VERIFICATION'
    assert state['status'] == BookingStatus.CONFIRMED
    assert state['history'][0]['from'] == 'PENDING_PAYMENT_COLLECTION'
    assert state['inspection'] is None


class SlowStore(RecordingStore):
    """Holds record_inspection open until the test lets it finish"""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.entered = threading.Event()
        self.release = threading.Event()

    def record_inspection(self, booking_id, result):
        self.entered.set()
        self.release.wait(5)
        super().record_inspection(booking_id, result)


def test_concurrent_handover_writes_once(renter):
    session, booking, store = open_session(store=SlowStore(), renter=renter)
    session.confirm_payment(True, True)
    session.verify_identity(True, verified_by=1)
    session.render_contract()
    session.sign_contract('Rita Renter')
    capture_all(session.inspection)

    errors = []

    def second_handover():
        try:
            session.complete_handover()
        except InvalidTransitionError as e:
            errors.append(e)

    first = threading.Thread(target=session.complete_handover)
    first.start()
    assert store.entered.wait(5)
    second = threading.Thread(target=second_handover)
    second.start()
    store.release.set()
    first.join(5)
    second.join(5)

    assert session.step is SessionStep.ACTIVE
    assert len(errors) == 1
    assert [call[0] for call in store.calls].count('record_inspection') == 1
    assert store.status_writes == [BookingStatus.ACTIVE]
