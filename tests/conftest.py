from datetime import datetime
from decimal import Decimal
from types import SimpleNamespace

import pytest

from p2p_rental import create_app
from p2p_rental.config import TestingConfig
from p2p_rental.constants import BookingStatus, ListingCategory
from p2p_rental.errors import BookingStoreError
from p2p_rental.models.models import db, User, Listing
from p2p_rental.services.payments import PaymentCollector, PaymentResult
from p2p_rental.services.store import BookingStore, check_transition


class FakePaymentCollector(PaymentCollector):

    def __init__(self, succeed=True):
        self.succeed = succeed
        self.charges = []

    def charge(self, amount, payer_id, reference):
        self.charges.append((amount, payer_id, reference))
        if not self.succeed:
            return PaymentResult(False, error='Card declined')
        return PaymentResult(True, transaction_id=f'txn-{len(self.charges)}')


class RecordingStore(BookingStore):
    """In-memory store that records every call; set fail_on to make one method raise"""

    def __init__(self, bookings=None, handover_photos=None):
        self.bookings = {b.booking_id: b for b in (bookings or [])}
        self.handover_photos = list(handover_photos or [])
        self.calls = []
        self.fail_on = None
        self._disputes = 0

    def _record(self, name, *args):
        if self.fail_on == name:
            raise BookingStoreError(f'{name} failed')
        self.calls.append((name,) + args)

    @property
    def status_writes(self):
        return [call[2] for call in self.calls if call[0] == 'update_booking_status']

    def create_booking(self, listing_id, renter_id, start_date, end_date, total_price,
                       amount_paid_online, balance_due_on_site, payment_method, protection_type,
                       protection_fee, status=BookingStatus.CONFIRMED):
        self._record('create_booking', listing_id, renter_id)
        booking = make_booking(
            booking_id=f'booking-{len(self.bookings) + 1}', listing_id=listing_id, renter_id=renter_id,
            start_date=start_date, end_date=end_date, total_price=total_price, status=status,
        )
        self.bookings[booking.booking_id] = booking
        return booking

    def get_booking(self, booking_id):
        return self.bookings.get(booking_id)

    def update_booking_status(self, booking_id, status):
        self._record('update_booking_status', booking_id, status)
        booking = self.bookings.get(booking_id)
        if booking is not None:
            check_transition(booking.status, status)
            booking.status = status
        return booking

    def record_contract_signature(self, booking_id, signature):
        self._record('record_contract_signature', booking_id, signature)

    def record_inspection(self, booking_id, result):
        self._record('record_inspection', booking_id, result)
        if result.mode == 'handover':
            self.handover_photos = list(result.photos)

    def load_inspection_photos(self, booking_id, mode):
        return list(self.handover_photos) if mode == 'handover' else []

    def record_verdict(self, booking_id, inspection_result, notes=None):
        self._record('record_verdict', booking_id, inspection_result, notes)

    def open_dispute(self, booking_id, reporter_id, reason, description, amount_involved=0):
        self._record('open_dispute', booking_id, reporter_id, reason, description)
        self._disputes += 1
        return f'dsp-{self._disputes}'


def make_listing(**overrides):
    owner = overrides.pop('owner', SimpleNamespace(user_id=1, name='Olivia Owner'))
    fields = dict(
        listing_id=10,
        owner_id=owner.user_id,
        owner=owner,
        title='Family Tent',
        legal_item_name=None,
        category=ListingCategory.CAMPING,
        subcategory='Tents',
        pricing_type='daily',
        price_per_day=Decimal('50.00'),
        price_per_hour=None,
        security_deposit=Decimal('100.00'),
        has_commercial_insurance=False,
        contract_preference='standard',
        custom_contract_url=None,
        city='Miami',
        state='FL',
    )
    fields.update(overrides)
    listing = SimpleNamespace(**fields)
    listing.unit_price = listing.price_per_hour if listing.pricing_type == 'hourly' else listing.price_per_day
    return listing


def make_booking(**overrides):
    fields = dict(
        booking_id='booking-1',
        listing_id=10,
        renter_id=2,
        start_date=datetime(2024, 6, 1),
        end_date=datetime(2024, 6, 3),
        total_price=Decimal('180.00'),
        status=BookingStatus.CONFIRMED,
    )
    fields.update(overrides)
    return SimpleNamespace(**fields)


@pytest.fixture
def listing():
    return make_listing()


@pytest.fixture
def renter():
    return SimpleNamespace(user_id=2, name='Rita Renter', license_verified=True)


@pytest.fixture
def app():
    app = create_app(TestingConfig)
    app.extensions['payment_collector'] = FakePaymentCollector()
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def payments(app):
    return app.extensions['payment_collector']


@pytest.fixture
def seed(app):
    """An owner, a licensed renter, an unlicensed renter and one listing per tier"""
    owner = User(name='Olivia Owner', email='owner@example.com', is_id_verified=True)
    renter = User(name='Rita Renter', email='renter@example.com', is_id_verified=True, license_verified=True)
    novice = User(name='Nick Novice', email='novice@example.com', is_id_verified=True)
    db.session.add_all([owner, renter, novice])
    db.session.commit()

    tent = Listing(owner_id=owner.user_id, title='Family Tent', category=ListingCategory.CAMPING,
                   subcategory='Tents', pricing_type='daily', price_per_day=Decimal('50.00'),
                   security_deposit=Decimal('100.00'), city='Miami', state='FL')
    jet_ski = Listing(owner_id=owner.user_id, title='Yamaha WaveRunner', category=ListingCategory.WATER_SPORTS,
                      subcategory='Jet Ski', pricing_type='hourly', price_per_hour=Decimal('20.00'),
                      security_deposit=Decimal('500.00'), city='Miami', state='FL')
    db.session.add_all([tent, jet_ski])
    db.session.commit()

    return SimpleNamespace(owner=owner, renter=renter, novice=novice, tent=tent, jet_ski=jet_ski)
