from datetime import datetime

from flask_sqlalchemy import SQLAlchemy

from p2p_rental.constants import (
    ListingCategory, BookingStatus, PRICING_TYPES, PROTECTION_TYPES, PAYMENT_METHODS,
    CONTRACT_PREFERENCES, INSPECTION_MODES, INSPECTION_RESULTS, DEPOSIT_STATUSES, DISPUTE_REASONS,
    DISPUTE_STATUSES,
)

db = SQLAlchemy()


class User(db.Model):
    __tablename__ = 'users'
    user_id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), unique=True)
    is_id_verified = db.Column(db.Boolean, default=False)
    license_verified = db.Column(db.Boolean, default=False)  # required for powersports
    created_at = db.Column(db.DateTime, default=datetime.utcnow)


class Listing(db.Model):
    __tablename__ = 'listings'
    listing_id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    owner_id = db.Column(db.Integer, db.ForeignKey('users.user_id'), nullable=False)
    title = db.Column(db.String(255), nullable=False)
    legal_item_name = db.Column(db.String(255))
    description = db.Column(db.Text)
    category = db.Column(db.Enum(*ListingCategory.ALL, name='listing_category'), nullable=False)
    subcategory = db.Column(db.String(100))
    pricing_type = db.Column(db.Enum(*PRICING_TYPES, name='pricing_type'), nullable=False, default='daily')
    price_per_day = db.Column(db.Numeric(10, 2))
    price_per_hour = db.Column(db.Numeric(10, 2))
    security_deposit = db.Column(db.Numeric(10, 2), default=0)
    has_commercial_insurance = db.Column(db.Boolean, default=False)
    contract_preference = db.Column(db.Enum(*CONTRACT_PREFERENCES, name='contract_preference'), default='standard')
    custom_contract_url = db.Column(db.String(500))
    city = db.Column(db.String(100))
    state = db.Column(db.String(100))
    status = db.Column(db.Enum('Active', 'Draft', 'Inactive', name='listing_status'), default='Active')
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    owner = db.relationship('User', backref='listings')

    @property
    def unit_price(self):
        """Price per rental unit for the listing's pricing mode"""
        return self.price_per_hour if self.pricing_type == 'hourly' else self.price_per_day


class Booking(db.Model):
    __tablename__ = 'bookings'
    booking_id = db.Column(db.String(40), primary_key=True)
    listing_id = db.Column(db.Integer, db.ForeignKey('listings.listing_id'), nullable=False)
    renter_id = db.Column(db.Integer, db.ForeignKey('users.user_id'), nullable=False)
    start_date = db.Column(db.DateTime, nullable=False)
    end_date = db.Column(db.DateTime, nullable=False)
    total_price = db.Column(db.Numeric(10, 2), nullable=False)
    amount_paid_online = db.Column(db.Numeric(10, 2), nullable=False, default=0)  # service + protection
    balance_due_on_site = db.Column(db.Numeric(10, 2), nullable=False, default=0)  # rental cost, paid to owner
    protection_fee = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    protection_type = db.Column(db.Enum(*PROTECTION_TYPES, name='protection_type'), nullable=False)
    payment_method = db.Column(db.Enum(*PAYMENT_METHODS, name='payment_method'), default='platform')
    status = db.Column(db.Enum(*BookingStatus.ALL, name='booking_status'), nullable=False,
                       default=BookingStatus.CONFIRMED)
    has_handover_inspection = db.Column(db.Boolean, default=False)
    has_return_inspection = db.Column(db.Boolean, default=False)
    inspection_result = db.Column(db.Enum(*INSPECTION_RESULTS, name='inspection_result'))
    damage_notes = db.Column(db.Text)
    deposit_status = db.Column(db.Enum(*DEPOSIT_STATUSES, name='deposit_status'))
    contract_type = db.Column(db.String(40))
    contract_signed_by = db.Column(db.String(255))
    contract_signed_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    listing = db.relationship('Listing', backref='bookings')
    renter = db.relationship('User', foreign_keys=[renter_id], backref='rentals')


class Inspection(db.Model):
    __tablename__ = 'inspections'
    inspection_id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    booking_id = db.Column(db.String(40), db.ForeignKey('bookings.booking_id'), nullable=False)
    mode = db.Column(db.Enum(*INSPECTION_MODES, name='inspection_mode'), nullable=False)
    photos = db.Column(db.JSON, nullable=False)  # ordered by angle
    damage_reported = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    booking = db.relationship('Booking', backref='inspections')

    __table_args__ = (db.UniqueConstraint('booking_id', 'mode', name='uq_inspection_booking_mode'),)


class Dispute(db.Model):
    __tablename__ = 'disputes'
    dispute_id = db.Column(db.String(40), primary_key=True)
    booking_id = db.Column(db.String(40), db.ForeignKey('bookings.booking_id'), nullable=False)
    reporter_id = db.Column(db.Integer, db.ForeignKey('users.user_id'), nullable=False)
    reason = db.Column(db.Enum(*DISPUTE_REASONS, name='dispute_reason'), nullable=False)
    description = db.Column(db.Text)
    status = db.Column(db.Enum(*DISPUTE_STATUSES, name='dispute_status'), default='open')
    amount_involved = db.Column(db.Numeric(10, 2), default=0)
    date_opened = db.Column(db.DateTime, default=datetime.utcnow)

    booking = db.relationship('Booking', backref='disputes')
