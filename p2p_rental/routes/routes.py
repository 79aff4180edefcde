import logging

from flask import Blueprint, current_app, jsonify, request, send_from_directory

from p2p_rental.constants import BookingStatus, ListingCategory, PAYMENT_METHODS, PRICING_TYPES
from p2p_rental.errors import InvalidTransitionError, RentalError, SessionClosedError
from p2p_rental.models.models import db, User, Listing, Booking
from p2p_rental.services.contracts import generate_contract
from p2p_rental.services.inspection import STANDARD_ANGLES, angles_for_listing
from p2p_rental.services.payments import collect_or_raise
from p2p_rental.services.pricing import (
    DEFAULT_PLAN, RiskTier, daily_window, ensure_valid_range, hourly_window, is_renter_eligible,
    quote_for_listing, risk_tier,
)
from p2p_rental.services.session import RentalSession
from p2p_rental.utils.helpers import (
    booking_to_dict, contract_to_dict, listing_to_dict, quote_to_dict, require_fields, user_to_dict,
)

logger = logging.getLogger(__name__)

rental_bp = Blueprint('rental', __name__)


def _rental_error(e, action):
    """JSON response for a booking-core error, using the error's own status code"""
    if e.status_code >= 500:
        logger.error(f"Error in {action}: {str(e)}")
    else:
        logger.warning(f"{action} refused: {str(e)}")
    db.session.rollback()
    return jsonify({'error': str(e)}), e.status_code


def _sessions():
    return current_app.extensions['rental_sessions']


def _store():
    return current_app.extensions['booking_store_factory']()


def _window_from(listing, data):
    """Rental window from either daily dates or an hourly day/start/duration selection"""
    if listing.pricing_type == 'hourly':
        return hourly_window(data.get('date'), data.get('start_time'), data.get('duration_hours'))
    start_date, end_date = data.get('start_date'), data.get('end_date')
    if start_date and end_date:
        ensure_valid_range(start_date, end_date)
    return daily_window(start_date, end_date)


# ---- users and listings ----

@rental_bp.route('/users', methods=['POST'])
def create_user():
    """Create a user"""
    try:
        data = request.json

        missing = require_fields(data, ['name'])
        if missing:
            return jsonify({'error': f'Missing required field: {missing}'}), 400

        new_user = User(
            name=data['name'],
            email=data.get('email'),
            is_id_verified=bool(data.get('is_id_verified', False)),
            license_verified=bool(data.get('license_verified', False)),
        )
        db.session.add(new_user)
        db.session.commit()

        logger.info(f"User {new_user.user_id} created")
        return jsonify({
            'message': 'User created successfully',
            'user': user_to_dict(new_user)
        }), 201
    except Exception as e:
        logger.error(f"Error in create_user: {str(e)}")
        db.session.rollback()
        return jsonify({'error': str(e)}), 500


@rental_bp.route('/listings', methods=['POST'])
def create_listing():
    """Create a new listing"""
    try:
        data = request.json

        # Validate required fields
        missing = require_fields(data, ['owner_id', 'title', 'category'])
        if missing:
            return jsonify({'error': f'Missing required field: {missing}'}), 400

        if data['category'] not in ListingCategory.ALL:
            return jsonify({'error': f"Unknown category: {data['category']}"}), 400

        pricing_type = data.get('pricing_type', 'daily')
        if pricing_type not in PRICING_TYPES:
            return jsonify({'error': f'Unknown pricing type: {pricing_type}'}), 400

        price_field = 'price_per_hour' if pricing_type == 'hourly' else 'price_per_day'
        if data.get(price_field) is None:
            return jsonify({'error': f'Missing required field: {price_field}'}), 400

        if data.get('contract_preference') == 'custom' and not data.get('custom_contract_url'):
            return jsonify({'error': 'A custom contract preference needs custom_contract_url'}), 400

        owner = db.session.get(User, data['owner_id'])
        if not owner:
            return jsonify({'error': 'Owner not found'}), 404

        new_listing = Listing(
            owner_id=owner.user_id,
            title=data['title'],
            legal_item_name=data.get('legal_item_name'),
            description=data.get('description'),
            category=data['category'],
            subcategory=data.get('subcategory'),
            pricing_type=pricing_type,
            price_per_day=data.get('price_per_day'),
            price_per_hour=data.get('price_per_hour'),
            security_deposit=data.get('security_deposit', 0),
            has_commercial_insurance=bool(data.get('has_commercial_insurance', False)),
            contract_preference=data.get('contract_preference', 'standard'),
            custom_contract_url=data.get('custom_contract_url'),
            city=data.get('city'),
            state=data.get('state'),
            status=data.get('status', 'Active'),
        )

        db.session.add(new_listing)
        db.session.commit()

        return jsonify({
            'message': 'Listing created successfully',
            'listing_id': new_listing.listing_id
        }), 201
    except Exception as e:
        logger.error(f"Error in create_listing: {str(e)}")
        db.session.rollback()
        return jsonify({'error': str(e)}), 500


@rental_bp.route('/listings/<int:listing_id>', methods=['GET'])
def get_listing(listing_id):
    """Get details of a specific listing"""
    try:
        listing = db.session.get(Listing, listing_id)
        if not listing:
            return jsonify({'error': 'Listing not found'}), 404

        result = listing_to_dict(listing)
        result['risk_tier'] = risk_tier(listing.category, listing.subcategory).value
        return jsonify(result), 200
    except Exception as e:
        logger.error(f"Error in get_listing: {str(e)}")
        return jsonify({'error': str(e)}), 500


@rental_bp.route('/listings/<int:listing_id>/contract', methods=['GET'])
def preview_contract(listing_id):
    """Render the agreement a renter would sign for the given selection"""
    try:
        listing = db.session.get(Listing, listing_id)
        if not listing:
            return jsonify({'error': 'Listing not found'}), 404

        if 'renter_id' not in request.args:
            return jsonify({'error': 'Missing required field: renter_id'}), 400
        renter = db.session.get(User, request.args.get('renter_id', type=int))
        if not renter:
            return jsonify({'error': 'Renter not found'}), 404

        quote = quote_for_listing(listing, _window_from(listing, request.args))
        if quote is None:
            return jsonify({'error': 'Select the rental dates first'}), 400

        document = generate_contract(listing, renter, quote.start, quote.end, quote.total_price)
        return jsonify(contract_to_dict(document)), 200
    except RentalError as e:
        return _rental_error(e, 'preview_contract')
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        logger.error(f"Error in preview_contract: {str(e)}")
        return jsonify({'error': str(e)}), 500


# ---- pricing and checkout ----

@rental_bp.route('/quote', methods=['POST'])
def get_quote():
    """Price breakdown for a listing and a date/time selection"""
    try:
        data = request.json

        missing = require_fields(data, ['listing_id'])
        if missing:
            return jsonify({'error': f'Missing required field: {missing}'}), 400

        listing = db.session.get(Listing, data['listing_id'])
        if not listing:
            return jsonify({'error': 'Listing not found'}), 404

        quote = quote_for_listing(listing, _window_from(listing, data), data.get('plan', DEFAULT_PLAN))
        if quote is None:
            return jsonify({'error': 'Selection is incomplete', 'quote': None}), 400

        return jsonify(quote_to_dict(quote)), 200
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        logger.error(f"Error in get_quote: {str(e)}")
        return jsonify({'error': str(e)}), 500


@rental_bp.route('/bookings', methods=['POST'])
def create_booking():
    """Checkout: price the selection, collect the online fees, then create the booking"""
    try:
        data = request.json

        # Validate required fields
        missing = require_fields(data, ['listing_id', 'renter_id'])
        if missing:
            return jsonify({'error': f'Missing required field: {missing}'}), 400

        listing = db.session.get(Listing, data['listing_id'])
        if not listing:
            return jsonify({'error': 'Listing not found'}), 404

        renter = db.session.get(User, data['renter_id'])
        if not renter:
            return jsonify({'error': 'Renter not found'}), 404

        # Prevent renting your own listing
        if listing.owner_id == renter.user_id:
            return jsonify({'error': 'Cannot rent your own listing'}), 400

        tier = risk_tier(listing.category, listing.subcategory)
        if not is_renter_eligible(tier, renter.license_verified):
            return jsonify({'error': 'A verified license is required to rent powersports'}), 403

        payment_method = data.get('payment_method', 'platform')
        if payment_method not in PAYMENT_METHODS:
            return jsonify({'error': f'Unknown payment method: {payment_method}'}), 400

        quote = quote_for_listing(listing, _window_from(listing, data), data.get('plan', DEFAULT_PLAN))
        if quote is None:
            return jsonify({'error': 'Select the rental dates first'}), 400

        payment = collect_or_raise(
            current_app.extensions['payment_collector'],
            quote.amount_paid_online,
            renter.user_id,
            f"listing-{listing.listing_id}-renter-{renter.user_id}",
        )

        status = BookingStatus.PENDING if data.get('requires_approval') else BookingStatus.CONFIRMED
        booking = _store().create_booking(
            listing_id=listing.listing_id,
            renter_id=renter.user_id,
            start_date=quote.start,
            end_date=quote.end,
            total_price=quote.total_price,
            amount_paid_online=quote.amount_paid_online,
            balance_due_on_site=quote.balance_due_on_site,
            payment_method=payment_method,
            protection_type=quote.protection_type,
            protection_fee=quote.protection_fee,
            status=status,
        )

        return jsonify({
            'message': 'Booking created successfully',
            'booking_id': booking.booking_id,
            'status': booking.status,
            'transaction_id': payment.transaction_id,
            'quote': quote_to_dict(quote),
            'license_required': tier is RiskTier.POWERSPORTS,
        }), 201
    except RentalError as e:
        return _rental_error(e, 'create_booking')
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        logger.error(f"Error in create_booking: {str(e)}")
        db.session.rollback()
        return jsonify({'error': str(e)}), 500


@rental_bp.route('/bookings/<booking_id>', methods=['GET'])
def get_booking(booking_id):
    """Get details of a specific booking"""
    try:
        booking = db.session.get(Booking, booking_id)
        if not booking:
            return jsonify({'error': 'Booking not found'}), 404

        return jsonify(booking_to_dict(booking)), 200
    except Exception as e:
        logger.error(f"Error in get_booking: {str(e)}")
        return jsonify({'error': str(e)}), 500


@rental_bp.route('/bookings/<booking_id>/approve', methods=['POST'])
def approve_booking(booking_id):
    """Host decision on a pending request: approve confirms it, reject cancels it"""
    try:
        data = request.json

        missing = require_fields(data, ['owner_id'])
        if missing:
            return jsonify({'error': f'Missing required field: {missing}'}), 400

        booking = db.session.get(Booking, booking_id)
        if not booking:
            return jsonify({'error': 'Booking not found'}), 404

        if booking.listing.owner_id != int(data['owner_id']):
            return jsonify({'error': 'Only the listing owner can approve this booking'}), 403

        if booking.status != BookingStatus.PENDING:
            return jsonify({'error': f'Booking is {booking.status}, not pending'}), 409

        status = BookingStatus.CONFIRMED if data.get('approve', True) else BookingStatus.CANCELLED
        booking = _store().update_booking_status(booking_id, status)

        return jsonify({
            'message': 'Booking approved' if status == BookingStatus.CONFIRMED else 'Booking rejected',
            'booking': booking_to_dict(booking)
        }), 200
    except RentalError as e:
        return _rental_error(e, 'approve_booking')
    except (TypeError, ValueError):
        return jsonify({'error': 'owner_id must be a number'}), 400
    except Exception as e:
        logger.error(f"Error in approve_booking: {str(e)}")
        db.session.rollback()
        return jsonify({'error': str(e)}), 500


@rental_bp.route('/bookings/<booking_id>/cancel', methods=['POST'])
def cancel_booking(booking_id):
    """Cancel a pending or confirmed booking"""
    try:
        data = request.json

        missing = require_fields(data, ['user_id'])
        if missing:
            return jsonify({'error': f'Missing required field: {missing}'}), 400

        booking = db.session.get(Booking, booking_id)
        if not booking:
            return jsonify({'error': 'Booking not found'}), 404

        if int(data['user_id']) not in (booking.renter_id, booking.listing.owner_id):
            return jsonify({'error': 'Only the renter or the owner can cancel this booking'}), 403

        booking = _store().update_booking_status(booking_id, BookingStatus.CANCELLED)

        session = _sessions().discard(booking_id)
        if session is not None and not session.is_finished and not session.is_abandoned:
            session.abandon()

        return jsonify({
            'message': 'Booking cancelled',
            'booking': booking_to_dict(booking)
        }), 200
    except RentalError as e:
        return _rental_error(e, 'cancel_booking')
    except (TypeError, ValueError):
        return jsonify({'error': 'user_id must be a number'}), 400
    except Exception as e:
        logger.error(f"Error in cancel_booking: {str(e)}")
        db.session.rollback()
        return jsonify({'error': str(e)}), 500


# ---- inspection photos ----

@rental_bp.route('/uploads', methods=['POST'])
def upload_image():
    """Store an inspection photo and return its URL"""
    try:
        if 'file' not in request.files:
            return jsonify({'error': 'No file part'}), 400

        url = current_app.extensions['image_store'].upload(request.files['file'])
        return jsonify({'url': url}), 201
    except RentalError as e:
        return _rental_error(e, 'upload_image')
    except Exception as e:
        logger.error(f"Error in upload_image: {str(e)}")
        return jsonify({'error': str(e)}), 500


@rental_bp.route('/uploads/<path:filename>', methods=['GET'])
def get_upload(filename):
    return send_from_directory(current_app.config['UPLOAD_FOLDER'], filename)


# ---- rental session ----

def _session_action(booking_id, action, handler):
    """Run handler(session) against the open session and return its state"""
    try:
        session = _sessions().get(booking_id)
        if session is None:
            return jsonify({'error': 'No rental session open for this booking'}), 404

        extra = handler(session)
        result = session.to_dict()
        if isinstance(extra, dict):
            result.update(extra)
        return jsonify(result), 200
    except RentalError as e:
        return _rental_error(e, action)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        logger.error(f"Error in {action}: {str(e)}")
        db.session.rollback()
        return jsonify({'error': str(e)}), 500


def _current_capture(session):
    if session.is_abandoned:
        raise SessionClosedError('Session was abandoned')
    capture = session.inspection
    if capture is None:
        raise InvalidTransitionError(f'No inspection in progress at {session.step.value}')
    return capture


def _json():
    return request.get_json(silent=True) or {}


@rental_bp.route('/bookings/<booking_id>/session', methods=['POST'])
def open_session(booking_id):
    """Start the handover (confirmed booking) or return (active booking) flow"""
    try:
        booking = db.session.get(Booking, booking_id)
        if not booking:
            return jsonify({'error': 'Booking not found'}), 404

        listing = booking.listing
        renter = booking.renter
        if current_app.config.get('CATEGORY_INSPECTION_ANGLES'):
            angles = angles_for_listing(listing.category, listing.subcategory)
        else:
            angles = STANDARD_ANGLES

        session = RentalSession(booking, listing, renter, _store(), angles=angles)
        _sessions().open(session)

        logger.info(f"Session for booking {booking_id} opened by host {listing.owner.name}")
        return jsonify(session.to_dict()), 201
    except RentalError as e:
        return _rental_error(e, 'open_session')
    except Exception as e:
        logger.error(f"Error in open_session: {str(e)}")
        db.session.rollback()
        return jsonify({'error': str(e)}), 500


@rental_bp.route('/bookings/<booking_id>/session', methods=['GET'])
def get_session(booking_id):
    return _session_action(booking_id, 'get_session', lambda session: None)


@rental_bp.route('/bookings/<booking_id>/session', methods=['DELETE'])
def abandon_session(booking_id):
    """Leave the flow without writing anything"""
    try:
        session = _sessions().discard(booking_id)
        if session is None:
            return jsonify({'error': 'No rental session open for this booking'}), 404

        if not session.is_finished:
            session.abandon()
        return jsonify({
            'message': 'Session closed',
            'status': session.status
        }), 200
    except Exception as e:
        logger.error(f"Error in abandon_session: {str(e)}")
        return jsonify({'error': str(e)}), 500


@rental_bp.route('/bookings/<booking_id>/session/payment', methods=['POST'])
def confirm_payment(booking_id):
    data = _json()
    return _session_action(booking_id, 'confirm_payment', lambda session: session.confirm_payment(
        bool(data.get('fees_paid_online')), bool(data.get('balance_received'))
    ))


@rental_bp.route('/bookings/<booking_id>/session/identity', methods=['POST'])
def verify_identity(booking_id):
    data = _json()
    return _session_action(booking_id, 'verify_identity', lambda session: session.verify_identity(
        bool(data.get('identity_matches')), data.get('verified_by', '')
    ))


@rental_bp.route('/bookings/<booking_id>/session/contract', methods=['GET'])
def render_session_contract(booking_id):
    return _session_action(booking_id, 'render_contract', lambda session: {
        'document': contract_to_dict(session.render_contract())
    })


@rental_bp.route('/bookings/<booking_id>/session/sign', methods=['POST'])
def sign_contract(booking_id):
    data = _json()
    return _session_action(booking_id, 'sign_contract',
                           lambda session: session.sign_contract(data.get('signed_by', '')))


@rental_bp.route('/bookings/<booking_id>/session/photos', methods=['POST'])
def capture_photo(booking_id):
    """Record (or retake) the photo for one angle of the inspection in progress"""
    data = _json()

    def handler(session):
        if 'angle_index' not in data:
            raise ValueError('Missing required field: angle_index')
        photo = _current_capture(session).capture(
            int(data['angle_index']),
            data.get('photo_url'),
            data.get('taken_by_user_id', ''),
            latitude=data.get('latitude'),
            longitude=data.get('longitude'),
        )
        return {'photo': photo.to_dict()}

    return _session_action(booking_id, 'capture_photo', handler)


@rental_bp.route('/bookings/<booking_id>/session/judge', methods=['POST'])
def judge_angle(booking_id):
    data = _json()

    def handler(session):
        if 'angle_index' not in data or 'judgment' not in data:
            raise ValueError('Angle index and judgment are required')
        _current_capture(session).judge(int(data['angle_index']), data['judgment'])

    return _session_action(booking_id, 'judge_angle', handler)


@rental_bp.route('/bookings/<booking_id>/session/advance', methods=['POST'])
def advance_angle(booking_id):
    return _session_action(booking_id, 'advance_angle',
                           lambda session: _current_capture(session).advance())


@rental_bp.route('/bookings/<booking_id>/session/restart', methods=['POST'])
def restart_inspection(booking_id):
    return _session_action(booking_id, 'restart_inspection',
                           lambda session: session.restart_inspection())


@rental_bp.route('/bookings/<booking_id>/session/handover', methods=['POST'])
def complete_handover(booking_id):
    return _session_action(booking_id, 'complete_handover', lambda session: session.complete_handover())


@rental_bp.route('/bookings/<booking_id>/session/return', methods=['POST'])
def start_return(booking_id):
    return _session_action(booking_id, 'start_return', lambda session: session.start_return())


@rental_bp.route('/bookings/<booking_id>/session/return-inspection', methods=['POST'])
def complete_return_inspection(booking_id):
    return _session_action(booking_id, 'complete_return_inspection',
                           lambda session: session.complete_return_inspection())


@rental_bp.route('/bookings/<booking_id>/session/verdict', methods=['POST'])
def set_verdict(booking_id):
    data = _json()

    def handler(session):
        if 'verdict' not in data:
            raise ValueError('Missing required field: verdict')
        session.set_verdict(data['verdict'], data.get('notes', ''))

    return _session_action(booking_id, 'set_verdict', handler)


@rental_bp.route('/bookings/<booking_id>/session/finalize', methods=['POST'])
def finalize_verdict(booking_id):
    return _session_action(booking_id, 'finalize_verdict', lambda session: session.finalize_verdict())


@rental_bp.route('/bookings/<booking_id>/session/close', methods=['POST'])
def close_session(booking_id):
    """Complete the booking and hand over to the review flow"""

    def handler(session):
        handoff = session.close()
        # A completed session has nothing left to do; drop it from the registry
        _sessions().discard(booking_id)
        return {'review': {
            'booking_id': handoff.booking_id,
            'author_id': handoff.author_id,
            'target_id': handoff.target_id,
            'role': handoff.role,
        }}

    return _session_action(booking_id, 'close_session', handler)
