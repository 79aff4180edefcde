# Utility functions

import shortuuid


def generate_booking_id():
    return f"booking-{shortuuid.uuid()}"


def generate_dispute_id():
    return f"dsp-{shortuuid.uuid()}"


def to_float(value):
    return float(value) if value is not None else None


def format_datetime(value):
    return value.strftime('%Y-%m-%d %H:%M:%S') if value else None


def require_fields(data, required_fields):
    """Return the first missing field name, or None"""
    if not data:
        return required_fields[0] if required_fields else None
    for field in required_fields:
        if field not in data:
            return field
    return None


def user_to_dict(user):
    return {
        'user_id': user.user_id,
        'name': user.name,
        'email': user.email,
        'is_id_verified': user.is_id_verified,
        'license_verified': user.license_verified,
        'created_at': format_datetime(user.created_at),
    }


def listing_to_dict(listing):
    """Convert listing object to dictionary with owner info"""
    return {
        'listing_id': listing.listing_id,
        'title': listing.title,
        'legal_item_name': listing.legal_item_name,
        'description': listing.description,
        'category': listing.category,
        'subcategory': listing.subcategory,
        'pricing_type': listing.pricing_type,
        'price_per_day': to_float(listing.price_per_day),
        'price_per_hour': to_float(listing.price_per_hour),
        'security_deposit': to_float(listing.security_deposit),
        'has_commercial_insurance': listing.has_commercial_insurance,
        'contract_preference': listing.contract_preference,
        'custom_contract_url': listing.custom_contract_url,
        'location': {
            'city': listing.city,
            'state': listing.state,
        },
        'status': listing.status,
        'created_at': format_datetime(listing.created_at),
        'owner': {
            'user_id': listing.owner.user_id,
            'name': listing.owner.name,
        },
    }


def booking_to_dict(booking):
    """Convert booking object to dictionary with listing and renter info"""
    result = {
        'booking_id': booking.booking_id,
        'listing_id': booking.listing_id,
        'renter_id': booking.renter_id,
        'start_date': booking.start_date.isoformat(),
        'end_date': booking.end_date.isoformat(),
        'status': booking.status,
        'pricing': {
            'total_price': to_float(booking.total_price),
            'amount_paid_online': to_float(booking.amount_paid_online),
            'balance_due_on_site': to_float(booking.balance_due_on_site),
            'protection_fee': to_float(booking.protection_fee),
            'protection_type': booking.protection_type,
        },
        'payment_method': booking.payment_method,
        'inspection': {
            'has_handover_inspection': bool(booking.has_handover_inspection),
            'has_return_inspection': bool(booking.has_return_inspection),
            'inspection_result': booking.inspection_result,
            'damage_notes': booking.damage_notes,
            'deposit_status': booking.deposit_status,
        },
        'contract': {
            'contract_type': booking.contract_type,
            'signed_by': booking.contract_signed_by,
            'signed_at': format_datetime(booking.contract_signed_at),
        },
        'created_at': format_datetime(booking.created_at),
    }

    if booking.listing is not None:
        result['listing'] = {
            'listing_id': booking.listing.listing_id,
            'title': booking.listing.title,
            'category': booking.listing.category,
            'subcategory': booking.listing.subcategory,
        }
    return result


def quote_to_dict(quote):
    return {
        'pricing_type': quote.pricing_type,
        'unit_price': to_float(quote.unit_price),
        'unit_count': quote.unit_count,
        'rental_total': to_float(quote.rental_total),
        'protection_fee': to_float(quote.protection_fee),
        'service_fee': to_float(quote.service_fee),
        'total_price': to_float(quote.total_price),
        'amount_paid_online': to_float(quote.amount_paid_online),
        'balance_due_on_site': to_float(quote.balance_due_on_site),
        'risk_tier': quote.risk_tier.value,
        'protection_type': quote.protection_type,
        'plan': quote.plan,
        'start_date': quote.start.isoformat(),
        'end_date': quote.end.isoformat(),
    }


def contract_to_dict(document):
    return {
        'contract_type': document.contract_type.name,
        'title': document.title,
        'reference': document.reference,
        'external_url': document.external_url,
        'html': document.html,
    }
