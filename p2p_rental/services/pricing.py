"""
Rental price calculation.

Turns a listing's pricing mode and the renter's date/time selection into a
price breakdown:

- rental total: unit price x unit count (days, inclusive, or hours)
- protection fee: flat per day-equivalent for powersports, a plan
  percentage of the rental total for everything else
- service fee: fixed platform percentage of the rental total

The rental total is paid to the owner on site; service and protection fees
are collected online when the booking is requested.
"""
import math
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Optional

from p2p_rental.constants import ListingCategory

CENT = Decimal('0.01')

SERVICE_FEE_RATE = Decimal('0.10')
POWERSPORTS_DAILY_FEE = Decimal('25.00')
PROTECTION_PLANS = {
    'none': Decimal('0'),
    'standard': Decimal('0.10'),
    'premium': Decimal('0.20'),
}
DEFAULT_PLAN = 'standard'

DURATION_OPTIONS = (1, 2, 3, 4, 5, 6, 8, 24)
START_TIME_OPTIONS = tuple(f"{hour:02d}:00" for hour in range(8, 19))
DEFAULT_START_TIME = '09:00'

POWERSPORTS_CATEGORIES = (
    ListingCategory.BOATS,
    ListingCategory.MOTORCYCLES,
    ListingCategory.ATVS_UTVS,
    ListingCategory.WINTER_SPORTS,
)


class RiskTier(Enum):
    SOFT_GOODS = "SOFT_GOODS"
    POWERSPORTS = "POWERSPORTS"


def money(value) -> Decimal:
    """Round a number to cents"""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def is_jet_ski(category: str, subcategory: Optional[str]) -> bool:
    return category == ListingCategory.WATER_SPORTS and 'jet ski' in (subcategory or '').lower()


def risk_tier(category: str, subcategory: Optional[str] = None) -> RiskTier:
    """Classify a listing as powersports (high risk) or soft goods"""
    if category in POWERSPORTS_CATEGORIES or is_jet_ski(category, subcategory):
        return RiskTier.POWERSPORTS
    return RiskTier.SOFT_GOODS


def protection_type_for(tier: RiskTier) -> str:
    # Powersports are covered by third-party insurance, soft goods by the platform waiver
    return 'insurance' if tier is RiskTier.POWERSPORTS else 'waiver'


def is_renter_eligible(tier: RiskTier, license_verified: bool) -> bool:
    """Powersports rentals need a verified operator licence"""
    if tier is RiskTier.POWERSPORTS:
        return bool(license_verified)
    return True


@dataclass(frozen=True)
class RentalWindow:
    start: datetime
    end: datetime
    unit_count: int


def _as_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return datetime.strptime(value, '%Y-%m-%d').date()


def ensure_valid_range(start_date, end_date) -> None:
    """Reject inverted daily ranges before they reach the calculator"""
    if _as_date(end_date) < _as_date(start_date):
        raise ValueError('End date must not be before start date')


def daily_window(start_date, end_date) -> Optional[RentalWindow]:
    """Inclusive day range; None until both ends are selected"""
    if not start_date or not end_date:
        return None
    start = _as_date(start_date)
    end = _as_date(end_date)
    unit_count = (end - start).days + 1
    return RentalWindow(datetime.combine(start, time.min), datetime.combine(end, time.min), unit_count)


def hourly_window(day, start_time: Optional[str] = DEFAULT_START_TIME,
                  duration_hours: Optional[int] = None) -> Optional[RentalWindow]:
    """Start time on a day plus a duration from DURATION_OPTIONS"""
    if not day or not duration_hours:
        return None
    start_time = start_time or DEFAULT_START_TIME
    if start_time not in START_TIME_OPTIONS:
        raise ValueError(f'Unsupported start time: {start_time}')
    duration_hours = int(duration_hours)
    if duration_hours not in DURATION_OPTIONS:
        raise ValueError(f'Unsupported duration: {duration_hours} hours')

    hours, minutes = (int(part) for part in start_time.split(':'))
    start = datetime.combine(_as_date(day), time(hours, minutes))
    return RentalWindow(start, start + timedelta(hours=duration_hours), duration_hours)


@dataclass(frozen=True)
class PriceQuote:
    pricing_type: str
    unit_price: Decimal
    unit_count: int
    rental_total: Decimal
    protection_fee: Decimal
    service_fee: Decimal
    total_price: Decimal
    risk_tier: RiskTier
    protection_type: str
    plan: str
    start: datetime
    end: datetime

    @property
    def amount_paid_online(self) -> Decimal:
        return self.service_fee + self.protection_fee

    @property
    def balance_due_on_site(self) -> Decimal:
        return self.rental_total


def protection_fee(tier: RiskTier, rental_total: Decimal, unit_count: int,
                   pricing_type: str = 'daily', plan: str = DEFAULT_PLAN) -> Decimal:
    if tier is RiskTier.POWERSPORTS:
        # Flat fee per started day; an hourly rental of up to 24h counts as one day
        day_equivalents = unit_count if pricing_type == 'daily' else math.ceil(unit_count / 24)
        return money(POWERSPORTS_DAILY_FEE * day_equivalents)

    try:
        rate = PROTECTION_PLANS[plan]
    except KeyError:
        raise ValueError(f'Unknown protection plan: {plan}')
    return money(rental_total * rate)


def calculate_price(pricing_type: str, unit_price, tier: RiskTier,
                    window: Optional[RentalWindow], plan: str = DEFAULT_PLAN) -> Optional[PriceQuote]:
    """
    Price a rental window.

    Returns None while the selection is incomplete; checkout must not
    proceed without a quote.
    """
    if window is None:
        return None
    if pricing_type not in ('daily', 'hourly'):
        raise ValueError(f'Unknown pricing type: {pricing_type}')

    unit_price = money(unit_price or 0)
    rental_total = money(unit_price * window.unit_count)
    protection = protection_fee(tier, rental_total, window.unit_count, pricing_type, plan)
    service_fee = money(rental_total * SERVICE_FEE_RATE)

    return PriceQuote(
        pricing_type=pricing_type,
        unit_price=unit_price,
        unit_count=window.unit_count,
        rental_total=rental_total,
        protection_fee=protection,
        service_fee=service_fee,
        total_price=rental_total + protection + service_fee,
        risk_tier=tier,
        protection_type=protection_type_for(tier),
        plan=plan if tier is RiskTier.SOFT_GOODS else 'flat',
        start=window.start,
        end=window.end,
    )


def quote_for_listing(listing, window: Optional[RentalWindow], plan: str = DEFAULT_PLAN) -> Optional[PriceQuote]:
    tier = risk_tier(listing.category, listing.subcategory)
    return calculate_price(listing.pricing_type, listing.unit_price, tier, window, plan)
