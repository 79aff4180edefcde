from datetime import date, datetime
from decimal import Decimal

import pytest

from p2p_rental.constants import ListingCategory
from p2p_rental.services.pricing import (
    RiskTier, calculate_price, daily_window, hourly_window, is_renter_eligible, protection_type_for,
    quote_for_listing, risk_tier,
)
from conftest import make_listing


def test_daily_soft_goods_standard_plan():
    window = daily_window('2024-06-01', '2024-06-03')
    quote = calculate_price('daily', 50, RiskTier.SOFT_GOODS, window, 'standard')

    assert quote.unit_count == 3
    assert quote.rental_total == Decimal('150.00')
    assert quote.protection_fee == Decimal('15.00')
    assert quote.service_fee == Decimal('15.00')
    assert quote.total_price == Decimal('180.00')
    assert quote.protection_type == 'waiver'


def test_hourly_powersports_flat_fee():
    window = hourly_window(date(2024, 6, 1), '10:00', 4)
    quote = calculate_price('hourly', 20, RiskTier.POWERSPORTS, window, 'premium')

    assert quote.rental_total == Decimal('80.00')
    assert quote.protection_fee == Decimal('25.00')
    assert quote.service_fee == Decimal('8.00')
    assert quote.total_price == Decimal('113.00')
    assert quote.protection_type == 'insurance'
    assert quote.plan == 'flat'


def test_full_day_hourly_rental_counts_as_one_day():
    window = hourly_window(date(2024, 6, 1), '08:00', 24)
    quote = calculate_price('hourly', 20, RiskTier.POWERSPORTS, window)
    assert quote.protection_fee == Decimal('25.00')


@pytest.mark.parametrize('price, days', [(Decimal('50'), 1), (Decimal('19.99'), 3), (Decimal('125.50'), 7)])
def test_daily_total_is_price_times_days(price, days):
    window = daily_window(date(2024, 6, 1), date(2024, 6, days))
    quote = calculate_price('daily', price, RiskTier.SOFT_GOODS, window)

    assert quote.rental_total == price * days
    assert quote.total_price == quote.rental_total + quote.protection_fee + quote.service_fee


@pytest.mark.parametrize('plan', ['none', 'standard', 'premium'])
def test_powersports_fee_ignores_plan(plan):
    window = daily_window('2024-06-01', '2024-06-04')
    quote = calculate_price('daily', 100, RiskTier.POWERSPORTS, window, plan)
    assert quote.protection_fee == Decimal('25.00') * 4


@pytest.mark.parametrize('plan, fee', [('none', Decimal('0.00')), ('premium', Decimal('30.00'))])
def test_soft_goods_plan_percentage(plan, fee):
    window = daily_window('2024-06-01', '2024-06-03')
    quote = calculate_price('daily', 50, RiskTier.SOFT_GOODS, window, plan)
    assert quote.protection_fee == fee


def test_fee_split_between_online_and_on_site():
    window = daily_window('2024-06-01', '2024-06-03')
    quote = calculate_price('daily', 50, RiskTier.SOFT_GOODS, window)

    assert quote.amount_paid_online == Decimal('30.00')
    assert quote.balance_due_on_site == Decimal('150.00')
    assert quote.amount_paid_online + quote.balance_due_on_site == quote.total_price


def test_rounds_to_cents():
    window = daily_window('2024-06-01', '2024-06-01')
    quote = calculate_price('daily', Decimal('33.33'), RiskTier.SOFT_GOODS, window)
    assert quote.protection_fee == Decimal('3.33')
    assert quote.total_price == Decimal('39.99')


def test_incomplete_selection_has_no_quote():
    assert daily_window('2024-06-01', None) is None
    assert hourly_window(date(2024, 6, 1), '09:00', None) is None
    assert calculate_price('daily', 50, RiskTier.SOFT_GOODS, None) is None


def test_single_day_range_is_one_unit():
    window = daily_window(datetime(2024, 6, 1, 15, 30), datetime(2024, 6, 1, 9, 0))
    assert window.unit_count == 1
    assert window.start == datetime(2024, 6, 1)


def test_hourly_window_end_time():
    window = hourly_window('2024-06-01', '17:00', 8)
    assert window.start == datetime(2024, 6, 1, 17, 0)
    assert window.end == datetime(2024, 6, 2, 1, 0)


def test_hourly_window_rejects_unsupported_options():
    with pytest.raises(ValueError):
        hourly_window('2024-06-01', '07:00', 2)
    with pytest.raises(ValueError):
        hourly_window('2024-06-01', '09:00', 7)


def test_unknown_plan_is_rejected():
    window = daily_window('2024-06-01', '2024-06-02')
    with pytest.raises(ValueError):
        calculate_price('daily', 50, RiskTier.SOFT_GOODS, window, 'gold')


@pytest.mark.parametrize('category, subcategory, tier', [
    (ListingCategory.BOATS, 'Pontoon', RiskTier.POWERSPORTS),
    (ListingCategory.MOTORCYCLES, None, RiskTier.POWERSPORTS),
    (ListingCategory.ATVS_UTVS, 'UTV', RiskTier.POWERSPORTS),
    (ListingCategory.WINTER_SPORTS, 'Snowmobile', RiskTier.POWERSPORTS),
    (ListingCategory.WATER_SPORTS, 'Jet Ski', RiskTier.POWERSPORTS),
    (ListingCategory.WATER_SPORTS, 'Kayak', RiskTier.SOFT_GOODS),
    (ListingCategory.CAMPING, 'Tents', RiskTier.SOFT_GOODS),
    (ListingCategory.BIKES, None, RiskTier.SOFT_GOODS),
    (ListingCategory.RVS, 'Camper Van', RiskTier.SOFT_GOODS),
])
def test_risk_tier(category, subcategory, tier):
    assert risk_tier(category, subcategory) is tier


def test_protection_type_and_eligibility():
    assert protection_type_for(RiskTier.POWERSPORTS) == 'insurance'
    assert protection_type_for(RiskTier.SOFT_GOODS) == 'waiver'
    assert not is_renter_eligible(RiskTier.POWERSPORTS, False)
    assert is_renter_eligible(RiskTier.POWERSPORTS, True)
    assert is_renter_eligible(RiskTier.SOFT_GOODS, False)


def test_quote_for_hourly_listing_uses_hourly_price():
    listing = make_listing(category=ListingCategory.WATER_SPORTS, subcategory='Jet Ski', pricing_type='hourly',
                           price_per_day=None, price_per_hour=Decimal('20.00'))
    quote = quote_for_listing(listing, hourly_window('2024-06-01', '09:00', 4))

    assert quote.risk_tier is RiskTier.POWERSPORTS
    assert quote.unit_price == Decimal('20.00')
    assert quote.total_price == Decimal('113.00')
