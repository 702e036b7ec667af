import sys

sys.path.insert(0, '.')

from decimal import Decimal

import pytest

from config.settings import ConfigurationError
from risk.order_sizer import OrderSizer, krw_tick_size, round_to_tick, truncate_quantity


def test_buy_example_from_krw_balance():
    sizer = OrderSizer(allocation_fraction=0.99)
    plan = sizer.size_buy(50_000_000, 100_000, 0.0005)
    assert plan is not None
    assert plan.price == 49_950_000
    expected = 0.99 * 100_000 / 49_950_000 * (1 - 0.0005)
    assert plan.quantity <= expected
    assert plan.quantity == pytest.approx(expected, abs=1e-8)


@pytest.mark.parametrize("balance,price,fee", [
    (100_000, 50_000_000, 0.0005),
    (1_234_567, 12_345, 0.0),
    (10_000_000, 1_500, 0.0025),
])
def test_buy_quantity_bounded_by_allocation(balance, price, fee):
    sizer = OrderSizer(allocation_fraction=0.5)
    plan = sizer.size_buy(price, balance, fee)
    assert plan is not None
    assert 0 < plan.quantity <= 0.5 * balance / plan.price


def test_no_buy_without_balance_or_price():
    sizer = OrderSizer(allocation_fraction=1.0)
    assert sizer.size_buy(50_000, 0, 0.0005) is None
    assert sizer.size_buy(50_000, -10, 0.0005) is None
    assert sizer.size_buy(0, 100_000, 0.0005) is None


def test_buy_below_exchange_minimum_is_skipped():
    sizer = OrderSizer(allocation_fraction=1.0, min_order_value=5000)
    assert sizer.size_buy(10_000, 4_000, 0.0005) is None


def test_buy_respects_max_order_value():
    sizer = OrderSizer(allocation_fraction=1.0, max_order_value=10_000)
    plan = sizer.size_buy(10_000, 1_000_000, 0.0)
    assert plan is not None
    assert plan.price == 9_990
    assert plan.value <= 10_000


def test_sell_rounds_price_up_to_tick():
    sizer = OrderSizer(allocation_fraction=1.0)
    plan = sizer.size_sell(1_000, 10, 0.0005)
    assert plan is not None
    assert plan.price == 1_005
    assert plan.quantity == pytest.approx(9.995)


def test_no_sell_without_holding():
    sizer = OrderSizer(allocation_fraction=1.0)
    assert sizer.size_sell(1_000, 0, 0.0005) is None


def test_tick_rounding_can_be_disabled():
    sizer = OrderSizer(allocation_fraction=1.0, round_to_tick=False)
    assert sizer.buy_price(1_234) == pytest.approx(1_232.766)
    assert sizer.sell_price(1_234) == pytest.approx(1_235.234)


def test_krw_tick_table():
    assert krw_tick_size(2_500_000) == 1000
    assert krw_tick_size(1_500_000) == 500
    assert krw_tick_size(12_345) == 10
    assert krw_tick_size(5) == Decimal('0.01')
    assert round_to_tick(12_345.6, upward=False) == 12_340
    assert round_to_tick(12_345.6, upward=True) == 12_350


def test_quantity_truncates_to_eight_places():
    assert truncate_quantity(0.123456789) == 0.12345678
    assert truncate_quantity(-1.0) == 0.0


@pytest.mark.parametrize("fraction", [None, 0, 1.5, -0.1])
def test_allocation_fraction_is_required(fraction):
    with pytest.raises(ConfigurationError):
        OrderSizer(allocation_fraction=fraction)
