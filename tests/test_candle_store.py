import sys
from datetime import datetime, timezone

sys.path.insert(0, '.')

import pytest

from ingest.candle_store import CandleStore
from strategy.transports.upbit import KST


ROW = {
    'market_id': 'KRW-BTC',
    'opening_price': 100,
    'high_price': 110,
    'low_price': 90,
    'trade_price': 105,
    'timestamp': datetime(2024, 3, 1, 23, 59),
    'candle_acc_trade_volume': 12.5,
}


def test_row_maps_to_sample_in_exchange_time():
    sample = CandleStore._row_to_sample(ROW)

    assert sample.market == 'KRW-BTC'
    assert sample.close == 105.0
    assert sample.volume == 12.5
    assert sample.timestamp.tzinfo == KST
    assert sample.timestamp.hour == 23


def test_aware_timestamps_are_converted():
    value = CandleStore._localize(datetime(2024, 3, 1, 0, 0, tzinfo=timezone.utc))
    assert value.hour == 9
    assert value.tzinfo == KST


def test_table_name_must_be_identifier():
    with pytest.raises(ValueError):
        CandleStore({}, table='market_prices; DROP TABLE x')
    store = CandleStore({'host': 'db'}, table='public.market_prices')
    assert store.pool is None
