import sys

sys.path.insert(0, '.')

import pytest

from config.config_loader import Config
from config.settings import ConfigurationError, SessionSettings


def _raw(**sections):
    base = {
        'exchange': {
            'quote_currency': 'krw',
            'access_key': '${UPBIT_ACCESS_KEY}',
            'secret_key': '${UPBIT_SECRET_KEY}',
            'paper': 'false',
        },
        'session': {'tick_interval_s': '5', 'max_duration_s': 60},
        'sizing': {'allocation_fraction': '0.5', 'max_order_value': None},
        'liquidation': {'excluded_currencies': ['vtho', ' doge ']},
        'signals': {'short_window': 5},
    }
    for name, values in sections.items():
        base.setdefault(name, {}).update(values)
    return base


def test_from_config_normalises_values():
    settings = SessionSettings.from_config(_raw())

    assert settings.quote_currency == 'KRW'
    assert settings.allocation_fraction == 0.5
    assert settings.tick_interval_s == 5.0
    assert settings.max_duration_s == 60.0
    assert settings.paper is False
    assert settings.max_order_value is None
    assert settings.min_order_value == 5000.0
    assert settings.excluded_currencies == frozenset({'VTHO', 'DOGE'})
    assert settings.signals == {'short_window': 5}
    assert settings.market_data_source == 'exchange'


def test_unresolved_credentials_are_absent():
    settings = SessionSettings.from_config(_raw())
    assert not settings.has_credentials
    with pytest.raises(ConfigurationError):
        settings.require_credentials()

    keyed = SessionSettings.from_config(_raw(exchange={'access_key': 'a', 'secret_key': 'b'}))
    assert keyed.has_credentials
    keyed.require_credentials()


def test_allocation_fraction_required():
    raw = _raw()
    del raw['sizing']['allocation_fraction']
    with pytest.raises(ConfigurationError):
        SessionSettings.from_config(raw)
    with pytest.raises(ConfigurationError):
        SessionSettings.from_config(_raw(sizing={'allocation_fraction': '1.5'}))


@pytest.mark.parametrize("section,values", [
    ('exchange', {'paper': 'maybe'}),
    ('session', {'tick_interval_s': 0}),
    ('sizing', {'fee_rate': 'cheap'}),
    ('market_data', {'source': 'csv'}),
])
def test_invalid_values_rejected(section, values):
    with pytest.raises(ConfigurationError):
        SessionSettings.from_config(_raw(**{section: values}))


def test_comma_separated_exclusions():
    settings = SessionSettings.from_config(_raw(liquidation={'excluded_currencies': 'vtho,btt'}))
    assert settings.excluded_currencies == frozenset({'VTHO', 'BTT'})


def test_config_loader_expands_environment(tmp_path, monkeypatch):
    path = tmp_path / 'config.yaml'
    path.write_text(
        "exchange:\n"
        "  access_key: ${TEST_TRADER_KEY}\n"
        "  secret_key: ${TEST_TRADER_MISSING}\n"
        "  paper: ${TEST_TRADER_PAPER:-true}\n"
        "monitoring:\n"
        "  alert_webhook: ${TEST_TRADER_HOOK:-}\n"
        "  ports: [1, 2]\n",
        encoding='utf-8',
    )
    monkeypatch.setenv('TEST_TRADER_KEY', 'from-env')
    monkeypatch.delenv('TEST_TRADER_MISSING', raising=False)
    monkeypatch.delenv('TEST_TRADER_PAPER', raising=False)
    monkeypatch.delenv('TEST_TRADER_HOOK', raising=False)

    cfg = Config(str(path))

    assert cfg.exchange['access_key'] == 'from-env'
    assert cfg.exchange['secret_key'] == '${TEST_TRADER_MISSING}'
    assert cfg.exchange['paper'] == 'true'
    assert cfg.monitoring.get('alert_webhook') == ''
    assert cfg.monitoring['ports'] == [1, 2]
    assert cfg.get('missing', {}) == {}


def test_config_loader_missing_file(tmp_path):
    with pytest.raises(RuntimeError):
        Config(str(tmp_path / 'nope.yaml'))


def test_bundled_config_builds_settings():
    settings = SessionSettings.from_config(Config())
    assert settings.quote_currency == 'KRW'
    assert settings.allocation_fraction == 0.99
    assert 'VTHO' in settings.excluded_currencies


def test_placeholders_expand_inside_strings(monkeypatch):
    from config.config_loader import expand_env

    monkeypatch.setenv('TEST_TRADER_HOST', 'db.internal')
    monkeypatch.delenv('TEST_TRADER_PORT', raising=False)
    assert expand_env('postgres://${TEST_TRADER_HOST}:${TEST_TRADER_PORT:-5432}/upbit') == (
        'postgres://db.internal:5432/upbit'
    )
