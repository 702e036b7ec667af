import asyncio
import sys
from datetime import datetime, timezone

sys.path.insert(0, '.')

from prometheus_client import REGISTRY

from api.alerts import AlertWebhook
from api.metrics import metrics
from orchestration.session import SessionEvent, SessionState


def _event(reason='manual', detail=None):
    return SessionEvent(
        state=SessionState.IDLE,
        previous=SessionState.STOPPING,
        reason=reason,
        timestamp=datetime.now(timezone.utc),
        detail=detail or {},
    )


def test_disabled_webhook_logs_alerts(caplog):
    hook = AlertWebhook(url='${ALERT_WEBHOOK_URL}')
    assert not hook.enabled

    async def _run():
        hook.on_session_event(_event(detail={'liquidation': {'failed': ['KRW-ETH'], 'error': None}}))
        await hook.drain()

    asyncio.run(_run())

    assert 'Session stopping -> idle (manual)' in caplog.text
    assert 'Liquidation incomplete' in caplog.text
    assert 'KRW-ETH' in caplog.text


def test_event_outside_loop_is_dropped(caplog):
    AlertWebhook(url='').on_session_event(_event(reason='crash'))
    assert 'alert dropped' in caplog.text


def test_session_state_gauge_is_one_hot():
    metrics.update_session_state('running', 'manual')
    values = {
        name: REGISTRY.get_sample_value('trader_session_state', {'state': name})
        for name in ('idle', 'running', 'stopping')
    }
    assert values == {'idle': 0, 'running': 1, 'stopping': 0}
