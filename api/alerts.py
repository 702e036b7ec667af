import asyncio
import logging
import time
from typing import Dict, Optional, Set

import aiohttp

from config import config
from config.utils import get_config_section, is_unresolved


logger = logging.getLogger(__name__)


class AlertWebhook:
    def __init__(self, url: Optional[str] = None):
        url = url if url is not None else get_config_section(config, 'monitoring').get('alert_webhook')
        # empty or unresolved URLs disable delivery
        if url and not is_unresolved(url):
            self.webhook_url = str(url)
            self.enabled = True
        else:
            self.webhook_url = None
            self.enabled = False
        self._pending: Set[asyncio.Task] = set()

    async def send_alert(self, alert_type: str, message: str, severity: str = 'warning',
                         metadata: Dict = None):
        if not self.enabled:
            logger.warning(
                "[Alert] %s: %s - %s",
                severity.upper(),
                alert_type,
                message,
            )
            return

        payload = {
            'type': alert_type,
            'message': message,
            'severity': severity,
            'timestamp': time.time(),
            'metadata': metadata or {}
        }

        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    self.webhook_url,
                    json=payload,
                    headers={'Content-Type': 'application/json'},
                    timeout=aiohttp.ClientTimeout(total=5)
                ) as response:
                    if response.status >= 300:
                        logger.error(
                            "[Alert] Webhook failed with status %s",
                            response.status,
                        )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error("[Alert] Webhook error: %s", e)

    async def session_alert(self, state: str, previous: str, reason: str):
        severity = 'critical' if reason == 'crash' else 'info'
        await self.send_alert(
            'session',
            f'Session {previous} -> {state} ({reason})',
            severity,
            {'state': state, 'previous': previous, 'reason': reason}
        )

    async def liquidation_alert(self, failed, error: Optional[str]):
        parts = []
        if error:
            parts.append(f'balance lookup failed: {error}')
        if failed:
            parts.append(f'sell failed for {", ".join(failed)}')
        await self.send_alert(
            'liquidation',
            'Liquidation incomplete: ' + '; '.join(parts),
            'critical',
            {'failed': list(failed or []), 'error': error}
        )

    def on_session_event(self, event) -> None:
        """Session listener: schedule delivery without blocking the controller."""
        self._schedule(self.session_alert(event.state.value, event.previous.value, event.reason))
        liquidation = event.detail.get('liquidation') if event.detail else None
        if liquidation and (liquidation.get('error') or liquidation.get('failed')):
            self._schedule(self.liquidation_alert(liquidation.get('failed') or [], liquidation.get('error')))

    def _schedule(self, coro) -> None:
        try:
            task = asyncio.get_running_loop().create_task(coro)
        except RuntimeError:
            coro.close()
            logger.warning("[Alert] No running event loop; alert dropped")
            return
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self):
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

alert_webhook = AlertWebhook()
