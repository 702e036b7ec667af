import asyncio
import json
import logging
from typing import Any, Dict, Optional

import aiohttp

from config.settings import ConfigurationError
from .upbit_auth import UpbitAuthorizer


logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.upbit.com/v1"


class UpbitAPIError(Exception):
    def __init__(self, status: int, name: Optional[str], message: Optional[str], body: str):
        self.status = status
        self.name = name
        self.message = message
        self.body = body
        text = f"Upbit API error (status={status}, name={name}, message={message})"
        super().__init__(text)


class UpbitDecodeError(UpbitAPIError):
    """Response arrived but did not have the shape we parse."""

    def __init__(self, what: str, payload: Any):
        body = payload if isinstance(payload, str) else json.dumps(payload, default=str)[:500]
        super().__init__(200, 'decode_error', f"unexpected {what} response", body)
        self.payload = payload

    def __str__(self) -> str:
        return f"Upbit decode error: {self.message}; raw={self.body}"


# errors a single call can raise that are worth retrying on the next tick
TRANSIENT_ERRORS = (UpbitAPIError, aiohttp.ClientError, asyncio.TimeoutError)


class UpbitRESTClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        authorizer: Optional[UpbitAuthorizer] = None,
        timeout_s: float = 10.0,
    ):
        self.base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")
        self.authorizer = authorizer
        self.timeout = aiohttp.ClientTimeout(total=timeout_s)
        self._session: Optional[aiohttp.ClientSession] = None
        self._lock = asyncio.Lock()

    @property
    def has_credentials(self) -> bool:
        return self.authorizer is not None

    async def _get_session(self) -> aiohttp.ClientSession:
        async with self._lock:
            if self._session is None or self._session.closed:
                self._session = aiohttp.ClientSession(timeout=self.timeout)
            return self._session

    async def close(self):
        async with self._lock:
            if self._session and not self._session.closed:
                await self._session.close()
                self._session = None

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        signed: bool = False,
    ) -> Any:
        session = await self._get_session()
        params = {k: v for k, v in (params or {}).items() if v is not None}
        headers: Dict[str, str] = {"Accept": "application/json"}
        send_in_body = method.upper() == "POST"

        if signed:
            if self.authorizer is None:
                raise ConfigurationError("Upbit access/secret key required for signed request")
            headers["Authorization"] = self.authorizer.authorization_header(params)

        url = f"{self.base_url}{path}"
        async with session.request(
            method.upper(),
            url,
            params=None if send_in_body else (params or None),
            json=params if send_in_body else None,
            headers=headers,
        ) as resp:
            # undecodable bytes become U+FFFD so a garbled body fails shape checks as UpbitDecodeError
            text = await resp.text(errors="replace")
            content_type = resp.headers.get("Content-Type", "")
            payload: Any
            if "application/json" in content_type:
                try:
                    payload = json.loads(text)
                except ValueError:
                    payload = text
            else:
                payload = text

            remaining = resp.headers.get("Remaining-Req")
            if remaining:
                logger.debug("%s %s remaining-req: %s", method.upper(), path, remaining)

            if resp.status >= 400:
                name = None
                message = None
                if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
                    name = payload["error"].get("name")
                    message = payload["error"].get("message")
                raise UpbitAPIError(resp.status, name, message, text)

            return payload

    async def get(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        signed: bool = False,
    ) -> Any:
        return await self._request("GET", path, params=params, signed=signed)

    async def post(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        signed: bool = False,
    ) -> Any:
        # Upbit takes order parameters as a JSON body; the token hashes the same params
        return await self._request("POST", path, params=params, signed=signed)

