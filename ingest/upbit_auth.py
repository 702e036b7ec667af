import base64
import hashlib
import hmac
import json
import uuid
from typing import Any, Mapping, Optional
from urllib.parse import unquote, urlencode


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b'=').decode('ascii')


def _compact_json(obj: Any) -> bytes:
    return json.dumps(obj, separators=(',', ':')).encode('utf-8')


def query_string(params: Mapping[str, Any]) -> str:
    """Query string in the exact form the exchange hashes (unescaped, list keys repeated)."""
    return unquote(urlencode(params, doseq=True))


class UpbitAuthorizer:
    """Produces the HS256 bearer token Upbit expects on authenticated calls.

    The token payload carries the access key, a fresh nonce and, when the
    request has parameters, a SHA512 hash of the query string so the exchange
    can bind the signature to the request contents.
    """

    def __init__(self, access_key: str, secret_key: str):
        if not access_key or not secret_key:
            raise ValueError("access_key and secret_key are required")
        self.access_key = access_key
        self._secret = secret_key.encode('utf-8')

    def authorize(self, params: Optional[Mapping[str, Any]] = None, nonce: Optional[str] = None) -> str:
        payload = {
            'access_key': self.access_key,
            'nonce': nonce or str(uuid.uuid4()),
        }
        if params:
            query_hash = hashlib.sha512(query_string(params).encode('utf-8')).hexdigest()
            payload['query_hash'] = query_hash
            payload['query_hash_alg'] = 'SHA512'

        header = {'alg': 'HS256', 'typ': 'JWT'}
        signing_input = f"{_b64url(_compact_json(header))}.{_b64url(_compact_json(payload))}"
        signature = hmac.new(self._secret, signing_input.encode('ascii'), hashlib.sha256).digest()
        return f"{signing_input}.{_b64url(signature)}"

    def authorization_header(self, params: Optional[Mapping[str, Any]] = None) -> str:
        return f"Bearer {self.authorize(params)}"
