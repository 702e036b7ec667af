import base64
import hashlib
import hmac
import json
import sys

sys.path.insert(0, '.')

import pytest

from ingest.upbit_auth import UpbitAuthorizer, query_string


def _decode(segment: str) -> dict:
    padded = segment + '=' * (-len(segment) % 4)
    return json.loads(base64.urlsafe_b64decode(padded))


def test_token_without_params_has_no_query_hash():
    token = UpbitAuthorizer('access', 'secret').authorize(nonce='n-1')
    header, payload, signature = token.split('.')

    assert _decode(header) == {'alg': 'HS256', 'typ': 'JWT'}
    assert _decode(payload) == {'access_key': 'access', 'nonce': 'n-1'}

    expected = hmac.new(b'secret', f"{header}.{payload}".encode('ascii'), hashlib.sha256).digest()
    assert signature == base64.urlsafe_b64encode(expected).rstrip(b'=').decode('ascii')


def test_token_binds_query_hash():
    params = {'market': 'KRW-BTC', 'side': 'bid', 'volume': '0.01', 'price': '100', 'ord_type': 'limit'}
    token = UpbitAuthorizer('access', 'secret').authorize(params, nonce='n-2')
    payload = _decode(token.split('.')[1])

    raw = 'market=KRW-BTC&side=bid&volume=0.01&price=100&ord_type=limit'
    assert payload['query_hash'] == hashlib.sha512(raw.encode('utf-8')).hexdigest()
    assert payload['query_hash_alg'] == 'SHA512'


def test_nonce_is_unique_per_token():
    auth = UpbitAuthorizer('access', 'secret')
    first = _decode(auth.authorize().split('.')[1])['nonce']
    second = _decode(auth.authorize().split('.')[1])['nonce']
    assert first != second


def test_query_string_repeats_list_keys_unescaped():
    assert query_string({'states[]': ['wait', 'watch'], 'market': 'KRW-BTC'}) == \
        'states[]=wait&states[]=watch&market=KRW-BTC'


def test_authorization_header_prefix():
    assert UpbitAuthorizer('a', 'b').authorization_header().startswith('Bearer ')


@pytest.mark.parametrize("access,secret", [('', 'x'), ('x', ''), (None, 'x')])
def test_missing_keys_rejected(access, secret):
    with pytest.raises(ValueError):
        UpbitAuthorizer(access, secret)
