"""
OAuth 1.0a HMAC-SHA1 message signing for legacy LTI services.
"""

import base64
import hashlib
import hmac
import secrets
import time
from typing import Dict, List, Mapping, Optional, Tuple
from urllib.parse import parse_qsl, quote, urlsplit


SIGNATURE_METHOD = "HMAC-SHA1"
OAUTH_VERSION = "1.0"


def _encode(value: object) -> str:
    return quote(str(value), safe='~')


def normalize_url(url: str) -> Tuple[str, List[Tuple[str, str]]]:
    """Split a URL into its signature base URL and its query parameters."""
    parts = urlsplit(url)
    scheme = parts.scheme.lower()
    host = (parts.hostname or '').lower()
    port = parts.port
    if port and not ((scheme == 'http' and port == 80) or (scheme == 'https' and port == 443)):
        host = f"{host}:{port}"
    base_url = f"{scheme}://{host}{parts.path or '/'}"
    return base_url, parse_qsl(parts.query, keep_blank_values=True)


def signature_base_string(method: str, url: str, params: Mapping[str, str]) -> str:
    """Build the OAuth 1.0a signature base string."""
    base_url, query_params = normalize_url(url)
    pairs = [(k, v) for k, v in query_params]
    pairs.extend((k, v) for k, v in params.items() if k != 'oauth_signature')
    encoded = sorted((_encode(k), _encode(v)) for k, v in pairs)
    param_string = '&'.join(f"{k}={v}" for k, v in encoded)
    return '&'.join([method.upper(), _encode(base_url), _encode(param_string)])


def calculate_signature(base_string: str, consumer_secret: str, token_secret: str = '') -> str:
    key = f"{_encode(consumer_secret)}&{_encode(token_secret)}".encode()
    digest = hmac.new(key, base_string.encode(), hashlib.sha1).digest()
    return base64.b64encode(digest).decode()


def oauth_parameters(consumer_key: str, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    """Protocol parameters for a new signed request."""
    params = {
        'oauth_consumer_key': consumer_key,
        'oauth_nonce': secrets.token_hex(16),
        'oauth_signature_method': SIGNATURE_METHOD,
        'oauth_timestamp': str(int(time.time())),
        'oauth_version': OAUTH_VERSION,
    }
    if extra:
        params.update(extra)
    return params


def sign_parameters(
    url: str,
    method: str,
    params: Mapping[str, object],
    consumer_key: str,
    consumer_secret: str
) -> Dict[str, str]:
    """
    Sign a set of form parameters.

    Returns:
        The form parameters with the oauth_* parameters and signature added
    """
    signed = {k: '' if v is None else str(v) for k, v in params.items()}
    signed.update(oauth_parameters(consumer_key))
    base_string = signature_base_string(method, url, signed)
    signed['oauth_signature'] = calculate_signature(base_string, consumer_secret)
    return signed


def body_hash(body: str) -> str:
    return base64.b64encode(hashlib.sha1(body.encode()).digest()).decode()


def body_signature_header(
    url: str,
    method: str,
    body: str,
    consumer_key: str,
    consumer_secret: str
) -> str:
    """
    Sign a raw request body using the oauth_body_hash extension.

    Returns:
        The value for the Authorization header
    """
    params = oauth_parameters(consumer_key, {'oauth_body_hash': body_hash(body or '')})
    base_string = signature_base_string(method, url, params)
    params['oauth_signature'] = calculate_signature(base_string, consumer_secret)
    header_params = ', '.join(f'{_encode(k)}="{_encode(v)}"' for k, v in sorted(params.items()))
    return f'OAuth realm="", {header_params}'
