import base64
import json
import re
from collections.abc import Mapping
from typing import Any
from urllib.parse import urlencode

import httpx

from courier._config import HeaderMap


_ABSOLUTE_URL = re.compile(r'^([a-z][a-z\d+\-.]*:)?//', re.IGNORECASE)

FORM_CONTENT_TYPE = 'application/x-www-form-urlencoded'
JSON_CONTENT_TYPE = 'application/json'


def is_absolute_url(url: str) -> bool:
    return bool(_ABSOLUTE_URL.match(url))


def combine_urls(base_url: str, url: str) -> str:
    '''
    Join a base URL and a request URL. Absolute request URLs win.

    Parameters
    ----------
    base_url : str
    url : str

    Returns
    -------
    str
    '''
    if is_absolute_url(url) or not base_url:
        return url
    if not url:
        return base_url
    return f"{base_url.rstrip('/')}/{url.lstrip('/')}"


def build_full_url(base_url: str, url: str) -> str:
    '''
    Combine and validate the URL for one attempt.

    Parameters
    ----------
    base_url : str
    url : str

    Returns
    -------
    str

    Raises
    ------
    ValueError
        If the result is not an http(s) URL with a host.
    '''
    combined = combine_urls(base_url, url)
    if combined.startswith('//'):
        combined = f'https:{combined}'

    try:
        parsed = httpx.URL(combined)
    except httpx.InvalidURL as exc:
        raise ValueError(f'Invalid URL {combined!r}: {exc}') from exc

    if parsed.scheme not in ('http', 'https'):
        raise ValueError(f'Unsupported URL scheme in {combined!r}')
    if not parsed.host:
        raise ValueError(f'URL has no host: {combined!r}')

    return str(parsed)


def encode_body(data: Any, headers: HeaderMap) -> bytes | None:
    '''
    Serialize a request body, adding a JSON content type when a
    structured body has none. ``headers`` must be a per-attempt copy.

    Parameters
    ----------
    data : Any
    headers : HeaderMap

    Returns
    -------
    bytes | None

    Raises
    ------
    TypeError
        For bodies that are not bytes, str, a mapping or a list.
    '''
    if data is None:
        return None

    if isinstance(data, (bytes, bytearray, memoryview)):
        return bytes(data)

    if isinstance(data, str):
        return data.encode('utf-8')

    content_type = (headers.get('Content-Type') or '').lower()
    if isinstance(data, Mapping) and FORM_CONTENT_TYPE in content_type:
        return urlencode(data, doseq=True).encode('ascii')

    if isinstance(data, (Mapping, list, tuple)):
        if not content_type:
            headers['Content-Type'] = JSON_CONTENT_TYPE
        return json.dumps(data).encode('utf-8')

    raise TypeError(f'Cannot encode request body of type {type(data).__name__}')


def basic_auth_value(username: str, password: str) -> str:
    token = base64.b64encode(f'{username}:{password}'.encode('utf-8'))
    return f"Basic {token.decode('ascii')}"
