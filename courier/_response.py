'''
Response model and body/header normalization.
'''
from __future__ import annotations

import dataclasses as dc
import json
import logging
import re
from collections.abc import Mapping
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from courier._config import RequestConfig, ResponseType


logger = logging.getLogger(__name__)


_LINE_BREAKS = re.compile(r'[\r\n]+')
_CHARSET = re.compile(r'charset\s*=\s*"?([\w.:-]+)"?', re.IGNORECASE)


def _empty_headers() -> Mapping[str, str]:
    return MappingProxyType({})


@dc.dataclass(frozen=True, slots=True)
class Response:
    '''
    A normalized response. ``headers`` keys are lower-cased.
    '''
    data: Any
    status: int
    status_text: str = ''
    headers: Mapping[str, str] = dc.field(default_factory=_empty_headers)
    config: RequestConfig | None = None
    request: Any = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status <= 299


def parse_headers(header_block: str | None) -> Mapping[str, str]:
    '''
    Parse a raw header block (``Name: value`` per line) into a read-only
    mapping with lower-cased keys.

    Lines are split at the first colon only, so values containing colons
    are preserved. Repeated headers are joined with ``', '``.

    Parameters
    ----------
    header_block : str | None

    Returns
    -------
    Mapping[str, str]
    '''
    parsed: dict[str, str] = {}
    if not header_block:
        return MappingProxyType(parsed)

    for line in _LINE_BREAKS.split(header_block.strip()):
        key, sep, value = line.partition(':')
        key = key.strip().lower()
        if not sep or not key:
            continue
        value = value.strip()
        parsed[key] = f'{parsed[key]}, {value}' if key in parsed else value

    return MappingProxyType(parsed)


def charset_of(content_type: str | None, default: str = 'utf-8') -> str:
    if content_type and (match := _CHARSET.search(content_type)):
        return match.group(1)
    return default


def is_json_content_type(content_type: str | None) -> bool:
    if not content_type:
        return False
    media_type = content_type.split(';', 1)[0].strip().lower()
    return media_type == 'application/json' or media_type.endswith('+json')


def decode_body(body: bytes, content_type: str | None) -> str:
    try:
        return body.decode(charset_of(content_type), errors='replace')
    except LookupError:
        return body.decode('utf-8', errors='replace')


def transform_response_data(
    body: bytes,
    response_type: ResponseType,
    headers: Mapping[str, str],
) -> Any:
    '''
    Turn a raw body into ``Response.data``. Never raises: a JSON body that
    does not parse is returned as text.

    Parameters
    ----------
    body : bytes
    response_type : ResponseType
    headers : Mapping[str, str]
        Lower-cased response headers.

    Returns
    -------
    Any
        Raw bytes, text, or the decoded JSON document.
    '''
    if response_type == 'bytes':
        return body

    content_type = headers.get('content-type')
    text = decode_body(body, content_type)
    if response_type != 'json' or not is_json_content_type(content_type):
        return text

    try:
        return json.loads(text)
    except ValueError as exc:
        logger.debug(f'Keeping raw text, JSON body did not parse: {exc}')
        return text
