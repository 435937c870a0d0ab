'''
Per-request configuration for the courier client.

A `RequestConfig` is built for every call by overlaying the per-call options
on top of the client defaults (see `merge_config`). Header maps merge key by
key, everything else is replaced wholesale.
'''
from __future__ import annotations

import copy
import dataclasses as dc
import logging
from collections.abc import Callable, Iterable, Iterator, Mapping, MutableMapping
from typing import Any, Literal, Self, get_args

from courier._errors import InvalidConfigError


logger = logging.getLogger(__name__)


ResponseType = Literal['json', 'text', 'bytes']
StatusValidator = Callable[[int], bool]


class HeaderMap(MutableMapping[str, str]):
    '''
    A case-insensitive header mapping.

    Lookups ignore case, but the casing used by the most recent assignment
    is kept and is what goes over the wire.
    '''
    __slots__ = ('_store',)

    def __init__(
        self,
        headers: Mapping[str, str] | Iterable[tuple[str, str]] | None = None,
    ) -> None:
        self._store: dict[str, tuple[str, str]] = {}
        if headers:
            self.update(headers)

    def __setitem__(self, key: str, value: str) -> None:
        self._store[key.lower()] = (key, str(value))

    def __getitem__(self, key: str) -> str:
        return self._store[key.lower()][1]

    def __delitem__(self, key: str) -> None:
        del self._store[key.lower()]

    def __iter__(self) -> Iterator[str]:
        return (original for original, _ in self._store.values())

    def __len__(self) -> int:
        return len(self._store)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and key.lower() in self._store

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Mapping):
            return NotImplemented
        other_map = other if isinstance(other, HeaderMap) else HeaderMap(other)
        return dict(self.lower_items()) == dict(other_map.lower_items())

    def __repr__(self) -> str:
        return f'HeaderMap({dict(self.items())!r})'

    def lower_items(self) -> Iterator[tuple[str, str]]:
        return ((lowered, value) for lowered, (_, value) in self._store.items())

    def copy(self) -> HeaderMap:
        return HeaderMap(self.items())


@dc.dataclass(frozen=True, slots=True)
class ProgressEvent:
    '''
    Upload or download progress for one attempt.
    '''
    loaded: int
    total: int | None = None

    @property
    def fraction(self) -> float | None:
        if not self.total:
            return None
        return self.loaded / self.total


ProgressCallback = Callable[[ProgressEvent], None]


def default_validate_status(status: int) -> bool:
    return 200 <= status <= 299


def _copy_data(data: Any) -> Any:
    if isinstance(data, (dict, list)):
        return copy.deepcopy(data)
    return data


@dc.dataclass(slots=True)
class RequestConfig:
    '''
    Configuration for one request, or the defaults of a client.

    Times are in seconds. ``validate_status=None`` accepts 200-299.
    ``max_concurrent_requests`` is read from the client defaults only; a
    per-call value is validated but does not change the ceiling.
    '''
    base_url: str = ''
    url: str = ''
    method: str = 'GET'
    headers: HeaderMap = dc.field(default_factory=HeaderMap)
    data: Any = None
    timeout: float | None = 5.0
    max_retries: int = 3
    retry_delay: float = 1.0
    max_concurrent_requests: int = 10
    response_type: ResponseType = 'json'
    validate_status: StatusValidator | None = None
    on_upload_progress: ProgressCallback | None = None
    on_download_progress: ProgressCallback | None = None
    is_retry_request: bool = False

    def __post_init__(self) -> None:
        if not isinstance(self.headers, HeaderMap):
            self.headers = HeaderMap(self.headers or {})
        self.validate()

    def validate(self) -> None:
        '''
        Check option ranges and normalize the method.

        Raises
        ------
        InvalidConfigError
        '''
        self.method = str(self.method).upper()
        if self.max_retries < 0:
            raise InvalidConfigError('max_retries must be >= 0', config=self)
        if self.retry_delay < 0:
            raise InvalidConfigError('retry_delay must be >= 0', config=self)
        if self.max_concurrent_requests < 1:
            raise InvalidConfigError(
                'max_concurrent_requests must be >= 1', config=self
            )
        if self.timeout is not None and self.timeout <= 0:
            raise InvalidConfigError(
                'timeout must be > 0 when provided', config=self
            )
        if self.response_type not in get_args(ResponseType):
            raise InvalidConfigError(
                f'Unsupported response_type: {self.response_type!r}',
                config=self,
            )

    def status_ok(self, status: int) -> bool:
        validator = self.validate_status or default_validate_status
        return bool(validator(status))

    def clone(self) -> Self:
        '''
        Field-wise copy used when building a retried attempt.

        Headers and container bodies are copied; callables (status
        predicate, progress callbacks) are shared, so they keep firing on
        retried attempts.

        Returns
        -------
        RequestConfig
        '''
        return dc.replace(
            self,
            headers=self.headers.copy(),
            data=_copy_data(self.data),
        )

    def as_dict(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in CONFIG_FIELDS}


CONFIG_FIELDS: frozenset[str] = frozenset(
    f.name for f in dc.fields(RequestConfig)
)

ConfigLayer = RequestConfig | Mapping[str, Any] | None

_FIELD_DEFAULTS = RequestConfig()


def _layer_items(layer: RequestConfig | Mapping[str, Any]) -> dict[str, Any]:
    if isinstance(layer, RequestConfig):
        # fields left at their default keep the value of the lower layer
        return {
            name: value
            for name, value in layer.as_dict().items()
            if value != getattr(_FIELD_DEFAULTS, name)
        }

    items = dict(layer)
    unknown = set(items) - CONFIG_FIELDS
    if unknown:
        raise InvalidConfigError(
            f"Unknown config option(s): {', '.join(sorted(unknown))}"
        )
    return items


def merge_config(defaults: RequestConfig, *layers: ConfigLayer) -> RequestConfig:
    '''
    Overlay configuration layers on a copy of ``defaults``.

    A `RequestConfig` layer overlays the fields that differ from their
    dataclass default, a mapping only the keys it holds. Headers merge
    key-wise with the later layer winning.

    Parameters
    ----------
    defaults : RequestConfig
    *layers : RequestConfig | Mapping[str, Any] | None

    Returns
    -------
    RequestConfig

    Raises
    ------
    InvalidConfigError
        On unknown keys or out of range values.
    '''
    merged = defaults.clone()
    for layer in layers:
        if layer is None:
            continue
        for key, value in _layer_items(layer).items():
            if key == 'headers':
                merged.headers.update(value or {})
            else:
                setattr(merged, key, value)

    merged.validate()
    return merged
