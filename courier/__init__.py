'''
**courier**
---------

An asyncio HTTP client with request/response interceptors, a bounded
concurrency dispatch queue, retries with exponential backoff and response
body normalization, on top of a pluggable raw transport (httpx by default).
'''
from courier._client import HttpClient
from courier._config import (
    HeaderMap,
    ProgressEvent,
    RequestConfig,
    default_validate_status,
    merge_config,
)
from courier._errors import (
    HTTPStatusError,
    HttpClientError,
    InvalidConfigError,
    NetworkError,
    RequestAbortedError,
    RequestTimeoutError,
    URLRejectedError,
)
from courier._interceptors import Interceptor, InterceptorManager, Outcome
from courier._queue import DispatchQueue
from courier._response import Response, parse_headers
from courier._retry import RetryController
from courier._transport import (
    HttpxTransport,
    Transport,
    TransportError,
    TransportOptions,
    TransportRequest,
    TransportResponse,
)

__all__ = [
    'HttpClient',
    'HeaderMap',
    'ProgressEvent',
    'RequestConfig',
    'default_validate_status',
    'merge_config',
    'HTTPStatusError',
    'HttpClientError',
    'InvalidConfigError',
    'NetworkError',
    'RequestAbortedError',
    'RequestTimeoutError',
    'URLRejectedError',
    'Interceptor',
    'InterceptorManager',
    'Outcome',
    'DispatchQueue',
    'Response',
    'parse_headers',
    'RetryController',
    'HttpxTransport',
    'Transport',
    'TransportError',
    'TransportOptions',
    'TransportRequest',
    'TransportResponse',
]
