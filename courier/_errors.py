'''
Error taxonomy for the courier request pipeline.

Every error that reaches a caller carries the configuration of the attempt
that produced it, so callers can inspect (or resubmit) what was sent.

Raises
------
HttpClientError
    _base class for everything raised by the pipeline_
'''
from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from courier._config import RequestConfig
    from courier._response import Response


ECONNABORTED = 'ECONNABORTED'


class HttpClientError(Exception):
    '''
    Base error for the courier client.

    Parameters
    ----------
    message : str
    config : RequestConfig | None
        The configuration of the attempt that failed.
    code : str | None
        A short machine readable code such as ``ECONNABORTED``.
    request : Any
        The raw transport handle for the attempt, when one exists.
    response : Response | None
        The normalized response when the server answered.
    '''

    def __init__(
        self,
        message: str,
        *,
        config: RequestConfig | None = None,
        code: str | None = None,
        request: Any = None,
        response: Response | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.config = config
        self.code = code
        self.request = request
        self.response = response

    def __repr__(self) -> str:
        return f'{type(self).__name__}({self.message!r}, code={self.code!r})'


class NetworkError(HttpClientError):
    '''
    The transport could not complete the exchange (DNS, refused, reset).
    '''


class RequestTimeoutError(HttpClientError):
    '''
    The attempt exceeded its configured timeout window.
    '''


class RequestAbortedError(HttpClientError):
    '''
    The transport reported the exchange as aborted.
    '''


class HTTPStatusError(HttpClientError):
    '''
    The server answered with a status rejected by ``validate_status``.
    The full response is available on ``.response``.
    '''

    @property
    def status(self) -> int | None:
        return self.response.status if self.response is not None else None


class URLRejectedError(HttpClientError, ValueError):
    '''
    Raised when the base URL and request URL do not combine into a
    usable http(s) URL.

    Parent: HttpClientError, ValueError
    '''


class InvalidConfigError(HttpClientError, ValueError):
    '''
    Raised for unknown or out of range configuration options.

    Parent: HttpClientError, ValueError
    '''
