'''
**courier.plugins**
---------

Ready-made plugins for `HttpClient.use`. A plugin is any callable that
takes the client and registers interceptors on it::

    client = HttpClient(base_url='https://api.example.com')
    client.use(bearer_token(fetch_token)).use(log_requests())
'''
from __future__ import annotations

import inspect
import logging
import random
from collections.abc import Awaitable, Callable, Iterable
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from courier._config import RequestConfig
from courier._errors import HTTPStatusError, HttpClientError
from courier._response import Response

if TYPE_CHECKING:
    from courier._client import HttpClient


logger = logging.getLogger('courier')


TokenProvider = Callable[[], str | Awaitable[str]]
Refresher = Callable[[], Any | Awaitable[Any]]
Plugin = Callable[['HttpClient'], None]


USER_AGENTS = MappingProxyType({
    'chrome_windows': (
        'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 '
        '(KHTML, like Gecko) Chrome/118.0.0.0 Safari/537.36'
    ),
    'chrome_mac': (
        'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 '
        '(KHTML, like Gecko) Chrome/118.0.0.0 Safari/537.36'
    ),
    'firefox_linux': (
        'Mozilla/5.0 (X11; Linux x86_64; rv:109.0) '
        'Gecko/20100101 Firefox/118.0'
    ),
})


async def _call(func: Callable[[], Any]) -> Any:
    result = func()
    if inspect.isawaitable(result):
        return await result
    return result


def bearer_token(provider: TokenProvider) -> Plugin:
    '''
    Fetch a token before every request and send it as a bearer token.

    Parameters
    ----------
    provider : Callable[[], str | Awaitable[str]]

    Returns
    -------
    Plugin
    '''
    async def attach_token(config: RequestConfig) -> RequestConfig:
        token = await _call(provider)
        config.headers['Authorization'] = f'Bearer {token}'
        return config

    def install(client: HttpClient) -> None:
        client.add_request_interceptor(attach_token)

    return install


def refresh_on_unauthorized(
    refresh: Refresher,
    statuses: Iterable[int] = (401,),
) -> Plugin:
    '''
    Refresh credentials and resubmit a request once when it fails with one
    of ``statuses``. The resubmitted config is flagged as a retry, so it is
    neither retried by the retry controller nor refreshed again. Its stale
    Authorization header is dropped so the client default applies.

    Parameters
    ----------
    refresh : Callable[[], Any | Awaitable[Any]]
        Called before the resubmission, e.g. to update the client's
        default Authorization header.
    statuses : Iterable[int], optional
        by default (401,)

    Returns
    -------
    Plugin
    '''
    watched = frozenset(statuses)

    def install(client: HttpClient) -> None:
        async def on_error(error: BaseException) -> Response:
            if (
                not isinstance(error, HTTPStatusError)
                or error.status not in watched
                or error.config is None
                or error.config.is_retry_request
            ):
                raise error

            logger.debug(f'Got {error.status}, refreshing credentials and resubmitting')
            await _call(refresh)
            config = error.config.clone()
            config.is_retry_request = True
            config.headers.pop('Authorization', None)
            return await client.request(config)

        client.add_response_interceptor(None, on_error)

    return install


def user_agent(value: str | None = None) -> Plugin:
    '''
    Send a fixed User-Agent, or a browser-like one picked per request.

    Parameters
    ----------
    value : str | None, optional

    Returns
    -------
    Plugin
    '''
    def set_user_agent(config: RequestConfig) -> RequestConfig:
        config.headers['User-Agent'] = value or random.choice(list(USER_AGENTS.values()))
        return config

    def install(client: HttpClient) -> None:
        client.add_request_interceptor(set_user_agent)

    return install


def log_requests(level: int = logging.DEBUG) -> Plugin:
    '''
    Log every request, response and failure through the ``courier`` logger.
    Errors are logged and re-raised.

    Parameters
    ----------
    level : int, optional
        by default logging.DEBUG

    Returns
    -------
    Plugin
    '''
    def on_request(config: RequestConfig) -> RequestConfig:
        logger.log(level, f'--> {config.method} {config.base_url}{config.url}')
        return config

    def on_response(response: Response) -> Response:
        method = response.config.method if response.config else '?'
        logger.log(level, f'<-- {response.status} {response.status_text} ({method})')
        return response

    def on_error(error: BaseException) -> Any:
        if isinstance(error, HttpClientError) and error.config is not None:
            logger.log(level, f'<-- {error.config.method} {error.config.url} failed: {error}')
        else:
            logger.log(level, f'<-- request failed: {error!r}')
        raise error

    def install(client: HttpClient) -> None:
        client.add_request_interceptor(on_request)
        client.add_response_interceptor(on_response, on_error)

    return install
