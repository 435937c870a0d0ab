import logging
from collections.abc import Callable, Mapping
from typing import Any, Self

from courier._config import ConfigLayer, RequestConfig, merge_config
from courier._errors import (
    ECONNABORTED,
    HTTPStatusError,
    InvalidConfigError,
    NetworkError,
    RequestAbortedError,
    RequestTimeoutError,
    URLRejectedError,
)
from courier._interceptors import Fulfilled, Interceptors, Outcome, Rejected
from courier._queue import DispatchQueue
from courier._response import Response, parse_headers, transform_response_data
from courier._retry import RetryController
from courier._transport import (
    HttpxTransport,
    Transport,
    TransportError,
    TransportRequest,
    TransportResponse,
)
from courier._utils import basic_auth_value, build_full_url, encode_body


logger = logging.getLogger(__name__)


Plugin = Callable[['HttpClient'], Any]


def _error_from_transport(
    exc: TransportError,
    config: RequestConfig,
) -> NetworkError | RequestTimeoutError | RequestAbortedError:
    if exc.kind == 'timeout':
        return RequestTimeoutError(
            f'Timeout of {config.timeout}s exceeded',
            config=config,
            code=ECONNABORTED,
            request=exc.handle,
        )
    if exc.kind == 'abort':
        return RequestAbortedError(
            'Request aborted',
            config=config,
            code=ECONNABORTED,
            request=exc.handle,
        )
    return NetworkError(
        f'Network Error: {exc}' if str(exc) else 'Network Error',
        config=config,
        request=exc.handle,
    )


class HttpClient:
    '''
    Asynchronous HTTP client with interceptors, a bounded dispatch queue and
    retries with exponential backoff.

    Every call merges its options over ``defaults``, runs the request
    interceptors, waits for a dispatch slot, performs the attempt(s) and
    finally runs the response interceptors.

    Parameters
    ----------
    config : RequestConfig | Mapping[str, Any] | None
        Defaults for every request.
    transport : Transport | None
        The raw transport, by default an `HttpxTransport`.
    retry : RetryController | None
    **options
        Further defaults, e.g. ``base_url``, ``timeout``, ``max_retries``.
    '''

    def __init__(
        self,
        config: ConfigLayer = None,
        /,
        *,
        transport: Transport | None = None,
        retry: RetryController | None = None,
        **options: Any,
    ) -> None:
        self.defaults: RequestConfig = merge_config(RequestConfig(), config, options)
        self.interceptors = Interceptors()
        self._transport: Transport = transport or HttpxTransport()
        self._retry: RetryController = retry or RetryController()
        self._queue = DispatchQueue(
            self._dispatch,
            limit=lambda: self.defaults.max_concurrent_requests,
        )

    @property
    def active_count(self) -> int:
        return self._queue.active_count

    @property
    def pending_count(self) -> int:
        return self._queue.pending_count

    async def request(
        self,
        config: ConfigLayer = None,
        /,
        **overrides: Any,
    ) -> Response:
        '''
        Send a request through the full pipeline.

        Parameters
        ----------
        config : RequestConfig | Mapping[str, Any] | None
        **overrides
            Per-call options, applied after ``config``.

        Returns
        -------
        Response

        Raises
        ------
        HttpClientError
            Or whatever an interceptor raised and nothing recovered.
        '''
        merged = merge_config(self.defaults, config, overrides)
        request_chain = self.interceptors.request.snapshot()
        response_chain = self.interceptors.response.snapshot()

        outcome = await self.interceptors.request.apply(Outcome.of(merged), request_chain)
        if outcome.ok:
            outcome = await Outcome.capture(self._enqueue(outcome.value, merged))
        outcome = await self.interceptors.response.apply(outcome, response_chain)
        return outcome.unwrap()

    async def _enqueue(self, config: Any, origin: RequestConfig) -> Response:
        if not isinstance(config, RequestConfig):
            raise InvalidConfigError(
                'Request interceptors must resolve to a RequestConfig, '
                f'got {type(config).__name__}',
                config=origin,
            )
        config.validate()
        return await self._queue.enqueue(config)

    async def _dispatch(self, config: RequestConfig) -> Response:
        return await self._retry.run(self._send_once, config)

    async def _send_once(self, config: RequestConfig) -> Response:
        try:
            url = build_full_url(config.base_url, config.url)
        except ValueError as exc:
            raise URLRejectedError(str(exc), config=config) from exc

        headers = config.headers.copy()
        try:
            body = encode_body(config.data, headers)
        except TypeError as exc:
            raise InvalidConfigError(str(exc), config=config) from exc

        outgoing = TransportRequest(
            method=config.method,
            url=url,
            headers=list(headers.items()),
            body=body,
            timeout=config.timeout,
            on_upload_progress=config.on_upload_progress,
            on_download_progress=config.on_download_progress,
        )

        logger.debug(f'Sending request: {config.method} {url}')
        try:
            raw = await self._transport.send(outgoing)
        except TransportError as exc:
            raise _error_from_transport(exc, config) from exc

        response = self._build_response(raw, config)
        logger.debug(f'Received {response.status} for {config.method} {url}')
        if not config.status_ok(response.status):
            raise HTTPStatusError(
                f'Request failed with status code {response.status}',
                config=config,
                request=raw.handle,
                response=response,
            )
        return response

    @staticmethod
    def _build_response(raw: TransportResponse, config: RequestConfig) -> Response:
        headers = parse_headers(raw.header_block)
        return Response(
            data=transform_response_data(raw.body, config.response_type, headers),
            status=raw.status,
            status_text=raw.status_text,
            headers=headers,
            config=config,
            request=raw.handle,
        )

    async def _verb(
        self,
        method: str,
        url: str,
        config: ConfigLayer,
        overrides: Mapping[str, Any],
        **fixed: Any,
    ) -> Response:
        return await self.request(config, **{**overrides, 'method': method, 'url': url, **fixed})

    async def get(self, url: str, config: ConfigLayer = None, /, **overrides: Any) -> Response:
        return await self._verb('GET', url, config, overrides)

    async def delete(self, url: str, config: ConfigLayer = None, /, **overrides: Any) -> Response:
        return await self._verb('DELETE', url, config, overrides)

    async def head(self, url: str, config: ConfigLayer = None, /, **overrides: Any) -> Response:
        return await self._verb('HEAD', url, config, overrides)

    async def options(self, url: str, config: ConfigLayer = None, /, **overrides: Any) -> Response:
        return await self._verb('OPTIONS', url, config, overrides)

    async def post(
        self,
        url: str,
        data: Any = None,
        config: ConfigLayer = None,
        /,
        **overrides: Any,
    ) -> Response:
        return await self._verb('POST', url, config, overrides, data=data)

    async def put(
        self,
        url: str,
        data: Any = None,
        config: ConfigLayer = None,
        /,
        **overrides: Any,
    ) -> Response:
        return await self._verb('PUT', url, config, overrides, data=data)

    async def patch(
        self,
        url: str,
        data: Any = None,
        config: ConfigLayer = None,
        /,
        **overrides: Any,
    ) -> Response:
        return await self._verb('PATCH', url, config, overrides, data=data)

    def add_request_interceptor(
        self,
        fulfilled: Fulfilled | None,
        rejected: Rejected | None = None,
    ) -> int:
        return self.interceptors.request.use(fulfilled, rejected)

    def add_response_interceptor(
        self,
        fulfilled: Fulfilled | None,
        rejected: Rejected | None = None,
    ) -> int:
        return self.interceptors.response.use(fulfilled, rejected)

    def set_auth_token(self, token: str) -> None:
        self.defaults.headers['Authorization'] = f'Bearer {token}'

    def set_basic_auth(self, username: str, password: str) -> None:
        self.defaults.headers['Authorization'] = basic_auth_value(username, password)

    def use(self, plugin: Plugin) -> Self:
        '''
        Hand the client to ``plugin`` once, synchronously, so it can
        register interceptors or adjust defaults.

        Returns
        -------
        HttpClient
            The client itself, for chaining.
        '''
        plugin(self)
        return self

    async def aclose(self) -> None:
        await self._queue.aclose()
        await self._transport.aclose()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, *args) -> None:
        await self.aclose()

    def __repr__(self) -> str:
        base = self.defaults.base_url or '<no base_url>'
        return (
            f'{type(self).__name__}({base}, '
            f'active={self.active_count}, pending={self.pending_count})'
        )
