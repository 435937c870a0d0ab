'''
The raw transport used by the courier pipeline.

The pipeline only depends on the `Transport` protocol: given a finalized
`TransportRequest` it returns a `TransportResponse` or raises
`TransportError`. `HttpxTransport` is the default implementation, an
`httpx.AsyncClient` over an `httpx.AsyncHTTPTransport` with TCP keepalive
socket options and a modern TLS context.
'''
from __future__ import annotations

import contextlib
import dataclasses as dc
import logging
import socket
import ssl
from collections.abc import AsyncIterator
from typing import Any, Literal, Protocol, runtime_checkable

import httpx

from courier._config import ProgressCallback, ProgressEvent


logger = logging.getLogger(__name__)


TransportErrorKind = Literal['network', 'timeout', 'abort']

UPLOAD_CHUNK_SIZE = 65_536


class TransportError(Exception):
    '''
    Raised by a transport when the exchange could not complete.

    Parameters
    ----------
    kind : TransportErrorKind
        ``network``, ``timeout`` or ``abort``.
    message : str
    handle : Any
        The transport's own request object, if any.
    '''

    def __init__(
        self,
        kind: TransportErrorKind,
        message: str = '',
        *,
        handle: Any = None,
    ) -> None:
        super().__init__(message or kind)
        self.kind: TransportErrorKind = kind
        self.handle = handle


@dc.dataclass(frozen=True, slots=True)
class TransportRequest:
    method: str
    url: str
    headers: list[tuple[str, str]] = dc.field(default_factory=list)
    body: bytes | None = None
    timeout: float | None = None
    on_upload_progress: ProgressCallback | None = None
    on_download_progress: ProgressCallback | None = None


@dc.dataclass(frozen=True, slots=True)
class TransportResponse:
    '''
    What a transport hands back: status line, the raw header block
    (``Name: value`` lines) and the complete body.
    '''
    status: int
    status_text: str = ''
    header_block: str = ''
    body: bytes = b''
    handle: Any = None


@runtime_checkable
class Transport(Protocol):
    async def send(self, request: TransportRequest) -> TransportResponse: ...

    async def aclose(self) -> None: ...


def default_socket_options() -> list[tuple]:
    '''
    cross platform socket options for TCP connections

    Returns
    -------
    list[SockOpt]
    '''
    candidates = (
        ('TCP_NODELAY', socket.IPPROTO_TCP, 1),
        ('SO_KEEPALIVE', socket.SOL_SOCKET, 1),
        ('TCP_KEEPIDLE', socket.IPPROTO_TCP, 60),
        ('TCP_KEEPINTVL', socket.IPPROTO_TCP, 10),
        ('TCP_KEEPCNT', socket.IPPROTO_TCP, 5),
    )
    return [
        (level, getattr(socket, name), value)
        for name, level, value in candidates
        if hasattr(socket, name)
    ]


def default_ssl_context() -> ssl.SSLContext:
    '''
    TLS 1.2+ client context with hostname verification and no TLS
    compression.

    Returns
    -------
    ssl.SSLContext
    '''
    ctx = ssl.create_default_context(purpose=ssl.Purpose.SERVER_AUTH)
    ctx.minimum_version = ssl.TLSVersion.TLSv1_2
    ctx.check_hostname = True
    ctx.verify_mode = ssl.CERT_REQUIRED
    ctx.options |= ssl.OP_NO_COMPRESSION

    with contextlib.suppress(NotImplementedError):
        ctx.set_alpn_protocols(['http/1.1'])

    return ctx


def _default_limits() -> httpx.Limits:
    return httpx.Limits(
        max_connections=100,
        max_keepalive_connections=20,
        keepalive_expiry=15,
    )


@dc.dataclass(slots=True)
class TransportOptions:
    '''
    Options for `HttpxTransport`. Good defaults are provided.
    '''
    follow_redirects: bool = True
    trust_env: bool = False
    verify_tls: bool = True
    limits: httpx.Limits = dc.field(default_factory=_default_limits)


def format_header_block(headers: httpx.Headers) -> str:
    encoding = headers.encoding
    return '\r\n'.join(
        f'{name.decode(encoding)}: {value.decode(encoding)}'
        for name, value in headers.raw
    )


def _handle_of(exc: httpx.RequestError) -> httpx.Request | None:
    try:
        return exc.request
    except RuntimeError:
        return None


async def _upload_stream(
    body: bytes,
    on_progress: ProgressCallback,
) -> AsyncIterator[bytes]:
    total = len(body)
    for offset in range(0, total, UPLOAD_CHUNK_SIZE):
        chunk = body[offset:offset + UPLOAD_CHUNK_SIZE]
        yield chunk
        on_progress(ProgressEvent(loaded=offset + len(chunk), total=total))


class HttpxTransport:
    '''
    `Transport` backed by `httpx.AsyncClient`.

    Parameters
    ----------
    inner : httpx.AsyncBaseTransport | None
        Replaces the network transport, e.g. with ``httpx.MockTransport``.
    options : TransportOptions | None
    '''
    __slots__ = ('_client', '_options')

    def __init__(
        self,
        *,
        inner: httpx.AsyncBaseTransport | None = None,
        options: TransportOptions | None = None,
    ) -> None:
        self._options: TransportOptions = options or TransportOptions()
        if inner is None:
            inner = httpx.AsyncHTTPTransport(
                socket_options=default_socket_options(),
                verify=default_ssl_context() if self._options.verify_tls else False,
                trust_env=self._options.trust_env,
                limits=self._options.limits,
            )

        self._client = httpx.AsyncClient(
            transport=inner,
            follow_redirects=self._options.follow_redirects,
            trust_env=self._options.trust_env,
        )

    async def send(self, request: TransportRequest) -> TransportResponse:
        '''
        Perform one exchange and read the whole body.

        Raises
        ------
        TransportError
        '''
        content: bytes | AsyncIterator[bytes] | None = request.body
        if request.body and request.on_upload_progress is not None:
            content = _upload_stream(request.body, request.on_upload_progress)
            if not any(name.lower() == 'content-length' for name, _ in request.headers):
                request = dc.replace(
                    request,
                    headers=[
                        *request.headers,
                        ('Content-Length', str(len(request.body))),
                    ],
                )

        try:
            async with self._client.stream(
                request.method,
                request.url,
                headers=request.headers,
                content=content,
                timeout=httpx.Timeout(request.timeout),
            ) as response:
                body = await self._read_body(response, request.on_download_progress)
        except httpx.TimeoutException as exc:
            raise TransportError('timeout', str(exc), handle=_handle_of(exc)) from exc
        except httpx.RequestError as exc:
            raise TransportError('network', str(exc), handle=_handle_of(exc)) from exc

        return TransportResponse(
            status=response.status_code,
            status_text=response.reason_phrase,
            header_block=format_header_block(response.headers),
            body=body,
            handle=response.request,
        )

    @staticmethod
    async def _read_body(
        response: httpx.Response,
        on_progress: ProgressCallback | None,
    ) -> bytes:
        length = response.headers.get('content-length')
        total = int(length) if length and length.isdigit() else None

        chunks: list[bytes] = []
        loaded = 0
        async for chunk in response.aiter_bytes():
            chunks.append(chunk)
            loaded += len(chunk)
            if on_progress is not None:
                on_progress(ProgressEvent(loaded=loaded, total=total))

        return b''.join(chunks)

    async def aclose(self) -> None:
        await self._client.aclose()
