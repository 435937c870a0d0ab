'''
FIFO dispatch queue with a client-side concurrency ceiling.

Requests are admitted strictly in enqueue order. A request that has been
admitted runs to completion even if the caller stops waiting for it; its
slot is released when the worker settles, which immediately admits the
next pending request.
'''
from __future__ import annotations

import asyncio
import dataclasses as dc
import logging
from collections import deque
from collections.abc import Awaitable, Callable

from courier._config import RequestConfig
from courier._response import Response


logger = logging.getLogger(__name__)


Worker = Callable[[RequestConfig], Awaitable[Response]]


@dc.dataclass(slots=True)
class QueuedRequest:
    config: RequestConfig
    future: asyncio.Future[Response]


class DispatchQueue:
    '''
    Admits at most ``limit()`` concurrent worker calls and holds the rest
    in FIFO order.

    Parameters
    ----------
    worker : Callable[[RequestConfig], Awaitable[Response]]
        Performs one logical request (retries included).
    limit : Callable[[], int]
        Returns the current concurrency ceiling; read on every drain.
    '''
    __slots__ = ('_worker', '_limit', '_pending', '_active', '_tasks')

    def __init__(self, worker: Worker, limit: Callable[[], int]) -> None:
        self._worker = worker
        self._limit = limit
        self._pending: deque[QueuedRequest] = deque()
        self._active: int = 0
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def active_count(self) -> int:
        return self._active

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def enqueue(self, config: RequestConfig) -> asyncio.Future[Response]:
        '''
        Append a request and admit as many pending requests as the
        ceiling allows.

        Parameters
        ----------
        config : RequestConfig

        Returns
        -------
        asyncio.Future[Response]
            Settles with the worker's response or error.
        '''
        future: asyncio.Future[Response] = asyncio.get_running_loop().create_future()
        self._pending.append(QueuedRequest(config, future))
        self._drain()
        return future

    def _drain(self) -> None:
        while self._active < self._limit() and self._pending:
            item = self._pending.popleft()
            if item.future.done():
                # the caller was cancelled before a slot opened up
                continue

            self._active += 1
            logger.debug(
                f'Admitted {item.config.method} {item.config.url} '
                f'(active={self._active}, pending={len(self._pending)})'
            )
            task = asyncio.create_task(self._run(item))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _run(self, item: QueuedRequest) -> None:
        try:
            response = await self._worker(item.config)
        except asyncio.CancelledError:
            item.future.cancel()
            raise
        except Exception as exc:
            if not item.future.done():
                item.future.set_exception(exc)
        else:
            if not item.future.done():
                item.future.set_result(response)
        finally:
            self._active -= 1
            self._drain()

    async def aclose(self) -> None:
        '''
        Cancel running requests and fail everything still pending.
        '''
        while self._pending:
            self._pending.popleft().future.cancel()

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
