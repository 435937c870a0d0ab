'''
Interceptor chains for the request and response side of the pipeline.

A chain is applied to an `Outcome`, which is either a value or an error.
Values flow through ``fulfilled`` handlers and errors through ``rejected``
handlers. A handler that raises turns the outcome into an error; a
``rejected`` handler that returns normally recovers it into a value.
'''
from __future__ import annotations

import dataclasses as dc
import inspect
import itertools
import logging
from collections.abc import Awaitable, Callable, Iterator
from typing import Any, Self


logger = logging.getLogger(__name__)


Fulfilled = Callable[[Any], Any | Awaitable[Any]]
Rejected = Callable[[BaseException], Any | Awaitable[Any]]


async def _resolve(result: Any) -> Any:
    if inspect.isawaitable(result):
        return await result
    return result


@dc.dataclass(frozen=True, slots=True)
class Outcome:
    '''
    A settled pipeline value: exactly one of ``value`` or ``error``.
    '''
    value: Any = None
    error: Exception | None = None

    @classmethod
    def of(cls, value: Any) -> Self:
        return cls(value=value)

    @classmethod
    def failed(cls, error: Exception) -> Self:
        return cls(error=error)

    @classmethod
    async def capture(cls, awaitable: Awaitable[Any]) -> Self:
        try:
            return cls.of(await awaitable)
        except Exception as exc:
            return cls.failed(exc)

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> Any:
        if self.error is not None:
            raise self.error
        return self.value


@dc.dataclass(frozen=True, slots=True)
class Interceptor:
    fulfilled: Fulfilled | None = None
    rejected: Rejected | None = None

    async def handle(self, outcome: Outcome) -> Outcome:
        if outcome.error is None:
            handler, argument = self.fulfilled, outcome.value
        else:
            handler, argument = self.rejected, outcome.error

        if handler is None:
            return outcome

        try:
            return Outcome.of(await _resolve(handler(argument)))
        except Exception as exc:
            return Outcome.failed(exc)


class InterceptorManager:
    '''
    An ordered registry of interceptors.

    Handler ids are handed out from a counter and never reused, so ejecting
    one handler never shifts the ids (or the order) of the others.
    '''
    __slots__ = ('_handlers', '_ids')

    def __init__(self) -> None:
        self._handlers: dict[int, Interceptor] = {}
        self._ids = itertools.count()

    def use(
        self,
        fulfilled: Fulfilled | None = None,
        rejected: Rejected | None = None,
    ) -> int:
        '''
        Register a handler pair at the end of the chain.

        Parameters
        ----------
        fulfilled : Callable | None
            Receives the value, returns the next value (may be awaitable).
        rejected : Callable | None
            Receives the error; returning recovers, raising propagates.

        Returns
        -------
        int
            The handler id, usable with `eject`.
        '''
        handler_id = next(self._ids)
        self._handlers[handler_id] = Interceptor(fulfilled, rejected)
        return handler_id

    def eject(self, handler_id: int) -> None:
        if self._handlers.pop(handler_id, None) is None:
            logger.debug(f'eject() ignored unknown interceptor id {handler_id}')

    def clear(self) -> None:
        self._handlers.clear()

    def snapshot(self) -> tuple[Interceptor, ...]:
        return tuple(self._handlers.values())

    def __iter__(self) -> Iterator[Interceptor]:
        return iter(self.snapshot())

    def __len__(self) -> int:
        return len(self._handlers)

    def __contains__(self, handler_id: object) -> bool:
        return handler_id in self._handlers

    async def apply(
        self,
        outcome: Outcome,
        handlers: tuple[Interceptor, ...] | None = None,
    ) -> Outcome:
        '''
        Run ``outcome`` through the chain in insertion order.

        Parameters
        ----------
        outcome : Outcome
        handlers : tuple[Interceptor, ...] | None
            A snapshot taken earlier; defaults to the current handlers.

        Returns
        -------
        Outcome
        '''
        for interceptor in self.snapshot() if handlers is None else handlers:
            outcome = await interceptor.handle(outcome)
        return outcome


@dc.dataclass(frozen=True, slots=True)
class Interceptors:
    request: InterceptorManager = dc.field(default_factory=InterceptorManager)
    response: InterceptorManager = dc.field(default_factory=InterceptorManager)
