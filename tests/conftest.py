"""Shared fakes for the courier test suite."""

from __future__ import annotations

import asyncio
import inspect
import json
from collections.abc import Callable
from typing import Any

import pytest

from courier import HttpClient, RetryController, TransportError, TransportRequest, TransportResponse


def make_raw(
    status: int = 200,
    body: bytes | str = b"",
    headers: dict[str, str] | None = None,
    status_text: str = "OK",
) -> TransportResponse:
    """Build a transport response with a raw header block."""
    if isinstance(body, str):
        body = body.encode("utf-8")
    block = "\r\n".join(f"{k}: {v}" for k, v in (headers or {}).items())
    return TransportResponse(
        status=status,
        status_text=status_text,
        header_block=block,
        body=body,
        handle=f"handle-{status}",
    )


def json_raw(payload: Any, status: int = 200) -> TransportResponse:
    return make_raw(
        status=status,
        body=json.dumps(payload),
        headers={"Content-Type": "application/json; charset=utf-8"},
    )


Handler = Callable[[TransportRequest], Any]


class FakeTransport:
    """Scriptable transport that records calls and in-flight concurrency.

    ``handler`` receives each :class:`TransportRequest` and returns a
    :class:`TransportResponse` (or an awaitable of one), or raises
    :class:`TransportError`.
    """

    def __init__(self, handler: Handler | None = None) -> None:
        self.handler: Handler = handler or (lambda request: make_raw())
        self.calls: list[TransportRequest] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.closed = False

    async def send(self, request: TransportRequest) -> TransportResponse:
        self.calls.append(request)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            result = self.handler(request)
            if inspect.isawaitable(result):
                result = await result
            return result
        finally:
            self.in_flight -= 1

    async def aclose(self) -> None:
        self.closed = True


def failing(times: int, kind: str = "network", then: TransportResponse | None = None) -> Handler:
    """Handler that raises ``TransportError(kind)`` ``times`` times, then succeeds."""
    state = {"left": times}

    def handler(request: TransportRequest) -> TransportResponse:
        if state["left"] > 0:
            state["left"] -= 1
            raise TransportError(kind, f"{kind} failure", handle="xhr")
        return then or make_raw(body="done")

    return handler


class RecordingSleep:
    """Stand-in for :func:`asyncio.sleep` that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def client(transport: FakeTransport, sleep: RecordingSleep) -> HttpClient:
    return HttpClient(
        base_url="https://api.example.com",
        transport=transport,
        retry=RetryController(sleep=sleep),
    )
