"""End-to-end tests for HttpClient over a scripted transport."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from courier import (
    HTTPStatusError,
    HttpClient,
    HttpxTransport,
    InvalidConfigError,
    NetworkError,
    RequestAbortedError,
    RequestConfig,
    RequestTimeoutError,
    Response,
    RetryController,
    TransportRequest,
    URLRejectedError,
)
from courier._errors import ECONNABORTED

from .conftest import FakeTransport, failing, json_raw, make_raw


async def _settle() -> None:
    for _ in range(10):
        await asyncio.sleep(0)


def _sent_headers(request: TransportRequest) -> dict[str, str]:
    return {name.lower(): value for name, value in request.headers}


class GatedHandler:
    """Transport handler that holds each request until its path is released."""

    def __init__(self) -> None:
        self.gates: dict[str, asyncio.Event] = {}

    def _gate(self, url: str) -> asyncio.Event:
        return self.gates.setdefault(url.rsplit("/", 1)[-1], asyncio.Event())

    async def __call__(self, request: TransportRequest):
        await self._gate(request.url).wait()
        return make_raw(body=request.url)

    def release(self, name: str) -> None:
        self._gate(name).set()


class TestDispatch:
    @pytest.mark.asyncio
    async def test_respects_concurrency_limit_in_fifo_order(self, sleep) -> None:
        handler = GatedHandler()
        transport = FakeTransport(handler)
        client = HttpClient(
            base_url="https://api.example.com",
            max_concurrent_requests=2,
            transport=transport,
            retry=RetryController(sleep=sleep),
        )

        tasks = [asyncio.create_task(client.get(f"/{i}")) for i in range(5)]
        await _settle()

        assert [c.url for c in transport.calls] == [
            "https://api.example.com/0",
            "https://api.example.com/1",
        ]
        assert client.active_count == 2
        assert client.pending_count == 3

        handler.release("0")
        await _settle()
        assert transport.calls[-1].url == "https://api.example.com/2"

        for i in range(5):
            handler.release(str(i))
        responses = await asyncio.gather(*tasks)

        assert [r.data for r in responses] == [f"https://api.example.com/{i}" for i in range(5)]
        assert transport.max_in_flight == 2
        assert client.active_count == 0
        assert client.pending_count == 0

    @pytest.mark.asyncio
    async def test_per_request_options_do_not_touch_defaults(self, client, transport) -> None:
        await client.get("/x", headers={"X-Req": "1"}, timeout=1.5)

        sent = transport.calls[0]
        assert _sent_headers(sent)["x-req"] == "1"
        assert sent.timeout == 1.5
        assert "X-Req" not in client.defaults.headers
        assert client.defaults.timeout == 5.0

    @pytest.mark.asyncio
    async def test_request_config_per_call_keeps_client_defaults(self, sleep) -> None:
        transport = FakeTransport()
        client = HttpClient(
            base_url="https://api.example.com",
            timeout=9.0,
            transport=transport,
            retry=RetryController(sleep=sleep),
        )

        await client.get("/users", RequestConfig(headers={"X-A": "1"}))  # type: ignore[arg-type]

        sent = transport.calls[0]
        assert sent.url == "https://api.example.com/users"
        assert sent.timeout == 9.0
        assert _sent_headers(sent)["x-a"] == "1"

    @pytest.mark.asyncio
    async def test_unknown_option_is_rejected(self, client, transport) -> None:
        with pytest.raises(InvalidConfigError, match="bogus"):
            await client.get("/x", bogus=1)
        assert transport.calls == []


class TestRetries:
    @pytest.mark.asyncio
    async def test_backoff_doubles_until_success(self, client, transport, sleep) -> None:
        transport.handler = failing(3)

        response = await client.get("/flaky")

        assert response.data == "done"
        assert len(transport.calls) == 4
        assert sleep.delays == [1.0, 2.0, 4.0]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self, client, transport, sleep) -> None:
        transport.handler = failing(10)

        with pytest.raises(NetworkError) as excinfo:
            await client.get("/down", max_retries=2, retry_delay=0.5)

        error = excinfo.value
        assert len(transport.calls) == 3
        assert sleep.delays == [0.5, 1.0]
        assert str(error) == "Network Error: network failure"
        assert error.request == "xhr"
        assert error.config.url == "/down"
        assert error.config.is_retry_request

    @pytest.mark.asyncio
    async def test_resubmitted_error_config_gets_one_attempt(self, client, transport) -> None:
        transport.handler = failing(10)
        with pytest.raises(NetworkError) as excinfo:
            await client.get("/down", max_retries=1)
        assert len(transport.calls) == 2

        with pytest.raises(NetworkError):
            await client.request(excinfo.value.config)

        assert len(transport.calls) == 3

    @pytest.mark.asyncio
    async def test_interceptors_run_once_per_call_not_per_attempt(self, client, transport) -> None:
        seen: list[str] = []

        def count(config: RequestConfig) -> RequestConfig:
            seen.append(config.url)
            return config

        client.add_request_interceptor(count)
        transport.handler = failing(2)

        await client.get("/flaky")

        assert seen == ["/flaky"]
        assert len(transport.calls) == 3

    @pytest.mark.asyncio
    async def test_progress_callbacks_survive_retries(self, client, transport) -> None:
        def on_upload(event) -> None:
            pass

        def on_download(event) -> None:
            pass

        transport.handler = failing(2)

        await client.post("/upload", b"abc", on_upload_progress=on_upload, on_download_progress=on_download)

        assert all(c.on_upload_progress is on_upload for c in transport.calls)
        assert all(c.on_download_progress is on_download for c in transport.calls)

    @pytest.mark.asyncio
    async def test_zero_retries(self, client, transport, sleep) -> None:
        transport.handler = failing(1)

        with pytest.raises(NetworkError):
            await client.get("/once", max_retries=0)

        assert len(transport.calls) == 1
        assert sleep.delays == []


class TestErrors:
    @pytest.mark.asyncio
    async def test_status_error_carries_response(self, client, transport) -> None:
        transport.handler = lambda request: make_raw(404, body="missing", status_text="Not Found")

        with pytest.raises(HTTPStatusError) as excinfo:
            await client.get("/nope", max_retries=0)

        error = excinfo.value
        assert str(error) == "Request failed with status code 404"
        assert error.status == 404
        assert error.response.data == "missing"
        assert error.response.status_text == "Not Found"
        assert error.request == "handle-404"

    @pytest.mark.asyncio
    async def test_custom_status_validation(self, client, transport) -> None:
        transport.handler = lambda request: make_raw(404)

        response = await client.get("/nope", validate_status=lambda status: status < 500)

        assert response.status == 404
        assert len(transport.calls) == 1

    @pytest.mark.asyncio
    async def test_timeout(self, client, transport) -> None:
        transport.handler = failing(1, kind="timeout")

        with pytest.raises(RequestTimeoutError) as excinfo:
            await client.get("/slow", timeout=2.5, max_retries=0)

        assert str(excinfo.value) == "Timeout of 2.5s exceeded"
        assert excinfo.value.code == ECONNABORTED

    @pytest.mark.asyncio
    async def test_abort(self, client, transport) -> None:
        transport.handler = failing(1, kind="abort")

        with pytest.raises(RequestAbortedError) as excinfo:
            await client.get("/gone", max_retries=0)

        assert str(excinfo.value) == "Request aborted"
        assert excinfo.value.code == ECONNABORTED

    @pytest.mark.asyncio
    async def test_bad_url_fails_fast_without_sending(self, sleep) -> None:
        transport = FakeTransport()
        client = HttpClient(transport=transport, retry=RetryController(sleep=sleep))

        with pytest.raises(URLRejectedError):
            await client.get("/relative")

        assert transport.calls == []
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_unencodable_body_is_a_config_error(self, client, transport) -> None:
        with pytest.raises(InvalidConfigError):
            await client.post("/x", object())
        assert transport.calls == []


class TestInterceptors:
    @pytest.mark.asyncio
    async def test_request_then_response_order(self, client) -> None:
        order: list[str] = []

        def tag(name: str):
            def handler(value):
                order.append(name)
                return value
            return handler

        client.add_request_interceptor(tag("A"))
        client.add_request_interceptor(tag("B"))
        client.add_response_interceptor(tag("C"))
        client.add_response_interceptor(tag("D"))

        await client.get("/x")

        assert order == ["A", "B", "C", "D"]

    @pytest.mark.asyncio
    async def test_request_interceptor_can_rewrite_config(self, client, transport) -> None:
        def rewrite(config: RequestConfig) -> RequestConfig:
            config.url = "/rewritten"
            config.headers["X-Tenant"] = "acme"
            return config

        client.add_request_interceptor(rewrite)
        await client.get("/original")

        assert transport.calls[0].url == "https://api.example.com/rewritten"
        assert _sent_headers(transport.calls[0])["x-tenant"] == "acme"

    @pytest.mark.asyncio
    async def test_request_interceptor_failure_skips_dispatch(self, client, transport) -> None:
        seen: list[BaseException] = []

        def explode(config):
            raise RuntimeError("no token")

        def observe(error):
            seen.append(error)
            raise error

        client.add_request_interceptor(explode)
        client.add_response_interceptor(None, observe)

        with pytest.raises(RuntimeError, match="no token"):
            await client.get("/x")

        assert transport.calls == []
        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_response_rejection_handler_can_recover(self, client, transport) -> None:
        transport.handler = failing(5)
        fallback = Response(data="cached", status=200)
        client.add_response_interceptor(None, lambda error: fallback)

        response = await client.get("/x", max_retries=0)

        assert response is fallback

    @pytest.mark.asyncio
    async def test_request_interceptor_must_return_config(self, client, transport) -> None:
        client.add_request_interceptor(lambda config: None)

        with pytest.raises(InvalidConfigError) as excinfo:
            await client.get("/x")

        assert transport.calls == []
        assert excinfo.value.config is not None
        assert excinfo.value.config.url == "/x"
        assert excinfo.value.config.base_url == "https://api.example.com"

    @pytest.mark.asyncio
    async def test_ejected_interceptor_does_not_run(self, client) -> None:
        calls: list[str] = []

        def record(config):
            calls.append("ran")
            return config

        handle = client.add_request_interceptor(record)
        client.interceptors.request.eject(handle)
        await client.get("/x")

        assert calls == []


class TestBodies:
    @pytest.mark.asyncio
    async def test_json_response_is_parsed(self, client, transport) -> None:
        transport.handler = lambda request: json_raw({"id": 1, "tags": ["a"]})

        response = await client.get("/items/1")

        assert response.data == {"id": 1, "tags": ["a"]}
        assert response.headers["content-type"] == "application/json; charset=utf-8"
        assert response.config.url == "/items/1"
        assert response.request == "handle-200"

    @pytest.mark.asyncio
    async def test_malformed_json_is_returned_as_text(self, client, transport) -> None:
        transport.handler = lambda request: make_raw(
            body='{"id": ', headers={"Content-Type": "application/json"}
        )

        response = await client.get("/broken")

        assert response.data == '{"id": '

    @pytest.mark.asyncio
    async def test_verbs_and_bodies(self, client, transport) -> None:
        await client.post("/items", {"name": "a"})
        await client.put("/items/1", "raw text")
        await client.patch("/items/1", b"\x00")
        await client.delete("/items/1")
        await client.head("/items")
        await client.options("/items")

        methods = [c.method for c in transport.calls]
        assert methods == ["POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]

        post, put, patch, delete = transport.calls[:4]
        assert post.body == b'{"name": "a"}'
        assert _sent_headers(post)["content-type"] == "application/json"
        assert put.body == b"raw text"
        assert patch.body == b"\x00"
        assert delete.body is None

    @pytest.mark.asyncio
    async def test_method_is_normalized(self, client, transport) -> None:
        await client.request({"url": "/x", "method": "post"})
        assert transport.calls[0].method == "POST"


class TestAuthAndPlugins:
    @pytest.mark.asyncio
    async def test_basic_auth(self, client, transport) -> None:
        client.set_basic_auth("u", "p")

        await client.get("/me")

        assert client.defaults.headers["authorization"] == "Basic dTpw"
        assert _sent_headers(transport.calls[0])["authorization"] == "Basic dTpw"

    @pytest.mark.asyncio
    async def test_bearer_token(self, client, transport) -> None:
        client.set_auth_token("t0k3n")

        await client.get("/me")

        assert _sent_headers(transport.calls[0])["authorization"] == "Bearer t0k3n"

    def test_instances_do_not_share_defaults(self) -> None:
        first = HttpClient(transport=FakeTransport())
        second = HttpClient(transport=FakeTransport())

        first.set_auth_token("a")

        assert "Authorization" not in second.defaults.headers

    def test_use_installs_plugin_and_chains(self, client) -> None:
        installed: list[HttpClient] = []

        assert client.use(installed.append) is client
        assert installed == [client]

    def test_repr(self, client) -> None:
        assert repr(client) == "HttpClient(https://api.example.com, active=0, pending=0)"


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_aclose_closes_transport(self, client, transport) -> None:
        await client.aclose()
        assert transport.closed

    @pytest.mark.asyncio
    async def test_async_context_manager(self, transport) -> None:
        async with HttpClient(base_url="https://api.example.com", transport=transport) as client:
            await client.get("/x")
        assert transport.closed


class TestHttpxIntegration:
    @pytest.mark.asyncio
    async def test_round_trip_through_httpx(self) -> None:
        received: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            received["url"] = str(request.url)
            received["auth"] = request.headers.get("authorization")
            received["body"] = request.content
            return httpx.Response(201, json={"ok": True})

        transport = HttpxTransport(inner=httpx.MockTransport(handler))
        async with HttpClient(base_url="https://api.example.com/v1/", transport=transport) as client:
            client.set_auth_token("abc")
            response = await client.post("/items", {"a": 1})

        assert response.status == 201
        assert response.status_text == "Created"
        assert response.data == {"ok": True}
        assert received == {
            "url": "https://api.example.com/v1/items",
            "auth": "Bearer abc",
            "body": b'{"a": 1}',
        }

    @pytest.mark.asyncio
    async def test_server_errors_are_retried_through_httpx(self, sleep) -> None:
        attempts: list[int] = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(1)
            if len(attempts) == 1:
                return httpx.Response(503, text="busy")
            return httpx.Response(200, text="ready")

        client = HttpClient(
            base_url="https://api.example.com",
            transport=HttpxTransport(inner=httpx.MockTransport(handler)),
            retry=RetryController(sleep=sleep),
        )
        response = await client.get("/status", retry_delay=0.1)
        await client.aclose()

        assert response.data == "ready"
        assert len(attempts) == 2
        assert sleep.delays == [0.1]

    @pytest.mark.asyncio
    async def test_httpx_timeout_becomes_timeout_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("too slow", request=request)

        client = HttpClient(
            base_url="https://api.example.com",
            transport=HttpxTransport(inner=httpx.MockTransport(handler)),
        )
        with pytest.raises(RequestTimeoutError) as excinfo:
            await client.get("/slow", max_retries=0, timeout=3)
        await client.aclose()

        assert str(excinfo.value) == "Timeout of 3s exceeded"
        assert isinstance(excinfo.value.request, httpx.Request)
