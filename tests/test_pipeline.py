from __future__ import annotations

import asyncio

import pytest
from httpx import ASGITransport, AsyncClient

from flaky_demo.main import create_app
from flaky_demo.observability.metrics import MetricsRegistry, RequestLabels
from flaky_demo.observability.middleware import RequestPipelineMiddleware, resolve_route
from flaky_demo.services.failure_injector import FailureInjector


class RecordingSink:
    """In-memory stand-in for LogSink."""

    def __init__(self) -> None:
        self.lines: list[str] = []

    def write_line(self, line: str) -> None:
        self.lines.append(line)

    def close(self) -> None:
        pass


class BrokenSink(RecordingSink):
    def write_line(self, line: str) -> None:
        raise OSError("disk full")


class BrokenMetrics(MetricsRegistry):
    def observe_duration(self, labels: RequestLabels, seconds: float) -> None:
        raise RuntimeError("registry exploded")

    def increment_error(self, labels: RequestLabels) -> None:
        raise RuntimeError("registry exploded")


class TeapotError(Exception):
    status = 418


def _client(app) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


def _build(sink=None, metrics=None):
    app = create_app(
        sink=sink or RecordingSink(),
        metrics=metrics or MetricsRegistry(default_collectors=False),
        failure_injector=FailureInjector(rate=0.0),
    )

    @app.get("/explode/{item}")
    async def explode(item: str) -> None:
        raise RuntimeError(f"kaboom {item}")

    @app.get("/teapot")
    async def teapot() -> None:
        raise TeapotError("short and stout")

    return app


def _http_scope(path: str) -> dict:
    return {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": "GET",
        "scheme": "http",
        "path": path,
        "raw_path": path.encode(),
        "root_path": "",
        "query_string": b"",
        "headers": [],
        "client": ("10.0.0.9", 5000),
        "server": ("test", 80),
    }


async def test_unexpected_exception_becomes_json_500_and_is_counted() -> None:
    sink, metrics = RecordingSink(), MetricsRegistry(default_collectors=False)
    app = _build(sink, metrics)

    async with _client(app) as client:
        resp = await client.get("/explode/42")

    assert resp.status_code == 500
    assert resp.json() == {"error": {"message": "kaboom 42", "status": 500}}

    labels = RequestLabels(method="GET", route="/explode/{item}", status_code=500)
    assert metrics.sample_value("http_request_duration_seconds_count", labels) == 1
    assert metrics.sample_value("application_errors_total", labels) == 1
    assert len(sink.lines) == 2
    assert "LEVEL=SERVER_ERROR" in sink.lines[1]
    assert "RuntimeError: kaboom 42" in sink.lines[1]


async def test_exception_status_attribute_is_honoured() -> None:
    sink, metrics = RecordingSink(), MetricsRegistry(default_collectors=False)
    app = _build(sink, metrics)

    async with _client(app) as client:
        resp = await client.get("/teapot")

    assert resp.status_code == 418
    assert resp.json() == {"error": {"message": "short and stout", "status": 418}}
    assert "LEVEL=CLIENT_ERROR" in sink.lines[1]
    labels = RequestLabels(method="GET", route="/teapot", status_code=418)
    assert metrics.sample_value("application_errors_total", labels) is None


async def test_sink_failures_never_reach_the_requester() -> None:
    metrics = MetricsRegistry(default_collectors=False)
    app = _build(BrokenSink(), metrics)

    async with _client(app) as client:
        ok = await client.get("/status")
        failed = await client.get("/error")

    assert ok.status_code == 200
    assert failed.status_code == 500
    assert failed.json()["error"]["message"] == "This endpoint always bombs"
    labels = RequestLabels(method="GET", route="/error", status_code=500)
    assert metrics.sample_value("application_errors_total", labels) == 1


async def test_registry_failures_never_reach_the_requester() -> None:
    sink = RecordingSink()
    app = _build(sink, BrokenMetrics(default_collectors=False))

    async with _client(app) as client:
        ok = await client.get("/status")
        failed = await client.get("/error")

    assert ok.status_code == 200
    assert failed.status_code == 500
    assert len(sink.lines) == 3


async def test_access_line_precedes_error_line() -> None:
    sink = RecordingSink()
    app = _build(sink)

    async with _client(app) as client:
        await client.get("/error")

    assert " || LEVEL=INFO || " in sink.lines[0]
    assert " || LEVEL=SERVER_ERROR || " in sink.lines[1]


async def test_cancelled_request_is_still_finalized() -> None:
    sink, metrics = RecordingSink(), MetricsRegistry(default_collectors=False)

    async def hanging_app(scope, receive, send) -> None:
        raise asyncio.CancelledError()

    middleware = RequestPipelineMiddleware(hanging_app, sink=sink, metrics=metrics)

    async def receive() -> dict:
        return {"type": "http.disconnect"}

    async def send(message: dict) -> None:
        pass

    with pytest.raises(asyncio.CancelledError):
        await middleware(_http_scope("/slow"), receive, send)

    assert len(sink.lines) == 2
    assert " || STATUS=499 || " in sink.lines[0]
    assert "REMOTE_IP=10.0.0.9" in sink.lines[0]
    assert 'MESSAGE="Client Closed Request"' in sink.lines[1]
    labels = RequestLabels(method="GET", route="/slow", status_code=499)
    assert metrics.sample_value("http_request_duration_seconds_count", labels) == 1


async def test_non_http_scopes_pass_through() -> None:
    sink = RecordingSink()
    seen: list[str] = []

    async def inner(scope, receive, send) -> None:
        seen.append(scope["type"])

    middleware = RequestPipelineMiddleware(inner, sink=sink, metrics=MetricsRegistry(default_collectors=False))
    await middleware({"type": "lifespan"}, None, None)

    assert seen == ["lifespan"]
    assert sink.lines == []


def test_resolve_route_prefers_template_then_raw_path() -> None:
    app = _build()
    scope = _http_scope("/explode/7")
    assert resolve_route(scope, app.router.routes) == "/explode/{item}"
    assert resolve_route(_http_scope("/nowhere"), app.router.routes) == "/nowhere"
