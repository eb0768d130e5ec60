from __future__ import annotations

import random
from collections.abc import AsyncIterator, Callable

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from flaky_demo.config import get_settings
from flaky_demo.main import create_app
from flaky_demo.observability.metrics import MetricsRegistry
from flaky_demo.observability.sink import LogSink
from flaky_demo.services.failure_injector import FailureInjector


@pytest.fixture(autouse=True)
def test_environment(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("LOG_FILE_NAME", "main.log")
    monkeypatch.setenv("FAILURE_RATE", "0.5")
    get_settings.cache_clear()

    yield

    get_settings.cache_clear()


@pytest.fixture
def log_sink() -> LogSink:
    sink = LogSink.open(get_settings().log_file_path)
    yield sink
    sink.close()


@pytest.fixture
def log_lines(log_sink: LogSink) -> Callable[[], list[str]]:
    def _read() -> list[str]:
        log_sink.flush()
        return log_sink.path.read_text(encoding="utf-8").splitlines()

    return _read


@pytest.fixture
def metrics() -> MetricsRegistry:
    return MetricsRegistry(prefix="test")


@pytest.fixture
def failure_injector() -> FailureInjector:
    return FailureInjector(rate=0.0, rng=random.Random(7))


@pytest.fixture
def app(log_sink: LogSink, metrics: MetricsRegistry, failure_injector: FailureInjector) -> FastAPI:
    return create_app(sink=log_sink, metrics=metrics, failure_injector=failure_injector)


@pytest.fixture
async def api_client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app, client=("127.0.0.1", 40123))
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
