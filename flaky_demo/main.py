from __future__ import annotations

import random

from fastapi import FastAPI

from flaky_demo.api.errors import install_exception_handlers
from flaky_demo.api.metrics import router as metrics_router
from flaky_demo.api.routes import router as demo_router
from flaky_demo.config import Settings, get_settings
from flaky_demo.observability.logging import configure_logging
from flaky_demo.observability.metrics import MetricsRegistry
from flaky_demo.observability.middleware import RequestPipelineMiddleware
from flaky_demo.observability.sink import LogSink
from flaky_demo.services.failure_injector import FailureInjector


def create_app(
    settings: Settings | None = None,
    *,
    sink: LogSink | None = None,
    metrics: MetricsRegistry | None = None,
    failure_injector: FailureInjector | None = None,
) -> FastAPI:
    """Build the service around an explicitly provided log sink and metrics registry.

    Opening the default sink raises ``LogSinkError`` when the log file cannot be
    created, which aborts startup.
    """

    settings = settings or get_settings()
    configure_logging(settings.log_level)

    sink = sink or LogSink.open(settings.log_file_path)
    metrics = metrics or MetricsRegistry(prefix=settings.metrics_prefix)
    failure_injector = failure_injector or FailureInjector(rate=settings.failure_rate, rng=random.Random())

    app = FastAPI(title="Flaky Demo", version="0.1.0")
    app.state.settings = settings
    app.state.sink = sink
    app.state.metrics = metrics
    app.state.failure_injector = failure_injector

    app.include_router(demo_router)
    app.include_router(metrics_router)
    install_exception_handlers(app)
    app.add_middleware(RequestPipelineMiddleware, sink=sink, metrics=metrics, routes=app.router.routes)

    @app.on_event("shutdown")
    def _shutdown() -> None:
        sink.close()

    return app
