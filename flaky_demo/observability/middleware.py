from __future__ import annotations

import asyncio
import uuid
from collections.abc import Sequence
from http import HTTPStatus
from time import perf_counter
from typing import Any, Callable

import structlog
from starlette.datastructures import Headers, MutableHeaders
from starlette.routing import BaseRoute, Match

from flaky_demo.errors import DEFAULT_ERROR_STATUS, RequestFailure, error_response
from flaky_demo.observability.formatting import (
    ErrorRecord,
    RequestRecord,
    Severity,
    classify,
    format_error_line,
    format_request_line,
    utc_timestamp,
)
from flaky_demo.observability.metrics import MetricsRegistry, RequestLabels
from flaky_demo.observability.sink import LogSink


FAILURE_SCOPE_KEY = "flaky_demo.failure"
CLIENT_CLOSED_REQUEST = 499


def record_failure(scope: dict[str, Any], failure: RequestFailure) -> None:
    """Hand a failure to the pipeline so finalisation can classify it."""

    scope[FAILURE_SCOPE_KEY] = failure


def resolve_route(scope: dict[str, Any], routes: Sequence[BaseRoute] = ()) -> str:
    """Matched route template, or the raw path when nothing matched."""

    template = getattr(scope.get("route"), "path", None)
    if isinstance(template, str):
        return template
    for route in routes:
        match, _ = route.matches(scope)
        if match == Match.FULL:
            template = getattr(route, "path", None)
            if isinstance(template, str):
                return template
    return scope.get("path") or "/"


def _original_url(scope: dict[str, Any]) -> str:
    path = scope.get("path") or "/"
    query = scope.get("query_string", b"").decode("latin-1")
    return f"{path}?{query}" if query else path


def _remote_address(scope: dict[str, Any]) -> str | None:
    client = scope.get("client")
    return client[0] if client else None


def _reason_phrase(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return f"HTTP {status_code}"


def _parse_int(value: str | None) -> int | None:
    try:
        return int(value) if value is not None else None
    except ValueError:
        return None


class RequestPipelineMiddleware:
    """Times every request, then writes its log lines and metrics exactly once.

    Route handlers and exception handlers never emit anything themselves: they
    either answer normally or leave a ``RequestFailure`` in the scope. Anything
    that escapes the wrapped app is turned into a JSON error response here.
    """

    def __init__(
        self,
        app: Callable[..., Any],
        *,
        sink: LogSink,
        metrics: MetricsRegistry,
        routes: Sequence[BaseRoute] = (),
    ) -> None:
        self.app = app
        self.sink = sink
        self.metrics = metrics
        self.routes = routes

    async def __call__(self, scope: dict[str, Any], receive: Callable[..., Any], send: Callable[..., Any]) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        request_id = str(uuid.uuid4())
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            path=scope.get("path"),
            method=scope.get("method"),
        )

        start = perf_counter()
        status_code: int | None = None
        content_length: int | None = None

        async def send_wrapper(message: dict[str, Any]) -> None:
            nonlocal status_code, content_length

            if message.get("type") == "http.response.start":
                status_code = int(message.get("status", DEFAULT_ERROR_STATUS))
                headers = MutableHeaders(scope=message)
                headers["X-Request-ID"] = request_id
                content_length = _parse_int(headers.get("content-length"))

            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except asyncio.CancelledError:
            if status_code is None:
                record_failure(scope, RequestFailure("Client Closed Request", CLIENT_CLOSED_REQUEST))
            raise
        except Exception as exc:
            failure = RequestFailure.from_exception(exc)
            record_failure(scope, failure)
            if status_code is not None:
                # Too late to answer with an error body.
                raise
            await error_response(failure)(scope, receive, send_wrapper)
        finally:
            self._finalize(scope, status_code, content_length, perf_counter() - start)
            structlog.contextvars.clear_contextvars()

    def _finalize(
        self,
        scope: dict[str, Any],
        status_code: int | None,
        content_length: int | None,
        elapsed: float,
    ) -> None:
        failure: RequestFailure | None = scope.get(FAILURE_SCOPE_KEY)
        if status_code is None:
            status_code = failure.effective_status if failure else DEFAULT_ERROR_STATUS

        method = scope.get("method") or "GET"
        record = RequestRecord(
            method=method,
            path=_original_url(scope),
            status_code=status_code,
            duration_seconds=elapsed,
            remote_address=_remote_address(scope),
            user_agent=Headers(scope=scope).get("user-agent"),
            content_length=content_length,
            timestamp=utc_timestamp(),
        )
        labels = RequestLabels(method=method, route=resolve_route(scope, self.routes), status_code=status_code)
        log = structlog.get_logger("access")

        self._write(format_request_line(record))
        self._observe(self.metrics.observe_duration, labels, elapsed)
        log.info("http_request", status_code=status_code, elapsed_ms=round(elapsed * 1000.0, 2))

        severity = classify(status_code)
        if severity is None:
            return

        if failure is None:
            failure = RequestFailure(message=_reason_phrase(status_code), status=status_code)
        error = ErrorRecord(request=record, message=failure.message, stack_trace=failure.stack, severity=severity)
        self._write(format_error_line(error))

        if severity is Severity.SERVER_ERROR:
            structlog.get_logger("errors").error(
                "server_error",
                status_code=status_code,
                message=failure.message,
                stack=failure.stack,
            )
            self._observe(self.metrics.increment_error, labels)
        else:
            structlog.get_logger("errors").warning(
                "client_error",
                status_code=status_code,
                message=failure.message,
            )

    def _write(self, line: str) -> None:
        try:
            self.sink.write_line(line)
        except Exception:
            # Log delivery problems must never reach the requester.
            structlog.get_logger("log_sink").exception("log_sink_write_failed")

    def _observe(self, fn: Callable[..., None], *args: Any) -> None:
        try:
            fn(*args)
        except Exception:
            structlog.get_logger("metrics").exception("metrics_observation_failed", metric=fn.__name__)
