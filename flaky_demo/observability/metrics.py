from __future__ import annotations

from typing import NamedTuple

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    GCCollector,
    Histogram,
    PlatformCollector,
    ProcessCollector,
    generate_latest,
)


# 5ms .. 10s
DURATION_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)
LABEL_NAMES = ("method", "route", "status_code")


class RequestLabels(NamedTuple):
    method: str
    route: str
    status_code: int

    def as_dict(self) -> dict[str, str]:
        return {"method": self.method, "route": self.route, "status_code": str(self.status_code)}


class MetricsRegistry:
    """Request duration histogram and error counter on a private Prometheus registry.

    One instance is created per application and handed to the request pipeline
    and the scrape endpoint. prometheus_client guards each metric with a lock,
    so observations from concurrent requests need no extra synchronisation.
    """

    content_type = CONTENT_TYPE_LATEST

    def __init__(self, *, prefix: str = "", default_collectors: bool = True) -> None:
        self.registry = CollectorRegistry(auto_describe=True)
        if default_collectors:
            ProcessCollector(namespace=prefix, registry=self.registry)
            PlatformCollector(registry=self.registry)
            GCCollector(registry=self.registry)

        self.http_request_duration = Histogram(
            "http_request_duration_seconds",
            "Duration of HTTP requests in seconds",
            labelnames=LABEL_NAMES,
            buckets=DURATION_BUCKETS,
            registry=self.registry,
        )
        self.application_errors = Counter(
            "application_errors",
            "Total count of application-level errors (responses with status >= 500)",
            labelnames=LABEL_NAMES,
            registry=self.registry,
        )

    def observe_duration(self, labels: RequestLabels, seconds: float) -> None:
        self.http_request_duration.labels(**labels.as_dict()).observe(max(float(seconds), 0.0))

    def increment_error(self, labels: RequestLabels) -> None:
        self.application_errors.labels(**labels.as_dict()).inc()

    def render_exposition(self) -> bytes:
        return generate_latest(self.registry)

    def sample_value(self, name: str, labels: RequestLabels | dict[str, str] | None = None) -> float | None:
        if isinstance(labels, RequestLabels):
            labels = labels.as_dict()
        return self.registry.get_sample_value(name, labels or {})

    def reset(self) -> None:
        """Drop every labelled series (used by tests)."""

        self.http_request_duration.clear()
        self.application_errors.clear()
