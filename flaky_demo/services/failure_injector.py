from __future__ import annotations

import random

from fastapi import Request

from flaky_demo.errors import AppError


# (message, status) pairs a flaky route may fail with.
FAILURE_POOL: tuple[tuple[str, int], ...] = (
    ("Database connection failed", 503),
    ("Cache not available", 500),
    ("Token expired", 401),
)


class FailureInjector:
    """Coin-flip failure source for the flaky routes."""

    def __init__(self, rate: float = 0.5, rng: random.Random | None = None) -> None:
        if not 0.0 <= rate <= 1.0:
            raise ValueError("rate must be between 0 and 1")
        self.rate = rate
        self.rng = rng or random.Random()

    def maybe_fail(self) -> None:
        if self.rng.random() < self.rate:
            message, status = self.rng.choice(FAILURE_POOL)
            raise AppError(message, status=status)


async def maybe_fail(request: Request) -> None:
    """FastAPI dependency: fail the request according to the app's injector."""

    injector: FailureInjector = request.app.state.failure_injector
    injector.maybe_fail()
