from __future__ import annotations

import traceback
from dataclasses import dataclass

from fastapi.responses import JSONResponse


DEFAULT_ERROR_STATUS = 500


class AppError(Exception):
    """An error raised by a route, optionally carrying the HTTP status to answer with."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status = status


@dataclass(frozen=True)
class RequestFailure:
    message: str
    status: int | None = None
    stack: str | None = None

    @property
    def effective_status(self) -> int:
        return self.status if self.status is not None else DEFAULT_ERROR_STATUS

    @classmethod
    def from_exception(cls, exc: BaseException) -> RequestFailure:
        status = getattr(exc, "status", None)
        # bool is an int subclass; don't treat it as a status code.
        if not isinstance(status, int) or isinstance(status, bool):
            status = None
        message = getattr(exc, "message", None) or str(exc) or type(exc).__name__
        stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)).rstrip()
        return cls(message=str(message), status=status, stack=stack or None)


def error_response(failure: RequestFailure) -> JSONResponse:
    status = failure.effective_status
    return JSONResponse(
        status_code=status,
        content={"error": {"message": failure.message, "status": status}},
    )
