"""Exception handlers that turn failures into the JSON error body.

Handlers only answer the request and record the failure on the scope; the
pipeline middleware decides what gets logged and counted.
"""

from __future__ import annotations

from http import HTTPStatus

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from flaky_demo.errors import AppError, RequestFailure, error_response
from flaky_demo.observability.middleware import record_failure


def _respond(request: Request, failure: RequestFailure) -> JSONResponse:
    record_failure(request.scope, failure)
    return error_response(failure)


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    return _respond(request, RequestFailure.from_exception(exc))


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Covers the router's own fallbacks: 404 for unmatched paths and 405."""

    message = exc.detail if isinstance(exc.detail, str) and exc.detail else HTTPStatus(exc.status_code).phrase
    response = _respond(request, RequestFailure(message=message, status=exc.status_code))
    if exc.headers:
        response.headers.update(exc.headers)
    return response


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    messages = [str(err.get("msg", "")) for err in exc.errors() if err.get("msg")]
    message = "; ".join(messages) or "Invalid request"
    return _respond(request, RequestFailure(message=message, status=400))


def install_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
