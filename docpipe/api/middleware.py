"""API middleware: CORS, request logging, and error handling.

Every error leaves the API as an :class:`ErrorResponse` body
(``{error, stage, detail}``):

- ``DocpipeError`` subclasses escaping a route are converted by
  :class:`ErrorHandlingMiddleware`, using the class's ``status_code``.
- ``HTTPException`` and request validation failures are converted by the
  exception handlers installed by :func:`install_error_handlers`.

Middleware order (last added runs first)::

    Client -> RequestLogging -> ErrorHandling -> route handler

so the request log records the final status code.
"""

from __future__ import annotations

import time

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from docpipe.api.schemas import ErrorResponse
from docpipe.utils.errors import DocpipeError
from docpipe.utils.logging import get_logger

_logger: structlog.BoundLogger = get_logger(__name__)


def _error_json(status_code: int, error: str, detail: str, stage: str | None = None) -> JSONResponse:
    body = ErrorResponse(error=error, stage=stage, detail=detail)
    return JSONResponse(status_code=status_code, content=body.model_dump())


# ---------------------------------------------------------------------------
# CORS
# ---------------------------------------------------------------------------


def configure_cors(app: FastAPI, *, allowed_origins: list[str] | None = None) -> None:
    """Add CORS middleware; ``["*"]`` unless *allowed_origins* is given."""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


# ---------------------------------------------------------------------------
# Request Logging
# ---------------------------------------------------------------------------


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every HTTP request with method, path, status code, and duration."""

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        start = time.perf_counter()
        response: Response | None = None

        try:
            response = await call_next(request)
            return response
        finally:
            duration_ms = round((time.perf_counter() - start) * 1000, 2)
            status_code = response.status_code if response else 500
            _logger.info(
                "http_request",
                method=request.method,
                path=str(request.url.path),
                status=status_code,
                duration_ms=duration_ms,
            )


# ---------------------------------------------------------------------------
# Error Handling
# ---------------------------------------------------------------------------


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Catch ``DocpipeError`` subclasses and return structured JSON errors.

    The client sees the error class name, the stage and the message; the
    provider name and anything else stays in the server log.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        try:
            return await call_next(request)
        except DocpipeError as exc:
            log = _logger.warning if exc.status_code < 500 else _logger.error
            log(
                "application_error",
                error_type=type(exc).__name__,
                message=exc.message,
                provider=exc.provider_name,
                stage=exc.stage,
                path=str(request.url.path),
            )
            return _error_json(exc.status_code, type(exc).__name__, exc.message, exc.stage)


async def _http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    response = _error_json(exc.status_code, "HTTPException", str(exc.detail))
    if exc.headers:
        response.headers.update(exc.headers)
    return response


async def _validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = "; ".join(
        f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg', '')}"
        for err in exc.errors()
    )
    _logger.info("request_validation_failed", path=str(request.url.path), errors=len(exc.errors()))
    return _error_json(422, "RequestValidationError", problems)


def install_error_handlers(app: FastAPI) -> None:
    """Register the ``ErrorResponse`` handlers and error middleware on *app*."""
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.add_exception_handler(RequestValidationError, _validation_exception_handler)
    app.add_middleware(ErrorHandlingMiddleware)
