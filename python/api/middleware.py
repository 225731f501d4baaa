"""
FastAPI Middleware for the ANPR Event API

Request logging with request IDs, CORS, and the exception handlers that turn
every failure into the envelope

    {"error": {"code": ..., "message": ..., "field": ..., "timestamp": ...}}
"""

import os
import time
import uuid
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from config_manager import ConfigurationError
from database.anpr_service import ANPRServiceError, InvalidInputError, NotFoundError
from xml_utils import sanitize_for_logging

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
PROCESSING_TIME_HEADER = "X-Processing-Time-MS"

# Used when CORS_ORIGINS is unset (local dashboards during development)
DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:8000",
    "http://127.0.0.1:3000",
    "http://127.0.0.1:8000",
]


def setup_cors(app: FastAPI) -> None:
    """Allow browser dashboards to read events.

    CORS_ORIGINS takes a comma-separated list of origins.
    """
    configured = [o.strip() for o in os.getenv("CORS_ORIGINS", "").split(",") if o.strip()]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=configured or DEFAULT_CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=[REQUEST_ID_HEADER, PROCESSING_TIME_HEADER],
    )


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "unknown")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log each request and response; camera webhooks are correlated by request ID."""

    async def dispatch(self, request: Request, call_next: Callable):
        started = time.perf_counter()
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = request_id

        logger.info(
            "Request: method=%s path=%s client=%s request_id=%s",
            request.method,
            sanitize_for_logging(request.url.path),
            request.client.host if request.client else "-",
            request_id,
        )

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                "Request failed: error=%s elapsed_ms=%d request_id=%s",
                sanitize_for_logging(str(exc)),
                (time.perf_counter() - started) * 1000,
                request_id,
            )
            raise

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        response.headers[REQUEST_ID_HEADER] = request_id
        response.headers[PROCESSING_TIME_HEADER] = str(elapsed_ms)

        logger.info(
            "Response: status=%d elapsed_ms=%d request_id=%s",
            response.status_code,
            elapsed_ms,
            request_id,
        )
        return response


def create_error_response(
    code: str,
    message: str,
    status_code: int = 500,
    field: Optional[str] = None,
) -> JSONResponse:
    """Build the error envelope.

    Args:
        code: Machine-readable code (e.g. EMPTY_PLATE, INVALID_XML)
        message: Human-readable message
        status_code: HTTP status code
        field: Offending input field, if any
    """
    error = {
        "code": code,
        "message": message,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if field:
        error["field"] = field
    return JSONResponse(status_code=status_code, content={"error": error})


async def service_exception_handler(request: Request, exc: ANPRServiceError) -> JSONResponse:
    """Map ingestion service errors: bad input 400, unknown record 404, else 500."""
    logger.warning(
        "Service error: type=%s message=%s request_id=%s",
        type(exc).__name__,
        sanitize_for_logging(str(exc)),
        _request_id(request),
    )

    if isinstance(exc, InvalidInputError):
        return create_error_response(exc.code, str(exc), 400, field=exc.field)
    if isinstance(exc, NotFoundError):
        return create_error_response("NOT_FOUND", str(exc), 404)
    # Storage failures must not leak SQL or connection details
    return create_error_response("SERVICE_ERROR", "The event could not be processed.", 500)


async def configuration_exception_handler(request: Request, exc: ConfigurationError) -> JSONResponse:
    logger.error("Configuration error: %s", sanitize_for_logging(str(exc)))
    return create_error_response(
        "CONFIGURATION_ERROR",
        "Service configuration is invalid. Please contact administrator.",
        503,
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Schema and type errors (including malformed JSON) are reported as 400."""
    field = None
    message = "Invalid request"

    errors = exc.errors()
    if errors:
        first = errors[0]
        path = [str(part) for part in first.get("loc", ()) if part not in ("body", "query")]
        field = ".".join(path) or None
        message = first.get("msg", message)

    logger.warning("Validation error: field=%s message=%s", field, sanitize_for_logging(message))
    return create_error_response("VALIDATION_ERROR", message, 400, field=field)


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "Unhandled exception: type=%s request_id=%s",
        type(exc).__name__,
        _request_id(request),
    )
    return create_error_response(
        "INTERNAL_ERROR",
        "An unexpected error occurred. Please try again later.",
        500,
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    logger.warning(
        "HTTP exception: status=%d detail=%s request_id=%s",
        exc.status_code,
        sanitize_for_logging(detail),
        _request_id(request),
    )
    response = create_error_response(f"HTTP_{exc.status_code}", detail, exc.status_code)
    if exc.headers:
        response.headers.update(exc.headers)
    return response


def setup_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ANPRServiceError, service_exception_handler)
    app.add_exception_handler(ConfigurationError, configuration_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)
