"""
FastAPI Middleware for the Electricity Billing API

Provides CORS configuration, request logging, and global error handling.
"""

import time
import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional

from fastapi import FastAPI, Request, HTTPException
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from config_manager import ConfigurationError
from database.connection import STORE_FAILURES
from database.repositories import StoreUnavailableError
from log_sanitizer import sanitize_for_logging
from security_logger import get_security_logger

logger = logging.getLogger(__name__)

GENERIC_RETRY_MESSAGE = "The service is busy. Please try again later."


def setup_cors(app: FastAPI, allowed_origins: List[str]) -> None:
    """Configure CORS middleware for the browser front end."""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Processing-Time-MS"],
    )


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware for logging all requests with sanitized inputs."""

    async def dispatch(self, request: Request, call_next: Callable):
        """Process request and log details."""
        start_time = time.time()
        request_id = sanitize_for_logging(
            request.headers.get("X-Request-ID", "")
        )[:64] or str(time.time_ns())

        request.state.request_id = request_id
        request.state.start_time = start_time

        logger.info(
            "Request: method=%s path=%s request_id=%s",
            request.method,
            sanitize_for_logging(str(request.url.path)),
            request_id,
        )

        try:
            response = await call_next(request)
        except Exception as exc:
            processing_time_ms = int((time.time() - start_time) * 1000)
            logger.error(
                "Request failed: error=%s processing_time_ms=%d request_id=%s",
                sanitize_for_logging(str(exc)),
                processing_time_ms,
                request_id,
            )
            raise

        processing_time_ms = int((time.time() - start_time) * 1000)
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Processing-Time-MS"] = str(processing_time_ms)

        logger.info(
            "Response: status=%d processing_time_ms=%d request_id=%s",
            response.status_code,
            processing_time_ms,
            request_id,
        )
        return response


def create_error_response(
    code: str,
    message: str,
    status_code: int = 500,
    field: Optional[str] = None,
    suggestion: Optional[str] = None,
) -> JSONResponse:
    """Create a standardized error response.

    Args:
        code: Error code for programmatic handling
        message: Human-readable message
        status_code: HTTP status code
        field: Field that caused the error (optional)
        suggestion: How to fix the error (optional)
    """
    error_detail = {
        "code": code,
        "message": message,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    if field:
        error_detail["field"] = field
    if suggestion:
        error_detail["suggestion"] = suggestion

    return JSONResponse(status_code=status_code, content={"error": error_detail})


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler for unhandled errors.

    Sanitizes error messages to prevent information leakage.
    """
    request_id = getattr(request.state, "request_id", "unknown")

    logger.error(
        "Unhandled exception: type=%s message=%s request_id=%s",
        type(exc).__name__,
        sanitize_for_logging(str(exc)),
        request_id,
    )

    return create_error_response(
        code="INTERNAL_ERROR",
        message="An unexpected error occurred. Please try again later.",
        status_code=500,
    )


async def store_unavailable_handler(request: Request, exc: Exception) -> JSONResponse:
    """Database unreachable or timed out: 503 without internal detail."""
    request_id = getattr(request.state, "request_id", "unknown")

    logger.error(
        "Store unavailable: type=%s request_id=%s",
        type(exc).__name__,
        request_id,
    )

    return create_error_response(
        code="STORE_UNAVAILABLE",
        message=GENERIC_RETRY_MESSAGE,
        status_code=503,
    )


async def configuration_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Configuration error: %s", sanitize_for_logging(str(exc)))
    return create_error_response(
        code="CONFIGURATION_ERROR",
        message="Service configuration is invalid. Please contact administrator.",
        status_code=503,
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Record rejected input in the security log, then answer as FastAPI does."""
    request_id = getattr(request.state, "request_id", "")
    security = get_security_logger()

    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ())]
        value = error.get("input")
        # Never log passwords; whole-body inputs may contain one
        if "password" in location or not isinstance(value, str):
            value = ""
        security.log_validation_failure(
            field=".".join(location[1:]) or "body",
            error_code=error.get("type", ""),
            input_value=value,
            source=sanitize_for_logging(request.url.path),
            request_id=request_id,
        )

    return await request_validation_exception_handler(request, exc)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for HTTP exceptions."""
    request_id = getattr(request.state, "request_id", "unknown")

    logger.warning(
        "HTTP exception: status=%d detail=%s request_id=%s",
        exc.status_code,
        sanitize_for_logging(str(exc.detail)),
        request_id,
    )

    return create_error_response(
        code=f"HTTP_{exc.status_code}",
        message=exc.detail if isinstance(exc.detail, str) else str(exc.detail),
        status_code=exc.status_code,
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Configure exception handlers for the application."""
    app.add_exception_handler(Exception, global_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StoreUnavailableError, store_unavailable_handler)
    for failure in STORE_FAILURES:
        app.add_exception_handler(failure, store_unavailable_handler)
    app.add_exception_handler(ConfigurationError, configuration_error_handler)
