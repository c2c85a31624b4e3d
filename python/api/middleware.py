"""
FastAPI Middleware for the Launchpad Gate API

Provides CORS configuration, request logging, and global error handling.
Every error leaves the service as {"error": "<message>"}.
"""

import os
import time
import uuid
import logging
from typing import Callable, List

from fastapi import FastAPI, Request, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from config_manager import ConfigurationError
from database.errors import ValidationError, InvalidSignatureError
from database.repositories import EntityNotFoundError
from log_utils import sanitize_for_logging
from security_logger import get_security_logger

logger = logging.getLogger(__name__)

# Wallet clients call the handlers from arbitrary origins
DEFAULT_CORS_ORIGINS = ["*"]

CORS_ALLOW_HEADERS = [
    "authorization",
    "x-client-info",
    "apikey",
    "content-type",
    "x-provider-signature",
    "x-api-key",
    "x-request-id",
]


def setup_cors(app: FastAPI) -> None:
    """Configure CORS middleware for the application.

    Permissive by default. Origins can be restricted via the CORS_ORIGINS
    environment variable (comma-separated list of allowed origins).
    """
    cors_origins_env = os.getenv("CORS_ORIGINS", "")
    if cors_origins_env:
        allowed_origins: List[str] = [o.strip() for o in cors_origins_env.split(",") if o.strip()]
    else:
        allowed_origins = DEFAULT_CORS_ORIGINS

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        # Credentials cannot be combined with a wildcard origin
        allow_credentials="*" not in allowed_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=CORS_ALLOW_HEADERS,
        expose_headers=["X-Request-ID", "X-Processing-Time-MS", "Content-Disposition"],
    )


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware for logging all requests with sanitized inputs."""

    async def dispatch(self, request: Request, call_next: Callable):
        """Process request and log details."""
        start_time = time.time()
        request_id = sanitize_for_logging(
            request.headers.get("X-Request-ID", ""), max_length=64
        ) or uuid.uuid4().hex

        request.state.request_id = request_id
        request.state.start_time = start_time

        sanitized_path = sanitize_for_logging(str(request.url.path))
        logger.info(
            "Request: method=%s path=%s request_id=%s",
            request.method,
            sanitized_path,
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


def create_error_response(message: str, status_code: int = 500) -> JSONResponse:
    """Create the error response body {"error": message}."""
    return JSONResponse(status_code=status_code, content={"error": message})


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "unknown")


def format_validation_errors(errors: list) -> str:
    """Collapse pydantic error entries into one readable message."""
    if not errors:
        return "Invalid request"
    messages = []
    for err in errors:
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query")]
        msg = str(err.get("msg", "Invalid value"))
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, "):]
        messages.append(f"{'.'.join(loc)}: {msg}" if loc else msg)
    return "; ".join(messages)


async def validation_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for request/body validation failures (400)."""
    errors = exc.errors() if hasattr(exc, "errors") else []
    message = format_validation_errors(errors)

    logger.warning(
        "Validation failed: %s request_id=%s",
        sanitize_for_logging(message),
        _request_id(request),
    )
    first_field = ""
    if errors:
        first_field = ".".join(str(p) for p in errors[0].get("loc", ()))
    get_security_logger().log_validation_failure(
        field=first_field,
        error_code="REQUEST_VALIDATION",
        input_value=message,
        source=str(request.url.path),
        request_id=_request_id(request),
        source_ip=request.client.host if request.client else "",
    )
    return create_error_response(message, status_code=400)


async def client_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for service validation and not-found errors (400)."""
    logger.warning(
        "Client error: type=%s message=%s request_id=%s",
        type(exc).__name__,
        sanitize_for_logging(str(exc)),
        _request_id(request),
    )
    return create_error_response(str(exc), status_code=400)


async def invalid_signature_handler(request: Request, exc: InvalidSignatureError) -> JSONResponse:
    """Handler for webhook signature failures (401)."""
    logger.error(
        "Invalid webhook signature: request_id=%s", _request_id(request)
    )
    return create_error_response("Invalid signature", status_code=401)


async def database_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Handler for store failures (500 with the store message)."""
    message = str(getattr(exc, "orig", None) or exc)
    logger.error(
        "Database error: type=%s message=%s request_id=%s",
        type(exc).__name__,
        sanitize_for_logging(message),
        _request_id(request),
    )
    return create_error_response(sanitize_for_logging(message), status_code=500)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Handler for HTTP exceptions.

    Args:
        request: FastAPI request object
        exc: HTTPException that was raised

    Returns:
        Error response with the exception's status
    """
    logger.warning(
        "HTTP exception: status=%d detail=%s request_id=%s",
        exc.status_code,
        sanitize_for_logging(str(exc.detail)),
        _request_id(request),
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail if isinstance(exc.detail, str) else str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler for unhandled errors.

    Sanitizes error messages to prevent information leakage.
    """
    logger.error(
        "Unhandled exception: type=%s message=%s request_id=%s",
        type(exc).__name__,
        sanitize_for_logging(str(exc)),
        _request_id(request),
    )

    if isinstance(exc, ConfigurationError):
        return create_error_response(
            "Service configuration is invalid. Please contact administrator.",
            status_code=503,
        )

    if isinstance(exc, HTTPException):
        return create_error_response(
            exc.detail if isinstance(exc.detail, str) else str(exc.detail),
            status_code=exc.status_code,
        )

    return create_error_response(
        "An unexpected error occurred. Please try again later.",
        status_code=500,
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Configure exception handlers for the application."""
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(PydanticValidationError, validation_exception_handler)
    app.add_exception_handler(ValidationError, client_error_handler)
    app.add_exception_handler(EntityNotFoundError, client_error_handler)
    app.add_exception_handler(InvalidSignatureError, invalid_signature_handler)
    app.add_exception_handler(SQLAlchemyError, database_exception_handler)
    app.add_exception_handler(ConfigurationError, global_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)
