"""
Error handling for the recruitment API.

Domain errors render with their own status and code; everything else is
sanitized so applicant PII, credentials and SMTP secrets never reach a
response body.
"""

import logging
import re
import traceback
from typing import Any, Callable, Optional

from fastapi import Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError, ConnectionError as RedisConnectionError
from sqlalchemy.exc import SQLAlchemyError, IntegrityError, OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException

from core.exceptions import RecruitmentError

logger = logging.getLogger(__name__)

# Patterns for sensitive data that should never be logged or returned
SENSITIVE_PATTERNS = [
    re.compile(r'password["\s:=]+[^"\s,}]+', re.IGNORECASE),
    re.compile(r'token["\s:=]+[^"\s,}]+', re.IGNORECASE),
    re.compile(r'api[_-]?key["\s:=]+[^"\s,}]+', re.IGNORECASE),
    re.compile(r'secret["\s:=]+[^"\s,}]+', re.IGNORECASE),
    re.compile(r'authorization["\s:]+[^"\s,}]+', re.IGNORECASE),
    re.compile(r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b'),  # Email
    re.compile(r'\b\d{12}\b'),  # Aadhaar
    re.compile(r'(?<!\d)[6-9]\d{9}(?!\d)'),  # Mobile number
]


def sanitize_error_message(message: Any) -> str:
    """
    Remove sensitive information from error messages.

    Args:
        message: Original error message

    Returns:
        Sanitized error message
    """
    sanitized = str(message)
    for pattern in SENSITIVE_PATTERNS:
        sanitized = pattern.sub('[REDACTED]', sanitized)
    return sanitized


def get_safe_error_details(exc: Exception, include_traceback: bool = False) -> dict[str, Any]:
    """
    Extract safe error details without exposing sensitive information.

    Args:
        exc: The exception to extract details from
        include_traceback: Whether to include the stack trace (debug only)

    Returns:
        Dictionary with safe error details
    """
    details = {
        "type": type(exc).__name__,
        "message": sanitize_error_message(str(exc)),
    }
    if include_traceback:
        details["traceback"] = traceback.format_exc()
    return details


def error_response(
    status_code: int,
    code: str,
    message: str,
    path: str,
    method: str,
    details: Optional[Any] = None,
    request_id: Optional[str] = None,
) -> JSONResponse:
    """Build the standard error envelope."""
    body: dict[str, Any] = {
        "code": code,
        "message": message,
        "path": path,
        "method": method,
    }
    if details:
        body["details"] = details
    if request_id:
        body["request_id"] = request_id
    return JSONResponse(status_code=status_code, content={"error": body})


def recruitment_error_response(exc: RecruitmentError, path: str, method: str) -> JSONResponse:
    log = logger.warning if exc.status_code < 500 else logger.error
    log(f"{exc.code}: {method} {path} - {sanitize_error_message(exc.message)}")
    return error_response(
        exc.status_code,
        exc.code,
        sanitize_error_message(exc.message),
        path,
        method,
        details=exc.details or None,
    )


def format_validation_errors(exc: RequestValidationError) -> list[dict[str, Any]]:
    """
    Format validation errors into a user-friendly structure.

    Args:
        exc: The validation exception

    Returns:
        List of formatted validation errors
    """
    errors = []
    for error in exc.errors():
        errors.append({
            "field": ".".join(str(loc) for loc in error["loc"]),
            "message": sanitize_error_message(error["msg"]),
            "type": error["type"],
        })
    return errors


class ErrorHandlingMiddleware:
    """
    Outermost ASGI safety net.

    Anything that escapes the FastAPI exception handlers (errors raised in
    other middleware, database and cache failures) is mapped here to a
    sanitized JSON error envelope.
    """

    def __init__(self, app: Callable, debug: bool = False):
        self.app = app
        self.debug = debug

    async def __call__(self, scope: dict, receive: Callable, send: Callable) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        try:
            await self.app(scope, receive, send)
        except Exception as exc:
            response = self._handle_exception(exc, scope)
            await response(scope, receive, send)

    def _handle_exception(self, exc: Exception, scope: dict) -> Response:
        """
        Map an exception to an error response.

        Args:
            exc: The exception to handle
            scope: ASGI scope for context

        Returns:
            JSONResponse with error details
        """
        path = scope.get("path", "unknown")
        method = scope.get("method", "unknown")

        if isinstance(exc, RecruitmentError):
            return recruitment_error_response(exc, path, method)

        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
        code = "INTERNAL_SERVER_ERROR"
        message = "An unexpected error occurred"
        details = None

        if isinstance(exc, StarletteHTTPException):
            status_code = exc.status_code
            code = "HTTP_EXCEPTION"
            message = sanitize_error_message(exc.detail)
            logger.warning(f"HTTP exception: {method} {path} - {status_code} {message}")

        elif isinstance(exc, RequestValidationError):
            status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
            code = "VALIDATION_ERROR"
            message = "Request validation failed"
            details = format_validation_errors(exc)
            logger.warning(f"Validation error: {method} {path} - {details}")

        elif isinstance(exc, IntegrityError):
            status_code = status.HTTP_409_CONFLICT
            code = "INTEGRITY_ERROR"
            message = "Database integrity constraint violated"
            logger.error(f"Database integrity error: {method} {path}", exc_info=True)

        elif isinstance(exc, OperationalError):
            status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            code = "DATABASE_ERROR"
            message = "Database service temporarily unavailable"
            logger.error(f"Database operational error: {method} {path}", exc_info=True)

        elif isinstance(exc, SQLAlchemyError):
            code = "DATABASE_ERROR"
            message = "A database error occurred"
            logger.error(f"SQLAlchemy error: {method} {path}", exc_info=True)

        elif isinstance(exc, RedisConnectionError):
            status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            code = "CACHE_ERROR"
            message = "Cache service temporarily unavailable"
            logger.error(f"Redis connection error: {method} {path}", exc_info=True)

        elif isinstance(exc, RedisError):
            code = "CACHE_ERROR"
            message = "A cache error occurred"
            logger.error(f"Redis error: {method} {path}", exc_info=True)

        elif isinstance(exc, ValueError):
            status_code = status.HTTP_400_BAD_REQUEST
            code = "INVALID_INPUT"
            message = sanitize_error_message(str(exc)) or "Invalid input provided"
            logger.warning(f"Value error: {method} {path} - {message}")

        elif isinstance(exc, TimeoutError):
            status_code = status.HTTP_504_GATEWAY_TIMEOUT
            code = "TIMEOUT"
            message = "The request timed out"
            logger.error(f"Timeout error: {method} {path}")

        else:
            logger.error(
                f"Unhandled exception: {method} {path} - "
                f"{type(exc).__name__}: {sanitize_error_message(str(exc))}",
                exc_info=True,
            )

        if self.debug and status_code >= 500 and details is None:
            details = get_safe_error_details(exc, include_traceback=True)

        request_id = None
        headers = dict(scope.get("headers") or [])
        if headers.get(b"x-request-id"):
            request_id = headers[b"x-request-id"].decode()

        return error_response(status_code, code, message, path, method, details, request_id)


def setup_error_handlers(app):
    """
    Set up exception handlers for FastAPI application.

    Args:
        app: FastAPI application instance
    """

    @app.exception_handler(RecruitmentError)
    async def recruitment_exception_handler(request: Request, exc: RecruitmentError):
        """Render domain errors with their own status and code."""
        return recruitment_error_response(exc, str(request.url.path), request.method)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """Handle HTTP exceptions."""
        return error_response(
            exc.status_code,
            "HTTP_EXCEPTION",
            sanitize_error_message(exc.detail),
            str(request.url.path),
            request.method,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle validation errors."""
        return error_response(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            "VALIDATION_ERROR",
            "Request validation failed",
            str(request.url.path),
            request.method,
            details=format_validation_errors(exc),
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        """Handle all other exceptions."""
        logger.error(
            f"Unhandled exception: {request.method} {request.url.path} - "
            f"{type(exc).__name__}: {sanitize_error_message(str(exc))}",
            exc_info=True,
        )
        return error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "INTERNAL_SERVER_ERROR",
            "An unexpected error occurred",
            str(request.url.path),
            request.method,
        )
