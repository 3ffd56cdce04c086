"""
Error Handling Middleware

Provides consistent, informative error responses across the API.

Features:
- Standardized error response format
- Correlation IDs for log tracking
- Sanitized responses (hides internal details in production)
- Custom exception classes carrying a closed ErrorCode

Usage:
    from microflash.middleware.error_handling import StateError, setup_error_handling

    # Add middleware to app
    setup_error_handling(app, debug=settings.DEBUG)

    # Raise custom exceptions from services
    raise StateError(ErrorCode.SESSION_INCOMPLETE)

Exception handling hierarchy:
    - HTTPException: Re-raised for FastAPI's built-in handler
    - ServiceError: Custom exceptions → structured JSON response
    - Exception: Catch-all for unexpected errors → sanitized response
"""

import logging
import traceback
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.middleware.base import BaseHTTPMiddleware

from microflash.enums.errors import ErrorCode

logger = logging.getLogger(__name__)


# =============================================================================
# Error Response Schema
# =============================================================================


class ErrorResponse(BaseModel):
    """Standardized error response."""

    error: str  # Error code (e.g., "SESSION_EXPIRED")
    message: str  # Human-readable message
    error_id: str  # For log correlation
    details: Optional[dict] = None  # Additional context (sanitized)
    timestamp: datetime


# Default human-readable messages per code
_DEFAULT_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.INVALID_RATING: "Rating must be one of AGAIN, HARD, GOOD, EASY",
    ErrorCode.INVALID_PRIORITY: "Priority must be between 0 and 100",
    ErrorCode.INVALID_PROFILE: "Reminder settings are out of range",
    ErrorCode.INVALID_PUSH_TOKEN: "Push token is not a valid Expo push token",
    ErrorCode.DECK_NESTING_TOO_DEEP: "Decks can only be nested one level deep",
    ErrorCode.NO_ELIGIBLE_ITEMS: "No cards are due for review",
    ErrorCode.SESSION_NOT_ACTIVE: "Sprint is not active",
    ErrorCode.SESSION_EXPIRED: "Sprint has expired and was abandoned",
    ErrorCode.ITEM_ALREADY_GRADED: "This card has already been reviewed in this sprint",
    ErrorCode.ITEM_NOT_IN_SESSION: "The card is not part of this sprint",
    ErrorCode.SESSION_ABANDONED: "Sprint was abandoned",
    ErrorCode.SESSION_INCOMPLETE: "Sprint still has unreviewed cards",
    ErrorCode.SESSION_NOT_OWNED: "You do not have permission to access this sprint",
    ErrorCode.RESOURCE_NOT_OWNED: "You do not have permission to access this resource",
    ErrorCode.SESSION_NOT_FOUND: "Sprint not found",
    ErrorCode.CARD_NOT_FOUND: "Card not found",
    ErrorCode.DECK_NOT_FOUND: "Deck not found",
    ErrorCode.USER_NOT_FOUND: "User not found",
    ErrorCode.DELIVERY_FAILED: "Push delivery failed",
}


# =============================================================================
# Custom Exceptions
# =============================================================================


class ServiceError(Exception):
    """
    Base exception for service errors.

    Provides consistent error handling with:
    - HTTP status code
    - A closed ErrorCode for categorization
    - Optional details for debugging

    Example:
        raise NotFoundError(ErrorCode.SESSION_NOT_FOUND, details={"sprint_id": 7})
    """

    status_code: int = 500
    default_code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(
        self,
        code: Optional[ErrorCode] = None,
        message: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        self.code = code or self.default_code
        self.message = message or _DEFAULT_MESSAGES.get(self.code, self.code.value)
        self.details = details
        super().__init__(self.message)

    @property
    def error_code(self) -> str:
        return self.code.value


class ValidationError(ServiceError):
    """
    Data validation error.

    Raised when input data fails validation, before any mutation.
    """

    status_code = 422
    default_code = ErrorCode.VALIDATION_ERROR


class StateError(ServiceError):
    """
    Business-rule violation.

    Never auto-retried; safe to retry after client-side correction.
    """

    status_code = 409

    def __init__(self, code: ErrorCode, message: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(code, message, details)
        if code == ErrorCode.NO_ELIGIBLE_ITEMS:
            self.status_code = 404


class AuthorizationError(ServiceError):
    """
    Authorization error.

    Raised when user lacks permission. Always fatal to the request.
    """

    status_code = 403
    default_code = ErrorCode.RESOURCE_NOT_OWNED


class NotFoundError(ServiceError):
    """
    Resource not found error.

    Raised when a requested resource doesn't exist.
    """

    status_code = 404


class TransientError(ServiceError):
    """
    Delivery transport failure.

    Retried only by the next scheduled tick, never within the same tick.
    """

    status_code = 503
    default_code = ErrorCode.DELIVERY_FAILED


# =============================================================================
# Error Handling Middleware
# =============================================================================


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """
    Global error handling middleware.

    - Catches unhandled exceptions
    - Logs with correlation ID
    - Returns consistent error format
    - Hides internal details in production
    """

    def __init__(self, app, debug: bool = False):
        """
        Initialize middleware.

        Args:
            app: FastAPI/Starlette application
            debug: Whether to include stack traces in responses
        """
        super().__init__(app)
        self.debug = debug

    async def dispatch(self, request: Request, call_next):
        """Process request and handle any errors."""
        error_id = str(uuid4())[:8]

        try:
            response = await call_next(request)
            return response

        except HTTPException:
            # Let FastAPI handle HTTP exceptions
            raise

        except ServiceError as e:
            logger.warning(
                f"[{error_id}] {e.error_code}: {e.message}",
                extra={
                    "error_id": error_id,
                    "error_code": e.error_code,
                    "path": request.url.path,
                    "method": request.method,
                    "details": e.details,
                },
            )

            return JSONResponse(
                status_code=e.status_code,
                content={
                    "error": e.error_code,
                    "message": e.message,
                    "error_id": error_id,
                    "details": e.details if self.debug else None,
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                },
            )

        except Exception as e:
            # Log full traceback for unexpected errors
            logger.error(
                f"[{error_id}] Unhandled error: {type(e).__name__}: {e}",
                extra={
                    "error_id": error_id,
                    "path": request.url.path,
                    "method": request.method,
                    "traceback": traceback.format_exc(),
                },
            )

            content = {
                "error": ErrorCode.INTERNAL_ERROR.value,
                "message": "An unexpected error occurred",
                "error_id": error_id,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }

            if self.debug:
                content["details"] = {
                    "exception": type(e).__name__,
                    "message": str(e),
                    "traceback": traceback.format_exc(),
                }

            return JSONResponse(status_code=500, content=content)


def setup_error_handling(app: FastAPI, debug: bool = False) -> None:
    """
    Configure error handling on the FastAPI app.

    Args:
        app: FastAPI application instance
        debug: Whether to include stack traces in responses
    """
    app.add_middleware(ErrorHandlingMiddleware, debug=debug)
    logger.info(f"Error handling middleware enabled (debug={debug})")
