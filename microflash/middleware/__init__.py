"""
Middleware Package

Provides the FastAPI error-handling boundary and the service exception
hierarchy it understands.

Usage:
    from microflash.middleware import StateError, setup_error_handling
"""

from microflash.middleware.error_handling import (
    AuthorizationError,
    ErrorHandlingMiddleware,
    NotFoundError,
    ServiceError,
    StateError,
    TransientError,
    ValidationError,
    setup_error_handling,
)

__all__ = [
    "AuthorizationError",
    "ErrorHandlingMiddleware",
    "NotFoundError",
    "ServiceError",
    "StateError",
    "TransientError",
    "ValidationError",
    "setup_error_handling",
]
