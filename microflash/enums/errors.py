"""
Error Codes

Closed set of machine-readable error codes carried from the service layer
to the API boundary. Callers branch on these codes, never on message text.
"""

from enum import Enum


class ErrorCode(str, Enum):
    """Every error code the service layer can raise."""

    # Validation (malformed input, rejected before any mutation)
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_RATING = "INVALID_RATING"
    INVALID_PRIORITY = "INVALID_PRIORITY"
    INVALID_PROFILE = "INVALID_PROFILE"
    INVALID_PUSH_TOKEN = "INVALID_PUSH_TOKEN"
    DECK_NESTING_TOO_DEEP = "DECK_NESTING_TOO_DEEP"

    # Business-rule violations
    NO_ELIGIBLE_ITEMS = "NO_ELIGIBLE_ITEMS"
    SESSION_NOT_ACTIVE = "SESSION_NOT_ACTIVE"
    SESSION_EXPIRED = "SESSION_EXPIRED"
    ITEM_ALREADY_GRADED = "ITEM_ALREADY_GRADED"
    ITEM_NOT_IN_SESSION = "ITEM_NOT_IN_SESSION"
    SESSION_ABANDONED = "SESSION_ABANDONED"
    SESSION_INCOMPLETE = "SESSION_INCOMPLETE"

    # Authorization
    SESSION_NOT_OWNED = "SESSION_NOT_OWNED"
    RESOURCE_NOT_OWNED = "RESOURCE_NOT_OWNED"

    # Missing resources
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    CARD_NOT_FOUND = "CARD_NOT_FOUND"
    DECK_NOT_FOUND = "DECK_NOT_FOUND"
    USER_NOT_FOUND = "USER_NOT_FOUND"

    # Delivery transport
    DELIVERY_FAILED = "DELIVERY_FAILED"

    # Catch-all at the boundary
    INTERNAL_ERROR = "INTERNAL_ERROR"
