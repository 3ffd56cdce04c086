"""
Centralized enum definitions for the application.

All enums are organized by domain:
- learning.py: Card states, ratings, sprint lifecycle
- notifications.py: Reminder eligibility and delivery outcomes
- errors.py: Closed set of service error codes

Usage:
    from microflash.enums import CardState, Rating, SprintStatus

    # Or import from specific module
    from microflash.enums.errors import ErrorCode
"""

from microflash.enums.errors import ErrorCode
from microflash.enums.learning import (
    CardState,
    Rating,
    SprintCardResult,
    SprintOrigin,
    SprintStatus,
)
from microflash.enums.notifications import (
    DeliveryErrorKind,
    IneligibilityReason,
)

__all__ = [
    # Learning enums
    "CardState",
    "Rating",
    "SprintCardResult",
    "SprintOrigin",
    "SprintStatus",
    # Notification enums
    "DeliveryErrorKind",
    "IneligibilityReason",
    # Error codes
    "ErrorCode",
]
