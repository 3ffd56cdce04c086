"""
Learning API Models (Pydantic)

Request/response schemas for decks, cards, standalone reviews and the
user's reminder profile.

ARCHITECTURE NOTE:
    This file contains PYDANTIC models for API validation.
    The corresponding SQLAlchemy models live in microflash/db/models.py.

    Data flows: API Request → Pydantic → Service → SQLAlchemy → Database
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Union

from pydantic import Field

from microflash.enums.learning import CardState, Rating
from microflash.models.base import StrictRequest, StrictResponse


# ===========================================
# Decks
# ===========================================


class DeckCreate(StrictRequest):
    """Request to create a deck, optionally nested under a parent deck."""

    title: str = Field(..., min_length=1, max_length=200)
    priority: int = Field(50, description="Selection tiebreaker, 0-100")
    parent_deck_id: Optional[int] = None


class DeckResponse(StrictResponse):
    id: int
    user_id: str
    title: str
    priority: int
    parent_deck_id: Optional[int] = None
    created_at: datetime


# ===========================================
# Cards
# ===========================================


class CardCreate(StrictRequest):
    """
    Request to create a card.

    Priority is range-checked by the service so the failure carries the
    INVALID_PRIORITY code rather than a generic schema error.
    """

    deck_id: int
    front: str = Field(..., min_length=1)
    back: str = Field(..., min_length=1)
    priority: int = 50


class CardResponse(StrictResponse):
    """Card with its full FSRS memory state and scheduling timestamps."""

    id: int
    deck_id: int
    front: str
    back: str
    priority: int

    # FSRS state
    state: CardState
    stability: float
    difficulty: float
    elapsed_days: float
    scheduled_days: int
    reps: int
    lapses: int

    # Scheduling
    next_due_at: datetime
    last_reviewed_at: Optional[datetime] = None
    snoozed_until: Optional[datetime] = None
    notified_at: Optional[datetime] = None
    created_at: datetime


# ===========================================
# Reviews
# ===========================================


class ReviewRequest(StrictRequest):
    """
    Standalone (out-of-sprint) review of a card.

    Rating accepts the enum, its integer value, or its name; parsing is
    left to the memory model so invalid values map to INVALID_RATING.
    """

    card_id: int
    rating: Union[int, str]


class ReviewResponse(StrictResponse):
    card_id: int
    state_before: CardState
    state_after: CardState
    stability: float
    difficulty: float
    scheduled_days: int
    next_due_at: datetime
    was_correct: bool


class ReviewLogEntry(StrictResponse):
    """One row of the append-only review log."""

    id: int
    card_id: int
    sprint_id: Optional[int] = None
    rating: Rating
    reviewed_at: datetime
    state_before: Optional[CardState] = None
    state_after: Optional[CardState] = None
    scheduled_days: Optional[int] = None


class ReviewHistoryEntry(ReviewLogEntry):
    """A review log row with the card's text, for the user-wide history."""

    front: str
    back: str


class ReviewForecast(StrictResponse):
    """Counts of upcoming reviews by time bucket."""

    overdue: int = 0
    today: int = 0
    tomorrow: int = 0
    this_week: int = 0
    later: int = 0


# ===========================================
# Reminder profile
# ===========================================


class ReminderProfileUpdate(StrictRequest):
    """
    Partial update of a user's reminder settings.

    Ranges are enforced by UserService so violations carry INVALID_PROFILE.
    """

    notifications_enabled: Optional[bool] = None
    notification_cooldown_minutes: Optional[int] = None
    max_notifications_per_day: Optional[int] = None
    sprint_size: Optional[int] = None


class ReminderProfileResponse(StrictResponse):
    id: str
    notifications_enabled: bool
    has_push_token: bool = False
    notification_cooldown_minutes: int
    max_notifications_per_day: int
    notifications_count_today: int
    last_push_sent_at: Optional[datetime] = None
    sprint_size: int


__all__ = [
    "CardCreate",
    "CardResponse",
    "DeckCreate",
    "DeckResponse",
    "ReminderProfileResponse",
    "ReminderProfileUpdate",
    "ReviewForecast",
    "ReviewHistoryEntry",
    "ReviewLogEntry",
    "ReviewRequest",
    "ReviewResponse",
]
