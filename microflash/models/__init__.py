"""
Pydantic models for API request/response validation.

Organized by domain:
- base.py: Strict request/response base classes
- learning.py: Decks, cards, reviews, reminder profile
- sprint.py: Sprint views and the pure sprint mappers
- notifications.py: Eligibility, home summary, tick counters
"""

from microflash.models.base import ErrorDetail, StrictRequest, StrictResponse
from microflash.models.learning import (
    CardCreate,
    CardResponse,
    DeckCreate,
    DeckResponse,
    ReminderProfileResponse,
    ReminderProfileUpdate,
    ReviewForecast,
    ReviewRequest,
    ReviewResponse,
)
from microflash.models.notifications import (
    EligibilityResult,
    HomeSummary,
    ResumableSprintSummary,
    TickResult,
)
from microflash.models.sprint import (
    AbandonSprintResult,
    CompleteSprintResult,
    GradeResult,
    SprintCardView,
    SprintProgress,
    SprintStats,
    SprintView,
    StartSprintResult,
    sprint_progress,
    sprint_stats,
    to_sprint_view,
)

__all__ = [
    # Base
    "ErrorDetail",
    "StrictRequest",
    "StrictResponse",
    # Learning
    "CardCreate",
    "CardResponse",
    "DeckCreate",
    "DeckResponse",
    "ReminderProfileResponse",
    "ReminderProfileUpdate",
    "ReviewForecast",
    "ReviewRequest",
    "ReviewResponse",
    # Sprint
    "AbandonSprintResult",
    "CompleteSprintResult",
    "GradeResult",
    "SprintCardView",
    "SprintProgress",
    "SprintStats",
    "SprintView",
    "StartSprintResult",
    "sprint_progress",
    "sprint_stats",
    "to_sprint_view",
    # Notifications
    "EligibilityResult",
    "HomeSummary",
    "ResumableSprintSummary",
    "TickResult",
]
