"""
Notification API Models (Pydantic)

Eligibility decisions, the home summary and per-tick delivery counters.
"""

from datetime import datetime
from typing import Optional

from pydantic import Field

from microflash.enums.notifications import IneligibilityReason
from microflash.models.base import StrictResponse
from microflash.models.sprint import SprintProgress


class EligibilityResult(StrictResponse):
    """
    Whether a reminder may be sent now.

    next_eligible_at is None when no amount of waiting will help
    (notifications disabled or no push token).
    """

    eligible: bool
    next_eligible_at: Optional[datetime] = None
    reason: Optional[IneligibilityReason] = None


class ResumableSprintSummary(StrictResponse):
    id: int
    resumable_until: datetime
    progress: SprintProgress


class HomeSummary(StrictResponse):
    """Everything the home screen needs in one call."""

    due_count: int
    overdue_count: int = Field(..., description="Due for longer than the overdue threshold")
    resumable_sprint: Optional[ResumableSprintSummary] = None
    next_eligible_push_at: Optional[datetime] = None
    notifications_enabled: bool
    has_push_token: bool


class TickResult(StrictResponse):
    """Counters for one orchestrator tick."""

    started_at: datetime
    due_cards: int = 0
    groups: int = 0
    skipped_ineligible: int = 0
    sent: int = 0
    failed: int = 0
    tokens_cleared: int = 0
    cards_marked: int = 0
    skipped_busy: bool = False
