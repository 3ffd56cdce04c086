"""
Sprint API Models (Pydantic)

Wire shapes for review sprints, plus the pure mappers that turn a loaded
Sprint row into those shapes. Every sprint operation returns its view
through to_sprint_view so responses never drift between endpoints.

ARCHITECTURE NOTE:
    The mappers expect sprint.sprint_cards and each SprintCard.card to be
    loaded already (the service uses selectinload). They never touch the
    session and never mutate their input.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Optional

from microflash.enums.learning import (
    CardState,
    Rating,
    SprintCardResult,
    SprintOrigin,
    SprintStatus,
)
from microflash.models.base import StrictResponse
from microflash.models.learning import CardResponse

if TYPE_CHECKING:
    from microflash.db.models import Sprint


# ===========================================
# Views
# ===========================================


class SprintProgress(StrictResponse):
    total: int
    reviewed: int
    remaining: int


class SprintCardView(StrictResponse):
    """One ordered slot in a sprint and the card behind it."""

    id: int
    order: int
    result: Optional[SprintCardResult] = None
    rating: Optional[Rating] = None
    reviewed_at: Optional[datetime] = None
    card: CardResponse


class SprintView(StrictResponse):
    """
    Full sprint state as exposed to callers.

    resumable_until is only meaningful while status is ACTIVE.
    """

    id: int
    user_id: str
    status: SprintStatus
    origin: SprintOrigin
    deck_id: Optional[int] = None

    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    abandoned_at: Optional[datetime] = None
    resumable_until: Optional[datetime] = None

    cards: list[SprintCardView]
    progress: SprintProgress


class SprintStats(StrictResponse):
    """Outcome counts for a completed sprint. HARD counts as passed."""

    total: int
    reviewed: int
    passed: int
    failed: int
    skipped: int
    duration_seconds: int


# ===========================================
# Operation results
# ===========================================


class StartSprintResult(StrictResponse):
    sprint: SprintView
    resumed: bool = False


class GradeResult(StrictResponse):
    """Result of grading one card inside a sprint."""

    sprint_id: int
    card_id: int
    rating: Rating
    result: SprintCardResult
    state_after: CardState
    scheduled_days: int
    next_due_at: datetime
    resumable_until: datetime
    progress: SprintProgress


class CompleteSprintResult(StrictResponse):
    sprint: SprintView
    stats: SprintStats


class AbandonSprintResult(StrictResponse):
    sprint: SprintView
    snoozed_count: int = 0


# ===========================================
# Mappers
# ===========================================


def sprint_progress(sprint: Sprint) -> SprintProgress:
    """Count reviewed vs remaining slots."""
    total = len(sprint.sprint_cards)
    reviewed = sum(1 for sc in sprint.sprint_cards if sc.result is not None)
    return SprintProgress(total=total, reviewed=reviewed, remaining=total - reviewed)


def sprint_stats(sprint: Sprint) -> SprintStats:
    """
    Compute completion stats.

    duration_seconds is completed_at - started_at, or 0 when either is
    missing (e.g. a sprint that never activated).
    """
    results = [sc.result for sc in sprint.sprint_cards]
    duration = 0
    if sprint.completed_at and sprint.started_at:
        duration = max(0, int((sprint.completed_at - sprint.started_at).total_seconds()))

    return SprintStats(
        total=len(results),
        reviewed=sum(1 for r in results if r is not None),
        passed=results.count(SprintCardResult.PASS.value),
        failed=results.count(SprintCardResult.FAIL.value),
        skipped=results.count(SprintCardResult.SKIP.value),
        duration_seconds=duration,
    )


def to_sprint_view(sprint: Sprint) -> SprintView:
    """Map a loaded Sprint row to its wire shape."""
    cards = [
        SprintCardView(
            id=sc.id,
            order=sc.order,
            result=sc.result,
            rating=sc.rating,
            reviewed_at=sc.reviewed_at,
            card=CardResponse.model_validate(sc.card),
        )
        for sc in sorted(sprint.sprint_cards, key=lambda sc: sc.order)
    ]

    return SprintView(
        id=sprint.id,
        user_id=sprint.user_id,
        status=sprint.status,
        origin=sprint.origin,
        deck_id=sprint.deck_id,
        created_at=sprint.created_at,
        started_at=sprint.started_at,
        completed_at=sprint.completed_at,
        abandoned_at=sprint.abandoned_at,
        resumable_until=sprint.resumable_until,
        cards=cards,
        progress=sprint_progress(sprint),
    )
