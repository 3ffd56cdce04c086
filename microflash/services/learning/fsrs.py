"""
FSRS (Free Spaced Repetition Scheduler) Memory Model

Wraps the FSRS library to turn a card's current memory state and a grade
into its next memory state and next due time. No I/O, no clock reads; the
caller passes the review time, so identical inputs always give identical
outputs.

Key Concepts:
- Stability (S): Days until recall probability decays to 90%
- Difficulty (D): Inherent difficulty of the card, clamped to [1, 10]
- Retrievability (R): Current recall probability based on elapsed time

FSRS State Machine:
    NEW → LEARNING → REVIEW ↔ RELEARNING

The library runs without learning steps or fuzzing, so it only supplies
stability, difficulty, retrievability and the day interval. The lifecycle
labels, lapse counting and the short retry after AGAIN are applied here.

Usage:
    from microflash.services.learning.fsrs import create_scheduler, MemoryState

    scheduler = create_scheduler(retention=0.9, max_interval=36500)

    result = scheduler.compute_next(MemoryState.from_record(card), Rating.GOOD, now)
    result.memory.apply_to(card)
    card.next_due_at = result.next_due_at
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Union

from fsrs import Card as FSRSCard, Rating as FSRSRating, Scheduler, State

from microflash.config import settings
from microflash.enums.errors import ErrorCode
from microflash.enums.learning import CardState, Rating
from microflash.middleware.error_handling import ValidationError

logger = logging.getLogger(__name__)

# Stored on ungraded cards; the first grade replaces both
NEW_CARD_STABILITY = 2.4
NEW_CARD_DIFFICULTY = 4.93

MIN_STABILITY = 0.01

SECONDS_PER_DAY = 86400

_FSRS_STATES = {
    CardState.NEW: State.Learning,
    CardState.LEARNING: State.Learning,
    CardState.REVIEW: State.Review,
    CardState.RELEARNING: State.Relearning,
}


def _as_utc(value: datetime) -> datetime:
    """The library only accepts datetimes tagged with timezone.utc."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_rating(value: Union[Rating, int, str, Any]) -> Rating:
    """
    Coerce a grade into a Rating.

    Accepts a Rating, an int 1-4, or a name ("AGAIN", "hard", ...).

    Raises:
        ValidationError: INVALID_RATING for anything else.
    """
    if isinstance(value, Rating):
        return value

    # bool is an int subclass; True must not mean AGAIN
    if isinstance(value, int) and not isinstance(value, bool):
        try:
            return Rating(value)
        except ValueError:
            pass
    elif isinstance(value, str):
        name = value.strip().upper()
        if name in Rating.__members__:
            return Rating[name]

    raise ValidationError(ErrorCode.INVALID_RATING, details={"rating": repr(value)})


@dataclass(frozen=True)
class MemoryState:
    """
    FSRS memory state of one card.

    Mirrors the memory columns of the cards table. All datetimes are
    timezone-aware UTC.
    """

    state: CardState = CardState.NEW
    stability: float = NEW_CARD_STABILITY
    difficulty: float = NEW_CARD_DIFFICULTY
    elapsed_days: float = 0.0
    scheduled_days: int = 0
    reps: int = 0
    lapses: int = 0
    last_reviewed_at: Optional[datetime] = None

    def is_new(self) -> bool:
        """Check if this card has never been graded."""
        return self.state == CardState.NEW

    @classmethod
    def from_record(cls, record: Any) -> "MemoryState":
        """Build from a Card row (or anything with the same attributes)."""
        return cls(
            state=CardState(record.state or CardState.NEW.value),
            stability=record.stability,
            difficulty=record.difficulty,
            elapsed_days=record.elapsed_days or 0.0,
            scheduled_days=record.scheduled_days or 0,
            reps=record.reps or 0,
            lapses=record.lapses or 0,
            last_reviewed_at=record.last_reviewed_at,
        )

    def apply_to(self, record: Any) -> None:
        """Copy this state onto a Card row."""
        record.state = self.state.value
        record.stability = self.stability
        record.difficulty = self.difficulty
        record.elapsed_days = self.elapsed_days
        record.scheduled_days = self.scheduled_days
        record.reps = self.reps
        record.lapses = self.lapses
        record.last_reviewed_at = self.last_reviewed_at


@dataclass(frozen=True)
class ScheduleResult:
    """Outcome of grading a card once."""

    rating: Rating
    state_before: CardState
    memory: MemoryState
    next_due_at: datetime
    retrievability: float

    @property
    def was_correct(self) -> bool:
        return self.rating.is_success


class FSRSScheduler:
    """
    FSRS scheduler wrapper.

    Attributes:
        desired_retention: Target recall probability (default 0.9)
        maximum_interval: Maximum days between reviews
        retry_minutes: Delay before a failed card is due again
    """

    def __init__(
        self,
        desired_retention: float = 0.9,
        maximum_interval: int = 36500,
        retry_minutes: int = 10,
    ):
        if not 0 < desired_retention < 1:
            raise ValueError(f"desired_retention must be in (0, 1), got {desired_retention}")

        self.desired_retention = desired_retention
        self.maximum_interval = maximum_interval
        self.retry_minutes = retry_minutes

        self._fsrs = Scheduler(
            desired_retention=desired_retention,
            maximum_interval=maximum_interval,
            learning_steps=(),
            relearning_steps=(),
            enable_fuzzing=False,
        )

    @staticmethod
    def _to_fsrs_card(memory: MemoryState, at: datetime) -> FSRSCard:
        """Build the library's card from a memory state."""
        if memory.is_new():
            return FSRSCard(card_id=0, state=State.Learning, due=at)

        state = _FSRS_STATES[memory.state]
        return FSRSCard(
            card_id=0,
            state=state,
            step=None if state == State.Review else 0,
            stability=max(memory.stability, MIN_STABILITY),
            difficulty=memory.difficulty,
            due=at,
            last_review=_as_utc(memory.last_reviewed_at) if memory.last_reviewed_at else None,
        )

    @staticmethod
    def next_state(state: CardState, rating: Rating) -> CardState:
        if state == CardState.NEW:
            return CardState.LEARNING
        if rating == Rating.AGAIN:
            return CardState.RELEARNING if state == CardState.REVIEW else state
        return CardState.REVIEW

    def compute_next(
        self,
        memory: MemoryState,
        rating: Union[Rating, int, str],
        at: datetime,
    ) -> ScheduleResult:
        """
        Grade a card once and compute its next state and due time.

        State Transitions:
            - NEW → LEARNING: any grade
            - LEARNING → LEARNING on AGAIN, else REVIEW
            - REVIEW → RELEARNING on AGAIN, else REVIEW
            - RELEARNING → RELEARNING on AGAIN, else REVIEW

        AGAIN always increments lapses, sets scheduled_days to 0 and makes
        the card due again after retry_minutes. GOOD/EASY on a REVIEW card
        never shorten its interval.

        Args:
            memory: Current memory state
            rating: Grade (Rating, 1-4, or name)
            at: Review time (timezone-aware)

        Returns:
            ScheduleResult with the new memory state and next due time

        Raises:
            ValidationError: INVALID_RATING for an out-of-domain grade
        """
        rating = parse_rating(rating)
        at = _as_utc(at)

        elapsed_days = 0.0
        if memory.last_reviewed_at is not None:
            elapsed_days = max(
                0.0, (at - _as_utc(memory.last_reviewed_at)).total_seconds() / SECONDS_PER_DAY
            )

        fsrs_card = self._to_fsrs_card(memory, at)
        r = 1.0 if memory.is_new() else self._fsrs.get_card_retrievability(fsrs_card, at)

        # Review the card - returns (updated_card, review_log)
        result_card, _ = self._fsrs.review_card(fsrs_card, FSRSRating(rating.value), at)

        lapses = memory.lapses
        if rating == Rating.AGAIN:
            lapses += 1
            scheduled_days = 0
            next_due_at = at + timedelta(minutes=self.retry_minutes)
        else:
            scheduled_days = max(1, (result_card.due - at).days)
            if memory.state == CardState.REVIEW and rating in (Rating.GOOD, Rating.EASY):
                scheduled_days = max(scheduled_days, memory.scheduled_days)
            next_due_at = at + timedelta(days=scheduled_days)

        new_memory = replace(
            memory,
            state=self.next_state(memory.state, rating),
            stability=max(result_card.stability, MIN_STABILITY),
            difficulty=result_card.difficulty,
            elapsed_days=elapsed_days,
            scheduled_days=scheduled_days,
            reps=memory.reps + 1,
            lapses=lapses,
            last_reviewed_at=at,
        )

        return ScheduleResult(
            rating=rating,
            state_before=memory.state,
            memory=new_memory,
            next_due_at=next_due_at,
            retrievability=r,
        )

    def get_retrievability(self, memory: MemoryState, now: Optional[datetime] = None) -> float:
        """
        Get current recall probability for a card.

        Uses the library's forgetting curve.

        Returns:
            Probability of recall (0.0 to 1.0). New cards return 1.0.
        """
        if memory.is_new() or memory.last_reviewed_at is None:
            return 1.0

        now = _as_utc(now or datetime.now(timezone.utc))
        return self._fsrs.get_card_retrievability(self._to_fsrs_card(memory, now), now)


def create_scheduler(
    retention: Optional[float] = None,
    max_interval: Optional[int] = None,
    retry_minutes: Optional[int] = None,
) -> FSRSScheduler:
    """
    Create a configured FSRS scheduler.

    Unset arguments fall back to the FSRS_* settings.
    """
    return FSRSScheduler(
        desired_retention=retention or settings.FSRS_DEFAULT_RETENTION,
        maximum_interval=max_interval or settings.FSRS_MAX_INTERVAL_DAYS,
        retry_minutes=retry_minutes or settings.FSRS_RETRY_MINUTES,
    )


def compute_next(
    memory: MemoryState,
    rating: Union[Rating, int, str],
    at: datetime,
) -> ScheduleResult:
    """Grade with a scheduler built from settings."""
    return create_scheduler().compute_next(memory, rating, at)


def get_review_forecast(
    due_dates: list[datetime],
    as_of: Optional[datetime] = None,
) -> dict[str, int]:
    """
    Get forecast of upcoming reviews.

    Args:
        due_dates: next_due_at of each card
        as_of: Reference time (default: now)

    Returns:
        Dict with counts: overdue, today, tomorrow, this_week, later
    """
    as_of = as_of or datetime.now(timezone.utc)
    today_start = as_of.replace(hour=0, minute=0, second=0, microsecond=0)
    tomorrow_start = today_start + timedelta(days=1)
    week_end = today_start + timedelta(days=7)

    forecast = {
        "overdue": 0,
        "today": 0,
        "tomorrow": 0,
        "this_week": 0,
        "later": 0,
    }

    for due in due_dates:
        if due < today_start:
            forecast["overdue"] += 1
        elif due < tomorrow_start:
            forecast["today"] += 1
        elif due < tomorrow_start + timedelta(days=1):
            forecast["tomorrow"] += 1
        elif due < week_end:
            forecast["this_week"] += 1
        else:
            forecast["later"] += 1

    return forecast
