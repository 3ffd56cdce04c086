"""
Learning System Enums

Defines enums for the FSRS spaced repetition algorithm and the
sprint (review session) lifecycle.
"""

from enum import Enum


class CardState(str, Enum):
    """
    FSRS card states in the learning state machine.

    State transitions:
    - NEW → LEARNING (first review, any rating)
    - LEARNING → LEARNING (again) or REVIEW (graduated)
    - REVIEW → REVIEW (success) or RELEARNING (lapse)
    - RELEARNING → RELEARNING (again) or REVIEW (recovered)
    """

    NEW = "new"  # Never reviewed, initial state
    LEARNING = "learning"  # Being learned, short intervals
    REVIEW = "review"  # Graduated, normal spaced intervals
    RELEARNING = "relearning"  # Lapsed and being relearned


class Rating(int, Enum):
    """
    FSRS review ratings.

    User self-assessment after reviewing a card.
    Maps to FSRS algorithm parameters for scheduling.
    """

    AGAIN = 1  # Complete failure, short retry
    HARD = 2  # Significant difficulty, shorter interval
    GOOD = 3  # Correct with reasonable effort, normal interval
    EASY = 4  # Too easy, longer interval

    @property
    def is_success(self) -> bool:
        return self is not Rating.AGAIN


class SprintStatus(str, Enum):
    """
    Sprint lifecycle states.

    PENDING sprints are pre-created by out-of-band producers (e.g. a push
    notification) and activate on first access. COMPLETED and ABANDONED
    are terminal.
    """

    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    ABANDONED = "abandoned"

    @property
    def is_terminal(self) -> bool:
        return self in (SprintStatus.COMPLETED, SprintStatus.ABANDONED)


class SprintOrigin(str, Enum):
    """Where a sprint was started from."""

    HOME = "home"  # Home screen, all decks
    SCOPED = "scoped"  # Constrained to one deck
    PUSH = "push"  # Opened from a reminder notification


class SprintCardResult(str, Enum):
    """Outcome of a card within a sprint."""

    PASS = "pass"
    FAIL = "fail"
    SKIP = "skip"

    @classmethod
    def from_rating(cls, rating: Rating) -> "SprintCardResult":
        """HARD counts as a pass for progress; only AGAIN fails."""
        return cls.FAIL if rating == Rating.AGAIN else cls.PASS
