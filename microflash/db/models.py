"""
SQLAlchemy Database Models

Tables:
- users: Account row carrying the reminder profile and sprint size
- decks: Card collections (one level of nesting)
- cards: Spaced repetition cards with FSRS memory state
- sprints: Bounded review sessions
- sprint_cards: Ordered membership of cards in a sprint
- reviews: Append-only grade log

ARCHITECTURE NOTE:
    This file contains SQLALCHEMY models for database persistence.
    The Pydantic views live in microflash/models/.

    Data flows: Service Layer → SQLAlchemy → Database
                Database → SQLAlchemy → pure mapper → Pydantic view
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from microflash.db.base import Base, UTCDateTime, utc_now
from microflash.enums.learning import CardState, SprintOrigin, SprintStatus


# ===========================================
# Users & Decks
# ===========================================


class User(Base):
    """
    An already-authenticated user and their reminder profile.

    Attributes:
        id: Opaque identity id resolved by the auth layer.
        notifications_enabled: Master switch for reminder pushes.
        push_token: Expo push token. Cleared when the transport reports it dead.
        notification_cooldown_minutes: Minimum gap between pushes (>= 120).
        max_notifications_per_day: Daily push cap.
        notifications_count_today: Pushes sent on the UTC day of last_push_sent_at.
            Implicitly zero once that day has passed.
        last_push_sent_at: When the last push went out.
        sprint_size: Cards per sprint (3-10).
    """

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)

    notifications_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    push_token: Mapped[Optional[str]] = mapped_column(String(255))
    notification_cooldown_minutes: Mapped[int] = mapped_column(Integer, default=120)
    max_notifications_per_day: Mapped[int] = mapped_column(Integer, default=10)
    notifications_count_today: Mapped[int] = mapped_column(Integer, default=0)
    last_push_sent_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())
    sprint_size: Mapped[int] = mapped_column(Integer, default=5)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utc_now)

    decks: Mapped[List["Deck"]] = relationship(back_populates="user")


class Deck(Base):
    """
    A collection of cards.

    Attributes:
        user_id: Owner.
        title: Display name, used in reminder text.
        priority: 0-100, tiebreaker in sprint selection (higher first).
        parent_deck_id: Optional parent. Parents may not themselves have a parent.
    """

    __tablename__ = "decks"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), index=True)
    title: Mapped[str] = mapped_column(String(200))
    priority: Mapped[int] = mapped_column(Integer, default=50)
    parent_deck_id: Mapped[Optional[int]] = mapped_column(ForeignKey("decks.id"))

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utc_now)

    user: Mapped["User"] = relationship(back_populates="decks")
    parent: Mapped[Optional["Deck"]] = relationship(remote_side="Deck.id")
    cards: Mapped[List["Card"]] = relationship(back_populates="deck")


# ===========================================
# Cards (FSRS)
# ===========================================


class Card(Base):
    """
    Spaced repetition card with FSRS memory state.

    FSRS State:
        stability: Memory stability in days (> 0).
        difficulty: Card difficulty, clamped to [1, 10].
        elapsed_days: Days between the last two reviews.
        scheduled_days: Interval chosen at the last review.
        reps: Total reviews.
        lapses: Number of AGAIN grades.
        state: new, learning, review, relearning.

    Scheduling:
        next_due_at: When the card is next due.
        last_reviewed_at: Most recent review.
        snoozed_until: Suppresses selection and reminders until this instant
            without moving next_due_at.
        notified_at: Last reminder that included this card. Cleared on grading.
    """

    __tablename__ = "cards"
    __table_args__ = (Index("ix_cards_due_snooze", "next_due_at", "snoozed_until"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    deck_id: Mapped[int] = mapped_column(ForeignKey("decks.id"), index=True)

    front: Mapped[str] = mapped_column(Text)
    back: Mapped[str] = mapped_column(Text)
    priority: Mapped[int] = mapped_column(Integer, default=50)

    # FSRS state
    stability: Mapped[float] = mapped_column(Float)
    difficulty: Mapped[float] = mapped_column(Float)
    elapsed_days: Mapped[float] = mapped_column(Float, default=0.0)
    scheduled_days: Mapped[int] = mapped_column(Integer, default=0)
    reps: Mapped[int] = mapped_column(Integer, default=0)
    lapses: Mapped[int] = mapped_column(Integer, default=0)
    state: Mapped[str] = mapped_column(String(20), default=CardState.NEW.value)

    # Scheduling
    next_due_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utc_now)
    last_reviewed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())
    snoozed_until: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())
    notified_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utc_now)

    deck: Mapped["Deck"] = relationship(back_populates="cards")
    reviews: Mapped[List["Review"]] = relationship(back_populates="card")


# ===========================================
# Sprints
# ===========================================


class Sprint(Base):
    """
    A bounded review session over a snapshot of due cards.

    Attributes:
        status: pending, active, completed, abandoned.
        origin: home, scoped, push.
        deck_id: Optional deck scope.
        resumable_until: Deadline for continuing. Only meaningful while active;
            extended by every grade.
    """

    __tablename__ = "sprints"
    __table_args__ = (Index("ix_sprints_user_status", "user_id", "status"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"))
    deck_id: Mapped[Optional[int]] = mapped_column(ForeignKey("decks.id"))

    status: Mapped[str] = mapped_column(String(20), default=SprintStatus.PENDING.value)
    origin: Mapped[str] = mapped_column(String(20), default=SprintOrigin.HOME.value)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utc_now)
    started_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())
    completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())
    abandoned_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())
    resumable_until: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())

    sprint_cards: Mapped[List["SprintCard"]] = relationship(
        back_populates="sprint",
        order_by="SprintCard.order",
        cascade="all, delete-orphan",
    )


class SprintCard(Base):
    """
    Ordered membership of a card in a sprint.

    result transitions null → pass/fail/skip exactly once. The raw rating
    is kept alongside because HARD is recorded as a pass.
    """

    __tablename__ = "sprint_cards"
    __table_args__ = (UniqueConstraint("sprint_id", "card_id", name="uq_sprint_card"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    sprint_id: Mapped[int] = mapped_column(ForeignKey("sprints.id"), index=True)
    card_id: Mapped[int] = mapped_column(ForeignKey("cards.id"), index=True)
    order: Mapped[int] = mapped_column(Integer)
    result: Mapped[Optional[str]] = mapped_column(String(10))
    rating: Mapped[Optional[int]] = mapped_column(Integer)
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())

    sprint: Mapped["Sprint"] = relationship(back_populates="sprint_cards")
    card: Mapped["Card"] = relationship()


# ===========================================
# Review log
# ===========================================


class Review(Base):
    """
    Append-only grade event.

    Written in the same transaction as the card update so the log and the
    card's memory state never diverge.
    """

    __tablename__ = "reviews"

    id: Mapped[int] = mapped_column(primary_key=True)
    card_id: Mapped[int] = mapped_column(ForeignKey("cards.id"), index=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), index=True)
    sprint_id: Mapped[Optional[int]] = mapped_column(ForeignKey("sprints.id"))

    rating: Mapped[int] = mapped_column(Integer)
    reviewed_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utc_now)

    state_before: Mapped[Optional[str]] = mapped_column(String(20))
    state_after: Mapped[Optional[str]] = mapped_column(String(20))
    stability_after: Mapped[Optional[float]] = mapped_column(Float)
    scheduled_days: Mapped[Optional[int]] = mapped_column(Integer)

    card: Mapped["Card"] = relationship(back_populates="reviews")
