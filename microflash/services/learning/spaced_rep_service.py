"""
Spaced Repetition Service

Service layer that integrates the FSRS memory model with the database.
Handles deck and card creation, standalone (out-of-sprint) reviews,
review history, snoozing, notification marking, and review forecasts.

Usage:
    from microflash.services.learning import SpacedRepService

    service = SpacedRepService(db_session)

    deck = await service.create_deck(user_id, DeckCreate(title="Spanish"))
    card = await service.create_card(user_id, CardCreate(deck_id=deck.id, front="hola", back="hello"))

    result = await service.review_card(user_id, ReviewRequest(card_id=card.id, rating="GOOD"))
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from microflash.db.base import utc_now
from microflash.db.models import Card, Deck, Review
from microflash.enums.errors import ErrorCode
from microflash.enums.learning import CardState, Rating
from microflash.middleware.error_handling import (
    AuthorizationError,
    NotFoundError,
    ValidationError,
)
from microflash.models.learning import (
    CardCreate,
    CardResponse,
    DeckCreate,
    DeckResponse,
    ReviewForecast,
    ReviewHistoryEntry,
    ReviewLogEntry,
    ReviewRequest,
    ReviewResponse,
)
from microflash.services.learning.fsrs import (
    FSRSScheduler,
    MemoryState,
    ScheduleResult,
    create_scheduler,
    get_review_forecast,
    parse_rating,
)

logger = logging.getLogger(__name__)

MIN_PRIORITY = 0
MAX_PRIORITY = 100

REVIEW_HISTORY_LIMIT = 100


def validate_priority(priority: int) -> int:
    if not MIN_PRIORITY <= priority <= MAX_PRIORITY:
        raise ValidationError(ErrorCode.INVALID_PRIORITY, details={"priority": priority})
    return priority


async def lock_card(db: AsyncSession, card_id: int) -> Optional[Card]:
    """Load a card with a row lock, refreshing any instance already in the session."""
    result = await db.execute(
        select(Card)
        .where(Card.id == card_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def apply_review(
    db: AsyncSession,
    scheduler: FSRSScheduler,
    card: Card,
    user_id: str,
    rating: Rating,
    at: datetime,
    sprint_id: Optional[int] = None,
) -> ScheduleResult:
    """
    Grade a card and append the review log entry.

    Updates the memory state and next_due_at, clears notified_at, and adds
    the Review row to the session. Does not commit; the caller owns the
    transaction so the card and its log are written together.
    """
    schedule = scheduler.compute_next(MemoryState.from_record(card), rating, at)

    schedule.memory.apply_to(card)
    card.next_due_at = schedule.next_due_at
    card.notified_at = None

    db.add(
        Review(
            card_id=card.id,
            user_id=user_id,
            sprint_id=sprint_id,
            rating=schedule.rating.value,
            reviewed_at=at,
            state_before=schedule.state_before.value,
            state_after=schedule.memory.state.value,
            stability_after=schedule.memory.stability,
            scheduled_days=schedule.memory.scheduled_days,
        )
    )

    logger.info(
        f"Reviewed card {card.id} ({schedule.rating.name}): "
        f"{schedule.state_before.value} -> {schedule.memory.state.value}, "
        f"next due in {schedule.memory.scheduled_days} days"
    )
    return schedule


class SpacedRepService:
    """
    Service for managing decks and cards with FSRS.

    Provides:
    - Deck and card creation with validation
    - Standalone review processing
    - Card snoozing and notification marking
    - Review forecasts
    """

    def __init__(
        self,
        db: AsyncSession,
        clock: Callable[[], datetime] = utc_now,
        scheduler: Optional[FSRSScheduler] = None,
    ):
        """
        Initialize the spaced repetition service.

        Args:
            db: Async database session
            clock: Returns the current UTC time
            scheduler: FSRS scheduler (defaults to one built from settings)
        """
        self.db = db
        self.clock = clock
        self.scheduler = scheduler or create_scheduler()

    # ===========================================
    # Decks
    # ===========================================

    async def _get_owned_deck(self, deck_id: int, user_id: str) -> Deck:
        deck = await self.db.get(Deck, deck_id)
        if deck is None:
            raise NotFoundError(ErrorCode.DECK_NOT_FOUND, details={"deck_id": deck_id})
        if deck.user_id != user_id:
            raise AuthorizationError(ErrorCode.RESOURCE_NOT_OWNED, details={"deck_id": deck_id})
        return deck

    async def create_deck(self, user_id: str, data: DeckCreate) -> DeckResponse:
        """
        Create a deck.

        Raises:
            ValidationError: INVALID_PRIORITY, or DECK_NESTING_TOO_DEEP when
                the parent is itself a sub-deck
            NotFoundError: DECK_NOT_FOUND for a missing parent
            AuthorizationError: RESOURCE_NOT_OWNED for someone else's parent
        """
        validate_priority(data.priority)

        if data.parent_deck_id is not None:
            parent = await self._get_owned_deck(data.parent_deck_id, user_id)
            if parent.parent_deck_id is not None:
                raise ValidationError(
                    ErrorCode.DECK_NESTING_TOO_DEEP,
                    details={"parent_deck_id": parent.id},
                )

        deck = Deck(
            user_id=user_id,
            title=data.title,
            priority=data.priority,
            parent_deck_id=data.parent_deck_id,
            created_at=self.clock(),
        )
        self.db.add(deck)
        await self.db.commit()

        logger.info(f"Created deck {deck.id} for user {user_id}")
        return DeckResponse.model_validate(deck)

    # ===========================================
    # Cards
    # ===========================================

    async def create_card(self, user_id: str, data: CardCreate) -> CardResponse:
        """
        Create a card in NEW state, due immediately.

        Raises:
            ValidationError: INVALID_PRIORITY
            NotFoundError: DECK_NOT_FOUND
            AuthorizationError: RESOURCE_NOT_OWNED
        """
        validate_priority(data.priority)
        await self._get_owned_deck(data.deck_id, user_id)

        now = self.clock()
        initial = MemoryState()
        card = Card(
            deck_id=data.deck_id,
            front=data.front,
            back=data.back,
            priority=data.priority,
            next_due_at=now,
            last_reviewed_at=None,
            snoozed_until=None,
            notified_at=None,
            created_at=now,
        )
        initial.apply_to(card)

        self.db.add(card)
        await self.db.commit()

        logger.info(f"Created card {card.id} in deck {data.deck_id}")
        return CardResponse.model_validate(card)

    async def _get_owned_card(self, card_id: int, user_id: str, for_update: bool = False) -> Card:
        if for_update:
            card = await lock_card(self.db, card_id)
        else:
            card = await self.db.get(Card, card_id)
        if card is None:
            raise NotFoundError(ErrorCode.CARD_NOT_FOUND, details={"card_id": card_id})

        owner = await self.db.scalar(select(Deck.user_id).where(Deck.id == card.deck_id))
        if owner != user_id:
            raise AuthorizationError(ErrorCode.RESOURCE_NOT_OWNED, details={"card_id": card_id})
        return card

    async def get_card(self, card_id: int, user_id: str) -> CardResponse:
        """Get a card by ID."""
        card = await self._get_owned_card(card_id, user_id)
        return CardResponse.model_validate(card)

    async def review_card(self, user_id: str, request: ReviewRequest) -> ReviewResponse:
        """
        Grade a card outside of any sprint.

        Card update and review log are committed together.

        Raises:
            ValidationError: INVALID_RATING (before anything is loaded)
            NotFoundError: CARD_NOT_FOUND
            AuthorizationError: RESOURCE_NOT_OWNED
        """
        rating = parse_rating(request.rating)

        try:
            card = await self._get_owned_card(request.card_id, user_id, for_update=True)
            schedule = await apply_review(
                self.db, self.scheduler, card, user_id, rating, self.clock()
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        return ReviewResponse(
            card_id=card.id,
            state_before=schedule.state_before,
            state_after=schedule.memory.state,
            stability=schedule.memory.stability,
            difficulty=schedule.memory.difficulty,
            scheduled_days=schedule.memory.scheduled_days,
            next_due_at=schedule.next_due_at,
            was_correct=schedule.was_correct,
        )

    async def list_reviews(
        self, user_id: str, limit: int = REVIEW_HISTORY_LIMIT
    ) -> list[ReviewHistoryEntry]:
        """The user's most recent reviews, newest first, with card text."""
        result = await self.db.execute(
            select(Review, Card.front, Card.back)
            .join(Card, Card.id == Review.card_id)
            .where(Review.user_id == user_id)
            .order_by(Review.reviewed_at.desc(), Review.id.desc())
            .limit(limit)
        )
        return [
            ReviewHistoryEntry(
                **ReviewLogEntry.model_validate(review).model_dump(),
                front=front,
                back=back,
            )
            for review, front, back in result.all()
        ]

    async def list_card_reviews(self, card_id: int, user_id: str) -> list[ReviewLogEntry]:
        """
        Every review of one card, newest first.

        Raises:
            NotFoundError: CARD_NOT_FOUND
            AuthorizationError: RESOURCE_NOT_OWNED
        """
        await self._get_owned_card(card_id, user_id)
        result = await self.db.execute(
            select(Review)
            .where(Review.card_id == card_id)
            .order_by(Review.reviewed_at.desc(), Review.id.desc())
        )
        return [ReviewLogEntry.model_validate(review) for review in result.scalars()]

    async def snooze_cards(self, user_id: str, card_ids: list[int], minutes: int) -> int:
        """
        Suppress cards from selection and reminders for `minutes`.

        next_due_at is left untouched. Cards not owned by the user are
        ignored.

        Returns:
            Number of cards snoozed
        """
        if not card_ids:
            return 0
        until = self.clock() + timedelta(minutes=minutes)
        owned = select(Card.id).join(Deck, Deck.id == Card.deck_id).where(
            Deck.user_id == user_id, Card.id.in_(card_ids)
        )
        result = await self.db.execute(
            update(Card)
            .where(Card.id.in_(owned))
            .values(snoozed_until=until)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

        logger.info(f"Snoozed {result.rowcount} cards for user {user_id} until {until.isoformat()}")
        return result.rowcount

    async def mark_cards_notified(self, card_ids: list[int], at: datetime) -> int:
        """
        Set notified_at on the given cards.

        Does not commit; the caller owns the transaction.
        """
        if not card_ids:
            return 0
        result = await self.db.execute(
            update(Card)
            .where(Card.id.in_(card_ids))
            .values(notified_at=at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def get_review_forecast(self, user_id: str) -> ReviewForecast:
        """Upcoming review counts for the user's already-studied cards."""
        now = self.clock()
        result = await self.db.execute(
            select(Card.next_due_at)
            .join(Deck, Deck.id == Card.deck_id)
            .where(
                Deck.user_id == user_id,
                Card.state != CardState.NEW.value,
                or_(Card.snoozed_until.is_(None), Card.snoozed_until <= now),
            )
        )
        due_dates = [row[0] for row in result.all()]
        return ReviewForecast(**get_review_forecast(due_dates, as_of=now))
