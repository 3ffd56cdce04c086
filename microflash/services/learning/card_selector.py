"""
Card Selector

Picks the cards a user should review next.

A card is eligible when it belongs to one of the user's decks, is due
(next_due_at <= now), is not snoozed, and is not already part of one of
the user's ACTIVE sprints. The exclusion set is recomputed on every call.

Ordering cannot be expressed as a plain ORDER BY because it mixes card and
deck columns with opposite directions, so rows are fetched and sorted in
Python with sort_key:

    1. next_due_at ascending (most overdue first)
    2. card priority descending
    3. deck priority descending
    4. card created_at ascending
    5. card id ascending (final tiebreaker)

Usage:
    selector = CardSelector(db)
    cards = await selector.select_eligible(user_id, limit=5)
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from microflash.config import settings
from microflash.db.base import utc_now
from microflash.db.models import Card, Deck, Sprint, SprintCard
from microflash.enums.learning import SprintStatus

logger = logging.getLogger(__name__)


def sort_key(card: Card, deck_priority: int) -> tuple:
    """Selection order key for a card and its deck's priority."""
    return (
        card.next_due_at,
        -(card.priority or 0),
        -(deck_priority or 0),
        card.created_at,
        card.id,
    )


def order_cards(rows: list[tuple[Card, int]]) -> list[Card]:
    """Stable sort of (card, deck_priority) pairs into selection order."""
    return [card for card, _ in sorted(rows, key=lambda row: sort_key(row[0], row[1]))]


class CardSelector:
    """
    Deterministic due-card selection for sprints and the home summary.

    Args:
        db: Async database session
        clock: Returns the current UTC time (injectable for tests)
    """

    def __init__(self, db: AsyncSession, clock: Callable[[], datetime] = utc_now):
        self.db = db
        self.clock = clock

    def _claimed_query(self, user_id: str):
        """Card ids held by any of the user's ACTIVE sprints."""
        return (
            select(SprintCard.card_id)
            .join(Sprint, Sprint.id == SprintCard.sprint_id)
            .where(
                Sprint.user_id == user_id,
                Sprint.status == SprintStatus.ACTIVE.value,
            )
        )

    async def claimed_card_ids(self, user_id: str) -> set[int]:
        """Ids of the user's cards currently held by an ACTIVE sprint."""
        result = await self.db.execute(self._claimed_query(user_id))
        return set(result.scalars().all())

    @staticmethod
    def _not_snoozed(now: datetime):
        return or_(Card.snoozed_until.is_(None), Card.snoozed_until <= now)

    async def select_eligible(
        self,
        user_id: str,
        limit: int,
        deck_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> list[Card]:
        """
        Return up to `limit` eligible cards in selection order.

        Args:
            user_id: Owner of the decks
            limit: Maximum number of cards (the user's sprint size)
            deck_id: Optional scope; includes the deck's direct sub-decks
            now: Reference time (default: clock())

        Returns:
            Ordered list of cards, empty when nothing qualifies
        """
        if limit <= 0:
            return []
        now = now or self.clock()

        query = (
            select(Card, Deck.priority)
            .join(Deck, Deck.id == Card.deck_id)
            .where(
                Deck.user_id == user_id,
                Card.next_due_at <= now,
                self._not_snoozed(now),
                Card.id.not_in(self._claimed_query(user_id)),
            )
        )
        if deck_id is not None:
            query = query.where(or_(Deck.id == deck_id, Deck.parent_deck_id == deck_id))

        result = await self.db.execute(query)
        rows = [(card, deck_priority) for card, deck_priority in result.all()]

        selected = order_cards(rows)[:limit]
        logger.debug(
            f"Selected {len(selected)}/{len(rows)} eligible cards for user {user_id}"
            + (f" in deck {deck_id}" if deck_id is not None else "")
        )
        return selected

    async def count_due(self, user_id: str, now: Optional[datetime] = None) -> int:
        """Cards due now and not snoozed, across all of the user's decks."""
        now = now or self.clock()
        result = await self.db.execute(
            select(func.count(Card.id))
            .join(Deck, Deck.id == Card.deck_id)
            .where(
                Deck.user_id == user_id,
                Card.next_due_at <= now,
                self._not_snoozed(now),
            )
        )
        return result.scalar() or 0

    async def count_overdue(
        self,
        user_id: str,
        now: Optional[datetime] = None,
        threshold_hours: Optional[int] = None,
    ) -> int:
        """Cards due for longer than the overdue threshold (default 24h)."""
        now = now or self.clock()
        hours = threshold_hours if threshold_hours is not None else settings.OVERDUE_THRESHOLD_HOURS
        cutoff = now - timedelta(hours=hours)
        result = await self.db.execute(
            select(func.count(Card.id))
            .join(Deck, Deck.id == Card.deck_id)
            .where(
                Deck.user_id == user_id,
                Card.next_due_at <= cutoff,
                self._not_snoozed(now),
            )
        )
        return result.scalar() or 0
