"""
Row factories for database-backed tests.

Every column is set explicitly so rows never depend on server-side
defaults.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from microflash.db.models import Card, Deck, User
from microflash.enums.learning import CardState
from tests.conftest import T0

VALID_TOKEN = "ExponentPushToken[test-device-1]"


async def create_user(
    db: AsyncSession,
    user_id: str = "user-1",
    *,
    notifications_enabled: bool = True,
    push_token: Optional[str] = VALID_TOKEN,
    notification_cooldown_minutes: int = 120,
    max_notifications_per_day: int = 10,
    notifications_count_today: int = 0,
    last_push_sent_at: Optional[datetime] = None,
    sprint_size: int = 5,
) -> User:
    user = User(
        id=user_id,
        notifications_enabled=notifications_enabled,
        push_token=push_token,
        notification_cooldown_minutes=notification_cooldown_minutes,
        max_notifications_per_day=max_notifications_per_day,
        notifications_count_today=notifications_count_today,
        last_push_sent_at=last_push_sent_at,
        sprint_size=sprint_size,
        created_at=T0,
    )
    db.add(user)
    await db.commit()
    return user


async def create_deck(
    db: AsyncSession,
    user_id: str = "user-1",
    *,
    title: str = "Spanish",
    priority: int = 50,
    parent_deck_id: Optional[int] = None,
) -> Deck:
    deck = Deck(
        user_id=user_id,
        title=title,
        priority=priority,
        parent_deck_id=parent_deck_id,
        created_at=T0,
    )
    db.add(deck)
    await db.commit()
    return deck


async def create_card(
    db: AsyncSession,
    deck: Deck,
    *,
    next_due_at: datetime = T0,
    priority: int = 50,
    created_at: Optional[datetime] = None,
    state: CardState = CardState.NEW,
    stability: float = 2.4,
    difficulty: float = 4.93,
    scheduled_days: int = 0,
    reps: int = 0,
    lapses: int = 0,
    last_reviewed_at: Optional[datetime] = None,
    snoozed_until: Optional[datetime] = None,
    notified_at: Optional[datetime] = None,
    front: str = "front",
    back: str = "back",
) -> Card:
    card = Card(
        deck_id=deck.id,
        front=front,
        back=back,
        priority=priority,
        stability=stability,
        difficulty=difficulty,
        elapsed_days=0.0,
        scheduled_days=scheduled_days,
        reps=reps,
        lapses=lapses,
        state=state.value,
        next_due_at=next_due_at,
        last_reviewed_at=last_reviewed_at,
        snoozed_until=snoozed_until,
        notified_at=notified_at,
        created_at=created_at or T0,
    )
    db.add(card)
    await db.commit()
    return card
