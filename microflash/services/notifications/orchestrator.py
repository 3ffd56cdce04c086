"""
Reminder Orchestrator

One tick of the reminder pipeline:

    discover due cards → group per user → filter by eligibility
        → dispatch → mark notified / record push / drop dead tokens

Discovery and eligibility run in one transaction, dispatch runs with no
transaction open, and marking runs afterwards in short per-user
transactions, so a slow push transport never holds database locks.
Cards are only marked notified when their user's dispatch succeeded;
everything else stays eligible for the next tick.

A card is due for a reminder when its next_due_at is within
NOTIFICATION_WINDOW_MINUTES of now, it is not snoozed, it was not part of
a reminder in the last NOTIFICATION_RECENT_MINUTES, and its owner has
notifications enabled and a push token.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from microflash.config import settings
from microflash.db.base import async_session_maker, utc_now
from microflash.db.models import Card, Deck, User
from microflash.enums.notifications import DeliveryErrorKind
from microflash.middleware.error_handling import TransientError
from microflash.models.notifications import TickResult
from microflash.services.learning.spaced_rep_service import SpacedRepService
from microflash.services.notifications.delivery import (
    DeliveryMessage,
    DeliveryResult,
    DeliveryTransport,
)
from microflash.services.notifications.eligibility import (
    EligibilityService,
    evaluate,
    record_push_sent,
)
from microflash.services.notifications.grouping import (
    DueCard,
    UserNotificationGroup,
    group_due_cards,
    prepare_notification_payload,
)
from microflash.services.users import UserService

logger = logging.getLogger(__name__)


@dataclass
class _Dispatch:
    group: UserNotificationGroup
    message: DeliveryMessage


class NotificationOrchestrator:
    """
    Runs reminder ticks against a database and a delivery transport.

    Args:
        transport: Push transport (see delivery.DeliveryTransport)
        session_maker: Factory for AsyncSession (default: the app's)
        clock: Returns the current UTC time
        window_minutes: Half-width of the due window around now
        recent_minutes: Do not re-notify a card within this many minutes
    """

    def __init__(
        self,
        transport: DeliveryTransport,
        session_maker: async_sessionmaker[AsyncSession] = async_session_maker,
        clock: Callable[[], datetime] = utc_now,
        window_minutes: int = settings.NOTIFICATION_WINDOW_MINUTES,
        recent_minutes: int = settings.NOTIFICATION_RECENT_MINUTES,
    ):
        self.transport = transport
        self.session_maker = session_maker
        self.clock = clock
        self.window = timedelta(minutes=window_minutes)
        self.recent = timedelta(minutes=recent_minutes)

    async def find_due_cards(self, db: AsyncSession, now: datetime) -> list[DueCard]:
        """Cards that should appear in a reminder at `now`."""
        result = await db.execute(
            select(
                Card.id,
                Card.deck_id,
                Deck.title,
                Deck.parent_deck_id,
                User.id,
                User.push_token,
            )
            .join(Deck, Deck.id == Card.deck_id)
            .join(User, User.id == Deck.user_id)
            .where(
                Card.next_due_at >= now - self.window,
                Card.next_due_at <= now + self.window,
                or_(Card.snoozed_until.is_(None), Card.snoozed_until <= now),
                or_(Card.notified_at.is_(None), Card.notified_at < now - self.recent),
                User.notifications_enabled.is_(True),
                User.push_token.is_not(None),
                User.push_token != "",
            )
            .order_by(Card.next_due_at, Card.id)
        )
        return [
            DueCard(
                card_id=card_id,
                deck_id=deck_id,
                deck_title=deck_title,
                parent_deck_id=parent_deck_id,
                user_id=user_id,
                push_token=push_token,
            )
            for card_id, deck_id, deck_title, parent_deck_id, user_id, push_token in result.all()
        ]

    async def _plan(self, now: datetime, tick: TickResult) -> list[_Dispatch]:
        """Transaction 1: discovery, grouping and eligibility."""
        async with self.session_maker() as db:
            due_cards = await self.find_due_cards(db, now)
            tick.due_cards = len(due_cards)
            if not due_cards:
                return []

            groups = group_due_cards(due_cards)
            tick.groups = len(groups)

            user_ids = [g.user_id for g in groups]
            users = {
                user.id: user
                for user in (await db.execute(select(User).where(User.id.in_(user_ids)))).scalars()
            }
            sprints = await EligibilityService(db, self.clock).resumable_sprints(user_ids, now)

            plan = []
            for group in groups:
                decision = evaluate(users[group.user_id], now, sprints.get(group.user_id))
                if not decision.eligible:
                    tick.skipped_ineligible += 1
                    logger.debug(
                        f"Skipping reminder for user {group.user_id}: {decision.reason.value}"
                    )
                    continue

                payload = prepare_notification_payload(group)
                plan.append(
                    _Dispatch(
                        group=group,
                        message=DeliveryMessage(
                            token=group.push_token,
                            title=payload["title"],
                            body=payload["body"],
                            data=payload["data"],
                            category_id=payload["category_id"],
                        ),
                    )
                )
            return plan

    async def _dispatch(self, plan: list[_Dispatch]) -> list[DeliveryResult]:
        """No transaction is open here."""
        messages = [d.message for d in plan]
        try:
            results = await self.transport.send_batch(messages)
        except TransientError as e:
            logger.warning(f"Push transport unavailable for {len(messages)} messages: {e.message}")
            return [DeliveryResult.failed(m.token, e.message, DeliveryErrorKind.TRANSIENT) for m in messages]
        except Exception as e:
            logger.error(f"Push transport failed for {len(messages)} messages: {e}", exc_info=True)
            return [
                DeliveryResult.failed(m.token, str(e), DeliveryErrorKind.TRANSIENT) for m in messages
            ]

        if len(results) != len(messages):
            logger.error(
                f"Push transport returned {len(results)} results for {len(messages)} messages"
            )
            return [
                DeliveryResult.failed(m.token, "Result count mismatch", DeliveryErrorKind.TRANSIENT)
                for m in messages
            ]
        return results

    async def _record_sent(self, group: UserNotificationGroup, now: datetime) -> int:
        """Mark one user's cards notified and count the push, in its own transaction."""
        async with self.session_maker() as db:
            try:
                marked = await SpacedRepService(db, self.clock).mark_cards_notified(group.card_ids, now)
                user = await db.get(User, group.user_id)
                if user is not None:
                    record_push_sent(user, now)
                await db.commit()
                return marked
            except Exception:
                await db.rollback()
                raise

    async def _drop_token(self, group: UserNotificationGroup, result: DeliveryResult) -> bool:
        """Clear a rejected token unless the user has registered a new one since."""
        async with self.session_maker() as db:
            try:
                cleared = await UserService(db, self.clock).clear_push_token_if_matches(
                    group.user_id, group.push_token
                )
                await db.commit()
            except Exception:
                await db.rollback()
                raise

        if cleared:
            logger.warning(f"Cleared push token for user {group.user_id}: {result.error}")
        return cleared

    async def _record(
        self,
        plan: list[_Dispatch],
        results: list[DeliveryResult],
        now: datetime,
        tick: TickResult,
    ) -> None:
        """
        Mark notified cards, count pushes, drop dead tokens.

        Delivered pushes are recorded first, one commit per user, so a later
        failure cannot undo the record of a push that already went out.
        """
        outcomes = list(zip(plan, results))

        for dispatch, result in outcomes:
            if not result.success:
                continue
            tick.sent += 1
            try:
                tick.cards_marked += await self._record_sent(dispatch.group, now)
            except Exception as e:
                logger.error(
                    f"Failed to record delivered reminder for user {dispatch.group.user_id}: {e}",
                    exc_info=True,
                )

        for dispatch, result in outcomes:
            if result.success:
                continue
            tick.failed += 1
            if not result.is_permanent:
                continue
            try:
                if await self._drop_token(dispatch.group, result):
                    tick.tokens_cleared += 1
            except Exception as e:
                logger.error(
                    f"Failed to clear push token for user {dispatch.group.user_id}: {e}",
                    exc_info=True,
                )

    async def run_tick(self, now: Optional[datetime] = None) -> TickResult:
        """
        Run one reminder tick.

        Args:
            now: Reference time (default: clock())

        Returns:
            TickResult counters
        """
        now = now or self.clock()
        tick = TickResult(started_at=now)

        plan = await self._plan(now, tick)
        if not plan:
            logger.info(
                f"Reminder tick: {tick.due_cards} due cards, {tick.groups} users, nothing to send"
            )
            return tick

        results = await self._dispatch(plan)
        await self._record(plan, results, now, tick)

        logger.info(
            f"Reminder tick: {tick.due_cards} due cards, {tick.groups} users, "
            f"{tick.sent} sent, {tick.failed} failed, {tick.skipped_ineligible} ineligible, "
            f"{tick.cards_marked} cards marked, {tick.tokens_cleared} tokens cleared"
        )
        return tick
