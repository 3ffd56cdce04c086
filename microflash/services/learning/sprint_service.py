"""
Sprint Service

Owns the review sprint state machine:

    PENDING ──(first access)──► ACTIVE ──(all graded + complete)──► COMPLETED
                                  │
                                  └──(abandon / idle past resumable_until)──► ABANDONED

COMPLETED and ABANDONED are terminal. An ACTIVE sprint stays resumable for
RESUME_WINDOW_MINUTES after its last activity; the first access after
that window abandons it and snoozes its unreviewed cards for
ABANDON_SNOOZE_MINUTES.

Every mutation of a sprint runs under an in-process per-sprint lock plus a
row lock, inside one transaction that is rolled back on any failure.
complete_sprint and abandon_sprint are idempotent; re-grading a card
returns ITEM_ALREADY_GRADED.

Usage:
    service = SprintService(db)
    started = await service.start_sprint(user_id)
    await service.grade_card(started.sprint.id, card_id, "GOOD", user_id)
    await service.complete_sprint(started.sprint.id, user_id)
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from microflash.config import settings
from microflash.db.base import utc_now
from microflash.db.models import Card, Deck, Sprint, SprintCard, User
from microflash.enums.errors import ErrorCode
from microflash.enums.learning import Rating, SprintCardResult, SprintOrigin, SprintStatus
from microflash.middleware.error_handling import (
    AuthorizationError,
    NotFoundError,
    StateError,
)
from microflash.models.sprint import (
    AbandonSprintResult,
    CompleteSprintResult,
    GradeResult,
    SprintView,
    StartSprintResult,
    sprint_progress,
    sprint_stats,
    to_sprint_view,
)
from microflash.services.learning.card_selector import CardSelector
from microflash.services.learning.fsrs import FSRSScheduler, create_scheduler, parse_rating
from microflash.services.learning.spaced_rep_service import apply_review, lock_card
from microflash.services.locks import sprint_locks, user_locks

logger = logging.getLogger(__name__)

RESUME_WINDOW_MINUTES = settings.SPRINT_RESUME_WINDOW_MINUTES
ABANDON_SNOOZE_MINUTES = settings.SPRINT_ABANDON_SNOOZE_MINUTES


def _sprint_query():
    return select(Sprint).options(
        selectinload(Sprint.sprint_cards).selectinload(SprintCard.card)
    )


def is_expired(sprint: Sprint, now: datetime) -> bool:
    """An ACTIVE sprint whose resumable window has passed."""
    return (
        sprint.status == SprintStatus.ACTIVE.value
        and sprint.resumable_until is not None
        and sprint.resumable_until <= now
    )


class SprintService:
    """
    Sprint lifecycle: start, fetch, grade, complete, abandon.

    Args:
        db: Async database session
        clock: Returns the current UTC time (injectable for tests)
        scheduler: FSRS scheduler (defaults to one built from settings)
        resume_window_minutes: Idle time before an ACTIVE sprint expires
        abandon_snooze_minutes: Snooze applied to unreviewed cards on abandon
    """

    def __init__(
        self,
        db: AsyncSession,
        clock: Callable[[], datetime] = utc_now,
        scheduler: Optional[FSRSScheduler] = None,
        resume_window_minutes: int = RESUME_WINDOW_MINUTES,
        abandon_snooze_minutes: int = ABANDON_SNOOZE_MINUTES,
    ):
        self.db = db
        self.clock = clock
        self.scheduler = scheduler or create_scheduler()
        self.resume_window = timedelta(minutes=resume_window_minutes)
        self.abandon_snooze = timedelta(minutes=abandon_snooze_minutes)

    # ===========================================
    # Loading
    # ===========================================

    async def _load_sprint(self, sprint_id: int, for_update: bool = False) -> Sprint:
        query = _sprint_query().where(Sprint.id == sprint_id).execution_options(
            populate_existing=True
        )
        if for_update:
            query = query.with_for_update()
        sprint = (await self.db.execute(query)).scalar_one_or_none()
        if sprint is None:
            raise NotFoundError(ErrorCode.SESSION_NOT_FOUND, details={"sprint_id": sprint_id})
        return sprint

    async def _load_owned(self, sprint_id: int, user_id: str) -> Sprint:
        sprint = await self._load_sprint(sprint_id, for_update=True)
        if sprint.user_id != user_id:
            raise AuthorizationError(ErrorCode.SESSION_NOT_OWNED, details={"sprint_id": sprint_id})
        return sprint

    async def find_resumable_sprint(
        self, user_id: str, now: Optional[datetime] = None
    ) -> Optional[Sprint]:
        """The user's ACTIVE sprint that can still be continued, if any."""
        now = now or self.clock()
        result = await self.db.execute(
            _sprint_query()
            .where(
                Sprint.user_id == user_id,
                Sprint.status == SprintStatus.ACTIVE.value,
                Sprint.resumable_until > now,
            )
            .order_by(Sprint.resumable_until.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    # ===========================================
    # Transitions
    # ===========================================

    def _abandon(self, sprint: Sprint, now: datetime) -> int:
        """
        Move a non-terminal sprint to ABANDONED.

        Snoozes every still-unreviewed card. Returns how many were snoozed.
        """
        snooze_until = now + self.abandon_snooze
        snoozed = 0
        for sc in sprint.sprint_cards:
            if sc.result is None:
                sc.card.snoozed_until = snooze_until
                snoozed += 1

        sprint.status = SprintStatus.ABANDONED.value
        sprint.abandoned_at = now
        logger.info(f"Abandoned sprint {sprint.id}, snoozed {snoozed} cards until {snooze_until.isoformat()}")
        return snoozed

    async def _activate(self, sprint: Sprint, now: datetime) -> None:
        """
        Move a PENDING sprint to ACTIVE.

        Slots whose card was claimed by another ACTIVE sprint since creation
        are dropped. With no slot left the sprint ends ABANDONED without
        snoozing anything, since those cards belong to the other sprint.
        """
        await self._abandon_expired_for_user(sprint.user_id, now)
        claimed = await CardSelector(self.db, self.clock).claimed_card_ids(sprint.user_id)

        for slot in [sc for sc in sprint.sprint_cards if sc.card_id in claimed]:
            sprint.sprint_cards.remove(slot)

        if not sprint.sprint_cards:
            sprint.status = SprintStatus.ABANDONED.value
            sprint.abandoned_at = now
            logger.info(f"Pending sprint {sprint.id} had only claimed cards, abandoned")
            return

        sprint.status = SprintStatus.ACTIVE.value
        sprint.started_at = now
        sprint.resumable_until = now + self.resume_window
        logger.info(f"Activated pending sprint {sprint.id} with {len(sprint.sprint_cards)} cards")

    async def _abandon_expired_for_user(self, user_id: str, now: datetime) -> int:
        result = await self.db.execute(
            _sprint_query()
            .where(
                Sprint.user_id == user_id,
                Sprint.status == SprintStatus.ACTIVE.value,
                Sprint.resumable_until <= now,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        expired = list(result.scalars().all())
        for sprint in expired:
            self._abandon(sprint, now)
        return len(expired)

    # ===========================================
    # Operations
    # ===========================================

    async def start_sprint(
        self,
        user_id: str,
        deck_id: Optional[int] = None,
        origin: SprintOrigin = SprintOrigin.HOME,
    ) -> StartSprintResult:
        """
        Resume the user's open sprint, or start a new one.

        An ACTIVE sprint with resumable_until in the future is returned
        unchanged with resumed=True. Otherwise up to user.sprint_size
        eligible cards are selected into a new ACTIVE sprint. A deck scope
        started from HOME is recorded as SCOPED.

        Raises:
            NotFoundError: USER_NOT_FOUND, DECK_NOT_FOUND
            AuthorizationError: RESOURCE_NOT_OWNED for another user's deck
            StateError: NO_ELIGIBLE_ITEMS when nothing is due
        """
        async with user_locks.hold(user_id):
            try:
                now = self.clock()
                user = await self.db.get(User, user_id)
                if user is None:
                    raise NotFoundError(ErrorCode.USER_NOT_FOUND, details={"user_id": user_id})

                # Expired sprints still claim their cards until abandoned
                await self._abandon_expired_for_user(user_id, now)

                existing = await self.find_resumable_sprint(user_id, now)
                if existing is not None:
                    await self.db.commit()
                    logger.info(f"Resuming sprint {existing.id} for user {user_id}")
                    return StartSprintResult(sprint=to_sprint_view(existing), resumed=True)

                if deck_id is not None:
                    deck = await self.db.get(Deck, deck_id)
                    if deck is None:
                        raise NotFoundError(ErrorCode.DECK_NOT_FOUND, details={"deck_id": deck_id})
                    if deck.user_id != user_id:
                        raise AuthorizationError(ErrorCode.RESOURCE_NOT_OWNED, details={"deck_id": deck_id})
                    if origin == SprintOrigin.HOME:
                        origin = SprintOrigin.SCOPED

                selector = CardSelector(self.db, self.clock)
                cards = await selector.select_eligible(user_id, user.sprint_size, deck_id, now)
                if not cards:
                    # Keep any expirations done above
                    await self.db.commit()
                    raise StateError(ErrorCode.NO_ELIGIBLE_ITEMS)

                sprint = Sprint(
                    user_id=user_id,
                    deck_id=deck_id,
                    status=SprintStatus.ACTIVE.value,
                    origin=SprintOrigin(origin).value,
                    created_at=now,
                    started_at=now,
                    completed_at=None,
                    abandoned_at=None,
                    resumable_until=now + self.resume_window,
                    sprint_cards=[
                        SprintCard(card=card, card_id=card.id, order=i, result=None, rating=None, reviewed_at=None)
                        for i, card in enumerate(cards, start=1)
                    ],
                )
                self.db.add(sprint)
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise

        logger.info(f"Started sprint {sprint.id} for user {user_id} with {len(cards)} cards ({sprint.origin})")
        return StartSprintResult(sprint=to_sprint_view(sprint), resumed=False)

    async def create_pending_sprint(
        self,
        user_id: str,
        card_ids: list[int],
        origin: SprintOrigin = SprintOrigin.PUSH,
        deck_id: Optional[int] = None,
    ) -> SprintView:
        """
        Pre-create a PENDING sprint over specific cards.

        Used by out-of-band producers (e.g. a reminder deep link). The
        sprint activates on first get_sprint. Cards already held by one of
        the user's ACTIVE sprints are left out.

        Raises:
            StateError: NO_ELIGIBLE_ITEMS when no unclaimed card is left
            NotFoundError: CARD_NOT_FOUND when a card does not exist
            AuthorizationError: RESOURCE_NOT_OWNED when a card is someone else's
        """
        unique_ids = list(dict.fromkeys(card_ids))
        if not unique_ids:
            raise StateError(ErrorCode.NO_ELIGIBLE_ITEMS)

        async with user_locks.hold(user_id):
            try:
                result = await self.db.execute(
                    select(Card, Deck.user_id)
                    .join(Deck, Deck.id == Card.deck_id)
                    .where(Card.id.in_(unique_ids))
                )
                found = {card.id: (card, owner) for card, owner in result.all()}

                for card_id in unique_ids:
                    if card_id not in found:
                        raise NotFoundError(ErrorCode.CARD_NOT_FOUND, details={"card_id": card_id})
                    if found[card_id][1] != user_id:
                        raise AuthorizationError(ErrorCode.RESOURCE_NOT_OWNED, details={"card_id": card_id})

                now = self.clock()
                await self._abandon_expired_for_user(user_id, now)

                claimed = await CardSelector(self.db, self.clock).claimed_card_ids(user_id)
                free_ids = [card_id for card_id in unique_ids if card_id not in claimed]
                if not free_ids:
                    await self.db.commit()
                    raise StateError(
                        ErrorCode.NO_ELIGIBLE_ITEMS,
                        details={"claimed_card_ids": sorted(claimed & set(unique_ids))},
                    )

                sprint = Sprint(
                    user_id=user_id,
                    deck_id=deck_id,
                    status=SprintStatus.PENDING.value,
                    origin=SprintOrigin(origin).value,
                    created_at=now,
                    started_at=None,
                    completed_at=None,
                    abandoned_at=None,
                    resumable_until=None,
                    sprint_cards=[
                        SprintCard(
                            card=found[card_id][0],
                            card_id=card_id,
                            order=i,
                            result=None,
                            rating=None,
                            reviewed_at=None,
                        )
                        for i, card_id in enumerate(free_ids, start=1)
                    ],
                )
                self.db.add(sprint)
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise

        skipped = len(unique_ids) - len(free_ids)
        logger.info(
            f"Created pending {sprint.origin} sprint {sprint.id} for user {user_id}"
            + (f", left out {skipped} claimed cards" if skipped else "")
        )
        return to_sprint_view(sprint)

    async def get_sprint(self, sprint_id: int, user_id: str) -> SprintView:
        """
        Fetch a sprint.

        An expired ACTIVE sprint is abandoned first; a PENDING sprint is
        activated.

        Raises:
            NotFoundError: SESSION_NOT_FOUND
            AuthorizationError: SESSION_NOT_OWNED
        """
        async with sprint_locks.hold(sprint_id):
            try:
                now = self.clock()
                sprint = await self._load_owned(sprint_id, user_id)

                if is_expired(sprint, now):
                    self._abandon(sprint, now)
                elif sprint.status == SprintStatus.PENDING.value:
                    async with user_locks.hold(user_id):
                        await self._activate(sprint, now)

                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise

        return to_sprint_view(sprint)

    async def grade_card(
        self,
        sprint_id: int,
        card_id: int,
        rating: Union[Rating, int, str],
        user_id: str,
    ) -> GradeResult:
        """
        Grade one card of an ACTIVE sprint.

        Checks, in order: ownership, sprint state (expiring it if idle too
        long), membership, and whether the card was already graded. On
        success the card's memory state, the review log, the slot result
        and the extended resumable_until are committed together.

        Raises:
            ValidationError: INVALID_RATING
            NotFoundError: SESSION_NOT_FOUND
            AuthorizationError: SESSION_NOT_OWNED
            StateError: SESSION_EXPIRED, SESSION_NOT_ACTIVE,
                ITEM_NOT_IN_SESSION, ITEM_ALREADY_GRADED
        """
        rating = parse_rating(rating)

        async with sprint_locks.hold(sprint_id):
            try:
                now = self.clock()
                sprint = await self._load_owned(sprint_id, user_id)

                if is_expired(sprint, now):
                    self._abandon(sprint, now)
                    await self.db.commit()
                    raise StateError(ErrorCode.SESSION_EXPIRED, details={"sprint_id": sprint_id})
                if sprint.status != SprintStatus.ACTIVE.value:
                    raise StateError(
                        ErrorCode.SESSION_NOT_ACTIVE,
                        details={"sprint_id": sprint_id, "status": sprint.status},
                    )

                slot = next((sc for sc in sprint.sprint_cards if sc.card_id == card_id), None)
                if slot is None:
                    raise StateError(
                        ErrorCode.ITEM_NOT_IN_SESSION,
                        details={"sprint_id": sprint_id, "card_id": card_id},
                    )
                if slot.result is not None:
                    raise StateError(
                        ErrorCode.ITEM_ALREADY_GRADED,
                        details={"sprint_id": sprint_id, "card_id": card_id},
                    )

                card = await lock_card(self.db, card_id)
                schedule = await apply_review(
                    self.db, self.scheduler, card, user_id, rating, now, sprint_id=sprint.id
                )

                slot.result = SprintCardResult.from_rating(rating).value
                slot.rating = rating.value
                slot.reviewed_at = now
                sprint.resumable_until = now + self.resume_window

                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise

        return GradeResult(
            sprint_id=sprint.id,
            card_id=card_id,
            rating=rating,
            result=slot.result,
            state_after=schedule.memory.state,
            scheduled_days=schedule.memory.scheduled_days,
            next_due_at=schedule.next_due_at,
            resumable_until=sprint.resumable_until,
            progress=sprint_progress(sprint),
        )

    async def complete_sprint(self, sprint_id: int, user_id: str) -> CompleteSprintResult:
        """
        Mark a fully graded sprint COMPLETED.

        Idempotent: completing a COMPLETED sprint returns the same stats.

        Raises:
            NotFoundError: SESSION_NOT_FOUND
            AuthorizationError: SESSION_NOT_OWNED
            StateError: SESSION_ABANDONED, SESSION_INCOMPLETE
        """
        async with sprint_locks.hold(sprint_id):
            try:
                sprint = await self._load_owned(sprint_id, user_id)

                if sprint.status == SprintStatus.ABANDONED.value:
                    raise StateError(ErrorCode.SESSION_ABANDONED, details={"sprint_id": sprint_id})

                if sprint.status != SprintStatus.COMPLETED.value:
                    remaining = sprint_progress(sprint).remaining
                    if remaining:
                        raise StateError(
                            ErrorCode.SESSION_INCOMPLETE,
                            details={"sprint_id": sprint_id, "remaining": remaining},
                        )
                    sprint.status = SprintStatus.COMPLETED.value
                    sprint.completed_at = self.clock()
                    await self.db.commit()
                    logger.info(f"Completed sprint {sprint.id}")
            except Exception:
                await self.db.rollback()
                raise

        return CompleteSprintResult(sprint=to_sprint_view(sprint), stats=sprint_stats(sprint))

    async def abandon_sprint(self, sprint_id: int, user_id: str) -> AbandonSprintResult:
        """
        Abandon a sprint, snoozing its unreviewed cards.

        Idempotent: a terminal sprint is returned as-is with snoozed_count=0.

        Raises:
            NotFoundError: SESSION_NOT_FOUND
            AuthorizationError: SESSION_NOT_OWNED
        """
        async with sprint_locks.hold(sprint_id):
            try:
                sprint = await self._load_owned(sprint_id, user_id)

                snoozed = 0
                if not SprintStatus(sprint.status).is_terminal:
                    snoozed = self._abandon(sprint, self.clock())
                    await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise

        return AbandonSprintResult(sprint=to_sprint_view(sprint), snoozed_count=snoozed)
