"""
Reminder Eligibility

Decides whether a user may receive a reminder push right now, and if not,
the earliest instant they might.

Rules, evaluated in order (first failure wins):
    1. notifications_enabled    → NOT_ENABLED      (next_eligible_at=None)
    2. push_token present       → NO_TOKEN         (next_eligible_at=None)
    3. no resumable sprint      → SESSION_CONFLICT (sprint.resumable_until)
    4. cooldown elapsed         → COOLDOWN_ACTIVE  (last_push_sent_at + cooldown)
    5. daily cap not reached    → CAP_REACHED      (start of next UTC day)
    6. eligible                                    (now)

"Today" is the UTC calendar day. The daily counter is implicitly zero
whenever last_push_sent_at falls on an earlier UTC day.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from microflash.db.base import utc_now
from microflash.db.models import Sprint, User
from microflash.enums.learning import SprintStatus
from microflash.enums.notifications import IneligibilityReason
from microflash.models.notifications import EligibilityResult

logger = logging.getLogger(__name__)


# ===========================================
# UTC day helpers
# ===========================================


def start_of_utc_day(moment: datetime) -> datetime:
    moment = moment.astimezone(timezone.utc)
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def start_of_next_utc_day(moment: datetime) -> datetime:
    return start_of_utc_day(moment) + timedelta(days=1)


def is_same_utc_day(moment: Optional[datetime], now: datetime) -> bool:
    if moment is None:
        return False
    return start_of_utc_day(now) <= moment < start_of_next_utc_day(now)


def effective_count_today(profile: Any, now: datetime) -> int:
    """Pushes sent on now's UTC day; zero once last_push_sent_at's day has passed."""
    if not is_same_utc_day(profile.last_push_sent_at, now):
        return 0
    return profile.notifications_count_today or 0


def record_push_sent(profile: Any, now: datetime) -> None:
    """Count a push on the profile, resetting the counter on a new UTC day."""
    profile.notifications_count_today = effective_count_today(profile, now) + 1
    profile.last_push_sent_at = now


# ===========================================
# Rules
# ===========================================


def evaluate(
    profile: Any,
    now: datetime,
    active_sprint: Optional[Any] = None,
) -> EligibilityResult:
    """
    Apply the eligibility rules to one user.

    Args:
        profile: User row (or anything with the reminder profile attributes)
        now: Reference time
        active_sprint: The user's resumable sprint, if one exists

    Returns:
        EligibilityResult; reason is set only when ineligible
    """
    if not profile.notifications_enabled:
        return EligibilityResult(eligible=False, reason=IneligibilityReason.NOT_ENABLED)

    if not profile.push_token:
        return EligibilityResult(eligible=False, reason=IneligibilityReason.NO_TOKEN)

    if (
        active_sprint is not None
        and active_sprint.status == SprintStatus.ACTIVE.value
        and active_sprint.resumable_until is not None
        and active_sprint.resumable_until > now
    ):
        return EligibilityResult(
            eligible=False,
            next_eligible_at=active_sprint.resumable_until,
            reason=IneligibilityReason.SESSION_CONFLICT,
        )

    if profile.last_push_sent_at is not None:
        cooldown_ends = profile.last_push_sent_at + timedelta(
            minutes=profile.notification_cooldown_minutes
        )
        if now < cooldown_ends:
            return EligibilityResult(
                eligible=False,
                next_eligible_at=cooldown_ends,
                reason=IneligibilityReason.COOLDOWN_ACTIVE,
            )

    if effective_count_today(profile, now) >= profile.max_notifications_per_day:
        return EligibilityResult(
            eligible=False,
            next_eligible_at=start_of_next_utc_day(now),
            reason=IneligibilityReason.CAP_REACHED,
        )

    return EligibilityResult(eligible=True, next_eligible_at=now)


class EligibilityService:
    """Loads the sprint state the rules need and evaluates them."""

    def __init__(self, db: AsyncSession, clock: Callable[[], datetime] = utc_now):
        self.db = db
        self.clock = clock

    async def resumable_sprints(
        self, user_ids: Iterable[str], now: datetime
    ) -> dict[str, Sprint]:
        """Latest-deadline resumable sprint per user."""
        ids = list(user_ids)
        if not ids:
            return {}
        result = await self.db.execute(
            select(Sprint)
            .where(
                Sprint.user_id.in_(ids),
                Sprint.status == SprintStatus.ACTIVE.value,
                Sprint.resumable_until > now,
            )
            .order_by(Sprint.resumable_until.asc())
        )
        # Later deadlines overwrite earlier ones
        return {sprint.user_id: sprint for sprint in result.scalars().all()}

    async def get_user_eligibility(
        self, user: User, now: Optional[datetime] = None
    ) -> EligibilityResult:
        now = now or self.clock()
        sprints = await self.resumable_sprints([user.id], now)
        decision = evaluate(user, now, sprints.get(user.id))
        logger.debug(
            f"Eligibility for user {user.id}: eligible={decision.eligible} "
            f"reason={decision.reason.value if decision.reason else None}"
        )
        return decision
