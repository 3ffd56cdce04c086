"""
Home Summary Service

Builds the home screen summary: how much is due, whether a sprint can be
resumed, and when the next reminder could go out.
"""

import logging
from datetime import datetime
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession

from microflash.db.base import utc_now
from microflash.models.notifications import HomeSummary, ResumableSprintSummary
from microflash.models.sprint import sprint_progress
from microflash.services.learning.card_selector import CardSelector
from microflash.services.learning.sprint_service import SprintService
from microflash.services.notifications.eligibility import evaluate
from microflash.services.users import UserService

logger = logging.getLogger(__name__)


class HomeService:
    def __init__(self, db: AsyncSession, clock: Callable[[], datetime] = utc_now):
        self.db = db
        self.clock = clock

    async def get_summary(self, user_id: str) -> HomeSummary:
        """
        Summarise the user's review state.

        Raises:
            NotFoundError: USER_NOT_FOUND
        """
        now = self.clock()
        user = await UserService(self.db, self.clock).get_user(user_id)

        selector = CardSelector(self.db, self.clock)
        due_count = await selector.count_due(user_id, now)
        overdue_count = await selector.count_overdue(user_id, now)

        sprint = await SprintService(self.db, self.clock).find_resumable_sprint(user_id, now)
        resumable = None
        if sprint is not None:
            resumable = ResumableSprintSummary(
                id=sprint.id,
                resumable_until=sprint.resumable_until,
                progress=sprint_progress(sprint),
            )

        eligibility = evaluate(user, now, sprint)

        return HomeSummary(
            due_count=due_count,
            overdue_count=overdue_count,
            resumable_sprint=resumable,
            next_eligible_push_at=eligibility.next_eligible_at,
            notifications_enabled=user.notifications_enabled,
            has_push_token=bool(user.push_token),
        )
