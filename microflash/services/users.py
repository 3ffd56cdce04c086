"""
User Service

Reminder profile and push token management for already-authenticated
users. Identity comes from the auth layer as an opaque string id.
"""

import logging
from datetime import datetime
from typing import Callable

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from microflash.config import settings
from microflash.db.base import utc_now
from microflash.db.models import User
from microflash.enums.errors import ErrorCode
from microflash.middleware.error_handling import NotFoundError, ValidationError
from microflash.models.learning import ReminderProfileResponse, ReminderProfileUpdate
from microflash.services.notifications.delivery import is_valid_push_token

logger = logging.getLogger(__name__)


def to_profile_response(user: User) -> ReminderProfileResponse:
    return ReminderProfileResponse(
        id=user.id,
        notifications_enabled=user.notifications_enabled,
        has_push_token=bool(user.push_token),
        notification_cooldown_minutes=user.notification_cooldown_minutes,
        max_notifications_per_day=user.max_notifications_per_day,
        notifications_count_today=user.notifications_count_today,
        last_push_sent_at=user.last_push_sent_at,
        sprint_size=user.sprint_size,
    )


class UserService:
    """Reminder profile CRUD."""

    def __init__(self, db: AsyncSession, clock: Callable[[], datetime] = utc_now):
        self.db = db
        self.clock = clock

    async def get_user(self, user_id: str) -> User:
        user = await self.db.get(User, user_id)
        if user is None:
            raise NotFoundError(ErrorCode.USER_NOT_FOUND, details={"user_id": user_id})
        return user

    async def get_or_create(self, user_id: str) -> User:
        """Return the user's row, creating it with default settings on first sight."""
        user = await self.db.get(User, user_id)
        if user is not None:
            return user

        user = User(
            id=user_id,
            notifications_enabled=False,
            push_token=None,
            notification_cooldown_minutes=settings.NOTIFICATION_MIN_COOLDOWN_MINUTES,
            max_notifications_per_day=settings.NOTIFICATION_DEFAULT_MAX_PER_DAY,
            notifications_count_today=0,
            last_push_sent_at=None,
            sprint_size=settings.SPRINT_DEFAULT_SIZE,
            created_at=self.clock(),
        )
        self.db.add(user)
        await self.db.commit()
        logger.info(f"Created user {user_id}")
        return user

    async def get_profile(self, user_id: str) -> ReminderProfileResponse:
        return to_profile_response(await self.get_user(user_id))

    async def update_reminder_profile(
        self, user_id: str, changes: ReminderProfileUpdate
    ) -> ReminderProfileResponse:
        """
        Apply a partial profile update.

        Raises:
            ValidationError: INVALID_PROFILE when cooldown is below the
                minimum, sprint size is outside its range, or the daily cap
                is below 1. Nothing is changed in that case.
        """
        problems = {}
        if (
            changes.notification_cooldown_minutes is not None
            and changes.notification_cooldown_minutes < settings.NOTIFICATION_MIN_COOLDOWN_MINUTES
        ):
            problems["notification_cooldown_minutes"] = (
                f">= {settings.NOTIFICATION_MIN_COOLDOWN_MINUTES}"
            )
        if changes.sprint_size is not None and not (
            settings.SPRINT_MIN_SIZE <= changes.sprint_size <= settings.SPRINT_MAX_SIZE
        ):
            problems["sprint_size"] = f"{settings.SPRINT_MIN_SIZE}-{settings.SPRINT_MAX_SIZE}"
        if changes.max_notifications_per_day is not None and changes.max_notifications_per_day < 1:
            problems["max_notifications_per_day"] = ">= 1"

        if problems:
            raise ValidationError(ErrorCode.INVALID_PROFILE, details=problems)

        user = await self.get_user(user_id)
        for name, value in changes.model_dump(exclude_none=True).items():
            setattr(user, name, value)
        await self.db.commit()

        logger.info(f"Updated reminder profile for user {user_id}")
        return to_profile_response(user)

    async def register_push_token(self, user_id: str, token: str) -> ReminderProfileResponse:
        """
        Store the device push token.

        Raises:
            ValidationError: INVALID_PUSH_TOKEN for a malformed token
        """
        if not is_valid_push_token(token):
            raise ValidationError(ErrorCode.INVALID_PUSH_TOKEN)

        user = await self.get_user(user_id)
        user.push_token = token
        await self.db.commit()

        logger.info(f"Registered push token for user {user_id}")
        return to_profile_response(user)

    async def remove_push_token(self, user_id: str) -> bool:
        """Clear the user's push token. Returns False if there was none."""
        user = await self.get_user(user_id)
        if not user.push_token:
            return False
        user.push_token = None
        await self.db.commit()

        logger.info(f"Removed push token for user {user_id}")
        return True

    async def clear_push_token_if_matches(self, user_id: str, token: str) -> bool:
        """
        Clear the token only if it is still the one that failed.

        A token re-registered while a push was in flight is kept. Does not
        commit; the caller owns the transaction.
        """
        result = await self.db.execute(
            update(User)
            .where(User.id == user_id, User.push_token == token)
            .values(push_token=None)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

