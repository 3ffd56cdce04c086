"""
Integration tests for the reminder orchestrator.

Runs full ticks against a SQLite database with a fake push transport.

Test Organization:
- TestDiscovery: which cards count as due for a reminder
- TestDispatch: what is marked and recorded after delivery
- TestFailures: permanent and transient delivery failures
- TestEligibility: users skipped by the eligibility rules
"""

from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
from sqlalchemy import select

from microflash.db.models import Card, User
from microflash.enums.errors import ErrorCode
from microflash.middleware.error_handling import TransientError
from microflash.services.learning.spaced_rep_service import SpacedRepService
from microflash.services.learning.sprint_service import SprintService
from microflash.services.notifications.orchestrator import NotificationOrchestrator
from microflash.services.users import UserService
from tests.conftest import T0
from tests.factories import VALID_TOKEN, create_card, create_deck, create_user

pytestmark = pytest.mark.integration

USER = "user-1"
OTHER_USER = "user-2"
OTHER_TOKEN = "ExponentPushToken[test-device-2]"


@pytest.fixture
def orchestrator(transport, session_maker, clock):
    return NotificationOrchestrator(transport, session_maker=session_maker, clock=clock)


async def fresh_card(db, card_id: int) -> Card:
    return (
        await db.execute(select(Card).where(Card.id == card_id).execution_options(populate_existing=True))
    ).scalar_one()


async def fresh_user(db, user_id: str) -> User:
    return (
        await db.execute(select(User).where(User.id == user_id).execution_options(populate_existing=True))
    ).scalar_one()


class TestDiscovery:
    """Tests for find_due_cards."""

    @pytest_asyncio.fixture
    async def deck(self, db):
        await create_user(db, USER)
        return await create_deck(db, USER)

    @pytest.mark.asyncio
    async def test_window_snooze_and_recent_filters(self, db, deck, orchestrator):
        """Test only unsnoozed, not recently notified cards inside the window qualify."""
        in_window_past = await create_card(db, deck, next_due_at=T0 - timedelta(minutes=3))
        in_window_future = await create_card(db, deck, next_due_at=T0 + timedelta(minutes=5))
        await create_card(db, deck, next_due_at=T0 - timedelta(minutes=20))
        await create_card(db, deck, next_due_at=T0 + timedelta(minutes=8))
        await create_card(db, deck, next_due_at=T0, snoozed_until=T0 + timedelta(minutes=30))
        await create_card(db, deck, next_due_at=T0, notified_at=T0 - timedelta(minutes=10))
        stale_notice = await create_card(db, deck, next_due_at=T0, notified_at=T0 - timedelta(minutes=40))

        due = await orchestrator.find_due_cards(db, T0)

        assert [d.card_id for d in due] == [in_window_past.id, stale_notice.id, in_window_future.id]
        assert all(d.push_token == VALID_TOKEN for d in due)

    @pytest.mark.asyncio
    async def test_disabled_or_tokenless_users_are_excluded(self, db, orchestrator):
        """Test users who cannot receive pushes contribute no cards."""
        await create_user(db, "disabled", notifications_enabled=False)
        await create_user(db, "tokenless", push_token=None)
        await create_user(db, "blank", push_token="")
        for user_id in ("disabled", "tokenless", "blank"):
            await create_card(db, await create_deck(db, user_id))

        assert await orchestrator.find_due_cards(db, T0) == []


class TestDispatch:
    """Tests for a successful tick."""

    @pytest_asyncio.fixture
    async def setup(self, db):
        await create_user(db, USER)
        spanish = await create_deck(db, USER, title="Spanish")
        math = await create_deck(db, USER, title="Math")
        cards = [
            await create_card(db, spanish, next_due_at=T0 - timedelta(minutes=2)),
            await create_card(db, spanish, next_due_at=T0 - timedelta(minutes=1)),
            await create_card(db, math, next_due_at=T0),
        ]
        return cards

    @pytest.mark.asyncio
    async def test_tick_sends_one_grouped_reminder(self, db, setup, orchestrator, transport):
        """Test one push per user, marking every card and recording the send."""
        result = await orchestrator.run_tick()

        assert result.due_cards == 3
        assert result.groups == 1
        assert result.sent == 1
        assert result.failed == 0
        assert result.cards_marked == 3

        assert len(transport.messages) == 1
        message = transport.messages[0]
        assert message.token == VALID_TOKEN
        assert message.title == "Cards ready for review!"
        assert message.body == "3 due: 2 in Spanish, 1 in Math"
        assert message.category_id == "due_cards"
        assert message.data["card_ids"] == [c.id for c in setup]

        for card in setup:
            assert (await fresh_card(db, card.id)).notified_at == T0
        user = await fresh_user(db, USER)
        assert user.last_push_sent_at == T0
        assert user.notifications_count_today == 1

    @pytest.mark.asyncio
    async def test_second_tick_sends_nothing(self, setup, orchestrator, transport, clock):
        """Test a follow-up tick neither re-notifies cards nor breaks cooldown."""
        await orchestrator.run_tick()
        clock.advance(minutes=15)

        result = await orchestrator.run_tick()

        assert result.sent == 0
        assert len(transport.batches) == 1

    @pytest.mark.asyncio
    async def test_users_are_batched_together(self, db, setup, orchestrator, transport):
        """Test all eligible users go out in one transport batch."""
        await create_user(db, OTHER_USER, push_token=OTHER_TOKEN)
        await create_card(db, await create_deck(db, OTHER_USER, title="Art"))

        result = await orchestrator.run_tick()

        assert result.sent == 2
        assert len(transport.batches) == 1
        assert {m.token for m in transport.batches[0]} == {VALID_TOKEN, OTHER_TOKEN}

    @pytest.mark.asyncio
    async def test_nothing_due_skips_transport(self, db, orchestrator, transport):
        """Test an empty tick never calls the transport."""
        await create_user(db, USER)

        result = await orchestrator.run_tick()

        assert result.due_cards == 0
        assert transport.batches == []


class TestFailures:
    """Tests for delivery failures."""

    @pytest_asyncio.fixture
    async def card(self, db):
        await create_user(db, USER)
        return await create_card(db, await create_deck(db, USER))

    @pytest.mark.asyncio
    async def test_permanent_failure_clears_token(self, db, card, orchestrator, transport):
        """Test DeviceNotRegistered drops the token and leaves cards unmarked."""
        transport.permanent.add(VALID_TOKEN)

        result = await orchestrator.run_tick()

        assert result.failed == 1
        assert result.tokens_cleared == 1
        assert (await fresh_user(db, USER)).push_token is None
        assert (await fresh_card(db, card.id)).notified_at is None

    @pytest.mark.asyncio
    async def test_transient_failure_retries_next_tick(self, db, card, orchestrator, transport, clock):
        """Test a transient failure keeps the token and retries on the next tick."""
        transport.transient.add(VALID_TOKEN)

        first = await orchestrator.run_tick()
        assert first.failed == 1
        assert first.tokens_cleared == 0
        user = await fresh_user(db, USER)
        assert user.push_token == VALID_TOKEN
        assert user.last_push_sent_at is None
        assert (await fresh_card(db, card.id)).notified_at is None

        transport.transient.clear()
        clock.advance(minutes=5)
        second = await orchestrator.run_tick()

        assert second.sent == 1
        assert (await fresh_card(db, card.id)).notified_at == clock.now

    @pytest.mark.asyncio
    async def test_transport_exception_is_transient(self, db, card, orchestrator, transport):
        """Test a crashing transport fails the batch without touching state."""
        transport.raise_error = ConnectionError("push service unreachable")

        result = await orchestrator.run_tick()

        assert result.failed == 1
        assert result.tokens_cleared == 0
        assert (await fresh_user(db, USER)).push_token == VALID_TOKEN
        assert (await fresh_card(db, card.id)).notified_at is None

    @pytest.mark.asyncio
    async def test_transport_transient_error_keeps_cards_eligible(self, db, card, orchestrator, transport):
        """Test a TransientError from the transport fails the batch for retry."""
        transport.raise_error = TransientError(ErrorCode.DELIVERY_FAILED, message="push service down")

        result = await orchestrator.run_tick()

        assert result.sent == 0
        assert result.failed == 1
        assert result.tokens_cleared == 0
        assert (await fresh_user(db, USER)).push_token == VALID_TOKEN
        assert (await fresh_card(db, card.id)).notified_at is None

    @pytest.mark.asyncio
    async def test_rotated_token_survives_permanent_failure(
        self, db, card, orchestrator, transport, session_maker
    ):
        """Test a token re-registered mid-dispatch is not cleared by the old token's failure."""
        new_token = "ExponentPushToken[rotated]"
        transport.permanent.add(VALID_TOKEN)

        async def rotate(messages):
            async with session_maker() as session:
                await UserService(session).register_push_token(USER, new_token)

        transport.on_send = rotate

        result = await orchestrator.run_tick()

        assert result.failed == 1
        assert result.tokens_cleared == 0
        assert (await fresh_user(db, USER)).push_token == new_token

    @pytest.mark.asyncio
    async def test_token_cleanup_error_keeps_delivered_reminders_recorded(
        self, db, card, orchestrator, transport, clock
    ):
        """Test a failing token cleanup cannot undo another user's delivered reminder."""
        await create_user(db, OTHER_USER, push_token=OTHER_TOKEN)
        await create_card(db, await create_deck(db, OTHER_USER))
        transport.permanent.add(OTHER_TOKEN)

        with patch.object(
            UserService,
            "clear_push_token_if_matches",
            AsyncMock(side_effect=RuntimeError("database went away")),
        ):
            result = await orchestrator.run_tick()

        assert result.sent == 1
        assert result.failed == 1
        assert result.tokens_cleared == 0
        assert (await fresh_card(db, card.id)).notified_at == T0
        user = await fresh_user(db, USER)
        assert user.last_push_sent_at == T0
        assert user.notifications_count_today == 1

        clock.advance(minutes=5)
        second = await orchestrator.run_tick()

        assert second.tokens_cleared == 1
        assert [m.token for m in transport.messages].count(VALID_TOKEN) == 1
        assert (await fresh_user(db, OTHER_USER)).push_token is None

    @pytest.mark.asyncio
    async def test_recording_error_for_one_user_keeps_the_others(self, db, card, orchestrator, transport):
        """Test each delivered reminder is committed on its own."""
        await create_user(db, OTHER_USER, push_token=OTHER_TOKEN)
        other_card = await create_card(db, await create_deck(db, OTHER_USER))
        original = SpacedRepService.mark_cards_notified

        async def fail_for_first_user(service, card_ids, now):
            if card.id in card_ids:
                raise RuntimeError("write failed")
            return await original(service, card_ids, now)

        with patch.object(SpacedRepService, "mark_cards_notified", fail_for_first_user):
            result = await orchestrator.run_tick()

        assert result.sent == 2
        assert result.cards_marked == 1
        assert (await fresh_card(db, card.id)).notified_at is None
        assert (await fresh_card(db, other_card.id)).notified_at == T0
        assert (await fresh_user(db, OTHER_USER)).last_push_sent_at == T0

    @pytest.mark.asyncio
    async def test_one_user_failing_does_not_block_another(self, db, card, orchestrator, transport):
        """Test delivery outcomes are applied per user."""
        await create_user(db, OTHER_USER, push_token=OTHER_TOKEN)
        other_card = await create_card(db, await create_deck(db, OTHER_USER))
        transport.transient.add(VALID_TOKEN)

        result = await orchestrator.run_tick()

        assert result.sent == 1
        assert result.failed == 1
        assert (await fresh_card(db, card.id)).notified_at is None
        assert (await fresh_card(db, other_card.id)).notified_at == result.started_at


class TestEligibility:
    """Tests for users filtered out before dispatch."""

    @pytest.mark.asyncio
    async def test_cooldown_user_is_skipped(self, db, orchestrator, transport):
        """Test a user inside their cooldown is not sent anything."""
        await create_user(
            db, USER, last_push_sent_at=T0 - timedelta(minutes=60), notifications_count_today=1
        )
        card = await create_card(db, await create_deck(db, USER))

        result = await orchestrator.run_tick()

        assert result.groups == 1
        assert result.skipped_ineligible == 1
        assert transport.batches == []
        assert (await fresh_card(db, card.id)).notified_at is None

    @pytest.mark.asyncio
    async def test_daily_cap_user_is_skipped(self, db, orchestrator, transport):
        """Test a user at the daily cap is skipped until the next UTC day."""
        await create_user(
            db,
            USER,
            last_push_sent_at=T0 - timedelta(hours=3),
            notifications_count_today=2,
            max_notifications_per_day=2,
        )
        await create_card(db, await create_deck(db, USER))

        result = await orchestrator.run_tick()

        assert result.skipped_ineligible == 1
        assert transport.batches == []

    @pytest.mark.asyncio
    async def test_user_in_open_sprint_is_skipped(self, db, orchestrator, transport, clock):
        """Test a resumable sprint suppresses reminders for its owner."""
        await create_user(db, USER)
        deck = await create_deck(db, USER)
        await create_card(db, deck, next_due_at=T0 - timedelta(minutes=3))
        await create_card(db, deck, next_due_at=T0 - timedelta(minutes=2))
        await create_user(db, OTHER_USER, push_token=OTHER_TOKEN)
        await create_card(db, await create_deck(db, OTHER_USER))

        service = SprintService(db, clock)
        sprint = (await service.start_sprint(USER)).sprint
        await service.grade_card(sprint.id, sprint.cards[0].card.id, "GOOD", USER)

        # One card stays claimed but ungraded; add a fresh due card as well
        await create_card(db, deck, next_due_at=T0)

        result = await orchestrator.run_tick()

        assert result.skipped_ineligible == 1
        assert [m.token for m in transport.messages] == [OTHER_TOKEN]
