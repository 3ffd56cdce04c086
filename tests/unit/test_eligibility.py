"""
Unit tests for reminder eligibility.

Covers the rule order, the earliest-next-eligible instant of each rule,
the UTC-day counter reset, and push recording.
"""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from microflash.enums.learning import SprintStatus
from microflash.enums.notifications import IneligibilityReason
from microflash.services.notifications.eligibility import (
    effective_count_today,
    evaluate,
    is_same_utc_day,
    record_push_sent,
    start_of_next_utc_day,
)

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)
TOMORROW = datetime(2026, 3, 11, 0, 0, tzinfo=timezone.utc)


def make_profile(**overrides) -> SimpleNamespace:
    values = dict(
        notifications_enabled=True,
        push_token="ExponentPushToken[abc]",
        notification_cooldown_minutes=120,
        max_notifications_per_day=10,
        notifications_count_today=0,
        last_push_sent_at=None,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def make_sprint(resumable_until: datetime, status: SprintStatus = SprintStatus.ACTIVE) -> SimpleNamespace:
    return SimpleNamespace(status=status.value, resumable_until=resumable_until)


class TestRules:
    """Tests for each rule in isolation."""

    def test_eligible_profile(self):
        """Test a fresh enabled profile is eligible now."""
        result = evaluate(make_profile(), NOW)
        assert result.eligible
        assert result.next_eligible_at == NOW
        assert result.reason is None

    def test_disabled(self):
        """Test disabled notifications never become eligible by waiting."""
        result = evaluate(make_profile(notifications_enabled=False), NOW)
        assert not result.eligible
        assert result.reason == IneligibilityReason.NOT_ENABLED
        assert result.next_eligible_at is None

    @pytest.mark.parametrize("token", [None, ""])
    def test_missing_token(self, token):
        """Test a missing or empty token is NO_TOKEN."""
        result = evaluate(make_profile(push_token=token), NOW)
        assert result.reason == IneligibilityReason.NO_TOKEN
        assert result.next_eligible_at is None

    def test_resumable_sprint_blocks_until_deadline(self):
        """Test an open sprint defers reminders to its resumable_until."""
        deadline = NOW + timedelta(minutes=20)
        result = evaluate(make_profile(), NOW, make_sprint(deadline))
        assert result.reason == IneligibilityReason.SESSION_CONFLICT
        assert result.next_eligible_at == deadline

    def test_expired_or_finished_sprint_does_not_block(self):
        """Test only a still-resumable ACTIVE sprint conflicts."""
        expired = make_sprint(NOW - timedelta(minutes=1))
        completed = make_sprint(NOW + timedelta(minutes=20), SprintStatus.COMPLETED)

        assert evaluate(make_profile(), NOW, expired).eligible
        assert evaluate(make_profile(), NOW, completed).eligible

    def test_cooldown(self):
        """Test a push 90 minutes ago with a 120 minute cooldown waits 30 more."""
        last = NOW - timedelta(minutes=90)
        result = evaluate(make_profile(last_push_sent_at=last, notifications_count_today=1), NOW)

        assert result.reason == IneligibilityReason.COOLDOWN_ACTIVE
        assert result.next_eligible_at == last + timedelta(minutes=120)

    def test_cooldown_boundary_is_eligible(self):
        """Test the cooldown ends exactly at last + cooldown."""
        last = NOW - timedelta(minutes=120)
        assert evaluate(make_profile(last_push_sent_at=last, notifications_count_today=1), NOW).eligible

    def test_cap_reached_waits_for_next_utc_day(self):
        """Test hitting the daily cap defers to midnight UTC."""
        profile = make_profile(
            last_push_sent_at=NOW - timedelta(hours=3),
            notifications_count_today=10,
        )
        result = evaluate(profile, NOW)

        assert result.reason == IneligibilityReason.CAP_REACHED
        assert result.next_eligible_at == TOMORROW

    def test_counter_resets_on_new_utc_day(self):
        """Test yesterday's count does not apply today."""
        profile = make_profile(
            last_push_sent_at=NOW - timedelta(days=1),
            notifications_count_today=10,
        )
        assert evaluate(profile, NOW).eligible


class TestRuleOrder:
    """Tests that the first failing rule wins."""

    def test_disabled_beats_missing_token(self):
        """Test NOT_ENABLED is reported before NO_TOKEN."""
        result = evaluate(make_profile(notifications_enabled=False, push_token=None), NOW)
        assert result.reason == IneligibilityReason.NOT_ENABLED

    def test_token_beats_sprint_conflict(self):
        """Test NO_TOKEN is reported before SESSION_CONFLICT."""
        result = evaluate(make_profile(push_token=None), NOW, make_sprint(NOW + timedelta(minutes=5)))
        assert result.reason == IneligibilityReason.NO_TOKEN

    def test_sprint_conflict_beats_cooldown(self):
        """Test SESSION_CONFLICT is reported before COOLDOWN_ACTIVE."""
        profile = make_profile(last_push_sent_at=NOW - timedelta(minutes=5), notifications_count_today=1)
        result = evaluate(profile, NOW, make_sprint(NOW + timedelta(minutes=5)))
        assert result.reason == IneligibilityReason.SESSION_CONFLICT

    def test_cooldown_beats_cap(self):
        """Test COOLDOWN_ACTIVE is reported before CAP_REACHED."""
        profile = make_profile(
            last_push_sent_at=NOW - timedelta(minutes=5),
            notifications_count_today=10,
        )
        result = evaluate(profile, NOW)
        assert result.reason == IneligibilityReason.COOLDOWN_ACTIVE


class TestUtcDay:
    """Tests for UTC calendar day helpers and push recording."""

    def test_same_day_uses_utc_not_local_offset(self):
        """Test 01:00+02:00 on the 11th is still the 10th in UTC."""
        local = datetime(2026, 3, 11, 1, 0, tzinfo=timezone(timedelta(hours=2)))
        assert is_same_utc_day(local, NOW)

    def test_midnight_belongs_to_the_new_day(self):
        """Test the next UTC midnight is outside today."""
        assert not is_same_utc_day(TOMORROW, NOW)
        assert start_of_next_utc_day(NOW) == TOMORROW

    def test_effective_count_without_history(self):
        """Test a profile that never received a push has count zero."""
        assert effective_count_today(make_profile(notifications_count_today=4), NOW) == 0

    def test_record_push_same_day_increments(self):
        """Test a second push on the same day counts 2."""
        profile = make_profile(last_push_sent_at=NOW - timedelta(hours=2), notifications_count_today=1)
        record_push_sent(profile, NOW)

        assert profile.notifications_count_today == 2
        assert profile.last_push_sent_at == NOW

    def test_record_push_new_day_restarts_at_one(self):
        """Test the first push of a new UTC day counts 1."""
        profile = make_profile(last_push_sent_at=NOW - timedelta(days=1), notifications_count_today=7)
        record_push_sent(profile, NOW)

        assert profile.notifications_count_today == 1
