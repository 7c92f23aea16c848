"""
Tests for goal progress
"""
import asyncio
from datetime import date
from decimal import Decimal

from app.application.allocations import AllocationLedger
from app.application.goals import ChangeGoalStatusUseCase
from app.application.progress import (
    GoalProgressCalculator, progress_ratio, progress_percent, daily_required,
)


def test_progress_ratio_is_not_capped():
    assert progress_ratio(Decimal("150"), Decimal("100")) == Decimal("1.5")
    assert progress_ratio(Decimal("-10"), Decimal("100")) == 0
    assert progress_ratio(Decimal("10"), Decimal("0")) == 0


def test_progress_percent_is_clamped():
    assert progress_percent(Decimal("0.456")) == 45
    assert progress_percent(Decimal("1.5")) == 100
    assert progress_percent(Decimal("-0.1")) == 0


def test_daily_required():
    assert daily_required(Decimal("100"), Decimal("40"), 30) == Decimal("2")
    assert daily_required(Decimal("100"), Decimal("120"), 30) == 0
    # deadline passed: the whole remainder is due now
    assert daily_required(Decimal("100"), Decimal("40"), 0) == Decimal("60")


def test_goal_progress(db_session, make_goal, make_asset, rates):
    goal_id = make_goal(target="1000", deadline=date(2025, 12, 31))
    btc = make_asset(currency="BTC", deposit="0.005")
    AllocationLedger(db_session).allocate(btc, goal_id, "0.005")

    progress = asyncio.run(GoalProgressCalculator(db_session, rates).goal_progress(goal_id, date(2025, 12, 1)))

    assert progress.current_total == Decimal("250")
    assert progress.progress == Decimal("0.25")
    assert progress.progress_percent == 25
    assert progress.remaining == Decimal("750")
    assert progress.days_remaining == 30
    assert progress.months_remaining == 1
    assert progress.daily_required == Decimal("25")
    assert progress.is_stale is False


def test_progress_for_active_goals_only(db_session, make_goal, rates):
    later = make_goal(name="Later", deadline=date(2026, 6, 1))
    sooner = make_goal(name="Sooner", deadline=date(2025, 6, 1))
    archived = make_goal(name="Old")
    ChangeGoalStatusUseCase(db_session).execute(archived, "archived")

    result = asyncio.run(GoalProgressCalculator(db_session, rates).progress_for_goals(today=date(2025, 3, 1)))

    assert [p.goal_id for p in result] == [sooner, later]
    assert all(p.current_total == 0 for p in result)
