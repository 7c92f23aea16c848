"""
Tests for execution automation (month boundary triggers with retry)
"""
import asyncio
import logging
from datetime import date, datetime

import pytest
from unittest.mock import patch

from app.application.automation import AutomationService, ACTION_START, ACTION_COMPLETE
from app.domain.planning_settings import PlanningSettings

AUTO = PlanningSettings(auto_start_enabled=True, auto_complete_enabled=True, automation_max_attempts=3)


@pytest.fixture
def automation(db_session, rates, clock):
    clock.now = datetime(2025, 3, 1, 0, 5)
    return AutomationService(db_session, rates, AUTO, clock)


def test_first_day_starts_tracking(automation, make_goal):
    make_goal()

    results = asyncio.run(automation.check_and_execute(date(2025, 3, 1)))

    assert [(r.action, r.month_label, r.success, r.attempts) for r in results] == [
        (ACTION_START, "2025-03", True, 1),
    ]
    assert automation.execution.get_record("2025-03").status == "executing"


def test_first_day_skips_already_started_month(automation, make_goal):
    make_goal()
    asyncio.run(automation.execution.start_tracking("2025-03"))

    assert asyncio.run(automation.check_and_execute(date(2025, 3, 1))) == []


def test_last_day_completes_executing_month(automation, make_goal, clock):
    make_goal()
    asyncio.run(automation.execution.start_tracking("2025-03"))
    clock.now = datetime(2025, 3, 31, 0, 5)

    results = asyncio.run(automation.check_and_execute(date(2025, 3, 31)))

    assert [(r.action, r.success) for r in results] == [(ACTION_COMPLETE, True)]
    assert automation.execution.get_record("2025-03").status == "closed"


def test_last_day_without_executing_month_does_nothing(automation):
    assert asyncio.run(automation.check_and_execute(date(2025, 3, 31))) == []
    assert automation.execution.get_record("2025-03") is None


def test_mid_month_does_nothing(automation, make_goal):
    make_goal()

    assert asyncio.run(automation.check_and_execute(date(2025, 3, 15))) == []


def test_disabled_triggers(db_session, rates, clock, make_goal):
    make_goal()
    automation = AutomationService(db_session, rates, PlanningSettings(), clock)

    assert asyncio.run(automation.check_and_execute(date(2025, 3, 1))) == []
    assert automation.execution.get_record("2025-03") is None


def test_retry_until_success(automation, caplog):
    calls = []

    async def flaky(month_label):
        calls.append(month_label)
        if len(calls) < 3:
            raise RuntimeError("database is locked")

    with caplog.at_level(logging.WARNING, logger="app.application.automation"):
        result = asyncio.run(automation.run_with_retry(ACTION_START, flaky, "2025-03"))

    assert result.success is True
    assert result.attempts == 3
    assert calls == ["2025-03"] * 3
    assert caplog.text.count("attempt") == 2


def test_final_failure_is_logged_not_raised(automation, caplog):
    async def broken(month_label):
        raise RuntimeError("rates down")

    with caplog.at_level(logging.WARNING, logger="app.application.automation"):
        result = asyncio.run(automation.run_with_retry(ACTION_COMPLETE, broken, "2025-03"))

    assert result.success is False
    assert result.attempts == 3
    assert result.error == "rates down"
    assert "failed after 3 attempts" in caplog.text


def test_scheduled_job_logs_gave_up_results(db_engine, rates, caplog):
    """The cron job opens its own session and reports failed triggers"""
    from sqlalchemy.orm import sessionmaker
    from app.application import scheduler
    from app.application.automation import AutomationResult

    async def failing(self, today=None):
        return [AutomationResult(ACTION_COMPLETE, "2025-03", False, 3, "rates down")]

    with patch("app.infrastructure.db.session.get_session_factory", return_value=sessionmaker(bind=db_engine)), \
            patch("app.infrastructure.rates.build_rate_provider", return_value=rates), \
            patch.object(AutomationService, "check_and_execute", failing), \
            caplog.at_level(logging.ERROR, logger="app.application.scheduler"):
        scheduler._run_execution_automation()

    assert "gave up: rates down" in caplog.text
