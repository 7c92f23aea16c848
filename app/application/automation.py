"""
Automation - month boundary triggers for execution tracking

Day 1 (auto start): start tracking the current month if it is absent or draft.
Last day (auto complete): close the current month if it is executing.
Every trigger is retried; the final failure is logged and swallowed.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Awaitable, Callable, List, Optional
from sqlalchemy.orm import Session

from app.application.execution import ExecutionTrackingService
from app.domain.execution import STATUS_DRAFT, STATUS_EXECUTING
from app.domain.planning_settings import PlanningSettings
from app.infrastructure.rates import RateProvider
from app.utils.dates import utcnow, month_label as month_label_of, is_last_day_of_month

logger = logging.getLogger(__name__)

ACTION_START = "start_tracking"
ACTION_COMPLETE = "mark_complete"


@dataclass
class AutomationResult:
    action: str
    month_label: str
    success: bool
    attempts: int
    error: Optional[str] = None


class AutomationService:
    """
    Calendar-driven execution transitions

    The transitions themselves are idempotent, so a retried or repeated
    trigger never double-applies.
    """

    def __init__(
        self,
        db: Session,
        rate_provider: Optional[RateProvider] = None,
        settings: PlanningSettings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.settings = settings or PlanningSettings()
        self.clock = clock
        self.execution = ExecutionTrackingService(db, rate_provider, self.settings, clock)

    async def check_and_execute(self, today: date | None = None) -> List[AutomationResult]:
        """Run whatever the calendar calls for today; returns one result per trigger fired"""
        if today is None:
            today = self.clock().date()
        label = month_label_of(today)
        results: List[AutomationResult] = []

        if today.day == 1 and self.settings.auto_start_enabled:
            record = self.execution.get_record(label)
            if record is None or record.status == STATUS_DRAFT:
                results.append(await self.run_with_retry(ACTION_START, self.execution.start_tracking, label))

        if is_last_day_of_month(today) and self.settings.auto_complete_enabled:
            record = self.execution.get_record(label)
            if record is not None and record.status == STATUS_EXECUTING:
                results.append(await self.run_with_retry(ACTION_COMPLETE, self.execution.mark_complete, label))

        return results

    async def run_with_retry(
        self,
        action: str,
        use_case: Callable[[str], Awaitable],
        month_label: str,
    ) -> AutomationResult:
        """
        Invoke use_case(month_label) up to settings.automation_max_attempts times

        Never raises: the last error is logged and returned in the result.
        """
        max_attempts = max(1, self.settings.automation_max_attempts)
        for attempt in range(1, max_attempts + 1):
            try:
                await use_case(month_label)
            except Exception as exc:
                self.db.rollback()
                if attempt < max_attempts:
                    logger.warning(
                        "Automation %s for %s failed (attempt %d/%d): %s",
                        action, month_label, attempt, max_attempts, exc,
                    )
                    continue
                logger.exception(
                    "Automation %s for %s failed after %d attempts",
                    action, month_label, max_attempts,
                )
                return AutomationResult(action, month_label, False, attempt, str(exc))

            logger.info("Automation %s for %s done (attempt %d)", action, month_label, attempt)
            return AutomationResult(action, month_label, True, attempt)
