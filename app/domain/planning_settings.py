"""
Monthly planning settings - explicit configuration object

Built once from app.config.Settings and threaded through constructors.
"""
from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class PlanningSettings:
    budget_currency: str = "USD"
    monthly_budget: Decimal | None = None
    payment_day: int = 1
    schedule_horizon_months: int = 120
    undo_grace_period_hours: int = 24
    auto_start_enabled: bool = False
    auto_complete_enabled: bool = False
    automation_max_attempts: int = 3

    @property
    def undo_enabled(self) -> bool:
        return self.undo_grace_period_hours > 0
