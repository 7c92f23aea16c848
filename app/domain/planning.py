"""
Planning domain - monthly requirements, flex adjustment, feasibility analysis, contribution schedule

Everything here is pure and synchronous: current totals and exchange rates are
resolved by the caller (BudgetPlanningService) and passed in as PlanningGoal values.
Amounts inside the analyzer and the scheduler are in the budget currency.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal, ROUND_CEILING
from typing import Dict, List, Optional, Tuple

from app.domain.planning_settings import PlanningSettings
from app.utils.dates import add_months, next_payment_date

# Tolerance for "goal complete" and "budget covers the minimum"
EPSILON = Decimal("0.01")

ZERO = Decimal("0")
CENT = Decimal("0.01")

# Days per planning month (months_remaining = ceil(days / 30))
DAYS_PER_MONTH = 30

# Per-goal requirement statuses
REQUIREMENT_COMPLETED = "completed"
REQUIREMENT_ON_TRACK = "on_track"
REQUIREMENT_ATTENTION = "attention"
REQUIREMENT_CRITICAL = "critical"

REQUIREMENT_CRITICAL_THRESHOLD = Decimal("10000")
REQUIREMENT_ATTENTION_THRESHOLD = Decimal("5000")

# Feasibility levels
LEVEL_ACHIEVABLE = "achievable"
LEVEL_AT_RISK = "at_risk"
LEVEL_CRITICAL = "critical"

# Shortfall share of the minimum above which the plan is critical
CRITICAL_SHORTFALL_RATIO = Decimal("0.25")


# ============================================================================
# Inputs
# ============================================================================


@dataclass(frozen=True)
class PlanningGoal:
    """
    Active goal with its funding state already resolved

    rate_to_budget converts one unit of the goal currency into the budget
    currency; None means the rate could not be fetched.
    """
    goal_id: str
    name: str
    currency: str
    target_amount: Decimal
    current_total: Decimal
    deadline: date
    emoji: Optional[str] = None
    rate_to_budget: Optional[Decimal] = Decimal("1")

    @property
    def has_rate(self) -> bool:
        return self.rate_to_budget is not None and self.rate_to_budget > 0

    @property
    def remaining(self) -> Decimal:
        """Still missing, goal currency"""
        return max(ZERO, self.target_amount - self.current_total)

    def to_budget(self, amount: Decimal) -> Decimal:
        if not self.has_rate:
            raise ValueError(f"No exchange rate for goal {self.goal_id}")
        return amount * self.rate_to_budget

    def from_budget(self, amount: Decimal) -> Decimal:
        if not self.has_rate:
            raise ValueError(f"No exchange rate for goal {self.goal_id}")
        return amount / self.rate_to_budget

    @property
    def remaining_in_budget(self) -> Decimal:
        return self.to_budget(self.remaining)


def days_remaining(deadline: date, today: date) -> int:
    return max(0, (deadline - today).days)


def months_remaining(deadline: date, today: date) -> int:
    """Planning months left, never less than one"""
    return max(1, math.ceil(days_remaining(deadline, today) / DAYS_PER_MONTH))


def priority_order(goals: List[PlanningGoal]) -> List[PlanningGoal]:
    """
    Funding priority: earliest deadline, then smallest target, then id

    Targets are compared in the budget currency when the rate is known.
    """
    def key(goal: PlanningGoal):
        target = goal.to_budget(goal.target_amount) if goal.has_rate else goal.target_amount
        return (goal.deadline, target, goal.goal_id)

    return sorted(goals, key=key)


def required_monthly(goal: PlanningGoal, today: date) -> Decimal:
    """Monthly contribution that hits the deadline exactly (budget currency)"""
    return goal.remaining_in_budget / months_remaining(goal.deadline, today)


def minimum_required(goals: List[PlanningGoal], today: date) -> Decimal:
    return sum((required_monthly(g, today) for g in goals if g.has_rate), ZERO)


def minimum_budget(goals: List[PlanningGoal], today: date) -> Decimal:
    """
    Smallest monthly budget under which the deadline-ordered waterfall
    meets every deadline, rounded up to cents

    For the k-th goal in priority order everything ahead of it (and itself)
    must be paid within its own months_remaining.
    """
    cumulative = ZERO
    best = ZERO
    for goal in priority_order([g for g in goals if g.has_rate]):
        cumulative += goal.remaining_in_budget
        best = max(best, cumulative / months_remaining(goal.deadline, today))
    return best.quantize(CENT, rounding=ROUND_CEILING)


# ============================================================================
# Per-goal mode
# ============================================================================


@dataclass(frozen=True)
class MonthlyRequirement:
    """What one goal needs per month on its own (goal currency)"""
    goal_id: str
    name: str
    currency: str
    target_amount: Decimal
    current_total: Decimal
    remaining: Decimal
    months_remaining: int
    required_monthly: Decimal
    progress: Decimal
    deadline: date
    status: str


def requirement_for(goal: PlanningGoal, today: date) -> MonthlyRequirement:
    remaining = goal.remaining
    months = months_remaining(goal.deadline, today)
    monthly = remaining / months
    progress = max(ZERO, goal.current_total / goal.target_amount) if goal.target_amount > 0 else ZERO

    if remaining <= 0:
        status = REQUIREMENT_COMPLETED
    elif monthly > REQUIREMENT_CRITICAL_THRESHOLD:
        status = REQUIREMENT_CRITICAL
    elif monthly > REQUIREMENT_ATTENTION_THRESHOLD or months <= 1:
        status = REQUIREMENT_ATTENTION
    else:
        status = REQUIREMENT_ON_TRACK

    return MonthlyRequirement(
        goal_id=goal.goal_id,
        name=goal.name,
        currency=goal.currency,
        target_amount=goal.target_amount,
        current_total=goal.current_total,
        remaining=remaining,
        months_remaining=months,
        required_monthly=monthly,
        progress=progress,
        deadline=goal.deadline,
        status=status,
    )


# Per-month goal plan states (follow the month's execution record)
PLAN_STATE_DRAFT = "draft"
PLAN_STATE_EXECUTING = "executing"
PLAN_STATE_CLOSED = "closed"


@dataclass
class MonthlyGoalPlan:
    """
    One goal's plan for one month, with the user's overrides

    Protected and skipped are mutually exclusive: switching one on clears
    the other. A custom amount replaces the required amount and un-skips.
    """
    goal_id: str
    month_label: str
    currency: str
    required_monthly: Decimal
    remaining_amount: Decimal
    months_remaining: int
    status: str
    state: str = PLAN_STATE_DRAFT
    custom_amount: Optional[Decimal] = None
    is_protected: bool = False
    is_skipped: bool = False

    @classmethod
    def from_requirement(cls, requirement: MonthlyRequirement, month_label: str) -> "MonthlyGoalPlan":
        return cls(
            goal_id=requirement.goal_id,
            month_label=month_label,
            currency=requirement.currency,
            required_monthly=requirement.required_monthly,
            remaining_amount=requirement.remaining,
            months_remaining=requirement.months_remaining,
            status=requirement.status,
        )

    @property
    def is_draft(self) -> bool:
        return self.state == PLAN_STATE_DRAFT

    @property
    def effective_amount(self) -> Decimal:
        """What the user intends to put in this month"""
        if self.is_skipped:
            return ZERO
        if self.custom_amount is not None:
            return self.custom_amount
        return self.required_monthly

    def refresh(self, requirement: MonthlyRequirement) -> None:
        """New requirement figures; overrides are kept"""
        self.required_monthly = requirement.required_monthly
        self.remaining_amount = requirement.remaining
        self.months_remaining = requirement.months_remaining
        self.currency = requirement.currency
        self.status = requirement.status

    def toggle_protected(self) -> None:
        self.is_protected = not self.is_protected
        self.is_skipped = False

    def toggle_skipped(self) -> None:
        self.is_skipped = not self.is_skipped
        self.is_protected = False

    def set_custom_amount(self, amount: Optional[Decimal]) -> None:
        if amount is not None and amount < 0:
            raise ValueError("Custom amount cannot be negative")
        self.custom_amount = amount
        self.is_skipped = False


# ============================================================================
# Flex adjustment
# ============================================================================

STRATEGY_BALANCED = "balanced"
STRATEGY_PRIORITIZE_URGENT = "prioritize_urgent"
STRATEGY_PRIORITIZE_LARGEST = "prioritize_largest"
STRATEGY_MINIMIZE_RISK = "minimize_risk"

REDISTRIBUTION_STRATEGIES = (
    STRATEGY_BALANCED,
    STRATEGY_PRIORITIZE_URGENT,
    STRATEGY_PRIORITIZE_LARGEST,
    STRATEGY_MINIMIZE_RISK,
)

RISK_LOW = "low"
RISK_MEDIUM = "medium"
RISK_HIGH = "high"

_RISK_RANK = {RISK_LOW: 1, RISK_MEDIUM: 2, RISK_HIGH: 3}

# A flexible goal keeps between 10% and 150% of its requirement
FLEX_MIN_SHARE = Decimal("0.10")
FLEX_MAX_SHARE = Decimal("1.50")
FLEX_MAX_FACTOR = Decimal("2")
# Per-month plans only take factors up to the cap
PLAN_FLEX_MAX_FACTOR = Decimal("1.5")

# Excess at or below this is not redistributed
TRIVIAL_EXCESS = Decimal("1")

# Factors this close to 1 clear a custom amount
FLEX_UNITY_TOLERANCE = Decimal("0.0000001")

HUNDRED = Decimal("100")


@dataclass(frozen=True)
class ImpactAnalysis:
    change_amount: Decimal
    change_percentage: Decimal
    estimated_delay_months: int
    risk_level: str


@dataclass(frozen=True)
class AdjustedRequirement:
    requirement: MonthlyRequirement
    adjusted_amount: Decimal
    reason: str
    is_protected: bool
    is_skipped: bool
    adjustment_factor: Decimal
    redistribution_amount: Decimal
    impact: ImpactAnalysis

    @property
    def goal_id(self) -> str:
        return self.requirement.goal_id

    @property
    def has_been_reduced(self) -> bool:
        return self.adjusted_amount < self.requirement.required_monthly

    @property
    def has_been_increased(self) -> bool:
        return self.adjusted_amount > self.requirement.required_monthly


@dataclass
class AdjustmentSimulation:
    adjusted: List[AdjustedRequirement]
    total_original: Decimal
    total_adjusted: Decimal
    total_reduced: Decimal
    total_redistributed: Decimal
    affected_goals: int

    @property
    def total_savings(self) -> Decimal:
        return self.total_original - self.total_adjusted

    @property
    def risk_by_goal_id(self) -> Dict[str, str]:
        return {a.goal_id: a.impact.risk_level for a in self.adjusted}

    @property
    def delay_by_goal_id(self) -> Dict[str, int]:
        return {a.goal_id: a.impact.estimated_delay_months for a in self.adjusted}


def _impact(requirement: MonthlyRequirement, adjusted_amount: Decimal) -> ImpactAnalysis:
    original = requirement.required_monthly
    change = adjusted_amount - original
    percentage = change / original * HUNDRED if original > 0 else ZERO

    delay = 0
    if change < 0 and adjusted_amount > 0:
        delay = math.ceil(-change / max(Decimal("1"), adjusted_amount) * requirement.months_remaining)

    if percentage < -50:
        risk = RISK_HIGH
    elif percentage < -25:
        risk = RISK_MEDIUM
    else:
        risk = RISK_LOW

    return ImpactAnalysis(
        change_amount=change,
        change_percentage=percentage,
        estimated_delay_months=delay,
        risk_level=risk,
    )


def _adjusted(
    requirement: MonthlyRequirement,
    amount: Decimal,
    reason: str,
    factor: Decimal,
    redistribution: Decimal = ZERO,
    is_protected: bool = False,
    is_skipped: bool = False,
) -> AdjustedRequirement:
    return AdjustedRequirement(
        requirement=requirement,
        adjusted_amount=amount,
        reason=reason,
        is_protected=is_protected,
        is_skipped=is_skipped,
        adjustment_factor=factor,
        redistribution_amount=redistribution,
        impact=_impact(requirement, amount),
    )


def apply_flex_adjustment(
    requirements: List[MonthlyRequirement],
    adjustment,
    protected_goal_ids=(),
    skipped_goal_ids=(),
    strategy: str = STRATEGY_BALANCED,
) -> List[AdjustedRequirement]:
    """
    Scale every flexible goal's monthly requirement by `adjustment`

    Protected goals keep their full requirement and skipped goals drop to
    zero. A flexible goal is held between 10% and 150% of its requirement;
    whatever the cap cuts off (less what the floor adds) is handed to other
    flexible goals according to `strategy`. Sorted by goal name.
    """
    if strategy not in REDISTRIBUTION_STRATEGIES:
        raise ValueError(f"Unknown redistribution strategy: {strategy}")

    factor = min(FLEX_MAX_FACTOR, max(ZERO, Decimal(str(adjustment))))
    protected_ids, skipped_ids = set(protected_goal_ids), set(skipped_goal_ids)

    adjusted: List[AdjustedRequirement] = []
    flexible: List[tuple] = []
    excess = ZERO
    deficit = ZERO

    for req in requirements:
        if req.goal_id in skipped_ids:
            adjusted.append(_adjusted(req, ZERO, "Skipped this month", ZERO, is_skipped=True))
        elif req.goal_id in protected_ids:
            adjusted.append(_adjusted(req, req.required_monthly, "Protected", Decimal("1"), is_protected=True))
        else:
            raw = req.required_monthly * factor
            low = req.required_monthly * FLEX_MIN_SHARE
            high = req.required_monthly * FLEX_MAX_SHARE
            if raw > high:
                excess += raw - high
            elif raw < low:
                deficit += low - raw
            flexible.append((req, min(high, max(low, raw))))

    net_excess = excess - deficit
    if net_excess > TRIVIAL_EXCESS:
        redistribution = _redistribute(flexible, net_excess, strategy)
    else:
        redistribution = {}

    for req, amount in flexible:
        extra, reason = redistribution.get(req.goal_id, (ZERO, "Adjusted"))
        adjusted.append(_adjusted(req, amount + extra, reason, factor, redistribution=extra))

    return sorted(adjusted, key=lambda a: a.requirement.name)


def _redistribute(flexible: List[tuple], net_excess: Decimal, strategy: str) -> Dict[str, tuple]:
    """goal_id -> (extra amount, reason)"""
    extra: Dict[str, tuple] = {}

    if strategy in (STRATEGY_BALANCED, STRATEGY_PRIORITIZE_LARGEST):
        eligible = [
            (req, amount) for req, amount in flexible
            if 0 < amount < req.required_monthly * FLEX_MAX_SHARE
        ]
        if not eligible:
            return extra
        total_required = sum((req.required_monthly for req, _ in eligible), ZERO)
        for req, amount in eligible:
            if strategy == STRATEGY_BALANCED:
                wanted = net_excess / len(eligible)
                reason = "Balanced redistribution"
            else:
                if total_required <= 0:
                    continue
                wanted = net_excess * req.required_monthly / total_required
                reason = "Proportional redistribution"
            headroom = req.required_monthly * FLEX_MAX_SHARE - amount
            extra[req.goal_id] = (min(wanted, headroom), reason)
        return extra

    if strategy == STRATEGY_PRIORITIZE_URGENT:
        ordered = [
            (req, amount, Decimal("0.50"))
            for req, amount in sorted(flexible, key=lambda p: (p[0].months_remaining, p[0].progress))
        ]
        reason = "Urgent priority"
    else:
        ranked = []
        for req, amount in flexible:
            cut = (req.required_monthly - amount) / req.required_monthly * HUNDRED if req.required_monthly > 0 else ZERO
            if cut > 50 or req.months_remaining <= 2:
                risk = RISK_HIGH
            elif cut > 25 or req.months_remaining <= 4:
                risk = RISK_MEDIUM
            else:
                risk = RISK_LOW
            ranked.append((req, amount, risk))
        ranked.sort(key=lambda r: _RISK_RANK[r[2]], reverse=True)
        ordered = [
            (req, amount, Decimal("0.80") if risk == RISK_HIGH else Decimal("0.30"))
            for req, amount, risk in ranked
        ]
        reason = "Risk minimization"

    left = net_excess
    for req, amount, max_increase in ordered:
        if left <= 0:
            break
        if amount <= 0:
            continue
        increase = min(left, req.required_monthly * max_increase)
        extra[req.goal_id] = (increase, reason)
        left -= increase
    return extra


def simulate_flex_adjustment(
    requirements: List[MonthlyRequirement],
    adjustment,
    protected_goal_ids=(),
    skipped_goal_ids=(),
    strategy: str = STRATEGY_BALANCED,
) -> AdjustmentSimulation:
    """apply_flex_adjustment plus totals; nothing is persisted"""
    adjusted = apply_flex_adjustment(requirements, adjustment, protected_goal_ids, skipped_goal_ids, strategy)
    return AdjustmentSimulation(
        adjusted=adjusted,
        total_original=sum((r.required_monthly for r in requirements), ZERO),
        total_adjusted=sum((a.adjusted_amount for a in adjusted), ZERO),
        total_reduced=sum(
            (a.requirement.required_monthly - a.adjusted_amount for a in adjusted if a.has_been_reduced), ZERO
        ),
        total_redistributed=sum(
            (a.redistribution_amount for a in adjusted if a.redistribution_amount > 0), ZERO
        ),
        affected_goals=sum(1 for a in adjusted if a.redistribution_amount != 0),
    )


def flex_plan_amount(plan: MonthlyGoalPlan, adjustment: Decimal) -> Optional[Decimal]:
    """
    Custom amount a flex factor writes into a flexible per-month plan

    None clears the custom amount (factor 1). Raises ValueError when the
    scaled amount is not positive.
    """
    if abs(adjustment - 1) <= FLEX_UNITY_TOLERANCE:
        return None
    amount = plan.required_monthly * adjustment
    if amount <= 0:
        raise ValueError(f"Adjusted amount for goal {plan.goal_id} must be positive")
    return amount


# ============================================================================
# Feasibility
# ============================================================================


@dataclass(frozen=True)
class Suggestion:
    kind = "suggestion"


@dataclass(frozen=True)
class IncreaseBudget(Suggestion):
    kind = "increase_budget"
    to: Decimal
    currency: str


@dataclass(frozen=True)
class ExtendDeadline(Suggestion):
    kind = "extend_deadline"
    goal_id: str
    goal_name: str
    new_date: date
    months: int


@dataclass(frozen=True)
class ReduceTarget(Suggestion):
    kind = "reduce_target"
    goal_id: str
    goal_name: str
    new_amount: Decimal
    currency: str


@dataclass(frozen=True)
class EditGoal(Suggestion):
    kind = "edit_goal"
    goal_id: str
    goal_name: str


@dataclass(frozen=True)
class InfeasibleGoal:
    goal_id: str
    goal_name: str
    currency: str
    deadline: date
    required_monthly: Decimal
    fair_share: Decimal
    shortfall: Decimal


@dataclass
class FeasibilityResult:
    is_feasible: bool
    monthly_budget: Decimal
    currency: str
    minimum_required: Decimal
    infeasible_goals: List[InfeasibleGoal] = field(default_factory=list)
    suggestions: List[Suggestion] = field(default_factory=list)
    status_level: str = LEVEL_ACHIEVABLE
    skipped_goal_ids: List[str] = field(default_factory=list)
    # Goals the schedule at this budget completes after their deadline
    late_goal_ids: List[str] = field(default_factory=list)

    @property
    def has_rate_warnings(self) -> bool:
        return bool(self.skipped_goal_ids)

    @property
    def meets_all_deadlines(self) -> bool:
        return self.is_feasible and not self.late_goal_ids

    @property
    def total_shortfall(self) -> Decimal:
        return sum((g.shortfall for g in self.infeasible_goals), ZERO)


class FeasibilityAnalyzer:
    """
    Can a fixed monthly budget fund every active goal by its deadline?

    Fair shares follow the scheduler's priority order: each goal in turn
    takes min(required, budget left).

    Payments start on the next payment day, not today, so a budget that
    covers the minimum can still finish a goal a few days after its deadline.
    A feasible budget is therefore also run through the scheduler; goals it
    completes late are listed in late_goal_ids and the result is at_risk.
    """

    def __init__(self, settings: PlanningSettings | None = None):
        self.settings = settings or PlanningSettings()

    def analyze(
        self,
        goals: List[PlanningGoal],
        monthly_budget: Decimal,
        currency: str,
        today: date,
    ) -> FeasibilityResult:
        usable = [g for g in goals if g.has_rate]
        skipped = [g.goal_id for g in goals if not g.has_rate]

        ordered = priority_order(usable)
        required = {g.goal_id: required_monthly(g, today) for g in ordered}
        minimum = sum(required.values(), ZERO)

        if minimum <= EPSILON:
            is_feasible = True
        else:
            is_feasible = monthly_budget > 0 and monthly_budget >= minimum - EPSILON

        infeasible: List[InfeasibleGoal] = []
        suggestions: List[Suggestion] = []

        budget_left = max(ZERO, monthly_budget)
        for goal in ordered:
            need = required[goal.goal_id]
            share = min(need, budget_left)
            budget_left -= share

            if need <= share + EPSILON:
                continue

            infeasible.append(InfeasibleGoal(
                goal_id=goal.goal_id,
                goal_name=goal.name,
                currency=currency,
                deadline=goal.deadline,
                required_monthly=need,
                fair_share=share,
                shortfall=need - share,
            ))
            suggestions.extend(self._goal_suggestions(goal, share, today))

        if not is_feasible:
            suggestions.insert(0, IncreaseBudget(to=minimum, currency=currency))

        result = FeasibilityResult(
            is_feasible=is_feasible,
            monthly_budget=monthly_budget,
            currency=currency,
            minimum_required=minimum,
            infeasible_goals=infeasible,
            suggestions=suggestions,
            skipped_goal_ids=skipped,
        )
        result.status_level = self._status_level(result.total_shortfall, minimum)

        if is_feasible and minimum > EPSILON:
            plan = ContributionScheduler(self.settings).build_plan(usable, monthly_budget, currency, today)
            result.late_goal_ids = plan.late_goal_ids
            if result.late_goal_ids and result.status_level == LEVEL_ACHIEVABLE:
                result.status_level = LEVEL_AT_RISK
        return result

    @staticmethod
    def _goal_suggestions(goal: PlanningGoal, share: Decimal, today: date) -> List[Suggestion]:
        suggestions: List[Suggestion] = []
        remaining = goal.remaining_in_budget

        # Months needed at the fair share; nothing to suggest when the share is zero
        if share > 0:
            months = math.ceil(remaining / share)
            suggestions.append(ExtendDeadline(
                goal_id=goal.goal_id,
                goal_name=goal.name,
                new_date=today + timedelta(days=DAYS_PER_MONTH * months),
                months=months,
            ))

        reachable = share * months_remaining(goal.deadline, today)
        suggestions.append(ReduceTarget(
            goal_id=goal.goal_id,
            goal_name=goal.name,
            new_amount=goal.current_total + goal.from_budget(reachable),
            currency=goal.currency,
        ))
        suggestions.append(EditGoal(goal_id=goal.goal_id, goal_name=goal.name))
        return suggestions

    @staticmethod
    def _status_level(total_shortfall: Decimal, minimum: Decimal) -> str:
        if total_shortfall <= 0 or minimum <= 0:
            return LEVEL_ACHIEVABLE
        if total_shortfall / minimum > CRITICAL_SHORTFALL_RATIO:
            return LEVEL_CRITICAL
        return LEVEL_AT_RISK


# ============================================================================
# Contribution schedule
# ============================================================================


@dataclass(frozen=True)
class GoalContribution:
    goal_id: str
    goal_name: str
    amount: Decimal
    running_total: Decimal
    is_goal_start: bool
    is_goal_complete: bool


@dataclass(frozen=True)
class ScheduledPayment:
    payment_number: int
    payment_date: date
    contributions: List[GoalContribution]

    @property
    def total(self) -> Decimal:
        return sum((c.amount for c in self.contributions), ZERO)


@dataclass
class BudgetCalculatorPlan:
    monthly_budget: Decimal
    currency: str
    schedule: List[ScheduledPayment]
    minimum_required: Decimal
    goal_remaining_by_id: Dict[str, Decimal]
    unfunded_by_goal_id: Dict[str, Decimal]
    completion_date_by_goal_id: Dict[str, date]
    skipped_goal_ids: List[str] = field(default_factory=list)
    # Completed after the deadline, or not at all within the horizon (priority order)
    late_goal_ids: List[str] = field(default_factory=list)

    @property
    def is_leveled(self) -> bool:
        return abs(self.monthly_budget - self.minimum_required) < EPSILON

    @property
    def has_rate_warnings(self) -> bool:
        return bool(self.skipped_goal_ids)

    @property
    def is_fully_funded(self) -> bool:
        return not self.unfunded_by_goal_id and not self.skipped_goal_ids

    @property
    def total_amount(self) -> Decimal:
        return sum((p.total for p in self.schedule), ZERO)

    @property
    def total_months(self) -> int:
        return len(self.schedule)

    @property
    def start_date(self) -> Optional[date]:
        return self.schedule[0].payment_date if self.schedule else None

    @property
    def end_date(self) -> Optional[date]:
        return self.schedule[-1].payment_date if self.schedule else None


class ContributionScheduler:
    """
    Deadline-first greedy waterfall over monthly payments

    Each period the whole budget is poured down the priority list: every
    incomplete goal takes min(remaining, budget left) before the next one
    gets anything.
    """

    def __init__(self, settings: PlanningSettings | None = None):
        self.settings = settings or PlanningSettings()

    def build_plan(
        self,
        goals: List[PlanningGoal],
        monthly_budget: Decimal,
        currency: str,
        today: date,
    ) -> BudgetCalculatorPlan:
        usable = [g for g in goals if g.has_rate]
        skipped = [g.goal_id for g in goals if not g.has_rate]
        ordered = priority_order(usable)

        remaining = {g.goal_id: g.remaining_in_budget for g in ordered}
        initial = dict(remaining)
        paid = {g.goal_id: ZERO for g in ordered}
        completion: Dict[str, date] = {}
        schedule: List[ScheduledPayment] = []

        first_date = next_payment_date(today, self.settings.payment_day)

        if monthly_budget > 0:
            for index in range(self.settings.schedule_horizon_months):
                if all(r <= EPSILON for r in remaining.values()):
                    break

                payment_date = add_months(first_date, index)
                budget_left = monthly_budget
                contributions: List[GoalContribution] = []

                for goal in ordered:
                    if budget_left <= 0:
                        break
                    if remaining[goal.goal_id] <= EPSILON:
                        continue

                    amount = min(remaining[goal.goal_id], budget_left)
                    is_start = paid[goal.goal_id] == 0
                    remaining[goal.goal_id] -= amount
                    paid[goal.goal_id] += amount
                    budget_left -= amount

                    is_complete = remaining[goal.goal_id] <= EPSILON
                    if is_complete:
                        completion[goal.goal_id] = payment_date

                    contributions.append(GoalContribution(
                        goal_id=goal.goal_id,
                        goal_name=goal.name,
                        amount=amount,
                        running_total=paid[goal.goal_id],
                        is_goal_start=is_start,
                        is_goal_complete=is_complete,
                    ))

                schedule.append(ScheduledPayment(
                    payment_number=index + 1,
                    payment_date=payment_date,
                    contributions=contributions,
                ))

        unfunded = {goal_id: r for goal_id, r in remaining.items() if r > EPSILON}
        late = [
            g.goal_id for g in ordered
            if g.goal_id in unfunded
            or (g.goal_id in completion and completion[g.goal_id] > g.deadline)
        ]

        return BudgetCalculatorPlan(
            monthly_budget=monthly_budget,
            currency=currency,
            schedule=schedule,
            minimum_required=minimum_required(usable, today),
            goal_remaining_by_id=initial,
            unfunded_by_goal_id=unfunded,
            completion_date_by_goal_id=completion,
            skipped_goal_ids=skipped,
            late_goal_ids=late,
        )

    def recalculate_after_contribution(
        self,
        plan: BudgetCalculatorPlan,
        goals: List[PlanningGoal],
        actual_contribution: Decimal,
        payment_number: int,
        behavior: str,
        today: date,
    ) -> BudgetCalculatorPlan:
        """
        Rebuild `plan` once payment `payment_number` was made with a different amount

        finish_faster keeps the budget, so goals complete earlier after an
        over-contribution. lower_payments spreads what is left after the
        payments made so far (planned ones, then the actual one) over the
        remaining payments, never below the leveled minimum budget.
        """
        if behavior not in COMPLETION_BEHAVIORS:
            raise ValueError(f"Unknown completion behavior: {behavior}")
        _check_payment_number(plan, payment_number)

        remaining_payments = plan.total_months - payment_number
        if behavior == COMPLETION_FINISH_FASTER or remaining_payments <= 0:
            return self.build_plan(goals, plan.monthly_budget, plan.currency, today)

        contributed = sum((p.total for p in plan.schedule[:payment_number - 1]), ZERO) + actual_contribution
        total_remaining = sum((g.remaining_in_budget for g in goals if g.has_rate), ZERO)
        left = max(ZERO, total_remaining - contributed)

        budget = max(
            (left / remaining_payments).quantize(CENT, rounding=ROUND_CEILING),
            minimum_budget(goals, today),
        )
        return self.build_plan(goals, budget, plan.currency, today)


# What happens to the schedule after an off-plan contribution
COMPLETION_FINISH_FASTER = "finish_faster"
COMPLETION_LOWER_PAYMENTS = "lower_payments"

COMPLETION_BEHAVIORS = (COMPLETION_FINISH_FASTER, COMPLETION_LOWER_PAYMENTS)


def _check_payment_number(plan: BudgetCalculatorPlan, payment_number: int) -> None:
    if payment_number < 1 or payment_number > plan.total_months:
        raise ValueError(
            f"Payment number must be between 1 and {plan.total_months}, got {payment_number}"
        )


def contribution_difference(
    plan: BudgetCalculatorPlan,
    actual_contribution: Decimal,
    payment_number: int,
) -> Decimal:
    """Actual minus planned for one payment; 0 outside the schedule"""
    if payment_number < 1 or payment_number > plan.total_months:
        return ZERO
    return actual_contribution - plan.schedule[payment_number - 1].total


def adjusted_schedule_summary(
    plan: BudgetCalculatorPlan,
    actual_contribution: Decimal,
    payment_number: int,
    behavior: str,
) -> Tuple[Optional[Decimal], Optional[int]]:
    """
    (new monthly amount, months saved) for an off-plan contribution

    lower_payments fills the first slot, finish_faster the second (only
    for an over-contribution).
    """
    difference = contribution_difference(plan, actual_contribution, payment_number)
    remaining_payments = plan.total_months - payment_number

    if behavior == COMPLETION_FINISH_FASTER:
        if difference <= 0 or plan.monthly_budget <= 0:
            return None, None
        months_saved = int(difference / plan.monthly_budget)
        return None, min(months_saved, remaining_payments)

    if behavior == COMPLETION_LOWER_PAYMENTS:
        if remaining_payments <= 0:
            return None, None
        future = sum((p.total for p in plan.schedule[payment_number:]), ZERO)
        return (future - difference) / remaining_payments, None

    raise ValueError(f"Unknown completion behavior: {behavior}")


# ============================================================================
# Timeline blocks
# ============================================================================


@dataclass
class ScheduledGoalBlock:
    goal_id: str
    goal_name: str
    emoji: Optional[str]
    start_payment_number: int
    end_payment_number: int
    start_date: date
    end_date: date
    payment_count: int
    total_amount: Decimal
    is_complete: bool


def build_timeline_blocks(
    plan: BudgetCalculatorPlan,
    goals: Optional[List[PlanningGoal]] = None,
) -> List[ScheduledGoalBlock]:
    """
    Collapse consecutive payments to the same goal into one block

    A goal that stops receiving money and later resumes gets a second block.
    """
    emoji_by_id = {g.goal_id: g.emoji for g in goals or []}
    open_blocks: Dict[str, ScheduledGoalBlock] = {}
    blocks: List[ScheduledGoalBlock] = []

    for payment in plan.schedule:
        for contribution in payment.contributions:
            block = open_blocks.get(contribution.goal_id)
            if block is not None and block.end_payment_number == payment.payment_number - 1:
                block.end_payment_number = payment.payment_number
                block.end_date = payment.payment_date
                block.payment_count += 1
                block.total_amount += contribution.amount
                block.is_complete = block.is_complete or contribution.is_goal_complete
                continue

            block = ScheduledGoalBlock(
                goal_id=contribution.goal_id,
                goal_name=contribution.goal_name,
                emoji=emoji_by_id.get(contribution.goal_id),
                start_payment_number=payment.payment_number,
                end_payment_number=payment.payment_number,
                start_date=payment.payment_date,
                end_date=payment.payment_date,
                payment_count=1,
                total_amount=contribution.amount,
                is_complete=contribution.is_goal_complete,
            )
            open_blocks[contribution.goal_id] = block
            blocks.append(block)

    # Creation order already follows payment number, then priority within a payment
    return blocks
