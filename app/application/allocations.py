"""
Allocation ledger - how each asset's balance is split across goals

Over-allocation (allocations above the asset balance) is a warning state:
the ledger reports it but never clamps or rejects the amounts.
"""
import logging
import uuid
from decimal import Decimal
from typing import Dict, List, Optional
from sqlalchemy.orm import Session

from app.infrastructure.eventlog.repository import EventLogRepository
from app.infrastructure.db.models import AllocationModel, AllocationHistoryModel
from app.infrastructure.repositories import (
    AllocationRepository, AllocationHistoryRepository, AssetRepository, GoalRepository,
)
from app.infrastructure.rates import RateProvider, RateUnavailableError, convert
from app.domain.allocation import Allocation, AllocationStatus, GoalTotal
from app.application.assets import load_asset
from app.utils.dates import utcnow, month_label
from app.utils.validation import parse_amount

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


class AllocationValidationError(ValueError):
    """Allocation validation error"""
    pass


class AllocationLedger:
    """
    Allocation ledger over the allocations table

    Mutating calls commit; the cascade helpers (delete_for_goal /
    delete_for_asset) only flush and leave the commit to the caller.
    """

    def __init__(self, db: Session, rate_provider: Optional[RateProvider] = None):
        self.db = db
        self.rate_provider = rate_provider
        self.allocations = AllocationRepository(db)
        self.history = AllocationHistoryRepository(db)
        self.event_repo = EventLogRepository(db)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def allocate(self, asset_id: str, goal_id: str, amount) -> None:
        """
        Upsert the (asset, goal) allocation

        Args:
            amount: Asset currency, >= 0; 0 removes the row

        Raises:
            AllocationValidationError: negative amount, unknown asset or goal
        """
        amount = self._validate(asset_id, goal_id, amount)
        self._set(asset_id, goal_id, amount)
        self.db.commit()
        self._warn_if_over_allocated(asset_id)

    def share_asset(self, asset_id: str, amounts_by_goal: Dict[str, object]) -> None:
        """
        Replace the asset's whole allocation map in one commit

        Goals missing from amounts_by_goal lose their allocation.
        """
        validated = {
            goal_id: self._validate(asset_id, goal_id, amount)
            for goal_id, amount in amounts_by_goal.items()
        }

        for row in self.allocations.for_asset(asset_id):
            if row.goal_id not in validated:
                self._set(asset_id, row.goal_id, ZERO)

        for goal_id, amount in validated.items():
            self._set(asset_id, goal_id, amount)

        self.db.commit()
        self._warn_if_over_allocated(asset_id)

    def delete_for_goal(self, goal_id: str) -> int:
        self.history.delete_where(goal_id=goal_id)
        return self.allocations.delete_where(goal_id=goal_id)

    def delete_for_asset(self, asset_id: str) -> int:
        self.history.delete_where(asset_id=asset_id)
        return self.allocations.delete_where(asset_id=asset_id)

    def _validate(self, asset_id: str, goal_id: str, amount) -> Decimal:
        try:
            amount = parse_amount(amount)
        except ValueError as exc:
            raise AllocationValidationError(str(exc))
        if amount < 0:
            raise AllocationValidationError("Allocation amount cannot be negative")
        if not AssetRepository(self.db).get(asset_id):
            raise AllocationValidationError(f"Asset {asset_id} not found")
        if not GoalRepository(self.db).get(goal_id):
            raise AllocationValidationError(f"Goal {goal_id} not found")
        return amount

    def _set(self, asset_id: str, goal_id: str, amount: Decimal) -> None:
        row = self.allocations.get_by_asset_and_goal(asset_id, goal_id)
        previous = Decimal(row.amount) if row else ZERO
        if row is None and amount == 0:
            return
        if row is not None and previous == amount:
            return

        now = utcnow()
        if amount == 0:
            self.allocations.delete(row)
        elif row is None:
            self.allocations.insert(AllocationModel(
                id=uuid.uuid4().hex,
                asset_id=asset_id,
                goal_id=goal_id,
                amount=amount,
                created_at=now,
                updated_at=now,
            ))
        else:
            self.allocations.update(row, amount=amount, updated_at=now)

        self.history.insert(AllocationHistoryModel(
            id=uuid.uuid4().hex,
            asset_id=asset_id,
            goal_id=goal_id,
            amount=amount,
            timestamp=now,
            month_label=month_label(now),
        ))
        self.event_repo.append_event(
            event_type="allocation_set",
            entity_type=self.allocations.entity_type,
            entity_id=f"{asset_id}:{goal_id}",
            payload=Allocation.set(asset_id, goal_id, amount, previous),
            occurred_at=now,
        )

    def _warn_if_over_allocated(self, asset_id: str) -> None:
        status = self.allocation_status(asset_id)
        if status.is_over_allocated:
            logger.warning(
                "Asset %s is over-allocated by %s %s",
                asset_id, status.over_allocated_amount, status.currency,
            )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def allocations_for_asset(self, asset_id: str) -> List[AllocationModel]:
        return self.allocations.for_asset(asset_id)

    def allocations_for_goal(self, goal_id: str) -> List[AllocationModel]:
        return self.allocations.for_goal(goal_id)

    def total_allocated_for_asset(self, asset_id: str) -> Decimal:
        return sum((Decimal(row.amount) for row in self.allocations.for_asset(asset_id)), ZERO)

    async def total_allocated_for_goal(self, goal_id: str) -> GoalTotal:
        """
        Sum of allocations pointing at the goal, converted to the goal currency

        An asset whose rate is unavailable is excluded and reported in
        failed_asset_ids instead of failing the whole sum.
        """
        goal = GoalRepository(self.db).get(goal_id)
        if goal is None:
            raise AllocationValidationError(f"Goal {goal_id} not found")

        assets = AssetRepository(self.db)
        total = ZERO
        failed: List[str] = []

        for row in self.allocations.for_goal(goal_id):
            asset = assets.get(row.asset_id)
            if asset is None:
                continue
            amount = Decimal(row.amount)
            if asset.currency.upper() == goal.currency.upper():
                total += amount
                continue
            if self.rate_provider is None:
                failed.append(asset.id)
                continue
            try:
                total += await convert(self.rate_provider, amount, asset.currency, goal.currency)
            except RateUnavailableError:
                logger.warning(
                    "Rate %s->%s unavailable, asset %s excluded from goal %s total",
                    asset.currency, goal.currency, asset.id, goal_id,
                )
                failed.append(asset.id)

        return GoalTotal(
            goal_id=goal_id,
            currency=goal.currency,
            amount=total,
            failed_asset_ids=tuple(failed),
        )

    def allocation_status(self, asset_id: str) -> AllocationStatus:
        asset = load_asset(self.db, asset_id)
        return AllocationStatus(
            asset_id=asset_id,
            currency=asset.currency,
            balance=asset.current_amount,
            allocated=self.total_allocated_for_asset(asset_id),
        )

    def unallocated(self, asset_id: str) -> Decimal:
        return self.allocation_status(asset_id).unallocated

    def is_over_allocated(self, asset_id: str) -> bool:
        return self.allocation_status(asset_id).is_over_allocated

    def over_allocated_assets(self) -> List[AllocationStatus]:
        statuses = [self.allocation_status(a.id) for a in AssetRepository(self.db).get_all()]
        return [s for s in statuses if s.is_over_allocated]
