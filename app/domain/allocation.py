"""
Allocation domain entity - part of one asset's balance assigned to one goal
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Any

# Over-allocation tolerance (asset currency)
ALLOCATION_EPSILON = Decimal("0.0000001")


@dataclass
class Allocation:
    """
    Allocation domain entity

    At most one row per (asset, goal); amount 0 means no row at all.
    """
    id: str
    asset_id: str
    goal_id: str
    amount: Decimal

    @staticmethod
    def set(asset_id: str, goal_id: str, amount: Decimal, previous: Decimal) -> Dict[str, Any]:
        """Payload for allocation_set (amount "0" means the row was removed)"""
        return {
            "asset_id": asset_id,
            "goal_id": goal_id,
            "amount": str(amount),
            "previous_amount": str(previous),
        }


@dataclass(frozen=True)
class AllocationStatus:
    """How an asset's balance is split, with the over-allocation warning"""
    asset_id: str
    currency: str
    balance: Decimal
    allocated: Decimal

    @property
    def delta(self) -> Decimal:
        return self.balance - self.allocated

    @property
    def unallocated(self) -> Decimal:
        return max(Decimal("0"), self.delta)

    @property
    def is_fully_allocated(self) -> bool:
        return abs(self.delta) <= ALLOCATION_EPSILON

    @property
    def is_over_allocated(self) -> bool:
        return self.allocated > self.balance + ALLOCATION_EPSILON

    @property
    def over_allocated_amount(self) -> Decimal:
        return max(Decimal("0"), self.allocated - self.balance)


@dataclass(frozen=True)
class GoalTotal:
    """
    Sum of a goal's allocations in the goal currency

    Assets whose rate could not be fetched are left out and listed in
    failed_asset_ids; is_stale is then True.
    """
    goal_id: str
    currency: str
    amount: Decimal
    failed_asset_ids: tuple = ()

    @property
    def is_stale(self) -> bool:
        return bool(self.failed_asset_ids)
