"""
Allocation API endpoints (asset sharing across goals)
"""
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.api.deps import get_db, http_error
from app.application.allocations import AllocationLedger, AllocationValidationError
from app.application.assets import AssetValidationError
from app.domain.allocation import AllocationStatus


router = APIRouter(prefix="/api/v1/allocations", tags=["allocations"])


class AllocateRequest(BaseModel):
    asset_id: str
    goal_id: str
    amount: str  # 0 removes the allocation


class ShareAssetRequest(BaseModel):
    amounts: dict[str, str]  # goal_id -> amount


class AllocationResponse(BaseModel):
    id: str
    asset_id: str
    goal_id: str
    amount: str


class AllocationStatusResponse(BaseModel):
    asset_id: str
    currency: str
    balance: str
    allocated: str
    unallocated: str
    is_fully_allocated: bool
    is_over_allocated: bool
    over_allocated_amount: str
    allocations: list[AllocationResponse] = []


def _status_response(ledger: AllocationLedger, status: AllocationStatus) -> AllocationStatusResponse:
    return AllocationStatusResponse(
        asset_id=status.asset_id,
        currency=status.currency,
        balance=str(status.balance),
        allocated=str(status.allocated),
        unallocated=str(status.unallocated),
        is_fully_allocated=status.is_fully_allocated,
        is_over_allocated=status.is_over_allocated,
        over_allocated_amount=str(status.over_allocated_amount),
        allocations=[
            AllocationResponse(id=a.id, asset_id=a.asset_id, goal_id=a.goal_id, amount=str(a.amount))
            for a in ledger.allocations_for_asset(status.asset_id)
        ],
    )


@router.put("/", response_model=AllocationStatusResponse)
def allocate(req: AllocateRequest, db: Session = Depends(get_db)):
    """Set one (asset, goal) allocation"""
    ledger = AllocationLedger(db)
    try:
        ledger.allocate(req.asset_id, req.goal_id, req.amount)
    except AllocationValidationError as e:
        raise http_error(e)
    return _status_response(ledger, ledger.allocation_status(req.asset_id))


@router.put("/assets/{asset_id}", response_model=AllocationStatusResponse)
def share_asset(asset_id: str, req: ShareAssetRequest, db: Session = Depends(get_db)):
    """Replace the asset's whole split across goals"""
    ledger = AllocationLedger(db)
    try:
        ledger.share_asset(asset_id, req.amounts)
    except AllocationValidationError as e:
        raise http_error(e)
    return _status_response(ledger, ledger.allocation_status(asset_id))


@router.get("/assets/{asset_id}", response_model=AllocationStatusResponse)
def asset_allocation_status(asset_id: str, db: Session = Depends(get_db)):
    ledger = AllocationLedger(db)
    try:
        return _status_response(ledger, ledger.allocation_status(asset_id))
    except AssetValidationError as e:
        raise http_error(e)


@router.get("/over-allocated", response_model=list[AllocationStatusResponse])
def over_allocated_assets(db: Session = Depends(get_db)):
    ledger = AllocationLedger(db)
    return [_status_response(ledger, s) for s in ledger.over_allocated_assets()]
