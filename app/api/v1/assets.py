"""
Asset and transaction API endpoints
"""
from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.api.deps import get_db, http_error
from app.application.assets import (
    CreateAssetUseCase, UpdateOnchainBalanceUseCase, DeleteAssetUseCase,
    AssetValidationError, load_asset,
)
from app.application.transactions import (
    AddTransactionUseCase, UpdateTransactionUseCase, DeleteTransactionUseCase,
    TransactionValidationError,
)
from app.application.allocations import AllocationLedger
from app.domain.transaction import SOURCE_MANUAL
from app.infrastructure.db.models import AssetModel, TransactionModel
from app.infrastructure.repositories import AssetRepository, TransactionRepository


router = APIRouter(prefix="/api/v1/assets", tags=["assets"])


# === Request/Response models ===

class CreateAssetRequest(BaseModel):
    currency: str
    chain_id: str | None = None
    address: str | None = None


class OnchainBalanceRequest(BaseModel):
    balance: str


class AssetResponse(BaseModel):
    id: str
    currency: str
    chain_id: str | None = None
    address: str | None = None
    manual_balance: str
    cached_onchain_balance: str
    current_amount: str
    allocated: str
    unallocated: str
    is_over_allocated: bool


class AddTransactionRequest(BaseModel):
    amount: str
    date: datetime | None = None
    source: str = SOURCE_MANUAL
    external_id: str | None = None
    counterparty: str | None = None
    comment: str | None = None


class UpdateTransactionRequest(BaseModel):
    amount: str | None = None
    date: datetime | None = None
    comment: str | None = None


class TransactionResponse(BaseModel):
    id: str
    asset_id: str
    amount: str
    date: datetime
    source: str
    external_id: str | None = None
    counterparty: str | None = None
    comment: str | None = None


def _asset_response(db: Session, asset_id: str) -> AssetResponse:
    asset = load_asset(db, asset_id)
    status = AllocationLedger(db).allocation_status(asset_id)
    return AssetResponse(
        id=asset.id,
        currency=asset.currency,
        chain_id=asset.chain_id,
        address=asset.address,
        manual_balance=str(asset.manual_balance),
        cached_onchain_balance=str(asset.cached_onchain_balance),
        current_amount=str(asset.current_amount),
        allocated=str(status.allocated),
        unallocated=str(status.unallocated),
        is_over_allocated=status.is_over_allocated,
    )


def _tx_response(tx: TransactionModel) -> TransactionResponse:
    return TransactionResponse(
        id=tx.id,
        asset_id=tx.asset_id,
        amount=str(tx.amount),
        date=tx.date,
        source=tx.source,
        external_id=tx.external_id,
        counterparty=tx.counterparty,
        comment=tx.comment,
    )


# === Assets ===

@router.post("/", response_model=AssetResponse)
def create_asset(req: CreateAssetRequest, db: Session = Depends(get_db)):
    try:
        asset_id = CreateAssetUseCase(db).execute(
            currency=req.currency,
            chain_id=req.chain_id,
            address=req.address,
        )
    except AssetValidationError as e:
        raise http_error(e)
    return _asset_response(db, asset_id)


@router.get("/", response_model=list[AssetResponse])
def list_assets(db: Session = Depends(get_db)):
    assets = AssetRepository(db).get_all(order_by=AssetModel.created_at.asc())
    return [_asset_response(db, a.id) for a in assets]


@router.get("/{asset_id}", response_model=AssetResponse)
def get_asset(asset_id: str, db: Session = Depends(get_db)):
    try:
        return _asset_response(db, asset_id)
    except AssetValidationError as e:
        raise http_error(e)


@router.put("/{asset_id}/onchain-balance", response_model=AssetResponse)
def update_onchain_balance(asset_id: str, req: OnchainBalanceRequest, db: Session = Depends(get_db)):
    """Store the latest fetched on-chain balance"""
    try:
        UpdateOnchainBalanceUseCase(db).execute(asset_id, req.balance)
    except AssetValidationError as e:
        raise http_error(e)
    return _asset_response(db, asset_id)


@router.delete("/{asset_id}", status_code=204)
def delete_asset(asset_id: str, db: Session = Depends(get_db)):
    """Delete an asset with its transactions and allocations"""
    try:
        DeleteAssetUseCase(db).execute(asset_id)
    except AssetValidationError as e:
        raise http_error(e)


# === Transactions ===

@router.post("/{asset_id}/transactions", response_model=TransactionResponse)
def add_transaction(asset_id: str, req: AddTransactionRequest, db: Session = Depends(get_db)):
    try:
        tx_id = AddTransactionUseCase(db).execute(
            asset_id=asset_id,
            amount=req.amount,
            occurred_at=req.date,
            source=req.source,
            external_id=req.external_id,
            counterparty=req.counterparty,
            comment=req.comment,
        )
    except (AssetValidationError, TransactionValidationError) as e:
        raise http_error(e)
    return _tx_response(TransactionRepository(db).get(tx_id))


@router.get("/{asset_id}/transactions", response_model=list[TransactionResponse])
def list_transactions(asset_id: str, db: Session = Depends(get_db)):
    return [_tx_response(t) for t in TransactionRepository(db).for_asset(asset_id)]


@router.patch("/{asset_id}/transactions/{tx_id}", response_model=TransactionResponse)
def update_transaction(asset_id: str, tx_id: str, req: UpdateTransactionRequest, db: Session = Depends(get_db)):
    """Edit a manual transaction"""
    try:
        UpdateTransactionUseCase(db).execute(
            tx_id,
            amount=req.amount,
            occurred_at=req.date,
            comment=req.comment,
        )
    except TransactionValidationError as e:
        raise http_error(e)
    return _tx_response(TransactionRepository(db).get(tx_id))


@router.delete("/{asset_id}/transactions/{tx_id}", status_code=204)
def delete_transaction(asset_id: str, tx_id: str, db: Session = Depends(get_db)):
    try:
        DeleteTransactionUseCase(db).execute(tx_id)
    except TransactionValidationError as e:
        raise http_error(e)
