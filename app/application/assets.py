"""
Asset use cases - create, refresh on-chain balance, delete (with cascade)
"""
import logging
import uuid
from decimal import Decimal
from sqlalchemy.orm import Session

from app.infrastructure.eventlog.repository import EventLogRepository
from app.infrastructure.db.models import AssetModel
from app.infrastructure.repositories import AssetRepository, TransactionRepository
from app.domain.asset import Asset
from app.domain.transaction import SOURCE_MANUAL
from app.utils.dates import utcnow
from app.utils.validation import parse_amount, normalize_currency

logger = logging.getLogger(__name__)


class AssetValidationError(ValueError):
    """Asset validation error"""
    pass


class AssetNotFoundError(AssetValidationError):
    pass


def get_asset_or_raise(db: Session, asset_id: str) -> AssetModel:
    asset = AssetRepository(db).get(asset_id)
    if not asset:
        raise AssetNotFoundError(f"Asset {asset_id} not found")
    return asset


def manual_balance(db: Session, asset_id: str) -> Decimal:
    """Sum of the asset's manual transactions"""
    rows = TransactionRepository(db).get_all(asset_id=asset_id, source=SOURCE_MANUAL)
    return sum((Decimal(row.amount) for row in rows), Decimal("0"))


def load_asset(db: Session, asset_id: str) -> Asset:
    """Asset with its balances resolved"""
    row = get_asset_or_raise(db, asset_id)
    return Asset(
        id=row.id,
        currency=row.currency,
        chain_id=row.chain_id,
        address=row.address,
        manual_balance=manual_balance(db, asset_id),
        cached_onchain_balance=Decimal(row.cached_onchain_balance or 0),
    )


class CreateAssetUseCase:
    """Use case: add an asset (manual balance or on-chain address)"""

    def __init__(self, db: Session):
        self.db = db
        self.assets = AssetRepository(db)
        self.event_repo = EventLogRepository(db)

    def execute(
        self,
        currency: str,
        chain_id: str | None = None,
        address: str | None = None,
    ) -> str:
        """
        Create an asset

        Raises:
            AssetValidationError: empty currency or the address is already tracked
        """
        try:
            currency = normalize_currency(currency)
        except ValueError as exc:
            raise AssetValidationError(str(exc))

        address = (address or "").strip() or None
        chain_id = (chain_id or "").strip() or None

        if address and self.assets.get_by_address(chain_id, address):
            raise AssetValidationError(f"Address {address} is already tracked")

        asset_id = uuid.uuid4().hex
        self.assets.insert(AssetModel(
            id=asset_id,
            currency=currency,
            chain_id=chain_id,
            address=address,
            cached_onchain_balance=Decimal("0"),
            created_at=utcnow(),
        ))

        self.event_repo.append_event(
            event_type="asset_created",
            entity_type=self.assets.entity_type,
            entity_id=asset_id,
            payload=Asset.create(asset_id, currency, chain_id, address),
            idempotency_key=f"asset-create-{asset_id}",
        )
        self.db.commit()
        return asset_id


class UpdateOnchainBalanceUseCase:
    """Use case: store the latest fetched on-chain balance"""

    def __init__(self, db: Session):
        self.db = db
        self.assets = AssetRepository(db)
        self.event_repo = EventLogRepository(db)

    def execute(self, asset_id: str, balance) -> None:
        asset = get_asset_or_raise(self.db, asset_id)
        try:
            balance = parse_amount(balance)
        except ValueError as exc:
            raise AssetValidationError(str(exc))
        if balance < 0:
            raise AssetValidationError("On-chain balance cannot be negative")

        self.assets.update(
            asset,
            cached_onchain_balance=balance,
            onchain_balance_updated_at=utcnow(),
        )
        self.event_repo.append_event(
            event_type="asset_balance_refreshed",
            entity_type=self.assets.entity_type,
            entity_id=asset_id,
            payload=Asset.update_onchain_balance(asset_id, balance),
        )
        self.db.commit()


class DeleteAssetUseCase:
    """
    Use case: delete an asset

    Cascade: transactions, allocations and allocation history of the asset.
    """

    def __init__(self, db: Session):
        self.db = db
        self.assets = AssetRepository(db)
        self.event_repo = EventLogRepository(db)

    def execute(self, asset_id: str) -> None:
        from app.application.allocations import AllocationLedger

        asset = get_asset_or_raise(self.db, asset_id)

        transactions = TransactionRepository(self.db).delete_where(asset_id=asset_id)
        allocations = AllocationLedger(self.db).delete_for_asset(asset_id)
        self.assets.delete(asset)

        self.event_repo.append_event(
            event_type="asset_deleted",
            entity_type=self.assets.entity_type,
            entity_id=asset_id,
            payload=Asset.delete(asset_id),
        )
        self.db.commit()

        logger.info(
            "Asset deleted: %s (%d transactions, %d allocations removed)",
            asset_id, transactions, allocations,
        )
