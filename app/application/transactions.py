"""
Transaction use cases - record, edit and delete balance changes of an asset
"""
import uuid
from datetime import datetime
from sqlalchemy.orm import Session

from app.infrastructure.eventlog.repository import EventLogRepository
from app.infrastructure.db.models import TransactionModel
from app.infrastructure.repositories import TransactionRepository
from app.domain.transaction import Transaction, SOURCE_MANUAL, TRANSACTION_SOURCES
from app.application.assets import get_asset_or_raise
from app.utils.dates import utcnow
from app.utils.validation import parse_amount


class TransactionValidationError(ValueError):
    """Transaction validation error"""
    pass


class TransactionNotFoundError(TransactionValidationError):
    pass


def _validate_amount(value):
    try:
        amount = parse_amount(value)
    except ValueError as exc:
        raise TransactionValidationError(str(exc))
    if amount == 0:
        raise TransactionValidationError("Transaction amount cannot be zero")
    return amount


def _get_manual_or_raise(db: Session, transaction_id: str) -> TransactionModel:
    tx = TransactionRepository(db).get(transaction_id)
    if not tx:
        raise TransactionNotFoundError(f"Transaction {transaction_id} not found")
    if tx.source != SOURCE_MANUAL:
        raise TransactionValidationError("On-chain transactions cannot be changed")
    return tx


class AddTransactionUseCase:
    """Use case: record a deposit/withdrawal on an asset"""

    def __init__(self, db: Session):
        self.db = db
        self.transactions = TransactionRepository(db)
        self.event_repo = EventLogRepository(db)

    def execute(
        self,
        asset_id: str,
        amount,
        occurred_at: datetime | None = None,
        source: str = SOURCE_MANUAL,
        external_id: str | None = None,
        counterparty: str | None = None,
        comment: str | None = None,
    ) -> str:
        """
        Add a transaction

        Args:
            amount: Signed, asset currency, non-zero
            source: "manual" or "onChain"
            external_id: Chain tx hash; duplicates on the same asset are rejected

        Returns:
            transaction_id
        """
        get_asset_or_raise(self.db, asset_id)

        if source not in TRANSACTION_SOURCES:
            raise TransactionValidationError(f"Unknown transaction source: {source}")

        amount = _validate_amount(amount)

        if external_id and self.transactions.get_all(asset_id=asset_id, external_id=external_id):
            raise TransactionValidationError(f"Transaction {external_id} is already recorded")

        if occurred_at is None:
            occurred_at = utcnow()

        transaction_id = uuid.uuid4().hex
        self.transactions.insert(TransactionModel(
            id=transaction_id,
            asset_id=asset_id,
            amount=amount,
            date=occurred_at,
            source=source,
            external_id=external_id,
            counterparty=counterparty,
            comment=comment,
        ))

        self.event_repo.append_event(
            event_type="transaction_created",
            entity_type=self.transactions.entity_type,
            entity_id=transaction_id,
            payload=Transaction.create(
                transaction_id, asset_id, amount, occurred_at, source,
                external_id=external_id, comment=comment,
            ),
            occurred_at=occurred_at,
        )
        self.db.commit()
        return transaction_id


class UpdateTransactionUseCase:
    """Use case: edit a manual transaction (amount, date, comment)"""

    def __init__(self, db: Session):
        self.db = db
        self.transactions = TransactionRepository(db)
        self.event_repo = EventLogRepository(db)

    def execute(
        self,
        transaction_id: str,
        amount=None,
        occurred_at: datetime | None = None,
        comment: str | None = None,
    ) -> None:
        tx = _get_manual_or_raise(self.db, transaction_id)

        changes = {}
        if amount is not None:
            changes["amount"] = _validate_amount(amount)
        if occurred_at is not None:
            changes["date"] = occurred_at
        if comment is not None:
            changes["comment"] = comment
        if not changes:
            return

        self.transactions.update(tx, **changes)
        self.event_repo.append_event(
            event_type="transaction_updated",
            entity_type=self.transactions.entity_type,
            entity_id=transaction_id,
            payload=Transaction.update(transaction_id, tx.asset_id, **changes),
        )
        self.db.commit()


class DeleteTransactionUseCase:
    """Use case: delete a manual transaction"""

    def __init__(self, db: Session):
        self.db = db
        self.transactions = TransactionRepository(db)
        self.event_repo = EventLogRepository(db)

    def execute(self, transaction_id: str) -> None:
        tx = _get_manual_or_raise(self.db, transaction_id)
        asset_id = tx.asset_id

        self.transactions.delete(tx)
        self.event_repo.append_event(
            event_type="transaction_deleted",
            entity_type=self.transactions.entity_type,
            entity_id=transaction_id,
            payload=Transaction.delete(transaction_id, asset_id),
        )
        self.db.commit()
