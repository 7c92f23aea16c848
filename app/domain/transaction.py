"""
Transaction domain entity - signed balance change of an asset
"""
from datetime import datetime
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Any, Optional

SOURCE_MANUAL = "manual"
SOURCE_ONCHAIN = "onChain"

TRANSACTION_SOURCES = (SOURCE_MANUAL, SOURCE_ONCHAIN)


@dataclass
class Transaction:
    """
    Transaction domain entity

    Amount is signed and in the asset currency. On-chain rows are imported
    and never edited; manual rows may be edited or deleted.
    """
    id: str
    asset_id: str
    amount: Decimal
    date: datetime
    source: str = SOURCE_MANUAL
    external_id: Optional[str] = None
    counterparty: Optional[str] = None
    comment: Optional[str] = None

    @property
    def is_manual(self) -> bool:
        return self.source == SOURCE_MANUAL

    @staticmethod
    def create(
        transaction_id: str,
        asset_id: str,
        amount: Decimal,
        occurred_at: datetime,
        source: str,
        external_id: Optional[str] = None,
        comment: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Payload for transaction_created

        Returns:
            Event payload for event_log
        """
        return {
            "transaction_id": transaction_id,
            "asset_id": asset_id,
            "amount": str(amount),
            "date": occurred_at.isoformat(),
            "source": source,
            "external_id": external_id,
            "comment": comment,
        }

    @staticmethod
    def update(transaction_id: str, asset_id: str, **changes) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"transaction_id": transaction_id, "asset_id": asset_id}
        for key, value in changes.items():
            if isinstance(value, datetime):
                value = value.isoformat()
            elif isinstance(value, Decimal):
                value = str(value)
            payload[key] = value
        return payload

    @staticmethod
    def delete(transaction_id: str, asset_id: str) -> Dict[str, Any]:
        return {"transaction_id": transaction_id, "asset_id": asset_id}
