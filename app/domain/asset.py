"""
Asset domain entity - on-chain wallet or manually tracked balance
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Any, Optional


@dataclass
class Asset:
    """
    Asset domain entity

    current_amount = manual_balance (sum of manual transactions)
                     + cached_onchain_balance (best effort, may be stale)
    """
    id: str
    currency: str
    chain_id: Optional[str] = None
    address: Optional[str] = None
    manual_balance: Decimal = Decimal("0")
    cached_onchain_balance: Decimal = Decimal("0")

    @property
    def current_amount(self) -> Decimal:
        return self.manual_balance + self.cached_onchain_balance

    @property
    def is_onchain(self) -> bool:
        return bool(self.address)

    @staticmethod
    def create(asset_id: str, currency: str, chain_id: Optional[str], address: Optional[str]) -> Dict[str, Any]:
        """Payload for asset_created"""
        return {
            "asset_id": asset_id,
            "currency": currency,
            "chain_id": chain_id,
            "address": address,
        }

    @staticmethod
    def update_onchain_balance(asset_id: str, balance: Decimal) -> Dict[str, Any]:
        return {"asset_id": asset_id, "cached_onchain_balance": str(balance)}

    @staticmethod
    def delete(asset_id: str) -> Dict[str, Any]:
        return {"asset_id": asset_id}
