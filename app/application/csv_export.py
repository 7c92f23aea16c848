"""
CSV export - goals.csv, assets.csv, value_changes.csv
"""
import csv
import io
import json
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Dict, List
from sqlalchemy.orm import Session

from app.infrastructure.repositories import (
    GoalRepository, AssetRepository, TransactionRepository,
    AllocationRepository, AllocationHistoryRepository,
)
from app.utils.dates import as_naive_utc

GOALS_HEADER = [
    "id", "name", "currency", "targetAmount", "deadline", "startDate",
    "status", "statusChangedAt", "lastModifiedDate", "emoji", "description",
    "allocationCount", "allocationIds", "allocationsJson",
]

ASSETS_HEADER = [
    "id", "currency", "address", "chainId",
    "transactionCount", "transactionIds", "allocationCount", "allocationIds", "allocationsJson",
]

VALUE_CHANGES_HEADER = [
    "eventType", "eventId", "timestamp", "amount", "amountSemantics",
    "assetId", "assetCurrency", "assetChainId", "assetAddress",
    "goalId", "goalName",
    "transactionSource", "transactionExternalId", "transactionCounterparty", "transactionComment",
    "allocationMonthLabel", "allocationCreatedAt",
]


def _fmt(value) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return as_naive_utc(value).isoformat(timespec="milliseconds") + "Z"
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return format(value.normalize(), "f")
    return str(value)


def _write(header: List[str], rows: List[List[str]]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(header)
    writer.writerows(rows)
    return buffer.getvalue()


class CsvExportService:
    """Flat CSV dump of goals, assets and every value change"""

    def __init__(self, db: Session):
        self.db = db

    def build(self) -> Dict[str, str]:
        """{"goals.csv": ..., "assets.csv": ..., "value_changes.csv": ...}"""
        goals = GoalRepository(self.db).get_all()
        assets = AssetRepository(self.db).get_all()
        transactions = TransactionRepository(self.db).get_all()
        allocations = AllocationRepository(self.db).get_all()
        history = AllocationHistoryRepository(self.db).get_all()

        return {
            "goals.csv": self._goals_csv(goals, allocations),
            "assets.csv": self._assets_csv(assets, allocations, transactions, goals),
            "value_changes.csv": self._value_changes_csv(transactions, history, goals, assets),
        }

    def export(self, directory) -> List[Path]:
        """Write the three files into directory (created if missing)"""
        target = Path(directory)
        target.mkdir(parents=True, exist_ok=True)
        paths = []
        for name, content in self.build().items():
            path = target / name
            path.write_text(content, encoding="utf-8")
            paths.append(path)
        return paths

    @staticmethod
    def _allocations_json(allocations, goal_names: Dict[str, str]) -> str:
        return json.dumps([
            {
                "id": a.id,
                "assetId": a.asset_id,
                "goalId": a.goal_id,
                "goalName": goal_names.get(a.goal_id, ""),
                "amount": _fmt(Decimal(a.amount)),
            }
            for a in allocations
        ], ensure_ascii=False)

    def _goals_csv(self, goals, allocations) -> str:
        goal_names = {g.id: g.name for g in goals}
        rows = []
        for goal in sorted(goals, key=lambda g: g.name.lower()):
            own = [a for a in allocations if a.goal_id == goal.id]
            rows.append([
                goal.id,
                goal.name,
                goal.currency,
                _fmt(Decimal(goal.target_amount)),
                _fmt(goal.deadline),
                _fmt(goal.start_date),
                goal.status,
                _fmt(goal.status_changed_at),
                _fmt(goal.updated_at),
                _fmt(goal.emoji),
                _fmt(goal.description),
                str(len(own)),
                ";".join(a.id for a in own),
                self._allocations_json(own, goal_names),
            ])
        return _write(GOALS_HEADER, rows)

    def _assets_csv(self, assets, allocations, transactions, goals) -> str:
        goal_names = {g.id: g.name for g in goals}
        rows = []
        for asset in sorted(assets, key=lambda a: a.currency.lower()):
            own_tx = sorted((t for t in transactions if t.asset_id == asset.id), key=lambda t: t.date)
            own_alloc = [a for a in allocations if a.asset_id == asset.id]
            rows.append([
                asset.id,
                asset.currency,
                _fmt(asset.address),
                _fmt(asset.chain_id),
                str(len(own_tx)),
                ";".join(t.id for t in own_tx),
                str(len(own_alloc)),
                ";".join(a.id for a in own_alloc),
                self._allocations_json(own_alloc, goal_names),
            ])
        return _write(ASSETS_HEADER, rows)

    @staticmethod
    def _value_changes_csv(transactions, history, goals, assets) -> str:
        goal_names = {g.id: g.name for g in goals}
        assets_by_id = {a.id: a for a in assets}
        events = []

        for tx in transactions:
            asset = assets_by_id.get(tx.asset_id)
            events.append((as_naive_utc(tx.date), [
                "transaction",
                tx.id,
                _fmt(tx.date),
                _fmt(Decimal(tx.amount)),
                "delta",
                tx.asset_id,
                asset.currency if asset else "",
                _fmt(asset.chain_id) if asset else "",
                _fmt(asset.address) if asset else "",
                "",
                "",
                tx.source,
                _fmt(tx.external_id),
                _fmt(tx.counterparty),
                _fmt(tx.comment),
                "",
                "",
            ]))

        for entry in history:
            asset = assets_by_id.get(entry.asset_id)
            events.append((as_naive_utc(entry.timestamp), [
                "allocationHistory",
                entry.id,
                _fmt(entry.timestamp),
                _fmt(Decimal(entry.amount)),
                "allocationTargetSnapshot",
                entry.asset_id,
                asset.currency if asset else "",
                _fmt(asset.chain_id) if asset else "",
                _fmt(asset.address) if asset else "",
                entry.goal_id,
                goal_names.get(entry.goal_id, ""),
                "",
                "",
                "",
                "",
                entry.month_label,
                _fmt(entry.created_at),
            ]))

        events.sort(key=lambda e: e[0])
        return _write(VALUE_CHANGES_HEADER, [row for _, row in events])
