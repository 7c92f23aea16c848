"""
Tests for the allocation ledger
"""
import asyncio
import logging
from decimal import Decimal
from unittest.mock import patch

import pytest

from app.application.allocations import AllocationLedger, AllocationValidationError
from app.application.assets import DeleteAssetUseCase
from app.application.goals import DeleteGoalUseCase
from app.infrastructure.db.models import AllocationHistoryModel, AllocationModel, EventLog
from app.infrastructure.repositories import AllocationRepository


class TestAllocate:
    def test_upsert_single_row_per_pair(self, db_session, make_goal, make_asset):
        goal_id = make_goal()
        asset_id = make_asset(deposit="100")
        ledger = AllocationLedger(db_session)

        ledger.allocate(asset_id, goal_id, "40")
        ledger.allocate(asset_id, goal_id, "60")

        rows = db_session.query(AllocationModel).all()
        assert len(rows) == 1
        assert rows[0].amount == Decimal("60")

    def test_zero_removes_row(self, db_session, make_goal, make_asset):
        goal_id = make_goal()
        asset_id = make_asset(deposit="100")
        ledger = AllocationLedger(db_session)
        ledger.allocate(asset_id, goal_id, "40")

        ledger.allocate(asset_id, goal_id, "0")

        assert ledger.allocations_for_asset(asset_id) == []

    def test_negative_amount_rejected(self, db_session, make_goal, make_asset):
        goal_id = make_goal()
        asset_id = make_asset(deposit="100")

        with pytest.raises(AllocationValidationError):
            AllocationLedger(db_session).allocate(asset_id, goal_id, "-1")

    def test_unknown_goal_rejected(self, db_session, make_asset):
        asset_id = make_asset(deposit="100")

        with pytest.raises(AllocationValidationError):
            AllocationLedger(db_session).allocate(asset_id, "missing", "10")

    def test_every_change_is_recorded(self, db_session, make_goal, make_asset):
        goal_id = make_goal()
        asset_id = make_asset(deposit="100")
        ledger = AllocationLedger(db_session)

        ledger.allocate(asset_id, goal_id, "40")
        ledger.allocate(asset_id, goal_id, "40")  # unchanged, not recorded
        ledger.allocate(asset_id, goal_id, "0")

        history = db_session.query(AllocationHistoryModel).all()
        assert sorted(h.amount for h in history) == [Decimal("0"), Decimal("40")]
        events = db_session.query(EventLog).filter(EventLog.event_type == "allocation_set").order_by(EventLog.id).all()
        assert len(events) == 2
        assert events[-1].payload_json["previous_amount"] == "40.00000000"


class TestSharedAsset:
    def test_asset_split_across_two_goals(self, db_session, make_goal, make_asset):
        goal_a = make_goal(name="A")
        goal_b = make_goal(name="B")
        asset_id = make_asset(deposit="200")
        ledger = AllocationLedger(db_session)

        ledger.share_asset(asset_id, {goal_a: "50", goal_b: "150"})

        status = ledger.allocation_status(asset_id)
        assert status.balance == Decimal("200")
        assert status.allocated == Decimal("200")
        assert status.is_fully_allocated is True
        assert status.is_over_allocated is False
        assert ledger.unallocated(asset_id) == 0

    def test_sharing_reduces_prior_full_allocation(self, db_session, make_goal, make_asset, rates):
        goal_a = make_goal(name="A", target="800")
        goal_b = make_goal(name="B", target="600")
        asset_id = make_asset(deposit="200")
        ledger = AllocationLedger(db_session, rates)
        ledger.allocate(asset_id, goal_a, "200")

        ledger.share_asset(asset_id, {goal_a: "50", goal_b: "150"})

        total_a = asyncio.run(ledger.total_allocated_for_goal(goal_a))
        total_b = asyncio.run(ledger.total_allocated_for_goal(goal_b))
        assert total_a.amount == Decimal("50.00")
        assert total_b.amount == Decimal("150.00")
        assert total_a.amount + total_b.amount == Decimal("200")
        assert ledger.unallocated(asset_id) == 0

    def test_share_replaces_the_whole_map(self, db_session, make_goal, make_asset):
        goal_a = make_goal(name="A")
        goal_b = make_goal(name="B")
        asset_id = make_asset(deposit="200")
        ledger = AllocationLedger(db_session)
        ledger.share_asset(asset_id, {goal_a: "50", goal_b: "150"})

        ledger.share_asset(asset_id, {goal_b: "120"})

        rows = ledger.allocations_for_asset(asset_id)
        assert [(r.goal_id, r.amount) for r in rows] == [(goal_b, Decimal("120"))]
        assert ledger.unallocated(asset_id) == Decimal("80")

    def test_over_allocation_is_a_warning_not_an_error(self, db_session, make_goal, make_asset, caplog):
        goal_a = make_goal(name="A")
        goal_b = make_goal(name="B")
        asset_id = make_asset(deposit="200")
        ledger = AllocationLedger(db_session)
        ledger.share_asset(asset_id, {goal_a: "50", goal_b: "150"})

        with caplog.at_level(logging.WARNING, logger="app.application.allocations"):
            ledger.allocate(asset_id, goal_b, "200")

        assert ledger.total_allocated_for_asset(asset_id) == Decimal("250")
        assert ledger.is_over_allocated(asset_id) is True
        assert ledger.allocation_status(asset_id).over_allocated_amount == Decimal("50")
        assert ledger.unallocated(asset_id) == 0
        assert [s.asset_id for s in ledger.over_allocated_assets()] == [asset_id]
        assert "over-allocated" in caplog.text


class TestGoalTotals:
    def test_converts_each_asset_into_goal_currency(self, db_session, make_goal, make_asset, rates):
        goal_id = make_goal(target="10000")
        usd = make_asset(deposit="100")
        btc = make_asset(currency="BTC", deposit="0.01")
        eur = make_asset(currency="EUR", deposit="100")
        ledger = AllocationLedger(db_session, rates)
        ledger.allocate(usd, goal_id, "100")
        ledger.allocate(btc, goal_id, "0.01")
        ledger.allocate(eur, goal_id, "100")

        total = asyncio.run(ledger.total_allocated_for_goal(goal_id))

        # 100 + 0.01 * 50000 + 100 * 1.1
        assert total.amount == Decimal("710")
        assert total.currency == "USD"
        assert total.is_stale is False

    def test_failed_rate_excludes_asset_and_marks_stale(self, db_session, make_goal, make_asset, rates):
        goal_id = make_goal()
        usd = make_asset(deposit="100")
        doge = make_asset(currency="DOGE", deposit="1000")
        ledger = AllocationLedger(db_session, rates)
        ledger.allocate(usd, goal_id, "100")
        ledger.allocate(doge, goal_id, "1000")

        total = asyncio.run(ledger.total_allocated_for_goal(goal_id))

        assert total.amount == Decimal("100")
        assert total.failed_asset_ids == (doge,)
        assert total.is_stale is True


class TestCascades:
    def test_deleting_goal_drops_its_allocations(self, db_session, make_goal, make_asset):
        goal_a = make_goal(name="A")
        goal_b = make_goal(name="B")
        asset_id = make_asset(deposit="200")
        ledger = AllocationLedger(db_session)
        ledger.share_asset(asset_id, {goal_a: "50", goal_b: "150"})

        DeleteGoalUseCase(db_session).execute(goal_a)

        assert [r.goal_id for r in ledger.allocations_for_asset(asset_id)] == [goal_b]
        assert db_session.query(AllocationHistoryModel).filter_by(goal_id=goal_a).count() == 0

    def test_deleting_asset_drops_its_allocations(self, db_session, make_goal, make_asset):
        goal_id = make_goal()
        kept = make_asset(deposit="10")
        removed = make_asset(deposit="20")
        ledger = AllocationLedger(db_session)
        ledger.allocate(kept, goal_id, "10")
        ledger.allocate(removed, goal_id, "20")

        DeleteAssetUseCase(db_session).execute(removed)

        assert [r.asset_id for r in ledger.allocations_for_goal(goal_id)] == [kept]


def test_observe_yields_after_changes(db_session, make_goal, make_asset):
    goal_id = make_goal()
    asset_id = make_asset(deposit="100")
    ledger = AllocationLedger(db_session)
    stream = AllocationRepository(db_session).observe(poll_interval=0, max_polls=1, goal_id=goal_id)

    assert next(stream) == []

    ledger.allocate(asset_id, goal_id, "30")
    assert [r.amount for r in next(stream)] == [Decimal("30")]

    # No further changes: stream ends after one empty poll
    assert list(stream) == []


def test_observe_counts_consecutive_empty_polls(db_session, make_goal, make_asset):
    goal_id = make_goal()
    asset_id = make_asset(deposit="100")
    ledger = AllocationLedger(db_session)
    pending = [
        lambda: ledger.allocate(asset_id, goal_id, "30"),
        lambda: ledger.allocate(asset_id, goal_id, "40"),
    ]

    def fake_sleep(seconds):
        # Each empty poll lets the next change land
        if pending:
            pending.pop(0)()

    stream = AllocationRepository(db_session).observe(poll_interval=0, max_polls=2, goal_id=goal_id)
    with patch("app.infrastructure.repositories.time.sleep", side_effect=fake_sleep):
        assert next(stream) == []
        assert [r.amount for r in next(stream)] == [Decimal("30")]
        # One empty poll before and one after the first batch: still under the limit
        assert [r.amount for r in next(stream)] == [Decimal("40")]
        assert list(stream) == []
