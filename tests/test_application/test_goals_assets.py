"""
Tests for goal, asset and transaction use cases
"""
from datetime import date, datetime
from decimal import Decimal

import pytest

from app.application.goals import (
    CreateGoalUseCase, UpdateGoalUseCase, ChangeGoalStatusUseCase, DeleteGoalUseCase,
    GoalValidationError, GoalNotFoundError,
)
from app.application.assets import (
    CreateAssetUseCase, UpdateOnchainBalanceUseCase, AssetValidationError, load_asset, manual_balance,
)
from app.application.transactions import (
    AddTransactionUseCase, UpdateTransactionUseCase, DeleteTransactionUseCase,
    TransactionValidationError,
)
from app.domain.transaction import SOURCE_ONCHAIN
from app.infrastructure.db.models import EventLog, GoalModel, TransactionModel


# === Goals ===

def test_create_goal(db_session):
    """Goal is stored with normalized currency and a goal_created event"""
    goal_id = CreateGoalUseCase(db_session).execute(
        name="  Vacation ",
        currency="usd",
        target_amount="1 500,50",
        deadline=date(2025, 12, 31),
        start_date=date(2025, 1, 1),
        emoji="🏖",
    )

    goal = db_session.get(GoalModel, goal_id)
    assert goal.name == "Vacation"
    assert goal.currency == "USD"
    assert goal.target_amount == Decimal("1500.50")
    assert goal.status == "active"

    event = db_session.query(EventLog).filter(EventLog.event_type == "goal_created").first()
    assert event.entity_id == goal_id
    assert event.payload_json["target_amount"] == "1500.50"


@pytest.mark.parametrize("kwargs", [
    {"name": ""},
    {"currency": ""},
    {"target_amount": "0"},
    {"target_amount": "abc"},
    {"deadline": date(2024, 12, 31)},
])
def test_create_goal_rejects_invalid_input(db_session, kwargs):
    params = dict(
        name="Goal",
        currency="USD",
        target_amount="100",
        deadline=date(2025, 12, 31),
        start_date=date(2025, 1, 1),
    )
    params.update(kwargs)

    with pytest.raises(GoalValidationError):
        CreateGoalUseCase(db_session).execute(**params)


def test_update_goal(db_session, make_goal):
    goal_id = make_goal(target="1000")

    UpdateGoalUseCase(db_session).execute(goal_id, target_amount="2000", deadline=date(2026, 6, 30))

    goal = db_session.get(GoalModel, goal_id)
    assert goal.target_amount == Decimal("2000")
    assert goal.deadline == date(2026, 6, 30)


def test_update_goal_rejects_unknown_fields(db_session, make_goal):
    goal_id = make_goal()

    with pytest.raises(GoalValidationError):
        UpdateGoalUseCase(db_session).execute(goal_id, currency="EUR")


def test_change_status(db_session, make_goal):
    goal_id = make_goal()

    ChangeGoalStatusUseCase(db_session).execute(goal_id, "archived")

    goal = db_session.get(GoalModel, goal_id)
    assert goal.status == "archived"
    assert goal.status_changed_at is not None

    with pytest.raises(GoalValidationError):
        ChangeGoalStatusUseCase(db_session).execute(goal_id, "paused")


def test_delete_missing_goal(db_session):
    with pytest.raises(GoalNotFoundError):
        DeleteGoalUseCase(db_session).execute("missing")


# === Assets ===

def test_asset_balance_is_manual_plus_onchain(db_session, make_asset):
    asset_id = make_asset(currency="ETH", address="0xabc", chain_id="1")
    AddTransactionUseCase(db_session).execute(asset_id=asset_id, amount="0.5")
    AddTransactionUseCase(db_session).execute(asset_id=asset_id, amount="-0.2")
    AddTransactionUseCase(db_session).execute(
        asset_id=asset_id, amount="3", source=SOURCE_ONCHAIN, external_id="0xtx1",
    )
    UpdateOnchainBalanceUseCase(db_session).execute(asset_id, "2")

    asset = load_asset(db_session, asset_id)

    # on-chain rows are covered by the cached balance
    assert manual_balance(db_session, asset_id) == Decimal("0.3")
    assert asset.current_amount == Decimal("2.3")
    assert asset.is_onchain is True


def test_duplicate_address_rejected(db_session, make_asset):
    make_asset(currency="BTC", address="bc1qxyz", chain_id="bitcoin")

    with pytest.raises(AssetValidationError):
        CreateAssetUseCase(db_session).execute(currency="BTC", chain_id="bitcoin", address="bc1qxyz")


def test_negative_onchain_balance_rejected(db_session, make_asset):
    asset_id = make_asset()

    with pytest.raises(AssetValidationError):
        UpdateOnchainBalanceUseCase(db_session).execute(asset_id, "-1")


# === Transactions ===

def test_zero_transaction_rejected(db_session, make_asset):
    asset_id = make_asset()

    with pytest.raises(TransactionValidationError):
        AddTransactionUseCase(db_session).execute(asset_id=asset_id, amount="0")


def test_duplicate_external_id_rejected(db_session, make_asset):
    asset_id = make_asset(currency="ETH")
    AddTransactionUseCase(db_session).execute(
        asset_id=asset_id, amount="1", source=SOURCE_ONCHAIN, external_id="0xtx1",
    )

    with pytest.raises(TransactionValidationError):
        AddTransactionUseCase(db_session).execute(
            asset_id=asset_id, amount="1", source=SOURCE_ONCHAIN, external_id="0xtx1",
        )


def test_edit_and_delete_manual_transaction(db_session, make_asset):
    asset_id = make_asset()
    tx_id = AddTransactionUseCase(db_session).execute(
        asset_id=asset_id, amount="100", occurred_at=datetime(2025, 2, 1, 10, 0),
    )

    UpdateTransactionUseCase(db_session).execute(tx_id, amount="150", comment="salary")
    assert manual_balance(db_session, asset_id) == Decimal("150")

    DeleteTransactionUseCase(db_session).execute(tx_id)
    assert db_session.get(TransactionModel, tx_id) is None
    assert manual_balance(db_session, asset_id) == 0


def test_onchain_transaction_is_read_only(db_session, make_asset):
    asset_id = make_asset(currency="ETH")
    tx_id = AddTransactionUseCase(db_session).execute(
        asset_id=asset_id, amount="1", source=SOURCE_ONCHAIN, external_id="0xtx1",
    )

    with pytest.raises(TransactionValidationError):
        DeleteTransactionUseCase(db_session).execute(tx_id)
