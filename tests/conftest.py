"""
Pytest fixtures for testing
"""
from datetime import date, datetime
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from app.infrastructure.db.session import Base
from app.infrastructure.db import models  # noqa: F401  (registers tables)
from app.infrastructure.rates import RateUnavailableError
from app.domain.planning_settings import PlanningSettings


class FakeRateProvider:
    """In-memory rates; the inverse pair is derived, unknown pairs fail"""

    def __init__(self, rates=None):
        self.rates = {k: Decimal(v) for k, v in (rates or {}).items()}
        self.calls = []

    async def rate(self, from_currency: str, to_currency: str) -> Decimal:
        self.calls.append((from_currency, to_currency))
        if from_currency == to_currency:
            return Decimal("1")
        if (from_currency, to_currency) in self.rates:
            return self.rates[(from_currency, to_currency)]
        if (to_currency, from_currency) in self.rates:
            return Decimal("1") / self.rates[(to_currency, from_currency)]
        raise RateUnavailableError(f"{from_currency}->{to_currency}")


class FakeClock:
    """Settable naive-UTC clock"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def db_engine():
    """In-memory SQLite shared across threads (TestClient runs sync routes in a pool)"""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(db_engine) -> Session:
    """Create database session for tests"""
    SessionLocal = sessionmaker(bind=db_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def rates():
    return FakeRateProvider({("BTC", "USD"): "50000", ("EUR", "USD"): "1.1"})


@pytest.fixture
def planning_settings():
    return PlanningSettings()


@pytest.fixture
def clock():
    return FakeClock(datetime(2025, 3, 10, 12, 0, 0))


@pytest.fixture
def make_goal(db_session):
    """Factory: create a goal through the use case and return its id"""
    from app.application.goals import CreateGoalUseCase

    def _make(name="Goal", target="1000", deadline=date(2025, 12, 31), currency="USD",
              start_date=date(2025, 1, 1), **kwargs):
        return CreateGoalUseCase(db_session).execute(
            name=name,
            currency=currency,
            target_amount=target,
            deadline=deadline,
            start_date=start_date,
            **kwargs,
        )

    return _make


@pytest.fixture
def make_asset(db_session):
    """Factory: create an asset, optionally with one manual deposit"""
    from app.application.assets import CreateAssetUseCase
    from app.application.transactions import AddTransactionUseCase

    def _make(currency="USD", deposit=None, address=None, chain_id=None):
        asset_id = CreateAssetUseCase(db_session).execute(
            currency=currency, chain_id=chain_id, address=address,
        )
        if deposit is not None:
            AddTransactionUseCase(db_session).execute(asset_id=asset_id, amount=deposit)
        return asset_id

    return _make


@pytest.fixture
def client(db_session, rates, planning_settings):
    """TestClient wired to the test session, fake rates and default planning settings"""
    from fastapi.testclient import TestClient
    from app.api.deps import get_db, get_rate_provider, get_planning_settings
    from app.main import create_app

    app = create_app(with_lifespan=False)
    app.dependency_overrides[get_db] = lambda: db_session
    app.dependency_overrides[get_rate_provider] = lambda: rates
    app.dependency_overrides[get_planning_settings] = lambda: planning_settings
    return TestClient(app)
