"""
FastAPI dependencies (DB session, settings, rate provider)
"""
from functools import lru_cache

from fastapi import HTTPException

from app.config import get_settings
from app.domain.planning_settings import PlanningSettings
from app.infrastructure.db.session import get_db as _get_db
from app.infrastructure.rates import RateProvider, build_rate_provider


# Re-export get_db
get_db = _get_db


def get_planning_settings() -> PlanningSettings:
    return get_settings().planning_settings()


@lru_cache
def _shared_rate_provider() -> RateProvider:
    # One cache for the whole process
    return build_rate_provider(get_settings())


def get_rate_provider() -> RateProvider:
    return _shared_rate_provider()


def http_error(exc: Exception) -> HTTPException:
    """
    Map a use-case error to an HTTP error

    *NotFoundError -> 404, ExecutionError -> 409, other ValueError -> 400
    """
    from app.domain.execution import ExecutionError

    if type(exc).__name__.endswith("NotFoundError"):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, ExecutionError):
        return HTTPException(status_code=409, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))
