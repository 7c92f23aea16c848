"""
FastAPI application factory
"""
import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

from app.config import get_settings
from app.infrastructure.db.session import check_db_connection, init_db
from app.api.v1 import goals, assets, allocations, planning, execution, export

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    from app.application.scheduler import start_scheduler, shutdown_scheduler

    init_db()
    start_scheduler()
    yield
    shutdown_scheduler()


def create_app(with_lifespan: bool = True) -> FastAPI:
    """
    Application factory

    Args:
        with_lifespan: create tables and start the automation scheduler on startup

    Returns:
        Configured FastAPI app
    """
    settings = get_settings()

    app = FastAPI(
        title="Savings Planner",
        debug=settings.DEBUG,
        lifespan=lifespan if with_lifespan else None,
    )

    # Error-logging middleware - catches ALL exceptions including sync routes
    from starlette.middleware.base import BaseHTTPMiddleware
    from starlette.responses import Response

    class ErrorLoggingMiddleware(BaseHTTPMiddleware):
        async def dispatch(self, request, call_next):
            try:
                return await call_next(request)
            except Exception as exc:
                tb_str = traceback.format_exc()
                logger.error("ERROR on %s %s\n%s", request.method, request.url.path, tb_str)
                return Response(content=f"Internal Server Error: {exc}", status_code=500)

    app.add_middleware(ErrorLoggingMiddleware)

    app.include_router(goals.router)
    app.include_router(assets.router)
    app.include_router(allocations.router)
    app.include_router(planning.router)
    app.include_router(execution.router)
    app.include_router(export.router)

    # Health checks
    @app.get("/health", response_class=PlainTextResponse, tags=["system"])
    def health():
        """Health check endpoint"""
        return "ok"

    @app.get("/ready", response_class=PlainTextResponse, tags=["system"])
    def ready():
        """Readiness check endpoint (database reachable)"""
        check_db_connection()
        return "ok"

    return app


# Create app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn
    # Local only: http://127.0.0.1:8000/docs
    uvicorn.run(
        "app.main:app",
        host="127.0.0.1",
        port=8000,
        reload=True,
    )
