"""
Database session management (SQLAlchemy)
"""
import psycopg
from sqlalchemy import create_engine, text
from sqlalchemy.orm import DeclarativeBase, sessionmaker, Session

from app.config import get_settings


class Base(DeclarativeBase):
    """
    SQLAlchemy declarative base for all ORM models
    """
    pass


# Singleton engine and session factory
_engine = None
_SessionLocal = None


def get_engine():
    """Get or create SQLAlchemy engine (singleton)"""
    global _engine
    if _engine is None:
        settings = get_settings()
        url = settings.get_sqlalchemy_url()
        connect_args = {}
        if url.startswith("sqlite"):
            # FastAPI runs sync endpoints in a threadpool
            connect_args["check_same_thread"] = False
        _engine = create_engine(url, pool_pre_ping=True, connect_args=connect_args)
    return _engine


def get_session_factory():
    """Get or create session factory (singleton)"""
    global _SessionLocal
    if _SessionLocal is None:
        engine = get_engine()
        _SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    return _SessionLocal


def get_db() -> Session:
    """
    FastAPI dependency - creates a session and closes it afterwards

    Usage:
        @app.get("/goals")
        def list_goals(db: Session = Depends(get_db)):
            ...
    """
    SessionLocal = get_session_factory()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    """Create all tables (local single-user installs without Alembic)"""
    from app.infrastructure.db import models  # noqa: F401  (registers tables)

    Base.metadata.create_all(get_engine())


def check_db_connection() -> None:
    """
    Health check - database availability

    PostgreSQL is probed with a raw psycopg connection, SQLite through the engine.

    Raises:
        psycopg.OperationalError / sqlalchemy.exc.OperationalError
    """
    settings = get_settings()
    if settings.DATABASE_URL.startswith("postgresql"):
        dsn = settings.DATABASE_URL.replace("postgresql+psycopg://", "postgresql://", 1)
        with psycopg.connect(dsn, connect_timeout=3) as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1;")
                cur.fetchone()
        return

    with get_engine().connect() as conn:
        conn.execute(text("SELECT 1"))
