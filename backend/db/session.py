"""
DeliveryScore Database Session Management

Async SQLAlchemy engine and session factory.
"""

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from core.config import get_settings


def enable_sqlite_write_locking(engine: AsyncEngine) -> None:
    """
    Open every SQLite transaction with BEGIN IMMEDIATE.

    SQLite has no row locks and silently drops FOR UPDATE, so the scoring
    transaction would otherwise read scored_at before any lock is held.
    BEGIN IMMEDIATE takes the database write lock up front.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(database_url: str, *, echo: bool = False) -> AsyncEngine:
    """Create an async engine; SQLite URLs get write locking, others a sized pool."""
    if database_url.startswith("sqlite"):
        engine = create_async_engine(database_url, echo=echo)
        enable_sqlite_write_locking(engine)
        return engine
    return create_async_engine(
        database_url,
        echo=echo,
        pool_size=20,
        max_overflow=10,
        pool_pre_ping=True,
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


settings = get_settings()

engine = build_engine(settings.database_url, echo=settings.database_echo)

AsyncSessionLocal = build_session_factory(engine)


class Base(DeclarativeBase):
    """Declarative base for all SQLAlchemy models."""
    pass
