"""Async database engine and session helpers."""

from typing import Any, AsyncIterator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from erp_logistics.core.config import settings


def _is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def _install_sqlite_transaction_hooks(engine: AsyncEngine) -> None:
    """Let SQLAlchemy own BEGIN so SQLite write transactions are serialised."""

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):  # pragma: no cover - driver hook
        # Stop the driver from emitting its own deferred BEGIN.
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):  # pragma: no cover - driver hook
        conn.exec_driver_sql(settings.SQLITE_BEGIN_STATEMENT)


def create_db_engine(url: str | None = None, **overrides: Any) -> AsyncEngine:
    """Build an async engine for ``url`` (defaults to ``settings.DATABASE_URL``)."""

    url = url or settings.DATABASE_URL
    kwargs: dict[str, Any] = {"echo": settings.DB_ECHO}
    if not _is_sqlite(url):
        kwargs.update(
            pool_pre_ping=True,
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_timeout=settings.DB_POOL_TIMEOUT,
            pool_recycle=settings.DB_POOL_RECYCLE,
            isolation_level=settings.DB_ISOLATION_LEVEL,
        )
    kwargs.update(overrides)
    engine = create_async_engine(url, **kwargs)
    if _is_sqlite(url):
        _install_sqlite_transaction_hooks(engine)
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, expire_on_commit=False)


async def create_all(engine: AsyncEngine) -> None:
    """Create every mapped table that does not exist yet."""

    from erp_logistics.models import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


engine = create_db_engine()

SessionLocal = create_session_factory(engine)


async def get_session() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency that yields an async database session."""

    async with SessionLocal() as session:
        yield session
