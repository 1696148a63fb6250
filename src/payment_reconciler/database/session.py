"""Engine and session handling for the local payment store."""

import os
import logging
from typing import AsyncGenerator, Optional
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    create_async_engine as sa_create_async_engine,
    AsyncSession,
    async_sessionmaker,
    AsyncEngine,
)
from sqlalchemy.pool import StaticPool

from . import models

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./reconciler.db"

# Process-wide engine used by the API
_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def get_database_url() -> str:
    """Return DATABASE_URL, switching plain postgres URLs to asyncpg."""
    db_url = os.getenv("DATABASE_URL")
    if not db_url:
        return DEFAULT_DATABASE_URL
    for scheme in ("postgresql://", "postgres://"):
        if db_url.startswith(scheme):
            return "postgresql+asyncpg://" + db_url[len(scheme):]
    return db_url


def create_async_engine(
    database_url: Optional[str] = None,
    echo: bool = False,
) -> AsyncEngine:
    """
    Create an async SQLAlchemy engine.

    Args:
        database_url: Database connection URL. If None, uses get_database_url().
        echo: If True, log all SQL statements.

    Returns:
        AsyncEngine instance.
    """
    url = database_url or get_database_url()
    if url.startswith("sqlite"):
        # One shared connection, so in-memory databases survive across sessions
        return sa_create_async_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return sa_create_async_engine(url, echo=echo, pool_pre_ping=True)


def _make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


async def _create_tables(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(models.Base.metadata.create_all)


@asynccontextmanager
async def _session_scope(
    factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Yield a session that commits on success and rolls back on error."""
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_async_session_factory(
    engine: Optional[AsyncEngine] = None,
) -> async_sessionmaker[AsyncSession]:
    """
    Return a new session factory bound to engine, or the process-wide one.

    Raises:
        RuntimeError: If init_db() has not been called and no engine is given.
    """
    if engine is not None:
        return _make_session_factory(engine)
    if _session_factory is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _session_factory


async def init_db(
    database_url: Optional[str] = None,
    echo: bool = False,
    create_tables: bool = True,
) -> None:
    """
    Set up the process-wide engine and optionally create tables.

    Deployments managed by migrations should pass create_tables=False.
    """
    global _engine, _session_factory

    _engine = create_async_engine(database_url, echo=echo)
    _session_factory = _make_session_factory(_engine)
    if create_tables:
        await _create_tables(_engine)
    logger.info(f"Database initialized ({_engine.url.get_backend_name()})")


async def close_db() -> None:
    """Dispose of the process-wide engine."""
    global _engine, _session_factory

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None
        logger.info("Database connection closed.")


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency yielding a request-scoped session.

    The session commits after the handler returns, so history rows written
    for failed gateway calls are kept.
    """
    async with _session_scope(get_async_session_factory()) as session:
        yield session


def get_db_context():
    """
    Committing session context on the process-wide engine, for code running
    outside a request.

    Example:
        async with get_db_context() as db:
            payment = await PaymentRepository(db).get_by_order_id(order_id)
    """
    return _session_scope(get_async_session_factory())


class DatabaseManager:
    """
    Engine and sessions with an explicit lifecycle, independent of the
    process-wide engine. Used by the CLI.

    Example:
        db = DatabaseManager("sqlite+aiosqlite:///./reconciler.db")
        await db.initialize()
        async with db.session() as session:
            ...
        await db.shutdown()
    """

    def __init__(self, database_url: Optional[str] = None, echo: bool = False):
        self.database_url = database_url
        self.echo = echo
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None

    async def initialize(self, create_tables: bool = True) -> None:
        self._engine = create_async_engine(self.database_url, echo=self.echo)
        self._session_factory = _make_session_factory(self._engine)
        if create_tables:
            await _create_tables(self._engine)

    async def shutdown(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None

    def session(self):
        """Return a committing session context.

        Raises:
            RuntimeError: If initialize() has not been called.
        """
        if self._session_factory is None:
            raise RuntimeError("DatabaseManager not initialized. Call initialize() first.")
        return _session_scope(self._session_factory)
