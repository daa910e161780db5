"""Engine and session lifecycle for the API process and the reconciliation CLI."""

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

from .models import Base

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./enrollment_payments.db"

# Process-wide state owned by the API lifespan (init_db / close_db)
_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def get_database_url() -> str:
    """
    Read DATABASE_URL, switching plain Postgres URLs to the asyncpg driver.

    Hosted Postgres providers hand out ``postgres://`` or ``postgresql://``
    URLs; both are rewritten to ``postgresql+asyncpg://``. Without the
    variable a local SQLite file is used.
    """
    db_url = os.getenv("DATABASE_URL")
    if not db_url:
        return DEFAULT_DATABASE_URL
    for prefix in ("postgresql://", "postgres://"):
        if db_url.startswith(prefix):
            return "postgresql+asyncpg://" + db_url[len(prefix):]
    return db_url


def create_async_engine(
    database_url: Optional[str] = None,
    echo: bool = False,
    pool_size: int = 5,
    max_overflow: int = 10,
) -> AsyncEngine:
    """
    Create an async engine for ``database_url`` (default: get_database_url()).

    SQLite gets a StaticPool so an in-memory database survives across
    sessions; other backends get a sized connection pool.
    """
    url = database_url or get_database_url()

    if url.startswith("sqlite"):
        return sa_create_async_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

    return sa_create_async_engine(
        url,
        echo=echo,
        pool_size=pool_size,
        max_overflow=max_overflow,
    )


def _make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Sweeps commit per submission and keep reading snapshots afterwards
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def _create_tables(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def get_async_session_factory(
    engine: Optional[AsyncEngine] = None,
) -> async_sessionmaker[AsyncSession]:
    """
    Return a session factory bound to ``engine``, or the process-wide one.

    Raises:
        RuntimeError: If no engine is given and init_db() has not run.
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
    Open the process-wide engine. Called from the API lifespan.

    ``create_tables`` is meant for SQLite and tests; Postgres deployments
    run the Alembic migration instead.
    """
    global _engine, _session_factory

    _engine = create_async_engine(database_url, echo=echo)
    _session_factory = _make_session_factory(_engine)

    if create_tables:
        await _create_tables(_engine)

    logger.info("Database initialized")


async def close_db() -> None:
    """Dispose of the process-wide engine."""
    global _engine, _session_factory

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None
        logger.info("Database connection closed")


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency yielding one session per request.

    Work left pending by the route is committed on success and rolled back
    if the route raises. Services that commit per item (webhook ingestion,
    the sweep) leave nothing pending.
    """
    session_factory = get_async_session_factory()
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


class DatabaseManager:
    """
    Engine owner for code running outside the API process.

    Example:
        db_manager = DatabaseManager(database_url)
        await db_manager.initialize()
        async with db_manager.session() as session:
            await ReconciliationService(session).run_sweep(SweepRequest())
        await db_manager.shutdown()
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

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Session that commits on exit and rolls back on error."""
        if self._session_factory is None:
            raise RuntimeError("DatabaseManager not initialized. Call initialize() first.")

        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
