"""Async engine and session scope for the transaction store."""

import asyncio
import logging
from typing import Any, AsyncGenerator, Dict, Optional
from contextlib import asynccontextmanager, nullcontext

from sqlalchemy.ext.asyncio import (
    create_async_engine as sa_create_async_engine,
    AsyncSession,
    async_sessionmaker,
    AsyncEngine,
)
from sqlalchemy.engine import make_url
from sqlalchemy.pool import StaticPool

from . import models

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./payments.db"

_ASYNC_DRIVER_PREFIXES = {
    "postgresql://": "postgresql+asyncpg://",
    "postgres://": "postgresql+asyncpg://",
}


def normalize_database_url(db_url: Optional[str]) -> str:
    """Point plain PostgreSQL URLs at asyncpg; fall back to a local SQLite file."""
    if not db_url:
        return DEFAULT_DATABASE_URL
    for prefix, replacement in _ASYNC_DRIVER_PREFIXES.items():
        if db_url.startswith(prefix):
            return replacement + db_url[len(prefix):]
    return db_url


def is_sqlite(database_url: str) -> bool:
    return make_url(database_url).get_backend_name() == "sqlite"


def is_memory_database(database_url: str) -> bool:
    url = make_url(database_url)
    return url.get_backend_name() == "sqlite" and url.database in (None, "", ":memory:")


def create_async_engine(
    database_url: Optional[str] = None,
    echo: bool = False,
    pool_size: int = 5,
    max_overflow: int = 10,
) -> AsyncEngine:
    """
    Build the engine for ``database_url``.

    An in-memory SQLite database lives on one shared connection (StaticPool),
    a SQLite file gets the driver's default pool, and other backends use a
    sized pool.
    """
    url = normalize_database_url(database_url)
    options: Dict[str, Any] = {"echo": echo}
    if is_memory_database(url):
        options.update(connect_args={"check_same_thread": False}, poolclass=StaticPool)
    elif is_sqlite(url):
        options.update(connect_args={"check_same_thread": False})
    else:
        options.update(pool_size=pool_size, max_overflow=max_overflow, pool_pre_ping=True)
    return sa_create_async_engine(url, **options)


def get_async_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Records are handed back to the orchestrator after commit
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


class DatabaseManager:
    """
    Owns the engine and session factory for the application's lifetime.

        db = DatabaseManager(settings.database_url)
        await db.initialize()
        async with db.session() as session:
            ...
        await db.shutdown()
    """

    def __init__(
        self,
        database_url: Optional[str] = None,
        echo: bool = False,
        pool_size: int = 5,
        max_overflow: int = 10,
    ):
        self.database_url = normalize_database_url(database_url)
        self.echo = echo
        self.pool_size = pool_size
        self.max_overflow = max_overflow
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None
        # SQLite sessions take turns: one writer per file, one shared connection in memory.
        self._serial: Optional[asyncio.Lock] = asyncio.Lock() if is_sqlite(self.database_url) else None

    @property
    def engine(self) -> Optional[AsyncEngine]:
        return self._engine

    async def initialize(self, create_tables: bool = True) -> None:
        """Open the engine; with ``create_tables`` the schema is created if missing."""
        self._engine = create_async_engine(
            self.database_url, self.echo, self.pool_size, self.max_overflow
        )
        self._session_factory = get_async_session_factory(self._engine)
        if create_tables:
            async with self._engine.begin() as conn:
                await conn.run_sync(models.Base.metadata.create_all)
        logger.info(f"Transaction store ready ({self._engine.url.get_backend_name()})")

    async def shutdown(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
            logger.info("Database connection closed.")

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Session whose work commits on clean exit and rolls back on error.
        On SQLite only one session is open at a time.
        """
        if self._session_factory is None:
            raise RuntimeError("DatabaseManager not initialized. Call initialize() first.")

        async with self._serial or nullcontext():
            async with self._session_factory() as session:
                try:
                    yield session
                    await session.commit()
                except Exception:
                    await session.rollback()
                    raise
