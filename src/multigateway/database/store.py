"""Transaction record store: the persistence contract used by the orchestrator."""

import asyncio
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import AsyncIterator, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import TransactionHistory, TransactionRecord, utcnow
from .session import DatabaseManager

logger = logging.getLogger(__name__)


class KeyedLock:
    """
    One asyncio.Lock per key, created on demand and dropped when no task holds
    or waits for it. Single event loop only.
    """

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._waiters: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


def _history_entry(
    internal_id: str,
    action: str,
    new_status: str,
    previous_status: Optional[str] = None,
    provider_id: Optional[str] = None,
    amount: Optional[Decimal] = None,
    error_message: Optional[str] = None,
) -> TransactionHistory:
    return TransactionHistory(
        internal_id=internal_id,
        action=action,
        new_status=new_status,
        previous_status=previous_status,
        provider_id=provider_id,
        amount=amount,
        error_message=error_message,
    )


class LockedRecord:
    """
    A record loaded inside a per-record critical section. ``save`` and
    ``add_history`` are flushed into the open transaction, which commits when the
    critical section exits cleanly.
    """

    def __init__(self, session: AsyncSession, record: Optional[TransactionRecord]):
        self.session = session
        self.record = record

    async def save(self) -> TransactionRecord:
        self.record.updated_at = utcnow()
        await self.session.flush()
        return self.record

    async def add_history(self, action: str, new_status: str, **fields) -> None:
        self.session.add(_history_entry(self.record.internal_id, action, new_status, **fields))
        await self.session.flush()


class TransactionStore(ABC):
    """
    Persistence contract for transaction records. Each call is atomic;
    ``locked`` provides the per-record read-modify-write critical section.
    """

    @abstractmethod
    async def save(self, record: TransactionRecord) -> TransactionRecord:
        raise NotImplementedError

    @abstractmethod
    async def find_by_internal_id(self, internal_id: str) -> Optional[TransactionRecord]:
        raise NotImplementedError

    @abstractmethod
    async def find_by_provider_id(self, provider_id: str) -> Optional[TransactionRecord]:
        raise NotImplementedError

    @abstractmethod
    def locked(self, internal_id: str):
        """Async context manager yielding a ``LockedRecord`` for ``internal_id``."""
        raise NotImplementedError

    @abstractmethod
    async def add_history(self, internal_id: str, action: str, new_status: str, **fields) -> None:
        raise NotImplementedError

    @abstractmethod
    async def get_history(self, internal_id: str, limit: int = 100) -> List[TransactionHistory]:
        raise NotImplementedError


class SqlAlchemyTransactionStore(TransactionStore):
    """TransactionStore backed by an async SQLAlchemy database."""

    def __init__(self, db: DatabaseManager):
        self.db = db
        self._locks = KeyedLock()

    async def save(self, record: TransactionRecord) -> TransactionRecord:
        """Insert or update ``record``; stamps ``updated_at``."""
        record.updated_at = utcnow()
        if record.created_at is None:
            record.created_at = record.updated_at
        async with self.db.session() as session:
            merged = await session.merge(record)
        logger.debug(f"Saved transaction {merged.internal_id} with status {merged.status}")
        return merged

    async def find_by_internal_id(self, internal_id: str) -> Optional[TransactionRecord]:
        async with self.db.session() as session:
            return await session.get(TransactionRecord, internal_id)

    async def find_by_provider_id(self, provider_id: str) -> Optional[TransactionRecord]:
        async with self.db.session() as session:
            result = await session.execute(
                select(TransactionRecord)
                .where(TransactionRecord.provider_id == provider_id)
                .order_by(TransactionRecord.created_at.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    @asynccontextmanager
    async def locked(self, internal_id: str) -> AsyncIterator[LockedRecord]:
        """
        Serialize work on one record: an in-process lock plus a row lock
        (``SELECT ... FOR UPDATE``, ignored by SQLite) held in one transaction.
        """
        async with self._locks.hold(internal_id):
            async with self.db.session() as session:
                result = await session.execute(
                    select(TransactionRecord)
                    .where(TransactionRecord.internal_id == internal_id)
                    .with_for_update()
                )
                yield LockedRecord(session, result.scalar_one_or_none())

    async def add_history(self, internal_id: str, action: str, new_status: str, **fields) -> None:
        async with self.db.session() as session:
            session.add(_history_entry(internal_id, action, new_status, **fields))

    async def get_history(self, internal_id: str, limit: int = 100) -> List[TransactionHistory]:
        """History entries for ``internal_id``, oldest first."""
        async with self.db.session() as session:
            result = await session.execute(
                select(TransactionHistory)
                .where(TransactionHistory.internal_id == internal_id)
                .order_by(TransactionHistory.id.asc())
                .limit(limit)
            )
            return list(result.scalars().all())
