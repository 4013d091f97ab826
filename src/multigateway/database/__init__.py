"""Database module for transaction record persistence."""

from .models import (
    Base,
    TransactionRecord,
    TransactionHistory,
    TransactionAction,
    new_internal_id,
    utcnow,
)
from .session import (
    normalize_database_url,
    is_sqlite,
    is_memory_database,
    create_async_engine,
    get_async_session_factory,
    DatabaseManager,
)
from .store import (
    KeyedLock,
    LockedRecord,
    TransactionStore,
    SqlAlchemyTransactionStore,
)

__all__ = [
    # Models
    "Base",
    "TransactionRecord",
    "TransactionHistory",
    "TransactionAction",
    "new_internal_id",
    "utcnow",
    # Session management
    "normalize_database_url",
    "is_sqlite",
    "is_memory_database",
    "create_async_engine",
    "get_async_session_factory",
    "DatabaseManager",
    # Store
    "KeyedLock",
    "LockedRecord",
    "TransactionStore",
    "SqlAlchemyTransactionStore",
]
