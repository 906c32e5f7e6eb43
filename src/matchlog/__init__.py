"""Match event log for a youth-football coaching app.

Public API:
- MatchLogger: log, query, correct and recover a match's events
- EventType, MatchEvent, StoreSnapshot: the event model
- MemoryStorage, FileStorage, SQLiteStorage: snapshot storage backends
- MatchLogError and subclasses: errors raised to callers
"""

from .engine import MatchLogger
from .exceptions import (
    EventValidationFailed,
    InvalidEventType,
    MatchLogError,
    PersistenceWriteFailed,
    StorageError,
    StorageQuotaExceeded,
)
from .models import EventType, MatchEvent, StoreSnapshot
from .storage import FileStorage, KeyValueStorage, MemoryStorage, SQLiteStorage

__all__ = [
    "MatchLogger",
    "EventType",
    "MatchEvent",
    "StoreSnapshot",
    "KeyValueStorage",
    "MemoryStorage",
    "FileStorage",
    "SQLiteStorage",
    "MatchLogError",
    "InvalidEventType",
    "EventValidationFailed",
    "PersistenceWriteFailed",
    "StorageError",
    "StorageQuotaExceeded",
]
