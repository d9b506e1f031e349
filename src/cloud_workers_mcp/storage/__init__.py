"""Storage abstractions for Cloud Workers MCP."""

from .chroma import ChromaJournal, ChromaUnavailableError, JournalEvent
from .models import (
    CloudWorkersState,
    OutcomeResult,
    ReviewHistoryEntry,
    ReviewResult,
    SessionError,
    TrackedSession,
)
from .sessions import (
    DuplicateSessionError,
    SessionStateLoadError,
    SessionStore,
    SessionStoreError,
)

__all__ = [
    "ChromaJournal",
    "ChromaUnavailableError",
    "CloudWorkersState",
    "DuplicateSessionError",
    "JournalEvent",
    "OutcomeResult",
    "ReviewHistoryEntry",
    "ReviewResult",
    "SessionError",
    "SessionStateLoadError",
    "SessionStore",
    "SessionStoreError",
    "TrackedSession",
]
