"""JSON-file persistence for tracked sessions."""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Callable, Mapping

from pydantic import ValidationError

from .models import CloudWorkersState, TrackedSession, utc_now

logger = logging.getLogger(__name__)

STATE_RELATIVE_PATH = Path(".opencode") / "cloud-workers" / "state.json"
IMMUTABLE_FIELDS = frozenset({"id", "prompt", "created_at"})
TERMINAL_STATUSES = frozenset({"failed", "cancelled"})


class SessionStoreError(RuntimeError):
    """Base class for session store errors."""


class SessionStateLoadError(SessionStoreError):
    """Raised when the persisted state file exists but cannot be parsed."""


class DuplicateSessionError(SessionStoreError):
    """Raised when adding a session whose id is already tracked."""


class SessionStore:
    """Durable repository of tracked sessions for one workspace.

    Every mutating call writes the whole state file before returning, so a
    reload after a crash reflects the last completed step.
    """

    def __init__(
        self,
        workspace_dir: Path,
        *,
        clock: Callable[[], str] | None = None,
    ) -> None:
        self._path = Path(workspace_dir) / STATE_RELATIVE_PATH
        self._clock = clock or utc_now
        self._state = CloudWorkersState()
        self._lock = threading.RLock()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def last_poll_at(self) -> str | None:
        return self._state.last_poll_at

    def load(self) -> CloudWorkersState:
        """Read the state file, creating an empty one on first run."""

        with self._lock:
            try:
                content = self._path.read_text(encoding="utf-8")
            except FileNotFoundError:
                self._state = CloudWorkersState()
                self.save()
                return self._state
            except (OSError, UnicodeDecodeError) as exc:
                raise SessionStateLoadError(f"Cannot read state file {self._path}: {exc}") from exc

            try:
                self._state = CloudWorkersState.model_validate_json(content)
            except ValidationError as exc:
                raise SessionStateLoadError(
                    f"State file {self._path} is malformed: {exc}"
                ) from exc

            logger.debug(
                "Loaded cloud worker state",
                extra={"path": str(self._path), "sessions": len(self._state.sessions)},
            )
            return self._state

    def save(self) -> bool:
        """Atomically write the state file; failures are logged, not raised."""

        with self._lock:
            payload = json.dumps(self._state.model_dump(mode="json", by_alias=True), indent=2)
            tmp_name: str | None = None
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                fd, tmp_name = tempfile.mkstemp(
                    dir=self._path.parent, prefix=".state-", suffix=".tmp"
                )
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(payload)
                    handle.flush()
                    os.fsync(handle.fileno())
                os.replace(tmp_name, self._path)
                tmp_name = None
                return True
            except OSError as exc:
                logger.error(
                    "Failed to save cloud worker state",
                    extra={"path": str(self._path), "error": str(exc)},
                )
                return False
            finally:
                if tmp_name is not None:
                    try:
                        os.unlink(tmp_name)
                    except OSError:
                        pass

    def add(self, session: TrackedSession) -> TrackedSession:
        with self._lock:
            if self._find_index(session.id) is not None:
                raise DuplicateSessionError(f"Session '{session.id}' is already tracked")
            self._state.sessions.append(session)
            self.save()
            return session

    def get(self, session_id: str) -> TrackedSession | None:
        with self._lock:
            index = self._find_index(session_id)
            return None if index is None else self._state.sessions[index]

    def update(
        self,
        session_id: str,
        updates: Mapping[str, Any] | None = None,
        **fields: Any,
    ) -> TrackedSession | None:
        """Merge fields into a session and stamp ``updated_at``.

        Unknown ids are ignored and return ``None``; unknown field names raise
        ``ValueError``.
        """

        changes = {**(updates or {}), **fields}
        unknown = changes.keys() - TrackedSession.model_fields.keys()
        if unknown:
            raise ValueError(f"Unknown session fields: {', '.join(sorted(unknown))}")
        with self._lock:
            index = self._find_index(session_id)
            if index is None:
                return None

            current = self._state.sessions[index]
            for name in IMMUTABLE_FIELDS & changes.keys():
                if changes[name] != getattr(current, name):
                    raise ValueError(f"Field '{name}' cannot be changed once a session exists")
            if current.completed_at is not None:
                changes.pop("completed_at", None)

            data = current.model_dump()
            data.update(changes)
            data["updated_at"] = self._clock()
            updated = TrackedSession.model_validate(data)

            self._state.sessions[index] = updated
            self.save()
            return updated

    def list(self) -> list[TrackedSession]:
        with self._lock:
            return list(self._state.sessions)

    def pending(self) -> list[TrackedSession]:
        """Sessions the poller should visit; completed ones are kept for review."""

        with self._lock:
            return [
                session
                for session in self._state.sessions
                if session.watching and session.status not in TERMINAL_STATUSES
            ]

    def reset_in_flight(self) -> list[str]:
        """Clear review guards left set by a process that stopped mid-round."""

        with self._lock:
            stale = [session.id for session in self._state.sessions if session.in_flight]
            if not stale:
                return []
            now = self._clock()
            self._state.sessions = [
                session.model_copy(update={"in_flight": False, "updated_at": now})
                if session.in_flight
                else session
                for session in self._state.sessions
            ]
            self.save()
        logger.warning("Reset stale in-flight review flags", extra={"sessions": stale})
        return stale

    def mark_polled(self) -> None:
        with self._lock:
            self._state.last_poll_at = self._clock()
            self.save()

    def _find_index(self, session_id: str) -> int | None:
        for index, session in enumerate(self._state.sessions):
            if session.id == session_id:
                return index
        return None


__all__ = [
    "DuplicateSessionError",
    "IMMUTABLE_FIELDS",
    "STATE_RELATIVE_PATH",
    "SessionStateLoadError",
    "SessionStore",
    "SessionStoreError",
]
