"""Contracts for remote worker providers and notification sinks."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal, Protocol

from ..storage.models import SessionStatus

Severity = Literal["info", "success", "warning", "error"]


class ProviderError(RuntimeError):
    """Raised when a remote provider call fails."""


@dataclass(slots=True)
class CreateSessionParams:
    prompt: str
    repo: str
    branch: str | None = None
    title: str | None = None
    require_plan_approval: bool = False
    auto_create_pr: bool = True


@dataclass(slots=True)
class CreateSessionResult:
    remote_session_id: str
    status: SessionStatus
    console_url: str | None = None


@dataclass(slots=True)
class RemoteSessionState:
    """Snapshot of a remote session as reported by the provider."""

    session_id: str
    status: SessionStatus
    status_message: str | None = None
    url: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    raw_state: str | None = None


@dataclass(slots=True)
class PatchArtifact:
    content: str
    files_changed: list[str] = field(default_factory=list)


@dataclass(slots=True)
class SessionArtifacts:
    patch: PatchArtifact | None = None
    pr_url: str | None = None
    changes_summary: str | None = None


class RemoteWorkerProvider(Protocol):
    """Remote agent API the orchestration core depends on."""

    name: str

    async def create_session(self, params: CreateSessionParams) -> CreateSessionResult:
        ...

    async def get_session(self, session_id: str) -> RemoteSessionState:
        ...

    async def send_feedback(self, session_id: str, message: str) -> None:
        ...

    async def get_artifacts(self, session_id: str) -> SessionArtifacts:
        ...

    async def cancel_session(self, session_id: str) -> None:
        ...

    async def approve_plan(self, session_id: str) -> None:
        ...


class NotificationSink(Protocol):
    """Receives user-facing status events; implementations must not raise."""

    def notify(
        self,
        title: str,
        message: str,
        severity: Severity = "info",
        *,
        session_id: str | None = None,
    ) -> None:
        ...


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an RFC 3339 timestamp as returned by Google-style APIs."""

    if not isinstance(value, str) or not value:
        return None
    text = value.replace("Z", "+00:00")
    # Python < 3.11 only accepts exactly six fractional digits.
    if "." in text:
        head, _, tail = text.partition(".")
        match = re.match(r"\d*", tail)
        digits = match.group(0) if match else ""
        offset = tail[len(digits):]
        text = f"{head}.{digits[:6].ljust(6, '0')}{offset}"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


__all__ = [
    "CreateSessionParams",
    "CreateSessionResult",
    "NotificationSink",
    "PatchArtifact",
    "ProviderError",
    "RemoteSessionState",
    "RemoteWorkerProvider",
    "SessionArtifacts",
    "Severity",
    "parse_timestamp",
]
