"""Data models for persistent session tracking."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

SessionStatus = Literal["queued", "in_progress", "completed", "failed", "cancelled"]
MergeMethod = Literal["merge", "squash", "rebase"]

SESSION_STATUSES: frozenset[str] = frozenset(
    {"queued", "in_progress", "completed", "failed", "cancelled"}
)
SCHEMA_VERSION = 1


def utc_now() -> str:
    """Return the current UTC time as an ISO-8601 string."""

    return datetime.now(timezone.utc).isoformat()


class _StateModel(BaseModel):
    """Base for records persisted in the state file (camelCase on disk)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class SessionError(_StateModel):
    code: str
    message: str
    timestamp: str = Field(default_factory=utc_now)


class OutcomeResult(_StateModel):
    outcome: str
    satisfied: bool


class ReviewResult(_StateModel):
    """Verdict produced by the review capability for one patch."""

    approved: bool
    issues: int = Field(default=0, ge=0)
    feedback: str = ""
    outcome_results: list[OutcomeResult] | None = None


class ReviewHistoryEntry(_StateModel):
    """Record of a single review round.

    Only the newest entry keeps its full ``feedback``; older entries carry a
    short ``summary`` instead.
    """

    round: int = Field(ge=1)
    timestamp: str = Field(default_factory=utc_now)
    approved: bool
    issues: int = Field(default=0, ge=0)
    feedback: str = ""
    summary: str | None = None
    outcome_results: list[OutcomeResult] | None = None


class TrackedSession(_StateModel):
    """Local record of a remote worker session and its review lifecycle."""

    # identity
    id: str
    provider: str
    remote_session_id: str
    console_url: str | None = None

    # context
    repo: str
    branch: str
    prompt: str
    title: str | None = None
    parent_session_id: str | None = None
    parent_message_id: str | None = None

    # state
    status: SessionStatus = "queued"
    last_known_status: SessionStatus | None = None
    status_message: str | None = None
    error: SessionError | None = None

    # review
    auto_review: bool = True
    review_round: int = Field(default=0, ge=0)
    max_review_rounds: int = Field(default=3, ge=1)
    expected_outcomes: list[str] | None = None
    review_history: list[ReviewHistoryEntry] = Field(default_factory=list)
    last_review_result: ReviewResult | None = None

    # outputs
    pr_url: str | None = None
    last_patch_hash: str | None = None

    # merge
    auto_merge: bool = False
    merge_method: MergeMethod | None = None
    merged: bool = False
    merge_commit_sha: str | None = None

    # control flags
    watching: bool = True
    in_flight: bool = False

    created_at: str = Field(default_factory=utc_now)
    updated_at: str = Field(default_factory=utc_now)
    completed_at: str | None = None

    @model_validator(mode="after")
    def _check_invariants(self) -> "TrackedSession":
        if self.review_round > self.max_review_rounds:
            raise ValueError(
                f"review_round {self.review_round} exceeds max_review_rounds {self.max_review_rounds}"
            )
        if self.merged and self.status != "completed":
            raise ValueError("a merged session must have status 'completed'")
        return self


class CloudWorkersState(_StateModel):
    """Aggregate root persisted to the state file."""

    schema_version: int = SCHEMA_VERSION
    sessions: list[TrackedSession] = Field(default_factory=list)
    last_poll_at: str | None = None

    @model_validator(mode="after")
    def _check_unique_ids(self) -> "CloudWorkersState":
        seen: set[str] = set()
        for session in self.sessions:
            if session.id in seen:
                raise ValueError(f"duplicate session id '{session.id}'")
            seen.add(session.id)
        return self


__all__ = [
    "CloudWorkersState",
    "MergeMethod",
    "OutcomeResult",
    "ReviewHistoryEntry",
    "ReviewResult",
    "SCHEMA_VERSION",
    "SESSION_STATUSES",
    "SessionError",
    "SessionStatus",
    "TrackedSession",
    "utc_now",
]
