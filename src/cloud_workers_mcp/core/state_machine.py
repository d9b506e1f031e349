"""Transition rules for tracked sessions.

Everything here is pure: functions take the current record plus an
observation and return the field updates to persist. Transitions only come
from a remote status observation, a review outcome, or an explicit user
action (feedback, merge); the machine never advances a session on its own.

::

    queued -> in_progress -> completed -> Approved (statusMessage) | failed | cancelled
                  ^               |
                  +---------------+  review feedback sent
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..providers.base import RemoteSessionState, Severity
from ..storage.models import ReviewHistoryEntry, ReviewResult, TrackedSession

APPROVED_MESSAGE = "Approved"
MAX_ROUNDS_MESSAGE = "Max review rounds reached"
USER_FEEDBACK_MESSAGE = "Feedback sent by user"
MERGED_MESSAGE = "Merged successfully"
TERMINAL_STATUSES = frozenset({"failed", "cancelled"})


class InvalidTransitionError(RuntimeError):
    """Raised when a user action is not allowed in the session's current state."""


@dataclass(slots=True)
class Notification:
    title: str
    message: str
    severity: Severity = "info"


@dataclass(slots=True)
class StatusChange:
    """A remote status observation that differs from the stored status."""

    previous: str
    current: str
    updates: dict[str, Any]
    notification: Notification


@dataclass(slots=True)
class ReviewTransition:
    """Field updates and notification for one completed review round."""

    outcome: str
    updates: dict[str, Any]
    notification: Notification
    send_feedback: bool = False


def is_settled(session: TrackedSession) -> bool:
    """Completed and either merged or approved: nothing left to poll for."""

    return session.status == "completed" and (
        session.merged or session.status_message == APPROVED_MESSAGE
    )


def is_terminal(session: TrackedSession) -> bool:
    return session.status in TERMINAL_STATUSES or is_settled(session)


def needs_review(session: TrackedSession) -> bool:
    return session.status == "completed" and session.auto_review and not session.in_flight


def _short_prompt(session: TrackedSession) -> str:
    return session.title or f"{session.prompt[:30]}..."


def observe_remote(
    session: TrackedSession,
    remote: RemoteSessionState,
    *,
    now: str | None = None,
) -> StatusChange | None:
    """Return the change implied by a remote observation, or ``None`` if unchanged."""

    if remote.status == session.status:
        return None

    updates: dict[str, Any] = {
        "status": remote.status,
        "last_known_status": session.status,
        "status_message": remote.status_message,
    }
    if remote.url:
        updates["console_url"] = remote.url
    if remote.status == "completed" and session.completed_at is None and now is not None:
        updates["completed_at"] = now

    if remote.status == "completed":
        severity: Severity = "info" if session.auto_review else "success"
    else:
        severity = "info"
    notification = Notification(
        title=f"Cloud Worker Update: {remote.status}",
        message=f'Session for "{_short_prompt(session)}" is now {remote.status}.',
        severity=severity,
    )
    return StatusChange(
        previous=session.status,
        current=remote.status,
        updates=updates,
        notification=notification,
    )


def compact_history(
    history: list[ReviewHistoryEntry],
    entry: ReviewHistoryEntry,
) -> list[ReviewHistoryEntry]:
    """Append ``entry`` and strip full feedback from every earlier round.

    A compacted entry's summary is assigned the first time it is compacted
    and never rewritten afterwards.
    """

    compacted = [
        previous.model_copy(
            update={
                "feedback": "",
                "summary": previous.summary or f"Round {previous.round}: {previous.issues} issues",
            }
        )
        for previous in history
    ]
    compacted.append(entry)
    return compacted


def review_transition(
    session: TrackedSession,
    result: ReviewResult,
    history: list[ReviewHistoryEntry],
    new_round: int,
) -> ReviewTransition:
    """Decide the outcome of a review round that produced ``result``."""

    common: dict[str, Any] = {
        "review_round": new_round,
        "review_history": history,
        "last_review_result": ReviewResult(
            approved=result.approved,
            issues=result.issues,
            feedback=result.feedback,
        ),
        "in_flight": False,
        "error": None,
    }

    if result.approved:
        return ReviewTransition(
            outcome="approved",
            updates={**common, "status_message": APPROVED_MESSAGE, "watching": False},
            notification=Notification(
                "Worker Approved", "AI review passed. Ready to merge.", "success"
            ),
        )

    if new_round < session.max_review_rounds:
        return ReviewTransition(
            outcome="feedback",
            updates={
                **common,
                "status": "in_progress",
                "last_known_status": session.status,
                "status_message": f"Feedback sent (round {new_round})",
            },
            notification=Notification(
                "Worker Feedback Sent",
                f"Review failed ({result.issues} issues). The worker is iterating on it.",
                "warning",
            ),
            send_feedback=True,
        )

    return ReviewTransition(
        outcome="exhausted",
        updates={**exhausted_updates(session), **common},
        notification=Notification(
            "Worker Failed Review",
            "Max review rounds reached. Please check manually.",
            "error",
        ),
    )


def exhausted_updates(session: TrackedSession) -> dict[str, Any]:
    return {
        "status": "failed",
        "last_known_status": session.status,
        "status_message": MAX_ROUNDS_MESSAGE,
        "in_flight": False,
        "watching": False,
    }


def manual_feedback_updates(session: TrackedSession) -> dict[str, Any]:
    if session.in_flight:
        raise InvalidTransitionError(
            f"Session {session.id} has a review in flight; try again once it finishes."
        )
    if session.merged:
        raise InvalidTransitionError(f"Session {session.id} is already merged.")
    return {
        "status": "in_progress",
        "last_known_status": session.status,
        "status_message": USER_FEEDBACK_MESSAGE,
        "in_flight": False,
        "watching": True,
    }


def merged_updates(session: TrackedSession, merge_commit_sha: str | None) -> dict[str, Any]:
    if session.status != "completed":
        raise InvalidTransitionError(
            f"Session is not completed (current status: {session.status}). Cannot merge yet."
        )
    return {
        "merged": True,
        "merge_commit_sha": merge_commit_sha,
        "status_message": MERGED_MESSAGE,
        "watching": False,
    }


__all__ = [
    "APPROVED_MESSAGE",
    "InvalidTransitionError",
    "MAX_ROUNDS_MESSAGE",
    "MERGED_MESSAGE",
    "Notification",
    "ReviewTransition",
    "StatusChange",
    "TERMINAL_STATUSES",
    "USER_FEEDBACK_MESSAGE",
    "compact_history",
    "exhausted_updates",
    "is_settled",
    "is_terminal",
    "manual_feedback_updates",
    "merged_updates",
    "needs_review",
    "observe_remote",
    "review_transition",
]
