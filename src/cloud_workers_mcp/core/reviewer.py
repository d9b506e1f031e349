"""Bounded review rounds for completed worker sessions."""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol

from pydantic import ValidationError

from ..codex import CodexRunner, CodexRunnerError, extract_json
from ..providers.base import NotificationSink, RemoteWorkerProvider
from ..providers.github import GitHubClient
from ..storage.models import (
    ReviewHistoryEntry,
    ReviewResult,
    SessionError,
    TrackedSession,
    utc_now,
)
from ..storage.sessions import SessionStore
from . import state_machine
from .openspec import OpenSpecChange, fetch_openspec_from_pr, parse_pr_url

logger = logging.getLogger(__name__)

PATCH_BUDGET = 10_000
TRUNCATION_MARKER = "\n... (truncated)"
REVIEW_ERROR = "REVIEW_ERROR"

INVALID_JSON_FEEDBACK = "Reviewer failed to produce valid JSON. Please check manually."
INTERNAL_ERROR_FEEDBACK = "Internal error during review process."


class ReviewError(RuntimeError):
    """Raised when a review round cannot be completed."""


class NoPatchContentError(ReviewError):
    """Raised when the provider has no patch to review."""


class ReviewerUnavailableError(ReviewError):
    """Raised when no review backend is configured."""


@dataclass(slots=True)
class PreviousReview:
    round: int
    issues: int
    feedback: str


@dataclass(slots=True)
class ReviewContext:
    """Everything the review capability gets to see for one round."""

    session_id: str
    prompt: str
    patch: str
    expected_outcomes: list[str] = field(default_factory=list)
    previous: PreviousReview | None = None
    change_document: OpenSpecChange | None = None
    changes_summary: str | None = None


class ReviewCapability(Protocol):
    async def score(self, context: ReviewContext) -> ReviewResult:
        ...


def truncate_patch(patch: str, budget: int = PATCH_BUDGET) -> str:
    if len(patch) <= budget:
        return patch
    return patch[:budget] + TRUNCATION_MARKER


def build_review_prompt(context: ReviewContext) -> str:
    sections = [
        "You are a senior code reviewer. A remote worker has submitted a patch for the following task:",
        f'TASK:\n"{context.prompt}"',
    ]
    if context.expected_outcomes:
        numbered = "\n".join(
            f"{index}. {outcome}" for index, outcome in enumerate(context.expected_outcomes, start=1)
        )
        sections.append(
            "EXPECTED OUTCOMES (verify each):\n"
            f"{numbered}\n\n"
            "For each outcome, check if the patch satisfies it."
        )
    if context.change_document is not None:
        doc = context.change_document
        sections.append(
            "WORKER'S CHANGE DOCUMENT (OpenSpec):\n"
            f"Title: {doc.title}\n"
            f"Status: {doc.status}\n"
            f"Files: {', '.join(doc.files) if doc.files else 'Not listed'}\n"
            f"Description: {doc.description or 'Not provided'}\n\n"
            "Compare the patch against this change document."
        )
    elif context.changes_summary:
        sections.append(f"WORKER'S PULL REQUEST SUMMARY:\n{context.changes_summary}")
    if context.previous is not None:
        sections.append(
            f"PREVIOUS REVIEW (Round {context.previous.round}):\n"
            f"Issues: {context.previous.issues}\n"
            f'Feedback: "{context.previous.feedback}"\n\n'
            "Check if these issues have been addressed."
        )
    sections.append(f"PATCH:\n```diff\n{context.patch}\n```")

    checks = [
        "1. Logical errors and bugs",
        "2. Security issues",
        "3. Adherence to the task requirements",
    ]
    if context.expected_outcomes:
        checks.append("4. Whether each expected outcome is satisfied")
    if context.change_document is not None:
        checks.append("5. Consistency with the worker's change document")
    sections.append("Review this patch for:\n" + "\n".join(checks))

    sections.append(
        "IGNORE formatting nitpicks. Focus on correctness.\n\n"
        "Return your review as a valid JSON object with this shape:\n"
        "{\n"
        '  "approved": boolean,\n'
        '  "issues": number,\n'
        '  "feedback": "string (concise actionable feedback or \'Looks good\' if approved)",\n'
        '  "outcomes": [{"outcome": "string", "satisfied": boolean}]\n'
        "}\n\n"
        "Do NOT wrap the JSON in markdown code blocks. Return ONLY the JSON string."
    )
    return "\n\n".join(sections)


def parse_review_response(text: str) -> ReviewResult:
    """Parse a model reply into a verdict; anything unusable counts as rejected."""

    payload = extract_json(text, expect=dict)
    if payload is None or "approved" not in payload:
        logger.warning("Reviewer reply was not valid JSON", extra={"reply": text[:500]})
        return ReviewResult(approved=False, issues=1, feedback=INVALID_JSON_FEEDBACK)
    return coerce_review_result(payload)


def coerce_review_result(payload: Any) -> ReviewResult:
    if isinstance(payload, ReviewResult):
        return payload
    if not isinstance(payload, dict):
        return ReviewResult(approved=False, issues=1, feedback=INVALID_JSON_FEEDBACK)

    try:
        issues = max(int(payload.get("issues") or 0), 0)
    except (TypeError, ValueError):
        issues = 1
    outcomes = payload.get("outcomes", payload.get("outcome_results"))
    outcome_results = None
    if isinstance(outcomes, list):
        outcome_results = [
            {"outcome": str(item.get("outcome", "")), "satisfied": bool(item.get("satisfied"))}
            for item in outcomes
            if isinstance(item, dict)
        ] or None
    try:
        return ReviewResult(
            approved=bool(payload.get("approved")),
            issues=issues,
            feedback=str(payload.get("feedback") or "No feedback provided."),
            outcome_results=outcome_results,
        )
    except ValidationError:
        return ReviewResult(approved=False, issues=1, feedback=INVALID_JSON_FEEDBACK)


class CodexReviewCapability:
    """Review capability that asks the Codex CLI for a verdict."""

    def __init__(self, runner: CodexRunner) -> None:
        self._runner = runner

    async def score(self, context: ReviewContext) -> ReviewResult:
        result = await self._runner.run_prompt(build_review_prompt(context))
        if not result.ok:
            raise ReviewError(
                f"Codex review exited with {result.returncode}: {result.stderr.strip()[:300]}"
            )
        return parse_review_response(result.stdout)


class UnavailableReviewCapability:
    """Stand-in used when the Codex CLI is missing; every round errors without scoring."""

    def __init__(self, reason: str) -> None:
        self.reason = reason

    async def score(self, context: ReviewContext) -> ReviewResult:
        raise ReviewerUnavailableError(f"Review backend unavailable: {self.reason}")


@dataclass(slots=True)
class ReviewRoundOutcome:
    session_id: str
    outcome: str
    round: int | None = None
    result: ReviewResult | None = None
    error: str | None = None


class ReviewOrchestrator:
    """Drive one review round per call for a completed, auto-reviewed session.

    The round is guarded by the session's persisted ``in_flight`` flag so a
    later poll tick cannot start a second round for the same session. Any
    failure clears the flag and records ``REVIEW_ERROR`` without touching the
    rounds already committed.
    """

    def __init__(
        self,
        store: SessionStore,
        provider: RemoteWorkerProvider,
        capability: ReviewCapability,
        notifier: NotificationSink,
        *,
        github: GitHubClient | None = None,
        patch_budget: int = PATCH_BUDGET,
        clock: Callable[[], str] | None = None,
    ) -> None:
        self._store = store
        self._provider = provider
        self._capability = capability
        self._notifier = notifier
        self._github = github
        self._patch_budget = patch_budget
        self._clock = clock or utc_now

    async def run_round(self, session_id: str) -> ReviewRoundOutcome:
        session = self._store.get(session_id)
        if session is None:
            return ReviewRoundOutcome(session_id, "missing")
        if not state_machine.needs_review(session):
            return ReviewRoundOutcome(session_id, "skipped")

        if session.review_round >= session.max_review_rounds:
            self._store.update(session_id, state_machine.exhausted_updates(session))
            self._notify(
                session_id,
                state_machine.Notification(
                    "Worker Failed Review",
                    "Max review rounds reached. Please check manually.",
                    "error",
                ),
            )
            return ReviewRoundOutcome(session_id, "exhausted", round=session.review_round)

        self._store.update(session_id, in_flight=True)
        logger.info(
            "Starting review round",
            extra={"session_id": session_id, "round": session.review_round + 1},
        )
        try:
            return await self._review(session)
        except Exception as exc:
            logger.exception("Review round failed", extra={"session_id": session_id})
            self._store.update(
                session_id,
                in_flight=False,
                error=SessionError(code=REVIEW_ERROR, message=str(exc), timestamp=self._clock()),
            )
            self._notify(
                session_id,
                state_machine.Notification(
                    "Worker Review Error", f"Review could not run: {exc}", "warning"
                ),
            )
            return ReviewRoundOutcome(session_id, "error", error=str(exc))

    async def _review(self, session: TrackedSession) -> ReviewRoundOutcome:
        artifacts = await self._provider.get_artifacts(session.remote_session_id)
        if artifacts.patch is None or not artifacts.patch.content.strip():
            raise NoPatchContentError("No patch content found to review")
        patch = artifacts.patch.content

        change_document = await self._fetch_change_document(session, artifacts.pr_url)
        previous = None
        if session.review_round > 0 and session.last_review_result is not None:
            previous = PreviousReview(
                round=session.review_round,
                issues=session.last_review_result.issues,
                feedback=session.last_review_result.feedback,
            )
        context = ReviewContext(
            session_id=session.id,
            prompt=session.prompt,
            patch=truncate_patch(patch, self._patch_budget),
            expected_outcomes=list(session.expected_outcomes or []),
            previous=previous,
            change_document=change_document,
            changes_summary=artifacts.changes_summary,
        )
        result = await self._score(context)
        logger.info(
            "Review verdict",
            extra={"session_id": session.id, "approved": result.approved, "issues": result.issues},
        )

        new_round = session.review_round + 1
        entry = ReviewHistoryEntry(
            round=new_round,
            timestamp=self._clock(),
            approved=result.approved,
            issues=result.issues,
            feedback=result.feedback,
            outcome_results=result.outcome_results,
        )
        history = state_machine.compact_history(session.review_history, entry)
        transition = state_machine.review_transition(session, result, history, new_round)

        if transition.send_feedback:
            await self._provider.send_feedback(session.remote_session_id, result.feedback)

        updates = dict(transition.updates)
        updates["last_patch_hash"] = hashlib.sha256(patch.encode("utf-8")).hexdigest()
        if artifacts.pr_url:
            updates["pr_url"] = artifacts.pr_url
        self._store.update(session.id, updates)
        self._notify(session.id, transition.notification)
        return ReviewRoundOutcome(session.id, transition.outcome, round=new_round, result=result)

    async def _score(self, context: ReviewContext) -> ReviewResult:
        try:
            raw = await self._capability.score(context)
        except ReviewerUnavailableError:
            raise
        except (ReviewError, CodexRunnerError) as exc:
            logger.error("Review capability failed", extra={"session_id": context.session_id, "error": str(exc)})
            return ReviewResult(approved=False, issues=1, feedback=INTERNAL_ERROR_FEEDBACK)
        except Exception:
            logger.exception("Review capability raised", extra={"session_id": context.session_id})
            return ReviewResult(approved=False, issues=1, feedback=INTERNAL_ERROR_FEEDBACK)
        return coerce_review_result(raw)

    async def _fetch_change_document(
        self, session: TrackedSession, pr_url: str | None
    ) -> OpenSpecChange | None:
        ref = parse_pr_url(pr_url or session.pr_url or "")
        if self._github is None or ref is None:
            return None
        try:
            return await fetch_openspec_from_pr(self._github, ref)
        except Exception as exc:
            logger.info(
                "Change document unavailable",
                extra={"session_id": session.id, "error": str(exc)},
            )
            return None

    def _notify(self, session_id: str, notification: state_machine.Notification) -> None:
        try:
            self._notifier.notify(
                notification.title,
                notification.message,
                notification.severity,
                session_id=session_id,
            )
        except Exception:
            logger.exception("Notification sink failed", extra={"session_id": session_id})


__all__ = [
    "CodexReviewCapability",
    "INTERNAL_ERROR_FEEDBACK",
    "INVALID_JSON_FEEDBACK",
    "NoPatchContentError",
    "PATCH_BUDGET",
    "PreviousReview",
    "REVIEW_ERROR",
    "ReviewCapability",
    "ReviewContext",
    "ReviewError",
    "ReviewOrchestrator",
    "ReviewRoundOutcome",
    "ReviewerUnavailableError",
    "TRUNCATION_MARKER",
    "UnavailableReviewCapability",
    "build_review_prompt",
    "coerce_review_result",
    "parse_review_response",
    "truncate_patch",
]
