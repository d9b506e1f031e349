"""Tool registration for Cloud Workers MCP."""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal
from uuid import uuid4

from fastmcp import Context, FastMCP

from ..config import CloudWorkersConfig
from ..core import state_machine
from ..core.openspec import OPENSPEC_DIR, parse_pr_url
from ..core.outcomes import OutcomeExtractor
from ..core.task_analyzer import analyze_task, suggestion_message
from ..providers.base import CreateSessionParams, NotificationSink, RemoteWorkerProvider
from ..providers.github import GitHubClient
from ..storage import ChromaJournal, SessionStore, TrackedSession
from ..storage.models import SESSION_STATUSES, utc_now

DEFAULT_BRANCH = "main"


@dataclass(slots=True)
class ToolHandles:
    start: Any
    status: Any
    list_sessions: Any
    feedback: Any
    merge: Any
    timeline: Any
    analyze: Any


def _task_slug(title: str | None) -> str:
    return re.sub(r"[^a-z0-9]+", "-", (title or "task").lower())[:30]


def build_enhanced_prompt(prompt: str, outcomes: list[str], title: str | None = None) -> str:
    """Append expected outcomes and change-tracking instructions to the task prompt."""

    sections = [prompt.rstrip()]
    if outcomes:
        sections.append("EXPECTED OUTCOMES:\n" + "\n".join(f"- {outcome}" for outcome in outcomes))
    sections.append(
        "CHANGE TRACKING:\n"
        f"Please create `{OPENSPEC_DIR}/{_task_slug(title)}.md` with:\n"
        "1. Your implementation plan (checklist format)\n"
        "2. Progress updates as you complete items\n"
        "3. Final summary before creating PR\n\n"
        "This helps us review your work efficiently."
    )
    return "\n\n".join(sections)


async def _git(workspace: Path, *args: str) -> str | None:
    try:
        process = await asyncio.create_subprocess_exec(
            "git",
            *args,
            cwd=str(workspace),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError:
        return None
    stdout, _ = await process.communicate()
    if process.returncode != 0:
        return None
    value = stdout.decode("utf-8", errors="replace").strip()
    return value or None


def session_summary(session: TrackedSession) -> dict[str, Any]:
    return {
        "id": session.id,
        "provider": session.provider,
        "remote_session_id": session.remote_session_id,
        "title": session.title,
        "repo": session.repo,
        "branch": session.branch,
        "status": session.status,
        "status_message": session.status_message,
        "review_round": session.review_round,
        "max_review_rounds": session.max_review_rounds,
        "watching": session.watching,
        "in_flight": session.in_flight,
        "merged": session.merged,
        "console_url": session.console_url,
        "pr_url": session.pr_url,
        "updated_at": session.updated_at,
    }


def session_detail(session: TrackedSession) -> dict[str, Any]:
    detail = session_summary(session)
    detail.update(
        {
            "prompt": session.prompt,
            "auto_review": session.auto_review,
            "expected_outcomes": session.expected_outcomes or [],
            "last_review": (
                session.last_review_result.model_dump()
                if session.last_review_result is not None
                else None
            ),
            "review_history": [entry.model_dump() for entry in session.review_history],
            "error": session.error.model_dump() if session.error is not None else None,
            "merge_commit_sha": session.merge_commit_sha,
            "created_at": session.created_at,
            "completed_at": session.completed_at,
        }
    )
    return detail


def register_tools(
    server: FastMCP,
    *,
    store: SessionStore,
    provider: RemoteWorkerProvider,
    config: CloudWorkersConfig,
    notifier: NotificationSink,
    outcome_extractor: OutcomeExtractor,
    github: GitHubClient | None = None,
    journal: ChromaJournal | None = None,
    workspace: Path | None = None,
) -> ToolHandles:
    """Register the cloud worker tools on the server."""

    workspace_dir = Path(workspace or Path.cwd())

    def _require_session(session_id: str) -> TrackedSession:
        session = store.get(session_id)
        if session is None:
            raise ValueError(f"Session {session_id} not found.")
        return session

    def _journal(session_id: str, event_type: str, body: dict[str, Any]) -> None:
        if journal is None:
            return
        try:
            journal.record_event(session_id=session_id, event_type=event_type, body=body)
        except Exception as exc:
            logger.warning(
                "Failed to journal tool event",
                extra={"session_id": session_id, "event_type": event_type, "error": str(exc)},
            )

    async def _start(
        prompt: str,
        title: str | None = None,
        branch: str | None = None,
        repo: str | None = None,
        auto_review: bool | None = None,
        require_plan: bool = False,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Start a remote worker session for the task and begin tracking it."""

        if not prompt.strip():
            raise ValueError("prompt must not be empty")

        repo = repo or await _git(workspace_dir, "config", "--get", "remote.origin.url")
        if not repo:
            raise ValueError("Could not determine repository URL. Please provide 'repo' argument.")
        branch = branch or await _git(workspace_dir, "rev-parse", "--abbrev-ref", "HEAD") or DEFAULT_BRANCH

        outcomes = await outcome_extractor.extract(prompt)
        _emit_log(context, "debug", "Extracted expected outcomes", extra={"count": len(outcomes)})

        result = await provider.create_session(
            CreateSessionParams(
                prompt=build_enhanced_prompt(prompt, outcomes, title),
                repo=repo,
                branch=branch,
                title=title,
                require_plan_approval=require_plan,
                auto_create_pr=True,
            )
        )

        session = store.add(
            TrackedSession(
                id=str(uuid4()),
                provider=provider.name,
                remote_session_id=result.remote_session_id,
                console_url=result.console_url,
                repo=repo,
                branch=branch,
                prompt=prompt,
                title=title,
                status=result.status,
                auto_review=config.auto_review if auto_review is None else auto_review,
                max_review_rounds=config.max_review_rounds,
                expected_outcomes=outcomes,
            )
        )
        _journal(session.id, "session_started", {"remote_session_id": session.remote_session_id, "repo": repo})

        _emit_log(
            context,
            "info",
            "Started cloud worker session",
            extra={"session_id": session.id, "remote_session_id": session.remote_session_id},
        )
        return {
            **session_summary(session),
            "expected_outcomes": outcomes,
            "message": "Started cloud worker session. It will be polled and reviewed when complete.",
        }

    async def _status(
        session_id: str,
        refresh: bool = False,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Return the tracked state of a session, optionally re-reading the remote status."""

        session = _require_session(session_id)
        if refresh and not state_machine.is_terminal(session):
            remote = await provider.get_session(session.remote_session_id)
            change = state_machine.observe_remote(session, remote, now=utc_now())
            if change is not None:
                session = store.update(session.id, change.updates) or session
                notifier.notify(
                    change.notification.title,
                    change.notification.message,
                    change.notification.severity,
                    session_id=session.id,
                )
        _emit_log(context, "debug", "Session status", extra={"session_id": session_id, "refresh": refresh})
        return session_detail(session)

    def _list(
        status: str | None = None,
        pending_only: bool = False,
        context: Context | None = None,
    ) -> list[dict[str, Any]]:
        """List tracked sessions."""

        if status is not None and status not in SESSION_STATUSES:
            raise ValueError(f"Unknown status '{status}'")
        sessions = store.pending() if pending_only else store.list()
        if status is not None:
            sessions = [session for session in sessions if session.status == status]
        _emit_log(context, "debug", "Listing sessions", extra={"count": len(sessions)})
        return [session_summary(session) for session in sessions]

    async def _feedback(
        session_id: str,
        feedback: str,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Send feedback to the worker and resume watching the session."""

        if not feedback.strip():
            raise ValueError("feedback must not be empty")
        session = _require_session(session_id)
        updates = state_machine.manual_feedback_updates(session)

        await provider.send_feedback(session.remote_session_id, feedback)
        session = store.update(session.id, updates) or session
        _journal(session.id, "user_feedback", {"feedback": feedback})

        _emit_log(context, "info", "Feedback sent", extra={"session_id": session.id})
        return {
            **session_summary(session),
            "message": f"Feedback sent to session {session.id}. Worker will now iterate on the task.",
        }

    async def _merge(
        session_id: str,
        merge_method: Literal["merge", "squash", "rebase"] | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Merge the pull request of a completed session."""

        session = _require_session(session_id)
        if session.merged:
            raise ValueError(f"Session {session.id} is already merged.")
        if session.in_flight:
            raise state_machine.InvalidTransitionError(
                f"Session {session.id} has a review in flight; try again once it finishes."
            )
        if session.status != "completed":
            raise state_machine.InvalidTransitionError(
                f"Session is not completed (current status: {session.status}). Cannot merge yet."
            )
        if github is None:
            raise RuntimeError("GITHUB_TOKEN is not configured; cannot perform merge")

        pr_url = session.pr_url
        if not pr_url:
            artifacts = await provider.get_artifacts(session.remote_session_id)
            pr_url = artifacts.pr_url
        if not pr_url:
            raise ValueError("No pull request URL found for this session.")
        ref = parse_pr_url(pr_url)
        if ref is None:
            raise ValueError(f"Invalid pull request URL format: {pr_url}")

        method = merge_method or session.merge_method or "squash"
        sha = await github.merge_pull_request(ref.owner, ref.repo, ref.number, merge_method=method)
        updates = state_machine.merged_updates(session, sha)
        updates.update({"pr_url": pr_url, "merge_method": method})
        session = store.update(session.id, updates) or session
        notifier.notify(
            "Worker Merged",
            f"Merged PR #{ref.number} in {ref.owner}/{ref.repo}.",
            "success",
            session_id=session.id,
        )

        _emit_log(
            context,
            "info",
            "Merged pull request",
            extra={"session_id": session.id, "pr_url": pr_url, "merge_method": method},
        )
        return {
            **session_summary(session),
            "merge_commit_sha": sha,
            "message": f"Successfully merged PR #{ref.number} in {ref.owner}/{ref.repo}.",
        }

    def _timeline(
        session_id: str,
        limit: int | None = None,
        context: Context | None = None,
    ) -> list[dict[str, Any]]:
        """Return journaled events for a session, oldest first."""

        if journal is None:
            raise RuntimeError("Event journal is unavailable; enable persistence before using this tool")
        _require_session(session_id)
        events = journal.fetch_session_events(session_id, limit=limit)
        _emit_log(context, "debug", "Session timeline", extra={"session_id": session_id, "count": len(events)})
        return [
            {
                "id": event.id,
                "event_type": event.event_type,
                "timestamp": event.timestamp.isoformat(),
                "document": event.document,
                "metadata": event.metadata,
            }
            for event in events
        ]

    def _analyze(prompt: str, context: Context | None = None) -> dict[str, Any]:
        """Score a task prompt for offloading to a cloud worker."""

        analysis = analyze_task(prompt)
        _emit_log(
            context,
            "debug",
            "Analyzed task",
            extra={"complexity": analysis.complexity, "should_offload": analysis.should_offload},
        )
        return {
            "should_offload": analysis.should_offload,
            "complexity": analysis.complexity,
            "estimated_minutes": analysis.estimated_minutes,
            "reason": analysis.reason,
            "signals": analysis.signals,
            "suggestion": suggestion_message(prompt),
        }

    tool_start = server.tool(
        name="cloud_worker_start",
        description=(
            "Start a new cloud worker session (e.g. Jules) to perform a task asynchronously. "
            "Repository and branch default to the current git checkout."
        ),
        annotations={
            "safety": {
                "level": "caution",
                "notes": "The worker pushes a branch and opens a pull request on the repository",
            }
        },
    )(_start)

    tool_status = server.tool(
        name="cloud_worker_status",
        description="Show the tracked state of a cloud worker session; set refresh to re-read the remote status.",
    )(_status)

    tool_list = server.tool(
        name="cloud_worker_list",
        description="List tracked cloud worker sessions, optionally filtered by status or pending only.",
    )(_list)

    tool_feedback = server.tool(
        name="cloud_worker_feedback",
        description="Send feedback to a cloud worker session (e.g. to request changes or provide guidance).",
    )(_feedback)

    tool_merge = server.tool(
        name="cloud_worker_merge",
        description="Merge the pull request associated with a completed cloud worker session.",
        annotations={
            "safety": {
                "level": "caution",
                "notes": "Merges into the repository's base branch",
            }
        },
    )(_merge)

    tool_timeline = server.tool(
        name="cloud_worker_timeline",
        description="List journaled events (notifications, feedback, merges) for a session.",
    )(_timeline)

    tool_analyze = server.tool(
        name="cloud_worker_analyze",
        description="Estimate whether a task is large enough to offload to a cloud worker.",
    )(_analyze)

    return ToolHandles(
        start=tool_start,
        status=tool_status,
        list_sessions=tool_list,
        feedback=tool_feedback,
        merge=tool_merge,
        timeline=tool_timeline,
        analyze=tool_analyze,
    )


__all__ = ["ToolHandles", "build_enhanced_prompt", "register_tools"]

logger = logging.getLogger(__name__)


def _emit_log(
    context: Context | None,
    level: str,
    message: str,
    *,
    extra: dict[str, Any] | None = None,
) -> None:
    """Best-effort logging that prefers the MCP context logger when available."""

    payload = extra or {}

    if context is not None:
        ctx_logger = getattr(context, "logger", None)
        if ctx_logger is not None:
            log_method = getattr(ctx_logger, level, None)
            if callable(log_method):
                log_method(message, extra=payload)
                return

    fallback = getattr(logger, level, logger.info)
    fallback(message, extra=payload)
