"""FastMCP server bootstrap for Cloud Workers."""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from fastmcp import Context, FastMCP

from . import __version__
from .codex import CodexNotFoundError, CodexRunner
from .config import CloudWorkersSettings, get_settings, load_config
from .core import (
    CloudWorkerLoop,
    CodexReviewCapability,
    OutcomeExtractor,
    ReviewCapability,
    ReviewOrchestrator,
    UnavailableReviewCapability,
)
from .notifications import CompositeNotifier, JournalNotifier, LoggingNotifier
from .providers import GitHubClient, JulesProvider, RemoteWorkerProvider
from .storage import ChromaJournal, ChromaUnavailableError, SessionStore
from .tools import register_tools


def configure_logging(level: str) -> None:
    """Configure root logging for the Cloud Workers server."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def _run_sync(coro):
    """Execute an async coroutine on a dedicated event loop."""

    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def create_server(
    settings: Optional[CloudWorkersSettings] = None,
    *,
    provider: RemoteWorkerProvider | None = None,
    github: GitHubClient | None = None,
    codex_runner: CodexRunner | None = None,
    capability: ReviewCapability | None = None,
    journal: ChromaJournal | None = None,
) -> FastMCP:
    """Wire the store, providers, review loop and tools into a FastMCP server."""

    settings = settings or get_settings()
    workspace = Path(settings.workspace)
    config = load_config(workspace, settings)

    store = SessionStore(workspace)
    store.load()

    codex_metadata: dict[str, Any] = {"available": False, "version": None, "error": None}
    if codex_runner is None:
        try:
            codex_runner = CodexRunner(
                Path(settings.codex_path) if settings.codex_path else None,
                default_model=settings.codex_default_model,
                timeout=settings.codex_timeout_seconds,
                workdir=workspace,
            )
            codex_metadata["available"] = True
            version_result = _run_sync(codex_runner.version())
            if version_result.ok:
                codex_metadata["version"] = version_result.stdout.strip()
            else:
                codex_metadata["error"] = (
                    version_result.stderr.strip() or "Codex version command failed with exit code"
                )
        except CodexNotFoundError as exc:
            codex_metadata["error"] = str(exc)
            codex_runner = None
    else:
        codex_metadata["available"] = True

    if capability is None:
        capability = (
            CodexReviewCapability(codex_runner)
            if codex_runner is not None
            else UnavailableReviewCapability(codex_metadata["error"] or "Codex CLI not found")
        )

    journal_metadata: dict[str, Any] = {
        "available": False,
        "path": str(settings.chroma_persist_path),
        "collection": "cloud_workers_events",
        "error": None,
    }
    if journal is None:
        try:
            journal = ChromaJournal(settings.chroma_persist_path)
            journal.ping()
        except ChromaUnavailableError as exc:
            journal_metadata["error"] = str(exc)
            journal = None
    if journal is not None:
        journal_metadata["available"] = True
        journal_metadata["collection"] = journal.collection_name

    jules = config.providers.jules
    if provider is None:
        provider = JulesProvider.from_config(
            jules.api_key, base_url=jules.base_url, api_version=jules.api_version
        )
    provider_metadata = {
        "name": provider.name,
        "configured": bool(jules.api_key) or provider.name != "jules",
    }
    if github is None and config.providers.github.token:
        github = GitHubClient(config.providers.github.token)

    sinks: list[Any] = [LoggingNotifier()]
    if journal is not None:
        sinks.append(JournalNotifier(journal))
    notifier = CompositeNotifier(sinks)

    orchestrator = ReviewOrchestrator(store, provider, capability, notifier, github=github)
    loop = CloudWorkerLoop(
        store, provider, orchestrator, notifier, interval_ms=config.polling_interval_ms
    )

    @asynccontextmanager
    async def lifespan(app: FastMCP):
        loop.start()
        try:
            yield
        finally:
            loop.stop()
            await loop.join()

    server = FastMCP(
        name="Cloud Workers MCP",
        version=__version__,
        instructions=(
            "Cloud Workers offloads coding tasks to remote agents (Jules), polls them, "
            "reviews their patches with Codex and sends feedback until approved. Use the "
            "cloud_worker_* tools to start, inspect, steer and merge sessions."
        ),
        lifespan=lifespan,
    )

    handles = register_tools(
        server,
        store=store,
        provider=provider,
        config=config,
        notifier=notifier,
        outcome_extractor=OutcomeExtractor(codex_runner),
        github=github,
        journal=journal,
        workspace=workspace,
    )

    @server.resource(
        "resource://cloud-workers/status",
        name="cloud_workers_status",
        title="Cloud Workers Status",
        description="Provides the current runtime status for the Cloud Workers MCP server.",
        mime_type="application/json",
        tags={"status", "health"},
    )
    def status_resource(context: Context) -> str:
        """Return a JSON string summarizing tracked sessions and collaborators."""

        sessions = store.list()
        status_counts: dict[str, int] = {}
        for session in sessions:
            status_counts[session.status] = status_counts.get(session.status, 0) + 1

        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "server_version": __version__,
            "log_level": settings.log_level,
            "workspace": str(workspace),
            "state_file": str(store.path),
            "sessions": {
                "count": len(sessions),
                "status_counts": status_counts,
                "pending": [session.id for session in store.pending()],
                "in_flight": [session.id for session in sessions if session.in_flight],
                "last_poll_at": store.last_poll_at,
            },
            "loop": {
                "running": loop.running,
                "polling": loop.is_polling,
                "interval_ms": loop.interval_ms,
            },
            "config": {
                "default_provider": config.default_provider,
                "auto_review": config.auto_review,
                "max_review_rounds": config.max_review_rounds,
            },
            "provider": provider_metadata,
            "github": {"configured": github is not None},
            "codex": {
                "path": settings.codex_path,
                "default_model": settings.codex_default_model,
                **codex_metadata,
            },
            "journal": journal_metadata,
            "request_id": getattr(context, "request_id", None),
        }
        return json.dumps(payload)

    setattr(server, "session_store", store)
    setattr(server, "cloud_config", config)
    setattr(server, "worker_loop", loop)
    setattr(server, "review_orchestrator", orchestrator)
    setattr(server, "codex_runner", codex_runner)
    setattr(server, "codex_metadata", codex_metadata)
    setattr(server, "journal", journal)
    setattr(server, "journal_metadata", journal_metadata)
    setattr(server, "tool_handles", handles)
    return server


def main() -> None:
    """Entry point for running the Cloud Workers MCP server via CLI."""

    settings = get_settings()
    configure_logging(settings.log_level)

    server = create_server(settings)
    logging.getLogger(__name__).info(
        "Launching Cloud Workers MCP server",
        extra={
            "version": __version__,
            "log_level": settings.log_level,
            "workspace": str(settings.workspace),
            "codex_available": getattr(server, "codex_metadata", {}).get("available"),
            "journal_available": getattr(server, "journal_metadata", {}).get("available"),
        },
    )
    server.run()


if __name__ == "__main__":
    main()
