"""Cloud Workers MCP diagnostics CLI."""

from __future__ import annotations

import argparse
import json
from pathlib import Path

from cloud_workers_mcp.config import CloudWorkersSettings
from cloud_workers_mcp.storage import (
    ChromaJournal,
    ChromaUnavailableError,
    SessionStateLoadError,
    SessionStore,
)


def load_sessions(settings: CloudWorkersSettings) -> SessionStore:
    store = SessionStore(Path(settings.workspace))
    if not store.path.exists():
        print(f"No state file at {store.path}")
        raise SystemExit(1)
    try:
        store.load()
    except SessionStateLoadError as exc:
        print(f"State file unreadable: {exc}")
        raise SystemExit(1)
    return store


def load_journal(settings: CloudWorkersSettings) -> ChromaJournal:
    try:
        journal = ChromaJournal(settings.chroma_persist_path)
        journal.ping()
    except ChromaUnavailableError as exc:
        print(f"Chroma unavailable: {exc}")
        raise SystemExit(1)
    return journal


def cmd_sessions(args: argparse.Namespace) -> None:
    store = load_sessions(CloudWorkersSettings())
    sessions = store.pending() if args.pending else store.list()
    if args.status:
        sessions = [session for session in sessions if session.status == args.status]
    if args.json:
        print(json.dumps([session.model_dump(mode="json") for session in sessions], indent=2))
    else:
        for session in sessions:
            flags = [name for name in ("watching", "in_flight", "merged") if getattr(session, name)]
            print(
                f"{session.id} [{session.status}] round {session.review_round}/"
                f"{session.max_review_rounds} {session.status_message or ''} ({', '.join(flags)})"
            )


def cmd_show(args: argparse.Namespace) -> None:
    store = load_sessions(CloudWorkersSettings())
    session = store.get(args.session_id)
    if session is None:
        print(f"Session {args.session_id} not found")
        raise SystemExit(1)
    print(json.dumps(session.model_dump(mode="json"), indent=2))


def cmd_metrics(args: argparse.Namespace) -> None:
    store = load_sessions(CloudWorkersSettings())
    sessions = store.list()

    status_counts: dict[str, int] = {}
    error_counts: dict[str, int] = {}
    for session in sessions:
        status_counts[session.status] = status_counts.get(session.status, 0) + 1
        if session.error is not None:
            error_counts[session.error.code] = error_counts.get(session.error.code, 0) + 1

    metrics = {
        "sessions_total": len(sessions),
        "status_counts": status_counts,
        "pending": len(store.pending()),
        "in_flight": sum(1 for session in sessions if session.in_flight),
        "merged": sum(1 for session in sessions if session.merged),
        "review_rounds_total": sum(session.review_round for session in sessions),
        "error_counts": error_counts,
        "last_poll_at": store.last_poll_at,
    }
    print(json.dumps(metrics, indent=2))


def cmd_timeline(args: argparse.Namespace) -> None:
    journal = load_journal(CloudWorkersSettings())
    try:
        events = journal.fetch_session_events(args.session_id, limit=args.limit)
    except ChromaUnavailableError as exc:
        print(f"Chroma unavailable: {exc}")
        raise SystemExit(1)
    payload = [
        {
            "event_id": event.id,
            "event_type": event.event_type,
            "timestamp": event.timestamp.isoformat(),
            "document": event.document,
        }
        for event in events
    ]
    print(json.dumps(payload, indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Cloud Workers MCP diagnostics")
    sub = parser.add_subparsers(dest="cmd")

    p_sessions = sub.add_parser("sessions", help="List tracked sessions from the state file")
    p_sessions.add_argument("--status")
    p_sessions.add_argument("--pending", action="store_true", help="Only sessions still polled")
    p_sessions.add_argument("--json", action="store_true", help="Output JSON")
    p_sessions.set_defaults(func=cmd_sessions)

    p_show = sub.add_parser("show", help="Dump one tracked session")
    p_show.add_argument("session_id")
    p_show.set_defaults(func=cmd_show)

    p_metrics = sub.add_parser("metrics", help="Show session counts by status and error")
    p_metrics.set_defaults(func=cmd_metrics)

    p_timeline = sub.add_parser("timeline", help="List journaled events for a session")
    p_timeline.add_argument("session_id")
    p_timeline.add_argument(
        "--limit",
        type=int,
        default=None,
        help="If provided, show only the latest N events",
    )
    p_timeline.set_defaults(func=cmd_timeline)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
