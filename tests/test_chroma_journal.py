from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest

from cloud_workers_mcp.notifications import CompositeNotifier, JournalNotifier, LoggingNotifier
from cloud_workers_mcp.storage import ChromaJournal, ChromaUnavailableError


@dataclass
class _Record:
    document: str
    metadata: dict[str, Any]
    id: str


class StubCollection:
    def __init__(self) -> None:
        self.records: list[_Record] = []

    def add(self, *, documents, metadatas, ids) -> None:  # type: ignore[override]
        for document, metadata, record_id in zip(documents, metadatas, ids):
            self.records.append(_Record(document=document, metadata=dict(metadata), id=record_id))

    def get(self, *, ids=None, where=None, limit=None):  # type: ignore[override]
        filtered = self.records
        if where:
            for key, value in where.items():
                filtered = [record for record in filtered if record.metadata.get(key) == value]
        if limit is not None:
            filtered = filtered[:limit]
        return {
            "ids": [record.id for record in filtered],
            "documents": [record.document for record in filtered],
            "metadatas": [record.metadata for record in filtered],
        }


class StubClient:
    def __init__(self) -> None:
        self.collections = defaultdict(StubCollection)

    def get_or_create_collection(self, name: str) -> StubCollection:
        return self.collections[name]


def _ticking_clock():
    start = datetime(2025, 1, 1, tzinfo=timezone.utc)
    state = {"n": 0}

    def clock() -> datetime:
        state["n"] += 1
        return start + timedelta(seconds=state["n"])

    return clock


def _journal(tmp_path: Path) -> ChromaJournal:
    return ChromaJournal(tmp_path, client_factory=StubClient, clock=_ticking_clock())


def test_record_and_fetch_events(tmp_path: Path) -> None:
    journal = _journal(tmp_path)

    event = journal.record_event(
        session_id="s1",
        event_type="notification",
        body={"title": "Worker Approved"},
        metadata={"severity": "success", "tags": ["a", "b"], "skip": None},
    )
    journal.record_event(session_id="s2", event_type="notification", body="other")

    events = journal.fetch_session_events("s1")

    assert [item.id for item in events] == [event.id]
    assert events[0].metadata["tags"] == '["a", "b"]'
    assert "skip" not in events[0].metadata
    assert events[0].metadata["sequence"] == 1


def test_fetch_session_events_limit_returns_latest(tmp_path: Path) -> None:
    journal = _journal(tmp_path)
    for index in range(4):
        journal.record_event(session_id="s1", event_type="notification", body=f"event {index}")

    events = journal.fetch_session_events("s1", limit=2)

    assert [item.document for item in events] == ["event 2", "event 3"]


def test_search_events_matches_text(tmp_path: Path) -> None:
    journal = _journal(tmp_path)
    journal.record_event(session_id="s1", event_type="notification", body="Merged PR #7")
    journal.record_event(session_id="s1", event_type="user_feedback", body="add a test")

    matches = journal.search_events("merged", filters={"session_id": "s1"})

    assert [item.event_type for item in matches] == ["notification"]


def test_unavailable_client_raises(tmp_path: Path) -> None:
    def broken_factory():
        raise OSError("disk full")

    journal = ChromaJournal(tmp_path, client_factory=broken_factory)

    with pytest.raises(ChromaUnavailableError):
        journal.ping()


def test_journal_notifier_records_notification(tmp_path: Path) -> None:
    journal = _journal(tmp_path)
    notifier = CompositeNotifier([LoggingNotifier(), JournalNotifier(journal)])

    notifier.notify("Worker Approved", "AI review passed.", "success", session_id="s1")

    events = journal.fetch_session_events("s1")
    assert len(events) == 1
    assert events[0].event_type == "notification"
    assert events[0].metadata["severity"] == "success"


def test_composite_notifier_survives_failing_sink(caplog: pytest.LogCaptureFixture) -> None:
    delivered: list[str] = []

    class Broken:
        def notify(self, *args, **kwargs) -> None:
            raise RuntimeError("boom")

    class Recorder:
        def notify(self, title, message, severity="info", *, session_id=None) -> None:
            delivered.append(title)

    CompositeNotifier([Broken(), Recorder()]).notify("Title", "message", "warning")

    assert delivered == ["Title"]
    assert "Notification sink failed" in caplog.text


def test_journal_notifier_swallows_journal_errors(tmp_path: Path) -> None:
    def broken_factory():
        raise OSError("disk full")

    notifier = JournalNotifier(ChromaJournal(tmp_path, client_factory=broken_factory))

    notifier.notify("Title", "message", "error", session_id="s1")
