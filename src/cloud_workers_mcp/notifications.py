"""Notification sinks for user-facing session events."""

from __future__ import annotations

import logging
from typing import Iterable

from .providers.base import NotificationSink, Severity
from .storage.chroma import ChromaJournal

logger = logging.getLogger(__name__)

_LEVELS = {
    "info": logging.INFO,
    "success": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class LoggingNotifier:
    """Write notifications to the ``cloud_workers_mcp.notifications`` logger."""

    def notify(
        self,
        title: str,
        message: str,
        severity: Severity = "info",
        *,
        session_id: str | None = None,
    ) -> None:
        logger.log(
            _LEVELS.get(severity, logging.INFO),
            "%s: %s",
            title,
            message,
            extra={"severity": severity, "session_id": session_id},
        )


class JournalNotifier:
    """Append notifications to the Chroma event journal."""

    event_type = "notification"

    def __init__(self, journal: ChromaJournal) -> None:
        self._journal = journal

    def notify(
        self,
        title: str,
        message: str,
        severity: Severity = "info",
        *,
        session_id: str | None = None,
    ) -> None:
        try:
            self._journal.record_event(
                session_id=session_id or "cloud-workers",
                event_type=self.event_type,
                body={"title": title, "message": message, "severity": severity},
                metadata={"title": title, "severity": severity},
            )
        except Exception as exc:
            logger.warning(
                "Failed to journal notification",
                extra={"session_id": session_id, "error": str(exc)},
            )


class CompositeNotifier:
    """Fan a notification out to several sinks; one failing sink does not stop the rest."""

    def __init__(self, sinks: Iterable[NotificationSink]) -> None:
        self._sinks = list(sinks)

    @property
    def sinks(self) -> list[NotificationSink]:
        return list(self._sinks)

    def notify(
        self,
        title: str,
        message: str,
        severity: Severity = "info",
        *,
        session_id: str | None = None,
    ) -> None:
        for sink in self._sinks:
            try:
                sink.notify(title, message, severity, session_id=session_id)
            except Exception as exc:
                logger.warning(
                    "Notification sink failed",
                    extra={"sink": type(sink).__name__, "error": str(exc)},
                )


__all__ = ["CompositeNotifier", "JournalNotifier", "LoggingNotifier"]
