"""Periodic polling of tracked sessions."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable

from ..providers.base import NotificationSink, RemoteWorkerProvider
from ..storage.models import SessionError, TrackedSession, utc_now
from ..storage.sessions import SessionStore
from . import state_machine
from .reviewer import REVIEW_ERROR, ReviewOrchestrator

logger = logging.getLogger(__name__)

POLL_ERROR = "POLL_ERROR"
DEFAULT_INTERVAL_MS = 30_000


class PollError(RuntimeError):
    """Raised when the status of a single session cannot be fetched."""

    def __init__(self, session_id: str, message: str) -> None:
        super().__init__(message)
        self.session_id = session_id


@dataclass(slots=True)
class PollReport:
    checked: int = 0
    changed: list[str] = field(default_factory=list)
    reviewed: list[str] = field(default_factory=list)
    settled: list[str] = field(default_factory=list)
    errors: list[PollError] = field(default_factory=list)


class CloudWorkerLoop:
    """Poll pending sessions on a fixed interval and trigger reviews.

    Ticks never overlap: ``poll`` returns ``None`` immediately while another
    tick is running. ``stop`` only prevents future ticks; a tick already in
    progress finishes normally.
    """

    def __init__(
        self,
        store: SessionStore,
        provider: RemoteWorkerProvider,
        orchestrator: ReviewOrchestrator,
        notifier: NotificationSink,
        *,
        interval_ms: int = DEFAULT_INTERVAL_MS,
        clock: Callable[[], str] | None = None,
    ) -> None:
        self._store = store
        self._provider = provider
        self._orchestrator = orchestrator
        self._notifier = notifier
        self.interval_ms = interval_ms
        self._clock = clock or utc_now
        self._task: asyncio.Task | None = None
        self._stopping: asyncio.Event | None = None
        self.is_polling = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Schedule the loop on the running event loop; the first tick is immediate.

        Review guards still set from a previous process are cleared first.
        """

        if self.running:
            return
        self._store.reset_in_flight()
        self._stopping = asyncio.Event()
        self._task = asyncio.get_running_loop().create_task(self._run_loop())
        logger.info("Cloud worker loop started", extra={"interval_ms": self.interval_ms})

    def stop(self) -> None:
        if self._stopping is None or self._stopping.is_set():
            return
        self._stopping.set()
        logger.info("Cloud worker loop stopping")

    async def join(self) -> None:
        if self._task is not None:
            await self._task

    async def _run_loop(self) -> None:
        assert self._stopping is not None
        while not self._stopping.is_set():
            try:
                await self.poll()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Error in cloud worker tick")

            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval_ms / 1000)
            except asyncio.TimeoutError:
                continue
        logger.info("Cloud worker loop stopped")

    async def poll(self) -> PollReport | None:
        """Run one tick over the pending sessions."""

        if self.is_polling:
            logger.debug("Poll already running, skipping tick")
            return None
        self.is_polling = True
        try:
            report = PollReport()
            for session in self._store.pending():
                report.checked += 1
                try:
                    await self._process(session, report)
                except Exception as exc:
                    logger.exception(
                        "Failed to process session", extra={"session_id": session.id}
                    )
                    self._record_error(session.id, POLL_ERROR, exc)
                    report.errors.append(PollError(session.id, str(exc)))
            self._store.mark_polled()
            if report.changed or report.errors:
                logger.info(
                    "Poll tick finished",
                    extra={
                        "checked": report.checked,
                        "changed": len(report.changed),
                        "reviewed": len(report.reviewed),
                        "errors": len(report.errors),
                    },
                )
            return report
        finally:
            self.is_polling = False

    async def _process(self, session: TrackedSession, report: PollReport) -> None:
        if state_machine.is_settled(session):
            self._store.update(session.id, watching=False)
            report.settled.append(session.id)
            return

        try:
            remote = await self._provider.get_session(session.remote_session_id)
        except Exception as exc:
            logger.warning(
                "Failed to poll session",
                extra={"session_id": session.id, "error": str(exc)},
            )
            self._record_error(session.id, POLL_ERROR, exc)
            report.errors.append(PollError(session.id, str(exc)))
            return

        if session.error is not None and session.error.code == POLL_ERROR:
            session = self._store.update(session.id, error=None) or session

        change = state_machine.observe_remote(session, remote, now=self._clock())
        if change is not None:
            logger.info(
                "Session status changed",
                extra={"session_id": session.id, "from": change.previous, "to": change.current},
            )
            session = self._store.update(session.id, change.updates) or session
            report.changed.append(session.id)
            self._notify(session.id, change.notification)

        if state_machine.needs_review(session):
            try:
                outcome = await self._orchestrator.run_round(session.id)
            except Exception as exc:
                logger.exception("Review round aborted", extra={"session_id": session.id})
                self._record_error(session.id, REVIEW_ERROR, exc, in_flight=False)
                report.errors.append(PollError(session.id, str(exc)))
                return
            if outcome.outcome not in {"missing", "skipped"}:
                report.reviewed.append(session.id)

    def _record_error(self, session_id: str, code: str, exc: Exception, **fields) -> None:
        try:
            self._store.update(
                session_id,
                error=SessionError(code=code, message=str(exc), timestamp=self._clock()),
                **fields,
            )
        except Exception:
            logger.exception(
                "Failed to record session error", extra={"session_id": session_id, "code": code}
            )

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


__all__ = ["CloudWorkerLoop", "DEFAULT_INTERVAL_MS", "POLL_ERROR", "PollError", "PollReport"]
