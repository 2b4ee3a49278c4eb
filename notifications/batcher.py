"""
Purpose: Rate-limited, volume-aware delivery of outbound notifications.
What it does:

- Picks a processing mode from the number of notifications:
    instant  (<= instant_threshold)  one pass, no delay
    small / medium                   rate-limited batches
    large                            always queued on a background worker
- background=True queues any session on the workers; the mode then only sets
  the pacing. The engine publishes this way so no state change waits on a send.
- Records per-recipient failures without aborting the batch
- Publishes progress per session id for polling observers

Rule: The batcher never touches dispatch state. By the time it is called the
offer transitions it reports on have already committed.
"""

from __future__ import annotations

import logging
import math
import threading
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence

from vacancies.policy import DispatchPolicy, SettingsProvider, default_dispatch_policy

from .models import (
    BatchReport,
    Notification,
    ProcessingMode,
    SendFailure,
    SendProgress,
    SessionStatus,
)
from .progress import ProgressStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BatchTicket:
    """
    Returned by submit(). `report` is None while a large session is still queued.
    """
    session_id: str
    mode: ProcessingMode
    total: int
    report: Optional[BatchReport] = None


class NotificationBatcher:
    def __init__(
        self,
        transport,
        settings_provider: Optional[SettingsProvider] = None,
        progress: Optional[ProgressStore] = None,
        executor: Optional[ThreadPoolExecutor] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.transport = transport
        self.settings_provider = settings_provider or default_dispatch_policy
        policy = self.settings_provider()
        self.progress_store = progress or ProgressStore(ttl_seconds=policy.progress_ttl_seconds)
        self.executor = executor or ThreadPoolExecutor(max_workers=2, thread_name_prefix="notify")
        self.sleep = sleep
        self._futures: Dict[str, Future] = {}
        self._futures_lock = threading.Lock()

    # --- sizing ---

    @staticmethod
    def processing_mode(count: int, policy: DispatchPolicy) -> ProcessingMode:
        if count <= policy.instant_threshold:
            return ProcessingMode.INSTANT
        if count <= policy.small_threshold:
            return ProcessingMode.SMALL
        if count <= policy.medium_threshold:
            return ProcessingMode.MEDIUM
        return ProcessingMode.LARGE

    @staticmethod
    def estimate_seconds(count: int, policy: DispatchPolicy) -> float:
        if count <= 0:
            return 0
        batches = math.ceil(count / policy.batch_size)
        return (batches - 1) * policy.batch_delay_seconds

    # --- public API ---

    def submit(self, notifications: Sequence[Notification], session_id: Optional[str] = None,
               background: bool = False) -> BatchTicket:
        """
        Send (or queue) the notifications. Never raises for a failed recipient.
        Queued sessions return at once with report=None; poll progress() or wait().
        """
        policy = self.settings_provider()
        items = list(notifications)
        session_id = session_id or uuid.uuid4().hex
        mode = self.processing_mode(len(items), policy)

        self.progress_store.start(session_id, len(items), self.estimate_seconds(len(items), policy))

        if background or mode == ProcessingMode.LARGE:
            logger.info("queueing %s notifications for background delivery (session %s)", len(items), session_id)
            future = self.executor.submit(self._run, session_id, mode, items, policy)
            with self._futures_lock:
                self._forget_expired()
                self._futures[session_id] = future
            return BatchTicket(session_id=session_id, mode=mode, total=len(items))

        report = self._run(session_id, mode, items, policy)
        return BatchTicket(session_id=session_id, mode=mode, total=len(items), report=report)

    def progress(self, session_id: str) -> SendProgress:
        return self.progress_store.get(session_id)

    def wait(self, session_id: str, timeout: Optional[float] = None) -> Optional[BatchReport]:
        """
        Block until a queued session finishes and release it. Returns None for
        unknown, inline or already released sessions.
        """
        with self._futures_lock:
            future = self._futures.get(session_id)
        if future is None:
            return None
        report = future.result(timeout=timeout)
        with self._futures_lock:
            self._futures.pop(session_id, None)
        return report

    def shutdown(self, wait: bool = True) -> None:
        self.executor.shutdown(wait=wait)

    def _forget_expired(self) -> None:
        # finished sessions nobody waited on live as long as their progress entry
        stale = [sid for sid, future in self._futures.items()
                 if future.done() and not self.progress_store.tracks(sid)]
        for sid in stale:
            del self._futures[sid]

    # --- delivery ---

    def _run(self, session_id: str, mode: ProcessingMode, items: List[Notification],
             policy: DispatchPolicy) -> BatchReport:
        report = BatchReport(session_id=session_id, mode=mode, total=len(items))
        # instant mode goes out in one pass
        batch_size = len(items) if mode == ProcessingMode.INSTANT else policy.batch_size

        try:
            for start in range(0, len(items), max(batch_size, 1)):
                batch = items[start:start + batch_size]
                for notification in batch:
                    self._deliver(notification, report)

                remaining = len(items) - (start + len(batch))
                self.progress_store.update(
                    session_id,
                    sent=report.sent,
                    failed=report.failed,
                    current_batch=[n.recipient.name for n in batch],
                    estimated_seconds_remaining=self.estimate_seconds(remaining, policy) + (
                        policy.batch_delay_seconds if remaining else 0
                    ),
                )

                if remaining > 0 and mode != ProcessingMode.INSTANT:
                    self.sleep(policy.batch_delay_seconds)
        except Exception:
            logger.exception("send session %s aborted", session_id)
            report.status = SessionStatus.ERROR
            self.progress_store.update(session_id, status=SessionStatus.ERROR)
            raise

        report.status = SessionStatus.COMPLETED
        self.progress_store.update(session_id, status=SessionStatus.COMPLETED, estimated_seconds_remaining=0)

        if report.failures:
            logger.warning(
                "session %s: %s of %s notifications failed", session_id, report.failed, report.total
            )
        return report

    def _deliver(self, notification: Notification, report: BatchReport) -> None:
        recipient = notification.recipient
        try:
            delivered = self.transport.send(
                recipient,
                recipient.channel,
                notification.template_kind,
                notification.variables,
            )
            error = None if delivered else "transport reported failure"
        except Exception as exc:  # one recipient never aborts the batch
            delivered = False
            error = str(exc) or exc.__class__.__name__

        if delivered:
            report.sent += 1
            return

        logger.warning(
            "NotificationSendFailure: %s to %s (%s)", notification.template_kind.value, recipient.address, error
        )
        report.failures.append(SendFailure(recipient=recipient, template_kind=notification.template_kind, error=error))
