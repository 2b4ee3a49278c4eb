"""
In-memory progress storage for notification send sessions.

Observers poll by session id. Entries are dropped once they have not been
updated for `ttl_seconds`.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, List, Optional

from .models import IDLE_PROGRESS, SendProgress, SessionStatus


@dataclass
class _Entry:
    progress: SendProgress
    touched_at: float


@dataclass
class ProgressStore:
    ttl_seconds: float = 300
    clock: Callable[[], float] = time.monotonic
    _entries: Dict[str, _Entry] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def start(self, session_id: str, total: int, estimated_seconds: float) -> None:
        progress = SendProgress(
            total=total,
            sent=0,
            failed=0,
            current_batch=[],
            estimated_seconds_remaining=estimated_seconds,
            status=SessionStatus.SENDING,
        )
        with self._lock:
            self._purge()
            self._entries[session_id] = _Entry(progress, self.clock())

    def update(
        self,
        session_id: str,
        *,
        sent: Optional[int] = None,
        failed: Optional[int] = None,
        current_batch: Optional[List[str]] = None,
        estimated_seconds_remaining: Optional[float] = None,
        status: Optional[SessionStatus] = None,
    ) -> None:
        with self._lock:
            entry = self._entries.get(session_id)
            if entry is None:
                return
            changes = {
                "sent": sent,
                "failed": failed,
                "current_batch": current_batch,
                "estimated_seconds_remaining": estimated_seconds_remaining,
                "status": status,
            }
            progress = replace(entry.progress, **{k: v for k, v in changes.items() if v is not None})
            self._entries[session_id] = _Entry(progress, self.clock())

    def get(self, session_id: str) -> SendProgress:
        with self._lock:
            self._purge()
            entry = self._entries.get(session_id)
            return entry.progress if entry else IDLE_PROGRESS

    def tracks(self, session_id: str) -> bool:
        with self._lock:
            self._purge()
            return session_id in self._entries

    def _purge(self) -> None:
        now = self.clock()
        stale = [key for key, entry in self._entries.items() if now - entry.touched_at > self.ttl_seconds]
        for key in stale:
            del self._entries[key]
