"""
Purpose: Periodic tick that expires overdue offers and sends one reminder per offer.
What it does:
- expiry: every pending offer with now >= expires_at goes to EXPIRED; the
  engine then advances the need (sequential: next candidate, parallel: top up,
  first_come: nothing)
- reminders: every pending offer whose elapsed time reached
  reminder_percentage of its need's response window, and that was never
  reminded, gets exactly one reminder carrying its live response link

Timeouts come from wall-clock comparisons on stored timestamps, so a restart
between ticks loses nothing.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from notifications.models import Notification, TemplateKind
from vacancies.models import Offer, VacancyNeed, utcnow
from vacancies.policy import DispatchPolicy, SettingsProvider

from .errors import InvalidTransition, StorageError
from .tokens import issue_token, live_token

logger = logging.getLogger(__name__)


@dataclass
class TickReport:
    started_at: datetime
    expired: List[int] = field(default_factory=list)
    reminded: List[int] = field(default_factory=list)
    issued: List[int] = field(default_factory=list)
    session_ids: List[str] = field(default_factory=list)

    def as_dict(self):
        return {
            "startedAt": self.started_at.isoformat(),
            "expired": len(self.expired),
            "reminded": len(self.reminded),
            "issued": len(self.issued),
            "sessions": list(self.session_ids),
        }


def reminder_due_at(offer: Offer, need: VacancyNeed, reminder_percentage: int) -> datetime:
    return offer.sent_at + need.response_window * (reminder_percentage / 100)


class ReminderScheduler:
    def __init__(self, store, engine, settings_provider: Optional[SettingsProvider] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self.engine = engine
        self.settings_provider = settings_provider or engine.settings_provider
        self.clock = clock or utcnow

    def run_tick(self, now: Optional[datetime] = None) -> TickReport:
        """
        One scheduler pass. Safe to run from several workers: every transition
        re-checks the offer under its need's lock.
        """
        policy: DispatchPolicy = self.settings_provider()
        policy.validate()
        now = now or self.clock()
        report = TickReport(started_at=now)

        for offer in self.store.pending_offers():
            if now < offer.expires_at:
                continue
            try:
                transition = self.engine.expire_offer(offer.id, now, policy)
            except InvalidTransition:
                # answered between the scan and the lock
                logger.debug("offer %s no longer pending, not expired", offer.id)
                continue
            report.expired.append(offer.id)
            if transition.dispatch is not None:
                report.issued.extend(o.id for o in transition.dispatch.issued)
            if transition.session_id:
                report.session_ids.append(transition.session_id)

        reminders: List[Notification] = []
        for offer in self.store.pending_offers():
            if offer.reminder_sent_at is not None:
                continue
            need = self.store.get_need(offer.need_id)
            if now < reminder_due_at(offer, need, policy.reminder_percentage):
                continue
            notification = self._claim_reminder(offer.id, now, policy)
            if notification is not None:
                reminders.append(notification)
                report.reminded.append(offer.id)

        session_id = self.engine.publish(reminders)
        if session_id:
            report.session_ids.append(session_id)

        logger.info(
            "tick %s: %s expired, %s reminded, %s new offers",
            now.isoformat(), len(report.expired), len(report.reminded), len(report.issued),
        )
        return report

    def _claim_reminder(self, offer_id: int, now: datetime, policy: DispatchPolicy) -> Optional[Notification]:
        need_id = self.store.get_offer(offer_id).need_id
        with self.store.atomic(need_id):
            offer = self.store.get_offer(offer_id)
            if not offer.is_pending or offer.reminder_sent_at is not None:
                return None
            offer.reminder_sent_at = now
            self.store.save_offer(offer)

            token = live_token(self.store, offer.id, now)
            if token is None:
                token = issue_token(self.store, offer.id, now, offer.expires_at, policy.token_bytes)
            return self.engine.notification_for(offer, TemplateKind.REMINDER, token=token)

    def run_forever(self, stop_event: threading.Event, interval_seconds: Optional[float] = None) -> None:
        """
        Blocking loop for a dedicated worker process. Storage failures are
        logged and retried on the next tick.
        """
        while not stop_event.is_set():
            try:
                self.run_tick()
            except StorageError:
                logger.exception("scheduler tick failed; retrying next interval")
            interval = interval_seconds or self.settings_provider().tick_interval_seconds
            stop_event.wait(interval)
