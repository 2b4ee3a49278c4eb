"""
Process-wide wiring of the engine for the Django backend.

One store, one batcher (its progress sessions must outlive a request so
GET /send-progress can poll them) and the engine pieces built on top.
"""

from functools import lru_cache

from django.conf import settings

from dispatch.dispatcher import DispatchStrategyEngine
from dispatch.reminders import ReminderScheduler
from dispatch.tokens import ResponseTokenService
from notifications.batcher import NotificationBatcher
from notifications.client import HttpNotificationClient
from notifications.transport import LoggingTransport

from .settings_provider import load_policy
from .store import DjangoStore


def build_transport():
    if settings.NOTIFY_BASE_URL:
        return HttpNotificationClient(base_url=settings.NOTIFY_BASE_URL, api_key=settings.NOTIFY_API_KEY)
    return LoggingTransport()


@lru_cache(maxsize=None)
def get_store() -> DjangoStore:
    return DjangoStore()


@lru_cache(maxsize=None)
def get_batcher() -> NotificationBatcher:
    return NotificationBatcher(build_transport(), settings_provider=load_policy)


@lru_cache(maxsize=None)
def get_engine() -> DispatchStrategyEngine:
    return DispatchStrategyEngine(get_store(), notifier=get_batcher(), settings_provider=load_policy)


def get_token_service() -> ResponseTokenService:
    return ResponseTokenService(get_store(), get_engine())


def get_scheduler() -> ReminderScheduler:
    return ReminderScheduler(get_store(), get_engine())


def reset_services() -> None:
    """Drop cached instances (tests swap transports through this)."""
    get_store.cache_clear()
    get_batcher.cache_clear()
    get_engine.cache_clear()
