#Marks notifications as a package.
#Re-exports the public API so the engine and the backend import from
#notifications without knowing internal file names.
#No business logic.

from .batcher import BatchTicket, NotificationBatcher
from .models import (
    BatchReport,
    Notification,
    ProcessingMode,
    Recipient,
    SendFailure,
    SendProgress,
    SessionStatus,
    TemplateKind,
)
from .progress import ProgressStore
from .transport import LoggingTransport

__all__ = [
    "BatchTicket",
    "NotificationBatcher",
    "BatchReport",
    "Notification",
    "ProcessingMode",
    "Recipient",
    "SendFailure",
    "SendProgress",
    "SessionStatus",
    "TemplateKind",
    "ProgressStore",
    "LoggingTransport",
]
