#Expose the high-level pipeline pieces:
#Conflict arbitration between needs
#Response links (issue / validate / consume)
#Dispatch engine (the "one call" entry point per need)
#Reminder / expiry tick

from .conflicts import ConflictReport, ConflictResolver, Resolution
from .dispatcher import DispatchResult, DispatchStrategyEngine, NeedPreview, NeedSummary, TransitionResult
from .errors import (
    DispatchError,
    InvalidTransition,
    NeedNotFound,
    NoEligibleCandidates,
    NotificationSendFailure,
    OfferNotFound,
    QuantityBelowAccepted,
    StorageError,
    TokenReason,
)
from .reminders import ReminderScheduler, TickReport
from .tokens import ConsumeOutcome, ConsumeResult, OfferContext, ResponseTokenService, TokenValidation

__all__ = [
    "ConflictReport",
    "ConflictResolver",
    "Resolution",
    "DispatchResult",
    "DispatchStrategyEngine",
    "NeedPreview",
    "NeedSummary",
    "TransitionResult",
    "DispatchError",
    "InvalidTransition",
    "NeedNotFound",
    "NoEligibleCandidates",
    "NotificationSendFailure",
    "OfferNotFound",
    "QuantityBelowAccepted",
    "StorageError",
    "TokenReason",
    "ReminderScheduler",
    "TickReport",
    "ConsumeOutcome",
    "ConsumeResult",
    "OfferContext",
    "ResponseTokenService",
    "TokenValidation",
]
