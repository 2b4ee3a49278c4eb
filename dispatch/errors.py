"""
Error kinds raised by the dispatch engine.

Token races are not errors: they come back as TokenReason/ConsumeOutcome values
on result objects (see dispatch.tokens).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class DispatchError(Exception):
    """Base class for dispatch engine errors."""
    pass


class NeedNotFound(DispatchError):
    pass


class OfferNotFound(DispatchError):
    pass


class InvalidTransition(DispatchError):
    """Raised when a need or offer is asked to move to a state it cannot reach."""
    pass


class QuantityBelowAccepted(DispatchError):
    """Raised when a need edit would shrink capacity under committed acceptances."""

    def __init__(self, need_id: int, requested: int, accepted: int):
        super().__init__(
            f"Need {need_id} already has {accepted} accepted offers; quantity cannot be set to {requested}"
        )
        self.need_id = need_id
        self.requested = requested
        self.accepted = accepted


class StorageError(DispatchError):
    """
    The storage layer failed during a transition. The transaction was rolled
    back, so the caller may retry.
    """
    retryable = True


class NotificationSendFailure(DispatchError):
    """A single recipient could not be notified. Recorded, never propagated."""
    pass


class TokenReason(str, Enum):
    INVALID = "invalid"
    EXPIRED = "expired"
    ALREADY_USED = "already_used"
    NO_LONGER_AVAILABLE = "no_longer_available"


@dataclass(frozen=True)
class NoEligibleCandidates:
    """
    Warning: the ranked list ran out before the need reached its quantity.
    The need stays active and picks up again when the roster grows.
    """
    need_id: int
    missing: int

    def __str__(self) -> str:
        return f"Need {self.need_id} has no eligible candidates left ({self.missing} slot(s) unfilled)"
