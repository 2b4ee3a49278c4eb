"""
Purpose: Single-use response links for offers.
What it does:
- issue(): creates a random token bound to one offer. Any earlier unused token
  for that offer is revoked, so an offer has at most one live token.
- validate(): read-only check used by GET /respond to render the offer page.
- consume(): the accept/decline path. Inside one transaction it locks the token
  row, re-checks it, stamps used_at and hands the offer to the engine.

Two requests racing on one token: the first to take the lock wins, the other
re-reads used_at and gets ALREADY_RESPONDED. Races are outcomes, not errors.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, Optional

from vacancies.models import Offer, OfferResponse, OfferStatus, ResponseToken, utcnow

from .errors import OfferNotFound, TokenReason

logger = logging.getLogger(__name__)


class ConsumeOutcome(str, Enum):
    ACCEPTED = "accepted"
    DECLINED = "declined"
    ALREADY_RESPONDED = "already_responded"
    NO_LONGER_AVAILABLE = "no_longer_available"
    EXPIRED = "expired"
    INVALID = "invalid"


MESSAGES = {
    ConsumeOutcome.ACCEPTED: "Thank you! Your acceptance has been recorded.",
    ConsumeOutcome.DECLINED: "Thank you for letting us know. Your response has been recorded.",
    ConsumeOutcome.ALREADY_RESPONDED: "You have already responded to this request.",
    ConsumeOutcome.NO_LONGER_AVAILABLE: "This position has already been filled or is no longer available.",
    ConsumeOutcome.EXPIRED: "This link has expired. Please contact the office if you are still available.",
    ConsumeOutcome.INVALID: "This link is not valid. Please check that you copied the whole address.",
}

_OUTCOME_FOR_REASON = {
    TokenReason.INVALID: ConsumeOutcome.INVALID,
    TokenReason.EXPIRED: ConsumeOutcome.EXPIRED,
    TokenReason.ALREADY_USED: ConsumeOutcome.ALREADY_RESPONDED,
    TokenReason.NO_LONGER_AVAILABLE: ConsumeOutcome.NO_LONGER_AVAILABLE,
}


@dataclass(frozen=True)
class OfferContext:
    """
    What a candidate sees when opening their link.
    """
    offer_id: int
    need_id: int
    candidate_name: str
    position_name: str
    project_name: Optional[str]
    status: OfferStatus
    expires_at: datetime

    def as_dict(self) -> Dict[str, Any]:
        return {
            "offerId": self.offer_id,
            "needId": self.need_id,
            "candidateName": self.candidate_name,
            "positionName": self.position_name,
            "projectName": self.project_name,
            "status": self.status.value,
            "expiresAt": self.expires_at.isoformat(),
        }


@dataclass(frozen=True)
class TokenValidation:
    reason: Optional[TokenReason] = None
    context: Optional[OfferContext] = None

    @property
    def valid(self) -> bool:
        return self.reason is None


@dataclass(frozen=True)
class ConsumeResult:
    outcome: ConsumeOutcome
    offer_id: Optional[int] = None
    session_id: Optional[str] = None

    @property
    def message(self) -> str:
        return MESSAGES[self.outcome]

    @property
    def succeeded(self) -> bool:
        return self.outcome in (ConsumeOutcome.ACCEPTED, ConsumeOutcome.DECLINED)


# --- token rows ---

def new_token_value(nbytes: int = 32) -> str:
    return secrets.token_urlsafe(nbytes)


def revoke_tokens(store, offer_id: int, now: datetime) -> int:
    """
    Revoke every unused token of an offer. Returns how many were revoked.
    """
    revoked = 0
    for token in store.tokens_for_offer(offer_id):
        if token.used_at is None and token.revoked_at is None:
            token.revoked_at = now
            store.save_token(token)
            revoked += 1
    return revoked


def live_token(store, offer_id: int, now: datetime) -> Optional[ResponseToken]:
    for token in reversed(store.tokens_for_offer(offer_id)):
        if token.is_live(now):
            return token
    return None


def issue_token(store, offer_id: int, now: datetime, expires_at: datetime, token_bytes: int = 32) -> ResponseToken:
    """
    Must run inside the caller's transaction.
    """
    revoke_tokens(store, offer_id, now)
    token = ResponseToken(
        token=new_token_value(token_bytes),
        offer_id=offer_id,
        created_at=now,
        expires_at=expires_at,
    )
    return store.add_token(token)


def check_token(token: Optional[ResponseToken], offer: Optional[Offer], now: datetime) -> Optional[TokenReason]:
    """
    Why the token cannot be used right now, or None if it can.
    """
    if token is None or offer is None:
        return TokenReason.INVALID

    if token.used_at is not None:
        return TokenReason.ALREADY_USED

    if token.revoked_at is not None:
        if offer.status in (OfferStatus.ACCEPTED, OfferStatus.DECLINED):
            return TokenReason.ALREADY_USED
        if offer.is_pending:
            # replaced by a newer link
            return TokenReason.INVALID
        return TokenReason.NO_LONGER_AVAILABLE

    if now >= token.expires_at:
        return TokenReason.EXPIRED

    if offer.status == OfferStatus.EXPIRED:
        return TokenReason.EXPIRED
    if offer.status in (OfferStatus.ACCEPTED, OfferStatus.DECLINED):
        return TokenReason.ALREADY_USED
    if offer.status == OfferStatus.SUPERSEDED:
        return TokenReason.NO_LONGER_AVAILABLE

    return None


class ResponseTokenService:
    def __init__(self, store, engine, clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self.engine = engine
        self.clock = clock or utcnow

    def issue(self, offer_id: int, response_window_hours: int) -> ResponseToken:
        offer = self.store.get_offer(offer_id)
        now = self.clock()
        policy = self.engine.policy()
        with self.store.atomic(offer.need_id):
            return issue_token(
                self.store,
                offer_id,
                now,
                now + timedelta(hours=response_window_hours),
                policy.token_bytes,
            )

    def _load(self, value: Optional[str]):
        token = self.store.get_token(value) if value else None
        if token is None:
            return None, None
        try:
            return token, self.store.get_offer(token.offer_id)
        except OfferNotFound:
            return token, None

    def _context(self, offer: Offer) -> OfferContext:
        need = self.store.get_need(offer.need_id)
        position = self.store.get_position(need.position_id)
        candidate = self.store.get_candidate(offer.candidate_id)
        project = self.store.get_project(need.project_id) if need.project_id is not None else None
        return OfferContext(
            offer_id=offer.id,
            need_id=need.id,
            candidate_name=candidate.full_name if candidate else "",
            position_name=position.name,
            project_name=project.name if project else None,
            status=offer.status,
            expires_at=offer.expires_at,
        )

    def validate(self, value: Optional[str]) -> TokenValidation:
        token, offer = self._load(value)
        reason = check_token(token, offer, self.clock())
        context = self._context(offer) if offer is not None else None
        return TokenValidation(reason=reason, context=context)

    def consume(self, value: Optional[str], response) -> ConsumeResult:
        """
        Record a candidate's answer exactly once.
        Raises ValueError for a response other than accepted/declined.
        """
        response = OfferResponse(response)
        token, offer = self._load(value)
        if token is None or offer is None:
            return ConsumeResult(ConsumeOutcome.INVALID)

        policy = self.engine.policy()
        now = self.clock()

        with self.store.atomic(offer.need_id):
            token = self.store.lock_token(value)
            if token is None:
                return ConsumeResult(ConsumeOutcome.INVALID)
            offer = self.store.get_offer(token.offer_id)
            reason = check_token(token, offer, now)
            if reason is not None:
                logger.info("token for offer %s rejected: %s", offer.id, reason.value)
                return ConsumeResult(_OUTCOME_FOR_REASON[reason], offer_id=offer.id)

            token.used_at = now
            self.store.save_token(token)
            transition = self.engine.apply_response(offer.id, response, now, policy)

        session_id = self.engine.publish(transition.notifications)

        if not transition.applied:
            return ConsumeResult(ConsumeOutcome.NO_LONGER_AVAILABLE, offer_id=offer.id, session_id=session_id)

        outcome = ConsumeOutcome.ACCEPTED if response == OfferResponse.ACCEPTED else ConsumeOutcome.DECLINED
        logger.info("offer %s %s via response link", offer.id, outcome.value)
        return ConsumeResult(outcome, offer_id=offer.id, session_id=session_id)

