from datetime import datetime

from vacancies.models import Offer, OfferResponse, OfferStatus

from ..errors import InvalidTransition


def _require_pending(offer: Offer, target: OfferStatus) -> None:
    if offer.status != OfferStatus.PENDING:
        raise InvalidTransition(f"Cannot move offer {offer.id} to {target.value} from {offer.status.value}")


def accept_offer(offer: Offer, now: datetime) -> Offer:
    """
    Called when a candidate accepts through their response link.
    The caller has already checked the need still has room.
    """
    _require_pending(offer, OfferStatus.ACCEPTED)
    offer.status = OfferStatus.ACCEPTED
    offer.response = OfferResponse.ACCEPTED
    offer.responded_at = now
    return offer


def decline_offer(offer: Offer, now: datetime) -> Offer:
    _require_pending(offer, OfferStatus.DECLINED)
    offer.status = OfferStatus.DECLINED
    offer.response = OfferResponse.DECLINED
    offer.responded_at = now
    return offer


def expire_offer(offer: Offer, now: datetime) -> Offer:
    """
    Called by the reminder scheduler once the response window has run out.
    """
    _require_pending(offer, OfferStatus.EXPIRED)
    if now < offer.expires_at:
        raise InvalidTransition(f"Offer {offer.id} does not expire until {offer.expires_at.isoformat()}")
    offer.status = OfferStatus.EXPIRED
    return offer


def supersede_offer(offer: Offer, now: datetime) -> Offer:
    """
    The need was filled or closed while this offer was still outstanding.
    """
    _require_pending(offer, OfferStatus.SUPERSEDED)
    offer.status = OfferStatus.SUPERSEDED
    offer.responded_at = now
    return offer
