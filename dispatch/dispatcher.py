"""
Purpose: Orchestrator / decision pipeline (the "glue").
What it does:
Drives one VacancyNeed from open to completed. For every dispatch cycle it:
1) reads a fresh DispatchPolicy from the settings provider
2) asks the CandidateSelector for the ordered eligible candidates
3) asks the ConflictResolver whether each candidate may be offered this need
4) creates offers + response tokens inside the need's transaction
5) hands the notifications to the batcher after the transaction commits;
   delivery runs on the batcher's workers, never on the caller's thread

Strategies (closed set, matched exhaustively in _slots_to_fill):
- sequential: one pending offer at a time; accept/decline/expiry offers the next
- parallel:   (quantity - accepted) pending offers; decline/expiry tops up one
- first_come: up to max_offers at once; no top-up, first accepts win

Rule: every accept re-reads the accepted count under the need lock, so two
simultaneous accepts can never both be the Nth.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence

from candidates.models import Candidate
from candidates.selection import CandidateSelector, RankedCandidate
from notifications.models import Notification, Recipient, TemplateKind
from vacancies.models import (
    DispatchStrategy,
    NeedStatus,
    Offer,
    OfferResponse,
    OfferStatus,
    ResponseToken,
    VacancyNeed,
    utcnow,
)
from vacancies.policy import ConflictStrategy, DispatchPolicy, SettingsProvider, default_dispatch_policy

from .conflicts import ConflictReport, ConflictResolver, Decision, Resolution
from .errors import InvalidTransition, NoEligibleCandidates, QuantityBelowAccepted
from .state_machines import need_state, offer_state
from .tokens import issue_token, revoke_tokens

logger = logging.getLogger(__name__)

# a candidate another need reached, or is still claiming, between snapshot and claim
CLAIMED_ELSEWHERE = "claimed_elsewhere"


@dataclass
class DispatchResult:
    need_id: int
    issued: List[Offer] = field(default_factory=list)
    skipped: List[Resolution] = field(default_factory=list)
    # detailed conflict strategy only: overlap details per considered candidate
    overlaps: List[Resolution] = field(default_factory=list)
    warnings: List[NoEligibleCandidates] = field(default_factory=list)
    notifications: List[Notification] = field(default_factory=list)
    session_id: Optional[str] = None


@dataclass
class TransitionResult:
    """
    Outcome of one offer transition (response, expiry) and its follow-up.
    applied is False when the need could no longer take the answer.
    """
    offer: Offer
    need: VacancyNeed
    applied: bool = True
    completed: bool = False
    dispatch: Optional[DispatchResult] = None
    notifications: List[Notification] = field(default_factory=list)
    session_id: Optional[str] = None


@dataclass(frozen=True)
class NeedSummary:
    need_id: int
    status: NeedStatus
    quantity: int
    counts: Dict[str, int]

    @property
    def accepted(self) -> int:
        return self.counts[OfferStatus.ACCEPTED.value]

    @property
    def pending(self) -> int:
        return self.counts[OfferStatus.PENDING.value]

    @property
    def remaining(self) -> int:
        return max(self.quantity - self.accepted, 0)

    def as_dict(self):
        return {
            "needId": self.need_id,
            "status": self.status.value,
            "quantity": self.quantity,
            "remaining": self.remaining,
            "total": sum(self.counts.values()),
            **self.counts,
        }


@dataclass(frozen=True)
class ExcludedCandidate:
    candidate_id: int
    name: str
    rank: int
    reason: str


@dataclass(frozen=True)
class NeedPreview:
    """
    Dry run of the next dispatch cycle. Nothing is written.
    """
    need_id: int
    would_offer: List[RankedCandidate]
    queue: List[RankedCandidate]
    skipped: List[Resolution]
    excluded: List[ExcludedCandidate]
    conflicts: List[ConflictReport]
    already_contacted: List[int]


def count_offers(offers: Sequence[Offer]) -> Dict[str, int]:
    counts = {status.value: 0 for status in OfferStatus}
    for offer in offers:
        counts[offer.status.value] += 1
    return counts


class DispatchStrategyEngine:
    """
    Coordinates offers for vacancy needs.
    `notifier` is anything with submit(notifications, background=True) -> ticket (NotificationBatcher).
    """
    def __init__(self, store, notifier=None, settings_provider: Optional[SettingsProvider] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self.notifier = notifier
        self.settings_provider = settings_provider or default_dispatch_policy
        self.clock = clock or utcnow
        self.selector = CandidateSelector(store)

    def policy(self) -> DispatchPolicy:
        policy = self.settings_provider()
        policy.validate()
        return policy

    # --- administrative entry points ---

    def open_need(self, need_id: int) -> DispatchResult:
        with self.store.atomic(need_id):
            need = self.store.get_need(need_id)
            need_state.activate_need(need)
            self.store.save_need(need)
        logger.info("need %s opened for dispatch (%s)", need_id, need.dispatch_strategy.value)
        return self.dispatch(need_id)

    def dispatch(self, need_id: int, policy: Optional[DispatchPolicy] = None) -> DispatchResult:
        """
        One dispatch cycle: issue as many offers as the strategy allows right now.
        """
        policy = policy or self.policy()
        now = self.clock()
        with self.store.atomic(need_id):
            result = self._fill(need_id, policy, now)
        result.session_id = self.publish(result.notifications)
        return result

    def dispatch_project(self, project_id: int) -> List[DispatchResult]:
        """
        Dispatch every active need of a project, lowest need id first.
        """
        policy = self.policy()
        needs = self.store.list_needs(project_id=project_id, status=NeedStatus.ACTIVE)
        return [self.dispatch(need.id, policy) for need in needs]

    def pause_need(self, need_id: int) -> VacancyNeed:
        with self.store.atomic(need_id):
            need = self.store.get_need(need_id)
            need_state.pause_need(need)
            self.store.save_need(need)
        logger.info("need %s paused", need_id)
        return need

    def resume_need(self, need_id: int) -> DispatchResult:
        with self.store.atomic(need_id):
            need = self.store.get_need(need_id)
            if need.status != NeedStatus.PAUSED:
                raise InvalidTransition(f"Need {need_id} is {need.status.value}, not paused")
            need_state.activate_need(need)
            self.store.save_need(need)
        logger.info("need %s resumed", need_id)
        return self.dispatch(need_id)

    def close_need(self, need_id: int) -> Optional[VacancyNeed]:
        """
        Manually close a need. Pending offers are superseded and their links
        revoked in the same transaction. A need that never sent an offer is
        deleted instead of archived (returns None).
        """
        now = self.clock()
        with self.store.atomic(need_id):
            need = self.store.get_need(need_id)
            offers = self.store.offers_for_need(need_id)
            if not offers:
                self.store.delete_need(need_id)
                logger.info("need %s deleted (no offers sent)", need_id)
                return None

            for offer in offers:
                if offer.is_pending:
                    self._supersede(offer, now)
            need_state.archive_need(need)
            self.store.save_need(need)

        logger.info("need %s archived", need_id)
        return need

    def update_quantity(self, need_id: int, quantity: int) -> DispatchResult:
        if quantity < 1:
            raise ValueError("quantity must be >= 1")

        policy = self.policy()
        now = self.clock()
        with self.store.atomic(need_id):
            need = self.store.get_need(need_id)
            if need.status == NeedStatus.ARCHIVED:
                raise InvalidTransition(f"Need {need_id} is archived")
            offers = self.store.offers_for_need(need_id)
            accepted = sum(1 for o in offers if o.status == OfferStatus.ACCEPTED)
            if quantity < accepted:
                raise QuantityBelowAccepted(need_id, quantity, accepted)

            need.quantity = quantity
            result = DispatchResult(need_id=need_id)

            if accepted == quantity and need.status in (NeedStatus.ACTIVE, NeedStatus.PAUSED):
                result.notifications.extend(self._complete(need, offers, now))
            elif accepted < quantity and need.status == NeedStatus.COMPLETED:
                need_state.activate_need(need)
            self.store.save_need(need)

            if need.status == NeedStatus.ACTIVE:
                filled = self._fill(need_id, policy, now)
                filled.notifications[:0] = result.notifications
                result = filled

        logger.info("need %s quantity set to %s", need_id, quantity)
        result.session_id = self.publish(result.notifications)
        return result

    # --- offer transitions ---

    def apply_response(self, offer_id: int, response: OfferResponse, now: datetime,
                       policy: DispatchPolicy) -> TransitionResult:
        """
        Must run inside the need's transaction (ResponseTokenService.consume).
        """
        offer = self.store.get_offer(offer_id)
        need = self.store.get_need(offer.need_id)
        result = TransitionResult(offer=offer, need=need)

        if response == OfferResponse.DECLINED:
            offer_state.decline_offer(offer, now)
            self.store.save_offer(offer)
            logger.info("offer %s declined (need %s)", offer.id, need.id)
            self._advance(result, policy, now)
            return result

        offers = self.store.offers_for_need(need.id)
        accepted = sum(1 for o in offers if o.status == OfferStatus.ACCEPTED)
        if need.status not in (NeedStatus.ACTIVE, NeedStatus.PAUSED) or accepted >= need.quantity:
            # full or closed; the offer should already be superseded
            if offer.is_pending:
                self._supersede(offer, now)
            result.applied = False
            return result

        offer_state.accept_offer(offer, now)
        self.store.save_offer(offer)
        accepted += 1
        logger.info("offer %s accepted (need %s: %s/%s)", offer.id, need.id, accepted, need.quantity)
        result.notifications.append(self.notification_for(offer, TemplateKind.CONFIRMATION, need=need))

        if accepted == need.quantity:
            others = [o for o in offers if o.id != offer.id]
            result.notifications.extend(self._complete(need, others, now))
            self.store.save_need(need)
            result.completed = True
        else:
            self._advance(result, policy, now)

        return result

    def expire_offer(self, offer_id: int, now: Optional[datetime] = None,
                     policy: Optional[DispatchPolicy] = None) -> TransitionResult:
        """
        Called by the scheduler for a pending offer past expires_at.
        Raises InvalidTransition if the offer was answered in the meantime.
        """
        policy = policy or self.policy()
        now = now or self.clock()
        need_id = self.store.get_offer(offer_id).need_id

        with self.store.atomic(need_id):
            offer = self.store.get_offer(offer_id)
            need = self.store.get_need(need_id)
            offer_state.expire_offer(offer, now)
            self.store.save_offer(offer)
            revoke_tokens(self.store, offer.id, now)
            logger.info("offer %s expired (need %s)", offer.id, need.id)
            result = TransitionResult(offer=offer, need=need)
            self._advance(result, policy, now)

        result.session_id = self.publish(result.notifications)
        return result

    def _advance(self, result: TransitionResult, policy: DispatchPolicy, now: datetime) -> None:
        """
        An offer was answered or expired without completing the need:
        sequential/parallel issue the next offer(s), first_come only shrinks its pool.
        """
        need = result.need
        if need.status != NeedStatus.ACTIVE or need.dispatch_strategy == DispatchStrategy.FIRST_COME:
            return
        result.dispatch = self._fill(need.id, policy, now)
        result.notifications.extend(result.dispatch.notifications)

    def publish(self, notifications: Sequence[Notification]) -> Optional[str]:
        """
        Hand committed notifications to the batcher. Delivery problems never
        reach the caller: the state change they describe is already final.
        """
        if not notifications or self.notifier is None:
            return None
        try:
            ticket = self.notifier.submit(list(notifications), background=True)
        except Exception:
            logger.exception("could not submit %s notifications", len(notifications))
            return None
        return ticket.session_id

    # --- read-only views ---

    def summary(self, need_id: int) -> NeedSummary:
        need = self.store.get_need(need_id)
        counts = count_offers(self.store.offers_for_need(need_id))
        return NeedSummary(need_id=need.id, status=need.status, quantity=need.quantity, counts=counts)

    def preview(self, need_id: int) -> NeedPreview:
        policy = self.policy()
        need = self.store.get_need(need_id)
        offers = self.store.offers_for_need(need_id)
        accepted = sum(1 for o in offers if o.status == OfferStatus.ACCEPTED)
        pending = sum(1 for o in offers if o.is_pending)
        contacted = {o.candidate_id for o in offers}

        resolver = ConflictResolver.snapshot(self.store, policy.conflict_strategy, need)
        sequence = [rc for rc in self.selector.for_need(need) if rc.candidate_id not in contacted]

        allowed: List[RankedCandidate] = []
        skipped: List[Resolution] = []
        for ranked in sequence:
            resolution = resolver.resolve(ranked.candidate_id, need)
            if resolution.allowed:
                allowed.append(ranked)
            else:
                skipped.append(resolution)

        slots = self._slots_to_fill(need, accepted, pending, len(allowed))
        excluded = [
            ExcludedCandidate(
                candidate_id=ranking.candidate_id,
                name=candidate.full_name if candidate else "",
                rank=ranking.rank,
                reason=reason,
            )
            for ranking, candidate, reason in self.selector.explain(need)
            if reason is not None
        ]
        return NeedPreview(
            need_id=need.id,
            would_offer=allowed[:slots],
            queue=allowed[slots:],
            skipped=skipped,
            excluded=excluded,
            conflicts=resolver.overlaps(),
            already_contacted=sorted(contacted),
        )

    def conflicts(self, project_id: Optional[int]) -> List[ConflictReport]:
        policy = self.policy()
        return ConflictResolver.snapshot(self.store, policy.conflict_strategy, project_id=project_id).overlaps()

    # --- internals (run inside the need's transaction) ---

    @staticmethod
    def _slots_to_fill(need: VacancyNeed, accepted: int, pending: int, available: int) -> int:
        """
        How many new offers this cycle may issue.
        """
        strategy = need.dispatch_strategy
        if strategy == DispatchStrategy.SEQUENTIAL:
            slots = 1 if pending == 0 and accepted < need.quantity else 0
        elif strategy == DispatchStrategy.PARALLEL:
            slots = (need.quantity - accepted) - pending
        elif strategy == DispatchStrategy.FIRST_COME:
            if pending > 0 or accepted >= need.quantity:
                slots = 0
            else:
                slots = need.max_offers if need.max_offers is not None else available
        else:
            raise ValueError(f"unknown dispatch strategy: {strategy!r}")
        return max(slots, 0)

    def _fill(self, need_id: int, policy: DispatchPolicy, now: datetime) -> DispatchResult:
        need = self.store.get_need(need_id)
        result = DispatchResult(need_id=need_id)
        if need.status != NeedStatus.ACTIVE:
            return result

        offers = self.store.offers_for_need(need_id)
        accepted = sum(1 for o in offers if o.status == OfferStatus.ACCEPTED)
        pending = sum(1 for o in offers if o.is_pending)
        contacted = {o.candidate_id for o in offers}

        sequence = [rc for rc in self.selector.for_need(need) if rc.candidate_id not in contacted]
        slots = self._slots_to_fill(need, accepted, pending, len(sequence))
        if slots == 0:
            return result

        resolver = ConflictResolver.snapshot(self.store, policy.conflict_strategy, need)
        position = self.store.get_position(need.position_id)

        for ranked in sequence:
            if slots == 0:
                break

            resolution = resolver.resolve(ranked.candidate_id, need)
            if policy.conflict_strategy == ConflictStrategy.DETAILED and resolution.has_overlap:
                result.overlaps.append(resolution)
            if not resolution.allowed:
                result.skipped.append(resolution)
                continue

            if not self._claim(ranked.candidate, need):
                result.skipped.append(Resolution(
                    decision=Decision.SKIP,
                    candidate_id=ranked.candidate_id,
                    need_id=need.id,
                    reason=CLAIMED_ELSEWHERE,
                ))
                continue

            offer = self.store.add_offer(Offer(
                id=None,
                need_id=need.id,
                candidate_id=ranked.candidate_id,
                status=OfferStatus.PENDING,
                sent_at=now,
                expires_at=now + need.response_window,
            ))
            token = issue_token(self.store, offer.id, now, offer.expires_at, policy.token_bytes)
            resolver.record_claim(offer)
            pending += 1
            slots -= 1

            result.issued.append(offer)
            result.notifications.append(
                self._notification(need, offer, ranked.candidate, TemplateKind.REQUEST, token, position.name)
            )

        if result.issued:
            logger.info("need %s: %s offer(s) issued (%s)", need.id, len(result.issued),
                        need.dispatch_strategy.value)

        missing = (need.quantity - accepted) - pending
        if slots > 0 and missing > 0:
            warning = NoEligibleCandidates(need_id=need.id, missing=missing)
            logger.warning("%s", warning)
            result.warnings.append(warning)

        return result

    def _claim(self, candidate: Candidate, need: VacancyNeed) -> bool:
        """
        Re-check under the candidate lock that no other need in the scope has
        reached this candidate since the snapshot was taken.
        """
        if not self.store.lock_candidate(candidate.id):
            logger.debug("candidate %s held by another cycle, skipped for need %s", candidate.id, need.id)
            return False
        for offer in self.store.offers_for_candidate(candidate.id):
            if offer.need_id == need.id:
                return False
            other = self.store.get_need(offer.need_id)
            if other.project_id == need.project_id:
                logger.debug("candidate %s claimed by need %s before need %s", candidate.id, other.id, need.id)
                return False
        return True

    def _supersede(self, offer: Offer, now: datetime) -> None:
        offer_state.supersede_offer(offer, now)
        self.store.save_offer(offer)
        revoke_tokens(self.store, offer.id, now)

    def _complete(self, need: VacancyNeed, offers: Sequence[Offer], now: datetime) -> List[Notification]:
        """
        Quantity reached: complete the need, supersede what is still pending and
        tell those candidates the position is filled. Caller saves the need.
        """
        need_state.complete_need(need)
        notifications = []
        for offer in offers:
            if offer.is_pending:
                self._supersede(offer, now)
                notifications.append(self.notification_for(offer, TemplateKind.POSITION_FILLED, need=need))
        logger.info("need %s completed (%s)", need.id, need.quantity)
        return notifications

    # --- notifications ---

    def notification_for(self, offer: Offer, kind: TemplateKind, need: Optional[VacancyNeed] = None,
                         token: Optional[ResponseToken] = None) -> Notification:
        need = need or self.store.get_need(offer.need_id)
        candidate = self.store.get_candidate(offer.candidate_id)
        position = self.store.get_position(need.position_id)
        return self._notification(need, offer, candidate, kind, token, position.name)

    def _notification(self, need: VacancyNeed, offer: Offer, candidate: Candidate, kind: TemplateKind,
                      token: Optional[ResponseToken], position_name: str) -> Notification:
        project = self.store.get_project(need.project_id) if need.project_id is not None else None
        variables = {
            "candidate_name": candidate.full_name,
            "position_name": position_name,
            "project_name": project.name if project else None,
            "need_id": need.id,
            "offer_id": offer.id,
            "expires_at": offer.expires_at.isoformat(),
            "response_window_hours": need.response_window_hours,
        }
        if token is not None:
            variables["token"] = token.token
        return Notification(recipient=Recipient.from_candidate(candidate), template_kind=kind, variables=variables)
