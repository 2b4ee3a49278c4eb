"""
Purpose: Arbitration for candidates ranked on several open needs at once.
What it does:
Takes a snapshot of the open needs in one conflict scope (the needs of one
project; needs without a project share a single scope) and answers, for a
(candidate, need) pair, whether that need may offer to the candidate.

Policies:
- simple:   the first need to claim a candidate keeps them; later needs skip
- detailed: same decision as simple, plus the overlap details for the caller
- smart:    the candidate goes to the open need where their rank is best
            (ties: senior position, then lowest need id)

Under every policy a candidate already holding an offer (any status) from
another need in the scope is skipped.

Rule: resolve() is a pure read of the snapshot. Only the engine writes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from candidates.models import Candidate
from candidates.selection import exclusion_reason
from vacancies.models import Offer, VacancyNeed
from vacancies.policy import ConflictStrategy

logger = logging.getLogger(__name__)

ALREADY_CONTACTED = "already_contacted"
BETTER_RANKED_ELSEWHERE = "better_ranked_elsewhere"


class Decision(str, Enum):
    ALLOW = "allow"
    SKIP = "skip"


@dataclass(frozen=True)
class Standing:
    """
    Where a candidate sits on one open need's ranking list.
    """
    need_id: int
    position_id: int
    position_name: str
    list_type: str
    rank: int
    hierarchy_level: int

    def sort_key(self):
        return (self.rank, self.hierarchy_level, self.need_id)


@dataclass(frozen=True)
class Resolution:
    decision: Decision
    candidate_id: int
    need_id: int
    reason: Optional[str] = None
    chosen_need_id: Optional[int] = None
    # pending offers from other needs in the scope
    overlapping_offers: Tuple[Offer, ...] = ()
    # the candidate's standing on every open need in the scope
    standings: Tuple[Standing, ...] = ()

    @property
    def allowed(self) -> bool:
        return self.decision == Decision.ALLOW

    @property
    def has_overlap(self) -> bool:
        return bool(self.overlapping_offers) or len(self.standings) > 1


@dataclass(frozen=True)
class ConflictReport:
    """
    One candidate ranked on more than one open need.
    """
    candidate_id: int
    candidate_name: str
    standings: Tuple[Standing, ...]
    chosen_need_id: Optional[int] = None


def best_standing(standings: Sequence[Standing]) -> Standing:
    return min(standings, key=Standing.sort_key)


@dataclass
class ConflictResolver:
    """
    Snapshot of one conflict scope, built once per dispatch cycle.
    """
    strategy: ConflictStrategy
    project_id: Optional[int]
    needs: Dict[int, VacancyNeed]
    standings: Dict[int, List[Standing]] = field(default_factory=dict)  # candidate_id -> standings
    claims: Dict[int, List[Offer]] = field(default_factory=dict)  # candidate_id -> offers in scope
    candidates: Dict[int, Candidate] = field(default_factory=dict)

    @classmethod
    def snapshot(cls, store, strategy: ConflictStrategy, need: Optional[VacancyNeed] = None,
                 project_id: Optional[int] = None) -> ConflictResolver:
        """
        Read the open needs of the scope, the eligible standings on each of
        them and every offer already made inside the scope.
        `need` is included even when it is not active yet (previews).
        """
        scope = need.project_id if need is not None else project_id
        needs = {n.id: n for n in store.active_needs_in_scope(scope)}
        if need is not None:
            needs.setdefault(need.id, need)

        resolver = cls(strategy=strategy, project_id=scope, needs=needs)

        for open_need in sorted(needs.values(), key=lambda n: n.id):
            position = store.get_position(open_need.position_id)
            ranking_list = store.get_ranking_list(open_need.ranking_list_id)
            rankings = store.rankings_for_list(open_need.ranking_list_id)
            roster = store.candidates_by_id([r.candidate_id for r in rankings])
            resolver.candidates.update(roster)

            for ranking in rankings:
                candidate = roster.get(ranking.candidate_id)
                if exclusion_reason(candidate, position, require_local_residence=open_need.require_local_residence):
                    continue
                standing = Standing(
                    need_id=open_need.id,
                    position_id=position.id,
                    position_name=position.name,
                    list_type=ranking_list.list_type,
                    rank=ranking.rank,
                    hierarchy_level=position.hierarchy_level,
                )
                per_candidate = resolver.standings.setdefault(candidate.id, [])
                # keep the best rank if a list names the candidate twice
                existing = [s for s in per_candidate if s.need_id == open_need.id]
                if existing and existing[0].sort_key() <= standing.sort_key():
                    continue
                if existing:
                    per_candidate.remove(existing[0])
                per_candidate.append(standing)

        scope_need_ids = {n.id for n in store.list_needs(project_id=scope)} if scope is not None else None
        for candidate_id in resolver.standings:
            resolver.claims[candidate_id] = [
                offer
                for offer in store.offers_for_candidate(candidate_id)
                if resolver._in_scope(store, offer, scope_need_ids)
            ]

        return resolver

    def _in_scope(self, store, offer: Offer, scope_need_ids) -> bool:
        if offer.need_id in self.needs:
            return True
        if scope_need_ids is not None:
            return offer.need_id in scope_need_ids
        return store.get_need(offer.need_id).project_id is None

    # --- decisions ---

    def resolve(self, candidate_id: int, need: VacancyNeed) -> Resolution:
        standings = tuple(sorted(self.standings.get(candidate_id, []), key=Standing.sort_key))
        elsewhere = [offer for offer in self.claims.get(candidate_id, []) if offer.need_id != need.id]

        if elsewhere:
            pending = tuple(offer for offer in elsewhere if offer.is_pending)
            logger.debug("candidate %s skipped for need %s: already contacted by need(s) %s",
                         candidate_id, need.id, sorted({o.need_id for o in elsewhere}))
            return Resolution(
                decision=Decision.SKIP,
                candidate_id=candidate_id,
                need_id=need.id,
                reason=ALREADY_CONTACTED,
                chosen_need_id=elsewhere[0].need_id,
                overlapping_offers=pending,
                standings=standings,
            )

        if self.strategy == ConflictStrategy.SMART and len(standings) > 1:
            best = best_standing(standings)
            if best.need_id != need.id:
                logger.debug("candidate %s skipped for need %s: ranked better on need %s",
                             candidate_id, need.id, best.need_id)
                return Resolution(
                    decision=Decision.SKIP,
                    candidate_id=candidate_id,
                    need_id=need.id,
                    reason=BETTER_RANKED_ELSEWHERE,
                    chosen_need_id=best.need_id,
                    standings=standings,
                )

        return Resolution(
            decision=Decision.ALLOW,
            candidate_id=candidate_id,
            need_id=need.id,
            chosen_need_id=need.id,
            standings=standings,
        )

    def record_claim(self, offer: Offer) -> None:
        """
        Called by the engine after it commits an offer inside this cycle.
        """
        self.claims.setdefault(offer.candidate_id, []).append(offer)

    def overlaps(self) -> List[ConflictReport]:
        reports = []
        for candidate_id in sorted(self.standings):
            standings = tuple(sorted(self.standings[candidate_id], key=Standing.sort_key))
            if len(standings) < 2:
                continue
            candidate = self.candidates.get(candidate_id)
            reports.append(
                ConflictReport(
                    candidate_id=candidate_id,
                    candidate_name=candidate.full_name if candidate else str(candidate_id),
                    standings=standings,
                    chosen_need_id=best_standing(standings).need_id if self.strategy == ConflictStrategy.SMART else None,
                )
            )
        return reports
