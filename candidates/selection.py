"""
Purpose: Business rules for ordering the candidates a vacancy may be offered to.
What it does:
Accepts a ranking list snapshot and the roster, filters out ineligible candidates,
and orders the remaining ones (rank, then position seniority, then candidate id).

Pure functions: no storage writes, no notifications.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence

from vacancies.models import Position, Ranking, VacancyNeed

from .models import Candidate, CandidateStatus


# Exclusion reasons surfaced by previews
INACTIVE = "inactive"
ARCHIVED = "archived"
NOT_QUALIFIED = "not_qualified"
NO_LOCAL_RESIDENCE = "no_local_residence"
UNKNOWN_CANDIDATE = "unknown_candidate"


@dataclass(frozen=True)
class RankedCandidate:
    """
    One entry of the ordered offer sequence for a ranking list.
    """
    candidate: Candidate
    rank: int
    list_id: int
    hierarchy_level: int

    @property
    def candidate_id(self) -> int:
        return self.candidate.id

    def sort_key(self):
        return (self.rank, self.hierarchy_level, self.candidate.id)


def exclusion_reason(
    candidate: Optional[Candidate],
    position: Position,
    *,
    require_local_residence: bool = False,
) -> Optional[str]:
    """
    Returns why a candidate cannot be offered this position, or None if eligible.
    """
    if candidate is None:
        return UNKNOWN_CANDIDATE

    if candidate.status == CandidateStatus.ARCHIVED:
        return ARCHIVED

    if candidate.status != CandidateStatus.ACTIVE:
        return INACTIVE

    if not candidate.is_qualified_for(position.id):
        return NOT_QUALIFIED

    if require_local_residence and not candidate.local_residence:
        return NO_LOCAL_RESIDENCE

    return None


def select_candidates(
    rankings: Sequence[Ranking],
    candidates: Mapping[int, Candidate],
    position: Position,
    *,
    require_local_residence: bool = False,
) -> List[RankedCandidate]:
    """
    Returns eligible candidates ordered ascending by rank.

    Ties are broken by the position hierarchy level (senior first) and then by
    candidate id, so the output is deterministic for a fixed snapshot.
    A candidate listed more than once keeps their best rank.
    """
    best: Dict[int, RankedCandidate] = {}

    for ranking in rankings:
        candidate = candidates.get(ranking.candidate_id)
        if exclusion_reason(candidate, position, require_local_residence=require_local_residence):
            continue

        entry = RankedCandidate(
            candidate=candidate,
            rank=ranking.rank,
            list_id=ranking.list_id,
            hierarchy_level=position.hierarchy_level,
        )
        current = best.get(candidate.id)
        if current is None or entry.sort_key() < current.sort_key():
            best[candidate.id] = entry

    return sorted(best.values(), key=RankedCandidate.sort_key)


class CandidateSelector:
    """
    Reads the ranking snapshot for a need from the store and orders it.
    """
    def __init__(self, store):
        self.store = store

    def for_need(self, need: VacancyNeed) -> List[RankedCandidate]:
        position = self.store.get_position(need.position_id)
        rankings = self.store.rankings_for_list(need.ranking_list_id)
        candidates = self.store.candidates_by_id([r.candidate_id for r in rankings])
        return select_candidates(
            rankings,
            candidates,
            position,
            require_local_residence=need.require_local_residence,
        )

    def explain(self, need: VacancyNeed) -> List[tuple]:
        """
        Every ranked candidate on the need's list with an exclusion reason (or None),
        in rank order. Used by previews.
        """
        position = self.store.get_position(need.position_id)
        rankings = sorted(self.store.rankings_for_list(need.ranking_list_id), key=lambda r: (r.rank, r.candidate_id))
        candidates = self.store.candidates_by_id([r.candidate_id for r in rankings])
        return [
            (
                ranking,
                candidates.get(ranking.candidate_id),
                exclusion_reason(
                    candidates.get(ranking.candidate_id),
                    position,
                    require_local_residence=need.require_local_residence,
                ),
            )
            for ranking in rankings
        ]
