"""
Purpose: Thread-safe in-memory implementation of the dispatch store.
What it does:
- Owns dictionaries of positions, ranking lists, candidates, needs, offers and tokens
- Serialises every transaction behind one re-entrant lock
- Rolls a transaction back (including nested savepoints) when its block raises

Used by the test-suite and the dispatch simulation. The Django store in
backend/staffing/store.py is the production adapter.

Rule: The store owns persistence only. Dispatch rules live in dispatch/.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from candidates.models import Candidate
from dispatch.errors import NeedNotFound, OfferNotFound, StorageError
from vacancies.models import (
    NeedStatus,
    Offer,
    Position,
    Project,
    Ranking,
    RankingList,
    ResponseToken,
    VacancyNeed,
)


@dataclass
class InMemoryStore:
    """
    In-memory dispatch store.

    All records are stored as private copies; reads hand out copies too, so a
    caller mutating a returned object cannot bypass a transaction.
    """
    _positions: Dict[int, Position] = field(default_factory=dict)
    _ranking_lists: Dict[int, RankingList] = field(default_factory=dict)
    _rankings: Dict[int, List[Ranking]] = field(default_factory=dict)  # list_id -> rankings
    _candidates: Dict[int, Candidate] = field(default_factory=dict)
    _projects: Dict[int, Project] = field(default_factory=dict)

    _needs: Dict[int, VacancyNeed] = field(default_factory=dict)
    _offers: Dict[int, Offer] = field(default_factory=dict)
    _tokens: Dict[str, ResponseToken] = field(default_factory=dict)

    _next_need_id: int = 1
    _next_offer_id: int = 1

    _lock: threading.RLock = field(default_factory=threading.RLock, repr=False)

    # --- Seeding (roster/admin data the engine only reads) ---

    def add_position(self, position: Position) -> Position:
        with self._lock:
            self._positions[position.id] = position
        return position

    def add_ranking_list(self, ranking_list: RankingList, rankings: Iterable[Ranking] = ()) -> RankingList:
        with self._lock:
            self._ranking_lists[ranking_list.id] = ranking_list
            self._rankings.setdefault(ranking_list.id, [])
            for ranking in rankings:
                self.add_ranking(ranking)
        return ranking_list

    def add_ranking(self, ranking: Ranking) -> Ranking:
        with self._lock:
            entries = self._rankings.setdefault(ranking.list_id, [])
            if any(existing.rank == ranking.rank for existing in entries):
                raise ValueError(f"rank {ranking.rank} already used in list {ranking.list_id}")
            entries.append(ranking)
        return ranking

    def add_candidate(self, candidate: Candidate) -> Candidate:
        with self._lock:
            self._candidates[candidate.id] = candidate
        return candidate

    def add_project(self, project: Project) -> Project:
        with self._lock:
            self._projects[project.id] = project
        return project

    def add_need(self, need: VacancyNeed) -> VacancyNeed:
        with self._lock:
            stored = replace(need, id=need.id or self._next_need_id)
            self._next_need_id = max(self._next_need_id, stored.id) + 1
            self._needs[stored.id] = stored
            return replace(stored)

    # --- Transactions ---

    def _snapshot(self) -> Tuple:
        return (
            dict(self._needs),
            dict(self._offers),
            dict(self._tokens),
            self._next_need_id,
            self._next_offer_id,
        )

    def _restore(self, snapshot: Tuple) -> None:
        (
            self._needs,
            self._offers,
            self._tokens,
            self._next_need_id,
            self._next_offer_id,
        ) = snapshot

    @contextmanager
    def atomic(self, need_id: Optional[int] = None) -> Iterator["InMemoryStore"]:
        """
        One transaction. Every transaction holds the store lock, which also
        covers the per-need and per-candidate locks the engine asks for.
        """
        with self._lock:
            snapshot = self._snapshot()
            try:
                yield self
            except BaseException:
                self._restore(snapshot)
                raise

    def lock_candidate(self, candidate_id: int) -> bool:
        # covered by the transaction lock
        return True

    def lock_token(self, value: str) -> Optional[ResponseToken]:
        return self.get_token(value)

    # --- Roster reads ---

    def get_position(self, position_id: int) -> Position:
        try:
            return self._positions[position_id]
        except KeyError:
            raise StorageError(f"Position {position_id} not found") from None

    def get_ranking_list(self, list_id: int) -> RankingList:
        try:
            return self._ranking_lists[list_id]
        except KeyError:
            raise StorageError(f"Ranking list {list_id} not found") from None

    def rankings_for_list(self, list_id: int) -> List[Ranking]:
        with self._lock:
            return list(self._rankings.get(list_id, []))

    def get_candidate(self, candidate_id: int) -> Optional[Candidate]:
        return self._candidates.get(candidate_id)

    def candidates_by_id(self, candidate_ids: Iterable[int]) -> Dict[int, Candidate]:
        with self._lock:
            return {cid: self._candidates[cid] for cid in candidate_ids if cid in self._candidates}

    def get_project(self, project_id: int) -> Optional[Project]:
        return self._projects.get(project_id)

    def update_candidate(self, candidate: Candidate) -> Candidate:
        """Roster edits happen outside the engine; tests use this to simulate them."""
        return self.add_candidate(candidate)

    # --- Needs ---

    def get_need(self, need_id: int) -> VacancyNeed:
        with self._lock:
            need = self._needs.get(need_id)
            if need is None:
                raise NeedNotFound(f"Need {need_id} not found")
            return replace(need)

    def list_needs(self, *, project_id: Optional[int] = None, status: Optional[NeedStatus] = None) -> List[VacancyNeed]:
        with self._lock:
            needs = [
                replace(need)
                for need in self._needs.values()
                if (project_id is None or need.project_id == project_id)
                and (status is None or need.status == status)
            ]
        return sorted(needs, key=lambda need: need.id)

    def active_needs_in_scope(self, project_id: Optional[int]) -> List[VacancyNeed]:
        with self._lock:
            needs = [
                replace(need)
                for need in self._needs.values()
                if need.status == NeedStatus.ACTIVE and need.project_id == project_id
            ]
        return sorted(needs, key=lambda need: need.id)

    def save_need(self, need: VacancyNeed) -> VacancyNeed:
        with self._lock:
            if need.id not in self._needs:
                raise NeedNotFound(f"Need {need.id} not found")
            self._needs[need.id] = replace(need)
        return need

    def delete_need(self, need_id: int) -> None:
        with self._lock:
            self._needs.pop(need_id, None)
            doomed = {offer_id for offer_id, offer in self._offers.items() if offer.need_id == need_id}
            self._offers = {k: v for k, v in self._offers.items() if k not in doomed}
            self._tokens = {k: v for k, v in self._tokens.items() if v.offer_id not in doomed}

    # --- Offers ---

    def get_offer(self, offer_id: int) -> Offer:
        with self._lock:
            offer = self._offers.get(offer_id)
            if offer is None:
                raise OfferNotFound(f"Offer {offer_id} not found")
            return replace(offer)

    def offers_for_need(self, need_id: int) -> List[Offer]:
        with self._lock:
            offers = [replace(o) for o in self._offers.values() if o.need_id == need_id]
        return sorted(offers, key=lambda o: o.id)

    def offers_for_candidate(self, candidate_id: int) -> List[Offer]:
        with self._lock:
            offers = [replace(o) for o in self._offers.values() if o.candidate_id == candidate_id]
        return sorted(offers, key=lambda o: o.id)

    def pending_offers(self) -> List[Offer]:
        with self._lock:
            offers = [replace(o) for o in self._offers.values() if o.is_pending]
        return sorted(offers, key=lambda o: o.id)

    def add_offer(self, offer: Offer) -> Offer:
        with self._lock:
            if offer.need_id not in self._needs:
                raise NeedNotFound(f"Need {offer.need_id} not found")
            # one offer per (need, candidate)
            for existing in self._offers.values():
                if existing.need_id == offer.need_id and existing.candidate_id == offer.candidate_id:
                    raise StorageError(
                        f"Candidate {offer.candidate_id} already has an offer for need {offer.need_id}"
                    )
            stored = replace(offer, id=self._next_offer_id)
            self._next_offer_id += 1
            self._offers[stored.id] = stored
            return replace(stored)

    def save_offer(self, offer: Offer) -> Offer:
        with self._lock:
            if offer.id not in self._offers:
                raise OfferNotFound(f"Offer {offer.id} not found")
            self._offers[offer.id] = replace(offer)
        return offer

    # --- Tokens ---

    def get_token(self, value: str) -> Optional[ResponseToken]:
        with self._lock:
            token = self._tokens.get(value)
            return replace(token) if token else None

    def tokens_for_offer(self, offer_id: int) -> List[ResponseToken]:
        with self._lock:
            tokens = [replace(t) for t in self._tokens.values() if t.offer_id == offer_id]
        return sorted(tokens, key=lambda t: t.created_at)

    def add_token(self, token: ResponseToken) -> ResponseToken:
        with self._lock:
            if token.token in self._tokens:
                raise StorageError("token collision")
            self._tokens[token.token] = replace(token)
        return token

    def save_token(self, token: ResponseToken) -> ResponseToken:
        with self._lock:
            self._tokens[token.token] = replace(token)
        return token
