"""
Purpose: The narrow storage interface the dispatch engine consumes.
What it does:

Documents the operations every store adapter provides. The engine only ever
talks to storage through these methods; the in-memory store (tests,
simulations) and the Django store (backend) both implement them.

Atomicity:
- `atomic(need_id)` opens one transaction. With a need id it also takes the
  per-need lock, so "count accepted, accept, compare to quantity" runs as a
  single unit.
- `lock_candidate(candidate_id)` claims one candidate for the current
  transaction without waiting. False means another transaction holds it;
  the engine then skips the candidate this cycle.
- `lock_token(value)` re-reads a token under the transaction's lock.
- Any backend failure inside `atomic` rolls the transaction back and surfaces
  as dispatch.errors.StorageError.

Reads return detached copies: mutating a returned object changes nothing
until it is passed back to a `save_*` method.
"""

from __future__ import annotations

from typing import ContextManager, Dict, Iterable, List, Optional, Protocol

from candidates.models import Candidate
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


class DispatchStore(Protocol):
    # --- transactions ---
    def atomic(self, need_id: Optional[int] = None) -> ContextManager["DispatchStore"]: ...
    def lock_candidate(self, candidate_id: int) -> bool: ...
    def lock_token(self, value: str) -> Optional[ResponseToken]: ...

    # --- read-only ranking/roster inputs ---
    def get_position(self, position_id: int) -> Position: ...
    def get_ranking_list(self, list_id: int) -> RankingList: ...
    def rankings_for_list(self, list_id: int) -> List[Ranking]: ...
    def get_candidate(self, candidate_id: int) -> Optional[Candidate]: ...
    def candidates_by_id(self, candidate_ids: Iterable[int]) -> Dict[int, Candidate]: ...
    def get_project(self, project_id: int) -> Optional[Project]: ...

    # --- needs ---
    def get_need(self, need_id: int) -> VacancyNeed: ...
    def list_needs(self, *, project_id: Optional[int] = None, status: Optional[NeedStatus] = None) -> List[VacancyNeed]: ...
    def active_needs_in_scope(self, project_id: Optional[int]) -> List[VacancyNeed]: ...
    def save_need(self, need: VacancyNeed) -> VacancyNeed: ...
    def delete_need(self, need_id: int) -> None: ...

    # --- offers ---
    def get_offer(self, offer_id: int) -> Offer: ...
    def offers_for_need(self, need_id: int) -> List[Offer]: ...
    def offers_for_candidate(self, candidate_id: int) -> List[Offer]: ...
    def pending_offers(self) -> List[Offer]: ...
    def add_offer(self, offer: Offer) -> Offer: ...
    def save_offer(self, offer: Offer) -> Offer: ...

    # --- tokens ---
    def get_token(self, value: str) -> Optional[ResponseToken]: ...
    def tokens_for_offer(self, offer_id: int) -> List[ResponseToken]: ...
    def add_token(self, token: ResponseToken) -> ResponseToken: ...
    def save_token(self, token: ResponseToken) -> ResponseToken: ...
