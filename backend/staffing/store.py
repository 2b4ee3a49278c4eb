"""
Purpose: Django ORM implementation of the dispatch store.
What it does:
- atomic(need_id) = transaction.atomic() + SELECT ... FOR UPDATE on the need row,
  so accepts, expiries and top-ups of one need are serialised across processes
- lock_candidate takes a candidate row lock without waiting (SKIP LOCKED), so
  two needs claiming overlapping candidates in different orders cannot deadlock
- lock_token takes a row lock inside the current transaction
- converts ORM rows to the plain dataclasses the engine works with
- database failures surface as StorageError (the transaction is rolled back)
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Dict, Iterable, List, Optional

from django.db import DatabaseError, transaction

from candidates.models import Candidate, CandidateStatus, Channel
from dispatch.errors import NeedNotFound, OfferNotFound, StorageError
from vacancies.models import (
    DispatchStrategy,
    NeedStatus,
    Offer,
    OfferResponse,
    OfferStatus,
    Position,
    Project,
    Ranking,
    RankingList,
    ResponseToken,
    VacancyNeed,
)

from . import models


# --- row -> domain ---

def to_position(row: models.Position) -> Position:
    return Position(id=row.id, name=row.name, category=row.category, hierarchy_level=row.hierarchy_level)


def to_candidate(row: models.Candidate) -> Candidate:
    return Candidate(
        id=row.id,
        first_name=row.first_name,
        last_name=row.last_name,
        email=row.email,
        status=CandidateStatus(row.status),
        qualified_position_ids=frozenset(p.id for p in row.qualifications.all()),
        phone=str(row.phone_number) if row.phone_number else None,
        local_residence=row.local_residence,
        preferred_channel=Channel(row.preferred_channel),
    )


def to_need(row: models.VacancyNeed) -> VacancyNeed:
    return VacancyNeed(
        id=row.id,
        position_id=row.position_id,
        ranking_list_id=row.ranking_list_id,
        quantity=row.quantity,
        dispatch_strategy=DispatchStrategy(row.dispatch_strategy),
        response_window_hours=row.response_window_hours,
        max_offers=row.max_offers,
        project_id=row.project_id,
        require_local_residence=row.require_local_residence,
        status=NeedStatus(row.status),
        created_at=row.created_at,
    )


def to_offer(row: models.Offer) -> Offer:
    return Offer(
        id=row.id,
        need_id=row.need_id,
        candidate_id=row.candidate_id,
        status=OfferStatus(row.status),
        sent_at=row.sent_at,
        expires_at=row.expires_at,
        responded_at=row.responded_at,
        response=OfferResponse(row.response) if row.response else None,
        reminder_sent_at=row.reminder_sent_at,
    )


def to_token(row: models.ResponseToken) -> ResponseToken:
    return ResponseToken(
        token=row.token,
        offer_id=row.offer_id,
        created_at=row.created_at,
        expires_at=row.expires_at,
        used_at=row.used_at,
        revoked_at=row.revoked_at,
    )


class DjangoStore:
    # --- transactions ---

    @contextmanager
    def atomic(self, need_id: Optional[int] = None):
        try:
            with transaction.atomic():
                if need_id is not None:
                    list(models.VacancyNeed.objects.select_for_update().filter(pk=need_id).values_list('pk', flat=True))
                yield self
        except DatabaseError as exc:
            raise StorageError(str(exc)) from exc

    def lock_candidate(self, candidate_id: int) -> bool:
        # skip_locked: a row held by another need's cycle reads as absent instead of blocking
        locked = models.Candidate.objects.select_for_update(skip_locked=True).filter(pk=candidate_id)
        return locked.values_list('pk', flat=True).first() is not None

    def lock_token(self, value: str) -> Optional[ResponseToken]:
        row = models.ResponseToken.objects.select_for_update().filter(token=value).first()
        return to_token(row) if row else None

    # --- roster reads ---

    def get_position(self, position_id: int) -> Position:
        try:
            return to_position(models.Position.objects.get(pk=position_id))
        except models.Position.DoesNotExist:
            raise StorageError(f"Position {position_id} not found") from None

    def get_ranking_list(self, list_id: int) -> RankingList:
        try:
            row = models.RankingList.objects.get(pk=list_id)
        except models.RankingList.DoesNotExist:
            raise StorageError(f"Ranking list {list_id} not found") from None
        return RankingList(id=row.id, position_id=row.position_id, list_type=row.list_type, name=row.name)

    def rankings_for_list(self, list_id: int) -> List[Ranking]:
        return [
            Ranking(list_id=row.ranking_list_id, candidate_id=row.candidate_id, rank=row.rank)
            for row in models.Ranking.objects.filter(ranking_list_id=list_id)
        ]

    def get_candidate(self, candidate_id: int) -> Optional[Candidate]:
        row = models.Candidate.objects.prefetch_related('qualifications').filter(pk=candidate_id).first()
        return to_candidate(row) if row else None

    def candidates_by_id(self, candidate_ids: Iterable[int]) -> Dict[int, Candidate]:
        rows = models.Candidate.objects.prefetch_related('qualifications').filter(pk__in=list(candidate_ids))
        return {row.id: to_candidate(row) for row in rows}

    def get_project(self, project_id: int) -> Optional[Project]:
        row = models.Project.objects.filter(pk=project_id).first()
        return Project(id=row.id, name=row.name, start_date=row.start_date) if row else None

    # --- needs ---

    def get_need(self, need_id: int) -> VacancyNeed:
        try:
            return to_need(models.VacancyNeed.objects.get(pk=need_id))
        except models.VacancyNeed.DoesNotExist:
            raise NeedNotFound(f"Need {need_id} not found") from None

    def list_needs(self, *, project_id: Optional[int] = None, status: Optional[NeedStatus] = None) -> List[VacancyNeed]:
        rows = models.VacancyNeed.objects.order_by('id')
        if project_id is not None:
            rows = rows.filter(project_id=project_id)
        if status is not None:
            rows = rows.filter(status=status.value)
        return [to_need(row) for row in rows]

    def active_needs_in_scope(self, project_id: Optional[int]) -> List[VacancyNeed]:
        rows = models.VacancyNeed.objects.filter(status=NeedStatus.ACTIVE.value, project_id=project_id).order_by('id')
        return [to_need(row) for row in rows]

    def save_need(self, need: VacancyNeed) -> VacancyNeed:
        updated = models.VacancyNeed.objects.filter(pk=need.id).update(
            quantity=need.quantity,
            status=need.status.value,
            max_offers=need.max_offers,
            response_window_hours=need.response_window_hours,
            require_local_residence=need.require_local_residence,
        )
        if not updated:
            raise NeedNotFound(f"Need {need.id} not found")
        return need

    def delete_need(self, need_id: int) -> None:
        # offers and tokens cascade
        models.VacancyNeed.objects.filter(pk=need_id).delete()

    # --- offers ---

    def get_offer(self, offer_id: int) -> Offer:
        try:
            return to_offer(models.Offer.objects.get(pk=offer_id))
        except models.Offer.DoesNotExist:
            raise OfferNotFound(f"Offer {offer_id} not found") from None

    def offers_for_need(self, need_id: int) -> List[Offer]:
        return [to_offer(row) for row in models.Offer.objects.filter(need_id=need_id).order_by('id')]

    def offers_for_candidate(self, candidate_id: int) -> List[Offer]:
        return [to_offer(row) for row in models.Offer.objects.filter(candidate_id=candidate_id).order_by('id')]

    def pending_offers(self) -> List[Offer]:
        rows = models.Offer.objects.filter(status=OfferStatus.PENDING.value).order_by('id')
        return [to_offer(row) for row in rows]

    def add_offer(self, offer: Offer) -> Offer:
        row = models.Offer.objects.create(
            need_id=offer.need_id,
            candidate_id=offer.candidate_id,
            status=offer.status.value,
            sent_at=offer.sent_at,
            expires_at=offer.expires_at,
        )
        return to_offer(row)

    def save_offer(self, offer: Offer) -> Offer:
        updated = models.Offer.objects.filter(pk=offer.id).update(
            status=offer.status.value,
            response=offer.response.value if offer.response else None,
            responded_at=offer.responded_at,
            reminder_sent_at=offer.reminder_sent_at,
        )
        if not updated:
            raise OfferNotFound(f"Offer {offer.id} not found")
        return offer

    # --- tokens ---

    def get_token(self, value: str) -> Optional[ResponseToken]:
        row = models.ResponseToken.objects.filter(token=value).first()
        return to_token(row) if row else None

    def tokens_for_offer(self, offer_id: int) -> List[ResponseToken]:
        rows = models.ResponseToken.objects.filter(offer_id=offer_id).order_by('created_at', 'id')
        return [to_token(row) for row in rows]

    def add_token(self, token: ResponseToken) -> ResponseToken:
        models.ResponseToken.objects.create(
            token=token.token,
            offer_id=token.offer_id,
            created_at=token.created_at,
            expires_at=token.expires_at,
        )
        return token

    def save_token(self, token: ResponseToken) -> ResponseToken:
        models.ResponseToken.objects.filter(token=token.token).update(
            used_at=token.used_at,
            revoked_at=token.revoked_at,
        )
        return token
