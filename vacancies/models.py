"""
Purpose: Domain models for the vacancies capability.
What it does:
- Defines core data structures:
- Position (a role within a category, with a hierarchy level)
- RankingList / Ranking (ordered candidate tiers for one Position)
- Project (optional grouping of needs that share a date/engagement)
- VacancyNeed (quantity of slots for one Position, bound to one RankingList)
- Offer (one dispatch attempt of a need to one candidate)
- ResponseToken (single-use credential bound to one Offer)

Defines enums/constants:
- NeedStatus = CREATED | ACTIVE | PAUSED | COMPLETED | ARCHIVED
- OfferStatus = PENDING | ACCEPTED | DECLINED | EXPIRED | SUPERSEDED
- DispatchStrategy = SEQUENTIAL | PARALLEL | FIRST_COME

Rule: No storage calls, no dispatch logic. Models only.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NeedStatus(str, Enum):
    CREATED = "created"
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class OfferStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    EXPIRED = "expired"
    SUPERSEDED = "superseded"


class OfferResponse(str, Enum):
    ACCEPTED = "accepted"
    DECLINED = "declined"


class DispatchStrategy(str, Enum):
    """
    How many offers a need keeps outstanding and how replacements are issued.
    """
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"
    FIRST_COME = "first_come"


@dataclass(frozen=True)
class Position:
    """
    A role within a category (e.g. an instrument part).
    Lower hierarchy_level = more senior.
    """
    id: int
    name: str
    category: str = ""
    hierarchy_level: int = 0


@dataclass(frozen=True)
class RankingList:
    id: int
    position_id: int
    list_type: str  # "A", "B", "C" ...
    name: str = ""


@dataclass(frozen=True)
class Ranking:
    """
    A (list, candidate) pair. rank is unique within its list.
    """
    list_id: int
    candidate_id: int
    rank: int


@dataclass(frozen=True)
class Project:
    id: int
    name: str
    start_date: Optional[datetime] = None


@dataclass
class VacancyNeed:
    """
    A request for `quantity` filled slots for one Position.
    """
    id: Optional[int]
    position_id: int
    ranking_list_id: int
    quantity: int
    dispatch_strategy: DispatchStrategy
    response_window_hours: int

    # first_come only: cap on the initial batch (None = every eligible candidate)
    max_offers: Optional[int] = None

    project_id: Optional[int] = None
    require_local_residence: bool = False
    status: NeedStatus = NeedStatus.CREATED
    created_at: datetime = field(default_factory=utcnow)

    @property
    def response_window(self) -> timedelta:
        return timedelta(hours=self.response_window_hours)

    @property
    def is_open(self) -> bool:
        return self.status == NeedStatus.ACTIVE


@dataclass
class Offer:
    """
    One dispatch attempt of a need to one candidate.
    """
    id: Optional[int]
    need_id: int
    candidate_id: int
    status: OfferStatus
    sent_at: datetime
    expires_at: datetime

    responded_at: Optional[datetime] = None
    response: Optional[OfferResponse] = None
    reminder_sent_at: Optional[datetime] = None

    @property
    def is_pending(self) -> bool:
        return self.status == OfferStatus.PENDING


@dataclass
class ResponseToken:
    """
    Single-use, time-limited credential for one Offer.
    used_at is set at most once; revoked_at marks tokens replaced or cancelled.
    """
    token: str
    offer_id: int
    created_at: datetime
    expires_at: datetime
    used_at: Optional[datetime] = None
    revoked_at: Optional[datetime] = None

    def is_live(self, now: datetime) -> bool:
        return self.used_at is None and self.revoked_at is None and now < self.expires_at
