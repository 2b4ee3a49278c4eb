"""
Vacancies domain package.

Public API:
- Domain models: Position, RankingList, Ranking, Project, VacancyNeed, Offer, ResponseToken
- Status enums: NeedStatus, OfferStatus, OfferResponse, DispatchStrategy
- Configuration: DispatchPolicy, ConflictStrategy
"""
from .models import (
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
from .policy import ConflictStrategy, DispatchPolicy, default_dispatch_policy, policy_from_env

__all__ = [
    "DispatchStrategy",
    "NeedStatus",
    "Offer",
    "OfferResponse",
    "OfferStatus",
    "Position",
    "Project",
    "Ranking",
    "RankingList",
    "ResponseToken",
    "VacancyNeed",
    "ConflictStrategy",
    "DispatchPolicy",
    "default_dispatch_policy",
    "policy_from_env",
]
