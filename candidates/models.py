"""
Purpose: Core data models for the candidates domain.
What it does:
Defines the structure of a Candidate and their roster status without relying on Django ORM constraints.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, Iterable, Optional


class CandidateStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    ARCHIVED = "archived"


class Channel(str, Enum):
    EMAIL = "email"
    SMS = "sms"


@dataclass(frozen=True)
class Candidate:
    """
    A purely stateless representation of a roster member at a specific point in time.
    """
    id: int
    first_name: str
    last_name: str
    email: str
    status: CandidateStatus = CandidateStatus.ACTIVE

    # Positions this candidate is qualified to fill.
    qualified_position_ids: FrozenSet[int] = field(default_factory=frozenset)

    phone: Optional[str] = None
    local_residence: bool = False
    preferred_channel: Channel = Channel.EMAIL

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def is_qualified_for(self, position_id: int) -> bool:
        return position_id in self.qualified_position_ids

    @classmethod
    def new(
        cls,
        candidate_id: int,
        first_name: str,
        last_name: str,
        email: str,
        qualified_position_ids: Iterable[int] = (),
        status: str | CandidateStatus = CandidateStatus.ACTIVE,
        phone: Optional[str] = None,
        local_residence: bool = False,
        preferred_channel: str | Channel = Channel.EMAIL,
    ) -> Candidate:
        if isinstance(status, str):
            status = CandidateStatus(status)
        if isinstance(preferred_channel, str):
            preferred_channel = Channel(preferred_channel)

        return cls(
            id=candidate_id,
            first_name=first_name,
            last_name=last_name,
            email=email,
            status=status,
            qualified_position_ids=frozenset(qualified_position_ids),
            phone=phone,
            local_residence=local_residence,
            preferred_channel=preferred_channel,
        )
