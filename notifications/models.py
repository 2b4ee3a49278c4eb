"""
Purpose: Data structures shared by the notification layer.
What it does:
- Recipient / Notification: what to send, to whom, on which channel
- TemplateKind: the template families the engine asks the transport for
- ProcessingMode: volume-dependent batching mode
- BatchReport / SendProgress: outcome and live progress of a send session

Rule: No transport calls here. Models only.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from candidates.models import Candidate, Channel


class TemplateKind(str, Enum):
    REQUEST = "request"
    REMINDER = "reminder"
    CONFIRMATION = "confirmation"
    POSITION_FILLED = "position_filled"


class ProcessingMode(str, Enum):
    INSTANT = "instant"
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"


class SessionStatus(str, Enum):
    IDLE = "idle"
    SENDING = "sending"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass(frozen=True)
class Recipient:
    candidate_id: int
    name: str
    email: str
    phone: Optional[str] = None
    channel: Channel = Channel.EMAIL

    @property
    def address(self) -> str:
        if self.channel == Channel.SMS and self.phone:
            return self.phone
        return self.email

    @classmethod
    def from_candidate(cls, candidate: Candidate) -> Recipient:
        channel = candidate.preferred_channel
        # fall back to email when no phone number is on file
        if channel == Channel.SMS and not candidate.phone:
            channel = Channel.EMAIL
        return cls(
            candidate_id=candidate.id,
            name=candidate.full_name,
            email=candidate.email,
            phone=candidate.phone,
            channel=channel,
        )


@dataclass(frozen=True)
class Notification:
    recipient: Recipient
    template_kind: TemplateKind
    variables: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SendFailure:
    recipient: Recipient
    template_kind: TemplateKind
    error: str


@dataclass
class BatchReport:
    """
    Outcome of one send session. Partial success is normal: failures are
    listed per recipient and never abort the rest of the batch.
    """
    session_id: str
    mode: ProcessingMode
    total: int
    sent: int = 0
    failures: List[SendFailure] = field(default_factory=list)
    status: SessionStatus = SessionStatus.SENDING

    @property
    def failed(self) -> int:
        return len(self.failures)


@dataclass(frozen=True)
class SendProgress:
    total: int
    sent: int
    failed: int
    current_batch: List[str]
    estimated_seconds_remaining: float
    status: SessionStatus

    def as_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "sent": self.sent,
            "failed": self.failed,
            "currentBatch": list(self.current_batch),
            "estimatedSecondsRemaining": self.estimated_seconds_remaining,
            "status": self.status.value,
        }


IDLE_PROGRESS = SendProgress(
    total=0,
    sent=0,
    failed=0,
    current_batch=[],
    estimated_seconds_remaining=0,
    status=SessionStatus.IDLE,
)
