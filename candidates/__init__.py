from .models import Candidate, CandidateStatus, Channel
from .selection import CandidateSelector, RankedCandidate, exclusion_reason, select_candidates

__all__ = [
    "Candidate",
    "CandidateStatus",
    "Channel",
    "CandidateSelector",
    "RankedCandidate",
    "exclusion_reason",
    "select_candidates",
]
