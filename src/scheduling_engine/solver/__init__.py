"""CP-SAT solver components."""

from .selector import CandidateSelector

__all__ = [
    "CandidateSelector",
]
