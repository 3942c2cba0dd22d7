"""Matching engine and match confirmation.

This module provides:
- MatchingEngine: finds compatible offers for a pending request
- MatchCandidate: a scored offer with its human-readable reason
- MatchConfirmationService: atomically pairs a request with an offer
- Utility functions for candidate reasons and service summaries
"""

from .confirmation import MatchConfirmationService
from .engine import MatchingEngine
from .models import MatchCandidate, MatchConfirmation, MatchConflictError, MatchingError
from .utils import build_match_reason, build_service_summary

__all__ = [
    "MatchingEngine",
    "MatchConfirmationService",
    "MatchCandidate",
    "MatchConfirmation",
    "MatchingError",
    "MatchConflictError",
    "build_match_reason",
    "build_service_summary",
]
