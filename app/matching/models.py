"""Data models for the matching engine.

This module defines the scored candidates returned by ``find_matches`` and
the result of a confirmed match, along with the matching exceptions.
"""

from dataclasses import dataclass

from app.domain.models import NotificationRecord, ServiceDomain, ServiceOffer, ServiceRequest

FULL_COMPATIBILITY = 100


class MatchingError(Exception):
    """Base exception for matching errors."""

    pass


class MatchConflictError(MatchingError):
    """Raised when a request is already matched or an offer already taken.

    Confirmation runs as a compare-and-set, so this is also what the loser of
    two concurrent confirmations sees.
    """

    pass


@dataclass
class MatchCandidate:
    """A compatible offer for a pending request.

    Derived, never persisted.

    Attributes:
        request: The pending request
        offer: A structurally compatible offer
        compatibility_score: 0-100; every compatible offer currently scores 100
        reason: Comma-separated reputation signals of the offer's owner
    """

    request: ServiceRequest
    offer: ServiceOffer
    compatibility_score: int = FULL_COMPATIBILITY
    reason: str = ""

    def __post_init__(self):
        if not 0 <= self.compatibility_score <= 100:
            raise ValueError(
                f"compatibility_score must be between 0 and 100, got {self.compatibility_score}"
            )

    @property
    def domain(self) -> ServiceDomain:
        return self.request.domain


@dataclass
class MatchConfirmation:
    """Outcome of a confirmed match.

    Attributes:
        request: The request after it was marked matched
        offer: The offer after it was claimed
        service_summary: One-line description sent to both parties
        requester_notification: Record created for the requester
        provider_notification: Record created for the provider
    """

    request: ServiceRequest
    offer: ServiceOffer
    service_summary: str
    requester_notification: NotificationRecord
    provider_notification: NotificationRecord
