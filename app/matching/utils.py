"""Text helpers for match candidates and confirmations.

This module builds the human-readable strings shown to users: the reason a
candidate was suggested and the one-line summary of a matched service.
"""

from typing import List, Optional

from app.domain.models import (
    CompanionRequest,
    PickupRequest,
    ServiceDomain,
    ServiceOffer,
    ServiceRequest,
    User,
)

REASON_SEPARATOR = ", "

_COMPLETED_LABELS = {
    ServiceDomain.COMPANION: "trips helped",
    ServiceDomain.PICKUP: "pickups completed",
}

_VERIFIED_LABELS = {
    ServiceDomain.COMPANION: "Verified user",
    ServiceDomain.PICKUP: "Verified driver",
}

_FALLBACK_REASONS = {
    ServiceDomain.COMPANION: "Available for your flight",
    ServiceDomain.PICKUP: "Available for pickup",
}


def build_match_reason(offer: ServiceOffer, owner: Optional[User]) -> str:
    """Describe why an offer is worth considering.

    Combines the offer's rating and completed-service count with the owner's
    verification status. Offers with no signals get a domain fallback.

    Args:
        offer: Candidate offer
        owner: The offer's owner, or None if the identity record is missing

    Returns:
        e.g. "4.8 star rating, 12 trips helped, Verified user"
    """
    domain = offer.domain
    reasons: List[str] = []

    if offer.average_rating > 0:
        reasons.append(f"{offer.average_rating:.1f} star rating")

    if offer.times_completed > 0:
        reasons.append(f"{offer.times_completed} {_COMPLETED_LABELS[domain]}")

    if owner is not None and owner.is_verified:
        reasons.append(_VERIFIED_LABELS[domain])

    if not reasons:
        return _FALLBACK_REASONS[domain]
    return REASON_SEPARATOR.join(reasons)


def build_service_summary(request: ServiceRequest) -> str:
    """One-line description of a request for confirmation messages.

    Examples:
        "Flight NZ289 from AKL to PVG on Sep 01, 2025"
        "Pickup from AKL to 12 Queen St on Sep 01, 2025 at 14:30"
    """
    if isinstance(request, CompanionRequest):
        return (
            f"Flight {request.flight_number} from {request.departure_airport} "
            f"to {request.arrival_airport} on {request.flight_date.strftime('%b %d, %Y')}"
        )
    if isinstance(request, PickupRequest):
        return (
            f"Pickup from {request.airport} to {request.destination_address} "
            f"on {request.arrival_date.strftime('%b %d, %Y')} "
            f"at {request.arrival_time.strftime('%H:%M')}"
        )
    raise TypeError(f"Unsupported request type: {type(request).__name__}")
