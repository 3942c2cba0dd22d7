"""Matching engine for finding compatible offers for a pending request.

This module implements the read-only matching step that:
1. Loads the request and returns nothing if it is already matched
2. Queries available offers satisfying the domain predicate (never the
   requester's own offers), cheapest first
3. Scores each candidate and builds its reputation-based reason
"""

from typing import Callable, Dict, List, Optional

from app.domain.models import ServiceDomain, User
from app.logging.context import log_context
from app.logging.observability import Observability
from app.persistence import RecordNotFoundError, ServiceRepository, UserRepository, get_session

from .models import FULL_COMPATIBILITY, MatchCandidate
from .utils import build_match_reason

DEFAULT_MAX_RESULTS = 10


class MatchingEngine:
    """Finds compatible counterparts for a pending service request.

    Responsibilities:
    - Companion offers: same flight number, flight date and both airports
    - Pickup offers: same airport, enough seats, luggage when needed
    - Exclude the requester's own offers and unavailable offers
    - Order by price ascending, ties by insertion order

    ``find_matches`` has no side effects; calling it twice returns the same
    candidates as long as the data has not changed.
    """

    def __init__(
        self,
        default_max_results: int = DEFAULT_MAX_RESULTS,
        session_factory: Callable = get_session,
        observability: Optional[Observability] = None,
    ):
        """Initialize MatchingEngine.

        Args:
            default_max_results: Result limit used when the caller gives none
            session_factory: Context manager yielding a database session
            observability: Logger and telemetry handle
        """
        if default_max_results < 1:
            raise ValueError(f"default_max_results must be >= 1, got {default_max_results}")
        self.default_max_results = default_max_results
        self._session_factory = session_factory
        self.obs = observability or Observability.for_component(__name__, "matching")
        self.logger = self.obs.logger

    def find_matches(
        self,
        request_id: int,
        domain: ServiceDomain,
        max_results: Optional[int] = None,
    ) -> List[MatchCandidate]:
        """Return scored candidates for ``request_id``.

        Args:
            request_id: ID of the pending request
            domain: Service domain of the request
            max_results: Maximum number of candidates (default_max_results if None)

        Returns:
            Candidates ordered by ascending price; empty if the request is
            already matched or nothing is compatible

        Raises:
            ValueError: If max_results < 1
            RecordNotFoundError: If the request does not exist
            PersistenceError: If a query fails
        """
        domain = ServiceDomain(domain)
        limit = self.default_max_results if max_results is None else max_results
        if limit < 1:
            raise ValueError(f"max_results must be >= 1, got {limit}")

        with log_context(request_id=request_id, domain=domain.value):
            with self._session_factory() as session:
                services = ServiceRepository(session)
                request = services.get_request(domain, request_id)
                if request is None:
                    raise RecordNotFoundError(f"{domain.display_name} request", request_id)

                if request.is_matched:
                    self.logger.debug(
                        f"Request {request_id} already matched; no candidates",
                        extra={"event": "matching.request.already_matched"},
                    )
                    return []

                offers = services.list_available_offers(request, limit=limit)
                owners = self._load_owners(UserRepository(session), [o.user_id for o in offers])

            candidates = [
                MatchCandidate(
                    request=request,
                    offer=offer,
                    compatibility_score=FULL_COMPATIBILITY,
                    reason=build_match_reason(offer, owners.get(offer.user_id)),
                )
                for offer in offers
            ]

            self.logger.info(
                f"Found {len(candidates)} candidate(s) for {domain.value} request {request_id}",
                extra={
                    "event": "matching.candidates.found",
                    "candidate_count": len(candidates),
                    "max_results": limit,
                },
            )

        self.obs.track("matching.find_matches", domain=domain.value, candidates=len(candidates))
        return candidates

    @staticmethod
    def _load_owners(users: UserRepository, user_ids: List[int]) -> Dict[int, User]:
        owners: Dict[int, User] = {}
        for user_id in dict.fromkeys(user_ids):
            owner = users.get(user_id)
            if owner is not None:
                owners[user_id] = owner
        return owners
