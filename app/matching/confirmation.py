"""Match confirmation: atomically pair a request with an offer, then notify.

Availability on an offer is advisory while browsing candidates. The
confirmation re-checks it with conditional UPDATEs on both rows inside one
transaction, so two concurrent confirmations can never both win.
"""

from typing import Callable, Optional

from app.domain.models import ServiceDomain
from app.logging.context import log_context
from app.logging.observability import Observability
from app.notifications import NotificationDispatcher
from app.persistence import RecordNotFoundError, ServiceRepository, get_session

from .models import MatchConfirmation, MatchConflictError, MatchingError
from .utils import build_service_summary


class MatchConfirmationService:
    """Confirms a match and informs both parties."""

    def __init__(
        self,
        dispatcher: NotificationDispatcher,
        session_factory: Callable = get_session,
        observability: Optional[Observability] = None,
    ):
        self.dispatcher = dispatcher
        self._session_factory = session_factory
        self.obs = observability or Observability.for_component(__name__, "matching")
        self.logger = self.obs.logger

    def confirm(self, domain: ServiceDomain, request_id: int, offer_id: int) -> MatchConfirmation:
        """Mark ``request_id`` matched to ``offer_id`` and claim the offer.

        Both updates commit together or not at all. Notifications are sent
        only after the commit.

        Raises:
            RecordNotFoundError: If the request or offer does not exist
            MatchingError: If the offer belongs to the requester
            MatchConflictError: If the request is already matched or inactive,
                or the offer is no longer available
            PersistenceError: If the transaction fails
        """
        domain = ServiceDomain(domain)

        with log_context(request_id=request_id, offer_id=offer_id, domain=domain.value):
            with self._session_factory() as session:
                services = ServiceRepository(session)
                request = services.get_request(domain, request_id)
                if request is None:
                    raise RecordNotFoundError(f"{domain.display_name} request", request_id)
                offer = services.get_offer(domain, offer_id)
                if offer is None:
                    raise RecordNotFoundError(f"{domain.display_name} offer", offer_id)

                if offer.user_id == request.user_id:
                    raise MatchingError(f"User {request.user_id} cannot accept their own offer")
                if request.is_matched:
                    raise MatchConflictError(
                        f"Request {request_id} is already matched to offer {request.matched_offer_id}"
                    )

                if not services.claim_offer(domain, offer_id):
                    raise MatchConflictError(f"Offer {offer_id} is no longer available")
                if not services.mark_request_matched(domain, request_id, offer_id):
                    raise MatchConflictError(f"Request {request_id} is no longer open for matching")

            request = request.model_copy(update={"is_matched": True, "matched_offer_id": offer_id})
            offer = offer.model_copy(update={"is_available": False})

            self.logger.info(
                f"Confirmed {domain.value} match: request {request_id} -> offer {offer_id}",
                extra={"event": "matching.match.confirmed"},
            )
            self.obs.track("matching.match_confirmed", domain=domain.value)

            summary = build_service_summary(request)
            requester_record, provider_record = self.dispatcher.dispatch_match_notifications(
                request.user_id, offer.user_id, domain, summary, request.id
            )

        return MatchConfirmation(
            request=request,
            offer=offer,
            service_summary=summary,
            requester_notification=requester_record,
            provider_notification=provider_record,
        )
