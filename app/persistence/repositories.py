"""Data access layer (repositories) for persistence operations.

Repositories wrap a caller-owned Session, return domain models rather than
ORM models and translate SQLAlchemy failures into PersistenceError.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional, Tuple, Type

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.domain.models import (
    CompanionRequest,
    EmergencyIncident,
    IncidentStatus,
    NotificationRecord,
    PickupRequest,
    ServiceDomain,
    ServiceOffer,
    ServiceRequest,
    User,
)
from app.utils.timestamps import utc_now

from .exceptions import DataIntegrityError, PersistenceError, RecordNotFoundError
from .schema import (
    Base,
    CompanionOfferModel,
    CompanionRequestModel,
    EmergencyIncidentModel,
    NotificationModel,
    PickupOfferModel,
    PickupRequestModel,
    UserCapabilityModel,
    UserModel,
    _format_datetime,
)

logger = logging.getLogger(__name__)


class UserRepository:
    """Read access to identity records plus the capability lookup."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, user_id: int) -> Optional[User]:
        """Retrieve a user by ID, or None when missing.

        Raises:
            PersistenceError: If database error occurs
        """
        try:
            model = self.session.get(UserModel, user_id)
            return model.to_domain() if model is not None else None
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving user {user_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve user: {e}") from e

    def require(self, user_id: int) -> User:
        """Retrieve a user that must exist.

        Raises:
            RecordNotFoundError: If the user does not exist
            PersistenceError: If database error occurs
        """
        user = self.get(user_id)
        if user is None:
            raise RecordNotFoundError("User", user_id)
        return user

    def add(self, user: User) -> User:
        """Insert a user with its capabilities and return it with its ID."""
        try:
            model = UserModel.from_domain(user)
            self.session.add(model)
            self.session.flush()
            return model.to_domain()
        except IntegrityError as e:
            logger.error(f"Integrity error adding user: {e}", exc_info=True)
            raise DataIntegrityError(f"Failed to add user: {e}") from e
        except SQLAlchemyError as e:
            logger.error(f"Error adding user: {e}", exc_info=True)
            raise PersistenceError(f"Failed to add user: {e}") from e

    def list_users_with_capability(self, capability: str) -> List[User]:
        """Return every user holding ``capability``, ordered by ID.

        Args:
            capability: Capability name, e.g. "Admin"

        Raises:
            PersistenceError: If database error occurs
        """
        try:
            stmt = (
                select(UserModel)
                .join(UserCapabilityModel, UserCapabilityModel.user_id == UserModel.id)
                .where(UserCapabilityModel.capability == capability)
                .order_by(UserModel.id)
            )
            return [model.to_domain() for model in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Error listing users with capability {capability}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to list users: {e}") from e


_DOMAIN_MODELS: Dict[ServiceDomain, Tuple[Type[Base], Type[Base]]] = {
    ServiceDomain.COMPANION: (CompanionRequestModel, CompanionOfferModel),
    ServiceDomain.PICKUP: (PickupRequestModel, PickupOfferModel),
}


class ServiceRepository:
    """Requests and offers for both service domains."""

    def __init__(self, session: Session):
        self.session = session

    def get_request(self, domain: ServiceDomain, request_id: int) -> Optional[ServiceRequest]:
        request_model, _ = _DOMAIN_MODELS[ServiceDomain(domain)]
        try:
            model = self.session.get(request_model, request_id)
            return model.to_domain() if model is not None else None
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving {domain} request {request_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve request: {e}") from e

    def get_offer(self, domain: ServiceDomain, offer_id: int) -> Optional[ServiceOffer]:
        _, offer_model = _DOMAIN_MODELS[ServiceDomain(domain)]
        try:
            model = self.session.get(offer_model, offer_id)
            return model.to_domain() if model is not None else None
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving {domain} offer {offer_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve offer: {e}") from e

    def add_request(self, request: ServiceRequest) -> ServiceRequest:
        request_model, _ = _DOMAIN_MODELS[request.domain]
        return self._add(request_model.from_domain(request), "request")

    def add_offer(self, offer: ServiceOffer) -> ServiceOffer:
        _, offer_model = _DOMAIN_MODELS[offer.domain]
        return self._add(offer_model.from_domain(offer), "offer")

    def _add(self, model, label: str):
        try:
            self.session.add(model)
            self.session.flush()
            return model.to_domain()
        except IntegrityError as e:
            logger.error(f"Integrity error adding {label}: {e}", exc_info=True)
            raise DataIntegrityError(f"Failed to add {label}: {e}") from e
        except SQLAlchemyError as e:
            logger.error(f"Error adding {label}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to add {label}: {e}") from e

    def list_available_offers(
        self, request: ServiceRequest, limit: Optional[int] = None
    ) -> List[ServiceOffer]:
        """Query offers compatible with ``request``, cheapest first.

        Offers must be available, satisfy the domain predicate and belong to a
        different user than the requester. Equal prices keep insertion order.

        Args:
            request: Companion or pickup request
            limit: Maximum number of offers to return

        Raises:
            PersistenceError: If database error occurs
        """
        if isinstance(request, CompanionRequest):
            offer_model = CompanionOfferModel
            predicate = [
                CompanionOfferModel.flight_number == request.flight_number,
                CompanionOfferModel.flight_date == request.flight_date.isoformat(),
                CompanionOfferModel.departure_airport == request.departure_airport,
                CompanionOfferModel.arrival_airport == request.arrival_airport,
            ]
        elif isinstance(request, PickupRequest):
            offer_model = PickupOfferModel
            predicate = [
                PickupOfferModel.airport == request.airport,
                PickupOfferModel.max_passengers >= request.passenger_count,
            ]
            if request.has_luggage:
                predicate.append(PickupOfferModel.can_handle_luggage.is_(True))
        else:
            raise TypeError(f"Unsupported request type: {type(request).__name__}")

        stmt = (
            select(offer_model)
            .where(
                offer_model.is_available.is_(True),
                offer_model.user_id != request.user_id,
                *predicate,
            )
            .order_by(offer_model.price.asc(), offer_model.id.asc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)

        try:
            return [model.to_domain() for model in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Error listing offers for {request.domain} request {request.id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to list offers: {e}") from e

    def claim_offer(self, domain: ServiceDomain, offer_id: int) -> bool:
        """Flip an offer from available to taken.

        Returns:
            True if this call made the change, False if the offer was
            already unavailable (or missing)
        """
        _, offer_model = _DOMAIN_MODELS[ServiceDomain(domain)]
        stmt = (
            update(offer_model)
            .where(offer_model.id == offer_id, offer_model.is_available.is_(True))
            .values(is_available=False)
        )
        return self._conditional_update(stmt, f"claim {domain} offer {offer_id}")

    def mark_request_matched(self, domain: ServiceDomain, request_id: int, offer_id: int) -> bool:
        """Record the winning offer on an unmatched, active request.

        Returns:
            True if this call made the change, False if the request was
            already matched, inactive or missing
        """
        request_model, _ = _DOMAIN_MODELS[ServiceDomain(domain)]
        stmt = (
            update(request_model)
            .where(
                request_model.id == request_id,
                request_model.is_matched.is_(False),
                request_model.is_active.is_(True),
            )
            .values(is_matched=True, matched_offer_id=offer_id)
        )
        return self._conditional_update(stmt, f"match {domain} request {request_id}")

    def _conditional_update(self, stmt, description: str) -> bool:
        try:
            result = self.session.execute(stmt)
            self.session.flush()
            return result.rowcount == 1
        except SQLAlchemyError as e:
            logger.error(f"Error during {description}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to {description}: {e}") from e


class NotificationRepository:
    """Notification record store."""

    def __init__(self, session: Session):
        self.session = session

    def add(self, record: NotificationRecord) -> NotificationRecord:
        """Insert a record and return it with its ID.

        Raises:
            DataIntegrityError: If the target user does not exist
            PersistenceError: If database error occurs
        """
        try:
            model = NotificationModel.from_domain(record)
            self.session.add(model)
            self.session.flush()
            return model.to_domain()
        except IntegrityError as e:
            logger.error(f"Integrity error adding notification for user {record.user_id}: {e}", exc_info=True)
            raise DataIntegrityError(f"Failed to add notification: {e}") from e
        except SQLAlchemyError as e:
            logger.error(f"Error adding notification for user {record.user_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to add notification: {e}") from e

    def get(self, notification_id: int) -> Optional[NotificationRecord]:
        try:
            model = self.session.get(NotificationModel, notification_id)
            return model.to_domain() if model is not None else None
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving notification {notification_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve notification: {e}") from e

    def list_for_user(
        self,
        user_id: int,
        include_expired: bool = False,
        unread_only: bool = False,
        now: Optional[datetime] = None,
    ) -> List[NotificationRecord]:
        """Return a user's notifications, newest first.

        Args:
            user_id: Target user
            include_expired: Include records past their expiry
            unread_only: Only records with ``is_read`` False
            now: Reference time for expiry (defaults to the current time)
        """
        stmt = select(NotificationModel).where(NotificationModel.user_id == user_id)
        stmt = self._apply_filters(stmt, include_expired, unread_only, now)
        stmt = stmt.order_by(NotificationModel.created_at.desc(), NotificationModel.id.desc())
        try:
            return [model.to_domain() for model in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Error listing notifications for user {user_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to list notifications: {e}") from e

    def unread_count(self, user_id: int, now: Optional[datetime] = None) -> int:
        stmt = select(func.count(NotificationModel.id)).where(NotificationModel.user_id == user_id)
        stmt = self._apply_filters(stmt, include_expired=False, unread_only=True, now=now)
        try:
            return int(self.session.execute(stmt).scalar_one())
        except SQLAlchemyError as e:
            logger.error(f"Error counting notifications for user {user_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to count notifications: {e}") from e

    def mark_read(self, notification_id: int, user_id: int) -> bool:
        """Mark a record read if it belongs to ``user_id``.

        Returns:
            True if the record exists and belongs to the user
        """
        stmt = (
            update(NotificationModel)
            .where(NotificationModel.id == notification_id, NotificationModel.user_id == user_id)
            .values(is_read=True)
        )
        try:
            result = self.session.execute(stmt)
            self.session.flush()
            return result.rowcount == 1
        except SQLAlchemyError as e:
            logger.error(f"Error marking notification {notification_id} read: {e}", exc_info=True)
            raise PersistenceError(f"Failed to mark notification read: {e}") from e

    @staticmethod
    def _apply_filters(stmt, include_expired: bool, unread_only: bool, now: Optional[datetime]):
        if not include_expired:
            cutoff = _format_datetime(now or utc_now())
            stmt = stmt.where(
                or_(NotificationModel.expires_at.is_(None), NotificationModel.expires_at > cutoff)
            )
        if unread_only:
            stmt = stmt.where(NotificationModel.is_read.is_(False))
        return stmt


class IncidentRepository:
    """Emergency incident store.

    State changes are conditional UPDATEs guarded on ``status = 'Active'`` so a
    terminal incident can never be modified or re-opened.
    """

    def __init__(self, session: Session):
        self.session = session

    def add(self, incident: EmergencyIncident) -> EmergencyIncident:
        try:
            model = EmergencyIncidentModel.from_domain(incident)
            self.session.add(model)
            self.session.flush()
            return model.to_domain()
        except IntegrityError as e:
            logger.error(f"Integrity error adding incident for user {incident.user_id}: {e}", exc_info=True)
            raise DataIntegrityError(f"Failed to add incident: {e}") from e
        except SQLAlchemyError as e:
            logger.error(f"Error adding incident for user {incident.user_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to add incident: {e}") from e

    def get(self, incident_id: int) -> Optional[EmergencyIncident]:
        try:
            model = self.session.get(EmergencyIncidentModel, incident_id, populate_existing=True)
            return model.to_domain() if model is not None else None
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving incident {incident_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve incident: {e}") from e

    def list_for_user(self, user_id: int) -> List[EmergencyIncident]:
        """Incidents raised by ``user_id``, newest first."""
        return self._list(
            select(EmergencyIncidentModel).where(EmergencyIncidentModel.user_id == user_id),
            f"user {user_id}",
        )

    def list_active(self) -> List[EmergencyIncident]:
        """Active incidents, newest first."""
        return self._list(
            select(EmergencyIncidentModel).where(
                EmergencyIncidentModel.status == IncidentStatus.ACTIVE.value
            ),
            "active",
        )

    def list_pending_fan_out(self, created_before: datetime) -> List[EmergencyIncident]:
        """Active incidents created before ``created_before`` that were never notified."""
        return self._list(
            select(EmergencyIncidentModel).where(
                EmergencyIncidentModel.status == IncidentStatus.ACTIVE.value,
                EmergencyIncidentModel.last_notification_sent.is_(None),
                EmergencyIncidentModel.created_at <= _format_datetime(created_before),
            ),
            "pending fan-out",
        )

    def _list(self, stmt, label: str) -> List[EmergencyIncident]:
        stmt = stmt.order_by(EmergencyIncidentModel.created_at.desc(), EmergencyIncidentModel.id.desc())
        try:
            return [model.to_domain() for model in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Error listing {label} incidents: {e}", exc_info=True)
            raise PersistenceError(f"Failed to list incidents: {e}") from e

    def close(
        self,
        incident_id: int,
        status: IncidentStatus,
        resolution: str,
        resolved_at: datetime,
    ) -> bool:
        """Move an Active incident to a terminal status.

        Returns:
            True if the incident was Active and is now ``status``
        """
        if status == IncidentStatus.ACTIVE:
            raise ValueError("Incidents cannot transition back to Active")

        stmt = (
            update(EmergencyIncidentModel)
            .where(
                EmergencyIncidentModel.id == incident_id,
                EmergencyIncidentModel.status == IncidentStatus.ACTIVE.value,
            )
            .values(
                status=IncidentStatus(status).value,
                resolution=resolution,
                resolved_at=_format_datetime(resolved_at),
            )
        )
        return self._guarded_update(stmt, incident_id, "close")

    def record_fan_out(
        self,
        incident_id: int,
        emergency_contact_notified: bool,
        admin_notified: bool,
        sent_at: datetime,
    ) -> bool:
        """Store the outcome of a fan-out on an Active incident.

        Flags are only ever raised: a False outcome leaves an earlier True in
        place.

        Returns:
            True if the incident was still Active and got updated
        """
        values = {"last_notification_sent": _format_datetime(sent_at)}
        if emergency_contact_notified:
            values["emergency_contact_notified"] = True
        if admin_notified:
            values["admin_notified"] = True

        stmt = (
            update(EmergencyIncidentModel)
            .where(
                EmergencyIncidentModel.id == incident_id,
                EmergencyIncidentModel.status == IncidentStatus.ACTIVE.value,
            )
            .values(**values)
        )
        return self._guarded_update(stmt, incident_id, "record fan-out")

    def _guarded_update(self, stmt, incident_id: int, action: str) -> bool:
        try:
            result = self.session.execute(stmt)
            self.session.flush()
            return result.rowcount == 1
        except SQLAlchemyError as e:
            logger.error(f"Error trying to {action} incident {incident_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to {action} incident: {e}") from e
