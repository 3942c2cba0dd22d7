"""Database schema definition and ORM models.

ORM models convert to and from the pydantic domain models with
``to_domain`` / ``from_domain``. Timestamps are stored as ISO 8601 strings
with a 'Z' suffix; calendar dates and times of day as ISO strings.
"""

import logging
from datetime import date, datetime, time, timezone
from typing import Optional

from sqlalchemy import Boolean, Column, Float, ForeignKey, Index, Integer, String, Text, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, relationship

from app.domain.models import (
    CompanionOffer,
    CompanionRequest,
    EmergencyIncident,
    IncidentStatus,
    IncidentType,
    NotificationCategory,
    NotificationRecord,
    PickupOffer,
    PickupRequest,
    User,
)

logger = logging.getLogger(__name__)

Base = declarative_base()


class UserModel(Base):
    """ORM model for users. Written by the identity subsystem, read by the core."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False, default="")
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    emergency_contact_name = Column(String(200), nullable=True)
    emergency_contact_phone = Column(String(50), nullable=True)
    emergency_contact_email = Column(String(255), nullable=True)
    is_verified = Column(Boolean, nullable=False, default=False)
    rating = Column(Float, nullable=False, default=0.0)

    capabilities = relationship(
        "UserCapabilityModel",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def to_domain(self) -> User:
        return User(
            id=self.id,
            first_name=self.first_name,
            last_name=self.last_name or "",
            email=self.email,
            phone=self.phone,
            emergency_contact_name=self.emergency_contact_name,
            emergency_contact_phone=self.emergency_contact_phone,
            emergency_contact_email=self.emergency_contact_email,
            is_verified=bool(self.is_verified),
            rating=self.rating or 0.0,
            capabilities=sorted(c.capability for c in self.capabilities),
        )

    @classmethod
    def from_domain(cls, user: User) -> "UserModel":
        return cls(
            id=user.id,
            first_name=user.first_name,
            last_name=user.last_name,
            email=user.email,
            phone=user.phone,
            emergency_contact_name=user.emergency_contact_name,
            emergency_contact_phone=user.emergency_contact_phone,
            emergency_contact_email=user.emergency_contact_email,
            is_verified=user.is_verified,
            rating=user.rating,
            capabilities=[UserCapabilityModel(capability=name) for name in set(user.capabilities)],
        )


class UserCapabilityModel(Base):
    """Role/capability assignment (for example "Admin")."""

    __tablename__ = "user_capabilities"

    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    capability = Column(String(50), primary_key=True)

    __table_args__ = (Index("idx_user_capabilities_capability", "capability"),)


class CompanionRequestModel(Base):
    """ORM model for companion_requests table."""

    __tablename__ = "companion_requests"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    flight_number = Column(String(20), nullable=False)
    airline = Column(String(100), nullable=True)
    flight_date = Column(String(10), nullable=False)
    departure_airport = Column(String(10), nullable=False)
    arrival_airport = Column(String(10), nullable=False)
    traveler_name = Column(String(200), nullable=True)
    special_needs = Column(Text, nullable=True)
    offered_price = Column(Float, nullable=False, default=0.0)
    is_matched = Column(Boolean, nullable=False, default=False)
    matched_offer_id = Column(Integer, ForeignKey("companion_offers.id"), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(String(50), nullable=False)

    def to_domain(self) -> CompanionRequest:
        return CompanionRequest(
            id=self.id,
            user_id=self.user_id,
            flight_number=self.flight_number,
            airline=self.airline,
            flight_date=date.fromisoformat(self.flight_date),
            departure_airport=self.departure_airport,
            arrival_airport=self.arrival_airport,
            traveler_name=self.traveler_name,
            special_needs=self.special_needs,
            offered_price=self.offered_price,
            is_matched=bool(self.is_matched),
            matched_offer_id=self.matched_offer_id,
            is_active=bool(self.is_active),
            created_at=_parse_datetime(self.created_at),
        )

    @classmethod
    def from_domain(cls, request: CompanionRequest) -> "CompanionRequestModel":
        return cls(
            id=request.id,
            user_id=request.user_id,
            flight_number=request.flight_number,
            airline=request.airline,
            flight_date=request.flight_date.isoformat(),
            departure_airport=request.departure_airport,
            arrival_airport=request.arrival_airport,
            traveler_name=request.traveler_name,
            special_needs=request.special_needs,
            offered_price=request.offered_price,
            is_matched=request.is_matched,
            matched_offer_id=request.matched_offer_id,
            is_active=request.is_active,
            created_at=_format_datetime(request.created_at),
        )


class CompanionOfferModel(Base):
    """ORM model for companion_offers table."""

    __tablename__ = "companion_offers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    flight_number = Column(String(20), nullable=False)
    airline = Column(String(100), nullable=True)
    flight_date = Column(String(10), nullable=False)
    departure_airport = Column(String(10), nullable=False)
    arrival_airport = Column(String(10), nullable=False)
    available_services = Column(Text, nullable=True)
    languages = Column(String(255), nullable=True)
    price = Column(Float, nullable=False, default=0.0)
    is_available = Column(Boolean, nullable=False, default=True)
    times_completed = Column(Integer, nullable=False, default=0)
    average_rating = Column(Float, nullable=False, default=0.0)
    created_at = Column(String(50), nullable=False)

    __table_args__ = (
        Index("idx_companion_offers_route", "flight_number", "flight_date", "departure_airport", "arrival_airport"),
    )

    def to_domain(self) -> CompanionOffer:
        return CompanionOffer(
            id=self.id,
            user_id=self.user_id,
            flight_number=self.flight_number,
            airline=self.airline,
            flight_date=date.fromisoformat(self.flight_date),
            departure_airport=self.departure_airport,
            arrival_airport=self.arrival_airport,
            available_services=self.available_services,
            languages=self.languages,
            price=self.price,
            is_available=bool(self.is_available),
            times_completed=self.times_completed or 0,
            average_rating=self.average_rating or 0.0,
            created_at=_parse_datetime(self.created_at),
        )

    @classmethod
    def from_domain(cls, offer: CompanionOffer) -> "CompanionOfferModel":
        return cls(
            id=offer.id,
            user_id=offer.user_id,
            flight_number=offer.flight_number,
            airline=offer.airline,
            flight_date=offer.flight_date.isoformat(),
            departure_airport=offer.departure_airport,
            arrival_airport=offer.arrival_airport,
            available_services=offer.available_services,
            languages=offer.languages,
            price=offer.price,
            is_available=offer.is_available,
            times_completed=offer.times_completed,
            average_rating=offer.average_rating,
            created_at=_format_datetime(offer.created_at),
        )


class PickupRequestModel(Base):
    """ORM model for pickup_requests table."""

    __tablename__ = "pickup_requests"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    flight_number = Column(String(20), nullable=True)
    arrival_date = Column(String(10), nullable=False)
    arrival_time = Column(String(8), nullable=False)
    airport = Column(String(10), nullable=False)
    destination_address = Column(Text, nullable=False)
    passenger_count = Column(Integer, nullable=False, default=1)
    has_luggage = Column(Boolean, nullable=False, default=True)
    special_instructions = Column(Text, nullable=True)
    offered_price = Column(Float, nullable=False, default=0.0)
    is_matched = Column(Boolean, nullable=False, default=False)
    matched_offer_id = Column(Integer, ForeignKey("pickup_offers.id"), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(String(50), nullable=False)

    def to_domain(self) -> PickupRequest:
        return PickupRequest(
            id=self.id,
            user_id=self.user_id,
            flight_number=self.flight_number,
            arrival_date=date.fromisoformat(self.arrival_date),
            arrival_time=time.fromisoformat(self.arrival_time),
            airport=self.airport,
            destination_address=self.destination_address,
            passenger_count=self.passenger_count,
            has_luggage=bool(self.has_luggage),
            special_instructions=self.special_instructions,
            offered_price=self.offered_price,
            is_matched=bool(self.is_matched),
            matched_offer_id=self.matched_offer_id,
            is_active=bool(self.is_active),
            created_at=_parse_datetime(self.created_at),
        )

    @classmethod
    def from_domain(cls, request: PickupRequest) -> "PickupRequestModel":
        return cls(
            id=request.id,
            user_id=request.user_id,
            flight_number=request.flight_number,
            arrival_date=request.arrival_date.isoformat(),
            arrival_time=request.arrival_time.strftime("%H:%M:%S"),
            airport=request.airport,
            destination_address=request.destination_address,
            passenger_count=request.passenger_count,
            has_luggage=request.has_luggage,
            special_instructions=request.special_instructions,
            offered_price=request.offered_price,
            is_matched=request.is_matched,
            matched_offer_id=request.matched_offer_id,
            is_active=request.is_active,
            created_at=_format_datetime(request.created_at),
        )


class PickupOfferModel(Base):
    """ORM model for pickup_offers table."""

    __tablename__ = "pickup_offers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    airport = Column(String(10), nullable=False)
    vehicle_type = Column(String(50), nullable=True)
    max_passengers = Column(Integer, nullable=False, default=4)
    can_handle_luggage = Column(Boolean, nullable=False, default=True)
    service_area = Column(String(255), nullable=True)
    languages = Column(String(255), nullable=True)
    price = Column(Float, nullable=False, default=0.0)
    is_available = Column(Boolean, nullable=False, default=True)
    times_completed = Column(Integer, nullable=False, default=0)
    average_rating = Column(Float, nullable=False, default=0.0)
    created_at = Column(String(50), nullable=False)

    __table_args__ = (Index("idx_pickup_offers_airport", "airport"),)

    def to_domain(self) -> PickupOffer:
        return PickupOffer(
            id=self.id,
            user_id=self.user_id,
            airport=self.airport,
            vehicle_type=self.vehicle_type,
            max_passengers=self.max_passengers,
            can_handle_luggage=bool(self.can_handle_luggage),
            service_area=self.service_area,
            languages=self.languages,
            price=self.price,
            is_available=bool(self.is_available),
            times_completed=self.times_completed or 0,
            average_rating=self.average_rating or 0.0,
            created_at=_parse_datetime(self.created_at),
        )

    @classmethod
    def from_domain(cls, offer: PickupOffer) -> "PickupOfferModel":
        return cls(
            id=offer.id,
            user_id=offer.user_id,
            airport=offer.airport,
            vehicle_type=offer.vehicle_type,
            max_passengers=offer.max_passengers,
            can_handle_luggage=offer.can_handle_luggage,
            service_area=offer.service_area,
            languages=offer.languages,
            price=offer.price,
            is_available=offer.is_available,
            times_completed=offer.times_completed,
            average_rating=offer.average_rating,
            created_at=_format_datetime(offer.created_at),
        )


class NotificationModel(Base):
    """ORM model for notifications table."""

    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    category = Column(String(50), nullable=False)
    action_url = Column(String(500), nullable=True)
    created_at = Column(String(50), nullable=False)
    expires_at = Column(String(50), nullable=True)
    is_read = Column(Boolean, nullable=False, default=False)

    __table_args__ = (Index("idx_notifications_user_created", "user_id", "created_at"),)

    def to_domain(self) -> NotificationRecord:
        return NotificationRecord(
            id=self.id,
            user_id=self.user_id,
            title=self.title,
            message=self.message,
            category=NotificationCategory(self.category),
            action_url=self.action_url,
            created_at=_parse_datetime(self.created_at),
            expires_at=_parse_datetime(self.expires_at),
            is_read=bool(self.is_read),
        )

    @classmethod
    def from_domain(cls, record: NotificationRecord) -> "NotificationModel":
        return cls(
            id=record.id,
            user_id=record.user_id,
            title=record.title,
            message=record.message,
            category=NotificationCategory(record.category).value,
            action_url=record.action_url,
            created_at=_format_datetime(record.created_at),
            expires_at=_format_datetime(record.expires_at),
            is_read=record.is_read,
        )


class EmergencyIncidentModel(Base):
    """ORM model for emergency_incidents table."""

    __tablename__ = "emergency_incidents"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    incident_type = Column(String(20), nullable=False)
    description = Column(String(500), nullable=False)
    location = Column(String(100), nullable=True)
    companion_request_id = Column(Integer, ForeignKey("companion_requests.id"), nullable=True)
    pickup_request_id = Column(Integer, ForeignKey("pickup_requests.id"), nullable=True)
    status = Column(String(20), nullable=False, default=IncidentStatus.ACTIVE.value)
    emergency_contact_notified = Column(Boolean, nullable=False, default=False)
    admin_notified = Column(Boolean, nullable=False, default=False)
    created_at = Column(String(50), nullable=False)
    last_notification_sent = Column(String(50), nullable=True)
    resolved_at = Column(String(50), nullable=True)
    resolution = Column(String(500), nullable=True)

    __table_args__ = (
        Index("idx_incidents_user_created", "user_id", "created_at"),
        Index("idx_incidents_status", "status"),
    )

    def to_domain(self) -> EmergencyIncident:
        return EmergencyIncident(
            id=self.id,
            user_id=self.user_id,
            incident_type=IncidentType(self.incident_type),
            description=self.description,
            location=self.location,
            companion_request_id=self.companion_request_id,
            pickup_request_id=self.pickup_request_id,
            status=IncidentStatus(self.status),
            emergency_contact_notified=bool(self.emergency_contact_notified),
            admin_notified=bool(self.admin_notified),
            created_at=_parse_datetime(self.created_at),
            last_notification_sent=_parse_datetime(self.last_notification_sent),
            resolved_at=_parse_datetime(self.resolved_at),
            resolution=self.resolution,
        )

    @classmethod
    def from_domain(cls, incident: EmergencyIncident) -> "EmergencyIncidentModel":
        return cls(
            id=incident.id,
            user_id=incident.user_id,
            incident_type=IncidentType(incident.incident_type).value,
            description=incident.description,
            location=incident.location,
            companion_request_id=incident.companion_request_id,
            pickup_request_id=incident.pickup_request_id,
            status=IncidentStatus(incident.status).value,
            emergency_contact_notified=incident.emergency_contact_notified,
            admin_notified=incident.admin_notified,
            created_at=_format_datetime(incident.created_at),
            last_notification_sent=_format_datetime(incident.last_notification_sent),
            resolved_at=_format_datetime(incident.resolved_at),
            resolution=incident.resolution,
        )


def _format_datetime(dt: Optional[datetime]) -> Optional[str]:
    """Format a datetime as a UTC ISO 8601 string with microseconds.

    The fixed width keeps lexical order equal to chronological order, which
    the newest-first queries rely on.
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    else:
        dt = dt.astimezone(timezone.utc)

    return dt.strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def _parse_datetime(dt_str: Optional[str]) -> Optional[datetime]:
    """Parse a stored timestamp back into an aware UTC datetime."""
    if not dt_str:
        return None

    dt_str = dt_str.rstrip("Z")
    try:
        dt = datetime.strptime(dt_str, "%Y-%m-%dT%H:%M:%S.%f")
    except ValueError:
        dt = datetime.strptime(dt_str, "%Y-%m-%dT%H:%M:%S")

    return dt.replace(tzinfo=timezone.utc)


def create_schema(engine: Engine) -> None:
    """Create all tables and indexes if they don't exist (idempotent).

    Args:
        engine: SQLAlchemy engine instance
    """
    logger.info("Creating database schema if not exists")

    try:
        Base.metadata.create_all(engine, checkfirst=True)
        tables = inspect(engine).get_table_names()
        logger.info(f"Database schema ready. Tables: {', '.join(tables)}")
    except Exception as e:
        logger.error(f"Failed to create database schema: {e}", exc_info=True)
        raise
