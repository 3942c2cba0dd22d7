"""Core domain models for matching and emergency escalation.

This module defines the data structures shared by every component:
- User: identity record read by the core (names, contacts, capabilities)
- CompanionRequest / CompanionOffer: flight companionship domain
- PickupRequest / PickupOffer: airport pickup domain
- NotificationRecord: durable message addressed to one user
- EmergencyIncident: a raised incident and its escalation state
"""

from datetime import date, datetime, time
from enum import Enum
from typing import ClassVar, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from ..utils.timestamps import ensure_utc, utc_now

ADMIN_CAPABILITY = "Admin"


class ServiceDomain(str, Enum):
    """Service categories, each with its own compatibility predicate."""

    COMPANION = "companion"
    PICKUP = "pickup"

    def __str__(self) -> str:
        return self.value

    @property
    def display_name(self) -> str:
        return "Flight Companion" if self is ServiceDomain.COMPANION else "Airport Pickup"


class IncidentStatus(str, Enum):
    """Incident lifecycle. Active is the only non-terminal state."""

    ACTIVE = "Active"
    RESOLVED = "Resolved"
    CANCELLED = "Cancelled"

    def __str__(self) -> str:
        return self.value


class IncidentType(str, Enum):
    SOS = "SOS"
    MEDICAL = "Medical"
    SAFETY = "Safety"
    TRAVEL = "Travel"

    def __str__(self) -> str:
        return self.value


class NotificationCategory(str, Enum):
    """Category tag carried by a NotificationRecord; drives its expiry."""

    MATCH_FOUND = "MatchFound"
    SERVICE_ASSIGNMENT = "ServiceAssignment"
    SERVICE_CONFIRMED = "ServiceConfirmed"
    SERVICE_CANCELLED = "ServiceCancelled"
    SERVICE_COMPLETED = "ServiceCompleted"
    PAYMENT_RECEIVED = "PaymentReceived"
    PAYMENT_FAILED = "PaymentFailed"
    RATING_REQUEST = "RatingRequest"
    MESSAGE = "Message"
    EMERGENCY_ALERT = "EmergencyAlert"
    EMERGENCY_CONFIRMATION = "EmergencyConfirmation"
    SYSTEM = "System"

    def __str__(self) -> str:
        return self.value


class SystemLevel(str, Enum):
    """Severity of a system notification."""

    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


def _utc_validator(v: Optional[datetime]) -> Optional[datetime]:
    return ensure_utc(v)


def _strip_optional(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    stripped = v.strip()
    return stripped or None


class User(BaseModel):
    """Identity record. The core only reads users."""

    id: Optional[int] = Field(None, description="Database ID")
    first_name: str = Field(..., min_length=1)
    last_name: str = Field("", description="Family name, may be empty")
    email: Optional[str] = Field(None, description="Primary email address")
    phone: Optional[str] = None
    emergency_contact_name: Optional[str] = None
    emergency_contact_phone: Optional[str] = None
    emergency_contact_email: Optional[str] = None
    is_verified: bool = False
    rating: float = Field(0.0, ge=0.0, le=5.0)
    capabilities: List[str] = Field(default_factory=list, description="Role/capability names")

    @field_validator(
        "email", "phone", "emergency_contact_name", "emergency_contact_phone", "emergency_contact_email"
    )
    @classmethod
    def strip_optional(cls, v: Optional[str]) -> Optional[str]:
        return _strip_optional(v)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def has_emergency_contact(self) -> bool:
        """True when both a contact name and phone are on file."""
        return bool(self.emergency_contact_name and self.emergency_contact_phone)

    def has_capability(self, name: str) -> bool:
        return name in self.capabilities


class ServiceRequest(BaseModel):
    """Fields shared by both request domains.

    Once ``is_matched`` is set the winning offer reference is mandatory;
    the match confirmation step is the only writer of either field.
    """

    domain: ClassVar[ServiceDomain]

    id: Optional[int] = Field(None, description="Database ID")
    user_id: int = Field(..., description="Requester identity")
    offered_price: float = Field(0.0, ge=0.0)
    is_matched: bool = False
    matched_offer_id: Optional[int] = None
    is_active: bool = True
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("created_at")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        return _utc_validator(v)

    @model_validator(mode="after")
    def validate_match_reference(self):
        if self.is_matched and self.matched_offer_id is None:
            raise ValueError("A matched request must reference its matched offer")
        return self


class ServiceOffer(BaseModel):
    """Fields shared by both offer domains."""

    domain: ClassVar[ServiceDomain]

    id: Optional[int] = Field(None, description="Database ID")
    user_id: int = Field(..., description="Provider identity")
    price: float = Field(0.0, ge=0.0)
    is_available: bool = True
    times_completed: int = Field(0, ge=0)
    average_rating: float = Field(0.0, ge=0.0, le=5.0)
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("created_at")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        return _utc_validator(v)


def _airport_code(v: str) -> str:
    code = v.strip().upper()
    if not code:
        raise ValueError("Airport code cannot be empty")
    return code


class CompanionRequest(ServiceRequest):
    """Traveller looking for a companion on a specific flight."""

    domain: ClassVar[ServiceDomain] = ServiceDomain.COMPANION

    flight_number: str = Field(..., min_length=1)
    airline: Optional[str] = None
    flight_date: date
    departure_airport: str
    arrival_airport: str
    traveler_name: Optional[str] = None
    special_needs: Optional[str] = None

    @field_validator("departure_airport", "arrival_airport")
    @classmethod
    def normalize_airport(cls, v: str) -> str:
        return _airport_code(v)

    @field_validator("flight_number")
    @classmethod
    def normalize_flight_number(cls, v: str) -> str:
        return v.strip().upper()


class CompanionOffer(ServiceOffer):
    """Traveller offering companionship on a flight they are taking."""

    domain: ClassVar[ServiceDomain] = ServiceDomain.COMPANION

    flight_number: str = Field(..., min_length=1)
    airline: Optional[str] = None
    flight_date: date
    departure_airport: str
    arrival_airport: str
    available_services: Optional[str] = None
    languages: Optional[str] = None

    @field_validator("departure_airport", "arrival_airport")
    @classmethod
    def normalize_airport(cls, v: str) -> str:
        return _airport_code(v)

    @field_validator("flight_number")
    @classmethod
    def normalize_flight_number(cls, v: str) -> str:
        return v.strip().upper()


class PickupRequest(ServiceRequest):
    """Arriving passenger asking to be collected from the airport."""

    domain: ClassVar[ServiceDomain] = ServiceDomain.PICKUP

    flight_number: Optional[str] = None
    arrival_date: date
    arrival_time: time
    airport: str
    destination_address: str = Field(..., min_length=1)
    passenger_count: int = Field(1, ge=1)
    has_luggage: bool = True
    special_instructions: Optional[str] = None

    @field_validator("airport")
    @classmethod
    def normalize_airport(cls, v: str) -> str:
        return _airport_code(v)


class PickupOffer(ServiceOffer):
    """Driver offering pickups at an airport."""

    domain: ClassVar[ServiceDomain] = ServiceDomain.PICKUP

    airport: str
    vehicle_type: Optional[str] = None
    max_passengers: int = Field(4, ge=1)
    can_handle_luggage: bool = True
    service_area: Optional[str] = None
    languages: Optional[str] = None

    @field_validator("airport")
    @classmethod
    def normalize_airport(cls, v: str) -> str:
        return _airport_code(v)


class NotificationRecord(BaseModel):
    """Durable message addressed to one user.

    Records expire passively through ``expires_at``; nothing here deletes them.
    """

    id: Optional[int] = Field(None, description="Database ID")
    user_id: int
    title: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1)
    category: NotificationCategory
    action_url: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    expires_at: Optional[datetime] = None
    is_read: bool = False

    @field_validator("created_at", "expires_at")
    @classmethod
    def ensure_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _utc_validator(v)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or utc_now())


class LinkedRequest(BaseModel):
    """Reference from an incident to the service request it concerns."""

    domain: ServiceDomain
    request_id: int

    model_config = {"frozen": True}


class EmergencyIncident(BaseModel):
    """A raised emergency and its escalation state.

    Status only ever moves Active -> Resolved or Active -> Cancelled.
    """

    id: Optional[int] = Field(None, description="Database ID")
    user_id: int
    incident_type: IncidentType
    description: str = Field(..., min_length=1, max_length=500)
    location: Optional[str] = Field(None, max_length=100)
    companion_request_id: Optional[int] = None
    pickup_request_id: Optional[int] = None
    status: IncidentStatus = IncidentStatus.ACTIVE
    emergency_contact_notified: bool = False
    admin_notified: bool = False
    created_at: datetime = Field(default_factory=utc_now)
    last_notification_sent: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    resolution: Optional[str] = Field(None, max_length=500)

    @field_validator("description")
    @classmethod
    def strip_description(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            raise ValueError("Description cannot be empty or whitespace-only")
        return stripped

    @field_validator("location")
    @classmethod
    def strip_location(cls, v: Optional[str]) -> Optional[str]:
        return _strip_optional(v)

    @field_validator("created_at", "last_notification_sent", "resolved_at")
    @classmethod
    def ensure_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _utc_validator(v)

    @model_validator(mode="after")
    def validate_single_link(self):
        if self.companion_request_id is not None and self.pickup_request_id is not None:
            raise ValueError("An incident can link at most one service request")
        return self

    @property
    def is_active(self) -> bool:
        return self.status == IncidentStatus.ACTIVE

    @property
    def linked_request(self) -> Optional[LinkedRequest]:
        if self.companion_request_id is not None:
            return LinkedRequest(domain=ServiceDomain.COMPANION, request_id=self.companion_request_id)
        if self.pickup_request_id is not None:
            return LinkedRequest(domain=ServiceDomain.PICKUP, request_id=self.pickup_request_id)
        return None
