"""Domain models for matching and emergency escalation."""

from .models import (
    ADMIN_CAPABILITY,
    CompanionOffer,
    CompanionRequest,
    EmergencyIncident,
    IncidentStatus,
    IncidentType,
    LinkedRequest,
    NotificationCategory,
    NotificationRecord,
    PickupOffer,
    PickupRequest,
    ServiceDomain,
    ServiceOffer,
    ServiceRequest,
    SystemLevel,
    User,
)

__all__ = [
    "ADMIN_CAPABILITY",
    # Enums
    "ServiceDomain",
    "IncidentStatus",
    "IncidentType",
    "NotificationCategory",
    "SystemLevel",
    # Entities
    "User",
    "ServiceRequest",
    "ServiceOffer",
    "CompanionRequest",
    "CompanionOffer",
    "PickupRequest",
    "PickupOffer",
    "NotificationRecord",
    "LinkedRequest",
    "EmergencyIncident",
]
