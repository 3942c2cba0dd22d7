"""Payloads, message texts and template contexts for notifications.

Everything a user reads (titles, messages, email variables) and the shape of
the real-time event payload is built here so the dispatcher and the
emergency orchestrator stay free of copy.
"""

from typing import Any, Dict, Optional

from app.domain.models import (
    EmergencyIncident,
    NotificationCategory,
    NotificationRecord,
    ServiceDomain,
    User,
)
from app.utils.timestamps import format_timestamp

MATCH_FOUND_TITLE = "Match Found!"
SERVICE_ASSIGNMENT_TITLE = "Service Assignment"
EMERGENCY_SELF_TITLE = "Emergency Alert Sent"
EMERGENCY_COUNTERPART_TITLE = "Emergency Alert - Matched User"
EMERGENCY_ADMIN_TITLE = "Emergency Alert"

SERVICE_TITLES: Dict[NotificationCategory, str] = {
    NotificationCategory.SERVICE_CONFIRMED: "Service Confirmed",
    NotificationCategory.SERVICE_CANCELLED: "Service Cancelled",
    NotificationCategory.PAYMENT_RECEIVED: "Payment Received",
    NotificationCategory.PAYMENT_FAILED: "Payment Failed",
    NotificationCategory.SERVICE_COMPLETED: "Service Completed",
    NotificationCategory.RATING_REQUEST: "Please Rate Your Experience",
}
DEFAULT_SERVICE_TITLE = "Service Update"

ROLE_REQUESTER = "requester"
ROLE_HELPER = "helper"


def service_title(category: NotificationCategory) -> str:
    return SERVICE_TITLES.get(NotificationCategory(category), DEFAULT_SERVICE_TITLE)


def match_found_message(domain: ServiceDomain) -> str:
    return f"Great news! We found a match for your {domain.display_name.lower()} request."


def service_assignment_message(domain: ServiceDomain) -> str:
    return f"You have been matched to provide {domain.display_name.lower()} service."


def requester_action_url(domain: ServiceDomain, request_id: int) -> str:
    return f"/{domain.value}/matches/{request_id}"


def provider_action_url(domain: ServiceDomain, request_id: int) -> str:
    return f"/{domain.value}/service/{request_id}"


def incident_action_url(incident_id: int) -> str:
    return f"/emergency/{incident_id}"


def emergency_self_message(incident: EmergencyIncident) -> str:
    return (
        f"Your {incident.incident_type.value.lower()} emergency alert has been sent. "
        "Help is on the way."
    )


def emergency_counterpart_message(domain: ServiceDomain) -> str:
    return (
        f"Your matched user for {domain.display_name} service has triggered an "
        "emergency alert. Please check on their safety."
    )


def emergency_admin_message(incident: EmergencyIncident, raiser: User) -> str:
    where = f" at {incident.location}" if incident.location else ""
    return (
        f"{raiser.full_name} raised a {incident.incident_type.value} emergency{where}: "
        f"{incident.description}"
    )


def build_push_payload(record: NotificationRecord) -> Dict[str, Any]:
    """Event body sent to connected sessions for a new record."""
    return {
        "id": record.id,
        "title": record.title,
        "message": record.message,
        "type": record.category.value,
        "actionUrl": record.action_url,
        "createdAt": format_timestamp(record.created_at),
        "isRead": False,
    }


def build_match_email_context(
    recipient: User,
    partner: User,
    domain: ServiceDomain,
    service_summary: str,
    role: str,
    platform_name: str,
) -> Dict[str, Any]:
    """Context for the match_confirmation templates.

    Args:
        recipient: User receiving this email
        partner: The other party of the match
        domain: Service domain of the match
        service_summary: One-line description of the service
        role: ROLE_REQUESTER or ROLE_HELPER
        platform_name: Product name shown in the footer
    """
    if role not in (ROLE_REQUESTER, ROLE_HELPER):
        raise ValueError(f"Unknown match role: {role}")

    return {
        "recipient_name": recipient.first_name,
        "partner_name": partner.full_name,
        "service_type": domain.display_name,
        "service_details": service_summary,
        "role": role,
        "platform_name": platform_name,
    }


def build_emergency_context(
    incident: EmergencyIncident,
    raiser: User,
    platform_name: str,
    recipient_name: Optional[str] = None,
    **extra: Any,
) -> Dict[str, Any]:
    """Context shared by the three emergency templates.

    Optional values are rendered as empty strings so StrictUndefined never
    trips on a missing location or phone number.
    """
    context = {
        "incident_id": incident.id,
        "incident_type": incident.incident_type.value,
        "description": incident.description,
        "location": incident.location or "",
        "reported_at": format_timestamp(incident.created_at),
        "user_name": raiser.full_name,
        "user_email": raiser.email or "",
        "user_phone": raiser.phone or "",
        "recipient_name": recipient_name or "",
        "platform_name": platform_name,
    }
    context.update(extra)
    return context
