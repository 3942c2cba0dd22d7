"""Test helpers: channel doubles and database seeding."""

from .fakes import FailingPushChannel, RecordingEmailChannel, RecordingPushChannel
from .seed import (
    FLIGHT_DATE,
    create_admin,
    create_companion_offer,
    create_companion_request,
    create_pickup_offer,
    create_pickup_request,
    create_user,
    sqlite_url,
)

__all__ = [
    "RecordingPushChannel",
    "FailingPushChannel",
    "RecordingEmailChannel",
    "FLIGHT_DATE",
    "sqlite_url",
    "create_user",
    "create_admin",
    "create_companion_request",
    "create_companion_offer",
    "create_pickup_request",
    "create_pickup_offer",
]
