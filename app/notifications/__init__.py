"""Notification record creation and multi-channel delivery.

This package provides:
- NotificationDispatcher: persists a record, then attempts push and email
- DispatchResult / ChannelOutcome: what each channel did with a record
- SessionRegistry / HttpPushChannel: real-time push channels
- EmailChannel: SMTP email channel with Jinja2 templates
- ExpiryPolicy: category-based record lifetimes
"""

from .email_channel import EmailChannel
from .expiry import ExpiryPolicy
from .models import (
    ChannelOutcome,
    DeliveryFailure,
    DispatchResult,
    EmailContent,
    NotificationError,
    NotificationTemplateError,
    PushDeliveryError,
    SMTPDeliveryError,
)
from .push import (
    NOTIFICATION_EVENT,
    HttpPushChannel,
    PushChannel,
    SessionRegistry,
    build_push_channel,
    user_group,
)
from .service import NotificationDispatcher
from .smtp_client import SMTPClient, build_sender_address, normalize_address
from .templates import TemplateRenderer

__all__ = [
    # Main service
    "NotificationDispatcher",
    # Models and results
    "ChannelOutcome",
    "DispatchResult",
    "EmailContent",
    # Exceptions
    "NotificationError",
    "NotificationTemplateError",
    "DeliveryFailure",
    "SMTPDeliveryError",
    "PushDeliveryError",
    # Channels
    "PushChannel",
    "SessionRegistry",
    "HttpPushChannel",
    "EmailChannel",
    "SMTPClient",
    "TemplateRenderer",
    "ExpiryPolicy",
    # Utilities
    "NOTIFICATION_EVENT",
    "build_push_channel",
    "build_sender_address",
    "normalize_address",
    "user_group",
]
