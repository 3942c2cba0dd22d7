"""Result types and exceptions for the notification dispatcher."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from app.domain.models import NotificationRecord


class NotificationError(Exception):
    """Base exception for notification-related errors."""

    pass


class NotificationTemplateError(NotificationError):
    """Raised when template rendering fails due to configuration or missing variables."""

    pass


class DeliveryFailure(NotificationError):
    """A single channel could not deliver a message.

    Always recovered by the caller's isolating wrapper; never retried.
    """

    def __init__(self, message: str, channel: str = "unknown"):
        super().__init__(message)
        self.channel = channel


class SMTPDeliveryError(DeliveryFailure):
    """Raised when the email channel fails to hand a message to SMTP."""

    def __init__(self, message: str):
        super().__init__(message, channel="email")


class PushDeliveryError(DeliveryFailure):
    """Raised when no connected session (or the gateway) accepted a push."""

    def __init__(self, message: str):
        super().__init__(message, channel="push")


@dataclass
class EmailContent:
    """Email to render and send for one recipient.

    Rendering happens inside the email channel task so template errors are
    isolated like any other channel failure.

    Attributes:
        to_address: Recipient address
        template: Template base name under ``email_templates``
        context: Variables for the subject and body templates
    """

    to_address: str
    template: str
    context: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ChannelOutcome:
    """Outcome of one channel attempt.

    Attributes:
        channel: "push" or "email"
        status: "sent", "failed" or "skipped"
        error: Error message when status is "failed" or the skip reason
    """

    channel: str
    status: str
    error: Optional[str] = None

    @property
    def delivered(self) -> bool:
        return self.status == "sent"


@dataclass
class DispatchResult:
    """Persisted record plus what each channel did with it."""

    record: NotificationRecord
    outcomes: List[ChannelOutcome] = field(default_factory=list)

    def outcome(self, channel: str) -> Optional[ChannelOutcome]:
        for outcome in self.outcomes:
            if outcome.channel == channel:
                return outcome
        return None

    @property
    def push_delivered(self) -> bool:
        outcome = self.outcome("push")
        return outcome is not None and outcome.delivered

    @property
    def email_delivered(self) -> bool:
        outcome = self.outcome("email")
        return outcome is not None and outcome.delivered
