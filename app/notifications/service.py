"""Notification dispatcher.

Every dispatch follows the same sequence:
1. Persist a NotificationRecord in its own transaction (failure propagates)
2. Attempt real-time push and, when requested, email concurrently
3. Catch and log each channel failure without touching the other channel

The dispatcher waits for both channel attempts before returning so callers
get a DispatchResult describing what happened, but a channel outcome never
changes whether the call succeeds.
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional, Tuple

from app.config.environment import EnvironmentConfig
from app.config.models import AppConfig
from app.domain.models import (
    NotificationCategory,
    NotificationRecord,
    ServiceDomain,
    SystemLevel,
)
from app.logging.context import bind_log_context, log_context
from app.logging.observability import Observability
from app.persistence import NotificationRepository, UserRepository, get_session
from app.utils.timestamps import utc_now

from .email_channel import EmailChannel
from .expiry import ExpiryPolicy
from .models import ChannelOutcome, DispatchResult, EmailContent, SMTPDeliveryError
from .payloads import (
    MATCH_FOUND_TITLE,
    ROLE_HELPER,
    ROLE_REQUESTER,
    SERVICE_ASSIGNMENT_TITLE,
    build_match_email_context,
    build_push_payload,
    match_found_message,
    provider_action_url,
    requester_action_url,
    service_assignment_message,
    service_title,
)
from .push import NOTIFICATION_EVENT, PushChannel, build_push_channel
from .templates import MATCH_CONFIRMATION, TemplateRenderer


class NotificationDispatcher:
    """Creates notification records and delivers them over push and email.

    Channel attempts run on a private thread pool. Callers that fan out to
    several users (the emergency orchestrator) must run on a different pool,
    since they block on this one.
    """

    def __init__(
        self,
        push_channel: PushChannel,
        email_channel: Optional[EmailChannel] = None,
        template_renderer: Optional[TemplateRenderer] = None,
        expiry_policy: Optional[ExpiryPolicy] = None,
        observability: Optional[Observability] = None,
        session_factory: Callable = get_session,
        max_workers: int = 4,
        platform_name: str = "Flight Companion",
    ):
        """Initialize the dispatcher.

        Args:
            push_channel: Real-time channel
            email_channel: Email channel; email outcomes are "skipped" without one
            template_renderer: Email template renderer (default instance if None)
            expiry_policy: Category expiry lookup (defaults if None)
            observability: Logger and telemetry handle
            session_factory: Context manager yielding a database session
            max_workers: Threads for concurrent channel attempts
            platform_name: Product name used in email templates
        """
        self.push_channel = push_channel
        self.email_channel = email_channel
        self.template_renderer = template_renderer or TemplateRenderer()
        self.expiry_policy = expiry_policy or ExpiryPolicy()
        self.obs = observability or Observability.for_component(__name__, "notification")
        self.logger = self.obs.logger
        self.platform_name = platform_name
        self._session_factory = session_factory
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="notify-channel")
        self._shutdown_lock = threading.Lock()
        self._is_shutdown = False

    @classmethod
    def from_config(
        cls,
        app_config: AppConfig,
        env_config: EnvironmentConfig,
        push_channel: Optional[PushChannel] = None,
        observability: Optional[Observability] = None,
    ) -> "NotificationDispatcher":
        return cls(
            push_channel=push_channel or build_push_channel(env_config),
            email_channel=EmailChannel(env_config, app_config.email),
            expiry_policy=ExpiryPolicy.from_config(app_config.notifications),
            observability=observability,
            max_workers=app_config.notifications.channel_workers,
            platform_name=app_config.notifications.platform_name,
        )

    def deliver(
        self,
        user_id: int,
        title: str,
        message: str,
        category: NotificationCategory,
        action_url: Optional[str] = None,
        email: Optional[EmailContent] = None,
        level: Optional[SystemLevel] = None,
    ) -> DispatchResult:
        """Persist a record for ``user_id`` and attempt delivery.

        Args:
            user_id: Target user
            title: Short title
            message: Body text
            category: Category tag; decides the expiry
            action_url: Optional in-app link
            email: Email to send alongside the push, if any
            level: Severity for System notifications

        Returns:
            DispatchResult with the committed record and per-channel outcomes

        Raises:
            PersistenceError: If the record could not be stored. No channel
                is attempted in that case.
        """
        category = NotificationCategory(category)
        created_at = utc_now()
        record = NotificationRecord(
            user_id=user_id,
            title=title,
            message=message,
            category=category,
            action_url=action_url,
            created_at=created_at,
            expires_at=self.expiry_policy.expires_at(category, created_at, level),
        )

        with self._session_factory() as session:
            record = NotificationRepository(session).add(record)

        with log_context(notification_id=record.id, user_id=user_id, category=category.value):
            futures = [self._executor.submit(bind_log_context(self._attempt_push), record)]
            if email is not None:
                futures.append(self._executor.submit(bind_log_context(self._attempt_email), email))
            outcomes = [future.result() for future in futures]

            result = DispatchResult(record=record, outcomes=outcomes)
            self.logger.info(
                f"Notification {record.id} dispatched to user {user_id}",
                extra={
                    "event": "notification.dispatched",
                    "channels": {o.channel: o.status for o in outcomes},
                },
            )

        self.obs.track(
            "notification.dispatched",
            category=category.value,
            push=result.push_delivered,
            email=result.email_delivered,
        )
        return result

    def dispatch(
        self,
        target_user_id: int,
        title: str,
        body: str,
        category: NotificationCategory,
        action_ref: Optional[str] = None,
        email: Optional[EmailContent] = None,
    ) -> NotificationRecord:
        """Persist and deliver one notification; return the committed record."""
        return self.deliver(
            target_user_id, title, body, category, action_url=action_ref, email=email
        ).record

    def dispatch_match_notifications(
        self,
        request_user_id: int,
        provider_user_id: int,
        domain: ServiceDomain,
        service_summary: str,
        request_id: int,
    ) -> Tuple[NotificationRecord, NotificationRecord]:
        """Tell both parties of a confirmed match.

        The requester gets "Match Found!", the provider "Service Assignment".
        Each side has its own record, push and confirmation email; an email
        failure is only logged.

        Returns:
            (requester_record, provider_record)

        Raises:
            RecordNotFoundError: If either user does not exist (nothing is created)
            PersistenceError: If a record could not be stored
        """
        domain = ServiceDomain(domain)
        with self._session_factory() as session:
            users = UserRepository(session)
            requester = users.require(request_user_id)
            provider = users.require(provider_user_id)

        with log_context(request_id=request_id, domain=domain.value):
            requester_result = self.deliver(
                requester.id,
                MATCH_FOUND_TITLE,
                match_found_message(domain),
                NotificationCategory.MATCH_FOUND,
                action_url=requester_action_url(domain, request_id),
                email=self._match_email(requester, provider, domain, service_summary, ROLE_REQUESTER),
            )
            provider_result = self.deliver(
                provider.id,
                SERVICE_ASSIGNMENT_TITLE,
                service_assignment_message(domain),
                NotificationCategory.SERVICE_ASSIGNMENT,
                action_url=provider_action_url(domain, request_id),
                email=self._match_email(provider, requester, domain, service_summary, ROLE_HELPER),
            )

            self.logger.info(
                f"Match notifications sent for {domain.value} request {request_id}",
                extra={
                    "event": "notification.match.dispatched",
                    "requester_email": requester_result.email_delivered,
                    "provider_email": provider_result.email_delivered,
                },
            )

        return requester_result.record, provider_result.record

    def dispatch_service_notification(
        self,
        user_id: int,
        category: NotificationCategory,
        message: str,
        action_url: Optional[str] = None,
    ) -> NotificationRecord:
        """Service lifecycle update (confirmed, cancelled, paid, completed...)."""
        return self.deliver(
            user_id, service_title(category), message, category, action_url=action_url
        ).record

    def dispatch_system_notification(
        self,
        user_id: int,
        title: str,
        message: str,
        level: SystemLevel = SystemLevel.INFO,
    ) -> NotificationRecord:
        """Platform notice; expiry depends on ``level``."""
        return self.deliver(
            user_id, title, message, NotificationCategory.SYSTEM, level=SystemLevel(level)
        ).record

    def dispatch_message_notification(
        self,
        user_id: int,
        sender_name: str,
        preview: str,
        conversation_url: Optional[str] = None,
    ) -> NotificationRecord:
        return self.deliver(
            user_id,
            f"New message from {sender_name}",
            preview,
            NotificationCategory.MESSAGE,
            action_url=conversation_url,
        ).record

    def send_email(self, content: EmailContent) -> None:
        """Render and send an email that has no notification record.

        Used for recipients outside the platform such as emergency contacts.

        Raises:
            DeliveryFailure: If the channel is missing or delivery fails
            NotificationTemplateError: If rendering fails
        """
        if self.email_channel is None:
            raise SMTPDeliveryError("Email channel not configured")

        rendered = self.template_renderer.render(content.template, content.context)
        self.email_channel.send_email(
            content.to_address,
            rendered["html_body"],
            rendered["subject"],
            text_body=rendered["text_body"],
        )

    def list_for_user(
        self, user_id: int, include_expired: bool = False, unread_only: bool = False
    ) -> List[NotificationRecord]:
        with self._session_factory() as session:
            return NotificationRepository(session).list_for_user(
                user_id, include_expired=include_expired, unread_only=unread_only
            )

    def mark_read(self, notification_id: int, user_id: int) -> bool:
        with self._session_factory() as session:
            return NotificationRepository(session).mark_read(notification_id, user_id)

    def unread_count(self, user_id: int) -> int:
        with self._session_factory() as session:
            return NotificationRepository(session).unread_count(user_id)

    def shutdown(self, wait: bool = True) -> None:
        with self._shutdown_lock:
            if self._is_shutdown:
                return
            self._is_shutdown = True
        self._executor.shutdown(wait=wait)
        self.push_channel.close()

    def _match_email(self, recipient, partner, domain, service_summary, role) -> Optional[EmailContent]:
        if not recipient.email:
            self.logger.info(
                f"User {recipient.id} has no email address; skipping match email",
                extra={"event": "notification.email.skipped", "reason": "no_address"},
            )
            return None
        return EmailContent(
            to_address=recipient.email,
            template=MATCH_CONFIRMATION,
            context=build_match_email_context(
                recipient, partner, domain, service_summary, role, self.platform_name
            ),
        )

    def _attempt_push(self, record: NotificationRecord) -> ChannelOutcome:
        try:
            self.push_channel.publish_to_user(record.user_id, NOTIFICATION_EVENT, build_push_payload(record))
        except Exception as e:
            self.logger.warning(
                f"Push delivery failed for notification {record.id}: {e}",
                exc_info=True,
                extra={
                    "event": "notification.channel.failed",
                    "channel": "push",
                    "error_type": type(e).__name__,
                },
            )
            return ChannelOutcome(channel="push", status="failed", error=str(e))
        return ChannelOutcome(channel="push", status="sent")

    def _attempt_email(self, content: EmailContent) -> ChannelOutcome:
        if self.email_channel is None:
            return ChannelOutcome(channel="email", status="skipped", error="Email channel not configured")
        try:
            self.send_email(content)
        except Exception as e:
            self.logger.warning(
                f"Email delivery to {content.to_address} failed: {e}",
                exc_info=True,
                extra={
                    "event": "notification.channel.failed",
                    "channel": "email",
                    "template": content.template,
                    "error_type": type(e).__name__,
                },
            )
            return ChannelOutcome(channel="email", status="failed", error=str(e))
        return ChannelOutcome(channel="email", status="sent")
