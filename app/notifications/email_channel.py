"""Email channel: one SMTP attempt per message."""

import logging
from email.message import EmailMessage
from typing import Optional

from app.config.environment import EnvironmentConfig
from app.config.models import EmailConfig
from app.logging import get_logger

from .models import SMTPDeliveryError
from .smtp_client import SMTPClient, build_sender_address, normalize_address

logger = get_logger(__name__, component="notification")


class EmailChannel:
    """Builds a multipart message and hands it to the SMTP client.

    Failures surface as ``SMTPDeliveryError`` so the dispatcher's isolating
    wrapper can observe them. There is no retry here.
    """

    def __init__(
        self,
        env_config: EnvironmentConfig,
        email_config: Optional[EmailConfig] = None,
        smtp_client: Optional[SMTPClient] = None,
        logger_instance: Optional[logging.Logger] = None,
    ):
        self.env_config = env_config
        self.email_config = email_config or EmailConfig()
        self.smtp_client = smtp_client or SMTPClient()
        self.logger = logger_instance or logger

    @property
    def enabled(self) -> bool:
        return self.email_config.enabled and self.env_config.smtp_configured

    def send_email(
        self,
        to_address: str,
        html_body: str,
        subject: str,
        text_body: Optional[str] = None,
    ) -> None:
        """Send one email.

        Args:
            to_address: Recipient address
            html_body: HTML alternative
            subject: Subject line
            text_body: Plain-text part (a minimal fallback is used when omitted)

        Raises:
            SMTPDeliveryError: If the channel is disabled, the address is
                invalid or SMTP rejects the message
        """
        if not self.enabled:
            raise SMTPDeliveryError("Email channel is disabled (SMTP not configured)")

        try:
            recipient = normalize_address(to_address)
        except ValueError as e:
            raise SMTPDeliveryError(str(e)) from e

        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = build_sender_address(self.env_config)
        message["To"] = recipient
        message.set_content(text_body or subject)
        message.add_alternative(html_body, subtype="html")

        self.smtp_client.send(message, self.env_config, self.email_config.use_tls)
        self.logger.info(
            f"Email sent to {recipient}",
            extra={"event": "notification.email.sent", "recipient": recipient},
        )
