"""SMTP client wrapper for email delivery.

A thin layer over smtplib handling implicit TLS (port 465), STARTTLS,
optional authentication and connection cleanup.
"""

import logging
import smtplib
import ssl
from email.message import EmailMessage
from typing import Callable, Optional

from email_validator import EmailNotValidError, validate_email

from app.config.environment import EnvironmentConfig

from .models import SMTPDeliveryError

logger = logging.getLogger(__name__)


class SMTPClient:
    """Wrapper around smtplib for sending email messages.

    Opens one connection per message. Factories are injectable so tests can
    substitute mocks for ``smtplib.SMTP`` and ``smtplib.SMTP_SSL``.
    """

    def __init__(
        self,
        smtp_factory: Optional[Callable] = None,
        smtp_ssl_factory: Optional[Callable] = None,
    ):
        self.smtp_factory = smtp_factory or smtplib.SMTP
        self.smtp_ssl_factory = smtp_ssl_factory or smtplib.SMTP_SSL

    def send(
        self,
        message: EmailMessage,
        env_config: EnvironmentConfig,
        use_tls: bool = True,
    ) -> None:
        """Send an email message via SMTP.

        Args:
            message: Fully constructed EmailMessage to send
            env_config: Environment configuration with SMTP settings
            use_tls: Whether to upgrade plain connections with STARTTLS

        Raises:
            SMTPDeliveryError: If message delivery fails
        """
        smtp = None
        try:
            if env_config.smtp_port == 465:
                logger.debug(f"Connecting to {env_config.smtp_host}:465 with implicit TLS")
                smtp = self.smtp_ssl_factory(
                    env_config.smtp_host, env_config.smtp_port, context=ssl.create_default_context()
                )
            else:
                logger.debug(f"Connecting to {env_config.smtp_host}:{env_config.smtp_port}")
                smtp = self.smtp_factory(env_config.smtp_host, env_config.smtp_port)
                if use_tls:
                    smtp.starttls(context=ssl.create_default_context())

            if env_config.smtp_user and env_config.smtp_pass:
                smtp.login(env_config.smtp_user, env_config.smtp_pass)

            smtp.send_message(message)
            logger.debug(f"Message sent to {message['To']}")

        except smtplib.SMTPException as e:
            raise SMTPDeliveryError(f"SMTP error during message delivery: {e}") from e
        except OSError as e:
            raise SMTPDeliveryError(f"Network error during SMTP connection: {e}") from e
        finally:
            if smtp is not None:
                try:
                    smtp.quit()
                except (smtplib.SMTPException, OSError) as e:
                    logger.warning(f"Error closing SMTP connection: {e}")


def normalize_address(address: Optional[str]) -> str:
    """Validate a single recipient address and return its normalized form.

    Raises:
        ValueError: If the address is missing or malformed
    """
    if not address or not address.strip():
        raise ValueError("Recipient address is missing")

    try:
        return validate_email(address.strip(), check_deliverability=False).normalized
    except EmailNotValidError as e:
        raise ValueError(f"Invalid email address '{address}': {e}") from e


def build_sender_address(env_config: EnvironmentConfig) -> str:
    """Build the 'From' header.

    Prefers SMTP_SENDER_ADDRESS, then SMTP_USER, then noreply@<smtp host>.

    Returns:
        Formatted sender, e.g. "Flight Companion <noreply@example.com>"
    """
    sender_email = (
        env_config.smtp_sender_address
        or env_config.smtp_user
        or f"noreply@{env_config.smtp_host}"
    )
    return f"{env_config.smtp_sender_name} <{sender_email}>"
