"""Environment variable loading and validation."""

import os
from typing import Optional

from .exceptions import ConfigurationError

DEFAULT_DATABASE_URL = "sqlite:///./data/flight_companion.db"


class EnvironmentConfig:
    """Environment variable configuration holder.

    SMTP settings are optional. When ``smtp_host`` is missing the email
    channel runs disabled and every send is reported as a delivery failure.
    """

    def __init__(
        self,
        smtp_host: Optional[str] = None,
        smtp_port: Optional[int] = None,
        smtp_user: Optional[str] = None,
        smtp_pass: Optional[str] = None,
        smtp_sender_name: Optional[str] = None,
        smtp_sender_address: Optional[str] = None,
        log_level: Optional[str] = None,
        database_url: Optional[str] = None,
        push_gateway_url: Optional[str] = None,
        push_gateway_token: Optional[str] = None,
    ):
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port or 587
        self.smtp_user = smtp_user
        self.smtp_pass = smtp_pass
        self.smtp_sender_name = smtp_sender_name or "Flight Companion"
        self.smtp_sender_address = smtp_sender_address
        self.log_level = log_level
        self.database_url = database_url or DEFAULT_DATABASE_URL
        self.push_gateway_url = push_gateway_url
        self.push_gateway_token = push_gateway_token

    @property
    def smtp_configured(self) -> bool:
        return bool(self.smtp_host)


def load_environment_config() -> EnvironmentConfig:
    """
    Load and validate environment variables.

    Optional environment variables:
    - DATABASE_URL: SQLAlchemy URL (default: sqlite:///./data/flight_companion.db)
    - SMTP_HOST / SMTP_PORT: SMTP server; email is disabled without SMTP_HOST
    - SMTP_USER / SMTP_PASS: SMTP credentials, both or neither
    - SMTP_SENDER_NAME / SMTP_SENDER_ADDRESS: From header
    - PUSH_GATEWAY_URL / PUSH_GATEWAY_TOKEN: external realtime gateway
    - LOG_LEVEL: Override log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)

    Returns:
        EnvironmentConfig object with validated values

    Raises:
        ConfigurationError: If any variable is malformed
    """
    errors = []

    smtp_host = os.getenv("SMTP_HOST") or None
    smtp_port_str = os.getenv("SMTP_PORT")
    smtp_user = os.getenv("SMTP_USER") or None
    smtp_pass = os.getenv("SMTP_PASS") or None
    log_level = os.getenv("LOG_LEVEL") or None
    push_gateway_url = os.getenv("PUSH_GATEWAY_URL") or None

    smtp_port = None
    if smtp_port_str:
        try:
            smtp_port = int(smtp_port_str)
            if smtp_port < 1 or smtp_port > 65535:
                errors.append(f"Invalid SMTP_PORT: {smtp_port}. Must be between 1 and 65535.")
        except ValueError:
            errors.append(f"Invalid SMTP_PORT: '{smtp_port_str}'. Must be a valid integer.")

    if smtp_user and not smtp_pass:
        errors.append("SMTP_USER is set but SMTP_PASS is not. Both must be set for authentication.")
    elif smtp_pass and not smtp_user:
        errors.append("SMTP_PASS is set but SMTP_USER is not. Both must be set for authentication.")

    if log_level:
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if log_level.upper() not in valid_levels:
            errors.append(
                f"Invalid LOG_LEVEL: '{log_level}'. Must be one of: {', '.join(valid_levels)}"
            )

    if push_gateway_url and not push_gateway_url.startswith(("http://", "https://")):
        errors.append(f"Invalid PUSH_GATEWAY_URL: '{push_gateway_url}'. Must be an http(s) URL.")

    if errors:
        raise ConfigurationError(
            "Environment variable validation failed",
            errors=errors,
            suggestions=[
                "Copy .env.example to .env and adjust the values",
                "Verify SMTP_PORT is a number between 1 and 65535",
            ],
        )

    return EnvironmentConfig(
        smtp_host=smtp_host,
        smtp_port=smtp_port,
        smtp_user=smtp_user,
        smtp_pass=smtp_pass,
        smtp_sender_name=os.getenv("SMTP_SENDER_NAME") or None,
        smtp_sender_address=os.getenv("SMTP_SENDER_ADDRESS") or None,
        log_level=log_level,
        database_url=os.getenv("DATABASE_URL") or None,
        push_gateway_url=push_gateway_url,
        push_gateway_token=os.getenv("PUSH_GATEWAY_TOKEN") or None,
    )
