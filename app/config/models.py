"""Configuration schema models using Pydantic."""

from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from ..domain.models import NotificationCategory
from .duration import DurationParseError, parse_duration, validate_duration_range


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(str, Enum):
    """Log output formats."""

    JSON = "json"
    KEY_VALUE = "key-value"


def _checked_duration(value: str, min_seconds: int, max_seconds: int, label: str) -> int:
    try:
        seconds = parse_duration(value)
        validate_duration_range(seconds, min_seconds=min_seconds, max_seconds=max_seconds, label=label)
    except DurationParseError as e:
        raise ValueError(str(e)) from e
    return seconds


class MatchingConfig(BaseModel):
    """Matching engine settings."""

    max_results: int = Field(10, ge=1, le=100, description="Default candidate list size")


class NotificationsConfig(BaseModel):
    """Notification dispatcher settings."""

    platform_name: str = Field("Flight Companion", min_length=1, description="Name used in emails")
    emergency_number: str = Field(
        "111", min_length=1, description="Local emergency services number quoted in alerts"
    )
    channel_workers: int = Field(
        4, ge=1, le=64, description="Threads used for concurrent push/email delivery"
    )
    expiry_overrides: Dict[str, str] = Field(
        default_factory=dict,
        description="Per-category expiry overrides, e.g. {'PaymentReceived': '45d'}",
    )

    @field_validator("platform_name", "emergency_number")
    @classmethod
    def strip_whitespace(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            raise ValueError("Field cannot be empty or whitespace-only")
        return stripped

    @field_validator("expiry_overrides")
    @classmethod
    def validate_expiry_overrides(cls, v: Dict[str, str]) -> Dict[str, str]:
        """Reject unknown categories and malformed durations."""
        known = {category.value for category in NotificationCategory}
        for category, duration in v.items():
            if category not in known:
                raise ValueError(
                    f"Unknown notification category '{category}'. "
                    f"Expected one of: {', '.join(sorted(known))}"
                )
            _checked_duration(duration, 3600, 365 * 86400, f"Expiry for {category}")
        return v

    def expiry_override_seconds(self) -> Dict[str, int]:
        return {category: parse_duration(duration) for category, duration in self.expiry_overrides.items()}


class EmergencyConfig(BaseModel):
    """Emergency fan-out settings."""

    fan_out_workers: int = Field(4, ge=1, le=64, description="Concurrent incident fan-outs")
    branch_workers: int = Field(
        8, ge=4, le=64, description="Threads shared by fan-out branches (self, contact, admins, counterpart)"
    )
    max_attempts: int = Field(
        3, ge=1, le=10, description="Fan-out attempts per incident before giving up"
    )
    retry_initial_delay: float = Field(
        1.0, ge=0.0, le=60.0, description="Delay before the first fan-out retry (seconds)"
    )
    retry_backoff_multiplier: float = Field(
        2.0, ge=1.0, le=5.0, description="Exponential backoff multiplier for retries"
    )
    retained_results: int = Field(
        256, ge=0, le=100000, description="Finished fan-out results kept in memory for late waiters"
    )
    sweep_interval: str = Field("5m", description="How often pending fan-outs are re-submitted")
    retry_after: str = Field(
        "2m", description="Age after which an un-notified Active incident is re-submitted"
    )

    # Computed fields
    sweep_interval_seconds: Optional[int] = None
    retry_after_seconds: Optional[int] = None

    @field_validator("sweep_interval")
    @classmethod
    def validate_sweep_interval(cls, v: str) -> str:
        _checked_duration(v, 30, 86400, "Sweep interval")
        return v

    @field_validator("retry_after")
    @classmethod
    def validate_retry_after(cls, v: str) -> str:
        _checked_duration(v, 10, 86400, "Retry threshold")
        return v

    @model_validator(mode="after")
    def compute_seconds(self):
        self.sweep_interval_seconds = parse_duration(self.sweep_interval)
        self.retry_after_seconds = parse_duration(self.retry_after)
        return self


class EmailConfig(BaseModel):
    """Email channel settings."""

    enabled: bool = Field(True, description="Send emails when SMTP is configured")
    use_tls: bool = Field(True, description="Use TLS/STARTTLS for secure connection")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: LogLevel = Field(LogLevel.INFO, description="Log level")
    format: LogFormat = Field(
        LogFormat.KEY_VALUE, description="Log output format (json or key-value)"
    )
    environment: str = Field("local", min_length=1, description="Environment label on every record")

    model_config = {"use_enum_values": True}


class AppConfig(BaseModel):
    """Root configuration object. Every section has defaults."""

    matching: MatchingConfig = Field(default_factory=MatchingConfig)
    notifications: NotificationsConfig = Field(default_factory=NotificationsConfig)
    emergency: EmergencyConfig = Field(default_factory=EmergencyConfig)
    email: EmailConfig = Field(default_factory=EmailConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
