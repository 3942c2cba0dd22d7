"""Configuration management: YAML settings and environment variables."""

from .duration import DurationParseError, parse_duration
from .environment import EnvironmentConfig, load_environment_config
from .exceptions import ConfigurationError
from .loader import load_config, parse_app_config
from .models import (
    AppConfig,
    EmailConfig,
    EmergencyConfig,
    LogFormat,
    LogLevel,
    LoggingConfig,
    MatchingConfig,
    NotificationsConfig,
)

__all__ = [
    # Loader functions
    "load_config",
    "parse_app_config",
    "load_environment_config",
    "parse_duration",
    # Configuration models
    "AppConfig",
    "MatchingConfig",
    "NotificationsConfig",
    "EmergencyConfig",
    "EmailConfig",
    "LoggingConfig",
    "EnvironmentConfig",
    # Enums
    "LogLevel",
    "LogFormat",
    # Exceptions
    "ConfigurationError",
    "DurationParseError",
]
