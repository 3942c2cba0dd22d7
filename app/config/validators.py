"""Non-fatal configuration checks."""

import warnings
from typing import Any, Dict, List


def check_for_warnings(config_dict: Dict[str, Any]) -> List[str]:
    """
    Check configuration for settings that are valid but probably unintended.

    Args:
        config_dict: Raw configuration dictionary

    Returns:
        List of warning messages
    """
    warning_messages = []

    email = config_dict.get("email", {})
    if isinstance(email, dict) and email.get("enabled") is False:
        warning_messages.append(
            "Email is disabled; emergency contacts will not be reachable"
        )

    emergency = config_dict.get("emergency", {})
    if isinstance(emergency, dict):
        if emergency.get("max_attempts") == 1:
            warning_messages.append(
                "emergency.max_attempts is 1; a failed fan-out is only retried by the sweep"
            )

    notifications = config_dict.get("notifications", {})
    if isinstance(notifications, dict):
        workers = notifications.get("channel_workers")
        if isinstance(workers, int) and workers < 2:
            warning_messages.append(
                "notifications.channel_workers below 2 serializes push and email delivery"
            )

    return warning_messages


def emit_warnings(warning_messages: List[str]) -> None:
    """Emit each message through the ``warnings`` module."""
    for message in warning_messages:
        warnings.warn(message, UserWarning, stacklevel=2)
