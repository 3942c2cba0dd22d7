"""Expiry policy for notification records.

The policy only sets ``expires_at``; expired records are filtered out of
reads but never deleted.
"""

from datetime import datetime
from typing import Dict, Optional

from app.config.models import NotificationsConfig
from app.domain.models import NotificationCategory, SystemLevel
from app.utils.timestamps import expires_after

DAY = 86400

DEFAULT_EXPIRY_DAYS = 7

CATEGORY_EXPIRY_DAYS: Dict[NotificationCategory, int] = {
    NotificationCategory.MATCH_FOUND: 7,
    NotificationCategory.SERVICE_ASSIGNMENT: 7,
    NotificationCategory.SERVICE_CONFIRMED: 7,
    NotificationCategory.SERVICE_CANCELLED: 3,
    NotificationCategory.PAYMENT_RECEIVED: 30,
    NotificationCategory.PAYMENT_FAILED: 7,
    NotificationCategory.SERVICE_COMPLETED: 14,
    NotificationCategory.RATING_REQUEST: 14,
    NotificationCategory.MESSAGE: 30,
}

SYSTEM_LEVEL_EXPIRY_DAYS: Dict[SystemLevel, int] = {
    SystemLevel.ERROR: 30,
    SystemLevel.WARNING: 7,
    SystemLevel.SUCCESS: 3,
}


class ExpiryPolicy:
    """Category-to-lifetime lookup with optional per-category overrides."""

    def __init__(self, overrides_seconds: Optional[Dict[str, int]] = None):
        """
        Args:
            overrides_seconds: Lifetimes keyed by category value, e.g.
                {"PaymentReceived": 3888000}
        """
        self._overrides = {
            NotificationCategory(category): seconds
            for category, seconds in (overrides_seconds or {}).items()
        }

    @classmethod
    def from_config(cls, config: NotificationsConfig) -> "ExpiryPolicy":
        return cls(config.expiry_override_seconds())

    def ttl_seconds(
        self,
        category: NotificationCategory,
        level: Optional[SystemLevel] = None,
    ) -> int:
        """Lifetime of a record in seconds.

        System notifications are keyed by severity level; everything else by
        category. Unknown keys get the 7 day default.
        """
        category = NotificationCategory(category)
        if category in self._overrides:
            return self._overrides[category]
        if category == NotificationCategory.SYSTEM and level is not None:
            return SYSTEM_LEVEL_EXPIRY_DAYS.get(SystemLevel(level), DEFAULT_EXPIRY_DAYS) * DAY
        return CATEGORY_EXPIRY_DAYS.get(category, DEFAULT_EXPIRY_DAYS) * DAY

    def expires_at(
        self,
        category: NotificationCategory,
        created_at: datetime,
        level: Optional[SystemLevel] = None,
    ) -> datetime:
        return expires_after(created_at, self.ttl_seconds(category, level))
