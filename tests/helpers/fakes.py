"""Recording and failing channel doubles used across the test suite."""

import threading
from typing import Any, Dict, List, Optional, Set, Tuple

from app.notifications.models import PushDeliveryError, SMTPDeliveryError
from app.notifications.push import PushChannel


class RecordingPushChannel(PushChannel):
    """Keeps every published event; thread-safe."""

    def __init__(self, fail_for: Optional[Set[int]] = None):
        self.events: List[Tuple[int, str, Dict[str, Any]]] = []
        self.fail_for = set(fail_for or ())
        self.closed = False
        self._lock = threading.Lock()

    def publish_to_user(self, user_id: int, event_name: str, payload: Dict[str, Any]) -> None:
        if user_id in self.fail_for:
            raise PushDeliveryError(f"push rejected for user {user_id}")
        with self._lock:
            self.events.append((user_id, event_name, payload))

    def user_ids(self) -> List[int]:
        with self._lock:
            return [user_id for user_id, _, _ in self.events]

    def close(self) -> None:
        self.closed = True


class FailingPushChannel(PushChannel):
    """Every publish raises."""

    def __init__(self, error: Optional[Exception] = None):
        self.error = error or PushDeliveryError("push gateway down")
        self.attempts = 0

    def publish_to_user(self, user_id: int, event_name: str, payload: Dict[str, Any]) -> None:
        self.attempts += 1
        raise self.error


class RecordingEmailChannel:
    """Stands in for EmailChannel; records sends and can fail per address."""

    def __init__(self, fail_all: bool = False, fail_for: Optional[Set[str]] = None):
        self.sent: List[Dict[str, Any]] = []
        self.fail_all = fail_all
        self.fail_for = set(fail_for or ())
        self._lock = threading.Lock()

    def send_email(
        self,
        to_address: str,
        html_body: str,
        subject: str,
        text_body: Optional[str] = None,
    ) -> None:
        if self.fail_all or to_address in self.fail_for:
            raise SMTPDeliveryError(f"SMTP rejected {to_address}")
        with self._lock:
            self.sent.append(
                {"to": to_address, "subject": subject, "html": html_body, "text": text_body}
            )

    def recipients(self) -> List[str]:
        with self._lock:
            return [message["to"] for message in self.sent]

    def subjects_for(self, address: str) -> List[str]:
        with self._lock:
            return [message["subject"] for message in self.sent if message["to"] == address]
