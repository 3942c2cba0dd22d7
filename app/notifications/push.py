"""Real-time push channel.

Two implementations of ``PushChannel``:
- SessionRegistry: in-process hub of connected sessions grouped per user
- HttpPushChannel: forwards events to an external realtime gateway
"""

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import requests

from app.config.environment import EnvironmentConfig
from app.logging import get_logger

from .models import PushDeliveryError

logger = get_logger(__name__, component="push")

NOTIFICATION_EVENT = "ReceiveNotification"

SessionSender = Callable[[str, Dict[str, Any]], None]


def user_group(user_id: int) -> str:
    """Name of the group holding every session of ``user_id``."""
    return f"User_{user_id}"


class PushChannel(ABC):
    """Best-effort delivery to a user's connected sessions."""

    @abstractmethod
    def publish_to_user(self, user_id: int, event_name: str, payload: Dict[str, Any]) -> Optional[int]:
        """Publish ``event_name`` with ``payload`` to every session of ``user_id``.

        Returns:
            Number of sessions that accepted the event, or None when the
            channel cannot tell (a gateway fans out on its own side)

        Raises:
            PushDeliveryError: If the event could not be handed to any session
        """

    def close(self) -> None:
        """Release resources held by the channel."""


@dataclass
class ConnectedSession:
    session_id: str
    user_id: int
    send: SessionSender


class SessionRegistry(PushChannel):
    """Tracks connected sessions by user and fans events out to them.

    A user with no connected sessions is not an error: the notification
    record is the durable copy. A session whose send fails is dropped.
    """

    def __init__(self, logger_instance=None):
        self._sessions: Dict[str, ConnectedSession] = {}
        self._lock = threading.Lock()
        self.logger = logger_instance or logger

    def connect(self, user_id: int, session_id: str, send: SessionSender) -> ConnectedSession:
        session = ConnectedSession(session_id=session_id, user_id=user_id, send=send)
        with self._lock:
            self._sessions[session_id] = session
        self.logger.debug(
            f"Session {session_id} joined {user_group(user_id)}",
            extra={"event": "push.session.connected", "user_id": user_id, "session_id": session_id},
        )
        return session

    def disconnect(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def sessions_for(self, user_id: int) -> List[ConnectedSession]:
        with self._lock:
            return [s for s in self._sessions.values() if s.user_id == user_id]

    def publish_to_user(self, user_id: int, event_name: str, payload: Dict[str, Any]) -> int:
        """Send to every session of the user.

        Returns:
            Number of sessions that accepted the event

        Raises:
            PushDeliveryError: If the user had sessions and all of them failed
        """
        sessions = self.sessions_for(user_id)
        if not sessions:
            self.logger.debug(
                f"No connected sessions for user {user_id}",
                extra={"event": "push.publish.no_sessions", "user_id": user_id},
            )
            return 0

        delivered = 0
        for session in sessions:
            try:
                session.send(event_name, payload)
                delivered += 1
            except Exception as e:
                self.disconnect(session.session_id)
                self.logger.warning(
                    f"Dropping session {session.session_id} after failed send: {e}",
                    extra={
                        "event": "push.session.dropped",
                        "user_id": user_id,
                        "session_id": session.session_id,
                        "error_type": type(e).__name__,
                    },
                )

        if delivered == 0:
            raise PushDeliveryError(
                f"All {len(sessions)} session(s) of user {user_id} rejected {event_name}"
            )
        return delivered


class HttpPushChannel(PushChannel):
    """Posts events to a realtime gateway at ``{base_url}/groups/{group}/events``."""

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: int = 10,
        http_session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = http_session or requests.Session()
        self._session.headers.update({"Content-Type": "application/json"})
        if token:
            self._session.headers.update({"Authorization": f"Bearer {token}"})

    def publish_to_user(self, user_id: int, event_name: str, payload: Dict[str, Any]) -> Optional[int]:
        url = f"{self.base_url}/groups/{user_group(user_id)}/events"
        try:
            response = self._session.post(
                url,
                json={"event": event_name, "payload": payload},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.exceptions.Timeout as e:
            raise PushDeliveryError(f"Push gateway timed out after {self.timeout}s: {url}") from e
        except requests.exceptions.HTTPError as e:
            raise PushDeliveryError(
                f"Push gateway returned HTTP {e.response.status_code if e.response is not None else '?'}: {url}"
            ) from e
        except requests.exceptions.RequestException as e:
            raise PushDeliveryError(f"Push gateway request failed: {e}") from e

        logger.debug(
            f"Published {event_name} to {user_group(user_id)} via gateway",
            extra={"event": "push.gateway.published", "user_id": user_id},
        )
        return None

    def close(self) -> None:
        self._session.close()


def build_push_channel(env_config: EnvironmentConfig) -> PushChannel:
    """Gateway channel when PUSH_GATEWAY_URL is set, in-process registry otherwise."""
    if env_config.push_gateway_url:
        return HttpPushChannel(env_config.push_gateway_url, token=env_config.push_gateway_token)
    return SessionRegistry()
