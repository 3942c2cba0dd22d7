"""Explicit observability handle passed to the core services.

Services receive an ``Observability`` value instead of reaching for a module
level logger or a global telemetry client, which keeps them testable with a
recording sink.
"""

import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from . import get_logger


class TelemetrySink:
    """Receives named business events (match found, incident raised, ...).

    The default sink forwards events to the log stream at DEBUG level.
    """

    def __init__(self, logger=None):
        self._logger = logger or get_logger(__name__, component="telemetry")

    def track_event(self, name: str, properties: Optional[Dict[str, Any]] = None) -> None:
        self._logger.debug(
            "Telemetry event",
            extra={"event": "telemetry.tracked", "telemetry_event": name, **(properties or {})},
        )


class RecordingTelemetrySink(TelemetrySink):
    """Keeps events in memory. Thread-safe; used by tests."""

    def __init__(self):
        super().__init__()
        self.events: List[Tuple[str, Dict[str, Any]]] = []
        self._lock = threading.Lock()

    def track_event(self, name: str, properties: Optional[Dict[str, Any]] = None) -> None:
        with self._lock:
            self.events.append((name, dict(properties or {})))

    def names(self) -> List[str]:
        with self._lock:
            return [name for name, _ in self.events]


@dataclass
class Observability:
    """Logger plus telemetry sink handed to a service at construction time."""

    logger: Any
    telemetry: TelemetrySink = field(default_factory=TelemetrySink)

    @classmethod
    def for_component(cls, name: str, component: str, telemetry: Optional[TelemetrySink] = None) -> "Observability":
        """Build a handle whose logger carries ``component`` on every record."""
        return cls(
            logger=get_logger(name, component=component),
            telemetry=telemetry or TelemetrySink(),
        )

    def track(self, name: str, **properties: Any) -> None:
        self.telemetry.track_event(name, properties)
