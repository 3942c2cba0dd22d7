"""Emergency escalation exceptions."""


class EmergencyError(Exception):
    """Base exception for emergency escalation errors."""

    pass


class IllegalTransitionError(EmergencyError):
    """Raised when an incident is asked to leave a terminal status.

    Public operations catch this and treat the request as a no-op.
    """

    def __init__(self, incident_id: int, current_status: str, requested: str):
        self.incident_id = incident_id
        self.current_status = current_status
        self.requested = requested
        super().__init__(
            f"Incident {incident_id} is {current_status}; cannot apply {requested}"
        )


class FanOutQueueClosedError(EmergencyError):
    """Raised when a fan-out is submitted after the queue was shut down."""

    pass
