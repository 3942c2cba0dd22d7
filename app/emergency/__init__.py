"""Emergency incident lifecycle and notification fan-out.

This module provides:
- EmergencyOrchestrator: raise/resolve/cancel incidents and fan out alerts
- FanOutQueue: worker-pool handoff with completion Futures and retry
- FanOutResult / BranchOutcome: what each fan-out branch achieved
"""

from .exceptions import EmergencyError, FanOutQueueClosedError, IllegalTransitionError
from .models import (
    BRANCH_ADMINS,
    BRANCH_CONTACT,
    BRANCH_COUNTERPART,
    BRANCH_SELF,
    BranchOutcome,
    FanOutResult,
)
from .queue import FanOutQueue
from .service import CANCELLED_BY_USER, EmergencyOrchestrator

__all__ = [
    "EmergencyOrchestrator",
    "FanOutQueue",
    "FanOutResult",
    "BranchOutcome",
    "EmergencyError",
    "IllegalTransitionError",
    "FanOutQueueClosedError",
    "BRANCH_SELF",
    "BRANCH_CONTACT",
    "BRANCH_ADMINS",
    "BRANCH_COUNTERPART",
    "CANCELLED_BY_USER",
]
