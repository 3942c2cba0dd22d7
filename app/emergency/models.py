"""Result types for emergency fan-out."""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

BRANCH_SELF = "self"
BRANCH_CONTACT = "emergency_contact"
BRANCH_ADMINS = "admins"
BRANCH_COUNTERPART = "counterpart"

BRANCHES = (BRANCH_SELF, BRANCH_CONTACT, BRANCH_ADMINS, BRANCH_COUNTERPART)

STATUS_SENT = "sent"
STATUS_FAILED = "failed"
STATUS_SKIPPED = "skipped"


@dataclass
class BranchOutcome:
    """What one fan-out branch achieved.

    Attributes:
        branch: One of BRANCHES
        status: "sent", "failed" or "skipped"
        notified_user_ids: Users that received a notification record
        error: Failure message or skip reason
    """

    branch: str
    status: str
    notified_user_ids: List[int] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == STATUS_SENT


@dataclass
class FanOutResult:
    """Outcome of one fan-out run for an incident.

    Attributes:
        incident_id: Incident that was fanned out
        branches: Outcome per branch name
        skipped: True when the incident was missing or no longer Active
        recorded: True when the notification flags were written
    """

    incident_id: int
    branches: Dict[str, BranchOutcome] = field(default_factory=dict)
    skipped: bool = False
    recorded: bool = False

    def branch(self, name: str) -> Optional[BranchOutcome]:
        return self.branches.get(name)

    def _succeeded(self, name: str) -> bool:
        outcome = self.branches.get(name)
        return outcome is not None and outcome.succeeded

    @property
    def self_notified(self) -> bool:
        return self._succeeded(BRANCH_SELF)

    @property
    def contact_notified(self) -> bool:
        return self._succeeded(BRANCH_CONTACT)

    @property
    def admin_notified(self) -> bool:
        return self._succeeded(BRANCH_ADMINS)

    @property
    def counterpart_notified(self) -> bool:
        return self._succeeded(BRANCH_COUNTERPART)
