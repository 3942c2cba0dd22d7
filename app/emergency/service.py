"""Emergency escalation orchestrator.

An incident is committed as Active before anything else happens. The fan-out
then runs on the FanOutQueue and notifies up to four parties concurrently:

1. The raising user (confirmation record + push)
2. Their emergency contact (email only; contact name and phone required)
3. Every user with the Admin capability (record + push + email each)
4. The matched counterpart of a linked service request (record + push + email)

Each branch is caught at its own boundary. Once all branches finish, the
notification flags are written in one guarded UPDATE under a per-incident
lock, and only while the incident is still Active.
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from datetime import timedelta
from functools import partial
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from app.config.models import AppConfig, EmergencyConfig
from app.domain.models import (
    ADMIN_CAPABILITY,
    EmergencyIncident,
    IncidentStatus,
    IncidentType,
    LinkedRequest,
    NotificationCategory,
    ServiceDomain,
    User,
)
from app.logging.context import bind_log_context, log_context
from app.logging.observability import Observability
from app.notifications import EmailContent, NotificationDispatcher
from app.notifications.payloads import (
    EMERGENCY_ADMIN_TITLE,
    EMERGENCY_COUNTERPART_TITLE,
    EMERGENCY_SELF_TITLE,
    build_emergency_context,
    emergency_admin_message,
    emergency_counterpart_message,
    emergency_self_message,
    incident_action_url,
)
from app.notifications.templates import (
    ADMIN_EMERGENCY_ALERT,
    COUNTERPART_EMERGENCY_ALERT,
    EMERGENCY_CONTACT_ALERT,
)
from app.persistence import (
    IncidentRepository,
    RecordNotFoundError,
    ServiceRepository,
    UserRepository,
    get_session,
)
from app.utils.timestamps import utc_now

from .exceptions import EmergencyError, FanOutQueueClosedError, IllegalTransitionError
from .models import (
    BRANCH_ADMINS,
    BRANCH_CONTACT,
    BRANCH_COUNTERPART,
    BRANCH_SELF,
    STATUS_FAILED,
    STATUS_SENT,
    STATUS_SKIPPED,
    BranchOutcome,
    FanOutResult,
)
from .queue import FanOutQueue

CANCELLED_BY_USER = "Cancelled by user"
MAX_RESOLUTION_LENGTH = 500


class EmergencyOrchestrator:
    """State machine and fan-out coordinator for emergency incidents."""

    def __init__(
        self,
        dispatcher: NotificationDispatcher,
        config: Optional[EmergencyConfig] = None,
        session_factory: Callable = get_session,
        observability: Optional[Observability] = None,
        platform_name: str = "Flight Companion",
        emergency_number: str = "111",
    ):
        """Initialize the orchestrator.

        Args:
            dispatcher: Notification dispatcher used by every branch
            config: Worker counts and retry settings (defaults if None)
            session_factory: Context manager yielding a database session
            observability: Logger and telemetry handle
            platform_name: Product name used in emails
            emergency_number: Local emergency services number shown in emails
        """
        self.dispatcher = dispatcher
        self.config = config or EmergencyConfig()
        self._session_factory = session_factory
        self.obs = observability or Observability.for_component(__name__, "emergency")
        self.logger = self.obs.logger
        self.platform_name = platform_name
        self.emergency_number = emergency_number

        # Must not share a pool with the queue or the dispatcher: each level waits on the next.
        self._branch_executor = ThreadPoolExecutor(
            max_workers=self.config.branch_workers, thread_name_prefix="fan-out-branch"
        )
        # incident id -> (lock, number of fan-outs holding or waiting on it)
        self._incident_locks: Dict[int, Tuple[threading.Lock, int]] = {}
        self._locks_guard = threading.Lock()

        self.queue = FanOutQueue(
            self.fan_out,
            max_workers=self.config.fan_out_workers,
            max_attempts=self.config.max_attempts,
            initial_delay=self.config.retry_initial_delay,
            backoff_multiplier=self.config.retry_backoff_multiplier,
            retain_completed=self.config.retained_results,
            logger_instance=self.logger,
        )

    @classmethod
    def from_config(
        cls,
        app_config: AppConfig,
        dispatcher: NotificationDispatcher,
        observability: Optional[Observability] = None,
    ) -> "EmergencyOrchestrator":
        return cls(
            dispatcher,
            config=app_config.emergency,
            observability=observability,
            platform_name=app_config.notifications.platform_name,
            emergency_number=app_config.notifications.emergency_number,
        )

    def raise_incident(
        self,
        user_id: int,
        incident_type: IncidentType,
        description: str,
        location: Optional[str] = None,
        linked_request: Optional[LinkedRequest] = None,
    ) -> EmergencyIncident:
        """Commit a new Active incident and queue its fan-out.

        Returns as soon as the incident is stored; use ``wait_for_fan_out``
        to block on the notifications. If the queue is already shut down
        the incident is still returned and the sweep picks it up later.

        Raises:
            RecordNotFoundError: If the user does not exist
            ValidationError: If description or location are invalid
            PersistenceError: If the incident could not be stored
        """
        incident = EmergencyIncident(
            user_id=user_id,
            incident_type=IncidentType(incident_type),
            description=description,
            location=location,
            companion_request_id=(
                linked_request.request_id
                if linked_request is not None and linked_request.domain == ServiceDomain.COMPANION
                else None
            ),
            pickup_request_id=(
                linked_request.request_id
                if linked_request is not None and linked_request.domain == ServiceDomain.PICKUP
                else None
            ),
        )

        with self._session_factory() as session:
            UserRepository(session).require(user_id)
            incident = IncidentRepository(session).add(incident)

        with log_context(incident_id=incident.id, user_id=user_id):
            self.logger.warning(
                f"Emergency incident {incident.id} raised by user {user_id} ({incident.incident_type.value})",
                extra={
                    "event": "emergency.incident.raised",
                    "incident_type": incident.incident_type.value,
                    "linked_domain": linked_request.domain.value if linked_request else None,
                },
            )
            self.obs.track("emergency.incident_raised", incident_type=incident.incident_type.value)
            try:
                self.queue.submit(incident.id)
            except FanOutQueueClosedError:
                self.logger.warning(
                    f"Fan-out queue closed; incident {incident.id} left for the next sweep",
                    extra={"event": "emergency.fan_out.deferred"},
                )

        return incident

    def wait_for_fan_out(self, incident_id: int, timeout: Optional[float] = None) -> Optional[FanOutResult]:
        """Block until the queued fan-out of ``incident_id`` completes."""
        return self.queue.wait(incident_id, timeout=timeout)

    def fan_out(self, incident_id: int) -> FanOutResult:
        """Notify every interested party of an Active incident.

        No-op (``skipped=True``) if the incident is missing or not Active.
        Branch failures are logged and reported in the result; only a
        failure to read or update the incident itself propagates.

        Raises:
            PersistenceError: If the incident could not be read or updated
        """
        with self._incident_lock(incident_id), log_context(incident_id=incident_id):
            with self._session_factory() as session:
                incident = IncidentRepository(session).get(incident_id)
                raiser = UserRepository(session).get(incident.user_id) if incident else None

            if incident is None or not incident.is_active:
                self.logger.info(
                    f"Skipping fan-out for incident {incident_id}: "
                    f"{'not found' if incident is None else incident.status.value}",
                    extra={"event": "emergency.fan_out.skipped"},
                )
                return FanOutResult(incident_id=incident_id, skipped=True)

            if raiser is None:
                self.logger.error(
                    f"Skipping fan-out for incident {incident_id}: user {incident.user_id} not found",
                    extra={"event": "emergency.fan_out.skipped", "user_id": incident.user_id},
                )
                return FanOutResult(incident_id=incident_id, skipped=True)

            with log_context(user_id=raiser.id):
                branches = {
                    BRANCH_SELF: partial(self._notify_self, incident, raiser),
                    BRANCH_CONTACT: partial(self._notify_emergency_contact, incident, raiser),
                    BRANCH_ADMINS: partial(self._notify_admins, incident, raiser),
                    BRANCH_COUNTERPART: partial(self._notify_counterpart, incident, raiser),
                }
                futures = {
                    name: self._branch_executor.submit(bind_log_context(self._run_branch), name, branch)
                    for name, branch in branches.items()
                }
                result = FanOutResult(
                    incident_id=incident_id,
                    branches={name: future.result() for name, future in futures.items()},
                )

                with self._session_factory() as session:
                    result.recorded = IncidentRepository(session).record_fan_out(
                        incident_id,
                        emergency_contact_notified=result.contact_notified,
                        admin_notified=result.admin_notified,
                        sent_at=utc_now(),
                    )

                if not result.recorded:
                    self.logger.info(
                        f"Incident {incident_id} closed during fan-out; flags left unchanged",
                        extra={"event": "emergency.fan_out.flags_skipped"},
                    )

                self.logger.info(
                    f"Fan-out completed for incident {incident_id}",
                    extra={
                        "event": "emergency.fan_out.completed",
                        "branches": {name: o.status for name, o in result.branches.items()},
                        "contact_notified": result.contact_notified,
                        "admin_notified": result.admin_notified,
                    },
                )

        self.obs.track(
            "emergency.fan_out_completed",
            contact_notified=result.contact_notified,
            admin_notified=result.admin_notified,
            counterpart_notified=result.counterpart_notified,
        )
        return result

    def resume_pending_fan_outs(self) -> int:
        """Re-queue Active incidents whose fan-out never completed.

        Only incidents older than ``retry_after`` with no recorded
        notification are picked up. Run periodically by the scheduler.

        Returns:
            Number of incidents queued
        """
        cutoff = utc_now() - timedelta(seconds=self.config.retry_after_seconds)
        with self._session_factory() as session:
            pending = IncidentRepository(session).list_pending_fan_out(cutoff)

        queued = 0
        for incident in pending:
            try:
                self.queue.submit(incident.id)
            except FanOutQueueClosedError:
                self.logger.warning(
                    "Fan-out queue closed while resuming pending incidents",
                    extra={"event": "emergency.sweep.interrupted", "remaining": len(pending) - queued},
                )
                break
            queued += 1

        self.logger.info(
            f"Re-queued {queued} pending fan-out(s)",
            extra={
                "event": "emergency.sweep.completed",
                "queued": queued,
                "in_flight": self.queue.pending_count(),
            },
        )
        return queued

    def resolve(self, incident_id: int, resolution_note: str) -> EmergencyIncident:
        """Move an Active incident to Resolved.

        A non-Active incident is returned unchanged and a warning is logged.

        Raises:
            RecordNotFoundError: If the incident does not exist
            ValueError: If the note exceeds 500 characters
            PersistenceError: If the update fails
        """
        note = (resolution_note or "").strip() or None
        if note is not None and len(note) > MAX_RESOLUTION_LENGTH:
            raise ValueError(f"Resolution note must be at most {MAX_RESOLUTION_LENGTH} characters")

        with log_context(incident_id=incident_id):
            with self._session_factory() as session:
                incidents = IncidentRepository(session)
                incident = incidents.get(incident_id)
                if incident is None:
                    raise RecordNotFoundError("Emergency incident", incident_id)

                try:
                    self._close(incidents, incident, IncidentStatus.RESOLVED, note)
                except IllegalTransitionError as e:
                    self.logger.warning(
                        f"Ignoring resolve: {e}",
                        extra={"event": "emergency.incident.transition_ignored", "requested": e.requested},
                    )
                    return incidents.get(incident_id)

                incident = incidents.get(incident_id)

            self.logger.info(
                f"Incident {incident_id} resolved",
                extra={"event": "emergency.incident.resolved"},
            )
        self.obs.track("emergency.incident_resolved")
        return incident

    def cancel(self, incident_id: int, user_id: int) -> bool:
        """Cancel an Active incident on behalf of the user who raised it.

        Returns:
            True if cancelled; False if the incident is missing, belongs to
            someone else or is no longer Active

        Raises:
            PersistenceError: If the update fails
        """
        with log_context(incident_id=incident_id, user_id=user_id):
            with self._session_factory() as session:
                incidents = IncidentRepository(session)
                incident = incidents.get(incident_id)
                if incident is None or incident.user_id != user_id:
                    self.logger.info(
                        f"Cancel ignored: incident {incident_id} not found for user {user_id}",
                        extra={"event": "emergency.incident.cancel_ignored"},
                    )
                    return False

                try:
                    self._close(incidents, incident, IncidentStatus.CANCELLED, CANCELLED_BY_USER)
                except IllegalTransitionError as e:
                    self.logger.info(
                        f"Cancel ignored: {e}",
                        extra={"event": "emergency.incident.cancel_ignored"},
                    )
                    return False

            self.logger.info(
                f"Incident {incident_id} cancelled by user {user_id}",
                extra={"event": "emergency.incident.cancelled"},
            )
        self.obs.track("emergency.incident_cancelled")
        return True

    def list_for_user(self, user_id: int) -> List[EmergencyIncident]:
        with self._session_factory() as session:
            return IncidentRepository(session).list_for_user(user_id)

    def list_active(self) -> List[EmergencyIncident]:
        with self._session_factory() as session:
            return IncidentRepository(session).list_active()

    def shutdown(self, wait: bool = True) -> None:
        self.queue.shutdown(wait=wait)
        self._branch_executor.shutdown(wait=wait)

    @contextmanager
    def _incident_lock(self, incident_id: int) -> Iterator[None]:
        with self._locks_guard:
            lock, holders = self._incident_locks.get(incident_id, (None, 0))
            lock = lock or threading.Lock()
            self._incident_locks[incident_id] = (lock, holders + 1)
        try:
            with lock:
                yield
        finally:
            with self._locks_guard:
                _, holders = self._incident_locks[incident_id]
                if holders == 1:
                    del self._incident_locks[incident_id]
                else:
                    self._incident_locks[incident_id] = (lock, holders - 1)

    def _close(
        self,
        incidents: IncidentRepository,
        incident: EmergencyIncident,
        status: IncidentStatus,
        note: Optional[str],
    ) -> None:
        if not incident.is_active:
            raise IllegalTransitionError(incident.id, incident.status.value, status.value)
        if not incidents.close(incident.id, status, note, utc_now()):
            current = incidents.get(incident.id)
            raise IllegalTransitionError(incident.id, current.status.value, status.value)

    def _run_branch(self, name: str, branch: Callable[[], BranchOutcome]) -> BranchOutcome:
        with log_context(branch=name):
            try:
                return branch()
            except Exception as e:
                self.logger.error(
                    f"Fan-out branch {name} failed: {e}",
                    exc_info=True,
                    extra={
                        "event": "emergency.branch.failed",
                        "channel": getattr(e, "channel", None),
                        "error_type": type(e).__name__,
                    },
                )
                return BranchOutcome(branch=name, status=STATUS_FAILED, error=str(e))

    def _email_context(self, incident: EmergencyIncident, raiser: User, recipient_name: str) -> Dict:
        return build_emergency_context(
            incident,
            raiser,
            self.platform_name,
            recipient_name=recipient_name,
            emergency_number=self.emergency_number,
        )

    def _notify_self(self, incident: EmergencyIncident, raiser: User) -> BranchOutcome:
        self.dispatcher.dispatch(
            raiser.id,
            EMERGENCY_SELF_TITLE,
            emergency_self_message(incident),
            NotificationCategory.EMERGENCY_CONFIRMATION,
            action_ref=incident_action_url(incident.id),
        )
        return BranchOutcome(branch=BRANCH_SELF, status=STATUS_SENT, notified_user_ids=[raiser.id])

    def _notify_emergency_contact(self, incident: EmergencyIncident, raiser: User) -> BranchOutcome:
        if not raiser.has_emergency_contact:
            return BranchOutcome(
                branch=BRANCH_CONTACT,
                status=STATUS_SKIPPED,
                error="No emergency contact name and phone on file",
            )
        if not raiser.emergency_contact_email:
            raise EmergencyError(f"User {raiser.id} has no email address for their emergency contact")

        self.dispatcher.send_email(
            EmailContent(
                to_address=raiser.emergency_contact_email,
                template=EMERGENCY_CONTACT_ALERT,
                context=self._email_context(incident, raiser, raiser.emergency_contact_name),
            )
        )
        self.logger.info(
            f"Emergency contact alerted for incident {incident.id}",
            extra={"event": "emergency.contact.notified", "channel": "email"},
        )
        return BranchOutcome(branch=BRANCH_CONTACT, status=STATUS_SENT)

    def _notify_admins(self, incident: EmergencyIncident, raiser: User) -> BranchOutcome:
        with self._session_factory() as session:
            admins = UserRepository(session).list_users_with_capability(ADMIN_CAPABILITY)

        if not admins:
            self.logger.warning(
                "No administrators to notify",
                extra={"event": "emergency.admins.none"},
            )
            return BranchOutcome(branch=BRANCH_ADMINS, status=STATUS_SKIPPED, error="No administrators")

        message = emergency_admin_message(incident, raiser)
        notified: List[int] = []
        errors: List[str] = []
        for admin in admins:
            email = None
            if admin.email:
                email = EmailContent(
                    to_address=admin.email,
                    template=ADMIN_EMERGENCY_ALERT,
                    context=self._email_context(incident, raiser, admin.first_name),
                )
            try:
                self.dispatcher.deliver(
                    admin.id,
                    EMERGENCY_ADMIN_TITLE,
                    message,
                    NotificationCategory.EMERGENCY_ALERT,
                    action_url=incident_action_url(incident.id),
                    email=email,
                )
            except Exception as e:
                self.logger.error(
                    f"Could not notify admin {admin.id}: {e}",
                    exc_info=True,
                    extra={"event": "emergency.admin.failed", "admin_id": admin.id},
                )
                errors.append(f"admin {admin.id}: {e}")
                continue
            notified.append(admin.id)

        if not notified:
            return BranchOutcome(branch=BRANCH_ADMINS, status=STATUS_FAILED, error="; ".join(errors))
        return BranchOutcome(
            branch=BRANCH_ADMINS,
            status=STATUS_SENT,
            notified_user_ids=notified,
            error="; ".join(errors) or None,
        )

    def _notify_counterpart(self, incident: EmergencyIncident, raiser: User) -> BranchOutcome:
        link = incident.linked_request
        if link is None:
            return BranchOutcome(
                branch=BRANCH_COUNTERPART, status=STATUS_SKIPPED, error="No linked service request"
            )

        with self._session_factory() as session:
            services = ServiceRepository(session)
            request = services.get_request(link.domain, link.request_id)
            if request is None:
                raise RecordNotFoundError(f"{link.domain.display_name} request", link.request_id)
            if not request.is_matched:
                return BranchOutcome(
                    branch=BRANCH_COUNTERPART, status=STATUS_SKIPPED, error="Linked request is not matched"
                )

            offer = services.get_offer(link.domain, request.matched_offer_id)
            if offer is None:
                raise RecordNotFoundError(f"{link.domain.display_name} offer", request.matched_offer_id)

            counterpart_id = request.user_id if raiser.id == offer.user_id else offer.user_id
            counterpart = UserRepository(session).require(counterpart_id)

        email = None
        if counterpart.email:
            email = EmailContent(
                to_address=counterpart.email,
                template=COUNTERPART_EMERGENCY_ALERT,
                context=self._email_context(incident, raiser, counterpart.first_name),
            )
        self.dispatcher.deliver(
            counterpart.id,
            EMERGENCY_COUNTERPART_TITLE,
            emergency_counterpart_message(link.domain),
            NotificationCategory.EMERGENCY_ALERT,
            action_url=incident_action_url(incident.id),
            email=email,
        )
        return BranchOutcome(
            branch=BRANCH_COUNTERPART, status=STATUS_SENT, notified_user_ids=[counterpart.id]
        )
