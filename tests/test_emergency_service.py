"""Unit tests for the emergency orchestrator."""

import threading
import time
from datetime import timedelta

import pytest
from pydantic import ValidationError

from app.config.models import AppConfig, EmergencyConfig
from app.domain.models import (
    EmergencyIncident,
    IncidentStatus,
    IncidentType,
    LinkedRequest,
    NotificationCategory,
    ServiceDomain,
)
from app.emergency import (
    BRANCH_ADMINS,
    BRANCH_CONTACT,
    BRANCH_COUNTERPART,
    BRANCH_SELF,
    CANCELLED_BY_USER,
    EmergencyOrchestrator,
)
from app.logging.observability import Observability, RecordingTelemetrySink
from app.notifications import NotificationDispatcher
from app.persistence import (
    IncidentRepository,
    RecordNotFoundError,
    ServiceRepository,
    close_database,
    get_session,
    init_database,
)
from app.utils.timestamps import utc_now
from tests.helpers import (
    RecordingEmailChannel,
    RecordingPushChannel,
    create_admin,
    create_companion_offer,
    create_companion_request,
    create_pickup_offer,
    create_pickup_request,
    create_user,
    sqlite_url,
)

FAST = EmergencyConfig(retry_initial_delay=0.0)


@pytest.fixture
def db(tmp_path):
    init_database(sqlite_url(tmp_path))
    yield
    close_database()


@pytest.fixture
def push():
    return RecordingPushChannel()


@pytest.fixture
def email():
    return RecordingEmailChannel()


@pytest.fixture
def sink():
    return RecordingTelemetrySink()


@pytest.fixture
def orchestrator(db, push, email, sink):
    dispatcher = NotificationDispatcher(push_channel=push, email_channel=email)
    orchestrator = EmergencyOrchestrator(
        dispatcher,
        config=FAST,
        observability=Observability.for_component(__name__, "emergency", telemetry=sink),
    )
    yield orchestrator
    orchestrator.shutdown()
    dispatcher.shutdown()


def _traveller(**fields):
    fields.setdefault("phone", "+64 21 555 0100")
    fields.setdefault("emergency_contact_name", "Carol")
    fields.setdefault("emergency_contact_phone", "+64 21 555 0199")
    fields.setdefault("emergency_contact_email", "carol@example.com")
    return create_user("Alice", **fields)


def _match(domain, request_id, offer_id):
    with get_session() as session:
        services = ServiceRepository(session)
        assert services.claim_offer(domain, offer_id)
        assert services.mark_request_matched(domain, request_id, offer_id)


def _incident(incident_id):
    with get_session() as session:
        return IncidentRepository(session).get(incident_id)


def _categories(orchestrator, user_id):
    return [record.category for record in orchestrator.dispatcher.list_for_user(user_id)]


class TestRaiseIncident:
    """Tests for raise_incident."""

    def test_commits_active_incident(self, orchestrator):
        alice = _traveller()

        incident = orchestrator.raise_incident(alice.id, "Medical", "Feeling faint", location="Gate 12")
        orchestrator.wait_for_fan_out(incident.id, timeout=10)

        assert incident.id is not None
        assert incident.status is IncidentStatus.ACTIVE
        assert incident.incident_type is IncidentType.MEDICAL
        stored = _incident(incident.id)
        assert stored.description == "Feeling faint"
        assert stored.location == "Gate 12"

    def test_links_request_by_domain(self, orchestrator):
        alice = _traveller()
        request = create_pickup_request(alice.id)

        incident = orchestrator.raise_incident(
            alice.id, IncidentType.SAFETY, "Driver not here",
            linked_request=LinkedRequest(domain=ServiceDomain.PICKUP, request_id=request.id),
        )
        orchestrator.wait_for_fan_out(incident.id, timeout=10)

        assert incident.pickup_request_id == request.id
        assert incident.companion_request_id is None

    def test_unknown_user(self, orchestrator, push):
        with pytest.raises(RecordNotFoundError):
            orchestrator.raise_incident(999, IncidentType.SOS, "Help")

        assert orchestrator.list_active() == []
        assert push.events == []

    def test_unknown_type(self, orchestrator):
        alice = _traveller()

        with pytest.raises(ValueError):
            orchestrator.raise_incident(alice.id, "Earthquake", "Help")

    def test_description_too_long(self, orchestrator):
        alice = _traveller()

        with pytest.raises(ValidationError):
            orchestrator.raise_incident(alice.id, IncidentType.SOS, "x" * 501)

    def test_location_too_long(self, orchestrator):
        alice = _traveller()

        with pytest.raises(ValidationError):
            orchestrator.raise_incident(alice.id, IncidentType.SOS, "Help", location="y" * 101)

    def test_tracks_raise(self, orchestrator, sink):
        alice = _traveller()

        incident = orchestrator.raise_incident(alice.id, IncidentType.TRAVEL, "Lost passport")
        orchestrator.wait_for_fan_out(incident.id, timeout=10)

        assert ("emergency.incident_raised", {"incident_type": "Travel"}) in sink.events

    def test_closed_queue_still_returns_stored_incident(self, orchestrator, push):
        alice = _traveller()
        orchestrator.queue.shutdown()

        incident = orchestrator.raise_incident(alice.id, IncidentType.SOS, "Help")

        assert incident.status is IncidentStatus.ACTIVE
        assert _incident(incident.id).status is IncidentStatus.ACTIVE
        assert orchestrator.wait_for_fan_out(incident.id) is None
        assert push.events == []


class TestIncidentBookkeeping:
    """Per-incident state does not outlive the fan-out."""

    def test_finished_incidents_release_state(self, orchestrator):
        alice = _traveller()

        incidents = [orchestrator.raise_incident(alice.id, IncidentType.SOS, f"Help {i}") for i in range(20)]
        for incident in incidents:
            orchestrator.wait_for_fan_out(incident.id, timeout=10)
            assert orchestrator.cancel(incident.id, alice.id)

        assert orchestrator._incident_locks == {}
        deadline = time.monotonic() + 5
        while orchestrator.queue._futures and time.monotonic() < deadline:
            time.sleep(0.01)
        assert orchestrator.queue._futures == {}
        assert orchestrator.queue.pending_count() == 0

    def test_retained_results_follow_config(self, db, push):
        dispatcher = NotificationDispatcher(push_channel=push)
        orchestrator = EmergencyOrchestrator(
            dispatcher, config=EmergencyConfig(retry_initial_delay=0.0, retained_results=0)
        )
        alice = _traveller()
        try:
            incident = orchestrator.raise_incident(alice.id, IncidentType.SOS, "Help")
            orchestrator.queue.shutdown(wait=True)
        finally:
            orchestrator.shutdown()
            dispatcher.shutdown()

        assert orchestrator.queue.retain_completed == 0
        assert orchestrator.queue._futures == {}
        assert orchestrator.queue._completed == {}
        assert _incident(incident.id).last_notification_sent is not None

    def test_concurrent_runs_share_then_release_lock(self, orchestrator):
        alice = _traveller()
        incident = orchestrator.raise_incident(alice.id, IncidentType.SOS, "Help")
        orchestrator.wait_for_fan_out(incident.id, timeout=10)

        results = []
        threads = [
            threading.Thread(target=lambda: results.append(orchestrator.fan_out(incident.id)))
            for _ in range(4)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)

        assert len(results) == 4
        assert all(result.recorded for result in results)
        assert orchestrator._incident_locks == {}


class TestFanOut:
    """Tests for the four notification branches."""

    def test_all_branches(self, orchestrator, push, email, sink):
        alice = _traveller()
        ada = create_admin("Ada")
        bob = create_user("Bob")
        request = create_companion_request(alice.id)
        offer = create_companion_offer(bob.id)
        _match(ServiceDomain.COMPANION, request.id, offer.id)

        incident = orchestrator.raise_incident(
            alice.id, IncidentType.MEDICAL, "Feeling faint", location="Gate 12",
            linked_request=LinkedRequest(domain=ServiceDomain.COMPANION, request_id=request.id),
        )
        result = orchestrator.wait_for_fan_out(incident.id, timeout=10)

        assert result.self_notified
        assert result.contact_notified
        assert result.admin_notified
        assert result.counterpart_notified
        assert result.recorded is True
        assert result.branch(BRANCH_ADMINS).notified_user_ids == [ada.id]
        assert result.branch(BRANCH_COUNTERPART).notified_user_ids == [bob.id]

        assert _categories(orchestrator, alice.id) == [NotificationCategory.EMERGENCY_CONFIRMATION]
        assert _categories(orchestrator, ada.id) == [NotificationCategory.EMERGENCY_ALERT]
        assert _categories(orchestrator, bob.id) == [NotificationCategory.EMERGENCY_ALERT]
        assert sorted(push.user_ids()) == sorted([alice.id, ada.id, bob.id])
        assert email.subjects_for("carol@example.com") == ["EMERGENCY ALERT - Alice Traveller"]
        assert email.subjects_for("ada@example.com") == ["Platform Emergency Alert - Alice Traveller"]
        assert email.subjects_for("bob@example.com") == [
            "Emergency Alert - Please Check on Your Matched User"
        ]

        stored = _incident(incident.id)
        assert stored.emergency_contact_notified is True
        assert stored.admin_notified is True
        assert stored.last_notification_sent is not None
        assert (
            "emergency.fan_out_completed",
            {"contact_notified": True, "admin_notified": True, "counterpart_notified": True},
        ) in sink.events

    def test_self_notification_content(self, orchestrator):
        alice = _traveller()

        incident = orchestrator.raise_incident(alice.id, IncidentType.SOS, "Help")
        orchestrator.wait_for_fan_out(incident.id, timeout=10)

        record = orchestrator.dispatcher.list_for_user(alice.id)[0]
        assert record.title == "Emergency Alert Sent"
        assert record.action_url == f"/emergency/{incident.id}"

    def test_contact_skipped_without_name_and_phone(self, orchestrator, email):
        alice = _traveller(emergency_contact_phone=None)
        create_admin("Ada")

        incident = orchestrator.raise_incident(alice.id, IncidentType.SOS, "Help")
        result = orchestrator.wait_for_fan_out(incident.id, timeout=10)

        assert result.branch(BRANCH_CONTACT).status == "skipped"
        assert "carol@example.com" not in email.recipients()
        assert _incident(incident.id).emergency_contact_notified is False
        assert _incident(incident.id).admin_notified is True

    def test_contact_without_email_fails(self, orchestrator):
        alice = _traveller(emergency_contact_email=None)

        incident = orchestrator.raise_incident(alice.id, IncidentType.SOS, "Help")
        result = orchestrator.wait_for_fan_out(incident.id, timeout=10)

        assert result.branch(BRANCH_CONTACT).status == "failed"
        assert "no email address" in result.branch(BRANCH_CONTACT).error
        assert result.self_notified

    def test_contact_email_failure_is_isolated(self, db, push):
        alice = _traveller()
        ada = create_admin("Ada")
        email = RecordingEmailChannel(fail_for={"carol@example.com"})
        dispatcher = NotificationDispatcher(push_channel=push, email_channel=email)
        orchestrator = EmergencyOrchestrator(dispatcher, config=FAST)

        try:
            incident = orchestrator.raise_incident(alice.id, IncidentType.SOS, "Help")
            result = orchestrator.wait_for_fan_out(incident.id, timeout=10)
        finally:
            orchestrator.shutdown()
            dispatcher.shutdown()

        assert result.contact_notified is False
        assert result.admin_notified is True
        assert email.recipients() == ["ada@example.com"]
        stored = _incident(incident.id)
        assert stored.emergency_contact_notified is False
        assert stored.admin_notified is True
        assert ada.id in push.user_ids()

    def test_push_failure_does_not_fail_branches(self, db, email):
        alice = _traveller()
        create_admin("Ada")
        push = RecordingPushChannel(fail_for={alice.id})
        dispatcher = NotificationDispatcher(push_channel=push, email_channel=email)
        orchestrator = EmergencyOrchestrator(dispatcher, config=FAST)

        try:
            incident = orchestrator.raise_incident(alice.id, IncidentType.SOS, "Help")
            result = orchestrator.wait_for_fan_out(incident.id, timeout=10)
            records = dispatcher.list_for_user(alice.id)
        finally:
            orchestrator.shutdown()
            dispatcher.shutdown()

        assert result.self_notified
        assert result.admin_notified
        assert len(records) == 1

    def test_no_admins(self, orchestrator):
        alice = _traveller()

        incident = orchestrator.raise_incident(alice.id, IncidentType.SOS, "Help")
        result = orchestrator.wait_for_fan_out(incident.id, timeout=10)

        assert result.branch(BRANCH_ADMINS).status == "skipped"
        assert _incident(incident.id).admin_notified is False

    def test_each_admin_notified(self, orchestrator, email):
        alice = _traveller()
        ada = create_admin("Ada")
        max_admin = create_admin("Max", email=None)

        incident = orchestrator.raise_incident(alice.id, IncidentType.SOS, "Help")
        result = orchestrator.wait_for_fan_out(incident.id, timeout=10)

        assert sorted(result.branch(BRANCH_ADMINS).notified_user_ids) == sorted([ada.id, max_admin.id])
        assert email.subjects_for("ada@example.com") == ["Platform Emergency Alert - Alice Traveller"]
        record = orchestrator.dispatcher.list_for_user(max_admin.id)[0]
        assert record.title == "Emergency Alert"
        assert record.message == "Alice Traveller raised a SOS emergency: Help"

    def test_no_link_skips_counterpart(self, orchestrator):
        alice = _traveller()

        incident = orchestrator.raise_incident(alice.id, IncidentType.SOS, "Help")
        result = orchestrator.wait_for_fan_out(incident.id, timeout=10)

        assert result.branch(BRANCH_COUNTERPART).status == "skipped"

    def test_unmatched_request_skips_counterpart(self, orchestrator):
        alice = _traveller()
        request = create_companion_request(alice.id)

        incident = orchestrator.raise_incident(
            alice.id, IncidentType.SOS, "Help",
            linked_request=LinkedRequest(domain=ServiceDomain.COMPANION, request_id=request.id),
        )
        result = orchestrator.wait_for_fan_out(incident.id, timeout=10)

        assert result.branch(BRANCH_COUNTERPART).status == "skipped"
        assert result.branch(BRANCH_COUNTERPART).error == "Linked request is not matched"

    def test_missing_linked_request_fails_counterpart(self, orchestrator):
        alice = _traveller()

        incident = orchestrator.raise_incident(
            alice.id, IncidentType.SOS, "Help",
            linked_request=LinkedRequest(domain=ServiceDomain.PICKUP, request_id=404),
        )
        result = orchestrator.wait_for_fan_out(incident.id, timeout=10)

        assert result.branch(BRANCH_COUNTERPART).status == "failed"
        assert result.self_notified

    def test_provider_raising_notifies_requester(self, orchestrator, email):
        """When the helper raises the incident, the traveller is the counterpart."""
        traveller = create_user("Tina")
        driver = _traveller()
        request = create_pickup_request(traveller.id)
        offer = create_pickup_offer(driver.id)
        _match(ServiceDomain.PICKUP, request.id, offer.id)

        incident = orchestrator.raise_incident(
            driver.id, IncidentType.SAFETY, "Car broke down",
            linked_request=LinkedRequest(domain=ServiceDomain.PICKUP, request_id=request.id),
        )
        result = orchestrator.wait_for_fan_out(incident.id, timeout=10)

        assert result.branch(BRANCH_COUNTERPART).notified_user_ids == [traveller.id]
        record = orchestrator.dispatcher.list_for_user(traveller.id)[0]
        assert record.title == "Emergency Alert - Matched User"
        assert "Airport Pickup service" in record.message
        assert email.subjects_for("tina@example.com") == [
            "Emergency Alert - Please Check on Your Matched User"
        ]

    def test_fan_out_of_closed_incident_is_skipped(self, orchestrator, push):
        alice = _traveller()
        incident = orchestrator.raise_incident(alice.id, IncidentType.SOS, "Help")
        orchestrator.wait_for_fan_out(incident.id, timeout=10)
        orchestrator.cancel(incident.id, alice.id)
        events_before = len(push.events)

        result = orchestrator.fan_out(incident.id)

        assert result.skipped is True
        assert result.branches == {}
        assert len(push.events) == events_before

    def test_fan_out_of_missing_incident_is_skipped(self, orchestrator):
        assert orchestrator.fan_out(404).skipped is True

    def test_flags_not_written_after_close(self, db, email):
        """An incident closed while its fan-out runs keeps its flags unset."""
        alice = _traveller()
        create_admin("Ada")
        entered = threading.Event()
        release = threading.Event()

        class BlockingPush(RecordingPushChannel):
            def publish_to_user(self, user_id, event_name, payload):
                entered.set()
                release.wait(5)
                super().publish_to_user(user_id, event_name, payload)

        dispatcher = NotificationDispatcher(push_channel=BlockingPush(), email_channel=email)
        orchestrator = EmergencyOrchestrator(dispatcher, config=FAST)
        try:
            incident = orchestrator.raise_incident(alice.id, IncidentType.SOS, "Help")
            assert entered.wait(5)
            assert orchestrator.cancel(incident.id, alice.id) is True
            release.set()
            result = orchestrator.wait_for_fan_out(incident.id, timeout=10)
        finally:
            release.set()
            orchestrator.shutdown()
            dispatcher.shutdown()

        assert result.admin_notified is True
        assert result.recorded is False
        stored = _incident(incident.id)
        assert stored.status is IncidentStatus.CANCELLED
        assert stored.admin_notified is False
        assert stored.emergency_contact_notified is False
        assert stored.last_notification_sent is None


class TestResolve:
    """Tests for resolve."""

    def test_resolves_active_incident(self, orchestrator, sink):
        alice = _traveller()
        incident = orchestrator.raise_incident(alice.id, IncidentType.SOS, "Help")
        orchestrator.wait_for_fan_out(incident.id, timeout=10)

        resolved = orchestrator.resolve(incident.id, "  Paramedics attended  ")

        assert resolved.status is IncidentStatus.RESOLVED
        assert resolved.resolution == "Paramedics attended"
        assert resolved.resolved_at is not None
        assert ("emergency.incident_resolved", {}) in sink.events

    def test_blank_note_is_stored_as_none(self, orchestrator):
        alice = _traveller()
        incident = orchestrator.raise_incident(alice.id, IncidentType.SOS, "Help")
        orchestrator.wait_for_fan_out(incident.id, timeout=10)

        assert orchestrator.resolve(incident.id, "   ").resolution is None

    def test_note_too_long(self, orchestrator):
        alice = _traveller()
        incident = orchestrator.raise_incident(alice.id, IncidentType.SOS, "Help")
        orchestrator.wait_for_fan_out(incident.id, timeout=10)

        with pytest.raises(ValueError, match="500"):
            orchestrator.resolve(incident.id, "n" * 501)
        assert _incident(incident.id).status is IncidentStatus.ACTIVE

    def test_missing_incident(self, orchestrator):
        with pytest.raises(RecordNotFoundError):
            orchestrator.resolve(404, "done")

    def test_terminal_incident_unchanged(self, orchestrator):
        alice = _traveller()
        incident = orchestrator.raise_incident(alice.id, IncidentType.SOS, "Help")
        orchestrator.wait_for_fan_out(incident.id, timeout=10)
        orchestrator.cancel(incident.id, alice.id)

        result = orchestrator.resolve(incident.id, "Too late")

        assert result.status is IncidentStatus.CANCELLED
        assert result.resolution == CANCELLED_BY_USER


class TestCancel:
    """Tests for cancel."""

    def test_owner_cancels(self, orchestrator, sink):
        alice = _traveller()
        incident = orchestrator.raise_incident(alice.id, IncidentType.SOS, "Help")
        orchestrator.wait_for_fan_out(incident.id, timeout=10)

        assert orchestrator.cancel(incident.id, alice.id) is True

        stored = _incident(incident.id)
        assert stored.status is IncidentStatus.CANCELLED
        assert stored.resolution == "Cancelled by user"
        assert ("emergency.incident_cancelled", {}) in sink.events

    def test_other_user_cannot_cancel(self, orchestrator):
        alice = _traveller()
        mallory = create_user("Mallory")
        incident = orchestrator.raise_incident(alice.id, IncidentType.SOS, "Help")
        orchestrator.wait_for_fan_out(incident.id, timeout=10)

        assert orchestrator.cancel(incident.id, mallory.id) is False
        assert _incident(incident.id).status is IncidentStatus.ACTIVE

    def test_missing_incident(self, orchestrator):
        assert orchestrator.cancel(404, 1) is False

    def test_resolved_incident_cannot_be_cancelled(self, orchestrator):
        alice = _traveller()
        incident = orchestrator.raise_incident(alice.id, IncidentType.SOS, "Help")
        orchestrator.wait_for_fan_out(incident.id, timeout=10)
        orchestrator.resolve(incident.id, "Sorted")

        assert orchestrator.cancel(incident.id, alice.id) is False
        assert _incident(incident.id).status is IncidentStatus.RESOLVED


class TestResumePending:
    """Tests for resume_pending_fan_outs."""

    def _stale_incident(self, user_id, **fields):
        with get_session() as session:
            return IncidentRepository(session).add(
                EmergencyIncident(
                    user_id=user_id,
                    incident_type=IncidentType.SOS,
                    description="Help",
                    created_at=utc_now() - timedelta(hours=1),
                    **fields,
                )
            )

    def test_requeues_stale_unnotified_incidents(self, orchestrator):
        alice = _traveller()
        stale = self._stale_incident(alice.id)

        assert orchestrator.resume_pending_fan_outs() == 1

        result = orchestrator.wait_for_fan_out(stale.id, timeout=10)
        assert result.self_notified
        assert _incident(stale.id).last_notification_sent is not None
        assert orchestrator.resume_pending_fan_outs() == 0

    def test_ignores_recent_and_closed_incidents(self, orchestrator):
        alice = _traveller()
        self._stale_incident(alice.id, status=IncidentStatus.RESOLVED)
        recent = orchestrator.raise_incident(alice.id, IncidentType.SOS, "Help")
        orchestrator.wait_for_fan_out(recent.id, timeout=10)

        assert orchestrator.resume_pending_fan_outs() == 0

    def test_stops_when_queue_closed(self, orchestrator):
        alice = _traveller()
        self._stale_incident(alice.id)
        orchestrator.queue.shutdown()

        assert orchestrator.resume_pending_fan_outs() == 0


class TestListing:
    """Tests for list_for_user and list_active."""

    def test_lists(self, orchestrator):
        alice = _traveller()
        bob = create_user("Bob")
        first = orchestrator.raise_incident(alice.id, IncidentType.SOS, "One")
        second = orchestrator.raise_incident(alice.id, IncidentType.TRAVEL, "Two")
        other = orchestrator.raise_incident(bob.id, IncidentType.SAFETY, "Three")
        for incident in (first, second, other):
            orchestrator.wait_for_fan_out(incident.id, timeout=10)
        orchestrator.resolve(first.id, "ok")

        assert [i.id for i in orchestrator.list_for_user(alice.id)] == [second.id, first.id]
        assert [i.id for i in orchestrator.list_active()] == [other.id, second.id]


class TestFromConfig:
    """Tests for construction from AppConfig."""

    def test_uses_notification_settings(self, db, push):
        app_config = AppConfig.model_validate(
            {
                "notifications": {"platform_name": "Kiwi Companion", "emergency_number": "999"},
                "emergency": {"max_attempts": 5},
            }
        )
        dispatcher = NotificationDispatcher(push_channel=push)

        orchestrator = EmergencyOrchestrator.from_config(app_config, dispatcher)
        try:
            assert orchestrator.platform_name == "Kiwi Companion"
            assert orchestrator.emergency_number == "999"
            assert orchestrator.queue.max_attempts == 5
        finally:
            orchestrator.shutdown()
            dispatcher.shutdown()
