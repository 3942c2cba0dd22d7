"""Tests for the fan-out queue."""

import threading
import time
from unittest.mock import Mock

import pytest

from app.emergency import FanOutQueue, FanOutQueueClosedError
from app.logging.context import get_log_context, log_context


@pytest.fixture
def queues():
    created = []

    def make(handler, **kwargs):
        kwargs.setdefault("initial_delay", 0)
        queue = FanOutQueue(handler, **kwargs)
        created.append(queue)
        return queue

    yield make
    for queue in created:
        queue.shutdown(wait=False)


class TestSubmit:
    """Tests for submit and wait."""

    def test_runs_handler_and_returns_result(self, queues):
        queue = queues(lambda incident_id: f"done {incident_id}")

        future = queue.submit(7)

        assert future.result(timeout=5) == "done 7"
        assert queue.wait(7, timeout=5) == "done 7"

    def test_wait_for_unknown_incident(self, queues):
        assert queues(Mock()).wait(99) is None

    def test_in_flight_submission_is_deduplicated(self, queues):
        release = threading.Event()
        handler = Mock(side_effect=lambda incident_id: release.wait(5))
        queue = queues(handler)

        first = queue.submit(7)
        second = queue.submit(7)
        assert queue.pending_count() == 1
        release.set()

        assert first is second
        first.result(timeout=5)
        assert handler.call_count == 1

    def test_resubmission_after_completion_runs_again(self, queues):
        handler = Mock(return_value="ok")
        queue = queues(handler)

        first = queue.submit(7)
        first.result(timeout=5)
        second = queue.submit(7)
        second.result(timeout=5)

        assert first is not second
        assert handler.call_count == 2
        assert queue.future_for(7) is second

    def test_different_incidents_are_independent(self, queues):
        handler = Mock(side_effect=lambda incident_id: incident_id * 10)
        queue = queues(handler)

        futures = [queue.submit(i) for i in (1, 2, 3)]

        assert [f.result(timeout=5) for f in futures] == [10, 20, 30]

    def test_handler_sees_incident_and_caller_context(self, queues):
        queue = queues(lambda incident_id: get_log_context())

        with log_context(user_id=3):
            future = queue.submit(7)

        assert future.result(timeout=5) == {"user_id": 3, "incident_id": 7}


class TestRetry:
    """Tests for retry with backoff."""

    def test_retries_until_success(self, queues):
        handler = Mock(side_effect=[RuntimeError("db locked"), RuntimeError("db locked"), "ok"])
        queue = queues(handler, max_attempts=3)

        assert queue.submit(7).result(timeout=5) == "ok"
        assert handler.call_count == 3

    def test_gives_up_after_max_attempts(self, queues):
        handler = Mock(side_effect=RuntimeError("db down"))
        queue = queues(handler, max_attempts=2)

        with pytest.raises(RuntimeError, match="db down"):
            queue.submit(7).result(timeout=5)
        assert handler.call_count == 2

    def test_single_attempt(self, queues):
        handler = Mock(side_effect=RuntimeError("db down"))
        queue = queues(handler, max_attempts=1)

        queue.submit(7)

        with pytest.raises(RuntimeError):
            queue.wait(7, timeout=5)
        assert handler.call_count == 1

    def test_invalid_max_attempts(self):
        with pytest.raises(ValueError):
            FanOutQueue(Mock(), max_attempts=0)


class TestShutdown:
    """Tests for shutdown."""

    def test_submit_after_shutdown_raises(self, queues):
        queue = queues(Mock())

        queue.shutdown()
        queue.shutdown()

        with pytest.raises(FanOutQueueClosedError):
            queue.submit(7)

    def test_shutdown_with_wait_drains_queue(self, queues):
        handler = Mock(return_value="ok")
        queue = queues(handler)
        future = queue.submit(7)

        queue.shutdown(wait=True)

        assert future.done()
        assert future.result() == "ok"

    def test_shutdown_without_wait_interrupts_backoff(self, queues):
        first_attempt = threading.Event()

        def handler(incident_id):
            first_attempt.set()
            raise RuntimeError("db down")

        queue = queues(handler, max_attempts=5, initial_delay=30)
        future = queue.submit(7)
        assert first_attempt.wait(5)

        queue.shutdown(wait=False)

        with pytest.raises(RuntimeError, match="db down"):
            future.result(timeout=5)


def _eventually(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            return False
        time.sleep(0.01)
    return True


class TestCompletedFutures:
    """Finished fan-outs leave the in-flight map; a few are kept for late waits."""

    def test_finished_future_leaves_in_flight_map(self, queues):
        queue = queues(lambda incident_id: "ok")

        queue.submit(7).result(timeout=5)

        assert _eventually(lambda: queue._futures == {})
        assert queue.pending_count() == 0
        assert queue.wait(7, timeout=5) == "ok"

    def test_failed_future_is_released_too(self, queues):
        queue = queues(Mock(side_effect=RuntimeError("db down")), max_attempts=1)

        with pytest.raises(RuntimeError):
            queue.submit(7).result(timeout=5)

        assert _eventually(lambda: queue._futures == {})

    def test_retention_is_bounded(self, queues):
        queue = queues(lambda incident_id: incident_id * 10, retain_completed=2)

        for incident_id in (1, 2, 3):
            queue.submit(incident_id).result(timeout=5)

        assert _eventually(lambda: list(queue._completed) == [2, 3])
        assert queue._futures == {}
        assert queue.wait(1) is None
        assert queue.wait(3, timeout=5) == 30

    def test_no_retention(self, queues):
        queue = queues(lambda incident_id: "ok", retain_completed=0)

        queue.submit(7).result(timeout=5)

        assert _eventually(lambda: queue._futures == {})
        assert queue._completed == {}
        assert queue.wait(7) is None

    def test_late_callback_does_not_drop_newer_submission(self, queues):
        release = threading.Event()
        calls = []

        def handler(incident_id):
            calls.append(incident_id)
            if len(calls) == 2:
                release.wait(5)
            return len(calls)

        queue = queues(handler)
        first = queue.submit(7)
        first.result(timeout=5)
        second = queue.submit(7)

        assert queue.future_for(7) is second
        queue._release(7, first)
        assert queue.future_for(7) is second
        release.set()
        assert second.result(timeout=5) == 2
