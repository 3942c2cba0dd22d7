"""Fan-out queue: hands incident fan-outs to a worker pool.

Submitting returns a Future that completes when the fan-out finished (or
gave up), so callers and tests can wait on it. A failed run is retried with
exponential backoff, and a second submission for an incident whose fan-out
is still in flight returns the existing Future instead of starting another.
Finished Futures leave the in-flight map; a bounded number are kept so a
late `wait` still sees the result.
"""

import threading
from collections import OrderedDict
from concurrent.futures import Future, ThreadPoolExecutor
from functools import partial
from typing import Any, Callable, Dict, Optional

from app.logging import get_logger
from app.logging.context import bind_log_context, log_context

from .exceptions import FanOutQueueClosedError

logger = get_logger(__name__, component="emergency")


class FanOutQueue:
    """Thread-pool handoff with per-incident de-duplication and retry."""

    def __init__(
        self,
        handler: Callable[[int], Any],
        max_workers: int = 4,
        max_attempts: int = 3,
        initial_delay: float = 1.0,
        backoff_multiplier: float = 2.0,
        retain_completed: int = 256,
        logger_instance=None,
    ):
        """Initialize the queue.

        Args:
            handler: Called with an incident id; raising triggers a retry
            max_workers: Concurrent fan-outs
            max_attempts: Attempts per submission, including the first
            initial_delay: Seconds to wait before the first retry
            backoff_multiplier: Factor applied to the delay after each retry
            retain_completed: Finished Futures kept for late `wait` calls
            logger_instance: Optional logger (defaults to module logger)
        """
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")

        self._handler = handler
        self.max_attempts = max_attempts
        self.initial_delay = initial_delay
        self.backoff_multiplier = backoff_multiplier
        self.retain_completed = retain_completed
        self.logger = logger_instance or logger

        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="fan-out")
        self._futures: Dict[int, Future] = {}
        self._completed: "OrderedDict[int, Future]" = OrderedDict()
        # Reentrant: a done callback runs inline when the Future is already finished.
        self._lock = threading.RLock()
        self._stopping = threading.Event()
        self._is_shutdown = False

    def submit(self, incident_id: int) -> Future:
        """Schedule a fan-out for ``incident_id``.

        Returns:
            Future resolving to the handler's result. If a fan-out for the
            incident is already queued or running, that Future is returned.

        Raises:
            FanOutQueueClosedError: If the queue has been shut down
        """
        with self._lock:
            if self._is_shutdown:
                raise FanOutQueueClosedError(
                    f"Cannot queue fan-out for incident {incident_id}: queue is shut down"
                )

            existing = self._futures.get(incident_id)
            if existing is not None and not existing.done():
                self.logger.debug(
                    f"Fan-out for incident {incident_id} already pending",
                    extra={"event": "emergency.fan_out.deduplicated", "incident_id": incident_id},
                )
                return existing

            future = self._executor.submit(bind_log_context(self._run_with_retry), incident_id)
            self._futures[incident_id] = future
            future.add_done_callback(partial(self._release, incident_id))

        self.logger.debug(
            f"Queued fan-out for incident {incident_id}",
            extra={"event": "emergency.fan_out.queued", "incident_id": incident_id},
        )
        return future

    def future_for(self, incident_id: int) -> Optional[Future]:
        """Most recent Future submitted for ``incident_id``, if any."""
        with self._lock:
            future = self._futures.get(incident_id)
            return future if future is not None else self._completed.get(incident_id)

    def wait(self, incident_id: int, timeout: Optional[float] = None) -> Any:
        """Block until the latest fan-out of ``incident_id`` finishes.

        Returns:
            The handler's result, or None if nothing was ever submitted

        Raises:
            concurrent.futures.TimeoutError: If ``timeout`` elapses
            Exception: Whatever the final attempt raised
        """
        future = self.future_for(incident_id)
        if future is None:
            return None
        return future.result(timeout=timeout)

    def pending_count(self) -> int:
        with self._lock:
            return sum(1 for f in self._futures.values() if not f.done())

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting work. Idempotent.

        Args:
            wait: If True, let queued fan-outs (and their retries) finish.
                If False, pending retries give up at their next backoff.
        """
        with self._lock:
            if self._is_shutdown:
                return
            self._is_shutdown = True

        if not wait:
            self._stopping.set()
        self._executor.shutdown(wait=wait)
        self.logger.debug(
            "Fan-out queue shut down",
            extra={"event": "emergency.fan_out_queue.shutdown", "wait": wait},
        )

    def _release(self, incident_id: int, future: Future) -> None:
        with self._lock:
            if self._futures.get(incident_id) is not future:
                return
            del self._futures[incident_id]
            if self.retain_completed > 0:
                self._completed[incident_id] = future
                self._completed.move_to_end(incident_id)
                while len(self._completed) > self.retain_completed:
                    self._completed.popitem(last=False)

    def _run_with_retry(self, incident_id: int) -> Any:
        delay = self.initial_delay
        with log_context(incident_id=incident_id):
            for attempt in range(1, self.max_attempts + 1):
                try:
                    return self._handler(incident_id)
                except Exception as e:
                    if attempt >= self.max_attempts or self._stopping.is_set():
                        self.logger.error(
                            f"Fan-out for incident {incident_id} failed after {attempt} attempt(s): {e}",
                            exc_info=True,
                            extra={
                                "event": "emergency.fan_out.gave_up",
                                "attempt": attempt,
                                "error_type": type(e).__name__,
                            },
                        )
                        raise

                    self.logger.warning(
                        f"Fan-out attempt {attempt} for incident {incident_id} failed: {e}. "
                        f"Retrying in {delay:.1f}s",
                        extra={
                            "event": "emergency.fan_out.retrying",
                            "attempt": attempt,
                            "delay_seconds": delay,
                            "error_type": type(e).__name__,
                        },
                    )
                    if self._stopping.wait(delay):
                        raise
                    delay *= self.backoff_multiplier
