"""Scheduler for the periodic pending fan-out sweep."""

import threading
from datetime import datetime, timezone
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app.logging import get_logger

logger = get_logger(__name__, component="scheduler")

SWEEP_JOB_ID = "fan-out-sweep"


class SweepScheduler:
    """
    Wraps APScheduler to re-queue pending emergency fan-outs at an interval.

    Uses BackgroundScheduler so the main thread stays free to handle signals
    and coordinate shutdown.
    """

    def __init__(
        self,
        sweep_callable: Callable[[], int],
        interval_seconds: int,
        shutdown_event: Optional[threading.Event] = None,
    ):
        """
        Initialize the scheduler.

        Args:
            sweep_callable: Called on each run; returns the number of incidents queued
            interval_seconds: Interval between runs in seconds
            shutdown_event: Optional event to set on shutdown for coordination
        """
        self.sweep_callable = sweep_callable
        self.interval_seconds = interval_seconds
        self.shutdown_event = shutdown_event

        self.scheduler = BackgroundScheduler(
            job_defaults={
                "max_instances": 1,
                "coalesce": True,
                "misfire_grace_time": interval_seconds,
            },
            timezone=timezone.utc,
        )

    def start(self) -> None:
        """
        Register the sweep job and start the scheduler.

        The first sweep runs immediately so incidents left over from a
        previous process are picked up on startup.
        """
        next_run = datetime.now(timezone.utc)
        self.scheduler.add_job(
            func=self.run_sweep,
            trigger=IntervalTrigger(seconds=self.interval_seconds, timezone=timezone.utc),
            id=SWEEP_JOB_ID,
            name="Pending emergency fan-out sweep",
            replace_existing=True,
            next_run_time=next_run,
        )
        self.scheduler.start()

        logger.info(
            f"Scheduler started with interval: {self.interval_seconds} seconds",
            extra={
                "event": "scheduler.started",
                "interval_seconds": self.interval_seconds,
                "next_run_time": next_run.isoformat(),
            },
        )

    def run_sweep(self) -> int:
        """Run one sweep; failures are logged and reported as zero queued."""
        try:
            queued = self.sweep_callable()
        except Exception as e:
            logger.error(
                f"Fan-out sweep failed: {e}",
                exc_info=True,
                extra={"event": "scheduler.sweep.failed", "error_type": type(e).__name__},
            )
            return 0

        logger.debug(
            f"Fan-out sweep queued {queued} incident(s)",
            extra={"event": "scheduler.sweep.completed", "queued": queued},
        )
        return queued

    def shutdown(self, wait: bool = False) -> None:
        """
        Shutdown the scheduler gracefully.

        Args:
            wait: If True, wait for a running sweep to complete before returning
        """
        logger.info(
            "Shutting down scheduler",
            extra={"event": "scheduler.stopping", "wait_for_jobs": wait},
        )

        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)

        if self.shutdown_event:
            self.shutdown_event.set()

        logger.info("Scheduler shutdown complete", extra={"event": "scheduler.stopped"})

    def is_running(self) -> bool:
        return self.scheduler.running

    def get_next_run_time(self) -> Optional[datetime]:
        job = self.scheduler.get_job(SWEEP_JOB_ID)
        return job.next_run_time if job else None
