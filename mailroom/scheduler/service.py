"""Scheduler service for periodic notification jobs."""

import threading
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from mailroom.logging import get_logger

logger = get_logger(__name__, component="scheduler")

SCHEDULED_JOB_ID = "process-scheduled"
REENGAGE_JOB_ID = "process-reengage"


class SchedulerService:
    """
    Wraps APScheduler to trigger periodic jobs at configured intervals.

    Uses BackgroundScheduler to run jobs in a separate thread while
    allowing the main thread to handle signals and coordinate shutdown.
    Each job runs at most once at a time and delayed runs are coalesced.
    """

    def __init__(self, shutdown_event: Optional[threading.Event] = None):
        """
        Initialize the scheduler service.

        Args:
            shutdown_event: Optional event to set on shutdown for coordination
        """
        self.shutdown_event = shutdown_event
        self._jobs: Dict[str, Callable[[], object]] = {}

        self.scheduler = BackgroundScheduler(
            job_defaults={
                "max_instances": 1,
                "coalesce": True,
            },
            timezone=timezone.utc,
        )

    def add_job(
        self,
        job_id: str,
        func: Callable[[], object],
        interval_seconds: int,
        name: Optional[str] = None,
        run_immediately: bool = True,
    ) -> None:
        """
        Register a periodic job.

        Args:
            job_id: Stable job identifier
            func: Callable invoked on every run
            interval_seconds: Interval between runs in seconds
            name: Human-readable job name
            run_immediately: Run once right after start instead of waiting one interval
        """
        trigger = IntervalTrigger(seconds=interval_seconds, timezone=timezone.utc)
        kwargs = {}
        if run_immediately:
            kwargs["next_run_time"] = datetime.now(timezone.utc)

        self.scheduler.add_job(
            func=func,
            trigger=trigger,
            id=job_id,
            name=name or job_id,
            replace_existing=True,
            misfire_grace_time=interval_seconds,
            **kwargs,
        )
        self._jobs[job_id] = func

        logger.info(
            f"Registered job {job_id} with interval: {interval_seconds} seconds",
            extra={
                "event": "scheduler.job.registered",
                "job_id": job_id,
                "interval_seconds": interval_seconds,
            },
        )

    def start(self) -> None:
        """Start the scheduler (spawns worker threads)."""
        self.scheduler.start()
        logger.info(
            f"Scheduler started with {len(self._jobs)} job(s)",
            extra={"event": "scheduler.started", "jobs": sorted(self._jobs)},
        )

    def shutdown(self, wait: bool = False) -> None:
        """
        Shutdown the scheduler gracefully.

        Args:
            wait: If True, wait for running jobs to complete before returning
        """
        logger.info(
            "Shutting down scheduler",
            extra={
                "event": "scheduler.stopping",
                "wait_for_jobs": wait,
            },
        )

        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)

        if self.shutdown_event:
            self.shutdown_event.set()

        logger.info(
            "Scheduler shutdown complete",
            extra={"event": "scheduler.stopped"}
        )

    def trigger_now(self, job_id: str):
        """
        Run a registered job synchronously in the current thread.

        Returns:
            Whatever the job callable returns

        Raises:
            KeyError: If no job with this id is registered
        """
        logger.info(
            f"Triggering immediate run of {job_id}",
            extra={"event": "scheduler.trigger_now", "job_id": job_id}
        )
        return self._jobs[job_id]()

    def is_running(self) -> bool:
        """Check if the scheduler is currently running."""
        return self.scheduler.running

    def get_next_run_time(self, job_id: str) -> Optional[datetime]:
        """
        Get the next scheduled run time of a job.

        Returns:
            Next run time as a datetime, or None if not scheduled
        """
        job = self.scheduler.get_job(job_id)
        return job.next_run_time if job else None
