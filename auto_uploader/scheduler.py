"""In-process cron scheduler.

Fires registered jobs on their cron schedule from a single trigger
thread. Each firing runs the job on its own worker thread; a job
registered with ``can_run_concurrently=False`` is skipped while its
previous run is still alive.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone as dt_timezone
from typing import Protocol
from zoneinfo import ZoneInfo

from auto_uploader.cron import next_fire_time, parse_cron

logger = logging.getLogger(__name__)

# Upper bound on one trigger-thread sleep so clock jumps are noticed.
_MAX_SLEEP_SECONDS = 1.0


class Runnable(Protocol):
    def run(self) -> None: ...


def _local_now() -> datetime:
    return datetime.now().astimezone()


@dataclass(frozen=True)
class ScheduleOptions:
    """How and when a job should fire."""

    name: str
    cron_expression: str
    can_run_concurrently: bool = True


@dataclass(eq=False)
class ScheduleRegistration:
    """Handle for one registered job, returned by :meth:`Scheduler.schedule`."""

    options: ScheduleOptions
    job: Runnable
    next_fire: datetime
    fired: int = 0
    skipped: int = 0
    _worker: threading.Thread | None = field(default=None, repr=False)

    @property
    def name(self) -> str:
        return self.options.name

    @property
    def is_running(self) -> bool:
        """Return whether a run of this job is still in progress."""
        return self._worker is not None and self._worker.is_alive()

    def join(self, timeout: float | None = None) -> None:
        """Wait for an in-progress run to finish."""
        worker = self._worker
        if worker is not None:
            worker.join(timeout)


class Scheduler:
    """Cron-driven job scheduler.

    Usage:
        scheduler = Scheduler()
        scheduler.start()
        scheduler.schedule(job, ScheduleOptions("name", "0 * * * * ?", False))
        ...
        scheduler.unschedule("name")
        scheduler.stop()
    """

    def __init__(
        self,
        clock: Callable[[], datetime] = _local_now,
        timezone: str | None = None,
    ):
        self._clock = clock
        self._timezone = timezone
        self._jobs: dict[str, ScheduleRegistration] = {}
        self._lock = threading.Lock()
        self._wake = threading.Event()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    # ---- lifecycle ----

    def start(self) -> None:
        """Start the trigger thread."""
        if self.is_running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._loop, daemon=True, name="CronScheduler"
        )
        self._thread.start()
        logger.info("Scheduler started.")

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the trigger thread; runs already in progress are left alone."""
        self._stop.set()
        self._wake.set()
        if self._thread:
            self._thread.join(timeout=timeout)
            self._thread = None
        logger.info("Scheduler stopped.")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # ---- registration ----

    def schedule(self, job: Runnable, options: ScheduleOptions) -> ScheduleRegistration:
        """Register *job* under ``options.name``.

        Raises CronParseError when the expression is invalid. A job already
        registered under the same name is replaced.
        """
        parse_cron(options.cron_expression)
        registration = ScheduleRegistration(
            options=options,
            job=job,
            next_fire=next_fire_time(
                options.cron_expression, now=self._clock(), timezone=self._timezone
            ),
        )
        with self._lock:
            if options.name in self._jobs:
                logger.warning("Replacing job already scheduled as %s", options.name)
            self._jobs[options.name] = registration
        self._wake.set()
        logger.info(
            "Scheduled job %s (cron=%r, concurrent=%s, next=%s)",
            options.name,
            options.cron_expression,
            options.can_run_concurrently,
            registration.next_fire.isoformat(),
        )
        return registration

    def unschedule(self, name: str) -> bool:
        """Remove the job registered under *name*. Returns False if unknown."""
        with self._lock:
            registration = self._jobs.pop(name, None)
        if registration is None:
            logger.debug("No job scheduled as %s", name)
            return False
        logger.info("Unscheduled job %s", name)
        return True

    def get(self, name: str) -> ScheduleRegistration | None:
        with self._lock:
            return self._jobs.get(name)

    @property
    def job_names(self) -> list[str]:
        with self._lock:
            return list(self._jobs)

    # ---- firing ----

    def fire_due(self, now: datetime | None = None) -> list[str]:
        """Fire every job whose next fire time has passed.

        Returns the names of the jobs that were started.
        """
        now = now or self._clock()
        if now.tzinfo is None:
            now = now.replace(
                tzinfo=ZoneInfo(self._timezone) if self._timezone else dt_timezone.utc
            )
        due: list[ScheduleRegistration] = []
        with self._lock:
            for registration in self._jobs.values():
                if registration.next_fire <= now:
                    due.append(registration)
                    registration.next_fire = next_fire_time(
                        registration.options.cron_expression,
                        now=now,
                        timezone=self._timezone,
                    )

        started = []
        for registration in due:
            if self._fire(registration):
                started.append(registration.name)
        return started

    def _fire(self, registration: ScheduleRegistration) -> bool:
        if not registration.options.can_run_concurrently and registration.is_running:
            registration.skipped += 1
            logger.debug(
                "Skipping %s: previous run still in progress", registration.name
            )
            return False
        worker = threading.Thread(
            target=self._run_job,
            args=(registration,),
            daemon=True,
            name=f"Job-{registration.name}",
        )
        registration._worker = worker
        registration.fired += 1
        worker.start()
        return True

    def _run_job(self, registration: ScheduleRegistration) -> None:
        try:
            registration.job.run()
        except Exception:
            logger.exception("Job %s failed", registration.name)

    def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                self.fire_due()
            except Exception:
                logger.exception("Error in scheduler loop")
            self._wake.clear()
            self._wake.wait(timeout=self._seconds_until_next())

    def _seconds_until_next(self) -> float:
        with self._lock:
            fires = [r.next_fire for r in self._jobs.values()]
        if not fires:
            return _MAX_SLEEP_SECONDS
        delta = (min(fires) - self._clock()).total_seconds()
        return min(max(delta, 0.0), _MAX_SLEEP_SECONDS)
