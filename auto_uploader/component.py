"""
The uploader component.

Binds a recurring job to the scheduler whenever configuration is
supplied or changed, and runs the directory watch loop each time that
job fires.

Lifecycle, driven by the host (see ``auto_uploader.service``):

    activate(config)   store config, pick a fresh schedule name
    modified(config)   drop the old job, pick a fresh name, schedule again
    deactivate()       drop the job and stop any running watch loop
    run()              scheduled entry point: watch until stopped

The job is scheduled with ``can_run_concurrently=False``. Because a
watch loop only returns when it is stopped, the first firing keeps
running and later firings of the same job are skipped. ``run`` also
refuses to start a second loop while one is running, which covers the
fresh registration made by ``modified``.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Callable

from auto_uploader.config import UploaderConfiguration
from auto_uploader.ingest import UploadStats
from auto_uploader.resolver import ResolverFactory
from auto_uploader.scheduler import ScheduleOptions, ScheduleRegistration, Scheduler
from auto_uploader.watcher import DirectoryWatchLoop

logger = logging.getLogger(__name__)

LoopFactory = Callable[..., DirectoryWatchLoop]


def _new_scheduler_id() -> str:
    return str(uuid.uuid4())


class AutoFileUploader:
    """Watches the configured directory and updates assets in the repository."""

    def __init__(
        self,
        scheduler: Scheduler,
        resolver_factory: ResolverFactory | None = None,
        loop_factory: LoopFactory = DirectoryWatchLoop.from_config,
        id_factory: Callable[[], str] = _new_scheduler_id,
    ):
        self._scheduler = scheduler
        self._resolver_factory = resolver_factory
        self._loop_factory = loop_factory
        self._id_factory = id_factory
        self._config: UploaderConfiguration | None = None
        self._scheduler_id: str | None = None
        self._registration: ScheduleRegistration | None = None
        self._loops: set[DirectoryWatchLoop] = set()
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self.stats = UploadStats()

    # ---- state ----

    @property
    def config(self) -> UploaderConfiguration | None:
        return self._config

    @property
    def scheduler_id(self) -> str | None:
        return self._scheduler_id

    @property
    def registration(self) -> ScheduleRegistration | None:
        return self._registration

    @property
    def active_runs(self) -> int:
        with self._lock:
            return len(self._loops)

    # ---- lifecycle ----

    def activate(self, config: UploaderConfiguration) -> None:
        """Store *config* and pick a fresh schedule name. Does not schedule."""
        logger.info("Initializing file uploader service...")
        self._config = config
        self._scheduler_id = self._id_factory()

    def modified(self, config: UploaderConfiguration) -> None:
        """Replace the configuration and reschedule under a fresh name.

        A watch loop already running keeps running with the old settings.
        """
        self._remove_scheduler()
        self._scheduler_id = self._id_factory()
        with self._lock:
            self._config = config
        self._add_scheduler()

    def deactivate(self, timeout: float = 5.0) -> None:
        """Drop the scheduled job and stop running watch loops."""
        self._remove_scheduler()
        with self._lock:
            # run() checks this under the same lock.
            self._config = None
            loops = list(self._loops)
        for loop in loops:
            loop.interrupt()
        with self._idle:
            if not self._idle.wait_for(lambda: not self._loops, timeout):
                logger.warning("%d watch loop(s) still running after deactivate", len(self._loops))

    # ---- scheduled entry point ----

    def run(self) -> None:
        """Watch the configured directory until the loop is stopped.

        Only one watch loop runs per component. A firing that arrives while
        one is running, including one from a newer registration after
        :meth:`modified`, returns at once.
        """
        with self._lock:
            config = self._config
            if config is None:
                logger.warning("Not configured; nothing to watch.")
                return
            if self._loops:
                logger.debug("A watch loop is already running; skipping this firing.")
                return
            loop = self._loop_factory(config, self._resolver_factory, stats=self.stats)
            self._loops.add(loop)
        try:
            loop.watch(config.watched_directory_path, config.destination_path)
        finally:
            with self._idle:
                self._loops.discard(loop)
                self._idle.notify_all()

    # ---- scheduler binding ----

    def _add_scheduler(self) -> None:
        try:
            options = ScheduleOptions(
                name=self._scheduler_id,
                cron_expression=self._config.cron_expression,
                can_run_concurrently=False,
            )
            self._registration = self._scheduler.schedule(self, options)
        except Exception:
            logger.exception("Could not schedule job %s", self._scheduler_id)
            self._registration = None

    def _remove_scheduler(self) -> None:
        if self._scheduler_id is None:
            return
        logger.info("Removing scheduler %s...", self._scheduler_id)
        try:
            self._scheduler.unschedule(self._scheduler_id)
        except Exception:
            logger.exception("Could not unschedule job %s", self._scheduler_id)
        self._registration = None
