"""
Tests for the cron scheduler.
"""

import threading
from datetime import datetime, timezone

import pytest

from auto_uploader.errors import CronParseError
from auto_uploader.scheduler import ScheduleOptions, Scheduler

T0 = datetime(2026, 10, 18, 12, 0, 30, tzinfo=timezone.utc)


def at(minute, second=0):
    return datetime(2026, 10, 18, 12, minute, second, tzinfo=timezone.utc)


class BlockingJob:
    """Job that blocks until released."""

    def __init__(self):
        self.started = threading.Event()
        self.release = threading.Event()
        self.runs = 0

    def run(self):
        self.runs += 1
        self.started.set()
        self.release.wait(timeout=5)


class CountingJob:
    def __init__(self):
        self.runs = 0
        self.done = threading.Event()

    def run(self):
        self.runs += 1
        self.done.set()


@pytest.fixture
def scheduler():
    return Scheduler(clock=lambda: T0)


class TestRegistration:
    def test_schedule_computes_next_fire(self, scheduler):
        registration = scheduler.schedule(CountingJob(), ScheduleOptions("job", "0 * * * * ?"))

        assert registration.next_fire == at(1)
        assert scheduler.job_names == ["job"]

    def test_invalid_expression_rejected(self, scheduler):
        with pytest.raises(CronParseError):
            scheduler.schedule(CountingJob(), ScheduleOptions("job", "not cron"))
        assert scheduler.job_names == []

    def test_unschedule(self, scheduler):
        scheduler.schedule(CountingJob(), ScheduleOptions("job", "0 * * * * ?"))

        assert scheduler.unschedule("job") is True
        assert scheduler.unschedule("job") is False
        assert scheduler.job_names == []

    def test_same_name_replaces(self, scheduler):
        first, second = CountingJob(), CountingJob()
        scheduler.schedule(first, ScheduleOptions("job", "0 * * * * ?"))
        scheduler.schedule(second, ScheduleOptions("job", "0 * * * * ?"))

        assert scheduler.get("job").job is second
        assert scheduler.job_names == ["job"]


class TestFiring:
    def test_not_due_yet(self, scheduler):
        job = CountingJob()
        scheduler.schedule(job, ScheduleOptions("job", "0 * * * * ?"))

        assert scheduler.fire_due(at(0, 59)) == []
        assert job.runs == 0

    def test_due_job_runs_and_advances(self, scheduler):
        job = CountingJob()
        registration = scheduler.schedule(job, ScheduleOptions("job", "0 * * * * ?"))

        assert scheduler.fire_due(at(1)) == ["job"]
        registration.join(timeout=5)

        assert job.runs == 1
        assert registration.next_fire == at(2)

    def test_overlap_suppressed_when_not_concurrent(self, scheduler):
        job = BlockingJob()
        registration = scheduler.schedule(
            job, ScheduleOptions("job", "0 * * * * ?", can_run_concurrently=False)
        )

        scheduler.fire_due(at(1))
        assert job.started.wait(timeout=5)
        assert scheduler.fire_due(at(2)) == []
        assert registration.skipped == 1

        job.release.set()
        registration.join(timeout=5)
        assert scheduler.fire_due(at(3)) == ["job"]
        registration.join(timeout=5)
        assert job.runs == 2

    def test_overlap_allowed_when_concurrent(self, scheduler):
        job = BlockingJob()
        scheduler.schedule(job, ScheduleOptions("job", "0 * * * * ?", can_run_concurrently=True))

        scheduler.fire_due(at(1))
        assert job.started.wait(timeout=5)

        assert scheduler.fire_due(at(2)) == ["job"]
        job.release.set()

    def test_job_errors_are_logged(self, scheduler, caplog):
        class Failing:
            def run(self):
                raise RuntimeError("job exploded")

        registration = scheduler.schedule(Failing(), ScheduleOptions("bad", "0 * * * * ?"))
        scheduler.fire_due(at(1))
        registration.join(timeout=5)

        assert "job exploded" in caplog.text

    def test_naive_now_treated_as_utc(self, scheduler):
        job = CountingJob()
        registration = scheduler.schedule(job, ScheduleOptions("job", "0 * * * * ?"))

        assert scheduler.fire_due(datetime(2026, 10, 18, 12, 1, 0)) == ["job"]
        registration.join(timeout=5)


class TestTriggerThread:
    def test_thread_fires_jobs(self):
        job = CountingJob()
        scheduler = Scheduler()
        scheduler.schedule(job, ScheduleOptions("job", "* * * * * ?"))
        scheduler.start()
        try:
            assert job.done.wait(timeout=5)
        finally:
            scheduler.stop()
        assert not scheduler.is_running

    def test_start_is_idempotent(self):
        scheduler = Scheduler()
        scheduler.start()
        thread = scheduler._thread
        scheduler.start()
        try:
            assert scheduler._thread is thread
        finally:
            scheduler.stop()

    def test_stop_without_start(self):
        scheduler = Scheduler()
        scheduler.stop()
        assert not scheduler.is_running
