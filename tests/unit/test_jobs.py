"""
Unit tests for the periodic job runner.
"""
import threading

import pytest

from scheduler.jobs import JobRunner
from tests.factories import at


@pytest.fixture
def runner():
    r = JobRunner(clock=lambda: at(9))
    yield r
    r.stop(timeout=1)


class TestRegistration:
    def test_add_cancel_list(self, runner):
        runner.add("escalation", 60, lambda now: None)
        runner.add("sla_alerts", 60, lambda now: None)
        assert runner.list_jobs() == ["escalation", "sla_alerts"]

        assert runner.cancel("escalation") is True
        assert runner.cancel("escalation") is False
        assert runner.list_jobs() == ["sla_alerts"]

    def test_duplicate_name_rejected(self, runner):
        runner.add("escalation", 60, lambda now: None)
        with pytest.raises(ValueError):
            runner.add("escalation", 30, lambda now: None)

    def test_interval_must_be_positive(self, runner):
        with pytest.raises(ValueError):
            runner.add("broken", 0, lambda now: None)


class TestRunOnce:
    def test_passes_clock_time_and_counts(self, runner):
        seen = []
        runner.add("sweep", 60, seen.append)

        runner.run_once("sweep")

        assert seen == [at(9)]
        job = runner.get("sweep")
        assert job.runs == 1
        assert job.last_run_at == at(9)

    def test_errors_propagate_when_run_by_hand(self, runner):
        def explode(now):
            raise RuntimeError("boom")

        runner.add("bad", 60, explode)
        with pytest.raises(RuntimeError):
            runner.run_once("bad")

    def test_unknown_job(self, runner):
        with pytest.raises(KeyError):
            runner.run_once("missing")


class TestBackgroundLoop:
    def test_runs_on_interval_and_survives_errors(self, runner):
        calls = []
        done = threading.Event()

        def flaky(now):
            calls.append(now)
            if len(calls) == 1:
                raise RuntimeError("first run fails")
            done.set()

        runner.add("flaky", 0.01, flaky)
        runner.start()
        assert done.wait(timeout=2)
        runner.stop(timeout=1)

        job = runner.get("flaky")
        assert job.failures >= 1
        assert job.runs >= 1
        assert runner.is_running is False

    def test_job_added_while_running_starts(self, runner):
        ran = threading.Event()
        runner.start()
        runner.add("late", 0.01, lambda now: ran.set())
        assert ran.wait(timeout=2)
