"""
Periodic background jobs.

One daemon thread per named job, each sleeping on its own interval. A job
receives the current time from the runner's clock, so the same callables
(escalation pass, SLA pass, event reminders) can be driven by hand in tests.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

JobTask = Callable[[datetime], Any]


@dataclass
class Job:
    name: str
    interval: float
    task: JobTask
    runs: int = 0
    failures: int = 0
    last_run_at: Optional[datetime] = None
    _stop: threading.Event = field(default_factory=threading.Event, repr=False)
    _thread: Optional[threading.Thread] = field(default=None, repr=False)


class JobRunner:
    def __init__(self, clock: Callable[[], datetime] = datetime.now):
        self.clock = clock
        self._jobs: Dict[str, Job] = {}
        self._lock = threading.Lock()
        self.is_running = False

    def add(self, name: str, interval: float, task: JobTask) -> Job:
        if interval <= 0:
            raise ValueError(f"Job '{name}' needs a positive interval")
        with self._lock:
            if name in self._jobs:
                raise ValueError(f"Job '{name}' is already registered")
            job = Job(name=name, interval=interval, task=task)
            self._jobs[name] = job
        if self.is_running:
            self._launch(job)
        logger.info(f"Registered job {name} (every {interval}s)")
        return job

    def cancel(self, name: str) -> bool:
        with self._lock:
            job = self._jobs.pop(name, None)
        if job is None:
            return False
        job._stop.set()
        logger.info(f"Cancelled job: {name}")
        return True

    def list_jobs(self) -> List[str]:
        with self._lock:
            return list(self._jobs)

    def get(self, name: str) -> Optional[Job]:
        return self._jobs.get(name)

    def start(self) -> None:
        if self.is_running:
            logger.warning("Job runner is already running")
            return
        self.is_running = True
        for job in list(self._jobs.values()):
            self._launch(job)
        logger.info(f"Job runner started with {len(self._jobs)} jobs")

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        for job in list(self._jobs.values()):
            job._stop.set()
        for job in list(self._jobs.values()):
            if job._thread is not None:
                job._thread.join(timeout)
                job._thread = None
            logger.info(f"Stopped job: {job.name}")
        self.is_running = False
        logger.info("Job runner stopped")

    def run_once(self, name: str) -> Any:
        """Run a job immediately on the caller's thread. Errors propagate."""
        job = self._jobs.get(name)
        if job is None:
            raise KeyError(name)
        now = self.clock()
        result = job.task(now)
        job.runs += 1
        job.last_run_at = now
        return result

    def _launch(self, job: Job) -> None:
        job._stop.clear()
        job._thread = threading.Thread(target=self._loop, args=(job,), name=f"job-{job.name}", daemon=True)
        job._thread.start()

    def _loop(self, job: Job) -> None:
        while not job._stop.wait(job.interval):
            logger.info(f"Running job {job.name}...")
            try:
                self.run_once(job.name)
            except Exception:
                # A failing run never kills the timer
                job.failures += 1
                logger.exception(f"Error in job {job.name}")
