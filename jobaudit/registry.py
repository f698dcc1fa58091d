"""Registry of named recurring jobs backed by APScheduler.

The registry owns a :class:`~apscheduler.schedulers.background.BackgroundScheduler`
and keeps its own table of active jobs so registration, conflict handling and
per-tick dispatch can be reasoned about independently of APScheduler's job
store.

Jobs must only be registered once the scheduler is running. The scheduler may
start after other parts of the process have already begun their own startup,
so :meth:`JobRegistry.wait_until_ready` exposes a readiness event fed by
APScheduler's ``EVENT_SCHEDULER_STARTED`` notification and
:meth:`JobRegistry.register` refuses to add anything while the scheduler is
stopped.

Job tasks are non-blocking: they return a :class:`concurrent.futures.Future`
instead of doing their work on the scheduler's executor thread. A tick only
launches the task; completion (and failure) is observed through a done
callback. Whether a tick may start while an earlier invocation is still in
flight is decided per job by :class:`OverlapPolicy`.
"""

from __future__ import annotations

import enum
import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from functools import partial
from typing import Callable, Optional

import sentry_sdk
from apscheduler.events import EVENT_SCHEDULER_SHUTDOWN, EVENT_SCHEDULER_STARTED
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .errors import DuplicateRegistrationError, NotStartedError, TaskExecutionError
from .intervals import format_interval

logger = logging.getLogger(__name__)

Task = Callable[[], Future]


class ConflictPolicy(enum.Enum):
    """What :meth:`JobRegistry.register` does when the job name is taken."""

    REJECT = "reject"
    REPLACE = "replace"


class OverlapPolicy(enum.Enum):
    """How a tick behaves while a previous invocation has not completed.

    ``ALLOW`` is the default: every tick launches the task, so invocations may
    overlap when a task takes longer than the interval.
    """

    ALLOW = "allow"
    SKIP = "skip"
    QUEUE = "queue"


class StartMode(enum.Enum):
    """Controls whether :meth:`JobRegistry.start` actually starts the scheduler.

    ``NORMAL`` starts only when at least one job was declared up front,
    ``FORCED`` starts even with no declared jobs so jobs can be registered
    later, and ``HALTED`` never starts.
    """

    NORMAL = "normal"
    FORCED = "forced"
    HALTED = "halted"


@dataclass(frozen=True)
class JobSpec:
    """Definition of a recurring job. The name identifies it in the registry."""

    name: str
    interval: timedelta
    task: Task
    overlap: OverlapPolicy = OverlapPolicy.ALLOW

    def __post_init__(self):
        if not self.name:
            raise ValueError("job name must not be empty")
        if self.interval <= timedelta(0):
            raise ValueError("job interval must be positive")


@dataclass(frozen=True)
class JobStatus:
    """Point-in-time view of an active job."""

    name: str
    interval: timedelta
    overlap: OverlapPolicy
    executions: int
    failures: int
    skipped: int
    queued: int
    in_flight: int
    next_run_time: Optional[datetime]

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "interval": format_interval(self.interval),
            "overlap": self.overlap.value,
            "executions": self.executions,
            "failures": self.failures,
            "skipped": self.skipped,
            "queued": self.queued,
            "inFlight": self.in_flight,
            "nextRunTime": self.next_run_time.isoformat() if self.next_run_time else None,
        }


@dataclass
class _ActiveJob:
    spec: JobSpec
    in_flight: int = 0
    queued: int = 0
    executions: int = 0
    failures: int = 0
    skipped: int = 0
    last_error: Optional[TaskExecutionError] = field(default=None, repr=False)


class JobHandle:
    """Returned by :meth:`JobRegistry.register` to observe the registered job."""

    def __init__(self, registry: "JobRegistry", name: str):
        self._registry = registry
        self.name = name

    def status(self) -> Optional[JobStatus]:
        """Return the job's current status, or ``None`` once it is gone."""
        return self._registry.get(self.name)

    def __repr__(self) -> str:
        return f"JobHandle({self.name!r})"


class JobRegistry:
    """Named recurring jobs on top of an APScheduler background scheduler."""

    def __init__(self, scheduler: Optional[BackgroundScheduler] = None):
        self._scheduler = scheduler or BackgroundScheduler()
        self._lock = threading.RLock()
        self._jobs: dict[str, _ActiveJob] = {}
        self._ready = threading.Event()
        self._scheduler.add_listener(
            self._on_scheduler_event, EVENT_SCHEDULER_STARTED | EVENT_SCHEDULER_SHUTDOWN
        )

    # --- lifecycle --------------------------------------------------------

    def _on_scheduler_event(self, event) -> None:
        if event.code == EVENT_SCHEDULER_STARTED:
            logger.info("Scheduler started")
            self._ready.set()
        else:
            logger.info("Scheduler shut down")
            self._ready.clear()

    def is_running(self) -> bool:
        return self._scheduler.running

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        """Block until the scheduler has started or ``timeout`` seconds pass.

        Returns ``True`` when the scheduler reported that it is running.
        """
        return self._ready.wait(timeout)

    def start(self, mode: StartMode = StartMode.NORMAL) -> bool:
        """Start the underlying scheduler according to ``mode``.

        Returns whether the scheduler is running afterwards. Calling this on
        a running registry is a no-op.
        """
        with self._lock:
            if self.is_running():
                return True
            if mode is StartMode.HALTED:
                logger.info("Scheduler start mode is 'halted'; not starting")
                return False
            if mode is StartMode.NORMAL and not self._jobs:
                logger.info(
                    "No statically declared jobs and start mode is 'normal'; "
                    "scheduler stays stopped"
                )
                return False
            self._scheduler.start()
            return True

    def shutdown(self, wait: bool = False) -> None:
        """Stop firing ticks. In-flight task futures are left to complete."""
        if self.is_running():
            self._scheduler.shutdown(wait=wait)

    # --- registration -----------------------------------------------------

    def declare(self, spec: JobSpec) -> JobHandle:
        """Declare a job before the scheduler starts.

        Declared jobs are held as pending by APScheduler and begin ticking
        when the scheduler starts. Once running, this behaves like
        :meth:`register` with ``ConflictPolicy.REJECT``.
        """
        with self._lock:
            if self.is_running():
                return self.register(spec)
            if spec.name in self._jobs:
                raise DuplicateRegistrationError(spec.name)
            self._add(spec)
            logger.info(
                "Declared job '%s' with interval %s", spec.name, format_interval(spec.interval)
            )
            return JobHandle(self, spec.name)

    def register(
        self, spec: JobSpec, on_conflict: ConflictPolicy = ConflictPolicy.REJECT
    ) -> JobHandle:
        """Add ``spec`` as an active recurring job.

        Raises
        ------
        NotStartedError
            If the scheduler is not running. Nothing is added.
        DuplicateRegistrationError
            If ``on_conflict`` is ``REJECT`` and a job with the same name is
            active. The existing job is left untouched.
        """
        with self._lock:
            if not self.is_running():
                raise NotStartedError(spec.name)
            if spec.name in self._jobs:
                if on_conflict is ConflictPolicy.REJECT:
                    raise DuplicateRegistrationError(spec.name)
                logger.warning("Replacing existing job '%s'", spec.name)
                self._scheduler.remove_job(spec.name)
                del self._jobs[spec.name]
            self._add(spec)
        logger.info(
            "Registered job '%s' with interval %s (overlap=%s)",
            spec.name,
            format_interval(spec.interval),
            spec.overlap.value,
        )
        return JobHandle(self, spec.name)

    def _add(self, spec: JobSpec) -> None:
        # Dispatch returns as soon as the task is launched, so a single
        # APScheduler instance per job is enough; overlap is handled here.
        self._scheduler.add_job(
            self._dispatch,
            IntervalTrigger(seconds=spec.interval.total_seconds()),
            args=(spec.name,),
            id=spec.name,
            name=spec.name,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self._jobs[spec.name] = _ActiveJob(spec)

    # --- inspection -------------------------------------------------------

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._jobs

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    def get(self, name: str) -> Optional[JobStatus]:
        with self._lock:
            job = self._jobs.get(name)
            if job is None:
                return None
            return self._status(job)

    def jobs(self) -> list[JobStatus]:
        with self._lock:
            return [self._status(job) for job in self._jobs.values()]

    def _status(self, job: _ActiveJob) -> JobStatus:
        scheduled = self._scheduler.get_job(job.spec.name)
        next_run = getattr(scheduled, "next_run_time", None) if scheduled else None
        return JobStatus(
            name=job.spec.name,
            interval=job.spec.interval,
            overlap=job.spec.overlap,
            executions=job.executions,
            failures=job.failures,
            skipped=job.skipped,
            queued=job.queued,
            in_flight=job.in_flight,
            next_run_time=next_run,
        )

    # --- dispatch ---------------------------------------------------------

    def _dispatch(self, name: str) -> None:
        """Handle one tick of job ``name``. Runs on an APScheduler worker."""
        with self._lock:
            job = self._jobs.get(name)
            if job is None:
                return
            if job.in_flight and job.spec.overlap is OverlapPolicy.SKIP:
                job.skipped += 1
                logger.info("Skipping tick of '%s': previous run still in flight", name)
                return
            if job.in_flight and job.spec.overlap is OverlapPolicy.QUEUE:
                job.queued += 1
                logger.debug("Queued tick of '%s' (%d pending)", name, job.queued)
                return
            job.in_flight += 1
        self._launch(job)

    def _launch(self, job: _ActiveJob) -> None:
        logger.debug("Running task of job '%s'", job.spec.name)
        try:
            result = job.spec.task()
        except Exception as exc:
            future = Future()
            future.set_exception(exc)
        else:
            if isinstance(result, Future):
                future = result
            else:
                future = Future()
                future.set_result(result)
        future.add_done_callback(partial(self._on_task_done, job))

    def _on_task_done(self, job: _ActiveJob, future: Future) -> None:
        if future.cancelled():
            error = None
            logger.warning("Task of job '%s' was cancelled", job.spec.name)
        else:
            error = future.exception()

        if error is not None:
            failure = TaskExecutionError(job.spec.name, error)
            logger.error("%s", failure, exc_info=error)
            sentry_sdk.capture_exception(error)

        launch_next = False
        with self._lock:
            job.in_flight -= 1
            job.executions += 1
            if error is not None:
                job.failures += 1
                job.last_error = failure
            # A replaced job's leftover queue dies with it.
            if job.queued and self._jobs.get(job.spec.name) is job:
                job.queued -= 1
                job.in_flight += 1
                launch_next = True
        if launch_next:
            self._launch(job)
