"""One-time startup sequence that registers the recurring audit job.

At boot the orchestrator hands its work to a background thread so the caller
(application import, the standalone scheduler process) is never held up. That
thread waits for the registry to report that its scheduler is running, asks
the configuration source for the job settings and registers one named job:

* enabled with a usable interval: the job runs at that interval;
* enabled with a malformed interval, or the fetch failed: the job runs at the
  fallback interval;
* disabled, or enabled without any interval: no job is created for this
  process.

If the scheduler is not running when registration is due the attempt is
logged as an error and abandoned. Nothing is retried and the sequence runs at
most once per orchestrator.
"""

from __future__ import annotations

import enum
import logging
import threading
from concurrent.futures import Future
from datetime import timedelta
from typing import Optional

from .config_source import ConfigResult, ConfigSource
from .errors import (
    ConfigFetchError,
    DuplicateRegistrationError,
    InvalidIntervalError,
    NotStartedError,
)
from .intervals import format_interval, parse_interval
from .registry import (
    ConflictPolicy,
    JobHandle,
    JobRegistry,
    JobSpec,
    OverlapPolicy,
    Task,
)

logger = logging.getLogger(__name__)

JOB_NAME = "audit-startup-job"
FALLBACK_INTERVAL = timedelta(seconds=60)
STARTUP_DELAY = 1.0


class OrchestratorState(enum.Enum):
    IDLE = "idle"
    DEFERRED = "deferred"
    CONFIG_RESOLVED = "config_resolved"
    CONFIG_FAILED = "config_failed"
    JOB_REGISTERED = "job_registered"
    DISABLED = "disabled"
    ABORTED = "aborted"


_TERMINAL = {
    OrchestratorState.JOB_REGISTERED,
    OrchestratorState.DISABLED,
    OrchestratorState.ABORTED,
}


class StartupOrchestrator:
    """Resolves the job configuration once and registers the recurring job.

    Parameters
    ----------
    registry:
        Registry the job is added to. Its readiness event bounds the wait
        before the configuration is requested.
    config_source:
        Where ``{interval, enabled}`` comes from.
    task:
        Non-blocking callable run on every tick.
    job_name:
        Name the job is registered under.
    fallback_interval:
        Interval used when the configuration cannot be fetched or carries a
        malformed interval.
    startup_delay:
        Longest time in seconds to wait for the scheduler to report that it
        is running. When it elapses the sequence continues and the running
        check decides.
    """

    def __init__(
        self,
        registry: JobRegistry,
        config_source: ConfigSource,
        task: Task,
        *,
        job_name: str = JOB_NAME,
        fallback_interval: timedelta = FALLBACK_INTERVAL,
        startup_delay: float = STARTUP_DELAY,
        overlap: OverlapPolicy = OverlapPolicy.ALLOW,
        on_conflict: ConflictPolicy = ConflictPolicy.REJECT,
    ):
        self._registry = registry
        self._config_source = config_source
        self._task = task
        self.job_name = job_name
        self.fallback_interval = fallback_interval
        self.startup_delay = startup_delay
        self.overlap = overlap
        self.on_conflict = on_conflict

        self._lock = threading.Lock()
        self._done = threading.Event()
        self._state = OrchestratorState.IDLE
        self.handle: Optional[JobHandle] = None

    @property
    def state(self) -> OrchestratorState:
        return self._state

    def _transition(self, state: OrchestratorState) -> None:
        logger.debug("Startup orchestrator %s -> %s", self._state.value, state.value)
        self._state = state
        if state in _TERMINAL:
            self._done.set()

    def start(self) -> bool:
        """Schedule the deferred startup action.

        Returns ``False`` without doing anything if the sequence was already
        started.
        """
        with self._lock:
            if self._state is not OrchestratorState.IDLE:
                logger.warning(
                    "Startup sequence for '%s' already ran; ignoring start()", self.job_name
                )
                return False
            self._transition(OrchestratorState.DEFERRED)

        logger.info("Scheduling startup configuration of job '%s'", self.job_name)
        thread = threading.Thread(
            target=self._deferred, name="startup-orchestrator", daemon=True
        )
        thread.start()
        return True

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the sequence reaches a terminal state."""
        return self._done.wait(timeout)

    def _deferred(self) -> None:
        if not self._registry.wait_until_ready(self.startup_delay):
            logger.warning(
                "Scheduler did not report ready within %.3fs", self.startup_delay
            )
        logger.info("Fetching configuration for job '%s'", self.job_name)
        try:
            future = self._config_source.fetch_config()
        except Exception as exc:
            self._config_failed(exc)
            return
        future.add_done_callback(self._on_config)

    def _on_config(self, future: Future) -> None:
        # Done-callback: the future swallows anything raised here.
        try:
            if future.cancelled():
                raise ConfigFetchError("configuration request was cancelled")
            config = future.result()
            if not isinstance(config, ConfigResult):
                raise ConfigFetchError(
                    f"source returned {type(config).__name__}, expected ConfigResult"
                )
        except Exception as exc:
            self._config_failed(exc)
            return
        self._config_resolved(config)

    def _config_resolved(self, config: ConfigResult) -> None:
        self._transition(OrchestratorState.CONFIG_RESOLVED)
        if not config.enabled:
            logger.warning(
                "Job '%s' is disabled in configuration; it will not be scheduled",
                self.job_name,
            )
            self._transition(OrchestratorState.DISABLED)
            return
        if config.interval is None or not config.interval.strip():
            logger.warning(
                "Job '%s' is enabled but no interval was configured; it will not be scheduled",
                self.job_name,
            )
            self._transition(OrchestratorState.DISABLED)
            return

        try:
            interval = parse_interval(config.interval)
        except InvalidIntervalError as exc:
            logger.warning("%s; using fallback interval %s", exc, format_interval(self.fallback_interval))
            interval = self.fallback_interval
        else:
            logger.info(
                "Configuration resolved: interval=%s enabled=%s", config.interval, config.enabled
            )
        self._register(interval)

    def _config_failed(self, error: BaseException) -> None:
        self._transition(OrchestratorState.CONFIG_FAILED)
        logger.error(
            "Could not fetch job configuration; using fallback interval %s",
            format_interval(self.fallback_interval),
            exc_info=error,
        )
        self._register(self.fallback_interval)

    def _register(self, interval: timedelta) -> None:
        if not self._registry.is_running():
            logger.error(
                "Scheduler is not running; job '%s' will not be created. "
                "Check that SCHEDULER_START_MODE=forced is configured.",
                self.job_name,
            )
            self._transition(OrchestratorState.ABORTED)
            return

        spec = JobSpec(
            name=self.job_name, interval=interval, task=self._task, overlap=self.overlap
        )
        try:
            self.handle = self._registry.register(spec, on_conflict=self.on_conflict)
        except (NotStartedError, DuplicateRegistrationError) as exc:
            logger.error("Registration of job '%s' failed: %s", self.job_name, exc)
            self._transition(OrchestratorState.ABORTED)
            return
        logger.info(
            "Job '%s' scheduled with interval %s", self.job_name, format_interval(interval)
        )
        self._transition(OrchestratorState.JOB_REGISTERED)
