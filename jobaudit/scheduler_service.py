"""Standalone entry point for running the recurring audit job.

Use this when the scheduler should live in its own process instead of inside
the web server, for example in a separate container or systemd unit. Importing
:mod:`jobaudit.app` already boots the scheduler; :func:`jobaudit.app.boot` is
idempotent, so calling it here returns the orchestrator that is running.

Example (Docker):
    SCHEDULER_START_MODE=forced python -m jobaudit.scheduler_service

Example (systemd service snippet):
    [Service]
    Environment=SCHEDULER_START_MODE=forced
    ExecStart=/usr/bin/python -m jobaudit.scheduler_service
"""

import logging
import threading

from .app import boot, registry

logger = logging.getLogger(__name__)


def main(stop_event=None):
    """Boot the scheduler and keep the process alive until interrupted.

    The APScheduler thread is a daemon, so the main thread has to stay around
    for jobs to keep firing. ``stop_event`` lets callers end the wait.
    """

    orchestrator = boot()
    if not registry.is_running():
        raise RuntimeError(
            "Scheduler did not start; set SCHEDULER_START_MODE=forced"
        )
    stop_event = stop_event or threading.Event()
    try:
        stop_event.wait()
    except KeyboardInterrupt:
        logger.info("Interrupted; stopping scheduler")
    finally:
        registry.shutdown()
    return orchestrator


if __name__ == "__main__":
    main()
