"""Exception types raised by the job registry and the startup sequence.

None of these reach an HTTP client. They are logged (and reported to Sentry
where relevant) by the component that recovers from them.
"""

from __future__ import annotations


class JobAuditError(Exception):
    """Base class for scheduler and startup errors."""


class InvalidIntervalError(JobAuditError, ValueError):
    """Raised when an interval string cannot be turned into a positive duration."""

    def __init__(self, text, reason: str = "unrecognised format"):
        self.text = text
        super().__init__(f"invalid interval {text!r}: {reason}")


class ConfigFetchError(JobAuditError):
    """The configuration source could not supply a job configuration."""


class NotStartedError(JobAuditError):
    """A job was registered before the scheduler was running."""

    def __init__(self, job_name: str):
        self.job_name = job_name
        super().__init__(
            f"scheduler is not running; cannot register job {job_name!r}"
        )


class DuplicateRegistrationError(JobAuditError):
    """A job with the same name is already active in the registry."""

    def __init__(self, job_name: str):
        self.job_name = job_name
        super().__init__(f"job {job_name!r} is already registered")


class TaskExecutionError(JobAuditError):
    """Wraps an error raised by a job task during one tick."""

    def __init__(self, job_name: str, cause: BaseException):
        self.job_name = job_name
        self.cause = cause
        super().__init__(f"job {job_name!r} tick failed: {cause!r}")
