"""Audit record persistence used as the recurring job's task.

Each tick must not tie up the scheduler's workers while the database is
written, so :meth:`AuditService.create_log` hands the insert to a small
thread pool and returns a :class:`concurrent.futures.Future` right away. The
future resolves to the id of the new row, or carries the database error.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from functools import partial
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)


class AuditService:
    """Writes ``AuditLog`` rows inside the Flask application context."""

    def __init__(self, app, db, executor: Optional[ThreadPoolExecutor] = None, max_workers: int = 2):
        self._app = app
        self._db = db
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="audit-writer"
        )

    def create_log(self, source: str) -> Future:
        """Persist ``"Log from: <source>"`` and return a future for the row id."""
        logger.info("Persisting audit record from [%s]", source)
        return self._executor.submit(self._persist, f"Log from: {source}")

    def task_for(self, source: str) -> Callable[[], Future]:
        """Return a zero-argument task suitable for a job spec."""
        return partial(self.create_log, source)

    def _persist(self, message: str) -> int:
        from .models import AuditLog

        with self._app.app_context():
            record = AuditLog(message=message)
            self._db.session.add(record)
            try:
                self._db.session.commit()
            except SQLAlchemyError:
                self._db.session.rollback()
                raise
            return record.id
