"""REST API resources for the job audit service.

The endpoints are read-only: they expose what the recurring startup job wrote
and what the scheduler currently holds. When the job never ran (scheduler not
started, job disabled) the audit endpoints simply return an empty list and a
zero count.
"""

from flask_restful import Resource

from .app import registry
from .models import AuditLog


class AuditLogs(Resource):
    """List every audit record."""

    def get(self):
        """Return ``[{"id", "message", "createdAt"}, ...]`` ordered by id."""
        logs = AuditLog.query.order_by(AuditLog.id).all()
        return [entry.to_dict() for entry in logs]


class AuditLogCount(Resource):
    """Return the number of audit records."""

    def get(self):
        return {"count": AuditLog.query.count()}


class ScheduledJobs(Resource):
    """Report whether the scheduler runs and which jobs it holds."""

    def get(self):
        return {
            "running": registry.is_running(),
            "jobs": [status.to_dict() for status in registry.jobs()],
        }
