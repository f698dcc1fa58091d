"""SQLAlchemy models for the job audit service.

Only one table exists: ``audit_log`` receives a row every time the recurring
startup job ticks. The REST resources in :mod:`jobaudit.resources` read it
back.
"""

from datetime import datetime

from .app import db


class AuditLog(db.Model):
    """One audit entry written by a job tick."""

    __tablename__ = "audit_log"

    id = db.Column(db.Integer, primary_key=True)
    message = db.Column(db.String(255), nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self) -> dict:
        """Serialize using the field names exposed by the API."""
        return {
            "id": self.id,
            "message": self.message,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
