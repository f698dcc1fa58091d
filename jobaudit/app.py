"""Application setup and global objects for the job audit service.

This module configures the Flask application that serves the read-only audit
API, the database, and the job registry whose scheduler drives the recurring
startup job. On import (outside of tests) the scheduler is started according
to ``SCHEDULER_START_MODE`` and the startup orchestrator is launched; it
resolves the job configuration in the background and registers the job.

``SCHEDULER_START_MODE`` must be ``forced`` for the startup job to work: no
jobs are declared statically, so in ``normal`` mode the scheduler never starts
and every registration attempt is rejected.
"""

import atexit
import logging
import os

import sentry_sdk
from apscheduler.schedulers.background import BackgroundScheduler
from dotenv import load_dotenv
from flask import Flask
from flask_cors import CORS
from flask_migrate import Migrate
from flask_restful import Api
from flask_sqlalchemy import SQLAlchemy
from sentry_sdk.integrations.flask import FlaskIntegration

from .config_source import config_source_from_env
from .intervals import parse_interval
from .registry import ConflictPolicy, JobRegistry, OverlapPolicy, StartMode

# Load environment variables from a .env file if present.
load_dotenv()

# Initialize Sentry for error monitoring when a DSN is provided. Task failures
# of the recurring job are reported through the same client.
sentry_dsn = os.environ.get("SENTRY_DSN")
if sentry_dsn:
    sentry_sdk.init(
        dsn=sentry_dsn,
        integrations=[FlaskIntegration()],
        traces_sample_rate=float(os.environ.get("SENTRY_TRACES_SAMPLE_RATE", "0")),
    )

app = Flask(__name__)
# Initialize application-wide logging before other components.
from .logging_config import init_logging

init_logging()

logger = logging.getLogger(__name__)

# Cross-origin requests are refused unless ``CORS_ORIGINS`` lists the allowed
# origins as a comma separated string.
_cors_origins = os.environ.get("CORS_ORIGINS")
if _cors_origins:
    _cors_origins = [origin.strip() for origin in _cors_origins.split(",") if origin.strip()]
else:
    _cors_origins = []

CORS(app, origins=_cors_origins)


def _apply_security_headers(resp):
    """Attach common security headers to every HTTP response.

    ``CONTENT_SECURITY_POLICY`` overrides the default policy and
    ``HSTS_ENABLED=true`` adds ``Strict-Transport-Security``. Audit data is
    never cached by intermediaries.
    """

    csp = os.environ.get("CONTENT_SECURITY_POLICY", "default-src 'none'")
    hsts_enabled = os.environ.get("HSTS_ENABLED", "false").lower() == "true"

    resp.headers.setdefault("Content-Security-Policy", csp)
    resp.headers.setdefault("X-Content-Type-Options", "nosniff")
    resp.headers.setdefault("X-Frame-Options", "DENY")
    resp.headers.setdefault("Referrer-Policy", "no-referrer")
    resp.headers.setdefault("Cache-Control", "no-store")
    if hsts_enabled:
        resp.headers.setdefault(
            "Strict-Transport-Security", "max-age=31536000; includeSubDomains"
        )
    return resp


app.after_request(_apply_security_headers)

app.config["SQLALCHEMY_DATABASE_URI"] = os.environ.get(
    "DATABASE_URI", "sqlite:///jobaudit.db"
)
app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False

# Initialize database and migration tools
db = SQLAlchemy(app)
migrate = Migrate(app, db)

# Initialize the RESTful API
api = Api(app)

# The registry owns the background scheduler. Jobs are never declared at
# import time; the startup job is registered later by the orchestrator.
registry = JobRegistry(BackgroundScheduler())

from .audit import AuditService

audit_service = AuditService(
    app, db, max_workers=int(os.environ.get("AUDIT_WORKERS", "2"))
)

orchestrator = None


def start_scheduler(mode=None) -> bool:
    """Start the registry's scheduler according to ``SCHEDULER_START_MODE``.

    Returns whether the scheduler is running. An ``atexit`` hook stops the
    scheduler when the process exits; in-flight audit writes are not awaited.
    """

    if mode is None:
        mode = StartMode(os.environ.get("SCHEDULER_START_MODE", "normal").lower())
    running = registry.start(mode)
    if running:
        atexit.register(registry.shutdown)
    else:
        logger.warning(
            "Scheduler not started (mode=%s); jobs cannot be registered", mode.value
        )
    return running


def build_orchestrator():
    """Create the startup orchestrator from environment settings."""

    from .startup import STARTUP_DELAY, StartupOrchestrator

    source = os.environ.get("JOB_SOURCE", "startup_orchestrator")
    return StartupOrchestrator(
        registry,
        config_source_from_env(),
        audit_service.task_for(source),
        job_name=os.environ.get("JOB_NAME", "audit-startup-job"),
        fallback_interval=parse_interval(os.environ.get("JOB_FALLBACK_INTERVAL", "60s")),
        startup_delay=float(
            os.environ.get("JOB_STARTUP_DELAY_MS", str(int(STARTUP_DELAY * 1000)))
        )
        / 1000,
        overlap=OverlapPolicy(os.environ.get("JOB_OVERLAP_POLICY", "allow").lower()),
        on_conflict=ConflictPolicy(os.environ.get("JOB_CONFLICT_POLICY", "reject").lower()),
    )


def boot():
    """Start the scheduler and launch the one-time startup sequence."""

    global orchestrator
    if orchestrator is not None:
        return orchestrator
    with app.app_context():
        db.create_all()
    start_scheduler()
    orchestrator = build_orchestrator()
    orchestrator.start()
    return orchestrator


# Import resources after initializing app components to avoid circular imports
from .resources import AuditLogs, AuditLogCount, ScheduledJobs

api.add_resource(AuditLogs, "/jobs-audit")
api.add_resource(AuditLogCount, "/jobs-audit/count")
api.add_resource(ScheduledJobs, "/scheduled-jobs")

# Avoid background threads during unit tests, which build their own registries.
# Serve with ``flask --app jobaudit.app run --no-reload`` so the reloader does
# not boot a second scheduler.
if os.environ.get("TESTING") != "1":
    boot()
