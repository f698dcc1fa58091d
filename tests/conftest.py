"""Shared fixtures and helpers for the job audit tests."""

import os
import tempfile
import time
from concurrent.futures import Future

import pytest

# Never boot the real scheduler on import and keep the database on disk so the
# audit writer threads and the test client share it.
os.environ["TESTING"] = "1"
os.environ.setdefault("LOG_PATH", os.path.join(tempfile.mkdtemp(), "jobaudit-test.log"))
os.environ["DATABASE_URI"] = "sqlite:///" + os.path.join(tempfile.mkdtemp(), "jobaudit-test.db")

from apscheduler.schedulers.background import BackgroundScheduler

from jobaudit.app import app, db
from jobaudit.registry import JobRegistry, StartMode


@pytest.fixture
def client():
    """Flask test client with freshly created tables."""
    app.config["TESTING"] = True
    with app.app_context():
        db.create_all()
    with app.test_client() as client:
        yield client
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def stopped_registry():
    """A registry whose scheduler has not been started."""
    reg = JobRegistry(BackgroundScheduler())
    yield reg
    reg.shutdown()


@pytest.fixture
def registry(stopped_registry):
    """A registry with a running scheduler."""
    assert stopped_registry.start(StartMode.FORCED)
    yield stopped_registry


# --- Helper utilities ------------------------------------------------------


def done_future(result=None):
    """Return a future that already holds ``result``."""
    fut = Future()
    fut.set_result(result)
    return fut


def failed_future(exc):
    """Return a future that already carries ``exc``."""
    fut = Future()
    fut.set_exception(exc)
    return fut


def wait_for(predicate, timeout=5.0, interval=0.02):
    """Poll ``predicate`` until it is truthy or ``timeout`` seconds pass."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return bool(predicate())
