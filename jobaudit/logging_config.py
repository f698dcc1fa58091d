"""Logging utilities for the job audit service.

Log records go to a file rotated at midnight. ``LOG_PATH`` selects the file,
``LOG_RETENTION_DAYS`` controls how many rotated files are kept (``0``
disables rotation) and ``LOG_LEVEL`` sets the root level. When
``ENCRYPTED_LOG_KEY`` holds a base64 encoded 32 byte key every line is
encrypted with AES-GCM before it is written; otherwise lines are plain text.
``LOG_CONSOLE=true`` mirrors records to stderr. ``LOGGING_DISABLED=true``
turns logging off entirely.

Configuration service URLs and bearer tokens may appear in error messages
when a fetch fails, so credentials are scrubbed from every record.

Example usage::

    from jobaudit.logging_config import init_logging
    init_logging()
"""

from __future__ import annotations

import logging
import os
import re
import time
from base64 import b64decode, b64encode
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Optional

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(threadName)s] - %(message)s"


class SensitiveDataFilter(logging.Filter):
    """Remove bearer tokens and URL credentials from log messages."""

    _token_re = re.compile(r"Bearer\s+[A-Za-z0-9._-]+")
    _url_auth_re = re.compile(r"(?P<scheme>[a-zA-Z][a-zA-Z0-9+.-]*://)[^/\s:@]+:[^/\s@]+@")
    _query_secret_re = re.compile(r"(?P<key>(?:token|api_key|apikey|password)=)[^&\s]+", re.IGNORECASE)

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        sanitized = self._token_re.sub("Bearer [REDACTED]", message)
        sanitized = self._url_auth_re.sub(r"\g<scheme>[REDACTED]@", sanitized)
        sanitized = self._query_secret_re.sub(r"\g<key>[REDACTED]", sanitized)
        if sanitized != message:
            record.msg = sanitized
            record.args = ()
        return True


class RetentionFileHandler(TimedRotatingFileHandler):
    """Midnight rotation that can be switched off with ``backupCount=0``."""

    def shouldRollover(self, record: logging.LogRecord) -> bool:
        if self.backupCount <= 0:
            return False
        return super().shouldRollover(record)

    def doRollover(self) -> None:
        if self.backupCount <= 0:
            # Keep writing the same file; just schedule the next check.
            self.rolloverAt = self.computeRollover(int(time.time()))
            return
        super().doRollover()


class EncryptedFileHandler(RetentionFileHandler):
    """Write each formatted record as base64(nonce + AES-GCM ciphertext)."""

    def __init__(self, *, key: bytes, **kwargs) -> None:
        if not key or len(key) != 32:
            raise ValueError("A 32 byte AES key is required for encrypted logs")

        super().__init__(**kwargs)
        self._aesgcm = AESGCM(key)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
            nonce = os.urandom(12)
            ct = self._aesgcm.encrypt(nonce, msg.encode("utf-8"), None)
            data = b64encode(nonce + ct).decode("ascii")
            self.acquire()
            try:
                if self.shouldRollover(record):
                    self.doRollover()
                if self.stream is None:
                    self.stream = self._open()
                self.stream.write(data + self.terminator)
                self.flush()
            finally:
                self.release()
        except Exception:
            self.handleError(record)


def _retention_days() -> int:
    retention_raw = os.environ.get("LOG_RETENTION_DAYS", "7")
    try:
        retention = int(retention_raw)
    except ValueError as exc:
        raise ValueError("LOG_RETENTION_DAYS must be an integer") from exc
    if retention < 0:
        raise ValueError("LOG_RETENTION_DAYS cannot be negative")
    return retention


def _encryption_key() -> Optional[bytes]:
    key_env = os.environ.get("ENCRYPTED_LOG_KEY")
    if not key_env:
        return None
    return b64decode(key_env)


def init_logging() -> None:
    """Configure the root logger from environment variables.

    Existing root handlers are replaced so calling this twice does not
    duplicate output.
    """

    if os.environ.get("LOGGING_DISABLED", "").lower() == "true":
        logging.disable(logging.CRITICAL)
        logging.getLogger().handlers.clear()
        return

    log_path = Path(os.environ.get("LOG_PATH", "/tmp/jobaudit.log"))
    log_path.parent.mkdir(parents=True, exist_ok=True)

    retention = _retention_days()
    level_name = os.environ.get("LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)

    key = _encryption_key()
    handler_kwargs = dict(filename=str(log_path), when="midnight", backupCount=retention)
    if key is not None:
        handler = EncryptedFileHandler(key=key, **handler_kwargs)
    else:
        handler = RetentionFileHandler(**handler_kwargs)

    formatter = logging.Formatter(LOG_FORMAT)
    redact = SensitiveDataFilter()
    handler.setFormatter(formatter)
    handler.addFilter(redact)

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(handler)

    if os.environ.get("LOG_CONSOLE", "false").lower() == "true":
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        console.addFilter(redact)
        root.addHandler(console)

    # APScheduler logs every job submission at INFO; keep it quieter.
    logging.getLogger("apscheduler").setLevel(
        os.environ.get("APSCHEDULER_LOG_LEVEL", "WARNING").upper()
    )
