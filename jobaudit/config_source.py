"""Sources for the startup job configuration.

A configuration source answers one question at boot: should the recurring
audit job run, and how often? The answer is delivered through a
:class:`concurrent.futures.Future` so the caller never blocks on a slow or
unreachable backend. Each source loads on its own single worker thread.

Select a source with ``JOB_CONFIG_SOURCE``:

``mock`` (default)
    Random interval between 10 and 30 seconds, always enabled.
``env``
    ``JOB_INTERVAL`` and ``JOB_ENABLED`` from the environment.
``http``
    JSON document fetched from ``JOB_CONFIG_URL``.
"""

from __future__ import annotations

import logging
import os
import random
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Optional

import requests

from .errors import ConfigFetchError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConfigResult:
    """Job configuration as delivered by a source.

    ``interval`` is the raw duration text (for example ``"4s"``); it is only
    interpreted by the startup orchestrator.
    """

    interval: Optional[str]
    enabled: bool


class ConfigSource(ABC):
    """Base class for sources that resolve :class:`ConfigResult` asynchronously."""

    def __init__(self):
        self._executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix=type(self).__name__
        )

    def fetch_config(self) -> Future:
        """Start loading the configuration and return a future for it.

        Any error raised while loading is delivered on the future as
        :class:`ConfigFetchError`.
        """
        return self._executor.submit(self._resolve)

    def _resolve(self) -> ConfigResult:
        try:
            return self._load()
        except ConfigFetchError:
            raise
        except Exception as exc:
            raise ConfigFetchError(f"{type(self).__name__} failed: {exc}") from exc

    @abstractmethod
    def _load(self) -> ConfigResult:
        """Return the configuration. Runs on the source's worker thread."""


class MockParameterSource(ConfigSource):
    """Simulates a remote parameter service returning a 10-30 second interval."""

    def __init__(self, rng: Optional[random.Random] = None):
        super().__init__()
        self._rng = rng or random.Random()

    def _load(self) -> ConfigResult:
        logger.debug("Simulating remote call for job configuration")
        seconds = self._rng.randint(10, 30)
        return ConfigResult(interval=f"{seconds}s", enabled=True)


def _parse_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


class EnvConfigSource(ConfigSource):
    """Reads ``JOB_INTERVAL`` and ``JOB_ENABLED`` from the process environment."""

    def __init__(self, environ=None):
        super().__init__()
        self._environ = os.environ if environ is None else environ

    def _load(self) -> ConfigResult:
        return ConfigResult(
            interval=self._environ.get("JOB_INTERVAL"),
            enabled=_parse_bool(self._environ.get("JOB_ENABLED", "true")),
        )


class HttpConfigSource(ConfigSource):
    """Fetches ``{"interval": ..., "enabled": ...}`` from a parameter service.

    A missing ``enabled`` key means enabled, as with ``JOB_ENABLED``.
    """

    def __init__(self, url: str, timeout: float = 5.0, session: Optional[requests.Session] = None):
        super().__init__()
        self.url = url
        self.timeout = timeout
        self._session = session or requests.Session()

    def _load(self) -> ConfigResult:
        try:
            resp = self._session.get(self.url, timeout=self.timeout)
            resp.raise_for_status()
            payload = resp.json()
        except (requests.RequestException, ValueError) as exc:
            raise ConfigFetchError(f"could not fetch job configuration: {exc}") from exc

        if not isinstance(payload, dict):
            raise ConfigFetchError("job configuration must be a JSON object")
        interval = payload.get("interval")
        return ConfigResult(
            interval=None if interval is None else str(interval),
            enabled=_parse_bool(payload.get("enabled", True)),
        )


def config_source_from_env(environ=None) -> ConfigSource:
    """Build the source selected by ``JOB_CONFIG_SOURCE``."""

    environ = os.environ if environ is None else environ
    kind = environ.get("JOB_CONFIG_SOURCE", "mock").strip().lower()
    if kind == "mock":
        return MockParameterSource()
    if kind == "env":
        return EnvConfigSource(environ)
    if kind == "http":
        url = environ.get("JOB_CONFIG_URL")
        if not url:
            raise RuntimeError("JOB_CONFIG_URL must be set when JOB_CONFIG_SOURCE=http")
        return HttpConfigSource(url, timeout=float(environ.get("JOB_CONFIG_TIMEOUT", "5")))
    raise ValueError(f"Unknown JOB_CONFIG_SOURCE: {kind!r}")
