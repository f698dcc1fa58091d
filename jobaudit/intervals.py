"""Parsing and formatting of job interval strings.

Configuration sources deliver intervals as short duration strings such as
``"4s"``, ``"1m"`` or ``"250ms"``. ISO-8601 durations (``"PT30S"``) are
accepted as well so values copied from other schedulers keep working.
"""

from __future__ import annotations

import re
from datetime import timedelta

from .errors import InvalidIntervalError

_UNITS = {
    "ms": timedelta(milliseconds=1),
    "s": timedelta(seconds=1),
    "m": timedelta(minutes=1),
    "h": timedelta(hours=1),
    "d": timedelta(days=1),
}

_SHORT_RE = re.compile(r"^(?P<value>\d+(?:\.\d+)?)\s*(?P<unit>ms|s|m|h|d)?$", re.IGNORECASE)
_ISO_RE = re.compile(
    r"^P(?:(?P<days>\d+(?:\.\d+)?)D)?"
    r"(?:T(?:(?P<hours>\d+(?:\.\d+)?)H)?(?:(?P<minutes>\d+(?:\.\d+)?)M)?"
    r"(?:(?P<seconds>\d+(?:\.\d+)?)S)?)?$",
    re.IGNORECASE,
)


def parse_interval(text) -> timedelta:
    """Return the duration described by ``text``.

    Parameters
    ----------
    text:
        ``<number><unit>`` where unit is one of ``ms``, ``s``, ``m``, ``h`` or
        ``d`` (a bare number means seconds), or an ISO-8601 duration such as
        ``PT1M30S``.

    Raises
    ------
    InvalidIntervalError
        If ``text`` is empty, malformed or does not describe a positive
        duration.
    """

    if text is None:
        raise InvalidIntervalError(text, "no interval given")
    raw = str(text).strip()
    if not raw:
        raise InvalidIntervalError(text, "no interval given")

    match = _SHORT_RE.match(raw)
    if match:
        unit = (match.group("unit") or "s").lower()
        delta = _UNITS[unit] * float(match.group("value"))
    else:
        match = _ISO_RE.match(raw)
        # "P" and "PT" alone match the pattern but carry no components
        if not match or not any(match.groupdict().values()):
            raise InvalidIntervalError(text)
        parts = {k: float(v) for k, v in match.groupdict().items() if v}
        delta = timedelta(**parts)

    if delta <= timedelta(0):
        raise InvalidIntervalError(text, "interval must be positive")
    return delta


def format_interval(delta: timedelta) -> str:
    """Render ``delta`` using the largest unit that represents it exactly."""

    ms = round(delta.total_seconds() * 1000)
    for unit, size in (("d", 86_400_000), ("h", 3_600_000), ("m", 60_000), ("s", 1000)):
        if ms and ms % size == 0:
            return f"{ms // size}{unit}"
    return f"{ms}ms"
