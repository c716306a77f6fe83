"""Human-readable duration parsing for the ``-d`` flag and config files."""

from __future__ import annotations

import re

from .errors import ConfigError

_UNITS = {
    "ms": 0.001,
    "msec": 0.001,
    "millis": 0.001,
    "milliseconds": 0.001,
    "s": 1.0,
    "sec": 1.0,
    "secs": 1.0,
    "second": 1.0,
    "seconds": 1.0,
    "m": 60.0,
    "min": 60.0,
    "mins": 60.0,
    "minute": 60.0,
    "minutes": 60.0,
    "h": 3600.0,
    "hr": 3600.0,
    "hrs": 3600.0,
    "hour": 3600.0,
    "hours": 3600.0,
    "d": 86400.0,
    "day": 86400.0,
    "days": 86400.0,
    "w": 604800.0,
    "week": 604800.0,
    "weeks": 604800.0,
}

_NUMBER = re.compile(r"\d+(?:\.\d+)?")
_PART = re.compile(r"\s*(\d+(?:\.\d+)?)\s*([a-z]+)\s*", re.IGNORECASE)


def parse_duration(value: str) -> float:
    """Parse a human-readable duration string into seconds.

    Accepts a bare number (seconds) or a sequence of number/unit pairs, e.g.
    ``10s``, ``3m``, ``1h30m``, ``500ms``, ``2 minutes``, ``1d 12h``.

    Raises:
        ConfigError: if the string is empty, malformed, uses an unknown unit,
            or does not add up to more than zero.
    """
    stripped = (value or "").strip()
    if not stripped:
        raise ConfigError(f"Invalid duration: '{value}' (empty string)")

    if _NUMBER.fullmatch(stripped):
        total = float(stripped)
    else:
        total = _parse_parts(stripped)

    if total <= 0:
        raise ConfigError(f"Invalid duration: '{value}'. Duration must be greater than zero.")
    return total


def _parse_parts(text: str) -> float:
    total = 0.0
    pos = 0
    while pos < len(text):
        match = _PART.match(text, pos)
        if match is None:
            raise ConfigError(
                f"Invalid duration: '{text}'. Expected format like '10s', '3m', '1h30m', '500ms'."
            )
        amount, unit = match.groups()
        factor = _UNITS.get(unit.lower())
        if factor is None:
            raise ConfigError(f"Invalid duration: '{text}'. Unknown unit '{unit}'.")
        total += float(amount) * factor
        pos = match.end()
    return total


def format_duration(seconds: float) -> str:
    """Render seconds compactly, e.g. ``90`` -> ``1m30s``."""
    if seconds < 1:
        return f"{int(round(seconds * 1000))}ms"
    remaining = int(round(seconds))
    parts = []
    for unit, size in (("d", 86400), ("h", 3600), ("m", 60)):
        if remaining >= size:
            parts.append(f"{remaining // size}{unit}")
            remaining %= size
    if remaining or not parts:
        parts.append(f"{remaining}s")
    return "".join(parts)
