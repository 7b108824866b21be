"""Shared utility functions for the arnab engine layer."""

from __future__ import annotations

import re

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def validate_identifier(value: str, label: str = "identifier") -> str:
    """Validate that a value is a safe SQL identifier.

    Only allows alphanumeric characters and underscores, starting with a letter
    or underscore. Raises ValueError if the identifier is unsafe.
    """
    if not _IDENTIFIER_RE.match(value):
        raise ValueError(f"Invalid {label}: {value!r} (must match [A-Za-z_][A-Za-z0-9_]*)")
    return value


def format_elapsed(seconds: float) -> str:
    """Format a duration as ``1h 2m 3s 45ms``; milliseconds are always shown."""
    total_ms = int(seconds * 1000)
    hours, rem = divmod(total_ms, 3_600_000)
    minutes, rem = divmod(rem, 60_000)
    secs, millis = divmod(rem, 1000)

    parts = []
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    if secs:
        parts.append(f"{secs}s")
    parts.append(f"{millis}ms")
    return " ".join(parts)


def line_text(text: str, lineno: int | None) -> str:
    """Stripped source text of a 1-based line; empty when out of range."""
    lines = text.splitlines()
    if lineno is None or not 1 <= lineno <= len(lines):
        return ""
    return lines[lineno - 1].strip()
