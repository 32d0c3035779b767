from __future__ import annotations

from collections.abc import Container
from datetime import datetime
from zoneinfo import ZoneInfo

DEFAULT_CALLER_NAME = "legend"


def resolve_caller_name(
    caller_e164: str | None,
    *,
    primary_callers: Container[str],
    secondary_callers: Container[str],
    primary_name: str | None,
    secondary_name: str | None,
    fallback_name: str = DEFAULT_CALLER_NAME,
) -> str:
    primary = (primary_name or "").strip()
    secondary = (secondary_name or "").strip()
    if caller_e164 and caller_e164 in primary_callers and primary:
        return primary
    if caller_e164 and caller_e164 in secondary_callers and secondary:
        return secondary
    return fallback_name


def caller_group(
    caller_e164: str | None,
    *,
    primary_callers: Container[str],
    secondary_callers: Container[str],
) -> str | None:
    """Return ``"primary"``/``"secondary"`` for known callers, else ``None``."""

    if not caller_e164:
        return None
    if caller_e164 in primary_callers:
        return "primary"
    if caller_e164 in secondary_callers:
        return "secondary"
    return None


def time_greeting(time_zone: str = "America/Los_Angeles", now: datetime | None = None) -> str:
    tz = ZoneInfo(time_zone)
    current = now.astimezone(tz) if now else datetime.now(tz)
    if 5 <= current.hour < 12:
        return "Good morning"
    if 12 <= current.hour < 17:
        return "Good afternoon"
    return "Good evening"
