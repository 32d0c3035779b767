from __future__ import annotations

import re

_NON_DIGITS = re.compile(r"[^0-9]")


def normalize_us_number_to_e164(raw: str | None) -> str | None:
    """Normalize a phone number to E.164, assuming the US country code when none is given."""

    if not raw:
        return None
    trimmed = str(raw).strip()
    if trimmed.startswith("+"):
        digits = _NON_DIGITS.sub("", trimmed)
        return f"+{digits}" if digits else None

    digits = _NON_DIGITS.sub("", trimmed)
    if not digits:
        return None
    if not digits.startswith("1"):
        digits = "1" + digits
    return f"+{digits}"
