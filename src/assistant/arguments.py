"""Tolerant parsing of function-call arguments emitted by the realtime model.

The model's argument serialization is not guaranteed to be strict JSON, so a
requested action must degrade gracefully instead of being dropped. The
fallback chain is: strict JSON, JSON5, JSON5 after textual repairs, and
finally a ``key=value`` reading.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Mapping
from typing import Any

import json5

from assistant.errors import InvalidArgumentsError

LOGGER = logging.getLogger(__name__)

_SMART_DOUBLE = re.compile("[“”]")
_SMART_SINGLE = re.compile("[‘’]")
_STRING_SPAN = re.compile(r"\"(?:[^\"\\]|\\.)*\"|'(?:[^'\\]|\\.)*'", re.DOTALL)
_TRAILING_COMMA = re.compile(r",\s*([}\]])")
_BARE_KEY = re.compile(r"([{,]\s*)([A-Za-z_][A-Za-z0-9_-]*)(\s*):")
_KV_PAIR = re.compile(r"\s*([A-Za-z_][A-Za-z0-9_-]*)\s*=\s*(\"[^\"]*\"|'[^']*'|[^,&\s]*)\s*")
_KV_SEPARATOR = re.compile(r"\s*[,&]\s*|\s+")


def repair_json_text(text: str) -> str:
    """Apply the textual repairs that make near-JSON parseable by JSON5."""

    repaired = text.lstrip("\ufeff")
    repaired = _SMART_DOUBLE.sub('"', repaired)
    repaired = _SMART_SINGLE.sub("'", repaired)
    repaired = repaired.replace("\r\n", "\n")
    # Only newlines inside string literals need escaping; the rest is whitespace.
    repaired = _STRING_SPAN.sub(lambda match: match.group(0).replace("\n", "\\n"), repaired)
    repaired = _TRAILING_COMMA.sub(r"\1", repaired)
    return _BARE_KEY.sub(r'\1"\2"\3:', repaired)


def _parse_key_values(text: str) -> dict[str, Any] | None:
    pos = 0
    pairs: dict[str, Any] = {}
    while pos < len(text):
        match = _KV_PAIR.match(text, pos)
        if match is None:
            return None
        key, raw_value = match.group(1), match.group(2)
        pairs[key] = _decode_scalar(raw_value)
        pos = match.end()
        sep = _KV_SEPARATOR.match(text, pos)
        if sep is not None:
            pos = sep.end()
    return pairs or None


def _decode_scalar(raw: str) -> Any:
    if len(raw) >= 2 and raw[0] == raw[-1] and raw[0] in "\"'":
        return raw[1:-1]
    try:
        return json5.loads(raw)
    except ValueError:
        return raw


def _as_mapping(value: Any) -> dict[str, Any]:
    if not isinstance(value, Mapping):
        raise InvalidArgumentsError(
            f"Tool arguments must be an object, got {type(value).__name__}."
        )
    return dict(value)


def normalize_arguments(raw: Any) -> dict[str, Any]:
    """Turn a raw argument payload into a mapping.

    Raises:
        InvalidArgumentsError: every step of the repair chain failed, or the
            payload decoded to something other than an object.
    """

    if raw is None:
        return {}
    if isinstance(raw, Mapping):
        return dict(raw)

    text = str(raw).lstrip("\ufeff").strip()
    if not text:
        return {}

    try:
        return _as_mapping(json.loads(text))
    except json.JSONDecodeError:
        pass

    try:
        return _as_mapping(json5.loads(text))
    except ValueError:
        pass

    try:
        return _as_mapping(json5.loads(repair_json_text(text)))
    except ValueError as exc:
        pairs = _parse_key_values(text)
        if pairs is not None:
            LOGGER.debug("Recovered tool arguments from key=value text: %r", text)
            return pairs
        raise InvalidArgumentsError(f"Could not parse tool arguments: {exc}") from exc
