"""Twilio Media Streams message vocabulary.

Inbound events are ``connected``, ``start``, ``media``, ``mark`` and ``stop``.
Outbound we only ever produce ``media``, ``mark`` and ``clear``.
"""

from __future__ import annotations

import base64
import json
import logging
from dataclasses import dataclass, field
from typing import Any

from utils.phone import normalize_us_number_to_e164

LOGGER = logging.getLogger(__name__)

RESPONSE_MARK = "responsePart"


@dataclass(slots=True)
class StreamStart:
    stream_sid: str | None
    call_sid: str | None
    caller_e164: str | None
    twilio_number_e164: str | None
    custom_parameters: dict[str, str] = field(default_factory=dict)


def parse_twilio_ws_message(text: str | bytes) -> dict[str, Any] | None:
    """Decode a Media Streams frame; returns ``None`` for undecodable input."""

    try:
        message = json.loads(text)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        LOGGER.warning("Skipping undecodable Twilio frame: %s", exc)
        return None
    if not isinstance(message, dict):
        return None
    return message


def parse_start(message: dict[str, Any]) -> StreamStart:
    start = message.get("start") or {}
    params = start.get("customParameters") or start.get("custom_parameters") or {}
    raw_caller = params.get("caller_number") or params.get("callerNumber")
    raw_twilio = params.get("twilio_number") or params.get("twilioNumber")
    return StreamStart(
        stream_sid=start.get("streamSid") or message.get("streamSid"),
        call_sid=start.get("callSid"),
        caller_e164=normalize_us_number_to_e164(raw_caller),
        twilio_number_e164=normalize_us_number_to_e164(raw_twilio),
        custom_parameters={str(key): str(value) for key, value in params.items()},
    )


def media_timestamp(message: dict[str, Any]) -> int | None:
    raw = (message.get("media") or {}).get("timestamp")
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


def media_payload(message: dict[str, Any]) -> str | None:
    media = message.get("media") or {}
    if media.get("track") and media.get("track") != "inbound":
        return None
    payload = media.get("payload")
    return payload if isinstance(payload, str) and payload else None


def media_message(stream_sid: str, payload_b64: str) -> dict[str, Any]:
    return {"event": "media", "streamSid": stream_sid, "media": {"payload": payload_b64}}


def media_message_from_bytes(stream_sid: str, ulaw: bytes) -> dict[str, Any]:
    return media_message(stream_sid, base64.b64encode(ulaw).decode("ascii"))


def mark_message(stream_sid: str, name: str = RESPONSE_MARK) -> dict[str, Any]:
    return {"event": "mark", "streamSid": stream_sid, "mark": {"name": name}}


def clear_message(stream_sid: str) -> dict[str, Any]:
    return {"event": "clear", "streamSid": stream_sid}
