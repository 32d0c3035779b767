"""Helpers for the SMS auto-reply thread."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

from prompts.loader import render_prompt

THREAD_LIMIT = 10

_EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)


def _sent_at(message: dict[str, Any]) -> datetime:
    sent = message.get("date_sent") or message.get("date_created")
    if not isinstance(sent, datetime):
        return _EPOCH
    return sent if sent.tzinfo else sent.replace(tzinfo=timezone.utc)


def merge_and_sort_messages(*batches: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    """Combine message batches, newest first."""

    combined = [message for batch in batches for message in batch]
    combined.sort(key=_sent_at, reverse=True)
    return combined


def build_thread_text(messages: list[dict[str, Any]], user_number: str | None, *, limit: int = THREAD_LIMIT) -> str:
    lines = []
    for message in messages[:limit]:
        who = "User" if message.get("from") == user_number else "Assistant"
        timestamp = _sent_at(message).isoformat().replace("+00:00", "Z")
        lines.append(f"{who} [{timestamp}]: {message.get('body') or ''}")
    return "\n".join(lines)


def build_sms_prompt(thread_text: str, latest_message: str) -> str:
    return render_prompt("sms_reply_prompt.txt", thread=thread_text, latest=latest_message.strip())
