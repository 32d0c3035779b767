"""Scrub configured secrets from log output."""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable, Mapping

from config.settings import Settings
from utils.phone import normalize_us_number_to_e164

LOGGER = logging.getLogger(__name__)

REDACTED = "[REDACTED]"
MIN_SECRET_LENGTH = 4

DEFAULT_SECRET_ENV_KEYS = (
    "OPENAI_API_KEY",
    "SMTP_USERNAME",
    "SMTP_PASSWORD",
    "SENDER_FROM_EMAIL",
    "PRIMARY_TO_EMAIL",
    "SECONDARY_TO_EMAIL",
    "TWILIO_SMS_FROM_NUMBER",
    "PRIMARY_USER_PHONE_NUMBERS",
    "SECONDARY_USER_PHONE_NUMBERS",
    "PRIMARY_USER_FIRST_NAME",
    "SECONDARY_USER_FIRST_NAME",
    "TWILIO_AUTH_TOKEN",
    "TWILIO_ACCOUNT_SID",
    "GOOGLE_MAPS_API_KEY",
    "SPOT_FEED_ID",
    "SPOT_FEED_PASSWORD",
)

_LIST_KEYS = frozenset({"PRIMARY_USER_PHONE_NUMBERS", "SECONDARY_USER_PHONE_NUMBERS"})


def secret_env_keys(extra: str | None = None) -> list[str]:
    keys = list(DEFAULT_SECRET_ENV_KEYS)
    for key in (extra or "").split(","):
        key = key.strip().upper()
        if key and key not in keys:
            keys.append(key)
    return keys


def _expand(key: str, value: str) -> Iterable[str]:
    if key not in _LIST_KEYS:
        yield value
        return
    for part in value.split(","):
        part = part.strip()
        if part:
            yield part
            normalized = normalize_us_number_to_e164(part)
            if normalized:
                yield normalized


def collect_secret_values(
    settings: Settings,
    keys: Iterable[str],
    env: Mapping[str, str] | None = None,
) -> list[str]:
    """Resolve secret values from settings first, then the environment."""

    env = os.environ if env is None else env
    values: set[str] = set()
    for key in keys:
        raw = getattr(settings, key.lower(), None) or env.get(key)
        if raw is None:
            continue
        for value in _expand(key, str(raw).strip()):
            if len(value) >= MIN_SECRET_LENGTH:
                values.add(value)
    # Longest first so a secret containing another is replaced whole.
    return sorted(values, key=len, reverse=True)


def scrub(text: str, secrets: Iterable[str]) -> str:
    for secret in secrets:
        if secret in text:
            text = text.replace(secret, REDACTED)
    return text


def redact_detail(detail: object, secrets: Iterable[str]) -> str | None:
    """Best-effort scrub; returns ``None`` if the detail cannot be rendered."""

    try:
        return scrub(str(detail), secrets)
    except Exception:  # pragma: no cover - depends on arbitrary __str__
        return None


class RedactionFilter(logging.Filter):
    def __init__(self, secrets: Iterable[str]) -> None:
        super().__init__()
        self.secrets = list(secrets)

    def filter(self, record: logging.LogRecord) -> bool:
        if not self.secrets:
            return True
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            return True
        redacted = redact_detail(message, self.secrets)
        if redacted is not None and redacted != message:
            record.msg = redacted
            record.args = None
        return True


def install_log_redaction(
    settings: Settings,
    *,
    env: Mapping[str, str] | None = None,
    logger: logging.Logger | None = None,
) -> RedactionFilter | None:
    """Attach a :class:`RedactionFilter` to every handler of ``logger`` (root by default)."""

    if settings.disable_log_redaction:
        LOGGER.warning("DISABLE_LOG_REDACTION is set; log redaction not installed.")
        return None

    keys = secret_env_keys(settings.redact_env_keys)
    redaction = RedactionFilter(collect_secret_values(settings, keys, env))
    target = logger or logging.getLogger()
    for handler in target.handlers:
        handler.addFilter(redaction)
    LOGGER.info("Log redaction enabled for env keys: %s", ", ".join(keys))
    return redaction


def redact_for_settings(text: str, settings: Settings, *, env: Mapping[str, str] | None = None) -> str:
    """Scrub configured secrets from text leaving the process, except in dev."""

    if settings.environment == "dev" or settings.disable_log_redaction:
        return text
    secrets = collect_secret_values(settings, secret_env_keys(settings.redact_env_keys), env)
    return scrub(text, secrets)
