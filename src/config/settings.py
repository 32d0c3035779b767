"""Application-wide configuration loading and validation."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from utils.phone import normalize_us_number_to_e164


def _split_numbers(raw: str | None) -> frozenset[str]:
    numbers = (normalize_us_number_to_e164(part) for part in (raw or "").split(","))
    return frozenset(number for number in numbers if number)


class Settings(BaseSettings):
    """Centralized environment configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    environment: Literal["local", "dev", "prod"] = Field(default="local")
    log_level: str = Field(default="INFO")
    port: int = Field(default=10000)
    public_base_url: str | None = Field(
        default=None,
        description="Public base URL used to build the media-stream URL (e.g. https://<ngrok>.ngrok-free.app).",
    )
    show_timing_math: bool = Field(
        default=False,
        description="Log playback timing used for truncation on barge-in.",
    )

    # OpenAI realtime
    openai_api_key: str | None = Field(default=None)
    realtime_url: str = Field(default="wss://api.openai.com/v1/realtime")
    realtime_model: str = Field(default="gpt-realtime")
    realtime_temperature: float = Field(default=0.8, ge=0.0, le=2.0)
    realtime_voice: str = Field(default="cedar")

    # OpenAI web search (Responses API)
    web_search_model: str = Field(default="gpt-5.2")
    web_search_reasoning_effort: Literal["low", "medium", "high"] = Field(default="high")
    web_search_default_country: str = Field(default="US")
    web_search_default_region: str = Field(default="Washington")

    # Twilio
    twilio_account_sid: str | None = Field(default=None)
    twilio_auth_token: str | None = Field(default=None)
    twilio_sms_from_number: str | None = Field(default=None, description="E.164, e.g. +1206...")
    twilio_say_voice: str = Field(default="Google.en-US-Chirp3-HD-Charon")

    # Known callers
    primary_user_phone_numbers: str = Field(default="", description="Comma-separated phone numbers.")
    secondary_user_phone_numbers: str = Field(default="", description="Comma-separated phone numbers.")
    primary_user_first_name: str | None = Field(default=None)
    secondary_user_first_name: str | None = Field(default=None)
    greeting_time_zone: str = Field(default="America/Los_Angeles")

    # Capabilities
    allow_send_sms: bool = Field(default=False)
    allow_send_email: bool = Field(default=False)
    smtp_host: str | None = Field(default=None)
    smtp_port: int = Field(default=587)
    smtp_username: str | None = Field(default=None)
    smtp_password: str | None = Field(default=None)
    smtp_use_tls: bool = Field(default=True)
    sender_from_email: str | None = Field(default=None)
    primary_to_email: str | None = Field(default=None)
    secondary_to_email: str | None = Field(default=None)
    google_maps_api_key: str | None = Field(default=None)
    default_time_zone: str = Field(default="America/Los_Angeles")

    # Location tracking (SPOT public feed)
    spot_feed_id: str | None = Field(default=None)
    spot_feed_password: str | None = Field(default=None)
    spot_throttle_seconds: float = Field(default=150.0, ge=0.0)

    # Bridge behaviour
    wait_music_threshold_ms: int = Field(default=500, ge=0)
    wait_music_volume: float = Field(default=0.12, ge=0.0, le=1.0)
    wait_music_folder: Path = Field(default=Path("music"))
    mic_debounce_ms: int = Field(default=2000, ge=0)
    end_call_grace_seconds: float = Field(default=10.0, gt=0.0)

    # Log redaction
    disable_log_redaction: bool = Field(default=False)
    redact_env_keys: str = Field(
        default="",
        description="Extra comma-separated env keys whose values are scrubbed from logs.",
    )

    @field_validator("log_level")
    @classmethod
    def upper_log_level(cls, value: str) -> str:
        return value.strip().upper() or "INFO"

    @property
    def primary_callers(self) -> frozenset[str]:
        return _split_numbers(self.primary_user_phone_numbers)

    @property
    def secondary_callers(self) -> frozenset[str]:
        return _split_numbers(self.secondary_user_phone_numbers)

    @property
    def allowed_callers(self) -> frozenset[str]:
        # Both lists empty means nobody is allowed through.
        return self.primary_callers | self.secondary_callers

    @property
    def realtime_endpoint(self) -> str:
        return f"{self.realtime_url}?model={self.realtime_model}&temperature={self.realtime_temperature}"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance."""

    return Settings()
