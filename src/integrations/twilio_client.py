from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from xml.sax.saxutils import escape

from config.settings import Settings, get_settings
from utils.phone import normalize_us_number_to_e164

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class TwilioConfig:
    account_sid: str
    auth_token: str
    sms_from_number: str | None


def get_twilio_config(settings: Settings | None = None) -> TwilioConfig:
    settings = settings or get_settings()
    if not settings.twilio_account_sid or not settings.twilio_auth_token:
        raise ValueError("Twilio credentials are not configured")

    return TwilioConfig(
        account_sid=settings.twilio_account_sid,
        auth_token=settings.twilio_auth_token,
        sms_from_number=normalize_us_number_to_e164(settings.twilio_sms_from_number),
    )


def build_twilio_client(settings: Settings | None = None):
    from twilio.rest import Client

    cfg = get_twilio_config(settings)
    return Client(cfg.account_sid, cfg.auth_token)


class TwilioGateway:
    """Async facade over the blocking Twilio REST client."""

    def __init__(self, client: Any, *, sms_from_number: str | None = None) -> None:
        self._client = client
        self.sms_from_number = sms_from_number

    @classmethod
    def from_settings(cls, settings: Settings) -> TwilioGateway:
        cfg = get_twilio_config(settings)
        return cls(build_twilio_client(settings), sms_from_number=cfg.sms_from_number)

    async def send_sms(self, *, to_number: str, from_number: str, body: str) -> dict[str, Any]:
        message = await asyncio.to_thread(
            self._client.messages.create,
            to=to_number,
            from_=from_number,
            body=body,
        )
        LOGGER.info("SMS sent: sid=%s", getattr(message, "sid", None))
        return {
            "sid": getattr(message, "sid", None),
            "status": getattr(message, "status", None),
        }

    async def dial(self, *, call_sid: str, destination: str) -> None:
        twiml = f"<Response><Dial>{escape(destination)}</Dial></Response>"
        await asyncio.to_thread(self._client.calls(call_sid).update, twiml=twiml)
        LOGGER.info("Call %s redirected to a new destination", call_sid)

    async def list_messages(
        self,
        *,
        from_number: str,
        to_number: str,
        sent_after: datetime,
        limit: int = 20,
    ) -> list[dict[str, Any]]:
        messages = await asyncio.to_thread(
            self._client.messages.list,
            from_=from_number,
            to=to_number,
            date_sent_after=sent_after,
            limit=limit,
        )
        return [
            {
                "from": getattr(message, "from_", None),
                "to": getattr(message, "to", None),
                "body": getattr(message, "body", None),
                "date_sent": getattr(message, "date_sent", None),
                "date_created": getattr(message, "date_created", None),
            }
            for message in messages
        ]
