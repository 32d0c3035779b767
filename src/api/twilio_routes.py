"""Twilio Voice integration.

This module provides:
- The incoming-call webhook (TwiML) that screens callers and starts a media stream.
- The Media Streams WebSocket that relays call audio to the realtime model.
- The messaging webhook that auto-replies to texts from known callers.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from xml.sax.saxutils import escape, quoteattr

from fastapi import APIRouter, Depends, Request, Response, WebSocket
from openai import OpenAIError
from twilio.base.exceptions import TwilioException

from api.dependencies import get_services, ws_dispatcher, ws_services
from config.settings import Settings
from integrations.twilio_client import TwilioGateway
from telephony.hold_audio import load_hold_audio
from telephony.relay import CallRelay
from tools.base import ServiceContext
from tools.dispatcher import CapabilityDispatcher
from utils.calls import resolve_caller_name, time_greeting
from utils.phone import normalize_us_number_to_e164
from utils.redaction import redact_for_settings
from utils.sms import build_sms_prompt, build_thread_text, merge_and_sort_messages

LOGGER = logging.getLogger(__name__)

router = APIRouter(prefix="/twilio", tags=["twilio"])

MEDIA_STREAM_PATH = "/api/twilio/media-stream"
RESTRICTED_MESSAGE = "Sorry, this line is restricted. Goodbye."
SMS_RESTRICTED_MESSAGE = "Sorry, this SMS line is restricted."
SMS_UNCONFIGURED_MESSAGE = "SMS auto-reply is not configured."
SMS_THREAD_WINDOW = timedelta(hours=12)
SMS_ERROR_DETAIL_CHARS = 220

RelayFactory = Callable[..., CallRelay]


def _twiml_response(xml: str) -> Response:
    # Twilio expects an XML document.
    return Response(content=xml, media_type="application/xml")


def _to_ws_url(http_url: str) -> str:
    if http_url.startswith("https://"):
        return "wss://" + http_url.removeprefix("https://")
    if http_url.startswith("http://"):
        return "ws://" + http_url.removeprefix("http://")
    return http_url


def _twiml_reject(*, say_text: str, voice: str) -> str:
    return (
        "<?xml version=\"1.0\" encoding=\"UTF-8\"?>"
        "<Response>"
        f"<Say voice={quoteattr(voice)}>{escape(say_text)}</Say>"
        "<Hangup/>"
        "</Response>"
    )


def _twiml_connect_stream(*, say_text: str, voice: str, stream_url: str, parameters: dict[str, str]) -> str:
    params = "".join(
        f"<Parameter name={quoteattr(name)} value={quoteattr(value)} />" for name, value in parameters.items()
    )
    return (
        "<?xml version=\"1.0\" encoding=\"UTF-8\"?>"
        "<Response>"
        f"<Say voice={quoteattr(voice)}>{escape(say_text)}</Say>"
        "<Connect>"
        f"<Stream url={quoteattr(stream_url)}>{params}</Stream>"
        "</Connect>"
        "</Response>"
    )


def _media_stream_url(request: Request, settings: Settings) -> str:
    if settings.public_base_url:
        return _to_ws_url(settings.public_base_url.rstrip("/") + MEDIA_STREAM_PATH)
    # Behind a proxy the Host header is the only hint; prefer PUBLIC_BASE_URL.
    host = request.headers.get("host") or request.url.netloc
    return f"wss://{host}{MEDIA_STREAM_PATH}"


@router.post("/incoming-call")
async def twilio_incoming_call(
    request: Request,
    services: ServiceContext = Depends(get_services),
) -> Response:
    settings = services.settings
    form = await request.form()

    raw_from = str(form.get("From") or form.get("from") or form.get("Caller") or "")
    raw_to = str(form.get("To") or form.get("to") or "")
    caller = normalize_us_number_to_e164(raw_from)
    callee = normalize_us_number_to_e164(raw_to)
    LOGGER.info("Incoming call from %s => %s", raw_from, caller)

    if not caller or caller not in settings.allowed_callers:
        LOGGER.info("Rejecting caller outside the allow-list")
        return _twiml_response(_twiml_reject(say_text=RESTRICTED_MESSAGE, voice=settings.twilio_say_voice))

    caller_name = resolve_caller_name(
        caller,
        primary_callers=settings.primary_callers,
        secondary_callers=settings.secondary_callers,
        primary_name=settings.primary_user_first_name,
        secondary_name=settings.secondary_user_first_name,
    )
    greeting = f"{time_greeting(settings.greeting_time_zone)} {caller_name}. Connecting to your AI assistant momentarily."

    return _twiml_response(
        _twiml_connect_stream(
            say_text=greeting,
            voice=settings.twilio_say_voice,
            stream_url=_media_stream_url(request, settings),
            parameters={"caller_number": caller, "twilio_number": callee or ""},
        )
    )


def get_relay_factory(
    services: ServiceContext = Depends(ws_services),
    dispatcher: CapabilityDispatcher = Depends(ws_dispatcher),
) -> RelayFactory:
    def build(websocket: WebSocket, hold_audio: bytes | None = None) -> CallRelay:
        return CallRelay(websocket, services, dispatcher, hold_audio=hold_audio)

    return build


@router.websocket("/media-stream")
async def twilio_media_stream(
    websocket: WebSocket,
    relay_factory: RelayFactory = Depends(get_relay_factory),
    services: ServiceContext = Depends(ws_services),
) -> None:
    await websocket.accept()
    LOGGER.info("Twilio media stream connected")

    settings = services.settings
    hold_audio = await asyncio.to_thread(
        load_hold_audio,
        settings.wait_music_folder,
        volume=settings.wait_music_volume,
    )

    try:
        relay = relay_factory(websocket, hold_audio)
    except ValueError as exc:
        LOGGER.error("Cannot start call relay: %s", exc)
        await websocket.close(code=1011, reason="Assistant unavailable")
        return

    active_calls: set = websocket.app.state.active_calls
    active_calls.add(relay)
    try:
        await relay.run()
    except Exception:
        LOGGER.exception("Call relay crashed")
    finally:
        active_calls.discard(relay)


def _twiml_message(text: str | None = None) -> str:
    message = f"<Message>{escape(text)}</Message>" if text else ""
    return f"<?xml version=\"1.0\" encoding=\"UTF-8\"?><Response>{message}</Response>"


def _error_detail(exc: Exception, settings: Settings) -> str:
    detail = redact_for_settings(str(exc) or type(exc).__name__, settings)
    return detail[:SMS_ERROR_DETAIL_CHARS]


async def _recent_thread(gateway: TwilioGateway, user: str, assistant: str | None) -> list[dict]:
    if not assistant:
        return []
    since = datetime.now(timezone.utc) - SMS_THREAD_WINDOW
    batches = []
    for sender, recipient in ((user, assistant), (assistant, user)):
        try:
            batches.append(await gateway.list_messages(from_number=sender, to_number=recipient, sent_after=since))
        except TwilioException as exc:
            LOGGER.warning("Failed to list messages from %s: %s", sender, exc)
    return merge_and_sort_messages(*batches)


@router.post("/sms")
async def twilio_incoming_sms(
    request: Request,
    services: ServiceContext = Depends(get_services),
) -> Response:
    settings = services.settings
    form = await request.form()

    body = str(form.get("Body") or form.get("body") or "")
    sender = normalize_us_number_to_e164(str(form.get("From") or form.get("from") or ""))
    recipient = normalize_us_number_to_e164(str(form.get("To") or form.get("to") or ""))
    LOGGER.info("SMS incoming: from=%s to=%s length=%d", sender, recipient, len(body))

    if not sender or sender not in settings.allowed_callers:
        LOGGER.warning("SMS reply restricted: from=%s", sender)
        return _twiml_response(_twiml_message(SMS_RESTRICTED_MESSAGE))

    gateway, web_search = services.twilio, services.web_search
    if gateway is None or web_search is None:
        LOGGER.warning("SMS auto-reply is not configured")
        return _twiml_response(_twiml_message(SMS_UNCONFIGURED_MESSAGE))

    thread = await _recent_thread(gateway, sender, recipient)
    prompt = build_sms_prompt(build_thread_text(thread, sender), body)
    if settings.environment == "dev":
        LOGGER.debug("SMS prompt: %s", prompt)

    try:
        reply = await web_search.compose_sms_reply(prompt)
    except OpenAIError as exc:
        LOGGER.error("SMS reply generation failed: %s", exc)
        reply = f"Sorry, SMS reply error. Details: {_error_detail(exc, settings)}."

    try:
        # Reply from the number the webhook was addressed to.
        result = await gateway.send_sms(
            to_number=sender,
            from_number=recipient or gateway.sms_from_number or "",
            body=reply,
        )
    except TwilioException as exc:
        LOGGER.error("Failed to send SMS reply: %s", exc)
        return _twiml_response(_twiml_message(f"Sorry, SMS send error. Details: {_error_detail(exc, settings)}."))

    LOGGER.info("SMS reply sent: sid=%s length=%d", result.get("sid"), len(reply))
    # An empty response keeps Twilio from sending a second reply.
    return _twiml_response(_twiml_message())
