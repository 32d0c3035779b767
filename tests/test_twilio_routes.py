from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest
from fastapi import WebSocketDisconnect

from conftest import PRIMARY_NUMBER, TWILIO_NUMBER, FakeSession


def test_health_reports_capabilities(client):
    response = client.get("/api/health")

    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ok"
    assert payload["active_calls"] == 0
    assert "end_call" in payload["capabilities"]
    assert len(payload["capabilities"]) == 11


def test_incoming_call_from_known_caller_connects_stream(client):
    response = client.post("/api/twilio/incoming-call", data={"From": "(206) 555-0100", "To": TWILIO_NUMBER})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("application/xml")
    body = response.text
    assert "Ada. Connecting to your AI assistant momentarily.</Say>" in body
    assert '<Stream url="wss://assistant.example.com/api/twilio/media-stream">' in body
    assert f'<Parameter name="caller_number" value="{PRIMARY_NUMBER}" />' in body
    assert f'<Parameter name="twilio_number" value="{TWILIO_NUMBER}" />' in body
    assert "<Hangup/>" not in body


@pytest.mark.parametrize("form", [{"From": "+19995550000"}, {}])
def test_incoming_call_from_unknown_caller_is_rejected(client, form):
    response = client.post("/api/twilio/incoming-call", data=form)

    assert response.status_code == 200
    assert "Sorry, this line is restricted. Goodbye.</Say><Hangup/>" in response.text
    assert "<Connect>" not in response.text


def test_media_stream_closes_without_model_credentials(client):
    with client.websocket_connect("/api/twilio/media-stream") as ws:
        with pytest.raises(WebSocketDisconnect) as exc_info:
            ws.receive_text()

    assert exc_info.value.code == 1011


def test_media_stream_relays_call(app, client):
    import api.twilio_routes as twilio_routes
    from telephony.relay import CallRelay

    sessions: list[FakeSession] = []

    def factory(**callbacks) -> FakeSession:
        session = FakeSession(**callbacks)
        sessions.append(session)
        return session

    def build(websocket, hold_audio=None) -> CallRelay:
        return CallRelay(
            websocket,
            app.state.services,
            app.state.dispatcher,
            session_factory=factory,
            hold_audio=hold_audio,
        )

    app.dependency_overrides[twilio_routes.get_relay_factory] = lambda: build

    with client.websocket_connect("/api/twilio/media-stream") as ws:
        ws.send_text(
            json.dumps(
                {
                    "event": "start",
                    "start": {
                        "streamSid": "MZ9",
                        "callSid": "CA9",
                        "customParameters": {"caller_number": PRIMARY_NUMBER, "twilio_number": TWILIO_NUMBER},
                    },
                }
            )
        )
        ws.send_text(json.dumps({"event": "media", "media": {"timestamp": "20", "payload": "AAAA"}}))
        ws.send_text(json.dumps({"event": "stop"}))
        with pytest.raises(WebSocketDisconnect) as exc_info:
            ws.receive_text()

    assert exc_info.value.code == 1000
    (session,) = sessions
    assert session.closed
    assert session.types() == ["conversation.item.create", "response.create", "input_audio_buffer.append"]


class FakeSmsGateway:
    sms_from_number = TWILIO_NUMBER

    def __init__(self, *, fail_send: bool = False) -> None:
        self.fail_send = fail_send
        self.listed: list[dict] = []
        self.sent: list[dict] = []

    async def list_messages(self, *, from_number: str, to_number: str, sent_after, limit: int = 20) -> list[dict]:
        self.listed.append({"from": from_number, "to": to_number, "sent_after": sent_after})
        if from_number == PRIMARY_NUMBER:
            return [{"from": PRIMARY_NUMBER, "body": "Is it raining?", "date_sent": datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)}]
        return [{"from": TWILIO_NUMBER, "body": "Light rain today.", "date_sent": datetime(2026, 3, 1, 9, 1, tzinfo=timezone.utc)}]

    async def send_sms(self, *, to_number: str, from_number: str, body: str) -> dict:
        if self.fail_send:
            from twilio.base.exceptions import TwilioException

            raise TwilioException("queue is full")
        self.sent.append({"to": to_number, "from": from_number, "body": body})
        return {"sid": "SM9", "status": "queued"}


class FakeReplyWriter:
    def __init__(self) -> None:
        self.prompts: list[str] = []

    async def compose_sms_reply(self, prompt: str) -> str:
        self.prompts.append(prompt)
        return "Bring an umbrella."


def _use_sms_services(app, gateway, writer) -> None:
    from api.dependencies import get_services
    from tools.base import ServiceContext

    services = ServiceContext(settings=app.state.services.settings, twilio=gateway, web_search=writer)
    app.dependency_overrides[get_services] = lambda: services


def test_sms_from_unknown_sender_is_restricted(client):
    response = client.post("/api/twilio/sms", data={"From": "+19995550000", "To": TWILIO_NUMBER, "Body": "hi"})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("application/xml")
    assert "<Message>Sorry, this SMS line is restricted.</Message>" in response.text


def test_sms_without_twilio_credentials_is_unconfigured(client):
    response = client.post("/api/twilio/sms", data={"From": PRIMARY_NUMBER, "To": TWILIO_NUMBER, "Body": "hi"})

    assert "<Message>SMS auto-reply is not configured.</Message>" in response.text


def test_sms_reply_uses_thread_and_sends_from_webhook_number(app, client):
    gateway, writer = FakeSmsGateway(), FakeReplyWriter()
    _use_sms_services(app, gateway, writer)

    response = client.post(
        "/api/twilio/sms",
        data={"From": "(206) 555-0100", "To": TWILIO_NUMBER, "Body": "  What about tomorrow?  "},
    )

    assert response.status_code == 200
    assert response.text.endswith("<Response></Response>")
    assert [(item["from"], item["to"]) for item in gateway.listed] == [
        (PRIMARY_NUMBER, TWILIO_NUMBER),
        (TWILIO_NUMBER, PRIMARY_NUMBER),
    ]
    assert gateway.sent == [{"to": PRIMARY_NUMBER, "from": TWILIO_NUMBER, "body": "Bring an umbrella."}]
    (prompt,) = writer.prompts
    thread = prompt.split("Latest user message:")[0]
    assert thread.index("Assistant [2026-03-01T09:01:00Z]: Light rain today.") < thread.index(
        "User [2026-03-01T09:00:00Z]: Is it raining?"
    )
    assert "Latest user message:\nWhat about tomorrow?\n" in prompt


def test_sms_send_failure_falls_back_to_twiml(app, client):
    _use_sms_services(app, FakeSmsGateway(fail_send=True), FakeReplyWriter())

    response = client.post("/api/twilio/sms", data={"From": PRIMARY_NUMBER, "To": TWILIO_NUMBER, "Body": "hi"})

    assert "<Message>Sorry, SMS send error. Details: queue is full.</Message>" in response.text
