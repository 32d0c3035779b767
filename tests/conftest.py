from __future__ import annotations

import asyncio
import json
import os
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = REPO_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

PRIMARY_NUMBER = "+12065550100"
SECONDARY_NUMBER = "+12065550111"
TWILIO_NUMBER = "+12065550199"


class FakeScheduler:
    """Records ``call_later`` requests so tests can fire them by hand."""

    def __init__(self) -> None:
        self.calls: list[FakeTimer] = []

    def __call__(self, delay: float, callback) -> FakeTimer:
        timer = FakeTimer(delay, callback)
        self.calls.append(timer)
        return timer

    @property
    def active(self) -> list[FakeTimer]:
        return [timer for timer in self.calls if not timer.cancelled]


class FakeTimer:
    def __init__(self, delay: float, callback) -> None:
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        if not self.cancelled:
            self.callback()


class FakeSession:
    """Stands in for ``RealtimeSession``; records every outbound event."""

    def __init__(self, **callbacks) -> None:
        self.callbacks = callbacks
        self.sent: list[dict] = []
        self.closed = False
        self.cleared = 0
        self._closed_event = asyncio.Event()

    def send(self, event: dict) -> None:
        from assistant.errors import TransportClosedError

        if self.closed:
            raise TransportClosedError()
        self.sent.append(event)

    def request_turn(self) -> None:
        self.send({"type": "response.create"})

    def update_parameters(self, partial: dict) -> None:
        self.send({"type": "session.update", "session": {"type": "realtime", **partial}})

    def clear_pending(self) -> None:
        self.cleared += 1

    async def close(self) -> None:
        self.closed = True
        self._closed_event.set()

    async def run(self) -> None:
        await self._closed_event.wait()

    def types(self) -> list[str]:
        return [event["type"] for event in self.sent]

    async def emit(self, name: str, *args) -> None:
        await self.callbacks[name](*args)


class FakeCarrierSocket:
    """Queue-backed stand-in for the Twilio media-stream WebSocket."""

    def __init__(self) -> None:
        self.incoming: asyncio.Queue[str | None] = asyncio.Queue()
        self.sent: list[dict] = []
        self.closes: list[tuple[int, str | None]] = []

    def push(self, message: dict) -> None:
        self.incoming.put_nowait(json.dumps(message))

    def hang_up(self) -> None:
        self.incoming.put_nowait(None)

    async def receive_text(self) -> str:
        from fastapi import WebSocketDisconnect

        item = await self.incoming.get()
        if item is None:
            raise WebSocketDisconnect(code=1000)
        return item

    async def send_text(self, data: str) -> None:
        self.sent.append(json.loads(data))

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        self.closes.append((code, reason))

    def events(self) -> list[str]:
        return [message["event"] for message in self.sent]


@pytest.fixture()
def settings(tmp_path):
    from config.settings import Settings

    return Settings(
        _env_file=None,
        openai_api_key="sk-test-key",
        primary_user_phone_numbers=PRIMARY_NUMBER,
        secondary_user_phone_numbers=SECONDARY_NUMBER,
        primary_user_first_name="Ada",
        secondary_user_first_name="Grace",
        wait_music_folder=tmp_path / "music",
    )


@pytest.fixture()
def services(settings):
    from tools.base import ServiceContext

    return ServiceContext(settings=settings)


@pytest.fixture()
def dispatcher():
    from tools.registry import build_default_dispatcher

    return build_default_dispatcher()


@pytest.fixture()
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture(scope="session")
def app(tmp_path_factory: pytest.TempPathFactory):
    tmp_dir = tmp_path_factory.mktemp("runtime")

    # Must be set before importing modules that read the cached settings.
    os.environ["PRIMARY_USER_PHONE_NUMBERS"] = PRIMARY_NUMBER
    os.environ["SECONDARY_USER_PHONE_NUMBERS"] = SECONDARY_NUMBER
    os.environ["PRIMARY_USER_FIRST_NAME"] = "Ada"
    os.environ["PUBLIC_BASE_URL"] = "https://assistant.example.com"
    os.environ["WAIT_MUSIC_FOLDER"] = str(tmp_dir / "music")
    for key in (
        "OPENAI_API_KEY",
        "TWILIO_ACCOUNT_SID",
        "TWILIO_AUTH_TOKEN",
        "SMTP_HOST",
        "GOOGLE_MAPS_API_KEY",
    ):
        os.environ.pop(key, None)

    import importlib

    from config.settings import get_settings

    get_settings.cache_clear()
    for module_name in ["api.routes", "api.twilio_routes", "main"]:
        sys.modules.pop(module_name, None)

    main = importlib.import_module("main")
    return main.app


@pytest.fixture()
def client(app):
    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
