"""WebSocket session with the hosted realtime speech model.

One session exists per call. Outbound events are serialized immediately;
before the transport opens they wait in a pending queue that is flushed, in
order and right after the initial ``session.update``, once the socket is up.
Closing the session drops anything still queued.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from contextlib import AbstractAsyncContextManager
from enum import Enum
from typing import Any

import websockets
from websockets.exceptions import ConnectionClosed

from assistant.errors import BridgeTimeoutError, TransportClosedError
from assistant.schemas import AssistantOutput, ToolInvocation

LOGGER = logging.getLogger(__name__)

Callback = Callable[..., Awaitable[None] | None]
Connector = Callable[[str, dict[str, str]], AbstractAsyncContextManager[Any]]


class SessionState(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


def websocket_connector(url: str, headers: dict[str, str]) -> AbstractAsyncContextManager[Any]:
    return websockets.connect(url, additional_headers=headers, max_size=None)


def _decode_frame(message: str | bytes) -> str:
    if isinstance(message, (bytes, bytearray, memoryview)):
        return bytes(message).decode("utf-8")
    return message


class RealtimeSession:
    def __init__(
        self,
        *,
        url: str,
        api_key: str | None,
        session_parameters: dict[str, Any],
        on_open: Callback | None = None,
        on_event: Callback | None = None,
        on_assistant_output: Callback | None = None,
        on_tool_calls: Callback | None = None,
        on_close: Callback | None = None,
        on_error: Callback | None = None,
        connector: Connector = websocket_connector,
    ) -> None:
        if not api_key:
            raise ValueError("OPENAI_API_KEY must be configured for the realtime session.")

        self._url = url
        self._headers = {"Authorization": f"Bearer {api_key}"}
        self._session_parameters = session_parameters
        self._on_open = on_open
        self._on_event = on_event
        self._on_assistant_output = on_assistant_output
        self._on_tool_calls = on_tool_calls
        self._on_close = on_close
        self._on_error = on_error
        self._connector = connector

        self._pending: deque[str] = deque()
        self._outbox: asyncio.Queue[str] | None = None
        self._ws: Any = None
        self._opened = asyncio.Event()
        self.state = SessionState.CONNECTING

    @property
    def is_open(self) -> bool:
        return self.state is SessionState.OPEN

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    # Commands

    def send(self, event: dict[str, Any]) -> None:
        if self.state is SessionState.CLOSED:
            raise TransportClosedError()

        payload = json.dumps(event)
        if self.state is SessionState.OPEN and self._outbox is not None:
            self._outbox.put_nowait(payload)
        else:
            self._pending.append(payload)

    def request_turn(self) -> None:
        self.send({"type": "response.create"})

    def update_parameters(self, partial: dict[str, Any]) -> None:
        self.send({"type": "session.update", "session": {"type": "realtime", **partial}})

    def clear_pending(self) -> None:
        self._pending.clear()
        if self._outbox is not None:
            while not self._outbox.empty():
                self._outbox.get_nowait()

    async def wait_open(self, timeout: float) -> None:
        """Block until the transport is open. Only tooling and tests wait like this."""

        if self.state is SessionState.CLOSED:
            raise TransportClosedError()
        try:
            await asyncio.wait_for(self._opened.wait(), timeout)
        except asyncio.TimeoutError as exc:
            raise BridgeTimeoutError(f"Realtime transport did not open within {timeout}s.") from exc
        if not self.is_open:
            raise TransportClosedError()

    async def close(self) -> None:
        if self.state is SessionState.CLOSED:
            return
        self.state = SessionState.CLOSED
        self._opened.set()
        self.clear_pending()
        ws = self._ws
        if ws is not None:
            try:
                await ws.close()
            except Exception as exc:  # pragma: no cover - best effort on teardown
                LOGGER.debug("Realtime socket close failed: %s", exc)

    async def run(self) -> None:
        """Open the transport and process inbound events until it closes."""

        if self.state is SessionState.CLOSED:
            return

        writer: asyncio.Task[None] | None = None
        try:
            async with self._connector(self._url, self._headers) as ws:
                self._ws = ws
                if self.state is SessionState.CLOSED:
                    return
                self._open()
                writer = asyncio.create_task(self._write_loop(ws))
                LOGGER.info("Connected to the realtime model")
                await self._emit(self._on_open)

                async for message in ws:
                    await self._handle_message(message)
        except ConnectionClosed as exc:
            LOGGER.info("Realtime socket closed: %s", exc)
        except Exception as exc:
            LOGGER.error("Realtime socket error: %s", exc)
            await self._emit(self._on_error, exc)
        finally:
            if writer is not None:
                writer.cancel()
                await asyncio.gather(writer, return_exceptions=True)
            self.state = SessionState.CLOSED
            self.clear_pending()
            self._ws = None
            self._opened.set()
            LOGGER.info("Disconnected from the realtime model")
            await self._emit(self._on_close)

    # Internals

    def _open(self) -> None:
        self._outbox = asyncio.Queue()
        self.state = SessionState.OPEN
        self._opened.set()
        self._outbox.put_nowait(
            json.dumps({"type": "session.update", "session": self._session_parameters})
        )
        while self._pending:
            self._outbox.put_nowait(self._pending.popleft())

    async def _write_loop(self, ws: Any) -> None:
        assert self._outbox is not None
        outbox = self._outbox
        while True:
            payload = await outbox.get()
            try:
                await ws.send(payload)
            except ConnectionClosed:
                return
            except Exception as exc:
                LOGGER.error("Failed to send realtime event: %s", exc)
                await self._emit(self._on_error, exc)
                await ws.close()
                return

    async def _handle_message(self, message: str | bytes) -> None:
        try:
            event = json.loads(_decode_frame(message))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            LOGGER.warning("Skipping undecodable realtime frame: %s", exc)
            return
        if not isinstance(event, dict):
            LOGGER.warning("Skipping non-object realtime frame")
            return

        try:
            await self._dispatch_event(event)
        except TransportClosedError:
            LOGGER.debug("Dropped realtime event %s after close", event.get("type"))
        except Exception:
            LOGGER.exception("Error processing realtime event %s", event.get("type"))

    async def _dispatch_event(self, event: dict[str, Any]) -> None:
        await self._emit(self._on_event, event)

        event_type = event.get("type")
        if event_type == "response.output_audio.delta" and event.get("delta"):
            await self._emit(
                self._on_assistant_output,
                AssistantOutput(kind="audio", delta=event["delta"], item_id=event.get("item_id"), raw=event),
            )
        elif event_type == "response.output_text.delta" and event.get("delta") is not None:
            await self._emit(
                self._on_assistant_output,
                AssistantOutput(kind="text", delta=event["delta"], item_id=event.get("item_id"), raw=event),
            )
        elif event_type == "response.output_text.done" and event.get("text") is not None:
            await self._emit(
                self._on_assistant_output,
                AssistantOutput(kind="text_done", text=event["text"], item_id=event.get("item_id"), raw=event),
            )
        elif event_type == "response.done":
            response = event.get("response") or {}
            invocations = [
                invocation
                for item in response.get("output") or []
                if isinstance(item, dict) and (invocation := ToolInvocation.from_item(item)) is not None
            ]
            if invocations:
                await self._emit(self._on_tool_calls, invocations, event)

    @staticmethod
    async def _emit(callback: Callback | None, *args: Any) -> None:
        if callback is None:
            return
        result = callback(*args)
        if inspect.isawaitable(result):
            await result
