"""Per-call relay between Twilio Media Streams and the realtime model.

The relay owns all call state. Everything runs on one event loop: the Twilio
receive loop, the model session, the hold-audio player and capability tasks.
Closing either leg tears the whole call down.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections import deque
from collections.abc import Callable, Iterable
from enum import Enum
from typing import Any, Protocol

from fastapi import WebSocketDisconnect

from assistant.arguments import normalize_arguments
from assistant.errors import BridgeError, TransportClosedError
from assistant.mic import MicDebouncer
from assistant.schemas import AssistantOutput, ToolInvocation
from assistant.session import RealtimeSession
from assistant.session_config import build_session_parameters, noise_reduction_update, turn_detection_update
from integrations.twilio_streaming import (
    RESPONSE_MARK,
    clear_message,
    mark_message,
    media_message,
    media_message_from_bytes,
    media_payload,
    media_timestamp,
    parse_start,
    parse_twilio_ws_message,
)
from prompts.loader import render_prompt
from telephony.hold_audio import HoldAudioPlayer, HoldAudioStateMachine, Scheduler, TimerHandle
from tools.base import ServiceContext, ToolContext
from tools.dispatcher import CapabilityDispatcher
from utils.calls import DEFAULT_CALLER_NAME, resolve_caller_name

LOGGER = logging.getLogger(__name__)

FIRST_CAPABILITIES = ("update_mic_distance",)
LAST_CAPABILITIES = ("end_call",)

LOGGED_MODEL_EVENTS = frozenset(
    {
        "error",
        "response.done",
        "input_audio_buffer.committed",
        "input_audio_buffer.speech_stopped",
        "input_audio_buffer.speech_started",
        "session.created",
        "session.updated",
        "rate_limits.updated",
    }
)


class CallPhase(str, Enum):
    GREETING = "greeting"
    LISTENING = "listening"
    SPEAKING = "speaking"
    TOOL_PENDING = "tool_pending"
    ENDED = "ended"


class CarrierSocket(Protocol):
    async def receive_text(self) -> str: ...

    async def send_text(self, data: str) -> None: ...

    async def close(self, code: int = 1000, reason: str | None = None) -> None: ...


SessionFactory = Callable[..., Any]


def order_invocations(invocations: Iterable[ToolInvocation]) -> list[ToolInvocation]:
    """Mic changes first, hang-up last, everything else in model order."""

    def rank(invocation: ToolInvocation) -> int:
        if invocation.name in FIRST_CAPABILITIES:
            return 0
        if invocation.name in LAST_CAPABILITIES:
            return 2
        return 1

    return sorted(invocations, key=rank)


def default_session_factory(services: ServiceContext, dispatcher: CapabilityDispatcher) -> SessionFactory:
    settings = services.settings

    def factory(**callbacks: Any) -> RealtimeSession:
        return RealtimeSession(
            url=settings.realtime_endpoint,
            api_key=settings.openai_api_key,
            session_parameters=build_session_parameters(settings, tools=dispatcher.declarations()),
            **callbacks,
        )

    return factory


class CallRelay:
    """Bridges one Twilio media stream to one realtime model session."""

    def __init__(
        self,
        socket: CarrierSocket,
        services: ServiceContext,
        dispatcher: CapabilityDispatcher,
        *,
        session_factory: SessionFactory | None = None,
        hold_audio: bytes | None = None,
        schedule: Scheduler | None = None,
    ) -> None:
        settings = services.settings
        self._socket = socket
        self._services = services
        self._dispatcher = dispatcher
        self._schedule = schedule
        self._grace_seconds = settings.end_call_grace_seconds
        self._show_timing_math = settings.show_timing_math

        factory = session_factory or default_session_factory(services, dispatcher)
        self.session = factory(
            on_open=self._on_model_open,
            on_event=self._on_model_event,
            on_assistant_output=self._on_assistant_output,
            on_tool_calls=self._on_tool_calls,
            on_close=self._on_model_close,
            on_error=self._on_model_error,
        )

        self.phase = CallPhase.GREETING
        self.stream_sid: str | None = None
        self.call_sid: str | None = None
        self.caller_e164: str | None = None
        self.twilio_number_e164: str | None = None

        self.mic = MicDebouncer(self._apply_noise_reduction, window_ms=settings.mic_debounce_ms)
        self.player = HoldAudioPlayer(self._send_hold_frame, hold_audio)
        self.hold = HoldAudioStateMachine(
            threshold_ms=settings.wait_music_threshold_ms,
            on_play=self.player.start,
            on_stop=self.player.stop,
            schedule=schedule,
        )

        self.latest_media_ts = 0
        self.response_start_ts: int | None = None
        self.last_assistant_item: str | None = None
        self.mark_queue: deque[str] = deque()
        self.response_active = False
        self.turn_deferred = False
        self.turn_detection = "automatic"
        self.greeting_requested = False
        self.dispatched_ids: set[str] = set()
        self.invocations: dict[str, ToolInvocation] = {}
        self.turn_text: list[str] = []

        self.pending_disconnect = False
        self._goodbye_received = False
        self._disconnect_timer: TimerHandle | None = None

        self._tool_tasks: set[asyncio.Task[None]] = set()
        self._closing_task: asyncio.Task[None] | None = None
        self._torn_down = False

    # Lifecycle

    async def run(self) -> None:
        """Relay until either leg closes, then tear both down."""

        carrier = asyncio.create_task(self._receive_carrier(), name="twilio-receive")
        model = asyncio.create_task(self.session.run(), name="model-session")
        try:
            await asyncio.wait({carrier, model}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            await self.teardown()
            for task in (carrier, model):
                task.cancel()
            await asyncio.gather(carrier, model, return_exceptions=True)

    async def teardown(self) -> None:
        if self._torn_down:
            return
        self._torn_down = True
        self.phase = CallPhase.ENDED
        self.pending_disconnect = False
        self._cancel_disconnect_timer()
        self.hold.close()
        self.player.stop()

        tasks = list(self._tool_tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if self._closing_task is not None:
            await asyncio.gather(self._closing_task, return_exceptions=True)

        self.session.clear_pending()
        await self.session.close()
        await self._close_carrier("Call ended")
        LOGGER.info("Call relay closed (call=%s)", self.call_sid)

    # Carrier leg

    async def _receive_carrier(self) -> None:
        while True:
            try:
                text = await self._socket.receive_text()
            except WebSocketDisconnect:
                LOGGER.info("Twilio media stream disconnected (call=%s)", self.call_sid)
                return

            message = parse_twilio_ws_message(text)
            if message is None:
                continue

            try:
                if not self._handle_carrier_message(message):
                    return
            except TransportClosedError:
                LOGGER.info("Model session closed; ending call %s", self.call_sid)
                return

    def _handle_carrier_message(self, message: dict[str, Any]) -> bool:
        event = message.get("event")
        if event == "media":
            timestamp = media_timestamp(message)
            if timestamp is not None:
                self.latest_media_ts = timestamp
            payload = media_payload(message)
            if payload:
                self.session.send({"type": "input_audio_buffer.append", "audio": payload})
        elif event == "start":
            self._handle_start(message)
        elif event == "mark":
            if self.mark_queue:
                self.mark_queue.popleft()
            if not self.mark_queue:
                self._playback_drained()
            self._attempt_pending_disconnect()
        elif event == "stop":
            LOGGER.info("Twilio stream stopped (call=%s)", self.call_sid)
            return False
        else:
            LOGGER.debug("Received non-media event: %s", event)
        return True

    def _handle_start(self, message: dict[str, Any]) -> None:
        start = parse_start(message)
        self.stream_sid = start.stream_sid
        self.call_sid = start.call_sid
        self.caller_e164 = start.caller_e164
        self.twilio_number_e164 = start.twilio_number_e164
        self.latest_media_ts = 0
        self.response_start_ts = None
        LOGGER.info("Incoming stream has started: stream=%s call=%s", self.stream_sid, self.call_sid)

        settings = self._services.settings
        caller_name = resolve_caller_name(
            self.caller_e164,
            primary_callers=settings.primary_callers,
            secondary_callers=settings.secondary_callers,
            primary_name=settings.primary_user_first_name,
            secondary_name=settings.secondary_user_first_name,
            fallback_name=DEFAULT_CALLER_NAME,
        )
        self._send_greeting(caller_name)

    def _send_greeting(self, caller_name: str) -> None:
        self.greeting_requested = True
        self.phase = CallPhase.GREETING
        self.session.send(
            {
                "type": "conversation.item.create",
                "item": {
                    "type": "message",
                    "role": "user",
                    "content": [
                        {"type": "input_text", "text": render_prompt("greeting.txt", caller_name=caller_name)}
                    ],
                },
            }
        )
        self._request_turn()

    async def _send_carrier(self, message: dict[str, Any]) -> None:
        try:
            await self._socket.send_text(json.dumps(message))
        except (WebSocketDisconnect, RuntimeError) as exc:
            LOGGER.debug("Twilio send failed: %s", exc)

    async def _send_hold_frame(self, frame: bytes) -> None:
        if self.stream_sid and self.phase is not CallPhase.ENDED:
            await self._send_carrier(media_message_from_bytes(self.stream_sid, frame))

    async def _close_carrier(self, reason: str) -> None:
        try:
            await self._socket.close(code=1000, reason=reason)
        except (WebSocketDisconnect, RuntimeError) as exc:
            LOGGER.debug("Twilio socket already closed: %s", exc)

    # Model leg

    async def _on_model_open(self) -> None:
        LOGGER.info("Realtime session open (call=%s)", self.call_sid)

    async def _on_model_close(self) -> None:
        LOGGER.info("Realtime session closed (call=%s)", self.call_sid)

    async def _on_model_error(self, exc: BaseException) -> None:
        LOGGER.error("Realtime session error (call=%s): %s", self.call_sid, exc)

    async def _on_model_event(self, event: dict[str, Any]) -> None:
        event_type = event.get("type")
        if event_type in LOGGED_MODEL_EVENTS:
            LOGGER.debug("Received event: %s", event_type)

        if event_type == "response.created":
            self.response_active = True
        elif event_type == "response.done":
            await self._on_response_done(event)
        elif event_type == "input_audio_buffer.speech_started":
            holding = self.player.playing
            self.hold.caller_speech_started()
            await self._interrupt_playback(flush_hold=holding)
        elif event_type == "input_audio_buffer.speech_stopped":
            self.hold.caller_speech_stopped()
            if self.turn_detection == "manual":
                self._request_turn()
        elif event_type == "error":
            LOGGER.error("Realtime error event: %s", event.get("error"))

    async def _on_response_done(self, event: dict[str, Any]) -> None:
        self.response_active = False
        self.turn_text.clear()

        if self.greeting_requested and self.turn_detection == "automatic":
            self.turn_detection = "manual"
            self.session.update_parameters(turn_detection_update("manual"))
            LOGGER.info("Turn detection switched to manual after greeting")
            if self.phase is CallPhase.GREETING:
                self.phase = CallPhase.LISTENING

        output = (event.get("response") or {}).get("output") or []
        has_tool_call = any(isinstance(item, dict) and item.get("type") == "function_call" for item in output)
        if not has_tool_call:
            if self.pending_disconnect:
                self._goodbye_received = True
            self._attempt_pending_disconnect()

        if self.turn_deferred and not self.response_active:
            self.turn_deferred = False
            self._request_turn()

    async def _on_assistant_output(self, output: AssistantOutput) -> None:
        if self.phase is CallPhase.ENDED:
            return
        if output.kind == "text":
            self.turn_text.append(output.delta or "")
            return
        if output.kind == "text_done":
            LOGGER.info("Assistant said: %s", output.text)
            self.turn_text.clear()
            return

        self.hold.model_audio_started()
        if not self.stream_sid or not output.delta:
            return

        await self._send_carrier(media_message(self.stream_sid, output.delta))
        if self.response_start_ts is None:
            self.response_start_ts = self.latest_media_ts
            if self._show_timing_math:
                LOGGER.info("Setting start timestamp for new response: %sms", self.response_start_ts)
        if output.item_id:
            self.last_assistant_item = output.item_id

        await self._send_carrier(mark_message(self.stream_sid))
        self.mark_queue.append(RESPONSE_MARK)
        if self.phase is CallPhase.LISTENING:
            self.phase = CallPhase.SPEAKING

    async def _interrupt_playback(self, *, flush_hold: bool = False) -> None:
        if not self.mark_queue or self.response_start_ts is None:
            # Hold frames already buffered at Twilio would keep playing.
            if flush_hold and self.stream_sid:
                await self._send_carrier(clear_message(self.stream_sid))
            return

        elapsed = max(0, self.latest_media_ts - self.response_start_ts)
        if self._show_timing_math:
            LOGGER.info(
                "Truncation elapsed time: %s - %s = %sms",
                self.latest_media_ts,
                self.response_start_ts,
                elapsed,
            )
        if self.last_assistant_item:
            self.session.send(
                {
                    "type": "conversation.item.truncate",
                    "item_id": self.last_assistant_item,
                    "content_index": 0,
                    "audio_end_ms": elapsed,
                }
            )
        if self.stream_sid:
            await self._send_carrier(clear_message(self.stream_sid))

        self.mark_queue.clear()
        self._playback_drained()

    def _playback_drained(self) -> None:
        self.last_assistant_item = None
        self.response_start_ts = None
        if self.phase is CallPhase.SPEAKING:
            self.phase = CallPhase.LISTENING

    def _request_turn(self) -> None:
        if self.response_active:
            self.turn_deferred = True
            return
        self.session.request_turn()

    def _apply_noise_reduction(self, mode: str) -> None:
        self.session.update_parameters(noise_reduction_update(mode))

    # Capabilities

    def tool_context(self) -> ToolContext:
        return ToolContext(
            services=self._services,
            call_sid=self.call_sid,
            caller_e164=self.caller_e164,
            twilio_number_e164=self.twilio_number_e164,
            mic=self.mic,
            end_call=self._request_end_call,
        )

    async def _on_tool_calls(self, invocations: list[ToolInvocation], event: dict[str, Any]) -> None:
        fresh: list[ToolInvocation] = []
        for invocation in invocations:
            if not invocation.call_id:
                LOGGER.warning("Function call %s missing call_id; skipping", invocation.name)
                continue
            if invocation.call_id in self.dispatched_ids:
                LOGGER.debug("Ignoring duplicate function call %s", invocation.call_id)
                continue
            self.dispatched_ids.add(invocation.call_id)
            self.invocations[invocation.call_id] = invocation
            fresh.append(invocation)

        if not fresh or self.phase is CallPhase.ENDED:
            return

        self.phase = CallPhase.TOOL_PENDING
        self.hold.capability_started()
        task = asyncio.create_task(self._run_invocations(order_invocations(fresh)))
        self._tool_tasks.add(task)
        task.add_done_callback(self._tool_tasks.discard)

    async def _run_invocations(self, invocations: list[ToolInvocation]) -> None:
        finished = False
        try:
            for invocation in invocations:
                await self._run_invocation(invocation)
            finished = True
        finally:
            self.hold.capability_finished()
            if not self._tool_tasks - {asyncio.current_task()} and self.phase is CallPhase.TOOL_PENDING:
                self.phase = CallPhase.LISTENING

        if finished and self.phase is not CallPhase.ENDED:
            try:
                self._request_turn()
            except TransportClosedError:
                LOGGER.debug("Model session closed before the tool turn could be requested")

    async def _run_invocation(self, invocation: ToolInvocation) -> None:
        LOGGER.info("Function call: %s (%s)", invocation.name, invocation.call_id)
        invocation.mark_dispatched()
        try:
            invocation.arguments = normalize_arguments(invocation.raw_arguments)
            result = await self._dispatcher.dispatch(invocation.name, invocation.arguments, self.tool_context())
        except BridgeError as exc:
            LOGGER.warning("Function call %s failed: %s", invocation.name, exc.detail)
            invocation.fail(exc.detail)
        else:
            invocation.complete(result)

        try:
            self.session.send(
                {
                    "type": "conversation.item.create",
                    "item": {
                        "type": "function_call_output",
                        "call_id": invocation.call_id,
                        "output": json.dumps(invocation.output, default=str),
                    },
                }
            )
        except TransportClosedError:
            LOGGER.debug("Dropped output of %s; model session closed", invocation.call_id)

    # Hang-up

    def _request_end_call(self, reason: str | None) -> dict[str, Any]:
        self.pending_disconnect = True
        self._goodbye_received = False
        if self._disconnect_timer is None:
            schedule = self._schedule or asyncio.get_running_loop().call_later
            self._disconnect_timer = schedule(self._grace_seconds, self._force_disconnect)
        LOGGER.info("End call requested (reason=%s)", reason or "-")
        return {"status": "ok", "pending_disconnect": True, "reason": reason}

    def _force_disconnect(self) -> None:
        self._disconnect_timer = None
        if self.pending_disconnect:
            LOGGER.warning("Forcing call disconnect after timeout")
            self._attempt_pending_disconnect(force=True)

    def _attempt_pending_disconnect(self, *, force: bool = False) -> None:
        if not self.pending_disconnect:
            return
        if not force and (not self._goodbye_received or self.mark_queue):
            return

        self.pending_disconnect = False
        self._goodbye_received = False
        self._cancel_disconnect_timer()
        self.phase = CallPhase.ENDED
        self.hold.close()
        self.player.stop()
        if self._closing_task is None:
            self._closing_task = asyncio.get_running_loop().create_task(self._close_after_goodbye())

    async def _close_after_goodbye(self) -> None:
        await self._close_carrier("Call ended by assistant")
        await self.session.close()
        LOGGER.info("Call closed after goodbye playback (call=%s)", self.call_sid)

    def _cancel_disconnect_timer(self) -> None:
        if self._disconnect_timer is not None:
            self._disconnect_timer.cancel()
            self._disconnect_timer = None
