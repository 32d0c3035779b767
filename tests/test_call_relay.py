from __future__ import annotations

import asyncio
import json
from typing import ClassVar

from assistant.schemas import AssistantOutput, ToolInvocation
from telephony.relay import CallPhase, CallRelay, order_invocations
from tools.base import ArgumentsModel, Capability
from tools.dispatcher import CapabilityDispatcher

from conftest import PRIMARY_NUMBER, TWILIO_NUMBER, FakeCarrierSocket, FakeSession

START = {
    "event": "start",
    "start": {
        "streamSid": "MZ1",
        "callSid": "CA1",
        "customParameters": {"caller_number": PRIMARY_NUMBER, "twilio_number": TWILIO_NUMBER},
    },
}
MARK = {"event": "mark", "streamSid": "MZ1", "mark": {"name": "responsePart"}}
RESPONSE_DONE = {"type": "response.done", "response": {"output": [{"type": "message"}]}}


def media(timestamp: int, payload: str = "AAAA") -> dict:
    return {"event": "media", "media": {"track": "inbound", "timestamp": str(timestamp), "payload": payload}}


def call(call_id: str, name: str, arguments: str = "{}") -> ToolInvocation:
    return ToolInvocation.from_item({"type": "function_call", "call_id": call_id, "name": name, "arguments": arguments})


def audio(delta: str = "QUJD", item_id: str = "item_1") -> AssistantOutput:
    return AssistantOutput(kind="audio", delta=delta, item_id=item_id)


async def settle(rounds: int = 20) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


def make_relay(services, dispatcher, scheduler, *, hold_audio: bytes | None = None):
    socket = FakeCarrierSocket()
    sessions: list[FakeSession] = []

    def factory(**callbacks) -> FakeSession:
        session = FakeSession(**callbacks)
        sessions.append(session)
        return session

    relay = CallRelay(
        socket,
        services,
        dispatcher,
        session_factory=factory,
        hold_audio=hold_audio,
        schedule=scheduler,
    )
    return relay, socket, sessions[0]


def outputs(session: FakeSession) -> dict[str, dict]:
    return {
        event["item"]["call_id"]: json.loads(event["item"]["output"])
        for event in session.sent
        if event["type"] == "conversation.item.create" and event["item"]["type"] == "function_call_output"
    }


def test_order_invocations_puts_mic_first_and_hang_up_last():
    batch = [call("a", "end_call"), call("b", "gpt_web_search"), call("c", "update_mic_distance")]
    assert [invocation.name for invocation in order_invocations(batch)] == [
        "update_mic_distance",
        "gpt_web_search",
        "end_call",
    ]


def test_start_sends_greeting_and_media_is_forwarded(services, dispatcher, scheduler):
    async def scenario():
        relay, socket, session = make_relay(services, dispatcher, scheduler)
        task = asyncio.create_task(relay.run())
        socket.push(START)
        socket.push(media(120, "AAAA"))
        await settle()

        assert relay.call_sid == "CA1"
        assert relay.caller_e164 == PRIMARY_NUMBER
        assert session.types() == ["conversation.item.create", "response.create", "input_audio_buffer.append"]
        greeting = session.sent[0]["item"]["content"][0]["text"]
        assert "Ada" in greeting
        assert session.sent[2]["audio"] == "AAAA"
        assert relay.latest_media_ts == 120

        socket.hang_up()
        await task
        return relay, socket, session

    relay, socket, session = asyncio.run(scenario())

    assert relay.phase is CallPhase.ENDED
    assert session.closed
    assert socket.closes == [(1000, "Call ended")]


def test_assistant_audio_is_marked_and_truncated_on_barge_in(services, dispatcher, scheduler):
    async def scenario():
        relay, socket, session = make_relay(services, dispatcher, scheduler)
        task = asyncio.create_task(relay.run())
        socket.push(START)
        socket.push(media(1000))
        await settle()

        await session.emit("on_assistant_output", audio())
        assert socket.events() == ["media", "mark"]
        assert socket.sent[0]["media"]["payload"] == "QUJD"
        assert relay.response_start_ts == 1000
        assert len(relay.mark_queue) == 1

        socket.push(media(1600))
        await settle()
        await session.emit("on_event", {"type": "input_audio_buffer.speech_started"})

        truncate = session.sent[-1]
        assert truncate == {
            "type": "conversation.item.truncate",
            "item_id": "item_1",
            "content_index": 0,
            "audio_end_ms": 600,
        }
        assert socket.events()[-1] == "clear"
        assert not relay.mark_queue
        assert relay.response_start_ts is None

        socket.hang_up()
        await task

    asyncio.run(scenario())


def test_mark_acknowledgement_drains_playback(services, dispatcher, scheduler):
    async def scenario():
        relay, socket, session = make_relay(services, dispatcher, scheduler)
        task = asyncio.create_task(relay.run())
        socket.push(START)
        await settle()
        await session.emit("on_event", RESPONSE_DONE)
        assert relay.phase is CallPhase.LISTENING

        await session.emit("on_assistant_output", audio())
        assert relay.phase is CallPhase.SPEAKING

        socket.push(MARK)
        await settle()
        assert not relay.mark_queue
        assert relay.phase is CallPhase.LISTENING
        assert relay.last_assistant_item is None

        socket.hang_up()
        await task

    asyncio.run(scenario())


def test_greeting_switches_to_manual_turns(services, dispatcher, scheduler):
    async def scenario():
        relay, socket, session = make_relay(services, dispatcher, scheduler)
        task = asyncio.create_task(relay.run())
        socket.push(START)
        await settle()

        await session.emit("on_event", {"type": "response.created"})
        await session.emit("on_event", RESPONSE_DONE)

        update = session.sent[-1]
        assert update["type"] == "session.update"
        assert update["session"]["audio"]["input"]["turn_detection"]["create_response"] is False
        assert relay.turn_detection == "manual"

        await session.emit("on_event", {"type": "input_audio_buffer.speech_stopped"})
        assert session.types()[-1] == "response.create"

        socket.hang_up()
        await task

    asyncio.run(scenario())


def test_turn_requests_wait_for_active_response(services, dispatcher, scheduler):
    async def scenario():
        relay, socket, session = make_relay(services, dispatcher, scheduler)
        task = asyncio.create_task(relay.run())
        socket.push(START)
        await settle()
        await session.emit("on_event", {"type": "response.created"})
        await session.emit("on_event", RESPONSE_DONE)

        await session.emit("on_event", {"type": "response.created"})
        before = session.types().count("response.create")
        await session.emit("on_event", {"type": "input_audio_buffer.speech_stopped"})
        assert session.types().count("response.create") == before
        assert relay.turn_deferred

        await session.emit("on_event", RESPONSE_DONE)
        assert session.types().count("response.create") == before + 1
        assert not relay.turn_deferred

        socket.hang_up()
        await task

    asyncio.run(scenario())


def test_tool_batch_runs_in_order_with_single_turn(services, dispatcher, scheduler):
    async def scenario():
        relay, socket, session = make_relay(services, dispatcher, scheduler)
        task = asyncio.create_task(relay.run())

        await session.emit(
            "on_tool_calls",
            [call("call_end", "end_call", '{"reason": "bye"}'), call("call_mic", "update_mic_distance", "mode=far_field")],
            {"type": "response.done"},
        )
        await settle()

        assert session.types() == [
            "session.update",
            "conversation.item.create",
            "conversation.item.create",
            "response.create",
        ]
        assert session.sent[0]["session"]["audio"]["input"]["noise_reduction"] == {"type": "far_field"}
        assert [event["item"]["call_id"] for event in session.sent[1:3]] == ["call_mic", "call_end"]
        results = outputs(session)
        assert results["call_mic"]["status"] == "ok"
        assert results["call_end"] == {"status": "ok", "pending_disconnect": True, "reason": "bye"}
        assert relay.invocations["call_mic"].state == "done"
        assert relay.pending_disconnect
        assert relay.phase is CallPhase.LISTENING
        assert [timer.delay for timer in scheduler.active] == [services.settings.end_call_grace_seconds]

        # The goodbye response carries no tool call and nothing is left to play.
        await session.emit("on_event", RESPONSE_DONE)
        await task
        return relay, socket, session

    relay, socket, session = asyncio.run(scenario())

    assert socket.closes[0] == (1000, "Call ended by assistant")
    assert session.closed
    assert relay.phase is CallPhase.ENDED
    assert not scheduler.active


def test_hang_up_waits_for_goodbye_playback(services, dispatcher, scheduler):
    async def scenario():
        relay, socket, session = make_relay(services, dispatcher, scheduler)
        task = asyncio.create_task(relay.run())
        socket.push(START)
        await settle()

        await session.emit("on_tool_calls", [call("call_end", "end_call")], {"type": "response.done"})
        await settle()
        await session.emit("on_assistant_output", audio("R09PREJZRQ==", "item_bye"))
        await session.emit("on_event", RESPONSE_DONE)
        await settle()
        assert socket.closes == []

        socket.push(MARK)
        await task
        return socket

    socket = asyncio.run(scenario())
    assert socket.closes[0] == (1000, "Call ended by assistant")


def test_hang_up_is_forced_after_grace_period(services, dispatcher, scheduler):
    async def scenario():
        relay, socket, session = make_relay(services, dispatcher, scheduler)
        task = asyncio.create_task(relay.run())
        await session.emit("on_tool_calls", [call("call_end", "end_call")], {"type": "response.done"})
        await settle()
        assert socket.closes == []

        (timer,) = scheduler.active
        timer.fire()
        await task
        return socket, session

    socket, session = asyncio.run(scenario())
    assert socket.closes[0] == (1000, "Call ended by assistant")
    assert session.closed


def test_failures_become_error_outputs_and_duplicates_are_ignored(services, dispatcher, scheduler):
    async def scenario():
        relay, socket, session = make_relay(services, dispatcher, scheduler)
        task = asyncio.create_task(relay.run())
        batch = [
            call("call_bad", "send_sms", "{{{"),
            call("call_unknown", "teleport"),
            call("call_mode", "update_mic_distance", '{"mode": "outdoor"}'),
        ]
        await session.emit("on_tool_calls", batch, {"type": "response.done"})
        await session.emit("on_tool_calls", [call("call_bad", "send_sms", "{{{")], {"type": "response.done"})
        await settle()

        results = outputs(session)
        assert session.types().count("conversation.item.create") == 3
        assert session.types().count("response.create") == 1
        assert results["call_bad"]["error"].startswith("Could not parse tool arguments")
        assert results["call_unknown"] == {"error": "Unknown tool: teleport"}
        assert results["call_mode"]["error"].startswith("Invalid mode: outdoor")
        assert relay.invocations["call_unknown"].state == "errored"

        socket.hang_up()
        await task

    asyncio.run(scenario())


class GateArgs(ArgumentsModel):
    pass


class SlowLookup(Capability):
    name = "slow_lookup"
    description = "Waits for a gate."
    parameters: ClassVar[dict] = {"type": "object", "properties": {}}
    arguments_model = GateArgs

    def __init__(self) -> None:
        self.gate: asyncio.Event | None = None

    async def execute(self, args, context):
        assert self.gate is not None
        await self.gate.wait()
        return {"status": "ok"}


def test_hold_audio_plays_while_capability_runs(services, scheduler):
    lookup = SlowLookup()
    dispatcher = CapabilityDispatcher([lookup])

    async def scenario():
        lookup.gate = asyncio.Event()
        relay, socket, session = make_relay(services, dispatcher, scheduler, hold_audio=b"\xff" * 320)
        task = asyncio.create_task(relay.run())
        socket.push(START)
        await settle()

        await session.emit("on_tool_calls", [call("call_slow", "slow_lookup")], {"type": "response.done"})
        await settle()
        assert relay.phase is CallPhase.TOOL_PENDING
        (hold_timer,) = scheduler.active
        assert hold_timer.delay == services.settings.wait_music_threshold_ms / 1000

        hold_timer.fire()
        await settle()
        assert relay.player.playing
        assert "media" in socket.events()
        assert socket.sent[-1]["streamSid"] == "MZ1"

        lookup.gate.set()
        await settle()
        assert not relay.player.playing
        assert outputs(session)["call_slow"] == {"status": "ok"}
        assert relay.phase is CallPhase.LISTENING

        socket.hang_up()
        await task

    asyncio.run(scenario())


def test_barge_in_during_hold_audio_clears_buffered_frames(services, scheduler):
    from telephony.hold_audio import HoldAudioState

    lookup = SlowLookup()
    dispatcher = CapabilityDispatcher([lookup])

    async def scenario():
        lookup.gate = asyncio.Event()
        relay, socket, session = make_relay(services, dispatcher, scheduler, hold_audio=b"\xff" * 320)
        task = asyncio.create_task(relay.run())
        socket.push(START)
        await settle()

        await session.emit("on_tool_calls", [call("call_slow", "slow_lookup")], {"type": "response.done"})
        await settle()
        scheduler.active[0].fire()
        await settle()
        assert relay.player.playing
        assert not relay.mark_queue

        await session.emit("on_event", {"type": "input_audio_buffer.speech_started"})
        assert socket.events()[-1] == "clear"
        assert not relay.player.playing
        assert relay.hold.state is HoldAudioState.SUSPENDED
        assert "conversation.item.truncate" not in session.types()

        lookup.gate.set()
        await settle()
        socket.hang_up()
        await task

    asyncio.run(scenario())
