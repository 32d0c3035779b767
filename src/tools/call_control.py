"""Capabilities that act on the live call itself."""

from __future__ import annotations

import logging
from typing import Any

from pydantic import Field

from tools.base import ArgumentsModel, Capability, ToolContext
from utils.phone import normalize_us_number_to_e164

LOGGER = logging.getLogger(__name__)


class UpdateMicDistanceArgs(ArgumentsModel):
    mode: str = ""
    reason: str | None = None


class UpdateMicDistance(Capability):
    name = "update_mic_distance"
    description = (
        "Toggle mic processing based on caller phrases: speakerphone on -> far_field; "
        "off speakerphone -> near_field. Avoid redundant toggles; one call per turn."
    )
    parameters = {
        "type": "object",
        "properties": {
            "mode": {
                "type": "string",
                "enum": ["near_field", "far_field"],
                "description": "Set input noise_reduction.type to near_field or far_field.",
            },
            "reason": {
                "type": "string",
                "description": "Optional short note about why (e.g., caller phrase).",
            },
        },
        "required": ["mode"],
    }
    arguments_model = UpdateMicDistanceArgs

    async def execute(self, args: UpdateMicDistanceArgs, context: ToolContext) -> dict[str, Any]:
        if context.mic is None:
            raise RuntimeError("Mic control is unavailable for this call.")
        return context.mic.request_mode(args.mode, reason=args.reason).to_payload()


class EndCallArgs(ArgumentsModel):
    reason: str | None = None


class EndCall(Capability):
    name = "end_call"
    description = (
        "Politely end the call. The server closes the call after the assistant "
        "finishes a brief goodbye."
    )
    parameters = {
        "type": "object",
        "properties": {
            "reason": {
                "type": "string",
                "description": "Optional short phrase indicating why the caller wants to end.",
            }
        },
    }
    arguments_model = EndCallArgs

    async def execute(self, args: EndCallArgs, context: ToolContext) -> dict[str, Any]:
        if context.end_call is None:
            return {"status": "ok", "reason": args.reason}
        return context.end_call(args.reason)


class TransferCallArgs(ArgumentsModel):
    destination_number: str = Field(min_length=1)


class TransferCall(Capability):
    name = "transfer_call"
    description = "Transfer the active call to a phone number by updating the live call with <Dial>."
    parameters = {
        "type": "object",
        "properties": {
            "destination_number": {
                "type": "string",
                "description": "E.164 phone number to transfer the caller to.",
            }
        },
        "required": ["destination_number"],
    }
    arguments_model = TransferCallArgs

    async def execute(self, args: TransferCallArgs, context: ToolContext) -> dict[str, Any]:
        twilio = context.services.twilio
        if twilio is None:
            raise RuntimeError("Twilio client unavailable.")
        if not context.call_sid:
            raise RuntimeError("Missing CallSid for transfer.")

        destination = normalize_us_number_to_e164(args.destination_number) or args.destination_number
        await twilio.dial(call_sid=context.call_sid, destination=destination)
        return {"status": "ok", "call_sid": context.call_sid, "destination_number": destination}
