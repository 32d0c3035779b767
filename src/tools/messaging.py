"""SMS and email capabilities addressed to the current caller."""

from __future__ import annotations

import re
from typing import Any

from pydantic import Field

from tools.base import ArgumentsModel, Capability, ToolContext
from utils.calls import caller_group

_WHITESPACE = re.compile(r"\s+")


class SendSmsArgs(ArgumentsModel):
    body_text: str = Field(min_length=1)


class SendSms(Capability):
    name = "send_sms"
    description = (
        "Send an SMS that contains only the requested information and brief source labels "
        "with URLs. Keep it actionable and free of preamble."
    )
    parameters = {
        "type": "object",
        "properties": {
            "body_text": {
                "type": "string",
                "description": "Concise, actionable SMS body with sources as short labels with URLs.",
            }
        },
        "required": ["body_text"],
    }
    arguments_model = SendSmsArgs

    async def execute(self, args: SendSmsArgs, context: ToolContext) -> dict[str, Any]:
        if not context.settings.allow_send_sms:
            raise PermissionError("SMS sending disabled. Set ALLOW_SEND_SMS=true to enable send_sms.")

        twilio = context.services.twilio
        if twilio is None:
            raise RuntimeError("Twilio client unavailable.")

        to_number = context.caller_e164
        from_number = context.twilio_number_e164 or twilio.sms_from_number
        if not to_number or not from_number:
            raise RuntimeError("SMS is not configured: missing caller or from number.")

        body = _WHITESPACE.sub(" ", args.body_text).strip()
        result = await twilio.send_sms(to_number=to_number, from_number=from_number, body=body)
        return {**result, "length": len(body)}


class SendEmailArgs(ArgumentsModel):
    subject: str = Field(min_length=1)
    body_html: str = Field(min_length=1)


class SendEmail(Capability):
    name = "send_email"
    description = (
        "Send an HTML email with the latest context. Supply a subject and a concise, "
        "non-conversational HTML body with clickable links for any sources."
    )
    parameters = {
        "type": "object",
        "properties": {
            "subject": {"type": "string", "description": "Short subject summarizing the latest context."},
            "body_html": {
                "type": "string",
                "description": "HTML-only email body composed from the latest conversation context.",
            },
        },
        "required": ["subject", "body_html"],
    }
    arguments_model = SendEmailArgs

    async def execute(self, args: SendEmailArgs, context: ToolContext) -> dict[str, Any]:
        settings = context.settings
        if not settings.allow_send_email:
            raise PermissionError("Email sending disabled. Set ALLOW_SEND_EMAIL=true to enable send_email.")

        group = caller_group(
            context.caller_e164,
            primary_callers=settings.primary_callers,
            secondary_callers=settings.secondary_callers,
        )
        to_email = {
            "primary": settings.primary_to_email,
            "secondary": settings.secondary_to_email,
        }.get(group or "")

        sender = context.services.email
        if sender is None or not settings.sender_from_email or not to_email:
            raise RuntimeError("Email is not configured for this caller.")

        return await sender.send_html(to_email=to_email, subject=args.subject, body_html=args.body_html)
