"""Information capabilities: live web search and local time."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field

from tools.base import ArgumentsModel, Capability, ToolContext

LOGGER = logging.getLogger(__name__)


class UserLocation(BaseModel):
    type: str = "approximate"
    country: str | None = None
    region: str | None = None
    city: str | None = None


class WebSearchArgs(ArgumentsModel):
    query: str = Field(min_length=1)
    user_location: UserLocation | None = None


class GptWebSearch(Capability):
    name = "gpt_web_search"
    description = "Comprehensive web search"
    parameters = {
        "type": "object",
        "properties": {
            "query": {
                "type": "string",
                "description": "The user's question or topic to research across the live web.",
            },
            "user_location": {
                "type": "object",
                "description": (
                    "Optional approximate user location to improve local relevance. Include it only "
                    "when the caller states a location; set type=\"approximate\" and use two-letter "
                    "country codes."
                ),
                "properties": {
                    "type": {"type": "string", "description": 'Location type; use "approximate".'},
                    "country": {"type": "string", "description": "Two-letter country code like US."},
                    "region": {"type": "string", "description": "Region or state name."},
                    "city": {"type": "string", "description": "Optional city."},
                },
            },
        },
        "required": ["query"],
    }
    arguments_model = WebSearchArgs

    async def execute(self, args: WebSearchArgs, context: ToolContext) -> dict[str, Any]:
        client = context.services.web_search
        if client is None:
            raise RuntimeError("Web search is not configured.")
        location = args.user_location.model_dump(exclude_none=True) if args.user_location else None
        return await client.search(args.query, location)


class CurrentTimeArgs(ArgumentsModel):
    time_zone: str | None = None


def format_local_time(time_zone: str, now: datetime | None = None) -> str:
    tz = ZoneInfo(time_zone)
    current = now.astimezone(tz) if now else datetime.now(tz)
    clock = current.strftime("%I:%M %p").lstrip("0")
    return f"{current.strftime('%A, %B')} {current.day}, {current.year} at {clock} {current.tzname()} ({time_zone})"


class GetCurrentTime(Capability):
    name = "get_current_time"
    description = (
        "Get the current local time for time-sensitive requests. Accepts an optional IANA "
        "time zone and otherwise uses the assistant's default time zone."
    )
    parameters = {
        "type": "object",
        "properties": {
            "time_zone": {"type": "string", "description": "Optional IANA time zone override."},
        },
        "additionalProperties": False,
    }
    arguments_model = CurrentTimeArgs

    async def execute(self, args: CurrentTimeArgs, context: ToolContext) -> str:
        default_zone = context.settings.default_time_zone
        requested = args.time_zone or default_zone
        try:
            return format_local_time(requested)
        except (ZoneInfoNotFoundError, ValueError):
            LOGGER.info("Unknown time zone %r; using %s", requested, default_zone)
            return format_local_time(default_zone)
