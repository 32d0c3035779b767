"""OpenAI Responses API client used for live web search."""

from __future__ import annotations

import logging
from typing import Any

from openai import AsyncOpenAI

from config.settings import Settings
from prompts.loader import load_prompt

LOGGER = logging.getLogger(__name__)


class WebSearchClient:
    """Runs a single web-search-backed response for a caller question."""

    def __init__(self, settings: Settings, *, client: AsyncOpenAI | None = None) -> None:
        if client is None and not settings.openai_api_key:
            raise ValueError("OPENAI_API_KEY must be configured for web search.")

        self._client = client or AsyncOpenAI(api_key=settings.openai_api_key)
        self._model = settings.web_search_model
        self._reasoning_effort = settings.web_search_reasoning_effort
        self.default_location: dict[str, str] = {
            "type": "approximate",
            "country": settings.web_search_default_country,
            "region": settings.web_search_default_region,
        }

    def build_request(
        self,
        query: str,
        user_location: dict[str, Any] | None = None,
        *,
        instructions: str = "web_search_instructions.txt",
    ) -> dict[str, Any]:
        location = {key: value for key, value in (user_location or {}).items() if value}
        if location:
            location.setdefault("type", "approximate")
        else:
            location = dict(self.default_location)
        return {
            "model": self._model,
            "reasoning": {"effort": self._reasoning_effort},
            "tools": [{"type": "web_search", "user_location": location}],
            "instructions": load_prompt(instructions),
            "tool_choice": "required",
            "truncation": "auto",
            "input": query,
        }

    async def search(self, query: str, user_location: dict[str, Any] | None = None) -> dict[str, Any]:
        request = self.build_request(query, user_location)
        response = await self._client.responses.create(**request)
        LOGGER.debug("Web search completed for model %s", self._model)
        return {
            "status": "ok",
            "query": query,
            "answer": getattr(response, "output_text", "") or "",
        }

    async def compose_sms_reply(self, prompt: str) -> str:
        """Draft a text-message reply; the caller decides what to do on failure."""

        request = self.build_request(prompt, instructions="sms_reply_instructions.txt")
        response = await self._client.responses.create(**request)
        return (getattr(response, "output_text", "") or "").strip()

    async def aclose(self) -> None:
        await self._client.close()
