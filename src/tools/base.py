"""Capability interface and the contexts handed to executors."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, ClassVar

from pydantic import BaseModel, ConfigDict

from config.settings import Settings

if TYPE_CHECKING:  # pragma: no cover
    from assistant.mic import MicDebouncer
    from integrations.email_client import EmailSender
    from integrations.google_maps import GoogleMapsClient
    from integrations.spot_tracker import SpotTracker
    from integrations.twilio_client import TwilioGateway
    from llm.openai_client import WebSearchClient

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ServiceContext:
    """Process-wide settings and external clients; read-only during calls.

    Each client is ``None`` when its configuration is missing.
    """

    settings: Settings
    twilio: TwilioGateway | None = None
    web_search: WebSearchClient | None = None
    email: EmailSender | None = None
    maps: GoogleMapsClient | None = None
    tracker: SpotTracker | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> ServiceContext:
        from integrations.email_client import EmailSender
        from integrations.google_maps import GoogleMapsClient
        from integrations.spot_tracker import SpotTracker
        from integrations.twilio_client import TwilioGateway
        from llm.openai_client import WebSearchClient

        context = cls(settings=settings)
        builders: list[tuple[str, Callable[[], Any]]] = [
            ("twilio", lambda: TwilioGateway.from_settings(settings)),
            ("web_search", lambda: WebSearchClient(settings)),
            ("email", lambda: EmailSender.from_settings(settings)),
            ("maps", lambda: GoogleMapsClient(settings.google_maps_api_key or "")),
            ("tracker", lambda: SpotTracker.from_settings(settings)),
        ]
        for attr, build in builders:
            try:
                setattr(context, attr, build())
            except ValueError as exc:
                LOGGER.info("%s client disabled: %s", attr, exc)
        return context

    async def aclose(self) -> None:
        if self.web_search is not None:
            await self.web_search.aclose()
        if self.maps is not None:
            await self.maps.aclose()
        if self.tracker is not None:
            await self.tracker.aclose()


@dataclass(slots=True)
class ToolContext:
    """Per-call state available to capability executors."""

    services: ServiceContext
    call_sid: str | None = None
    caller_e164: str | None = None
    twilio_number_e164: str | None = None
    mic: MicDebouncer | None = None
    end_call: Callable[[str | None], dict[str, Any]] | None = None
    extras: dict[str, Any] = field(default_factory=dict)

    @property
    def settings(self) -> Settings:
        return self.services.settings


class ArgumentsModel(BaseModel):
    """Base for per-capability argument models; unknown keys are ignored."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)


class Capability(ABC):
    """A side-effecting action the model may invoke by name."""

    name: ClassVar[str]
    description: ClassVar[str]
    parameters: ClassVar[dict[str, Any]]
    arguments_model: ClassVar[type[ArgumentsModel]]

    def declaration(self) -> dict[str, Any]:
        return {
            "type": "function",
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
        }

    @abstractmethod
    async def execute(self, args: Any, context: ToolContext) -> Any:
        """Run the capability with validated arguments."""
