"""Name-based dispatch of model-issued capability calls."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import ValidationError

from assistant.errors import BridgeError, CapabilityError, InvalidArgumentsError, UnknownCapabilityError
from tools.base import Capability, ToolContext

LOGGER = logging.getLogger(__name__)


def _describe_validation_error(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ())) or "arguments"
        parts.append(f"{location}: {error.get('msg', 'invalid value')}")
    return "Invalid arguments: " + "; ".join(parts)


class CapabilityDispatcher:
    """Static name -> capability table built once at startup."""

    def __init__(self, capabilities: Iterable[Capability]) -> None:
        self._capabilities: dict[str, Capability] = {}
        for capability in capabilities:
            if capability.name in self._capabilities:
                raise ValueError(f"Duplicate capability name: {capability.name}")
            self._capabilities[capability.name] = capability

    def __contains__(self, name: object) -> bool:
        return name in self._capabilities

    @property
    def names(self) -> list[str]:
        return list(self._capabilities)

    def declarations(self) -> list[dict[str, Any]]:
        return [capability.declaration() for capability in self._capabilities.values()]

    async def dispatch(self, name: str, args: Mapping[str, Any], context: ToolContext) -> Any:
        """Validate ``args`` and run the named capability.

        Raises:
            UnknownCapabilityError: no capability is registered under ``name``.
            InvalidArgumentsError: ``args`` do not satisfy the argument model.
            CapabilityError: the executor raised a non-bridge exception.
        """

        capability = self._capabilities.get(name)
        if capability is None:
            raise UnknownCapabilityError(name)

        try:
            parsed = capability.arguments_model.model_validate(dict(args))
        except ValidationError as exc:
            raise InvalidArgumentsError(_describe_validation_error(exc)) from exc

        try:
            return await capability.execute(parsed, context)
        except BridgeError:
            raise
        except Exception as exc:
            LOGGER.warning("Capability %s failed: %s", name, exc)
            raise CapabilityError(name, exc) from exc
