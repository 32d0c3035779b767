"""Pydantic schemas exchanged between the realtime session and the relay."""

from __future__ import annotations

import time
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

OutputKind = Literal["audio", "text", "text_done"]
InvocationState = Literal["pending", "done", "errored"]


class AssistantOutput(BaseModel):
    """A chunk of assistant output surfaced from a model event."""

    model_config = ConfigDict(frozen=True)

    kind: OutputKind
    delta: str | None = None
    text: str | None = None
    item_id: str | None = None
    raw: dict[str, Any] = Field(default_factory=dict, repr=False)


class ToolInvocation(BaseModel):
    """A model-issued capability call; ``call_id`` is the de-duplication key."""

    call_id: str
    name: str
    raw_arguments: Any = None
    arguments: dict[str, Any] | None = None
    dispatched_at: float | None = None
    state: InvocationState = "pending"
    output: Any = None

    @classmethod
    def from_item(cls, item: dict[str, Any]) -> ToolInvocation | None:
        """Build an invocation from a ``function_call`` output item."""

        if item.get("type") != "function_call":
            return None
        return cls(
            call_id=str(item.get("call_id") or ""),
            name=str(item.get("name") or ""),
            raw_arguments=item.get("arguments"),
        )

    def mark_dispatched(self) -> None:
        self.dispatched_at = time.time()

    def complete(self, output: Any) -> None:
        self.output = output
        self.state = "done"

    def fail(self, message: str) -> None:
        self.output = {"error": message}
        self.state = "errored"
