"""Debounced switching of the model's input noise-reduction mode."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from assistant.errors import InvalidModeError

LOGGER = logging.getLogger(__name__)

NEAR_FIELD = "near_field"
FAR_FIELD = "far_field"
VALID_MODES = frozenset({NEAR_FIELD, FAR_FIELD})

DEFAULT_DEBOUNCE_MS = 2000


def _monotonic_ms() -> float:
    return time.monotonic() * 1000.0


@dataclass(slots=True)
class MicState:
    mode: str = NEAR_FIELD
    last_change_ms: float | None = None
    far_toggles: int = 0
    near_toggles: int = 0
    skipped_noop: int = 0

    def counters(self) -> dict[str, int]:
        return {
            "farToggles": self.far_toggles,
            "nearToggles": self.near_toggles,
            "skippedNoOp": self.skipped_noop,
        }


@dataclass(frozen=True, slots=True)
class MicDecision:
    applied: bool
    reason: str | None
    mode: str
    current: str
    counters: dict[str, int] = field(default_factory=dict)

    def to_payload(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "status": "ok" if self.applied else "noop",
            "applied": self.applied,
            "mode": self.mode,
            "current": self.current,
            "counters": dict(self.counters),
        }
        if self.reason is not None:
            payload["reason"] = self.reason
        return payload


class MicDebouncer:
    """Owns the mic state of one call.

    A change is applied only when the requested mode differs from the current
    one and the debounce window since the last applied change has elapsed.
    ``apply`` is called with the new mode exactly once per applied change.
    """

    def __init__(
        self,
        apply: Callable[[str], None] | None = None,
        *,
        state: MicState | None = None,
        window_ms: float = DEFAULT_DEBOUNCE_MS,
        clock: Callable[[], float] = _monotonic_ms,
    ) -> None:
        self._apply = apply
        self.state = state or MicState()
        self._window_ms = window_ms
        self._clock = clock

    @property
    def mode(self) -> str:
        return self.state.mode

    def request_mode(
        self,
        mode: str,
        now_ms: float | None = None,
        *,
        reason: str | None = None,
    ) -> MicDecision:
        requested = str(mode or "").strip()
        if requested not in VALID_MODES:
            raise InvalidModeError(
                f"Invalid mode: {requested}. Expected {NEAR_FIELD} or {FAR_FIELD}."
            )

        state = self.state
        now = self._clock() if now_ms is None else now_ms

        if requested == state.mode:
            state.skipped_noop += 1
            return self._decision(False, "already-set", requested)

        if state.last_change_ms is not None and now - state.last_change_ms < self._window_ms:
            return self._decision(False, "debounced", requested)

        state.mode = requested
        state.last_change_ms = now
        if requested == FAR_FIELD:
            state.far_toggles += 1
        else:
            state.near_toggles += 1

        LOGGER.info("Mic mode changed to %s (reason=%s)", requested, reason or "-")
        if self._apply is not None:
            self._apply(requested)
        return self._decision(True, reason, requested)

    def _decision(self, applied: bool, reason: str | None, requested: str) -> MicDecision:
        return MicDecision(
            applied=applied,
            reason=reason,
            mode=requested,
            current=self.state.mode,
            counters=self.state.counters(),
        )
