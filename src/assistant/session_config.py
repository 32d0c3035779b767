"""Builders for realtime ``session.update`` payloads."""

from __future__ import annotations

from typing import Any, Literal

from config.settings import Settings
from prompts.loader import load_prompt

TurnDetectionMode = Literal["automatic", "manual"]

AUDIO_FORMAT = "audio/pcmu"


def turn_detection(mode: TurnDetectionMode) -> dict[str, Any]:
    """Semantic VAD; ``manual`` leaves response creation to the relay."""

    return {
        "type": "semantic_vad",
        "eagerness": "low",
        "interrupt_response": True,
        "create_response": mode == "automatic",
    }


def turn_detection_update(mode: TurnDetectionMode) -> dict[str, Any]:
    return {"audio": {"input": {"turn_detection": turn_detection(mode)}}}


def noise_reduction_update(mode: str) -> dict[str, Any]:
    return {"audio": {"input": {"noise_reduction": {"type": mode}}}}


def build_session_parameters(
    settings: Settings,
    *,
    tools: list[dict[str, Any]],
    instructions: str | None = None,
    turn_mode: TurnDetectionMode = "automatic",
    noise_reduction: str = "near_field",
) -> dict[str, Any]:
    """Return the ``session`` body sent when the model transport opens."""

    return {
        "type": "realtime",
        "model": settings.realtime_model,
        "output_modalities": ["audio"],
        "instructions": instructions if instructions is not None else load_prompt("realtime_instructions.txt"),
        "tools": tools,
        "tool_choice": "auto",
        "audio": {
            "input": {
                "format": {"type": AUDIO_FORMAT},
                "turn_detection": turn_detection(turn_mode),
                "noise_reduction": {"type": noise_reduction},
            },
            "output": {
                "format": {"type": AUDIO_FORMAT},
                "voice": settings.realtime_voice,
            },
        },
    }
