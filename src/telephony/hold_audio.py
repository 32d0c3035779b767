"""Hold audio played to the caller while a capability is running.

The state machine decides *when* hold audio is audible; the player streams
mu-law frames to the carrier while it is. Both live on the call's event loop.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from enum import Enum
from pathlib import Path
from typing import Any, Protocol

import numpy as np
import soundfile as sf

from telephony.g711 import FRAME_BYTES, SAMPLE_RATE, float_to_pcm16, pcm16_resample, ulaw_encode

LOGGER = logging.getLogger(__name__)

RAW_ULAW_SUFFIXES = frozenset({".ulaw", ".pcmu"})
DECODED_SUFFIXES = frozenset({".wav", ".flac", ".ogg"})
FRAME_INTERVAL_SECONDS = 0.02


class TimerHandle(Protocol):
    def cancel(self) -> Any: ...


Scheduler = Callable[[float, Callable[[], None]], TimerHandle]


class HoldAudioState(str, Enum):
    IDLE = "idle"
    ARMED = "armed"
    PLAYING = "playing"
    SUSPENDED = "suspended"


class HoldAudioStateMachine:
    """Tracks whether hold audio should be playing.

    ``on_play`` is called when entering ``playing`` and ``on_stop`` when
    leaving it. Capability starts and completions are counted so overlapping
    capability batches keep hold audio alive until the last one finishes.
    """

    def __init__(
        self,
        *,
        threshold_ms: float,
        on_play: Callable[[], None],
        on_stop: Callable[[], None],
        schedule: Scheduler | None = None,
    ) -> None:
        self._threshold_seconds = max(0.0, threshold_ms) / 1000.0
        self._on_play = on_play
        self._on_stop = on_stop
        self._schedule = schedule
        self._timer: TimerHandle | None = None
        self._pending = 0
        self._closed = False
        self.state = HoldAudioState.IDLE

    @property
    def capability_pending(self) -> bool:
        return self._pending > 0

    def capability_started(self) -> None:
        if self._closed:
            return
        self._pending += 1
        if self.state is HoldAudioState.IDLE:
            self._arm()

    def capability_finished(self) -> None:
        if self._closed:
            return
        self._pending = max(0, self._pending - 1)
        if self._pending == 0:
            self._to_idle("capability_finished")

    def model_audio_started(self) -> None:
        if self._closed:
            return
        self._to_idle("model_audio")

    def caller_speech_started(self) -> None:
        if self._closed:
            return
        if self.state is HoldAudioState.PLAYING and self._pending:
            self._stop_playing()
            self.state = HoldAudioState.SUSPENDED
            LOGGER.debug("Hold audio suspended while caller speaks")
            return
        if self.state is not HoldAudioState.SUSPENDED:
            self._to_idle("caller_speech")

    def caller_speech_stopped(self) -> None:
        if self._closed or self.state is not HoldAudioState.SUSPENDED:
            return
        if self._pending:
            self._start_playing("caller_speech_stopped")
        else:
            self.state = HoldAudioState.IDLE

    def close(self) -> None:
        self._cancel_timer()
        if self.state is HoldAudioState.PLAYING:
            self._stop_playing()
        self.state = HoldAudioState.IDLE
        self._pending = 0
        self._closed = True

    def _arm(self) -> None:
        schedule = self._schedule or asyncio.get_running_loop().call_later
        self.state = HoldAudioState.ARMED
        self._timer = schedule(self._threshold_seconds, self._on_timer)

    def _on_timer(self) -> None:
        self._timer = None
        if self._closed or self.state is not HoldAudioState.ARMED:
            return
        self._start_playing("threshold_elapsed")

    def _start_playing(self, reason: str) -> None:
        self.state = HoldAudioState.PLAYING
        LOGGER.info("Hold audio start: reason=%s", reason)
        self._on_play()

    def _stop_playing(self) -> None:
        self._on_stop()

    def _to_idle(self, reason: str) -> None:
        self._cancel_timer()
        if self.state is HoldAudioState.PLAYING:
            LOGGER.info("Hold audio stop: reason=%s", reason)
            self._stop_playing()
        self.state = HoldAudioState.IDLE

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None


class HoldAudioPlayer:
    """Streams a looping mu-law buffer in 20 ms frames.

    Without a source buffer the player is a no-op.
    """

    def __init__(
        self,
        send_frame: Callable[[bytes], Awaitable[None]],
        source: bytes | None,
        *,
        frame_bytes: int = FRAME_BYTES,
        interval: float = FRAME_INTERVAL_SECONDS,
    ) -> None:
        self._send_frame = send_frame
        self._source = source if source and len(source) >= frame_bytes else None
        self._frame_bytes = frame_bytes
        self._interval = interval
        self._offset = 0
        self._task: asyncio.Task[None] | None = None

    @property
    def enabled(self) -> bool:
        return self._source is not None

    @property
    def playing(self) -> bool:
        return self._task is not None and not self._task.done()

    def next_frame(self) -> bytes:
        source = self._source
        if source is None:
            return b""
        end = self._offset + self._frame_bytes
        if end <= len(source):
            frame = source[self._offset:end]
        else:
            frame = source[self._offset:] + source[: end - len(source)]
        self._offset = end % len(source)
        return frame

    def start(self) -> None:
        if self._source is None or self.playing:
            return
        self._offset = 0
        self._task = asyncio.get_running_loop().create_task(self._run())

    def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()

    async def _run(self) -> None:
        try:
            while True:
                await self._send_frame(self.next_frame())
                await asyncio.sleep(self._interval)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            LOGGER.warning("Hold audio playback stopped: %s", exc)


def encode_hold_audio(samples: np.ndarray, sample_rate: int, *, volume: float) -> bytes:
    pcm = float_to_pcm16(samples, volume=volume)
    return ulaw_encode(pcm16_resample(pcm, sample_rate, SAMPLE_RATE))


def load_hold_audio(
    folder: Path | str | None,
    *,
    volume: float,
    rng: random.Random | None = None,
) -> bytes | None:
    """Pick a random file from ``folder`` and return it as 8 kHz mu-law.

    Raw ``.ulaw``/``.pcmu`` files are used as-is; other audio is decoded with
    soundfile. Returns ``None`` when nothing usable is found.
    """

    if not folder:
        return None
    path = Path(folder)
    if not path.is_dir():
        LOGGER.info("Hold audio folder %s not found; hold audio disabled", path)
        return None

    candidates = sorted(
        entry
        for entry in path.iterdir()
        if entry.is_file() and entry.suffix.lower() in RAW_ULAW_SUFFIXES | DECODED_SUFFIXES
    )
    if not candidates:
        LOGGER.warning("Hold audio folder %s has no audio files; hold audio disabled", path)
        return None

    selected = (rng or random).choice(candidates)
    LOGGER.info("Hold audio file selected: %s", selected)

    try:
        if selected.suffix.lower() in RAW_ULAW_SUFFIXES:
            return selected.read_bytes() or None
        samples, sample_rate = sf.read(str(selected), dtype="float32", always_2d=False)
    except (OSError, RuntimeError) as exc:
        LOGGER.warning("Failed to load hold audio %s: %s", selected, exc)
        return None

    return encode_hold_audio(samples, int(sample_rate), volume=volume) or None
