"""G.711 mu-law helpers for 8 kHz telephony audio."""

from __future__ import annotations

import numpy as np

SAMPLE_RATE = 8000
FRAME_BYTES = 160  # 20 ms of mu-law at 8 kHz


def ulaw_encode(pcm16: np.ndarray) -> bytes:
    """Encode a PCM16 int16 array to G.711 mu-law bytes."""

    if pcm16.size == 0:
        return b""

    x = pcm16.astype(np.int32)
    sign = (x < 0).astype(np.int32)
    x = np.minimum(np.abs(x), 32635) + 0x84

    exponent = np.zeros_like(x)
    for exp in range(1, 8):
        exponent = np.where(x >= (1 << (exp + 7)), exp, exponent)

    mantissa = (x >> (exponent + 3)) & 0x0F

    ulaw = np.bitwise_not((sign << 7) | (exponent << 4) | mantissa).astype(np.uint8)
    return ulaw.tobytes()


def pcm16_resample(pcm: np.ndarray, src_rate: int, dst_rate: int) -> np.ndarray:
    """Linear-interpolation resampler; good enough for hold audio."""

    if src_rate == dst_rate:
        return pcm.astype(np.int16)
    if pcm.size == 0:
        return pcm.astype(np.int16)

    x_old = np.arange(pcm.size, dtype=np.float64)
    x_new = np.linspace(0, pcm.size - 1, int(pcm.size * dst_rate / src_rate), dtype=np.float64)
    y_new = np.interp(x_new, x_old, pcm.astype(np.float64))

    return np.clip(y_new, -32768, 32767).astype(np.int16)


def float_to_pcm16(samples: np.ndarray, *, volume: float = 1.0) -> np.ndarray:
    """Downmix float samples in [-1, 1] to mono int16, scaled by ``volume``."""

    data = np.asarray(samples, dtype=np.float64)
    if data.ndim == 2:
        data = data.mean(axis=1)
    data = np.clip(data * volume, -1.0, 1.0)
    return np.round(data * 32767).astype(np.int16)
