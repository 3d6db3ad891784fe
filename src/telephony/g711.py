from __future__ import annotations

from typing import Final

import numpy as np

SAMPLE_RATE: Final[int] = 8000

# G.711 mu-law companding constants for 16-bit input.
BIAS: Final[int] = 0x84
CLIP: Final[int] = 32635


def ulaw_encode(pcm16: np.ndarray) -> bytes:
    """Encode PCM16 int16 array to G.711 mu-law bytes.

    This is a vectorized mu-law encoder suitable for realtime packetization.
    """

    if pcm16.size == 0:
        return b""

    x = pcm16.astype(np.int32)
    sign = (x < 0).astype(np.int32)
    x = np.minimum(np.abs(x), CLIP) + BIAS

    exponent = np.zeros_like(x)
    for exp in range(8):
        exponent = np.where(x >= (1 << (exp + 7)), exp, exponent)

    mantissa = (x >> (exponent + 3)) & 0x0F

    ulaw = np.bitwise_not((sign << 7) | (exponent << 4) | mantissa).astype(np.uint8)
    return ulaw.tobytes()


def frame_samples(frame_ms: int, sample_rate: int = SAMPLE_RATE) -> int:
    return sample_rate * frame_ms // 1000


def silence_frame(frame_ms: int = 20) -> bytes:
    """One frame of mu-law silence, i.e. the encoding of PCM zero (0xFF bytes)."""

    return ulaw_encode(np.zeros(frame_samples(frame_ms), dtype=np.int16))
