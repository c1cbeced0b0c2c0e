"""WAV encoding helpers for flushed capture windows."""

import io
import wave
import logging
from typing import Optional

import numpy as np

logger = logging.getLogger(__name__)

WAV_MIME_TYPE = "audio/wav"


def encode_wav(pcm: bytes, sample_rate: int, channels: int, sample_width: int = 2) -> bytes:
    """Wrap raw PCM frames in a complete WAV container.

    Every window becomes a standalone file so the collector can decode each
    segment on its own. Empty input yields an empty payload rather than a
    header-only file.
    """
    if not pcm:
        return b""

    buffer = io.BytesIO()
    with wave.open(buffer, 'wb') as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(sample_width)
        wf.setframerate(sample_rate)
        wf.writeframes(pcm)
    return buffer.getvalue()


def peak_level(pcm: bytes, sample_width: int = 2) -> Optional[float]:
    """Peak absolute amplitude of 16-bit PCM, scaled to 0.0-1.0."""
    if sample_width != 2:
        return None
    usable = len(pcm) - (len(pcm) % 2)
    if usable <= 0:
        return 0.0
    samples = np.frombuffer(pcm[:usable], dtype=np.int16).astype(np.int32)
    return float(np.abs(samples).max()) / 32768.0
