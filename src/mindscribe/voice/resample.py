"""
voice/resample.py — Decode captured containers into 16 kHz mono float32.

Whisper expects mono float32 at 16 kHz regardless of what the microphone
delivered. Decoding goes through libsndfile (soundfile), so any container it
reads (FLAC, WAV, OGG/Vorbis, ...) is accepted. Resampling is polyphase
(scipy.signal.resample_poly); the output is fitted to the exact duration of
the input so no signal is dropped and no filter tail is added.
"""

from __future__ import annotations

import io
from math import gcd

import numpy as np
import scipy.signal
import soundfile as sf

from mindscribe.exceptions import DecodeError

TARGET_SAMPLE_RATE = 16000


def expected_length(frames: int, from_rate: int, to_rate: int) -> int:
    """Number of output samples covering ``frames`` input samples: ceil(frames * to / from)."""
    return -(-frames * to_rate // from_rate)


def resample(samples: np.ndarray, from_rate: int, to_rate: int) -> np.ndarray:
    """
    Polyphase resample a 1-D signal from ``from_rate`` to ``to_rate``.

    The result always has ``expected_length(len(samples), from_rate, to_rate)``
    samples: the filter's edge is trimmed or zero-padded to fit.
    """
    if from_rate <= 0 or to_rate <= 0:
        raise ValueError(f"sample rates must be positive, got {from_rate} -> {to_rate}")
    x = np.asarray(samples, dtype=np.float32)
    if from_rate == to_rate or x.size == 0:
        return x.copy()

    g = gcd(from_rate, to_rate)
    y = scipy.signal.resample_poly(x, up=to_rate // g, down=from_rate // g)

    target = expected_length(x.size, from_rate, to_rate)
    if y.size > target:
        y = y[:target]
    elif y.size < target:
        y = np.pad(y, (0, target - y.size))
    return y.astype(np.float32)


def decode(blob: bytes) -> tuple[np.ndarray, int]:
    """
    Decode a container blob into (mono float32 samples, native sample rate).

    Multi-channel audio is downmixed by averaging channels.
    Raises DecodeError for empty or undecodable input.
    """
    if not blob:
        raise DecodeError("No audio data to decode")
    try:
        data, rate = sf.read(io.BytesIO(blob), dtype="float32", always_2d=True)
    except (RuntimeError, ValueError, TypeError) as e:
        raise DecodeError(f"Could not decode audio: {e}") from e
    if data.shape[0] == 0:
        raise DecodeError("Decoded audio contains no frames")
    mono = data.mean(axis=1) if data.shape[1] > 1 else data[:, 0]
    return np.ascontiguousarray(mono, dtype=np.float32), int(rate)


def decode_and_resample(blob: bytes, target_rate: int = TARGET_SAMPLE_RATE) -> np.ndarray:
    """Blocking — decode ``blob`` and return mono float32 samples at ``target_rate``."""
    mono, rate = decode(blob)
    return resample(mono, rate, target_rate)


__all__ = [
    "TARGET_SAMPLE_RATE",
    "expected_length",
    "resample",
    "decode",
    "decode_and_resample",
]
