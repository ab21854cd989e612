"""
tests/unit/test_resample.py — Decode/resample stage tests

Uses real soundfile containers written in-memory; no audio hardware needed.
"""

from __future__ import annotations

import io

import numpy as np
import pytest
import soundfile as sf

from mindscribe.exceptions import DecodeError, TranscriptionError
from mindscribe.voice.resample import (
    decode,
    decode_and_resample,
    expected_length,
    resample,
)


def _tone(duration_s: float, rate: int, freq: float = 440.0, channels: int = 1) -> np.ndarray:
    t = np.arange(int(round(duration_s * rate))) / rate
    mono = (0.3 * np.sin(2 * np.pi * freq * t)).astype(np.float32)
    if channels == 1:
        return mono
    return np.stack([mono] * channels, axis=1)


def _container(data: np.ndarray, rate: int, fmt: str = "WAV", subtype: str = "PCM_16") -> bytes:
    buf = io.BytesIO()
    sf.write(buf, data, rate, format=fmt, subtype=subtype)
    return buf.getvalue()


class TestResampleLength:

    @pytest.mark.parametrize("rate", [8000, 16000, 22050, 44100, 48000])
    @pytest.mark.parametrize("duration", [0.5, 1.0, 2.5])
    def test_length_independent_of_native_rate(self, rate, duration):
        blob = _container(_tone(duration, rate), rate)
        out = decode_and_resample(blob)
        assert out.dtype == np.float32
        assert out.ndim == 1
        assert len(out) == round(duration * 16000)

    def test_fractional_duration_rounds_up(self):
        # 441 frames at 44.1 kHz = 10 ms = 160 samples; 442 frames is just over
        assert expected_length(441, 44100, 16000) == 160
        assert expected_length(442, 44100, 16000) == 161
        assert len(resample(np.zeros(442, dtype=np.float32), 44100, 16000)) == 161

    def test_same_rate_is_copy(self):
        x = np.linspace(-1, 1, 100, dtype=np.float32)
        y = resample(x, 16000, 16000)
        assert np.array_equal(x, y)
        assert y is not x

    def test_invalid_rate_rejected(self):
        with pytest.raises(ValueError):
            resample(np.zeros(10, dtype=np.float32), 0, 16000)

    def test_signal_preserved(self):
        x = _tone(1.0, 48000, freq=300.0)
        y = resample(x, 48000, 16000)
        expected = _tone(1.0, 16000, freq=300.0)
        # Ignore filter edges
        assert np.max(np.abs(y[200:-200] - expected[200:-200])) < 0.02


class TestDecode:

    def test_stereo_downmixed_by_mean(self):
        left = np.full(1600, 0.5, dtype=np.float32)
        right = np.full(1600, -0.1, dtype=np.float32)
        blob = _container(np.stack([left, right], axis=1), 16000, subtype="FLOAT")
        mono, rate = decode(blob)
        assert rate == 16000
        assert mono.shape == (1600,)
        assert np.allclose(mono, 0.2, atol=1e-6)

    def test_flac_container(self):
        blob = _container(_tone(1.0, 22050), 22050, fmt="FLAC")
        assert len(decode_and_resample(blob)) == 16000

    def test_empty_blob(self):
        with pytest.raises(DecodeError):
            decode(b"")

    def test_garbage_blob(self):
        with pytest.raises(DecodeError):
            decode(b"definitely not audio" * 50)

    def test_decode_error_is_transcription_error(self):
        with pytest.raises(TranscriptionError):
            decode_and_resample(b"\x00\x01\x02")

    def test_zero_frame_container(self):
        blob = _container(np.zeros((0, 1), dtype=np.float32), 16000)
        with pytest.raises(DecodeError):
            decode(blob)
