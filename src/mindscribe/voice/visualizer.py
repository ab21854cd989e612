"""
voice/visualizer.py — Frequency and waveform snapshots of the live mic stream.

Behaves like a browser AnalyserNode so the UI can draw the same bars and
oscilloscope it always has:

    frequency_data()  — fft_size/2 uint8 bins: Blackman window, magnitude
                        smoothed over time, dB mapped from [min_db, max_db]
                        onto [0, 255]
    waveform_data()   — fft_size/2 uint8 samples, 128 = silence
"""

from __future__ import annotations

from typing import Optional

import numpy as np

from mindscribe.observability.logger import get_logger

log = get_logger(__name__)

_INT16_SCALE = 32768.0
_EPS = 1e-12


class VisualizationSampler:
    def __init__(
        self,
        fft_size: int = 256,
        smoothing: float = 0.8,
        min_db: float = -100.0,
        max_db: float = -30.0,
    ) -> None:
        if fft_size < 2 or fft_size & (fft_size - 1):
            raise ValueError("fft_size must be a power of two")
        if min_db >= max_db:
            raise ValueError("min_db must be below max_db")
        self.fft_size = fft_size
        self.smoothing = smoothing
        self.min_db = min_db
        self.max_db = max_db

        self._window = np.blackman(fft_size).astype(np.float32)
        self._ring: Optional[np.ndarray] = None
        self._smoothed: Optional[np.ndarray] = None
        self.sample_rate: Optional[int] = None

    @property
    def attached(self) -> bool:
        return self._ring is not None

    def attach(self, sample_rate: int) -> None:
        self.sample_rate = sample_rate
        self._ring = np.zeros(self.fft_size, dtype=np.float32)
        self._smoothed = np.zeros(self.fft_size // 2, dtype=np.float32)

    def detach(self) -> None:
        self._ring = None
        self._smoothed = None
        self.sample_rate = None

    def feed(self, chunk: bytes) -> None:
        """Push one int16 PCM chunk. Errors are logged, never raised."""
        if self._ring is None:
            return
        try:
            usable = len(chunk) - len(chunk) % 2
            samples = np.frombuffer(chunk[:usable], dtype=np.int16).astype(np.float32) / _INT16_SCALE
            if samples.size >= self.fft_size:
                self._ring = samples[-self.fft_size:].copy()
            elif samples.size:
                self._ring = np.concatenate((self._ring[samples.size:], samples))
        except Exception as e:
            log.debug("voice.visualizer_feed_failed", error=str(e))

    def frequency_data(self) -> Optional[np.ndarray]:
        if self._ring is None or self._smoothed is None:
            return None
        spectrum = np.fft.rfft(self._ring * self._window)[: self.fft_size // 2]
        magnitude = np.abs(spectrum) / self.fft_size
        self._smoothed = (
            self.smoothing * self._smoothed + (1.0 - self.smoothing) * magnitude
        ).astype(np.float32)
        db = 20.0 * np.log10(self._smoothed + _EPS)
        scaled = (db - self.min_db) * (255.0 / (self.max_db - self.min_db))
        return np.clip(scaled, 0, 255).astype(np.uint8)

    def waveform_data(self) -> Optional[np.ndarray]:
        if self._ring is None:
            return None
        recent = self._ring[-(self.fft_size // 2):]
        return np.clip(128.0 * (1.0 + recent), 0, 255).astype(np.uint8)


__all__ = ["VisualizationSampler"]
