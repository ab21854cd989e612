"""
tests/unit/test_visualizer.py — VisualizationSampler tests
"""

from __future__ import annotations

import numpy as np
import pytest

from mindscribe.voice.visualizer import VisualizationSampler


def _sine_pcm(n: int, bin_index: int, fft_size: int = 256, amplitude: float = 0.5) -> bytes:
    t = np.arange(n)
    x = amplitude * np.sin(2 * np.pi * bin_index * t / fft_size)
    return (x * 32767).astype(np.int16).tobytes()


class TestLifecycle:

    def test_detached_returns_none(self):
        viz = VisualizationSampler()
        assert not viz.attached
        assert viz.frequency_data() is None
        assert viz.waveform_data() is None

    def test_feed_while_detached_is_ignored(self):
        viz = VisualizationSampler()
        viz.feed(b"\x00\x10" * 512)
        assert viz.frequency_data() is None

    def test_detach(self):
        viz = VisualizationSampler()
        viz.attach(16000)
        assert viz.attached
        assert viz.sample_rate == 16000
        viz.detach()
        assert viz.waveform_data() is None
        assert viz.sample_rate is None

    @pytest.mark.parametrize("size", [0, 100, 255])
    def test_fft_size_must_be_power_of_two(self, size):
        with pytest.raises(ValueError):
            VisualizationSampler(fft_size=size)

    def test_db_range_checked(self):
        with pytest.raises(ValueError):
            VisualizationSampler(min_db=-30, max_db=-30)


class TestFrequencyData:

    def test_silence_is_zero(self):
        viz = VisualizationSampler()
        viz.attach(16000)
        data = viz.frequency_data()
        assert data.dtype == np.uint8
        assert data.shape == (128,)
        assert not data.any()

    def test_tone_peaks_at_its_bin(self):
        viz = VisualizationSampler(fft_size=256, smoothing=0.0, min_db=-100, max_db=0)
        viz.attach(16000)
        viz.feed(_sine_pcm(256, bin_index=32))
        data = viz.frequency_data()
        assert int(np.argmax(data)) == 32
        assert data[31] < data[32] > data[33]
        assert data[100] < data[32] // 2

    def test_loud_tone_saturates(self):
        viz = VisualizationSampler(fft_size=256, smoothing=0.0)
        viz.attach(16000)
        viz.feed(_sine_pcm(256, bin_index=32))
        assert viz.frequency_data()[32] == 255

    def test_smoothing_rises_gradually(self):
        viz = VisualizationSampler(fft_size=256, smoothing=0.8, min_db=-100, max_db=0)
        viz.attach(16000)
        viz.feed(_sine_pcm(256, bin_index=16))
        readings = [int(viz.frequency_data()[16]) for _ in range(5)]
        assert readings == sorted(readings)
        assert readings[0] < readings[-1]


class TestWaveformData:

    def test_silence_is_midline(self):
        viz = VisualizationSampler(fft_size=64)
        viz.attach(16000)
        data = viz.waveform_data()
        assert data.shape == (32,)
        assert np.all(data == 128)

    def test_full_scale_maps_to_extremes(self):
        viz = VisualizationSampler(fft_size=64)
        viz.attach(16000)
        pcm = np.array([32767, -32768] * 32, dtype=np.int16)
        viz.feed(pcm.tobytes())
        data = viz.waveform_data()
        assert set(data.tolist()) <= {0, 255}
        assert 255 in data and 0 in data

    def test_short_chunks_shift_ring(self):
        viz = VisualizationSampler(fft_size=64)
        viz.attach(16000)
        viz.feed(np.full(8, 16384, dtype=np.int16).tobytes())
        data = viz.waveform_data()
        assert np.all(data[-8:] == 192)
        assert np.all(data[:-8] == 128)

    def test_odd_length_chunk_tolerated(self):
        viz = VisualizationSampler(fft_size=64)
        viz.attach(16000)
        viz.feed(b"\x00\x40\x01")
        assert viz.waveform_data()[-1] == 192
