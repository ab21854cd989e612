"""
tests/unit/test_capture.py — Microphone gateway and capture buffer tests

sounddevice is replaced with an in-memory fake module so no PortAudio
device is touched. CaptureBuffer encoding uses real soundfile.
"""

from __future__ import annotations

import asyncio
import io
import sys
import threading
import types
from unittest.mock import patch

import numpy as np
import pytest
import soundfile as sf

from mindscribe.exceptions import DeviceAccessError, DeviceBusyError
from mindscribe.voice.capture import CaptureBuffer, CaptureSession, SoundDeviceGateway


# ─────────────────────────────────────────────────────────────────────────────
# Fake sounddevice
# ─────────────────────────────────────────────────────────────────────────────

def _make_fake_sd(reject_rates=(), default_rate: float = 48000.0, fail_open: bool = False,
                  fail_start_rates=()):
    sd = types.ModuleType("sounddevice")

    class PortAudioError(Exception):
        pass

    class InputStream:
        instances: list = []

        def __init__(self, samplerate, channels, dtype, blocksize, device, callback):
            if fail_open:
                raise OSError("permission denied")
            if samplerate in reject_rates:
                raise PortAudioError("Invalid sample rate")
            self.samplerate = samplerate
            self.channels = channels
            self.dtype = dtype
            self.blocksize = blocksize
            self.callback = callback
            self.started = False
            self.closed = False
            InputStream.instances.append(self)

        def start(self):
            if self.samplerate in fail_start_rates:
                raise PortAudioError("Error starting stream")
            self.started = True

        def stop(self):
            self.started = False

        def close(self):
            self.closed = True

    def query_devices(device=None, kind=None):
        return {"name": "fake mic", "default_samplerate": default_rate}

    sd.PortAudioError = PortAudioError
    sd.InputStream = InputStream
    sd.query_devices = query_devices
    return sd


def _fire_from_thread(stream, samples: np.ndarray) -> None:
    """Invoke the stream callback from a non-loop thread, like PortAudio does."""
    indata = samples.reshape(-1, 1)
    t = threading.Thread(target=stream.callback, args=(indata, len(samples), None, None))
    t.start()
    t.join()


async def _drain() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


# ─────────────────────────────────────────────────────────────────────────────
# SoundDeviceGateway
# ─────────────────────────────────────────────────────────────────────────────

class TestSoundDeviceGateway:

    @pytest.mark.asyncio
    async def test_acquire_opens_16k_mono_int16(self):
        sd = _make_fake_sd()
        with patch.dict(sys.modules, {"sounddevice": sd}):
            gw = SoundDeviceGateway()
            rate = await gw.acquire(lambda chunk: None)
        stream = sd.InputStream.instances[-1]
        assert rate == 16000
        assert stream.channels == 1
        assert stream.dtype == "int16"
        assert stream.blocksize == 1600
        assert stream.started
        assert gw.is_active

    @pytest.mark.asyncio
    async def test_falls_back_to_device_default_rate(self):
        sd = _make_fake_sd(reject_rates={16000}, default_rate=48000.0)
        with patch.dict(sys.modules, {"sounddevice": sd}):
            gw = SoundDeviceGateway()
            rate = await gw.acquire(lambda chunk: None)
        assert rate == 48000
        assert sd.InputStream.instances[-1].blocksize == 4800

    @pytest.mark.asyncio
    async def test_stream_that_fails_to_start_is_closed(self):
        sd = _make_fake_sd(fail_start_rates={16000}, default_rate=44100.0)
        with patch.dict(sys.modules, {"sounddevice": sd}):
            gw = SoundDeviceGateway()
            rate = await gw.acquire(lambda chunk: None)
        first, second = sd.InputStream.instances
        assert rate == 44100
        assert first.closed and not first.started
        assert second.started and not second.closed

    @pytest.mark.asyncio
    async def test_every_start_failure_closes_streams(self):
        sd = _make_fake_sd(fail_start_rates={16000, 48000}, default_rate=48000.0)
        with patch.dict(sys.modules, {"sounddevice": sd}):
            gw = SoundDeviceGateway()
            with pytest.raises(DeviceAccessError):
                await gw.acquire(lambda chunk: None)
        assert len(sd.InputStream.instances) == 2
        assert all(s.closed for s in sd.InputStream.instances)
        assert not gw.is_active

    @pytest.mark.asyncio
    async def test_chunks_delivered_on_event_loop(self):
        sd = _make_fake_sd()
        received: list[tuple[bytes, int]] = []
        with patch.dict(sys.modules, {"sounddevice": sd}):
            gw = SoundDeviceGateway()
            await gw.acquire(lambda chunk: received.append((chunk, threading.get_ident())))
        samples = np.arange(1600, dtype=np.int16)
        _fire_from_thread(sd.InputStream.instances[-1], samples)
        await _drain()
        assert len(received) == 1
        chunk, thread_id = received[0]
        assert chunk == samples.tobytes()
        assert thread_id == threading.get_ident()

    @pytest.mark.asyncio
    async def test_second_acquire_is_busy(self):
        sd = _make_fake_sd()
        with patch.dict(sys.modules, {"sounddevice": sd}):
            gw = SoundDeviceGateway()
            await gw.acquire(lambda chunk: None)
            with pytest.raises(DeviceBusyError):
                await gw.acquire(lambda chunk: None)
        assert len(sd.InputStream.instances) == 1

    @pytest.mark.asyncio
    async def test_open_failure_is_access_error(self):
        sd = _make_fake_sd(fail_open=True)
        with patch.dict(sys.modules, {"sounddevice": sd}):
            gw = SoundDeviceGateway()
            with pytest.raises(DeviceAccessError, match="Microphone access denied"):
                await gw.acquire(lambda chunk: None)
        assert not gw.is_active
        gw.release()

    @pytest.mark.asyncio
    async def test_release_is_idempotent_and_stops_delivery(self):
        sd = _make_fake_sd()
        received: list[bytes] = []
        with patch.dict(sys.modules, {"sounddevice": sd}):
            gw = SoundDeviceGateway()
            await gw.acquire(received.append)
        stream = sd.InputStream.instances[-1]
        gw.release()
        gw.release()
        assert stream.closed
        assert not gw.is_active
        _fire_from_thread(stream, np.ones(160, dtype=np.int16))
        await _drain()
        assert received == []

    @pytest.mark.asyncio
    async def test_reacquire_after_release(self):
        sd = _make_fake_sd()
        with patch.dict(sys.modules, {"sounddevice": sd}):
            gw = SoundDeviceGateway()
            await gw.acquire(lambda chunk: None)
            gw.release()
            assert await gw.acquire(lambda chunk: None) == 16000
        assert len(sd.InputStream.instances) == 2


# ─────────────────────────────────────────────────────────────────────────────
# CaptureBuffer
# ─────────────────────────────────────────────────────────────────────────────

class TestCaptureBuffer:

    def test_empty_buffer_encodes_to_nothing(self):
        assert CaptureBuffer(16000).encode() == b""

    def test_duration_and_counts(self):
        buf = CaptureBuffer(16000)
        buf.append(np.zeros(1600, dtype=np.int16).tobytes())
        buf.append(b"")
        buf.append(np.zeros(1600, dtype=np.int16).tobytes())
        assert buf.byte_count == 6400
        assert buf.frame_count == 3200
        assert buf.duration_s == pytest.approx(0.2)

    def test_flac_roundtrip_preserves_samples(self):
        rng = np.random.default_rng(3)
        pcm = rng.integers(-20000, 20000, size=8000, dtype=np.int16)
        buf = CaptureBuffer(16000)
        buf.append(pcm.tobytes())
        blob = buf.encode()
        assert blob[:4] == b"fLaC"
        data, rate = sf.read(io.BytesIO(blob), dtype="int16")
        assert rate == 16000
        assert np.array_equal(data, pcm)

    def test_digital_silence_compresses_below_threshold(self):
        buf = CaptureBuffer(16000)
        buf.append(np.zeros(3200, dtype=np.int16).tobytes())
        assert 0 < len(buf.encode()) < 1000

    def test_speech_like_audio_exceeds_threshold(self):
        rng = np.random.default_rng(11)
        buf = CaptureBuffer(16000)
        buf.append(rng.integers(-8000, 8000, size=16000, dtype=np.int16).tobytes())
        assert len(buf.encode()) > 1000

    def test_wav_container(self):
        buf = CaptureBuffer(16000, container="wav")
        buf.append(np.zeros(160, dtype=np.int16).tobytes())
        assert buf.encode()[:4] == b"RIFF"

    def test_unsupported_container(self):
        with pytest.raises(ValueError):
            CaptureBuffer(16000, container="mp3")

    def test_clear(self):
        buf = CaptureBuffer(16000)
        buf.append(b"\x00\x00" * 10)
        buf.clear()
        assert buf.byte_count == 0

    def test_trailing_odd_byte_ignored(self):
        buf = CaptureBuffer(16000)
        buf.append(b"\x01\x00\x02")
        data, _ = sf.read(io.BytesIO(buf.encode()), dtype="int16")
        assert list(data) == [1]


class TestCaptureSession:

    def test_elapsed(self):
        session = CaptureSession(device=None, buffer=CaptureBuffer(16000), started_at=0.0)
        assert session.elapsed_s > 0
