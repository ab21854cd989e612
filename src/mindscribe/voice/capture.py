"""
voice/capture.py — Microphone gateway and per-utterance capture buffer.

    SoundDeviceGateway  — opens a sounddevice.InputStream (mono int16, 100 ms
                          blocks) and forwards each block onto the event loop
    CaptureBuffer       — accumulates the blocks of one utterance and encodes
                          them into a compressed container (FLAC by default)
    CaptureSession      — the device + buffer pair that exists while listening

PortAudio calls the stream callback on its own thread. The callback copies
the block and hops onto the asyncio loop with call_soon_threadsafe; every
consumer therefore runs on the loop thread.
"""

from __future__ import annotations

import asyncio
import io
import time
from dataclasses import dataclass, field
from typing import Optional, Union

import numpy as np
import soundfile as sf

from mindscribe.exceptions import DeviceAccessError, DeviceBusyError
from mindscribe.observability.logger import get_logger
from mindscribe.voice.engine import AudioCaptureDevice, ChunkCallback

log = get_logger(__name__)

# ── Audio constants ───────────────────────────────────────────────────────────

_DTYPE = "int16"
_SAMPLE_WIDTH = 2
_SUBTYPES = {"FLAC": "PCM_16", "WAV": "PCM_16", "OGG": "VORBIS"}


# ─────────────────────────────────────────────────────────────────────────────
# SoundDeviceGateway
# ─────────────────────────────────────────────────────────────────────────────

class SoundDeviceGateway:
    """
    Microphone access through sounddevice / PortAudio.

    16 kHz is requested first. Many USB microphones reject it, in which case
    the stream is reopened at the device's default rate and the caller is told
    the actual rate so it can resample later.
    """

    def __init__(
        self,
        sample_rate: int = 16000,
        channels: int = 1,
        chunk_ms: int = 100,
        device: Union[int, str, None] = None,
        echo_cancellation: bool = True,
        noise_suppression: bool = True,
    ) -> None:
        self._sample_rate = sample_rate
        self._channels = channels
        self._chunk_ms = chunk_ms
        self._device = device
        self._echo_cancellation = echo_cancellation
        self._noise_suppression = noise_suppression

        self._stream = None          # sounddevice.InputStream
        self._on_chunk: Optional[ChunkCallback] = None
        self._generation = 0

    @property
    def is_active(self) -> bool:
        return self._stream is not None

    async def acquire(self, on_chunk: ChunkCallback) -> int:
        if self._stream is not None:
            raise DeviceBusyError("A capture stream is already open")

        loop = asyncio.get_running_loop()
        self._generation += 1
        generation = self._generation
        self._on_chunk = on_chunk

        def _deliver(chunk: bytes) -> None:
            if generation == self._generation and self._on_chunk is not None:
                self._on_chunk(chunk)

        def _sd_callback(indata, frames, time_info, status):
            if status:
                log.debug("voice.sounddevice_status", status=str(status))
            # Copy bytes to avoid sharing the mutable PortAudio buffer
            loop.call_soon_threadsafe(_deliver, bytes(indata))

        try:
            import sounddevice as sd
        except (ImportError, OSError) as e:
            self._on_chunk = None
            raise DeviceAccessError(f"Audio backend unavailable: {e}") from e

        if self._echo_cancellation or self._noise_suppression:
            log.debug(
                "voice.capture_dsp_unsupported",
                echo_cancellation=self._echo_cancellation,
                noise_suppression=self._noise_suppression,
                backend="portaudio",
            )

        try:
            stream, rate = self._open_stream(sd, _sd_callback)
        except Exception as e:
            self.release()
            raise DeviceAccessError("Microphone access denied") from e

        self._stream = stream
        log.info("voice.mic_open", samplerate=rate, device=self._device)
        return rate

    def _open_stream(self, sd, callback):
        try:
            return self._start(sd, callback, self._sample_rate), self._sample_rate
        except sd.PortAudioError as e:
            info = sd.query_devices(self._device, "input")
            fallback = int(info["default_samplerate"])
            if fallback == self._sample_rate:
                raise
            log.info(
                "voice.mic_rate_fallback",
                requested=self._sample_rate,
                fallback=fallback,
                error=str(e),
            )
            return self._start(sd, callback, fallback), fallback

    def _start(self, sd, callback, rate: int):
        stream = sd.InputStream(
            samplerate=rate,
            channels=self._channels,
            dtype=_DTYPE,
            blocksize=int(rate * self._chunk_ms / 1000),
            device=self._device,
            callback=callback,
        )
        try:
            stream.start()
        except Exception:
            stream.close()
            raise
        return stream

    def release(self) -> None:
        """Stop and close the stream. Safe to call repeatedly or after a failed acquire."""
        self._generation += 1
        self._on_chunk = None
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.stop()
        except Exception as e:
            log.debug("voice.mic_stop_failed", error=str(e))
        try:
            stream.close()
        except Exception as e:
            log.debug("voice.mic_close_failed", error=str(e))
        log.info("voice.mic_closed")


# ─────────────────────────────────────────────────────────────────────────────
# CaptureBuffer
# ─────────────────────────────────────────────────────────────────────────────

class CaptureBuffer:
    """Raw int16 PCM chunks of one utterance."""

    def __init__(self, sample_rate: int, channels: int = 1, container: str = "FLAC") -> None:
        container = container.upper()
        if container not in _SUBTYPES:
            raise ValueError(f"Unsupported capture container '{container}'")
        self.sample_rate = sample_rate
        self.channels = channels
        self.container = container
        self._chunks: list[bytes] = []

    def append(self, chunk: bytes) -> None:
        if chunk:
            self._chunks.append(chunk)

    def clear(self) -> None:
        self._chunks.clear()

    @property
    def byte_count(self) -> int:
        return sum(len(c) for c in self._chunks)

    @property
    def frame_count(self) -> int:
        return self.byte_count // (_SAMPLE_WIDTH * self.channels)

    @property
    def duration_s(self) -> float:
        return self.frame_count / self.sample_rate if self.sample_rate else 0.0

    def encode(self) -> bytes:
        """
        Blocking — encode the buffered PCM into the configured container.
        Returns b"" when nothing was captured.
        """
        frames = self.frame_count
        if frames == 0:
            return b""
        pcm = b"".join(self._chunks)[: frames * _SAMPLE_WIDTH * self.channels]
        data = np.frombuffer(pcm, dtype=np.int16).reshape(-1, self.channels)
        buf = io.BytesIO()
        sf.write(
            buf,
            data,
            self.sample_rate,
            format=self.container,
            subtype=_SUBTYPES[self.container],
        )
        return buf.getvalue()


# ─────────────────────────────────────────────────────────────────────────────
# CaptureSession
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class CaptureSession:
    """Exists from start_listening() until stop_listening() consumes it."""
    device: AudioCaptureDevice
    buffer: CaptureBuffer
    started_at: float = field(default_factory=time.monotonic)

    @property
    def elapsed_s(self) -> float:
        return time.monotonic() - self.started_at


__all__ = ["SoundDeviceGateway", "CaptureBuffer", "CaptureSession"]
