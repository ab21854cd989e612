"""
voice/playback.py — Output device playback for synthesized speech.

One asset plays at a time. Audio is pre-processed once (speed by resampling,
volume by scaling and clipping) and then pulled block by block from a
sounddevice.OutputStream callback. The stream's finished callback hops back
onto the event loop and resolves the play() future; cancel() resolves it
first, so each play() completes exactly once.
"""

from __future__ import annotations

import asyncio
from typing import Optional

import numpy as np

from mindscribe.exceptions import PlaybackError
from mindscribe.observability.logger import get_logger
from mindscribe.voice.resample import resample
from mindscribe.voice.tts import SynthesisAsset

log = get_logger(__name__)


def prepare_audio(audio: np.ndarray, sample_rate: int, speed: float, volume: float) -> np.ndarray:
    """
    Apply playback speed and volume. Returns a new float32 array in [-1, 1].

    Speed is applied by resampling, like a tape played fast or slow: duration
    scales by 1/speed and pitch scales by speed, so 1.25 sounds a little
    higher as well as quicker.
    """
    data = np.asarray(audio, dtype=np.float32)
    if speed != 1.0 and data.size:
        data = resample(data, int(round(sample_rate * speed)), sample_rate)
    return np.clip(data * volume, -1.0, 1.0).astype(np.float32)


def _resolve(fut: asyncio.Future, completed: bool) -> None:
    if not fut.done():
        fut.set_result(completed)


def _fail(fut: asyncio.Future, exc: BaseException) -> None:
    if not fut.done():
        fut.set_exception(exc)


class PlaybackController:
    def __init__(self, device=None) -> None:
        self._device = device
        self._stream = None          # sounddevice.OutputStream
        self._future: Optional[asyncio.Future] = None

    @property
    def is_playing(self) -> bool:
        return self._future is not None and not self._future.done()

    async def play(self, asset: SynthesisAsset, speed: float = 1.0, volume: float = 1.0) -> bool:
        """
        Play ``asset`` to the end. Returns True when finished, False when
        cancelled (by cancel() or a newer play()). Raises PlaybackError when
        the output device fails.
        """
        self.cancel()

        if asset.audio is None:
            raise PlaybackError("Audio asset was already released")
        data = prepare_audio(asset.audio, asset.sample_rate, speed, volume)
        if data.size == 0:
            return True

        loop = asyncio.get_running_loop()
        fut: asyncio.Future = loop.create_future()
        self._future = fut

        try:
            stream = self._open_stream(loop, fut, data, asset.sample_rate)
        except Exception as e:
            self._future = None
            log.error("voice.playback_open_failed", error=str(e), error_type=type(e).__name__)
            raise PlaybackError("Audio playback failed") from e
        self._stream = stream

        log.debug("voice.playback_started", duration_s=round(data.size / asset.sample_rate, 2))
        try:
            completed = await fut
        finally:
            if self._future is fut:
                self._future = None
            self._close(stream)
        log.debug("voice.playback_finished", completed=completed)
        return completed

    def _open_stream(self, loop: asyncio.AbstractEventLoop, fut: asyncio.Future,
                     data: np.ndarray, sample_rate: int):
        import sounddevice as sd

        position = 0

        def _callback(outdata, frames, time_info, status):
            nonlocal position
            if status:
                log.debug("voice.sounddevice_status", status=str(status))
            try:
                chunk = data[position:position + frames]
                outdata[:len(chunk), 0] = chunk
                outdata[len(chunk):] = 0
            except Exception as e:
                log.error("voice.playback_failed", error=str(e), error_type=type(e).__name__)
                loop.call_soon_threadsafe(_fail, fut, PlaybackError("Audio playback failed"))
                raise sd.CallbackAbort from e
            position += frames
            if position >= len(data):
                raise sd.CallbackStop

        def _finished():
            loop.call_soon_threadsafe(_resolve, fut, True)

        stream = sd.OutputStream(
            samplerate=sample_rate,
            channels=1,
            dtype="float32",
            device=self._device,
            callback=_callback,
            finished_callback=_finished,
        )
        try:
            stream.start()
        except Exception:
            stream.close()
            raise
        return stream

    def _close(self, stream) -> None:
        if self._stream is stream:
            self._stream = None
        try:
            stream.close()
        except Exception as e:
            log.debug("voice.playback_close_failed", error=str(e))

    def cancel(self) -> None:
        """Stop the current playback, if any. Idempotent."""
        fut, stream = self._future, self._stream
        if fut is None:
            return
        self._future = None
        _resolve(fut, False)
        if stream is not None:
            try:
                stream.abort()
            except Exception as e:
                log.debug("voice.playback_abort_failed", error=str(e))
        log.debug("voice.playback_cancelled")


__all__ = ["PlaybackController", "prepare_audio"]
