"""
voice/session.py — MindScribe Voice Session Controller

The only voice component other code calls directly. Coordinates microphone
capture, speech-to-text, text-to-speech and playback through one cooperative
state machine:

    idle → loading-stt | loading-tts → ready
    ready → listening → transcribing → ready
    ready → speaking → ready
    any  → error      (operations stay usable; success returns to ready)

Guarantees
----------
* Listening and speaking are mutually exclusive: start_listening() stops
  playback, speak() discards an active capture.
* State-changing transitions (initialize, start_listening, stop_listening and
  the begin step of speak) run one at a time through a FIFO queue of chained
  futures. Synthesis and playback run outside it so a newer speak() can
  supersede an older one.
* A generation counter invalidates stale work: stop_speaking(), a newer
  speak() and dispose() bump it, and synthesized audio arriving for an old
  generation is released without playing.
* Engine failures never escape: they become status=error plus a message
  (and the on_error callback for speak()).

Usage::

    session = VoiceSession.from_settings(settings)
    unsubscribe = session.subscribe(lambda s: print(s.status))
    await session.initialize()
    await session.start_listening()
    text = await session.stop_listening()
    await session.speak("Take a slow breath with me.")
    session.dispose()
"""

from __future__ import annotations

import asyncio
import contextlib
import time
import uuid
from enum import Enum
from typing import TYPE_CHECKING, Any, AsyncIterator, Callable, Optional, Union

import numpy as np

from mindscribe.exceptions import (
    DeviceAccessError,
    ModelLoadError,
    PlaybackError,
    SynthesisError,
    VoiceError,
)
from mindscribe.observability.logger import get_logger
from mindscribe.voice.capture import CaptureBuffer, CaptureSession, SoundDeviceGateway
from mindscribe.voice.catalog import VoiceConfig, VoiceProfile, get_voice, list_voices
from mindscribe.voice.engine import (
    AudioCaptureDevice,
    AudioPlayer,
    SpeechRecognizer,
    SpeechSynthesizer,
)
from mindscribe.voice.playback import PlaybackController
from mindscribe.voice.resample import decode_and_resample
from mindscribe.voice.state import VoiceSessionState, VoiceStatus
from mindscribe.voice.stt import WhisperRecognizer
from mindscribe.voice.text import MAX_SPEECH_CHARS, truncate_for_speech
from mindscribe.voice.tts import PiperSynthesizer
from mindscribe.voice.visualizer import VisualizationSampler

if TYPE_CHECKING:
    from mindscribe.config.settings import Settings

_log = get_logger(__name__)

Listener = Callable[[VoiceSessionState], None]
Decoder = Callable[[bytes], np.ndarray]

# User-facing error messages
_MSG_STT_LOAD = "Failed to load speech recognition model"
_MSG_TTS_LOAD = "Failed to load speech synthesis model"
_MSG_MIC_DENIED = "Microphone access denied"
_MSG_MIC_FAILED = "Failed to start recording"
_MSG_ALREADY_LISTENING = "Already listening"
_MSG_TRANSCRIPTION = "Transcription failed"
_MSG_SYNTHESIS = "Speech generation failed"
_MSG_PLAYBACK = "Audio playback failed"


class SpeechOutcome(str, Enum):
    SKIPPED = "skipped"        # empty / whitespace-only text
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"    # superseded, stopped or disposed


def _release(fut: asyncio.Future) -> None:
    if not fut.done():
        fut.set_result(None)


def _noop() -> None:
    return None


class VoiceSession:
    """Voice session controller. One instance per UI / conversation."""

    def __init__(
        self,
        *,
        recognizer: SpeechRecognizer,
        synthesizer: SpeechSynthesizer,
        player: AudioPlayer,
        capture_device: AudioCaptureDevice,
        visualizer: Optional[VisualizationSampler] = None,
        decoder: Decoder = decode_and_resample,
        config: Optional[VoiceConfig] = None,
        min_capture_bytes: int = 1000,
        max_speech_chars: int = MAX_SPEECH_CHARS,
        capture_sample_rate: int = 16000,
        capture_channels: int = 1,
        capture_container: str = "FLAC",
    ) -> None:
        self.id = uuid.uuid4().hex[:12]
        self._log = _log.bind(session_id=self.id)

        self._recognizer = recognizer
        self._synthesizer = synthesizer
        self._player = player
        self._device = capture_device
        self._visualizer = visualizer
        self._decoder = decoder
        self._config = config.model_copy(deep=True) if config else VoiceConfig()
        self._min_capture_bytes = min_capture_bytes
        self._max_speech_chars = max_speech_chars
        self._capture_rate = capture_sample_rate
        self._capture_channels = capture_channels
        self._capture_container = capture_container

        self._state = VoiceSessionState()
        self._listeners: list[Listener] = []
        self._capture: Optional[CaptureSession] = None
        self._tail: Optional[asyncio.Future] = None     # last queued transition
        self._generation = 0
        self._disposed = False

    @classmethod
    def from_settings(cls, settings: "Settings") -> "VoiceSession":
        """Wire the concrete Whisper / Piper / sounddevice adapters from Settings."""
        default_voice = get_voice(settings.tts.default_voice)
        return cls(
            recognizer=WhisperRecognizer(
                model=settings.stt.model,
                device=settings.stt.device,
                compute_type=settings.stt.compute_type,
                language=settings.stt.language,
                beam_size=settings.stt.beam_size,
                chunk_length_s=settings.stt.chunk_length_s,
                stride_length_s=settings.stt.stride_length_s,
                download_root=settings.stt.download_root,
            ),
            synthesizer=PiperSynthesizer(
                default_voice=default_voice,
                voices_base_url=settings.tts.voices_base_url,
                cache_dir=settings.voice_cache_dir,
                warmup_text=settings.tts.warmup_text,
                request_timeout_s=settings.tts.request_timeout_s,
            ),
            player=PlaybackController(device=settings.playback.device),
            capture_device=SoundDeviceGateway(
                sample_rate=settings.capture.sample_rate,
                channels=settings.capture.channels,
                chunk_ms=settings.capture.chunk_ms,
                device=settings.capture.device,
                echo_cancellation=settings.capture.echo_cancellation,
                noise_suppression=settings.capture.noise_suppression,
            ),
            visualizer=VisualizationSampler(
                fft_size=settings.visualization.fft_size,
                smoothing=settings.visualization.smoothing,
                min_db=settings.visualization.min_db,
                max_db=settings.visualization.max_db,
            ),
            config=VoiceConfig(
                voice=default_voice,
                speed=settings.playback.speed,
                volume=settings.playback.volume,
            ),
            min_capture_bytes=settings.capture.min_capture_bytes,
            max_speech_chars=settings.tts.max_chars,
            capture_sample_rate=settings.capture.sample_rate,
            capture_channels=settings.capture.channels,
            capture_container=settings.capture.container,
        )

    # ── State publication ─────────────────────────────────────────────────────

    def _update(self, **changes: Any) -> None:
        if self._disposed:
            return
        self._state = self._state.evolve(**changes)
        self._notify()

    def _notify(self) -> None:
        snapshot = self._state
        for listener in tuple(self._listeners):
            if listener in self._listeners:
                self._call_listener(listener, snapshot)

    def _call_listener(self, listener: Listener, snapshot: VoiceSessionState) -> None:
        try:
            listener(snapshot)
        except Exception as e:
            self._log.debug("voice.listener_error", error=str(e), error_type=type(e).__name__)

    def _settle_ready(self) -> None:
        """Return to ready unless listening, transcribing or speaking."""
        s = self._state
        if not (s.is_listening or s.is_speaking or s.is_transcribing):
            self._update(status=VoiceStatus.READY, error=None)

    # ── Transition queue ──────────────────────────────────────────────────────

    @contextlib.asynccontextmanager
    async def _transition(self) -> AsyncIterator[None]:
        """
        Run the body after every previously queued transition has finished.

        Each entrant appends a future to the chain and waits for its
        predecessor's. A waiter cancelled while queued hands its slot on only
        once its predecessor resolves, so ordering survives cancellation.
        """
        loop = asyncio.get_running_loop()
        prev, done = self._tail, loop.create_future()
        self._tail = done
        if prev is not None and not prev.done():
            try:
                await asyncio.shield(prev)
            except asyncio.CancelledError:
                prev.add_done_callback(lambda _f: _release(done))
                raise
        try:
            yield
        finally:
            _release(done)

    # ── Model loading ─────────────────────────────────────────────────────────

    async def initialize(self) -> bool:
        """
        Load STT and TTS concurrently. True only when both are loaded.
        Already loaded: returns True immediately and clears a stale error.
        """
        if self._disposed:
            return False
        async with self._transition():
            if self._disposed:
                return False
            if self._state.models_loaded:
                self._settle_ready()
                return True
            stt_ok, tts_ok = await asyncio.gather(self._load_stt(), self._load_tts())
            if self._disposed:
                return False
            if stt_ok and tts_ok:
                self._update(load_progress=100)
                self._settle_ready()
                self._log.info("voice.ready")
                return True
            return False

    async def initialize_stt(self) -> bool:
        if self._disposed:
            return False
        async with self._transition():
            if self._disposed:
                return False
            ok = await self._load_stt()
            if ok:
                self._settle_ready()
            return ok

    async def initialize_tts(self) -> bool:
        if self._disposed:
            return False
        async with self._transition():
            if self._disposed:
                return False
            ok = await self._load_tts()
            if ok:
                self._settle_ready()
            return ok

    def _on_load_progress(self, pct: int) -> None:
        self._update(load_progress=max(0, min(100, int(pct))))

    async def _load_stt(self) -> bool:
        if self._recognizer.loaded:
            if not self._state.stt_loaded:
                self._update(stt_loaded=True)
            return True
        self._update(status=VoiceStatus.LOADING_STT, load_progress=0)
        t0 = time.monotonic()
        try:
            await self._recognizer.load(progress=self._on_load_progress)
        except Exception as e:
            self._log.error("voice.stt_load_failed", error=str(e), error_type=type(e).__name__)
            self._update(status=VoiceStatus.ERROR, stt_loaded=False,
                         error=str(e) if isinstance(e, ModelLoadError) else _MSG_STT_LOAD)
            return False
        self._log.info("voice.stt_ready", duration_ms=round((time.monotonic() - t0) * 1000))
        self._update(stt_loaded=True)
        return True

    async def _load_tts(self) -> bool:
        if self._synthesizer.loaded:
            if not self._state.tts_loaded:
                self._update(tts_loaded=True)
            return True
        self._update(status=VoiceStatus.LOADING_TTS)
        t0 = time.monotonic()
        try:
            await self._synthesizer.load()
        except Exception as e:
            self._log.error("voice.tts_load_failed", error=str(e), error_type=type(e).__name__)
            self._update(status=VoiceStatus.ERROR, tts_loaded=False,
                         error=str(e) if isinstance(e, ModelLoadError) else _MSG_TTS_LOAD)
            return False
        self._log.info("voice.tts_ready", duration_ms=round((time.monotonic() - t0) * 1000))
        self._update(tts_loaded=True)
        return True

    # ── Listening ─────────────────────────────────────────────────────────────

    async def start_listening(self) -> bool:
        if self._disposed:
            return False
        async with self._transition():
            if self._disposed:
                return False
            if self._capture is not None:
                self._log.warning("voice.already_listening")
                self._update(error=_MSG_ALREADY_LISTENING)
                return False
            if not self._recognizer.loaded and not await self._load_stt():
                return False

            self.stop_speaking()

            buffer = CaptureBuffer(
                self._capture_rate,
                channels=self._capture_channels,
                container=self._capture_container,
            )
            try:
                rate = await self._device.acquire(self._chunk_handler(buffer))
            except Exception as e:
                self._device.release()
                self._log.error("voice.mic_failed", error=str(e), error_type=type(e).__name__)
                self._update(
                    status=VoiceStatus.ERROR,
                    is_listening=False,
                    error=_MSG_MIC_DENIED if isinstance(e, DeviceAccessError) else _MSG_MIC_FAILED,
                )
                return False

            if self._disposed:
                self._device.release()
                return False

            buffer.sample_rate = rate
            self._capture = CaptureSession(device=self._device, buffer=buffer)
            if self._visualizer is not None:
                self._visualizer.attach(rate)
            self._update(
                status=VoiceStatus.LISTENING,
                is_listening=True,
                is_speaking=False,
                error=None,
                current_transcript="",
            )
            self._log.info("voice.listening", sample_rate=rate)
            return True

    def _chunk_handler(self, buffer: CaptureBuffer) -> Callable[[bytes], None]:
        def _on_chunk(chunk: bytes) -> None:
            buffer.append(chunk)
            if self._visualizer is not None:
                self._visualizer.feed(chunk)
        return _on_chunk

    def _close_capture(self) -> Optional[CaptureSession]:
        capture, self._capture = self._capture, None
        if capture is not None:
            capture.device.release()
        if self._visualizer is not None:
            self._visualizer.detach()
        return capture

    async def stop_listening(self) -> str:
        """
        Stop capture and transcribe it. Not listening: returns the previous
        transcript. Failures resolve "" with status=error.
        """
        if self._disposed:
            return ""
        async with self._transition():
            if self._disposed:
                return ""
            if self._capture is None:
                return self._state.current_transcript

            capture = self._close_capture()
            self._update(
                status=VoiceStatus.TRANSCRIBING,
                is_listening=False,
                is_transcribing=True,
            )
            loop = asyncio.get_running_loop()
            try:
                blob = await loop.run_in_executor(None, capture.buffer.encode)
                capture.buffer.clear()
                if len(blob) < self._min_capture_bytes:
                    self._log.info(
                        "voice.capture_too_small",
                        bytes=len(blob),
                        min_bytes=self._min_capture_bytes,
                    )
                    self._update(status=VoiceStatus.READY, is_transcribing=False,
                                 current_transcript="")
                    return ""
                samples = await loop.run_in_executor(None, self._decoder, blob)
                text = (await self._recognizer.transcribe(samples)).strip()
            except Exception as e:
                self._log.error("voice.transcription_failed", error=str(e),
                                error_type=type(e).__name__)
                self._update(status=VoiceStatus.ERROR, is_transcribing=False,
                             error=_MSG_TRANSCRIPTION)
                return ""

            if self._disposed:
                return ""
            self._update(
                status=VoiceStatus.READY,
                is_transcribing=False,
                current_transcript=text,
                error=None,
            )
            self._log.info("voice.heard", chars=len(text), capture_s=round(capture.elapsed_s, 2))
            return text

    # ── Speaking ──────────────────────────────────────────────────────────────

    async def speak(
        self,
        text: str,
        *,
        voice: Union[VoiceProfile, str, None] = None,
        on_start: Optional[Callable[[], None]] = None,
        on_end: Optional[Callable[[], None]] = None,
        on_error: Optional[Callable[[VoiceError], None]] = None,
    ) -> SpeechOutcome:
        if self._disposed:
            return SpeechOutcome.CANCELLED
        if not text or not text.strip():
            return SpeechOutcome.SKIPPED

        text = truncate_for_speech(text, self._max_speech_chars)
        config = self._config
        profile = get_voice(voice) if isinstance(voice, str) else (voice or config.voice)

        async with self._transition():
            if self._disposed:
                return SpeechOutcome.CANCELLED
            self._player.cancel()
            self._generation += 1
            token = self._generation
            if self._capture is not None:
                self._close_capture()
                self._log.info("voice.capture_discarded", reason="speak")
                self._update(is_listening=False)
            if not self._synthesizer.loaded and not await self._load_tts():
                if token != self._generation:
                    return SpeechOutcome.CANCELLED
                self._report_error(on_error, ModelLoadError("speech synthesis", self._state.error or _MSG_TTS_LOAD))
                return SpeechOutcome.FAILED
            if token != self._generation:
                self._settle_ready()
                return SpeechOutcome.CANCELLED
            self._update(status=VoiceStatus.SPEAKING, is_speaking=True,
                         is_listening=False, error=None)

        try:
            asset = await self._synthesizer.synthesize(text, profile)
        except Exception as e:
            if token != self._generation:
                return SpeechOutcome.CANCELLED
            return self._speech_failed(e, SynthesisError, _MSG_SYNTHESIS, on_error)

        if token != self._generation:
            asset.release()
            self._log.debug("voice.synthesis_discarded", generation=token)
            return SpeechOutcome.CANCELLED

        self._log.info("voice.speaking", voice=profile.id, chars=len(text),
                       duration_s=round(asset.duration_s, 2))
        self._safe_callback(on_start)
        try:
            completed = await self._player.play(asset, speed=config.speed, volume=config.volume)
        except Exception as e:
            if token != self._generation:
                return SpeechOutcome.CANCELLED
            return self._speech_failed(e, PlaybackError, _MSG_PLAYBACK, on_error)
        finally:
            asset.release()

        if not completed or token != self._generation:
            return SpeechOutcome.CANCELLED
        self._update(status=VoiceStatus.READY, is_speaking=False)
        self._safe_callback(on_end)
        return SpeechOutcome.COMPLETED

    def _speech_failed(
        self,
        exc: Exception,
        kind: type[VoiceError],
        message: str,
        on_error: Optional[Callable[[VoiceError], None]],
    ) -> SpeechOutcome:
        self._log.error("voice.speech_failed", error=str(exc), error_type=type(exc).__name__)
        error = exc if isinstance(exc, kind) else kind(message)
        if error is not exc:
            error.__cause__ = exc
        self._update(status=VoiceStatus.ERROR, is_speaking=False, error=message)
        self._report_error(on_error, error)
        return SpeechOutcome.FAILED

    def _report_error(self, on_error: Optional[Callable[[VoiceError], None]], error: VoiceError) -> None:
        if on_error is None:
            return
        try:
            on_error(error)
        except Exception as e:
            self._log.debug("voice.callback_error", error=str(e))

    def _safe_callback(self, callback: Optional[Callable[[], None]]) -> None:
        if callback is None:
            return
        try:
            callback()
        except Exception as e:
            self._log.debug("voice.callback_error", error=str(e))

    def stop_speaking(self) -> None:
        """Cancel playback and any pending synthesis. Idempotent."""
        if self._disposed:
            return
        self._generation += 1
        self._player.cancel()
        if self._state.is_speaking:
            self._update(status=VoiceStatus.READY, is_speaking=False)
            self._log.info("voice.speech_stopped")

    # ── Subscription / config / snapshots ─────────────────────────────────────

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener``; it is called at once with the current state."""
        if self._disposed:
            return _noop
        self._listeners.append(listener)
        self._call_listener(listener, self._state)

        def unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(listener)

        return unsubscribe

    def set_config(self, **changes: Any) -> None:
        """
        Validate and replace the speech preferences (voice, speed, volume).
        A voice may be a VoiceProfile or a catalog id. Applies to the next speak().
        """
        if self._disposed:
            return
        unknown = set(changes) - set(VoiceConfig.model_fields)
        if unknown:
            raise TypeError(f"Unknown voice config field(s): {sorted(unknown)}")
        data = {
            "voice": self._config.voice,
            "speed": self._config.speed,
            "volume": self._config.volume,
        }
        data.update(changes)
        self._config = VoiceConfig(**data)

    def get_config(self) -> VoiceConfig:
        return self._config.model_copy(deep=True)

    def get_state(self) -> VoiceSessionState:
        return self._state

    def reset(self) -> None:
        """Clear the transcript and any error message."""
        if self._disposed:
            return
        changes: dict[str, Any] = {"current_transcript": "", "error": None}
        if self._state.status is VoiceStatus.ERROR:
            loaded = self._state.stt_loaded or self._state.tts_loaded
            changes["status"] = VoiceStatus.READY if loaded else VoiceStatus.IDLE
        self._update(**changes)

    def get_available_voices(self) -> list[VoiceProfile]:
        return list_voices()

    def get_frequency_data(self) -> Optional[np.ndarray]:
        if self._visualizer is None:
            return None
        return self._visualizer.frequency_data()

    def get_waveform_data(self) -> Optional[np.ndarray]:
        if self._visualizer is None:
            return None
        return self._visualizer.waveform_data()

    # ── Teardown ──────────────────────────────────────────────────────────────

    def dispose(self) -> None:
        """Stop everything and end this session's usable lifetime. Idempotent."""
        if self._disposed:
            return
        self._generation += 1
        self._disposed = True

        try:
            self._player.cancel()
        except Exception as e:
            self._log.debug("voice.dispose_player_failed", error=str(e))

        capture = self._close_capture()
        if capture is not None:
            capture.buffer.clear()
        try:
            self._device.release()
        except Exception as e:
            self._log.debug("voice.dispose_device_failed", error=str(e))

        self._recognizer.unload()
        self._synthesizer.unload()
        self._listeners.clear()
        self._state = self._state.evolve(
            status=VoiceStatus.IDLE,
            is_listening=False,
            is_speaking=False,
            is_transcribing=False,
            stt_loaded=False,
            tts_loaded=False,
            current_transcript="",
        )
        self._log.info("voice.disposed")

    @property
    def disposed(self) -> bool:
        return self._disposed


__all__ = ["VoiceSession", "SpeechOutcome", "Listener"]
