"""
voice/engine.py — Capability protocols for the voice pipeline + lazy loading.

The session controller talks to hardware and models only through these
protocols, so tests can substitute fakes:

    AudioCaptureDevice  — microphone gateway (voice/capture.py)
    SpeechRecognizer    — STT engine (voice/stt.py)
    SpeechSynthesizer   — TTS engine (voice/tts.py)
    AudioPlayer         — output device (voice/playback.py)

LazyLoader implements the tri-state (unloaded → loading → loaded) model
lifecycle shared by both engines: concurrent callers await one in-flight
load, and a failed load drops back to unloaded so the next call retries.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import (
    TYPE_CHECKING,
    Awaitable,
    Callable,
    Optional,
    Protocol,
    runtime_checkable,
)

import numpy as np

from mindscribe.observability.logger import get_logger

if TYPE_CHECKING:
    from mindscribe.voice.catalog import VoiceProfile
    from mindscribe.voice.tts import SynthesisAsset

log = get_logger(__name__)

ChunkCallback = Callable[[bytes], None]
ProgressCallback = Callable[[int], None]


# ─────────────────────────────────────────────────────────────────────────────
# Protocols
# ─────────────────────────────────────────────────────────────────────────────

@runtime_checkable
class AudioCaptureDevice(Protocol):
    """Acquires the microphone and pushes raw int16 PCM chunks to on_chunk."""

    @property
    def is_active(self) -> bool: ...

    async def acquire(self, on_chunk: ChunkCallback) -> int:
        """Open the input stream. Returns the sample rate actually in use."""
        ...

    def release(self) -> None: ...


@runtime_checkable
class SpeechRecognizer(Protocol):
    @property
    def loaded(self) -> bool: ...

    async def load(self, progress: Optional[ProgressCallback] = None) -> None: ...

    async def transcribe(self, samples: np.ndarray) -> str: ...

    def unload(self) -> None: ...


@runtime_checkable
class SpeechSynthesizer(Protocol):
    @property
    def loaded(self) -> bool: ...

    async def load(self) -> None: ...

    async def synthesize(self, text: str, voice: "VoiceProfile") -> "SynthesisAsset": ...

    def unload(self) -> None: ...


@runtime_checkable
class AudioPlayer(Protocol):
    @property
    def is_playing(self) -> bool: ...

    async def play(self, asset: "SynthesisAsset", speed: float = 1.0, volume: float = 1.0) -> bool:
        """Play ``asset``. True when it ran to the end, False when cancelled."""
        ...

    def cancel(self) -> None: ...


# ─────────────────────────────────────────────────────────────────────────────
# Lazy loading
# ─────────────────────────────────────────────────────────────────────────────

class LoadState(str, Enum):
    UNLOADED = "unloaded"
    LOADING = "loading"
    LOADED = "loaded"


class LazyLoader:
    """
    Runs a load coroutine at most once at a time.

    ``ensure_loaded(factory)`` starts ``factory()`` if nothing is loaded or in
    flight; every other caller awaits the same task. The task is shielded, so
    cancelling one waiter never aborts a load other callers depend on.
    """

    def __init__(self, name: str) -> None:
        self._name = name
        self._state = LoadState.UNLOADED
        self._task: Optional[asyncio.Task] = None

    @property
    def state(self) -> LoadState:
        return self._state

    @property
    def loaded(self) -> bool:
        return self._state is LoadState.LOADED

    async def ensure_loaded(self, factory: Callable[[], Awaitable[None]]) -> None:
        if self._state is LoadState.LOADED:
            return
        if self._task is None:
            self._state = LoadState.LOADING
            self._task = asyncio.ensure_future(self._run(factory))
        await asyncio.shield(self._task)

    async def _run(self, factory: Callable[[], Awaitable[None]]) -> None:
        me = asyncio.current_task()
        try:
            await factory()
        except BaseException:
            if self._task is me:
                self._state = LoadState.UNLOADED
            log.debug("voice.load_reset", engine=self._name)
            raise
        else:
            if self._task is me:
                self._state = LoadState.LOADED
        finally:
            if self._task is me:
                self._task = None

    def reset(self) -> None:
        """Forget any loaded model. An in-flight load is cancelled."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        self._state = LoadState.UNLOADED


__all__ = [
    "AudioCaptureDevice",
    "SpeechRecognizer",
    "SpeechSynthesizer",
    "AudioPlayer",
    "ChunkCallback",
    "ProgressCallback",
    "LoadState",
    "LazyLoader",
]
