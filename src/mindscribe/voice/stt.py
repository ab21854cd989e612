"""
voice/stt.py — faster-whisper speech recognizer.

The model is fetched and instantiated lazily on first use, off the event loop
(executor thread). Loading is tri-state via LazyLoader so concurrent callers
share one download. While the download runs the cache directory is polled
so progress climbs from 0 toward 50 before the model is instantiated.

Long utterances are transcribed in overlapping windows:

    window = chunk_length_s (30 s), step = chunk_length_s - stride_length_s (25 s)

Word timestamps decide which window owns each word: the overlap between two
windows is split down the middle, so every spoken word is emitted once.
"""

from __future__ import annotations

import asyncio
import os
import time
from pathlib import Path
from typing import Optional

import numpy as np

from mindscribe.exceptions import ModelLoadError, TranscriptionError
from mindscribe.observability.logger import get_logger
from mindscribe.voice.engine import LazyLoader, ProgressCallback
from mindscribe.voice.resample import TARGET_SAMPLE_RATE

log = get_logger(__name__)

_ENGINE = "speech recognition"

# Approximate CTranslate2 download size per model family, in bytes.
_APPROX_MODEL_BYTES = {
    "tiny": 75_000_000,
    "base": 145_000_000,
    "small": 484_000_000,
    "medium": 1_530_000_000,
    "large": 3_090_000_000,
}
_DEFAULT_MODEL_BYTES = 500_000_000


def _expected_bytes(model_name: str) -> int:
    name = model_name.rsplit("/", 1)[-1]
    return next(
        (size for family, size in _APPROX_MODEL_BYTES.items() if family in name),
        _DEFAULT_MODEL_BYTES,
    )


def _dir_size(path: Path) -> int:
    if not path.exists():
        return 0
    total = 0
    for f in path.rglob("*"):
        try:
            if f.is_file():
                total += f.stat().st_size
        except OSError:
            continue
    return total


class WhisperRecognizer:
    """faster-whisper (CTranslate2) recognizer, int8-quantized by default."""

    def __init__(
        self,
        model: str = "tiny.en",
        device: str = "cpu",
        compute_type: str = "int8",
        language: Optional[str] = "en",
        beam_size: int = 1,
        chunk_length_s: float = 30.0,
        stride_length_s: float = 5.0,
        download_root: Optional[str] = None,
        progress_interval_s: float = 0.5,
    ) -> None:
        self._model_name = model
        self._device = device
        self._compute_type = compute_type
        self._language = language
        self._beam_size = beam_size
        self._chunk_length_s = chunk_length_s
        self._stride_length_s = stride_length_s
        self._download_root = download_root
        self._progress_interval_s = progress_interval_s

        self._model = None   # faster_whisper.WhisperModel
        self._loader = LazyLoader(_ENGINE)

    @property
    def loaded(self) -> bool:
        return self._loader.loaded and self._model is not None

    # ── Loading ───────────────────────────────────────────────────────────────

    async def load(self, progress: Optional[ProgressCallback] = None) -> None:
        await self._loader.ensure_loaded(lambda: self._load(progress))

    async def _load(self, progress: Optional[ProgressCallback]) -> None:
        loop = asyncio.get_running_loop()
        report = progress or (lambda _pct: None)

        log.info("voice.loading_stt", model=self._model_name)
        t0 = time.monotonic()
        report(0)
        try:
            model_path = await self._download_with_progress(loop, report)
            report(50)
            self._model = await loop.run_in_executor(None, self._instantiate, model_path)
        except ImportError as e:
            log.error("voice.stt_not_installed", hint="pip install faster-whisper")
            raise ModelLoadError(
                _ENGINE, "Failed to load speech recognition model"
            ) from e
        except Exception as e:
            log.error(
                "voice.stt_load_failed",
                model=self._model_name,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise ModelLoadError(
                _ENGINE, "Failed to load speech recognition model"
            ) from e
        report(100)
        log.info(
            "voice.stt_loaded",
            model=self._model_name,
            compute_type=self._compute_type,
            duration_ms=round((time.monotonic() - t0) * 1000),
        )

    async def _download_with_progress(self, loop, report: ProgressCallback) -> str:
        """
        Run the download in an executor and poll the cache directory while it
        runs. Growth against the approximate model size maps onto 0..49; 50 is
        reported by the caller once the files are all present.
        """
        cache = self._cache_dir()
        expected = _expected_bytes(self._model_name)
        baseline = await loop.run_in_executor(None, _dir_size, cache)
        download = loop.run_in_executor(None, self._download)
        last = 0
        while True:
            done, _ = await asyncio.wait({download}, timeout=self._progress_interval_s)
            if done:
                return download.result()
            grown = await loop.run_in_executor(None, _dir_size, cache) - baseline
            pct = min(49, int(50 * grown / expected))
            if pct > last:
                last = pct
                log.debug("voice.stt_download_progress", downloaded_bytes=grown, pct=pct)
                report(pct)

    def _cache_dir(self) -> Path:
        if self._download_root:
            return Path(self._download_root)
        if os.environ.get("HF_HUB_CACHE"):
            return Path(os.environ["HF_HUB_CACHE"])
        if os.environ.get("HF_HOME"):
            return Path(os.environ["HF_HOME"]) / "hub"
        return Path.home() / ".cache" / "huggingface" / "hub"

    def _download(self) -> str:
        """Blocking — runs in executor. Returns the local model directory."""
        from faster_whisper import download_model
        return download_model(self._model_name, output_dir=self._download_root)

    def _instantiate(self, model_path: str):
        """Blocking — runs in executor."""
        from faster_whisper import WhisperModel
        return WhisperModel(
            model_path,
            device=self._device,
            compute_type=self._compute_type,
        )

    def unload(self) -> None:
        self._model = None
        self._loader.reset()

    # ── Transcription ─────────────────────────────────────────────────────────

    async def transcribe(self, samples: np.ndarray) -> str:
        """
        Transcribe mono float32 16 kHz samples.
        Runs in an executor thread so it never blocks the event loop.
        """
        if self._model is None:
            raise TranscriptionError("Speech recognition model not loaded")
        loop = asyncio.get_running_loop()
        t0 = time.monotonic()
        try:
            text = await loop.run_in_executor(None, self._run_whisper, samples)
        except TranscriptionError:
            raise
        except Exception as e:
            log.error("voice.transcription_error", error=str(e), error_type=type(e).__name__)
            raise TranscriptionError("Transcription failed") from e
        text = text.strip()
        log.info(
            "voice.transcribed",
            chars=len(text),
            audio_s=round(len(samples) / TARGET_SAMPLE_RATE, 2),
            stt_ms=round((time.monotonic() - t0) * 1000),
        )
        return text

    def _run_whisper(self, samples: np.ndarray) -> str:
        """Blocking Whisper transcription — runs in executor."""
        audio = np.asarray(samples, dtype=np.float32)
        if audio.size == 0:
            return ""
        window = int(self._chunk_length_s * TARGET_SAMPLE_RATE)
        if audio.size <= window:
            segments, _info = self._model.transcribe(
                audio,
                language=self._language,
                beam_size=self._beam_size,
                vad_filter=False,
            )
            return " ".join(seg.text.strip() for seg in segments).strip()
        return self._run_windowed(audio, window)

    def _run_windowed(self, audio: np.ndarray, window: int) -> str:
        words: list[str] = []
        for start, own_start, own_end in self.plan_windows(audio.size, window):
            segments, _info = self._model.transcribe(
                audio[start:start + window],
                language=self._language,
                beam_size=self._beam_size,
                vad_filter=False,
                word_timestamps=True,
            )
            for seg in segments:
                for word in seg.words or ():
                    mid = start + int((word.start + word.end) / 2 * TARGET_SAMPLE_RATE)
                    if own_start <= mid < own_end:
                        words.append(word.word)
        return "".join(words).strip()

    def plan_windows(self, n_samples: int, window: int) -> list[tuple[int, int, int]]:
        """
        Split ``n_samples`` into (start, own_start, own_end) windows.

        Consecutive windows overlap by the stride; each owns the audio up to
        the middle of its overlaps so the owned spans tile [0, n_samples).
        """
        stride = int(self._stride_length_s * TARGET_SAMPLE_RATE)
        step = max(1, window - stride)
        half = stride // 2

        plan: list[tuple[int, int, int]] = []
        start = 0
        while True:
            end = min(start + window, n_samples)
            last = end >= n_samples
            own_start = 0 if start == 0 else start + half
            own_end = n_samples if last else end - (stride - half)
            plan.append((start, own_start, own_end))
            if last:
                return plan
            start += step
