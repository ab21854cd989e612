"""
voice/tts.py — Piper speech synthesizer.

Voices are fetched on first use from the Piper voice repository:

    <voices_base_url><model_path>          — ONNX model
    <voices_base_url><model_path>.json     — companion Piper config

and cached on disk. Each profile's PiperVoice is loaded once, in an executor
thread, and kept for the lifetime of the synthesizer.

load() only requires the Piper runtime to be importable. It then runs one
warm-up synthesis with the default voice; a warm-up failure (offline, bad
download) is logged and the synthesizer still reports loaded.
"""

from __future__ import annotations

import asyncio
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import httpx
import numpy as np

from mindscribe.exceptions import ModelLoadError, SynthesisError
from mindscribe.observability.logger import get_logger
from mindscribe.voice.catalog import VoiceProfile
from mindscribe.voice.engine import LazyLoader

log = get_logger(__name__)

_ENGINE = "speech synthesis"
_DOWNLOAD_CHUNK = 1 << 16


@dataclass(eq=False)
class SynthesisAsset:
    """
    One synthesized utterance, held in memory until release().

    At most one asset is current per session; it is released as soon as it
    finishes playing or is superseded.
    """
    audio: Optional[np.ndarray]
    sample_rate: int
    text: str
    voice: VoiceProfile

    @property
    def released(self) -> bool:
        return self.audio is None

    @property
    def duration_s(self) -> float:
        if self.audio is None or not self.sample_rate:
            return 0.0
        return len(self.audio) / self.sample_rate

    def release(self) -> None:
        self.audio = None


class PiperSynthesizer:
    """Piper (ONNX) synthesizer with an on-disk voice cache."""

    def __init__(
        self,
        default_voice: VoiceProfile,
        voices_base_url: str = "https://huggingface.co/rhasspy/piper-voices/resolve/main/",
        cache_dir: str | Path = "./data/voices",
        warmup_text: str = "test",
        request_timeout_s: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._default_voice = default_voice
        self._base_url = voices_base_url if voices_base_url.endswith("/") else voices_base_url + "/"
        self._cache_dir = Path(cache_dir).expanduser()
        self._warmup_text = warmup_text
        self._timeout = request_timeout_s
        self._transport = transport

        self._voices: dict[str, object] = {}                # profile id → PiperVoice
        self._fetch_locks: dict[str, asyncio.Lock] = {}
        self._loader = LazyLoader(_ENGINE)

    @property
    def loaded(self) -> bool:
        return self._loader.loaded

    # ── Loading ───────────────────────────────────────────────────────────────

    async def load(self) -> None:
        await self._loader.ensure_loaded(self._load)

    async def _load(self) -> None:
        try:
            from piper import PiperVoice  # noqa: F401
        except ImportError as e:
            log.error("voice.piper_not_installed", hint="pip install piper-tts")
            raise ModelLoadError(_ENGINE, "Failed to load speech synthesis model") from e

        t0 = time.monotonic()
        try:
            asset = await self.synthesize(self._warmup_text, self._default_voice)
            asset.release()
            log.info(
                "voice.tts_loaded",
                voice=self._default_voice.id,
                duration_ms=round((time.monotonic() - t0) * 1000),
            )
        except SynthesisError as e:
            log.warning("voice.tts_warmup_failed", voice=self._default_voice.id, error=str(e))

    def unload(self) -> None:
        self._voices.clear()
        self._loader.reset()

    # ── Voice files ───────────────────────────────────────────────────────────

    def model_files(self, profile: VoiceProfile) -> tuple[Path, Path]:
        """Local (model, config) paths for ``profile`` inside the cache."""
        model = self._cache_dir / profile.model_path
        return model, model.with_name(model.name + ".json")

    async def ensure_voice_files(self, profile: VoiceProfile) -> tuple[Path, Path]:
        """Download the model and its JSON config once; later calls hit the cache."""
        lock = self._fetch_locks.setdefault(profile.id, asyncio.Lock())
        async with lock:
            model_path, config_path = self.model_files(profile)
            missing = [
                (remote, local)
                for remote, local in (
                    (profile.model_path, model_path),
                    (profile.config_path, config_path),
                )
                if not local.exists()
            ]
            if missing:
                async with httpx.AsyncClient(
                    timeout=self._timeout,
                    follow_redirects=True,
                    transport=self._transport,
                ) as client:
                    for remote, local in missing:
                        await self._download(client, self._base_url + remote, local)
            return model_path, config_path

    async def _download(self, client: httpx.AsyncClient, url: str, dest: Path) -> None:
        dest.parent.mkdir(parents=True, exist_ok=True)
        tmp = dest.with_name(dest.name + ".part")
        t0 = time.monotonic()
        log.info("voice.voice_download_started", url=url)
        try:
            async with client.stream("GET", url) as response:
                response.raise_for_status()
                with tmp.open("wb") as f:
                    async for chunk in response.aiter_bytes(_DOWNLOAD_CHUNK):
                        f.write(chunk)
            os.replace(tmp, dest)
        except BaseException:
            tmp.unlink(missing_ok=True)
            raise
        log.info(
            "voice.voice_downloaded",
            file=dest.name,
            bytes=dest.stat().st_size,
            duration_ms=round((time.monotonic() - t0) * 1000),
        )

    async def _voice_for(self, profile: VoiceProfile):
        voice = self._voices.get(profile.id)
        if voice is not None:
            return voice
        model_path, config_path = await self.ensure_voice_files(profile)
        loop = asyncio.get_running_loop()
        voice = await loop.run_in_executor(None, self._load_piper, model_path, config_path)
        self._voices[profile.id] = voice
        log.info("voice.piper_voice_loaded", voice=profile.id)
        return voice

    @staticmethod
    def _load_piper(model_path: Path, config_path: Path):
        """Blocking — runs in executor."""
        from piper import PiperVoice
        return PiperVoice.load(str(model_path), config_path=str(config_path))

    # ── Synthesis ─────────────────────────────────────────────────────────────

    async def synthesize(self, text: str, voice: VoiceProfile) -> SynthesisAsset:
        if not text or not text.strip():
            raise SynthesisError("Nothing to synthesize")
        loop = asyncio.get_running_loop()
        t0 = time.monotonic()
        try:
            piper_voice = await self._voice_for(voice)
            audio, sample_rate = await loop.run_in_executor(
                None, self._run_piper, piper_voice, text
            )
        except Exception as e:
            log.error(
                "voice.synthesis_failed",
                voice=voice.id,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise SynthesisError("Speech generation failed") from e
        log.debug(
            "voice.synthesized",
            voice=voice.id,
            chars=len(text),
            tts_ms=round((time.monotonic() - t0) * 1000),
        )
        return SynthesisAsset(audio=audio, sample_rate=sample_rate, text=text, voice=voice)

    @staticmethod
    def _run_piper(piper_voice, text: str) -> tuple[np.ndarray, int]:
        """
        Blocking Piper synthesis — runs in executor.
        Returns (float32 mono array, sample_rate).
        """
        chunks = [chunk.audio_float_array for chunk in piper_voice.synthesize(text)]
        sample_rate = int(piper_voice.config.sample_rate)
        if not chunks:
            return np.zeros(0, dtype=np.float32), sample_rate
        audio = np.concatenate(chunks).astype(np.float32, copy=False)
        return audio, sample_rate


__all__ = ["SynthesisAsset", "PiperSynthesizer"]
