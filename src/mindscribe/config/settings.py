"""
config/settings.py — MindScribe Voice Runtime Settings

Merges config.yaml (defaults/structure) with environment variables and .env.
Pydantic-powered — all fields are validated and typed.

  - Field validators reject out-of-range values at parse time
    (speed/volume, sample rates, FFT size, log level).
  - validate_all() performs cross-field startup validation and raises
    ConfigError with a clear, human-readable message listing every problem.
  - load_settings() respects the MINDSCRIBE_CONFIG env var as a fallback
    when no explicit config_path argument is given.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)


# ─────────────────────────────────────────────────────────────────────────────
# Errors
# ─────────────────────────────────────────────────────────────────────────────

class ConfigError(Exception):
    """Raised by validate_all() when one or more config problems are found."""


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
_VALID_COMPUTE_TYPES = {"int8", "int8_float16", "int16", "float16", "float32", "default"}
_VALID_CONTAINERS = {"FLAC", "WAV", "OGG"}


# ─────────────────────────────────────────────────────────────────────────────
# Sub-models
# ─────────────────────────────────────────────────────────────────────────────

class STTConfig(BaseModel):
    """faster-whisper recognizer settings."""
    model: str = "tiny.en"
    device: str = "cpu"
    compute_type: str = "int8"
    language: str = "en"
    beam_size: int = 1
    chunk_length_s: float = 30.0
    stride_length_s: float = 5.0
    download_root: Optional[str] = None

    @field_validator("compute_type")
    @classmethod
    def _valid_compute_type(cls, v: str) -> str:
        if v not in _VALID_COMPUTE_TYPES:
            raise ValueError(
                f"stt.compute_type must be one of {sorted(_VALID_COMPUTE_TYPES)}, "
                f"got '{v}'"
            )
        return v

    @field_validator("beam_size")
    @classmethod
    def _positive_beam(cls, v: int) -> int:
        if v < 1:
            raise ValueError("stt.beam_size must be >= 1")
        return v

    @field_validator("chunk_length_s")
    @classmethod
    def _positive_chunk(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("stt.chunk_length_s must be > 0")
        return v

    @field_validator("stride_length_s")
    @classmethod
    def _non_negative_stride(cls, v: float) -> float:
        if v < 0:
            raise ValueError("stt.stride_length_s must be >= 0")
        return v


class TTSConfig(BaseModel):
    """Piper synthesizer settings."""
    voices_base_url: str = "https://huggingface.co/rhasspy/piper-voices/resolve/main/"
    cache_dir: str = "./data/voices"
    default_voice: str = "en_US-amy-medium"
    warmup_text: str = "test"
    max_chars: int = 500
    request_timeout_s: float = 120.0

    @field_validator("voices_base_url")
    @classmethod
    def _trailing_slash(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("tts.voices_base_url must be an http(s) URL")
        return v if v.endswith("/") else v + "/"

    @field_validator("max_chars")
    @classmethod
    def _positive_chars(cls, v: int) -> int:
        if v < 1:
            raise ValueError("tts.max_chars must be >= 1")
        return v

    @field_validator("request_timeout_s")
    @classmethod
    def _positive_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("tts.request_timeout_s must be > 0")
        return v


class CaptureConfig(BaseModel):
    """Microphone capture settings."""
    sample_rate: int = 16000
    channels: int = 1
    chunk_ms: int = 100
    min_capture_bytes: int = 1000
    container: str = "FLAC"
    device: Optional[str] = None
    echo_cancellation: bool = True
    noise_suppression: bool = True

    @field_validator("sample_rate")
    @classmethod
    def _valid_rate(cls, v: int) -> int:
        if not (8000 <= v <= 192000):
            raise ValueError("capture.sample_rate must be between 8000 and 192000")
        return v

    @field_validator("channels")
    @classmethod
    def _valid_channels(cls, v: int) -> int:
        if v not in (1, 2):
            raise ValueError("capture.channels must be 1 or 2")
        return v

    @field_validator("chunk_ms")
    @classmethod
    def _valid_chunk(cls, v: int) -> int:
        if not (10 <= v <= 1000):
            raise ValueError("capture.chunk_ms must be between 10 and 1000")
        return v

    @field_validator("min_capture_bytes")
    @classmethod
    def _non_negative_bytes(cls, v: int) -> int:
        if v < 0:
            raise ValueError("capture.min_capture_bytes must be >= 0")
        return v

    @field_validator("container")
    @classmethod
    def _valid_container(cls, v: str) -> str:
        upper = v.upper()
        if upper not in _VALID_CONTAINERS:
            raise ValueError(
                f"capture.container must be one of {sorted(_VALID_CONTAINERS)}, "
                f"got '{v}'"
            )
        return upper


class PlaybackConfig(BaseModel):
    """Output device and default speech preferences."""
    device: Optional[str] = None
    speed: float = 1.0
    volume: float = 0.85

    @field_validator("speed")
    @classmethod
    def _valid_speed(cls, v: float) -> float:
        if not (0.5 <= v <= 2.0):
            raise ValueError("playback.speed must be between 0.5 and 2.0")
        return v

    @field_validator("volume")
    @classmethod
    def _valid_volume(cls, v: float) -> float:
        if not (0.0 <= v <= 1.0):
            raise ValueError("playback.volume must be between 0.0 and 1.0")
        return v


class VisualizationConfig(BaseModel):
    fft_size: int = 256
    smoothing: float = 0.8
    min_db: float = -100.0
    max_db: float = -30.0

    @field_validator("fft_size")
    @classmethod
    def _power_of_two(cls, v: int) -> int:
        if v < 32 or v > 32768 or v & (v - 1):
            raise ValueError("visualization.fft_size must be a power of two in [32, 32768]")
        return v

    @field_validator("smoothing")
    @classmethod
    def _valid_smoothing(cls, v: float) -> float:
        if not (0.0 <= v < 1.0):
            raise ValueError("visualization.smoothing must be in [0.0, 1.0)")
        return v


class LoggingConfig(BaseModel):
    level: str = "INFO"
    log_dir: str = "./data/logs"
    max_file_size_mb: int = 20
    backup_count: int = 5
    console_output: bool = False
    json_format: bool = True

    @field_validator("level")
    @classmethod
    def _valid_log_level(cls, v: str) -> str:
        upper = v.upper()
        if upper not in _VALID_LOG_LEVELS:
            raise ValueError(
                f"logging.level '{v}' is not valid. "
                f"Must be one of: {sorted(_VALID_LOG_LEVELS)}"
            )
        return upper


# ─────────────────────────────────────────────────────────────────────────────
# Root Settings
# ─────────────────────────────────────────────────────────────────────────────

class Settings(BaseSettings):
    """
    MindScribe voice runtime settings.

    Priority (highest to lowest):
      1. Environment variables (STT__MODEL=small.en, PLAYBACK__VOLUME=0.5, ...)
      2. .env file
      3. config.yaml
      4. Field defaults
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )

    stt: STTConfig = Field(default_factory=STTConfig)
    tts: TTSConfig = Field(default_factory=TTSConfig)
    capture: CaptureConfig = Field(default_factory=CaptureConfig)
    playback: PlaybackConfig = Field(default_factory=PlaybackConfig)
    visualization: VisualizationConfig = Field(default_factory=VisualizationConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # YAML sections arrive as init kwargs; env wins over them.
        return env_settings, dotenv_settings, init_settings, file_secret_settings

    @field_validator("stt", mode="before")
    @classmethod
    def _coerce_stt(cls, v: Any) -> Any:
        return STTConfig(**v) if isinstance(v, dict) else v

    @field_validator("tts", mode="before")
    @classmethod
    def _coerce_tts(cls, v: Any) -> Any:
        return TTSConfig(**v) if isinstance(v, dict) else v

    @field_validator("capture", mode="before")
    @classmethod
    def _coerce_capture(cls, v: Any) -> Any:
        return CaptureConfig(**v) if isinstance(v, dict) else v

    @field_validator("playback", mode="before")
    @classmethod
    def _coerce_playback(cls, v: Any) -> Any:
        return PlaybackConfig(**v) if isinstance(v, dict) else v

    @field_validator("visualization", mode="before")
    @classmethod
    def _coerce_visualization(cls, v: Any) -> Any:
        return VisualizationConfig(**v) if isinstance(v, dict) else v

    @field_validator("logging", mode="before")
    @classmethod
    def _coerce_logging(cls, v: Any) -> Any:
        return LoggingConfig(**v) if isinstance(v, dict) else v

    # -- Convenience properties ----------------------------------------------

    @property
    def log_level(self) -> str:
        return self.logging.level.upper()

    @property
    def log_dir(self) -> Path:
        return Path(self.logging.log_dir)

    @property
    def voice_cache_dir(self) -> Path:
        return Path(self.tts.cache_dir).expanduser()

    def validate_all(self) -> None:
        """
        Full startup validation. Raises ConfigError listing every problem found.

        Called once at startup in main.py bootstrap(). Pydantic field
        validators catch type/value errors at parse time; this method catches
        cross-field problems they can't see.
        """
        from mindscribe.voice.catalog import find_voice

        errors: list[str] = []

        # ── Default voice must exist in the catalog ──────────────────────────
        if find_voice(self.tts.default_voice) is None:
            errors.append(
                f"tts.default_voice '{self.tts.default_voice}' is not in the "
                f"voice catalog. Run `mindscribe-voice voices` to list ids."
            )

        # ── STT stride must leave each window some unique audio ──────────────
        if self.stt.stride_length_s * 2 >= self.stt.chunk_length_s:
            errors.append(
                f"stt.stride_length_s ({self.stt.stride_length_s}) must be less "
                f"than half of stt.chunk_length_s ({self.stt.chunk_length_s})."
            )

        # ── Visualizer dB range ──────────────────────────────────────────────
        if self.visualization.min_db >= self.visualization.max_db:
            errors.append(
                f"visualization.min_db ({self.visualization.min_db}) must be "
                f"below visualization.max_db ({self.visualization.max_db})."
            )

        # ── Report all errors together ───────────────────────────────────────
        if errors:
            numbered = "\n".join(f"  {i+1}. {e}" for i, e in enumerate(errors))
            raise ConfigError(
                f"\n\nMindScribe voice startup failed — {len(errors)} "
                f"configuration problem(s) found:\n\n{numbered}\n\n"
                f"Fix the issues above in config/config.yaml or your .env file "
                f"and restart.\n"
            )


# ─────────────────────────────────────────────────────────────────────────────
# Loader
# ─────────────────────────────────────────────────────────────────────────────
_KNOWN_SECTIONS = {"stt", "tts", "capture", "playback", "visualization", "logging"}


def _load_yaml(path: Path) -> dict:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _resolve_config_path(config_path: str | Path | None) -> Path:
    """
    Resolve the config file path with this priority:
      1. Explicit config_path argument (from --config CLI flag)
      2. MINDSCRIBE_CONFIG environment variable
      3. Default: config/config.yaml
    """
    if config_path is not None:
        return Path(config_path)
    env_path = os.environ.get("MINDSCRIBE_CONFIG")
    if env_path:
        return Path(env_path)
    return Path("config/config.yaml")


def load_settings(config_path: str | Path | None = None) -> Settings:
    """
    Load settings by merging config.yaml with environment variables.

    Config path resolution order:
      1. config_path argument  (--config CLI flag)
      2. MINDSCRIBE_CONFIG env var
      3. config/config.yaml   (default)
    """
    resolved_path = _resolve_config_path(config_path)
    yaml_data = _load_yaml(resolved_path)

    init_kwargs = {k: v for k, v in yaml_data.items() if k in _KNOWN_SECTIONS}
    return Settings(**init_kwargs)

