"""
voice/catalog.py — Static Piper voice catalog and the VoiceConfig preference.

The catalog is fixed at import time and never mutated. VoiceConfig accepts a
catalog id wherever a VoiceProfile is expected:

    VoiceConfig(voice="en_GB-alan-medium", speed=0.9)
"""

from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class VoiceProfile(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    language: str
    gender: Literal["female", "male"]
    size: str
    quality: str
    category: Literal["therapeutic", "natural"]
    icon: str
    description: str
    model_path: str
    recommended: bool = False

    @property
    def config_path(self) -> str:
        """Remote path of the companion Piper JSON config."""
        return self.model_path + ".json"


VOICES: tuple[VoiceProfile, ...] = (
    VoiceProfile(
        id="en_US-amy-medium",
        name="Amy",
        language="en-US",
        gender="female",
        size="30MB",
        quality="high",
        category="therapeutic",
        icon="🌸",
        description="Soft, gentle whisper-like voice - Perfect for ASMR therapy",
        model_path="en/en_US/amy/medium/en_US-amy-medium.onnx",
        recommended=True,
    ),
    VoiceProfile(
        id="en_GB-jenny_dioco-medium",
        name="Jenny",
        language="en-GB",
        gender="female",
        size="28MB",
        quality="high",
        category="therapeutic",
        icon="🌺",
        description="Calm, soothing British voice - Relaxing and gentle",
        model_path="en/en_GB/jenny_dioco/medium/en_GB-jenny_dioco-medium.onnx",
        recommended=True,
    ),
    VoiceProfile(
        id="en_US-lessac-medium",
        name="Lessac",
        language="en-US",
        gender="female",
        size="30MB",
        quality="high",
        category="natural",
        icon="💜",
        description="Natural, empathetic tone - Warm and conversational",
        model_path="en/en_US/lessac/medium/en_US-lessac-medium.onnx",
        recommended=False,
    ),
    VoiceProfile(
        id="en_US-joe-medium",
        name="Joe",
        language="en-US",
        gender="male",
        size="28MB",
        quality="high",
        category="therapeutic",
        icon="🌿",
        description="Deep, calming voice - Soothing baritone for relaxation",
        model_path="en/en_US/joe/medium/en_US-joe-medium.onnx",
        recommended=True,
    ),
    VoiceProfile(
        id="en_GB-alan-medium",
        name="Alan",
        language="en-GB",
        gender="male",
        size="28MB",
        quality="high",
        category="therapeutic",
        icon="🍃",
        description="Gentle British male - Soft-spoken and reassuring",
        model_path="en/en_GB/alan/medium/en_GB-alan-medium.onnx",
        recommended=True,
    ),
)

DEFAULT_VOICE_ID = "en_US-amy-medium"

_BY_ID = {v.id: v for v in VOICES}


def find_voice(voice_id: str) -> Optional[VoiceProfile]:
    return _BY_ID.get(voice_id)


def get_voice(voice_id: str) -> VoiceProfile:
    """Like find_voice() but raises KeyError for unknown ids."""
    try:
        return _BY_ID[voice_id]
    except KeyError:
        raise KeyError(
            f"Unknown voice '{voice_id}'. Known voices: {sorted(_BY_ID)}"
        ) from None


def list_voices(*, recommended_only: bool = False) -> list[VoiceProfile]:
    if recommended_only:
        return [v for v in VOICES if v.recommended]
    return list(VOICES)


class VoiceConfig(BaseModel):
    """Runtime speech preferences owned by the session controller."""

    model_config = ConfigDict(validate_assignment=True)

    voice: VoiceProfile = Field(default_factory=lambda: _BY_ID[DEFAULT_VOICE_ID])
    speed: float = Field(default=1.0, ge=0.5, le=2.0)
    volume: float = Field(default=0.85, ge=0.0, le=1.0)

    @field_validator("voice", mode="before")
    @classmethod
    def _resolve_voice_id(cls, v: Any) -> Any:
        if isinstance(v, str):
            profile = find_voice(v)
            if profile is None:
                raise ValueError(f"unknown voice id '{v}'")
            return profile
        return v


__all__ = [
    "VoiceProfile",
    "VoiceConfig",
    "VOICES",
    "DEFAULT_VOICE_ID",
    "find_voice",
    "get_voice",
    "list_voices",
]
