"""
exceptions.py — MindScribe Unified Error Hierarchy

All MindScribe-specific exceptions live here. Every layer of the voice
pipeline raises typed subclasses of MindScribeError — never bare Exception.

Import from here, not from individual modules:
    from mindscribe.exceptions import ModelLoadError, DeviceAccessError

Hierarchy:
    MindScribeError
    └── VoiceError
        ├── ModelLoadError
        ├── DeviceAccessError
        │   └── DeviceBusyError
        ├── TranscriptionError
        │   └── DecodeError
        ├── SynthesisError
        └── PlaybackError

The session controller catches these at its boundary and turns them into
state updates; they only escape from the engine adapters themselves.
"""

from __future__ import annotations


# ─────────────────────────────────────────────────────────────────────────────
# Root
# ─────────────────────────────────────────────────────────────────────────────

class MindScribeError(Exception):
    """Base class for all MindScribe exceptions."""


# ─────────────────────────────────────────────────────────────────────────────
# Voice pipeline
# ─────────────────────────────────────────────────────────────────────────────

class VoiceError(MindScribeError):
    """Base for voice pipeline errors."""


class ModelLoadError(VoiceError):
    """An STT or TTS model could not be initialised."""

    def __init__(self, engine: str, message: str = "") -> None:
        self.engine = engine
        super().__init__(message or f"Failed to load {engine} model")


class DeviceAccessError(VoiceError):
    """Microphone permission denied or no usable input device."""


class DeviceBusyError(DeviceAccessError):
    """A capture stream is already open on the gateway."""


class TranscriptionError(VoiceError):
    """Decoding or inference failed for a captured utterance."""


class DecodeError(TranscriptionError):
    """The captured container could not be decoded into samples."""


class SynthesisError(VoiceError):
    """TTS model fetch or synthesis failed."""


class PlaybackError(VoiceError):
    """Audio output failed while playing a synthesized asset."""


__all__ = [
    "MindScribeError",
    "VoiceError",
    "ModelLoadError",
    "DeviceAccessError",
    "DeviceBusyError",
    "TranscriptionError",
    "DecodeError",
    "SynthesisError",
    "PlaybackError",
]
