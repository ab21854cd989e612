"""
voice/state.py — Voice session status and immutable state snapshots.

The session controller is the only writer: every change builds a new
VoiceSessionState via ``dataclasses.replace`` and publishes it to
subscribers, so listeners can hold on to a snapshot safely.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional


class VoiceStatus(str, Enum):
    IDLE = "idle"
    LOADING_STT = "loading-stt"
    LOADING_TTS = "loading-tts"
    READY = "ready"
    LISTENING = "listening"
    TRANSCRIBING = "transcribing"
    SPEAKING = "speaking"
    ERROR = "error"


@dataclass(frozen=True)
class VoiceSessionState:
    status: VoiceStatus = VoiceStatus.IDLE
    is_listening: bool = False
    is_speaking: bool = False
    is_transcribing: bool = False
    stt_loaded: bool = False
    tts_loaded: bool = False
    load_progress: int = 0
    error: Optional[str] = None
    current_transcript: str = ""

    def evolve(self, **changes) -> "VoiceSessionState":
        """Return a copy with ``changes`` applied."""
        return replace(self, **changes)

    @property
    def models_loaded(self) -> bool:
        return self.stt_loaded and self.tts_loaded


__all__ = ["VoiceStatus", "VoiceSessionState"]
