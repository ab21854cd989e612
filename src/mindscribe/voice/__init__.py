"""
mindscribe.voice — offline voice pipeline.

    from mindscribe.voice import VoiceSession, SpeechOutcome
"""

from mindscribe.voice.catalog import VOICES, VoiceConfig, VoiceProfile
from mindscribe.voice.session import SpeechOutcome, VoiceSession
from mindscribe.voice.state import VoiceSessionState, VoiceStatus
from mindscribe.voice.text import prepare_speech_text

__all__ = [
    "VOICES",
    "VoiceConfig",
    "VoiceProfile",
    "SpeechOutcome",
    "VoiceSession",
    "VoiceSessionState",
    "VoiceStatus",
    "prepare_speech_text",
]
