"""
tests/unit/test_exceptions.py — Error hierarchy tests
"""

from __future__ import annotations

import pytest

from mindscribe.exceptions import (
    DecodeError,
    DeviceAccessError,
    DeviceBusyError,
    MindScribeError,
    ModelLoadError,
    PlaybackError,
    SynthesisError,
    TranscriptionError,
    VoiceError,
)


@pytest.mark.parametrize("cls", [
    ModelLoadError, DeviceAccessError, DeviceBusyError, TranscriptionError,
    DecodeError, SynthesisError, PlaybackError,
])
def test_all_voice_errors_share_root(cls):
    assert issubclass(cls, VoiceError)
    assert issubclass(cls, MindScribeError)


def test_specialisations():
    assert issubclass(DeviceBusyError, DeviceAccessError)
    assert issubclass(DecodeError, TranscriptionError)


def test_model_load_error_default_message():
    err = ModelLoadError("speech recognition")
    assert err.engine == "speech recognition"
    assert str(err) == "Failed to load speech recognition model"


def test_model_load_error_custom_message():
    assert str(ModelLoadError("speech synthesis", "offline")) == "offline"
