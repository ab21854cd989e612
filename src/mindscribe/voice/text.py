"""
voice/text.py — Speech text preparation.

Assistant replies are Markdown; TTS should not read symbols aloud.
"""

from __future__ import annotations

import re

MAX_SPEECH_CHARS = 500

_CODE_BLOCK = re.compile(r"```[\s\S]*?```")
_INLINE_CODE = re.compile(r"`([^`]+)`")
_HEADER = re.compile(r"^#{1,6}\s*", re.MULTILINE)
_BOLD_ITALIC = re.compile(r"\*{1,3}([^*]+)\*{1,3}")
_UNDERSCORE = re.compile(r"(?<!\w)_{1,3}([^_]+)_{1,3}(?!\w)")
_LINK = re.compile(r"\[([^\]]+)\]\([^)]+\)")
_URL = re.compile(r"https?://\S+")
_BULLET = re.compile(r"^\s*(?:[-*+]|\d+\.)\s+", re.MULTILINE)
_WHITESPACE = re.compile(r"\s+")


def prepare_speech_text(text: str) -> str:
    """
    Remove common Markdown formatting so TTS doesn't read symbols aloud.
    Minimal — keeps the text natural for spoken output.
    """
    if not text:
        return ""
    text = _CODE_BLOCK.sub(" ", text)
    text = _INLINE_CODE.sub(r"\1", text)
    text = _LINK.sub(r"\1", text)
    text = _URL.sub("link", text)
    text = _HEADER.sub("", text)
    text = _BULLET.sub("", text)
    text = _BOLD_ITALIC.sub(r"\1", text)
    text = _UNDERSCORE.sub(r"\1", text)
    return _WHITESPACE.sub(" ", text).strip()


def truncate_for_speech(text: str, limit: int = MAX_SPEECH_CHARS) -> str:
    """Cap speech input at ``limit`` characters; shorter text is unchanged."""
    return text if len(text) <= limit else text[:limit]
