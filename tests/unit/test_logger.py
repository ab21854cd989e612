"""
tests/unit/test_logger.py — structlog setup tests
"""

from __future__ import annotations

import json
import logging

import numpy as np
import pytest
import structlog

from mindscribe.observability.logger import LOG_FILE_NAME, get_logger, setup_logging


@pytest.fixture
def log_dir(tmp_path):
    yield tmp_path / "logs"
    root = logging.getLogger()
    for handler in list(root.handlers):
        handler.close()
        root.removeHandler(handler)
    structlog.reset_defaults()


def _records(log_dir) -> list[dict]:
    for handler in logging.getLogger().handlers:
        handler.flush()
    lines = (log_dir / LOG_FILE_NAME).read_text(encoding="utf-8").splitlines()
    return [json.loads(line) for line in lines if line.strip()]


def test_file_log_is_json(log_dir):
    setup_logging(level="DEBUG", log_dir=log_dir, console_output=False)
    get_logger("tests.logger.json", engine="stt").info("voice.stt_loaded", model="tiny.en")
    record = _records(log_dir)[-1]
    assert record["event"] == "voice.stt_loaded"
    assert record["model"] == "tiny.en"
    assert record["engine"] == "stt"
    assert record["level"] == "info"
    assert record["logger"] == "tests.logger.json"
    assert "timestamp" in record


def test_audio_payloads_summarised(log_dir):
    setup_logging(level="DEBUG", log_dir=log_dir, console_output=False)
    get_logger("tests.logger.audio").debug(
        "voice.chunk", samples=np.zeros((4, 2), dtype=np.float32), pcm=b"\x00" * 320,
    )
    record = _records(log_dir)[-1]
    assert record["samples"] == "<ndarray float32 shape=(4, 2)>"
    assert record["pcm"] == "<320 bytes>"


def test_level_filters(log_dir):
    setup_logging(level="WARNING", log_dir=log_dir, console_output=False)
    log = get_logger("tests.logger.level")
    log.info("voice.quiet")
    log.warning("voice.loud")
    events = [r["event"] for r in _records(log_dir)]
    assert "voice.loud" in events
    assert "voice.quiet" not in events


def test_third_party_loggers_muted(log_dir):
    setup_logging(level="DEBUG", log_dir=log_dir, console_output=False)
    logging.getLogger("httpx").info("HTTP Request: GET https://example.org")
    assert all("HTTP Request" not in r.get("event", "") for r in _records(log_dir))
    assert logging.getLogger("faster_whisper").propagate is False
