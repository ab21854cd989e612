"""
observability/logger.py — structlog setup for the voice pipeline.

Two sinks share one processor chain:

    file     — always JSON, rotated (data/logs/mindscribe-voice.log)
    console  — optional; coloured on a TTY, JSON when piped

Audio payloads (numpy arrays, raw PCM bytes) passed as event fields are
summarised before rendering, so a stray ``samples=...`` never dumps a
megabyte of floats into the log.

    setup_logging(level="DEBUG", log_dir="./data/logs", console_output=True)
    log = get_logger(__name__)
    log.info("voice.stt_loaded", model="tiny.en", duration_ms=812)
"""

from __future__ import annotations

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Any, Optional

import numpy as np
import structlog

LOG_FILE_NAME = "mindscribe-voice.log"

# Model downloaders, HTTP clients and the ONNX/JIT runtimes log progress
# bars and per-request lines at INFO.
_QUIET = ("faster_whisper", "huggingface_hub", "httpx", "httpcore", "numba", "piper")


def _summarise_audio(_logger: Any, _method: str, event_dict: dict) -> dict:
    for key, value in event_dict.items():
        if isinstance(value, np.ndarray):
            event_dict[key] = f"<ndarray {value.dtype} shape={value.shape}>"
        elif isinstance(value, (bytes, bytearray, memoryview)):
            event_dict[key] = f"<{len(value)} bytes>"
    return event_dict


def _processor_chain() -> list[Any]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _summarise_audio,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]


def _formatter(renderer: Any, chain: list[Any]) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        foreign_pre_chain=chain,
    )


def _silence_third_party() -> None:
    for name in _QUIET:
        lgr = logging.getLogger(name)
        lgr.setLevel(logging.CRITICAL)
        lgr.propagate = False
        if not lgr.handlers:
            lgr.addHandler(logging.NullHandler())


def setup_logging(
    level: str = "INFO",
    log_dir: str | Path = "./data/logs",
    json_format: Optional[bool] = None,
    console_output: bool = True,
    max_bytes: int = 20 * 1024 * 1024,
    backup_count: int = 5,
) -> None:
    """
    Configure structlog and the stdlib root logger. Call once at startup.

    Args:
        level:          DEBUG | INFO | WARNING | ERROR | CRITICAL
        log_dir:        Directory for the rotating log file (created if missing).
        json_format:    Console renderer. None picks pretty output on a TTY.
        console_output: Also write to stdout.
        max_bytes:      Rotation size of the log file.
        backup_count:   Rotated files to keep.
    """
    directory = Path(log_dir)
    directory.mkdir(parents=True, exist_ok=True)
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO
    if json_format is None:
        json_format = not sys.stdout.isatty()

    chain = _processor_chain()

    file_handler = logging.handlers.RotatingFileHandler(
        directory / LOG_FILE_NAME,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    file_handler.setFormatter(_formatter(structlog.processors.JSONRenderer(), chain))
    handlers: list[logging.Handler] = [file_handler]

    if console_output:
        console = logging.StreamHandler(sys.stdout)
        console_renderer = (
            structlog.processors.JSONRenderer()
            if json_format
            else structlog.dev.ConsoleRenderer(colors=True)
        )
        console.setFormatter(_formatter(console_renderer, chain))
        handlers.append(console)

    for handler in handlers:
        handler.setLevel(numeric_level)
    logging.basicConfig(level=numeric_level, handlers=handlers, force=True)
    _silence_third_party()

    structlog.configure(
        processors=chain + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = "mindscribe", **initial_values: Any) -> structlog.stdlib.BoundLogger:
    """Named structlog logger, optionally pre-bound (``get_logger(__name__, engine="stt")``)."""
    logger = structlog.get_logger(name)
    return logger.bind(**initial_values) if initial_values else logger
