"""
main.py — MindScribe Voice Entry Point

Usage:
    python -m mindscribe voices                     # list the voice catalog
    python -m mindscribe voices --recommended       # only the therapeutic picks
    python -m mindscribe say "Hello there"          # speak once and exit
    python -m mindscribe listen                     # push-to-talk transcription loop
    python -m mindscribe say "Hi" --voice en_GB-alan-medium
    python -m mindscribe listen --log-level DEBUG   # verbose logging
    python -m mindscribe listen --config path/to/config.yaml
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Optional, Sequence

from dotenv import load_dotenv
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table


def _find_env_file() -> Path | None:
    """Walk up from CWD looking for .env file."""
    cwd = Path.cwd()
    for d in [cwd, *cwd.parents]:
        candidate = d / ".env"
        if candidate.is_file():
            return candidate
    return None


console = Console()


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="mindscribe-voice",
        description="MindScribe — offline voice pipeline (Whisper STT + Piper TTS)",
    )
    parser.add_argument(
        "command",
        choices=["voices", "say", "listen"],
        help=(
            "'voices' — list available voices. "
            "'say TEXT' — synthesize and play TEXT once. "
            "'listen' — push-to-talk: Enter to start, Enter to stop and transcribe."
        ),
    )
    parser.add_argument(
        "text",
        nargs="*",
        default=[],
        help="Text to speak (for 'say').",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: $MINDSCRIBE_CONFIG or config/config.yaml)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override log level from config",
    )
    parser.add_argument(
        "--voice",
        default=None,
        help="Voice id to speak with (see 'voices'). Defaults to tts.default_voice.",
    )
    parser.add_argument(
        "--recommended",
        action="store_true",
        help="With 'voices': only list voices recommended for therapeutic sessions.",
    )
    return parser.parse_args(argv)


def bootstrap(args: argparse.Namespace):
    """
    Load config, validate it fully, and set up logging.
    Returns (settings, log) ready for use.

    Exits with code 1 (after printing a clear message) if:
      - config.yaml has invalid values (Pydantic ValidationError)
      - cross-field problems are found (ConfigError from validate_all())
    """
    from mindscribe.config.settings import ConfigError, load_settings
    from mindscribe.observability.logger import get_logger, setup_logging
    from pydantic import ValidationError

    env_path = _find_env_file()
    if env_path:
        load_dotenv(dotenv_path=env_path)

    # -- Load and parse -------------------------------------------------------
    try:
        settings = load_settings(args.config)
    except ValidationError as exc:
        problems = "\n".join(
            f"  • {'.'.join(str(p) for p in e['loc']) or '?'}: {e['msg']}"
            for e in exc.errors()
        )
        print(
            f"\n❌  Config validation failed:\n\n{problems}\n\n"
            f"    Fix config/config.yaml or your .env file and restart.\n",
            file=sys.stderr,
        )
        sys.exit(1)
    except (OSError, ValueError, TypeError) as exc:
        print(
            f"\n❌  Failed to load config: {type(exc).__name__}: {exc}\n",
            file=sys.stderr,
        )
        sys.exit(1)

    # -- Cross-field validation -----------------------------------------------
    try:
        settings.validate_all()
    except ConfigError as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(1)

    # -- Logging --------------------------------------------------------------
    # CLI --log-level flag overrides config.yaml
    setup_logging(
        level=args.log_level or settings.log_level,
        log_dir=settings.log_dir,
        json_format=settings.logging.json_format,
        console_output=settings.logging.console_output,
        max_bytes=settings.logging.max_file_size_mb * 1024 * 1024,
        backup_count=settings.logging.backup_count,
    )

    log = get_logger("mindscribe.main")
    return settings, log


# ─────────────────────────────────────────────────────────────────────────────
# Commands
# ─────────────────────────────────────────────────────────────────────────────

def print_voices(default_voice: Optional[str] = None, recommended_only: bool = False) -> int:
    from mindscribe.voice.catalog import DEFAULT_VOICE_ID, list_voices

    default_voice = default_voice or DEFAULT_VOICE_ID
    table = Table(title="MindScribe Voices", box=box.ROUNDED, border_style="dim")
    table.add_column("", no_wrap=True, width=2)
    table.add_column("Id", style="cyan", no_wrap=True)
    table.add_column("Name", style="bold", no_wrap=True)
    table.add_column("Lang", no_wrap=True)
    table.add_column("Gender", no_wrap=True)
    table.add_column("Category", no_wrap=True)
    table.add_column("Size", no_wrap=True)
    table.add_column("Description")

    for v in list_voices(recommended_only=recommended_only):
        name = v.name + (" ★" if v.recommended else "")
        if v.id == default_voice:
            name += " [green](default)[/]"
        table.add_row(v.icon, v.id, name, v.language, v.gender, v.category, v.size, v.description)

    console.print(table)
    console.print("[dim]★ recommended for calming, therapeutic sessions[/]")
    return 0


def _print_state_errors(session) -> None:
    last_error: list[Optional[str]] = [None]

    def _on_state(state) -> None:
        if state.error and state.error != last_error[0]:
            console.print(f"[red]❌ {state.error}[/]")
        last_error[0] = state.error

    session.subscribe(_on_state)


async def run_say(settings, log, text: str, voice: Optional[str]) -> int:
    from mindscribe.voice import SpeechOutcome, VoiceSession, prepare_speech_text

    spoken = prepare_speech_text(text)
    if not spoken:
        console.print("[yellow]Usage: mindscribe-voice say <text>[/]")
        return 1

    session = VoiceSession.from_settings(settings)
    _print_state_errors(session)
    try:
        if voice:
            session.set_config(voice=voice)
        console.print("[dim]Loading voice…[/]")
        if not await session.initialize_tts():
            return 1
        outcome = await session.speak(spoken)
        log.info("cli.say_finished", outcome=outcome.value)
        return 0 if outcome is SpeechOutcome.COMPLETED else 1
    finally:
        session.dispose()


async def run_listen(settings, log, voice: Optional[str]) -> int:
    from mindscribe.voice import VoiceSession

    loop = asyncio.get_running_loop()

    async def _get_input(prompt: str) -> str:
        return await loop.run_in_executor(None, input, prompt)

    session = VoiceSession.from_settings(settings)
    _print_state_errors(session)
    try:
        if voice:
            session.set_config(voice=voice)
        console.print("[dim]Loading speech models (first run downloads them)…[/]")
        if not await session.initialize_stt():
            return 1

        console.print(
            Panel(
                "Press [bold]Enter[/] to start recording, [bold]Enter[/] again to "
                "stop and transcribe.\nCtrl+D or Ctrl+C to quit.",
                title="🎙  MindScribe Listen",
                border_style="cyan",
                padding=(0, 2),
            )
        )
        while True:
            try:
                await _get_input("")
                if not await session.start_listening():
                    continue
                await _get_input("● recording… ")
            except (EOFError, KeyboardInterrupt):
                break
            text = await session.stop_listening()
            if text:
                console.print(f"👤 [bold]You:[/] {text}")
            else:
                console.print("[dim](nothing heard)[/]")
        console.print("\n[dim]Goodbye.[/]")
        return 0
    finally:
        session.dispose()
        log.info("cli.listen_stopped")


async def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)

    # ── Catalog listing: no full bootstrap needed ─────────────────────────────
    if args.command == "voices":
        return print_voices(recommended_only=args.recommended)

    settings, log = bootstrap(args)
    log.info("mindscribe.starting", command=args.command)

    if args.voice:
        from mindscribe.voice.catalog import find_voice
        if find_voice(args.voice) is None:
            console.print(f"[red]❌ Unknown voice '{args.voice}'.[/] Run [bold]voices[/] to list ids.")
            return 1

    if args.command == "say":
        return await run_say(settings, log, " ".join(args.text), args.voice)
    return await run_listen(settings, log, args.voice)


def main_sync() -> None:
    """Synchronous entry point for console_scripts (pyproject.toml)."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    main_sync()
