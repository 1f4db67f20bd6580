"""CLI entry point for voxcmd.

Parses arguments, configures logging, and runs the dispatch engine over
typed utterances. setup_environment() is called before litellm can be
imported so its import-time output stays quiet.

Usage:
    voxcmd                          interactive prompt
    voxcmd "open application Mail"  one-shot, one result per utterance
    voxcmd --list-commands          table of registered commands
"""

import argparse
import asyncio
import dataclasses
import logging
import os

from voxcmd.apps.config import VoxConfig, load_config
from voxcmd.constants import DEFAULT_SESSION_ID

_EXIT_WORDS = frozenset({"quit", "exit", ":q"})


def build_arg_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser."""
    parser = argparse.ArgumentParser(
        description="Voice command dispatch: match, resolve and run commands"
    )
    parser.add_argument(
        "utterances",
        nargs="*",
        help="Utterances to dispatch once, in order (default: interactive prompt)",
    )
    parser.add_argument(
        "--model",
        default=None,
        help="LLM model for the fallback resolver (e.g., ollama/llama3.2). "
        "Falls back to resolver.model in config.json; none disables the fallback.",
    )
    parser.add_argument(
        "--min-confidence",
        type=float,
        default=None,
        help="Minimum confidence to execute a command (default: from config or 0.6)",
    )
    parser.add_argument(
        "--session", default=DEFAULT_SESSION_ID, help="Conversation session id"
    )
    parser.add_argument(
        "--locale", default=None, help="Locale for fillers and dates (e.g., en, nl)"
    )
    parser.add_argument(
        "--config-file",
        default=None,
        help="JSON config file (default: ~/.config/voxcmd/config.json)",
    )
    parser.add_argument(
        "--list-commands", action="store_true", help="List registered commands"
    )
    parser.add_argument(
        "--speak", action="store_true", help="Read results aloud (macOS `say`)"
    )
    parser.add_argument(
        "--show-states",
        action="store_true",
        help="Print the dispatcher states visited for each result",
    )
    return parser


def _apply_overrides(config: VoxConfig, args: argparse.Namespace) -> VoxConfig:
    """CLI flags take precedence over config.json."""
    dispatch = config.dispatch
    if args.min_confidence is not None:
        dispatch = dataclasses.replace(dispatch, min_confidence=args.min_confidence)
    if args.locale:
        dispatch = dataclasses.replace(dispatch, locale=args.locale)
    resolver = config.resolver
    if args.model:
        resolver = dataclasses.replace(resolver, model=args.model)
    return dataclasses.replace(config, dispatch=dispatch, resolver=resolver)


async def _run(args: argparse.Namespace) -> int:
    from rich.console import Console

    from voxcmd.api import build_engine, handle_text
    from voxcmd.apps.plugins import load_plugins
    from voxcmd.apps.speech import SaySpeaker
    from voxcmd.apps.ui import render_commands_table, render_result
    from voxcmd.core.env import LOGGER
    from voxcmd.core.resolver import LitellmCompletionClient
    from voxcmd.core.types import DispatchStatus

    config = _apply_overrides(load_config(args.config_file), args)

    completion = None
    if config.resolver.model:
        completion = LitellmCompletionClient(
            config.resolver.model,
            max_tokens=config.resolver.max_tokens,
            extra_params=config.resolver.flags,
        )

    console = Console()
    speaker = SaySpeaker() if args.speak else None
    if speaker is not None and not speaker.available:
        LOGGER.warning("--speak needs the macOS `say` command; speech disabled")
        speaker = None

    engine = await build_engine(
        config.dispatch,
        completion=completion,
        plugins=load_plugins(config.plugins),
        corrections=config.corrections,
        system_prompt=config.resolver.prompt,
        setup_env=False,
    )
    LOGGER.debug(
        "Ready - %d commands | Fallback: %s",
        len(engine.registry.snapshot()),
        config.resolver.model or "disabled",
    )

    async def handle(text: str) -> bool:
        ok = True
        for result in await handle_text(engine, text, session_id=args.session):
            console.print(render_result(result, show_states=args.show_states))
            if speaker is not None:
                await speaker.speak(result.speech_text)
            ok = ok and result.status is not DispatchStatus.FAILED
        return ok

    try:
        if args.list_commands:
            console.print(render_commands_table(engine.registry.snapshot()))
            return 0

        if args.utterances:
            ok = True
            for text in args.utterances:
                ok = await handle(text) and ok
            return 0 if ok else 1

        console.print("[dim]Type a command (Ctrl+D to quit).[/dim]")
        while True:
            try:
                line = await asyncio.to_thread(console.input, "[bold green]> [/]")
            except (EOFError, KeyboardInterrupt):
                break
            if line.strip().lower() in _EXIT_WORDS:
                break
            await handle(line)
        return 0
    finally:
        await engine.close()


def main() -> int:
    """CLI entry point. Returns exit code."""
    # Must run before litellm is imported.
    from voxcmd.core.env import quiet_library_loggers, setup_environment

    setup_environment()

    from rich.console import Console
    from rich.logging import RichHandler

    # LOG_LEVEL=INFO also logs every dispatch outcome.
    log_level = os.environ.get("LOG_LEVEL", "WARNING").upper()
    logging.basicConfig(
        level=log_level,
        format="%(message)s",
        handlers=[
            RichHandler(
                console=Console(stderr=True),
                show_time=False,
                show_path=False,
                rich_tracebacks=False,
            )
        ],
    )
    quiet_library_loggers()

    parser = build_arg_parser()
    args = parser.parse_args()
    if args.min_confidence is not None and not 0.0 <= args.min_confidence <= 1.0:
        parser.error("--min-confidence must be between 0 and 1")

    try:
        return asyncio.run(_run(args))
    except KeyboardInterrupt:
        return 130
