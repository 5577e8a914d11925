"""CLI entrypoint for ollama-companion."""

from __future__ import annotations

import argparse
import asyncio
from collections.abc import Sequence
from importlib import metadata
from pathlib import Path
import sys
from typing import Any

from rich.console import Console
from rich.table import Table

from .attachments import load_attachment
from .config import load_config
from .events import STREAM_DELTA, Event
from .exceptions import ExtractionError, InvalidConfigurationError
from .logging_utils import configure_logging
from .models import StreamMetrics
from .session import ChatSession
from .state import StreamState

RESET_COMMAND = "/reset"
QUIT_COMMANDS = frozenset({"/quit", "/exit"})


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ollama-companion",
        description="Chat with local Ollama models, with PDF, image and text attachments",
    )
    parser.add_argument("prompt", nargs="?", help="Prompt to send; omit to chat over stdin")
    parser.add_argument("--version", action="store_true", help="Print version and exit")
    parser.add_argument(
        "--probe", action="store_true", help="Check that the server is reachable and exit"
    )
    parser.add_argument(
        "--list-models", action="store_true", help="List local models and exit"
    )
    parser.add_argument("--model", help="Model to chat with (overrides the config)")
    parser.add_argument(
        "--attach",
        action="append",
        default=[],
        metavar="PATH",
        help="Attach a PDF, image or text file (repeatable)",
    )
    parser.add_argument("--config", type=Path, help="Path to an alternative config.toml")
    return parser


def _format_metrics(metrics: StreamMetrics) -> str:
    return (
        f"{metrics.token_count} tokens · {metrics.tokens_per_second:.1f} tok/s · "
        f"first token {metrics.time_to_first_token:.2f}s · "
        f"total {metrics.total_duration:.2f}s"
    )


class _AnswerPrinter:
    """Prints the growing answer, emitting only the newly appended suffix."""

    def __init__(self, console: Console) -> None:
        self.console = console
        self.printed = ""

    def on_delta(self, event: Event) -> None:
        answer = event.data.get("answer") or ""
        if answer.startswith(self.printed) and len(answer) > len(self.printed):
            self.console.print(
                answer[len(self.printed) :], end="", markup=False, highlight=False
            )
            self.printed = answer

    def finish(self, content: str) -> None:
        if content.startswith(self.printed):
            remainder = content[len(self.printed) :]
        else:
            self.console.print()
            remainder = content
        self.console.print(remainder, markup=False, highlight=False)
        self.printed = ""


async def _ask(session: ChatSession, console: Console, prompt: str) -> int:
    printer = _AnswerPrinter(console)
    session.bus.subscribe(STREAM_DELTA, printer.on_delta)
    try:
        outcome = await session.send(prompt)
    finally:
        session.bus.unsubscribe(STREAM_DELTA, printer.on_delta)

    if outcome.state is not StreamState.COMPLETED or outcome.message is None:
        console.print()
        console.print(f"[red]Error:[/red] {outcome.error or session.last_error}")
        session.clear_error()
        return 1

    printer.finish(outcome.message.content)
    if outcome.message.reasoning:
        console.print("Reasoning:", style="dim bold")
        console.print(outcome.message.reasoning, style="dim", markup=False, highlight=False)
    if outcome.metrics is not None:
        console.print(_format_metrics(outcome.metrics), style="dim")
    return 0


def _print_models(session: ChatSession, console: Console) -> None:
    table = Table(title="Local models")
    table.add_column("Name")
    table.add_column("Variant")
    table.add_column("Size", justify="right")
    table.add_column("Selected", justify="center")
    for model in session.models:
        selected = session.selected_model is not None and session.selected_model.name == model.name
        table.add_row(
            model.display_name,
            model.variant or "",
            model.display_size,
            "*" if selected else "",
        )
    console.print(table)


async def _chat_loop(session: ChatSession, console: Console) -> int:
    status = 0
    while True:
        line = await asyncio.to_thread(sys.stdin.readline)
        if not line:
            return status
        text = line.strip()
        if not text:
            continue
        if text in QUIT_COMMANDS:
            return status
        if text == RESET_COMMAND:
            await session.reset()
            console.print("Conversation cleared.", style="dim")
            continue
        status = await _ask(session, console, text)


async def _run(args: argparse.Namespace, config: dict[str, Any], console: Console) -> int:
    try:
        session = ChatSession.from_config(config)
    except InvalidConfigurationError as exc:
        console.print(f"[red]Configuration error:[/red] {exc}")
        return 2

    try:
        connected = await session.check_connection()
        host = config["server"]["host"]
        if args.probe:
            console.print(f"{host}: {'connected' if connected else 'unreachable'}")
            return 0 if connected else 1
        if not connected:
            console.print(
                f"[red]Cannot connect to Ollama at {host}.[/red] Make sure Ollama is running."
            )
            return 1

        await session.refresh_models()
        if session.notice:
            console.print(session.notice, style="yellow")
        if args.model:
            await session.select_model(args.model)
        if args.list_models:
            _print_models(session, console)
            return 0

        limits = config["attachments"]
        for path in args.attach:
            try:
                session.pending.add(
                    load_attachment(
                        path,
                        max_image_bytes=limits["max_image_bytes"],
                        max_file_bytes=limits["max_file_bytes"],
                    )
                )
            except ExtractionError as exc:
                console.print(f"[red]Attachment error:[/red] {exc}")
                return 2

        if args.prompt is not None:
            return await _ask(session, console, args.prompt)
        return await _chat_loop(session, console)
    finally:
        await session.aclose()


def main(argv: Sequence[str] | None = None) -> int:
    """Parse CLI flags, load configuration and run one prompt or a stdin chat loop."""

    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    if args.version:
        try:
            version = metadata.version("ollama-companion")
        except metadata.PackageNotFoundError:
            version = "0.0.0"
        print(f"ollama-companion {version}")
        return 0

    config = load_config(config_path=args.config)
    if args.model:
        config["server"]["model"] = args.model
    configure_logging(config["logging"])

    console = Console()
    try:
        return asyncio.run(_run(args, config, console))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
