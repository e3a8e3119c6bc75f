#!/usr/bin/env python3

from __future__ import annotations
import asyncio
from pathlib import Path
from typing import Optional, Tuple

import typer
from aioconsole import ainput
from rich.console import Console
from rich.table import Table

from shared.envelope import create_envelope
from shared.log import configure_root_logging, get_logger
from .config import ClientConfig, ConfigError, load_config
from .state import ChatMessage
from .ws_client import ConnectionController

app = typer.Typer(help="wschat WebSocket chat client")
console = Console()
logger = get_logger(__name__)

HELP_TEXT = "/connect, /disconnect, /status, /history, /help, /quit; anything else is sent"


def _load(config_path: Optional[Path], **overrides) -> ClientConfig:
    try:
        return load_config(config_path).with_overrides(**overrides)
    except ConfigError as e:
        console.print(f"[red]Invalid configuration[/]: {e}")
        raise typer.Exit(code=2)


def _render(message: ChatMessage) -> str:
    stamp = message.created_at.astimezone().strftime("%H:%M:%S")
    if message.is_from_user:
        return f"[dim]{stamp}[/] [bold cyan]me[/]: {message.text}"
    return f"[dim]{stamp}[/] [bold yellow]them[/]: {message.text}"


class HistoryPrinter:
    """Prints messages as they are appended to the controller history."""

    def __init__(self) -> None:
        self.printed = 0

    def __call__(self, messages: Tuple[ChatMessage, ...]) -> None:
        if len(messages) < self.printed:
            # history was cleared by a disconnect
            self.printed = 0
        for message in messages[self.printed:]:
            console.print(_render(message), highlight=False)
        self.printed = len(messages)


def _print_status(controller: ConnectionController) -> None:
    colour = "green" if controller.is_connected else "red"
    console.print(f"[{colour}]{controller.state.value}[/] {controller.config.server_url} as {controller.config.sender_id}")


@app.command()
def chat(
    server: Optional[str] = typer.Option(None, help="WebSocket URL of the chat server"),
    sender: Optional[str] = typer.Option(None, help="Sender identity placed on outgoing messages"),
    config: Optional[Path] = typer.Option(None, help="Path to YAML config file"),
):
    """Connect and start an interactive chat session."""
    cfg = _load(config, server_url=server, sender_id=sender)
    configure_root_logging(cfg.log_level or "WARNING")

    async def main_loop() -> None:
        controller = ConnectionController(cfg)
        controller.on("history", HistoryPrinter())
        controller.on("state", lambda state: console.print(f"[dim]-- {state.value}[/]"))
        controller.on("error", lambda err: console.print(f"[red]{type(err).__name__}[/]: {err}"))

        await controller.connect()
        try:
            while True:
                try:
                    line = (await ainput(": ")).strip()
                except EOFError:
                    break
                if not line:
                    continue
                if line in {"/quit", "/exit"}:
                    break
                if line == "/help":
                    console.print(HELP_TEXT)
                elif line == "/connect":
                    await controller.connect()
                elif line == "/disconnect":
                    await controller.disconnect()
                elif line == "/status":
                    _print_status(controller)
                elif line == "/history":
                    for message in controller.messages:
                        console.print(_render(message), highlight=False)
                elif line.startswith("/"):
                    console.print(f"Unknown command. {HELP_TEXT}")
                elif not controller.is_connected:
                    console.print("[red]Not connected[/]; use /connect")
                else:
                    await controller.send(line)
        finally:
            await controller.disconnect()

    try:
        asyncio.run(main_loop())
    except KeyboardInterrupt:
        console.print("[dim]bye[/]")


@app.command("config")
def show_config(
    config: Optional[Path] = typer.Option(None, help="Path to YAML config file"),
):
    """Print the effective configuration."""
    cfg = _load(config)
    table = Table(title="wschat configuration")
    table.add_column("Setting")
    table.add_column("Value")
    for key, value in cfg.to_dict().items():
        table.add_row(key, "" if value is None else str(value))
    console.print(table)


@app.command()
def envelope(
    text: str = typer.Argument(..., help="Message text"),
    sender: Optional[str] = typer.Option(None, help="Sender identity; defaults to the configured one"),
    config: Optional[Path] = typer.Option(None, help="Path to YAML config file"),
):
    """Print the JSON frame that would be sent for TEXT."""
    cfg = _load(config, sender_id=sender)
    env = create_envelope(cfg.sender_id, text)
    typer.echo(env.to_json())


def main() -> None:
    app()


if __name__ == "__main__":
    main()
