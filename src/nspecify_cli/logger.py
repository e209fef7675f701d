"""Console-backed logger used by commands and the terminal engine."""

from datetime import datetime

from rich.console import Console
from rich.markup import escape

from .config import debug_from_env

SYMBOLS = {
    "success": "✓",
    "error": "✗",
    "warning": "⚠",
    "info": "ℹ",
    "bullet": "•",
}


class Logger:
    """Thin wrapper around a rich Console with a debug switch.

    Messages are escaped before printing, so callers can log paths or
    exception text containing square brackets.
    """

    def __init__(self, console: Console | None = None, debug: bool | None = None):
        self.console = console or Console()
        self.debug_enabled = debug_from_env() if debug is None else debug

    def debug(self, message: str, *args) -> None:
        if not self.debug_enabled:
            return
        timestamp = datetime.now().strftime("%H:%M:%S")
        extra = " ".join(str(a) for a in args)
        text = f"{message} {extra}" if extra else message
        stamp = escape(f"[{timestamp}]")
        self.console.print(f"[bright_black]{stamp} {SYMBOLS['info']} DEBUG: {escape(text)}[/bright_black]")

    def info(self, message: str) -> None:
        self.console.print(f"[blue]{SYMBOLS['info']}[/blue] {escape(message)}")

    def success(self, message: str) -> None:
        self.console.print(f"[green]{SYMBOLS['success']} {escape(message)}[/green]")

    def warn(self, message: str) -> None:
        self.console.print(f"[yellow]{SYMBOLS['warning']} {escape(message)}[/yellow]")

    def error(self, message: str) -> None:
        self.console.print(f"[red]{SYMBOLS['error']} {escape(message)}[/red]")

    def blank(self) -> None:
        self.console.print()

    def list(self, items, bullet: str = SYMBOLS["bullet"]) -> None:
        for item in items:
            self.console.print(f"  [bright_black]{bullet}[/bright_black] {escape(str(item))}")

    def key_value(self, data: dict, indent: int = 2) -> None:
        padding = " " * indent
        for key, value in data.items():
            self.console.print(f"{padding}[bright_black]{escape(str(key))}:[/bright_black] {escape(str(value))}")
