"""Erase-and-redraw output region on a character terminal."""

import os
import sys
from typing import Callable

from rich.console import Console, RenderableType

from .config import DEFAULT_WIDTH

CURSOR_UP_AND_ERASE = "\x1b[1A\x1b[2K"


def stdout_columns() -> int | None:
    try:
        return os.get_terminal_size(sys.stdout.fileno()).columns or None
    except (OSError, ValueError, AttributeError):
        return None


class RenderSurface:
    """Remembers how many lines it last wrote so it can erase exactly those.

    Redraws move the cursor up over the previous output instead of clearing
    the screen, so scrollback above the surface is left alone.
    """

    def __init__(self, console: Console, *, columns: Callable[[], int | None] | None = None):
        self.console = console
        self.columns = columns or stdout_columns
        self.line_count = 0

    @property
    def is_interactive(self) -> bool:
        return self.console.is_terminal

    def width(self) -> int:
        return self.columns() or DEFAULT_WIDTH

    def render_text(self, renderable: RenderableType) -> str:
        with self.console.capture() as capture:
            self.console.print(renderable, width=self.width())
        return capture.get()

    def erase(self) -> None:
        if self.line_count and self.is_interactive:
            self._write(CURSOR_UP_AND_ERASE * self.line_count)
        self.line_count = 0

    def draw(self, renderable: RenderableType) -> None:
        text = self.render_text(renderable)
        self.erase()
        self._write(text)
        self.line_count = text.count("\n")

    def release(self) -> None:
        """Leave whatever was drawn on screen; the next draw starts below it."""
        self.line_count = 0

    def _write(self, text: str) -> None:
        self.console.file.write(text)
        self.console.file.flush()
