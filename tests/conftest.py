"""Shared fixtures: a scripted key input and in-memory consoles."""

from __future__ import annotations

import asyncio
import io

import pytest
from rich.console import Console

from nspecify_cli.keyboard import KeySource, decode_keys

# Small enough for fast tests, large enough that same-turn presses coalesce
DEBOUNCE = 0.01
SETTLE = 0.05


class FakeKeyInput:
    """Key input double: records raw-mode calls and lets tests press keys.

    ``script`` keys are delivered one by one on the running loop after the
    first ``resume``, spaced well beyond the debounce delay. A ``None``
    entry ends the input.
    """

    def __init__(self, is_tty: bool = True, script: list[str] | None = None, spacing: float = SETTLE, resume_error: Exception | None = None):
        self.is_tty = is_tty
        self.raw_calls: list[bool] = []
        self.callback = None
        self.on_end = None
        self.resume_error = resume_error
        self.pauses = 0
        self.script = list(script or [])
        self.spacing = spacing

    def set_raw_mode(self, enabled: bool) -> None:
        self.raw_calls.append(enabled)

    def resume(self, callback, on_end=None) -> None:
        if self.resume_error is not None:
            raise self.resume_error
        self.callback = callback
        self.on_end = on_end
        if self.script:
            loop = asyncio.get_running_loop()
            for i, text in enumerate(self.script, start=1):
                loop.call_later(self.spacing * i, self.press, text)
            self.script = []

    def pause(self) -> None:
        self.callback = None
        self.pauses += 1

    def press(self, text: str | None) -> None:
        if text is None:
            self.end()
            return
        if self.callback is None:
            return
        for raw in decode_keys(text):
            self.callback(raw)

    def end(self) -> None:
        """Simulate end of input, as a closed pipe or exhausted file would."""
        on_end = self.on_end
        self.pause()
        if on_end is not None:
            on_end()


def make_console(*, interactive: bool = True, width: int = 60) -> Console:
    return Console(file=io.StringIO(), force_terminal=interactive, color_system=None, width=width)


def output_of(console: Console) -> str:
    return console.file.getvalue()


@pytest.fixture
def fake_input() -> FakeKeyInput:
    return FakeKeyInput()


@pytest.fixture
def interrupts() -> list[int]:
    return []


@pytest.fixture
def keys(fake_input, interrupts) -> KeySource:
    return KeySource(fake_input, debounce_delay=DEBOUNCE, on_interrupt=lambda: interrupts.append(1))


@pytest.fixture
def console() -> Console:
    return make_console()
