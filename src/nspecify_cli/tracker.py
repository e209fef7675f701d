"""Step tree progress display with rate-limited live redraws."""

import asyncio
from dataclasses import dataclass
from enum import StrEnum
from typing import Callable

from rich.console import RenderableType
from rich.markup import escape
from rich.text import Text

from .config import REFRESH_PER_SECOND
from .surface import RenderSurface


class StepStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    ERROR = "error"
    SKIPPED = "skipped"


_SYMBOLS = {
    StepStatus.DONE: "[green]●[/green]",
    StepStatus.PENDING: "[green dim]○[/green dim]",
    StepStatus.RUNNING: "[cyan]○[/cyan]",
    StepStatus.ERROR: "[red]●[/red]",
    StepStatus.SKIPPED: "[yellow]○[/yellow]",
}


@dataclass
class Step:
    key: str
    label: str
    status: StepStatus = StepStatus.PENDING
    detail: str = ""


class StepTracker:
    """Track and render steps as a tree without emojis.

    Supports live auto-refresh via an attached refresh callback. Status
    changes are not validated: any status may follow any other and the last
    write wins.
    """

    def __init__(self, title: str, *, logger=None):
        self.title = title
        self.logger = logger
        self.steps: list[Step] = []
        self.last_rendered_line_count = 0
        self._refresh_cb: Callable[[], None] | None = None  # callable to trigger UI refresh

    def attach_refresh(self, cb: Callable[[], None] | None) -> None:
        self._refresh_cb = cb

    def get(self, key: str) -> Step | None:
        for step in self.steps:
            if step.key == key:
                return step
        return None

    def add(self, key: str, label: str) -> None:
        if self.get(key) is None:
            self.steps.append(Step(key, label))
            self._maybe_refresh()

    def start(self, key: str, detail: str = "") -> None:
        self.update(key, StepStatus.RUNNING, detail)

    def complete(self, key: str, detail: str = "") -> None:
        self.update(key, StepStatus.DONE, detail)

    def error(self, key: str, detail: str = "") -> None:
        self.update(key, StepStatus.ERROR, detail)

    def skip(self, key: str, detail: str = "") -> None:
        self.update(key, StepStatus.SKIPPED, detail)

    def update(self, key: str, status: StepStatus | str, detail: str = "") -> None:
        status = StepStatus(status)
        step = self.get(key)
        if step is None:
            # Unknown keys are created on the fly
            self.steps.append(Step(key, key, status, detail))
        else:
            step.status = status
            if detail:
                step.detail = detail
        self._maybe_refresh()

    def _maybe_refresh(self) -> None:
        if self._refresh_cb:
            try:
                self._refresh_cb()
            except Exception as exc:
                if self.logger is not None:
                    self.logger.debug("tracker refresh failed:", exc)

    def render(self) -> Text:
        lines = [f"[bold cyan]{escape(self.title)}[/bold cyan]"]
        for index, step in enumerate(self.steps):
            branch = "└─" if index == len(self.steps) - 1 else "├─"
            symbol = _SYMBOLS.get(step.status, " ")
            label = escape(step.label)
            detail_text = escape(step.detail.strip()) if step.detail else ""

            if step.status == StepStatus.PENDING:
                # Entire line light gray (pending)
                if detail_text:
                    body = f"[bright_black]{label} ({detail_text})[/bright_black]"
                else:
                    body = f"[bright_black]{label}[/bright_black]"
            else:
                # Label white, detail (if any) light gray in parentheses
                if detail_text:
                    body = f"[white]{label}[/white] [bright_black]({detail_text})[/bright_black]"
                else:
                    body = f"[white]{label}[/white]"

            lines.append(f"[grey50]{branch}[/grey50] {symbol} {body}")
        return Text.from_markup("\n".join(lines))

    def display(self, surface: RenderSurface) -> None:
        surface.draw(self.render())
        self.last_rendered_line_count = surface.line_count


class LiveUpdater:
    """Coalesce bursts of redraw requests into at most N flushes per second.

    ``queue`` only remembers the newest render function; a timer on the
    running event loop flushes it. On a non-interactive console nothing is
    drawn until ``finish``.
    """

    def __init__(self, surface: RenderSurface, *, refresh_per_second: float = REFRESH_PER_SECOND, logger=None):
        self.surface = surface
        self.interval = 1.0 / refresh_per_second
        self.logger = logger
        self.active = False
        self._pending: Callable[[], RenderableType] | None = None
        self._last: Callable[[], RenderableType] | None = None
        self._handle: asyncio.TimerHandle | None = None

    def start(self) -> None:
        if self.active:
            return
        self.active = True
        self._schedule()

    def stop(self) -> None:
        if not self.active:
            return
        self.active = False
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def queue(self, render_fn: Callable[[], RenderableType]) -> None:
        self._pending = render_fn
        self._last = render_fn

    def flush(self) -> None:
        if self._pending is None or not self.surface.is_interactive:
            return
        render_fn, self._pending = self._pending, None
        try:
            self.surface.draw(render_fn())
        except Exception as exc:
            if self.logger is not None:
                self.logger.debug("live render failed:", exc)

    def finish(self, render_fn: Callable[[], RenderableType] | None = None) -> None:
        """Stop flushing, draw the final state once and leave it on screen."""
        self.stop()
        self._pending = None
        render_fn = render_fn or self._last
        if render_fn is not None:
            self.surface.draw(render_fn())
        self.surface.release()

    def _schedule(self) -> None:
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.interval, self._tick)

    def _tick(self) -> None:
        self._handle = None
        if not self.active:
            return
        self.flush()
        self._schedule()

    def __enter__(self) -> "LiveUpdater":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.finish()


def create_live_tracker(title: str, surface: RenderSurface, *, refresh_per_second: float = REFRESH_PER_SECOND, logger=None) -> tuple[StepTracker, LiveUpdater]:
    """Create a tracker whose changes are redrawn through a live updater."""
    tracker = StepTracker(title, logger=logger)
    updater = LiveUpdater(surface, refresh_per_second=refresh_per_second, logger=logger)
    tracker.attach_refresh(lambda: updater.queue(tracker.render))
    return tracker, updater
