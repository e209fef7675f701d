"""Arrow-key single selection prompt."""

import asyncio
from dataclasses import dataclass
from enum import Enum

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from .keyboard import KeyEvent, KeyName, KeySource
from .surface import RenderSurface


@dataclass(frozen=True)
class SelectorItem:
    key: str
    label: str


class Phase(Enum):
    IDLE = "idle"
    ACTIVE = "active"
    RESOLVED = "resolved"
    CANCELLED = "cancelled"


class SelectorState:
    """Selection state machine: Idle -> Active -> Resolved | Cancelled.

    Keys are only honoured while active. With no items the prompt can only
    be cancelled: enter and escape both end it without a result.
    """

    def __init__(self, items, selected_index: int = 0):
        self.items: tuple[SelectorItem, ...] = tuple(items)
        if self.items:
            self.selected_index = selected_index % len(self.items)
        else:
            self.selected_index = 0
        self.phase = Phase.IDLE
        self.result: SelectorItem | None = None

    @property
    def current(self) -> SelectorItem | None:
        return self.items[self.selected_index] if self.items else None

    @property
    def finished(self) -> bool:
        return self.phase in (Phase.RESOLVED, Phase.CANCELLED)

    def activate(self) -> None:
        if self.phase is not Phase.IDLE:
            raise RuntimeError(f"selector cannot start from phase {self.phase.value}")
        self.phase = Phase.ACTIVE

    def apply(self, key: KeyName | str) -> bool:
        """Apply one key; return True if the displayed selection changed."""
        if self.phase is not Phase.ACTIVE:
            return False
        count = len(self.items)

        if key == KeyName.UP and count:
            self.selected_index = (self.selected_index - 1 + count) % count
            return True
        if key == KeyName.DOWN and count:
            self.selected_index = (self.selected_index + 1) % count
            return True
        if key == KeyName.ENTER:
            if count:
                self.result = self.items[self.selected_index]
                self.phase = Phase.RESOLVED
            else:
                self.phase = Phase.CANCELLED
            return False
        if key == KeyName.ESCAPE:
            self.cancel()
        return False

    def cancel(self) -> None:
        if self.phase is Phase.ACTIVE:
            self.result = None
            self.phase = Phase.CANCELLED


class Selector:
    def __init__(self, items, keys: KeySource, surface: RenderSurface, *, prompt: str = "Select an option", default_index: int = 0):
        self.state = SelectorState(items, default_index)
        self.keys = keys
        self.surface = surface
        self.prompt = prompt
        self._done: asyncio.Future | None = None

    def render(self) -> Panel:
        """Create the selection panel with current selection highlighted."""
        table = Table.grid(padding=(0, 2))
        table.add_column(style="cyan", justify="left", width=3)
        table.add_column(style="white", justify="left")

        for i, item in enumerate(self.state.items):
            text = f"[cyan]{escape(item.key)}[/cyan] [dim]({escape(item.label)})[/dim]"
            if i == self.state.selected_index:
                table.add_row("▶", f"[bold]{text}[/bold]")
            else:
                table.add_row(" ", text)
        if not self.state.items:
            table.add_row(" ", "[dim]No options available[/dim]")

        table.add_row("", "")
        table.add_row("", "[dim]Use ↑/↓ to navigate, Enter to select, Esc to cancel[/dim]")

        return Panel(
            table,
            title=f"[bold]{escape(self.prompt)}[/bold]",
            border_style="cyan",
            padding=(1, 2),
        )

    def _handle_key(self, event: KeyEvent) -> None:
        changed = self.state.apply(event.name)
        if changed:
            self.surface.draw(self.render())
        self._settle()

    def _handle_end(self) -> None:
        # No key can arrive any more
        self.state.cancel()
        self._settle()

    def _settle(self) -> None:
        if self.state.finished and self._done is not None and not self._done.done():
            self._done.set_result(self.state.result)

    async def run(self) -> SelectorItem | None:
        """Show the prompt and wait for enter (item), or escape or end of input (None)."""
        self.state.activate()
        self._done = asyncio.get_running_loop().create_future()
        self.keys.enable_raw_mode()
        try:
            self.surface.draw(self.render())
            self.keys.on_any(self._handle_key)
            self.keys.on_end(self._handle_end)
            return await self._done
        finally:
            self.keys.off_any(self._handle_key)
            self.keys.off_end(self._handle_end)
            self.keys.disable_raw_mode()
            self.surface.erase()


def select_with_arrows(options: dict, prompt_text: str = "Select an option", default_key: str | None = None, *, keys: KeySource, console: Console) -> str:
    """
    Interactive selection using arrow keys.

    Args:
        options: Dict with keys as option keys and values as descriptions
        prompt_text: Text to show above the options
        default_key: Default option key to start with
        keys: Key source providing keyboard events
        console: Console the prompt is drawn on

    Returns:
        Selected option key. Cancelling exits the command with status 1.
    """
    items = [SelectorItem(key, label) for key, label in options.items()]
    default_index = 0
    if default_key:
        for i, item in enumerate(items):
            if item.key == default_key:
                default_index = i
                break

    console.print()
    selector = Selector(items, keys, RenderSurface(console), prompt=prompt_text, default_index=default_index)
    result = asyncio.run(selector.run())

    if result is None:
        console.print("[yellow]Selection cancelled[/yellow]")
        raise typer.Exit(1)
    return result.key
