"""Keyboard input for interactive prompts.

Turns raw terminal input into normalized, debounced key events and hands
them to subscribers. The terminal's raw-input mode is owned by a
``KeySource``; consumers pair ``enable_raw_mode`` with ``disable_raw_mode``
(or use ``raw_mode()``) so the terminal is always restored.
"""

import asyncio
import codecs
import contextlib
import os
import sys
import threading
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Callable, Protocol

import readchar

from .config import DEBOUNCE_DELAY

_IS_WINDOWS = os.name == "nt"

if not _IS_WINDOWS:
    import termios
    import tty


class KeyName(StrEnum):
    UP = "up"
    DOWN = "down"
    LEFT = "left"
    RIGHT = "right"
    ENTER = "enter"
    ESCAPE = "escape"
    SPACE = "space"
    TAB = "tab"
    BACKSPACE = "backspace"


@dataclass(frozen=True)
class RawKey:
    """A decoded key descriptor as delivered by the input stream."""

    char: str
    name: str | None = None
    ctrl: bool = False
    meta: bool = False
    shift: bool = False


@dataclass(frozen=True)
class Modifiers:
    ctrl: bool = False
    meta: bool = False
    shift: bool = False


@dataclass(frozen=True)
class KeyEvent:
    raw_char: str
    name: KeyName | str
    modifiers: Modifiers = field(default_factory=Modifiers)

    @property
    def is_literal(self) -> bool:
        return not isinstance(self.name, KeyName)

    @classmethod
    def from_raw(cls, raw: RawKey) -> "KeyEvent":
        return cls(
            raw_char=raw.char,
            name=normalize_key(raw.char, raw),
            modifiers=Modifiers(ctrl=raw.ctrl, meta=raw.meta, shift=raw.shift),
        )


Listener = Callable[[KeyEvent], None]


class KeyInput(Protocol):
    """Capability the key source needs from the terminal input stream."""

    is_tty: bool

    def set_raw_mode(self, enabled: bool) -> None: ...

    def resume(self, callback: Callable[[RawKey], None], on_end: Callable[[], None] | None = None) -> None:
        """Start delivering keys; ``on_end`` is called once input is exhausted."""

    def pause(self) -> None: ...


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------

_ESC = readchar.key.ESC

_SEQUENCES = {
    readchar.key.UP: "up",
    readchar.key.DOWN: "down",
    readchar.key.LEFT: "left",
    readchar.key.RIGHT: "right",
    "\x1b[A": "up",
    "\x1bOA": "up",  # application mode
    "\x1b[B": "down",
    "\x1bOB": "down",
    "\x1b[C": "right",
    "\x1bOC": "right",
    "\x1b[D": "left",
    "\x1bOD": "left",
}
_MAX_SEQUENCE = max(len(s) for s in _SEQUENCES)

_SINGLE = {
    readchar.key.CR: "return",
    readchar.key.LF: "enter",
    readchar.key.TAB: "tab",
    readchar.key.SPACE: "space",
    readchar.key.BACKSPACE: "backspace",
    "\x7f": "backspace",
    "\x08": "backspace",
    _ESC: "escape",
}

_NORMALIZED = {
    "up": KeyName.UP,
    "down": KeyName.DOWN,
    "left": KeyName.LEFT,
    "right": KeyName.RIGHT,
    "return": KeyName.ENTER,
    "enter": KeyName.ENTER,
    "escape": KeyName.ESCAPE,
    "space": KeyName.SPACE,
    "tab": KeyName.TAB,
    "backspace": KeyName.BACKSPACE,
}


def _describe_char(ch: str, meta: bool = False) -> RawKey:
    name = _SINGLE.get(ch)
    if name is not None:
        return RawKey(ch, name, meta=meta)
    if "\x01" <= ch <= "\x1a":
        # Control letters: ^A is \x01 ... ^Z is \x1a
        return RawKey(ch, chr(ord(ch) + 96), ctrl=True, meta=meta)
    if ch.isascii() and ch.isalpha():
        return RawKey(ch, ch.lower(), meta=meta, shift=ch.isupper())
    if ch.isascii() and ch.isdigit():
        return RawKey(ch, ch, meta=meta)
    return RawKey(ch, None, meta=meta)


def decode_keys(text: str) -> list[RawKey]:
    """Split a chunk of terminal input into key descriptors. Never raises."""
    keys: list[RawKey] = []
    i = 0
    end = len(text)
    while i < end:
        for length in range(min(_MAX_SEQUENCE, end - i), 1, -1):
            seq = text[i:i + length]
            name = _SEQUENCES.get(seq)
            if name is not None:
                keys.append(RawKey(seq, name))
                i += length
                break
        else:
            ch = text[i]
            if ch == _ESC and i + 1 < end and text[i + 1] != _ESC:
                nxt = text[i + 1]
                if nxt in "[O":
                    # Unrecognised CSI/SS3 sequence: swallow through its final byte
                    j = i + 2
                    while j < end and not ("\x40" <= text[j] <= "\x7e"):
                        j += 1
                    keys.append(RawKey(text[i:j + 1], None))
                    i = j + 1
                else:
                    keys.append(_describe_char(nxt, meta=True))
                    i += 2
                continue
            keys.append(_describe_char(ch))
            i += 1
    return keys


def normalize_key(raw_char: str | None, descriptor: RawKey | None = None) -> KeyName | str:
    """Map a raw key to a ``KeyName`` or, failing that, its literal text.

    Total over all inputs: unrecognized keys come back as the character
    itself, the descriptor's name, or ``"unknown"``.
    """
    if descriptor is None:
        return raw_char or "unknown"
    name = _NORMALIZED.get(descriptor.name) if descriptor.name else None
    if name is not None:
        return name
    return raw_char or descriptor.name or "unknown"


# ---------------------------------------------------------------------------
# Input streams
# ---------------------------------------------------------------------------


class TerminalInput:
    """POSIX terminal input read through the running event loop.

    Descriptors the loop cannot poll (regular files, ``/dev/null``) are read
    on the loop's default executor instead.
    """

    def __init__(self, fd: int):
        self.fd = fd
        self.is_tty = os.isatty(fd)
        self._saved_attrs = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._polled = False
        self._callback: Callable[[RawKey], None] | None = None
        self._on_end: Callable[[], None] | None = None
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def set_raw_mode(self, enabled: bool) -> None:
        if enabled:
            if self._saved_attrs is not None:
                return
            self._saved_attrs = termios.tcgetattr(self.fd)
            mode = termios.tcgetattr(self.fd)
            # Character-at-a-time, no echo, Ctrl+C delivered as a key.
            # Output processing stays on so "\n" still returns the carriage.
            mode[tty.IFLAG] &= ~(termios.ICRNL | termios.IXON)
            mode[tty.LFLAG] &= ~(termios.ECHO | termios.ICANON | termios.ISIG | termios.IEXTEN)
            mode[tty.CC][termios.VMIN] = 1
            mode[tty.CC][termios.VTIME] = 0
            termios.tcsetattr(self.fd, termios.TCSANOW, mode)
        elif self._saved_attrs is not None:
            saved, self._saved_attrs = self._saved_attrs, None
            try:
                termios.tcsetattr(self.fd, termios.TCSADRAIN, saved)
            except termios.error:
                pass

    def resume(self, callback: Callable[[RawKey], None], on_end: Callable[[], None] | None = None) -> None:
        self._callback = callback
        self._on_end = on_end
        loop = asyncio.get_running_loop()
        if self._loop is loop:
            return
        self.pause()
        self._loop = loop
        try:
            loop.add_reader(self.fd, self._on_readable)
        except OSError:
            # Not pollable: epoll refuses regular files with EPERM
            self._polled = False
            self._read_in_executor()
        else:
            self._polled = True

    def pause(self) -> None:
        if self._loop is not None:
            if self._polled:
                self._loop.remove_reader(self.fd)
            self._loop = None
            self._polled = False

    def _on_readable(self) -> None:
        try:
            data = os.read(self.fd, 1024)
        except (BlockingIOError, InterruptedError):
            return
        except OSError:
            data = b""
        self._deliver(data)

    def _read_in_executor(self) -> None:
        loop = self._loop
        future = loop.run_in_executor(None, os.read, self.fd, 1024)
        future.add_done_callback(lambda f: self._on_executor_read(loop, f))

    def _on_executor_read(self, loop: asyncio.AbstractEventLoop, future: asyncio.Future) -> None:
        if future.cancelled() or self._loop is not loop:
            return
        try:
            data = future.result()
        except OSError:
            data = b""
        self._deliver(data)
        if self._loop is loop:
            self._read_in_executor()

    def _deliver(self, data: bytes) -> None:
        if not data:
            # End of input: no key can arrive any more
            self.pause()
            if self._on_end is not None:
                self._on_end()
            return
        for raw in decode_keys(self._decoder.decode(data)):
            if self._callback is not None:
                self._callback(raw)


class ReadcharInput:
    """Key input for consoles without termios, read with readchar.

    ``readchar.readkey`` blocks, so keys are read on a daemon thread and
    handed to the event loop; all key handling still runs on the loop.
    """

    def __init__(self):
        self.is_tty = sys.stdin.isatty()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._callback: Callable[[RawKey], None] | None = None
        self._on_end: Callable[[], None] | None = None
        self._thread: threading.Thread | None = None
        self._ended = False

    def set_raw_mode(self, enabled: bool) -> None:
        # readchar switches the console mode around each read
        return None

    def resume(self, callback: Callable[[RawKey], None], on_end: Callable[[], None] | None = None) -> None:
        self._callback = callback
        self._on_end = on_end
        self._loop = asyncio.get_running_loop()
        if self._ended:
            self._loop.call_soon(self._finish)
        elif self._thread is None:
            self._thread = threading.Thread(target=self._read_forever, name="nspecify-keys", daemon=True)
            self._thread.start()

    def pause(self) -> None:
        self._loop = None

    def _read_forever(self) -> None:
        while True:
            try:
                text = readchar.readkey()
            except KeyboardInterrupt:
                text = readchar.key.CTRL_C
            except EOFError:
                self._ended = True
                self._post(self._finish)
                return
            self._post(self._deliver, text)

    def _post(self, fn, *args) -> None:
        loop = self._loop
        if loop is None:
            return
        try:
            loop.call_soon_threadsafe(fn, *args)
        except RuntimeError:
            # loop closed between the check and the call
            pass

    def _deliver(self, text: str) -> None:
        if self._loop is None or self._callback is None:
            return
        for raw in decode_keys(text):
            self._callback(raw)

    def _finish(self) -> None:
        if self._loop is not None and self._on_end is not None:
            self._on_end()


def open_key_input() -> KeyInput:
    """Return the key input implementation for this process's stdin."""
    if _IS_WINDOWS:
        return ReadcharInput()
    return TerminalInput(sys.stdin.fileno())


# ---------------------------------------------------------------------------
# Key source
# ---------------------------------------------------------------------------


def _exit_success() -> None:
    raise SystemExit(0)


class KeySource:
    """Owns raw mode on a key input and distributes normalized key events.

    Raw keys are debounced: every key restarts a ``debounce_delay`` timer and
    only the last key of a burst is emitted when it fires. Ctrl+C skips the
    buffer, restores the terminal and calls ``on_interrupt``. When the input
    is exhausted, any buffered key is emitted at once and the ``on_end``
    listeners are told that no further key will come.
    """

    def __init__(self, key_input: KeyInput, *, debounce_delay: float = DEBOUNCE_DELAY, on_interrupt: Callable[[], None] | None = None, logger=None):
        self.input = key_input
        self.debounce_delay = debounce_delay
        self.logger = logger
        self._on_interrupt = on_interrupt or _exit_success
        self._raw = False
        self._listeners: dict[str, list[Listener]] = {}
        self._any_listeners: list[Listener] = []
        self._end_listeners: list[Callable[[], None]] = []
        self._buffer: list[RawKey] = []
        self._timer: asyncio.TimerHandle | None = None

    @property
    def is_raw(self) -> bool:
        return self._raw

    def enable_raw_mode(self) -> None:
        if self._raw:
            return
        if self.input.is_tty:
            self.input.set_raw_mode(True)
        try:
            self.input.resume(self._handle_raw, self._handle_end)
        except BaseException:
            if self.input.is_tty:
                self.input.set_raw_mode(False)
            raise
        self._raw = True

    def disable_raw_mode(self) -> None:
        if not self._raw:
            return
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._buffer.clear()
        if self.input.is_tty:
            self.input.set_raw_mode(False)
        self.input.pause()
        self._raw = False

    @contextlib.contextmanager
    def raw_mode(self):
        self.enable_raw_mode()
        try:
            yield self
        finally:
            self.disable_raw_mode()

    def on(self, name: KeyName | str, callback: Listener) -> None:
        self._listeners.setdefault(name, []).append(callback)

    def off(self, name: KeyName | str, callback: Listener) -> None:
        callbacks = self._listeners.get(name)
        if callbacks and callback in callbacks:
            callbacks.remove(callback)

    def on_any(self, callback: Listener) -> None:
        self._any_listeners.append(callback)

    def off_any(self, callback: Listener) -> None:
        if callback in self._any_listeners:
            self._any_listeners.remove(callback)

    def on_end(self, callback: Callable[[], None]) -> None:
        self._end_listeners.append(callback)

    def off_end(self, callback: Callable[[], None]) -> None:
        if callback in self._end_listeners:
            self._end_listeners.remove(callback)

    def emit(self, event: KeyEvent) -> None:
        for callback in list(self._listeners.get(event.name, ())):
            self._dispatch(callback, event)
        for callback in list(self._any_listeners):
            self._dispatch(callback, event)

    def _dispatch(self, callback: Callable, *args) -> None:
        try:
            callback(*args)
        except Exception as exc:
            if self.logger is not None:
                what = f"on {args[0].name!r}" if args else "at end of input"
                self.logger.debug(f"key listener {callback!r} failed {what}:", exc)

    def _handle_raw(self, raw: RawKey) -> None:
        if raw.ctrl and raw.name == "c":
            self.disable_raw_mode()
            self._on_interrupt()
            return

        self._buffer.append(raw)
        if self._timer is not None:
            self._timer.cancel()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.debounce_delay, self._flush)

    def _handle_end(self) -> None:
        if self.logger is not None:
            self.logger.debug("key input reached end of input")
        if self._timer is not None:
            self._timer.cancel()
            self._flush()
        for callback in list(self._end_listeners):
            self._dispatch(callback)

    def _flush(self) -> None:
        self._timer = None
        if not self._buffer:
            return
        # Only the last key of a burst survives
        raw = self._buffer[-1]
        self._buffer.clear()
        self.emit(KeyEvent.from_raw(raw))

    def wait_for_key(self) -> "asyncio.Future[KeyEvent]":
        """Return a future resolved by the next key event of any name.

        The future fails with ``EOFError`` if the input ends first.
        """
        future = asyncio.get_running_loop().create_future()

        def handler(event: KeyEvent) -> None:
            cleanup(None)
            if not future.done():
                future.set_result(event)

        def ended() -> None:
            cleanup(None)
            if not future.done():
                future.set_exception(EOFError("key input closed"))

        def cleanup(_) -> None:
            self.off_any(handler)
            self.off_end(ended)

        self.on_any(handler)
        self.on_end(ended)
        future.add_done_callback(cleanup)
        return future

    async def get_key(self) -> KeyEvent:
        """Press-any-key prompt: hold raw mode until one key arrives."""
        with self.raw_mode():
            return await self.wait_for_key()

    def close(self) -> None:
        self.disable_raw_mode()
        self._listeners.clear()
        self._any_listeners.clear()
        self._end_listeners.clear()
