"""
Tests for key decoding, normalization and the debounced key source.
"""

from __future__ import annotations

import asyncio
import os

import pytest
from hypothesis import given, strategies as st

from conftest import DEBOUNCE, SETTLE, FakeKeyInput
from nspecify_cli.keyboard import KeyEvent, KeyName, KeySource, Modifiers, RawKey, TerminalInput, decode_keys, normalize_key


def names(text: str) -> list[str | None]:
    return [raw.name for raw in decode_keys(text)]


class TestDecodeKeys:
    def test_arrow_sequences(self):
        assert names("\x1b[A\x1b[B\x1b[C\x1b[D") == ["up", "down", "right", "left"]

    def test_application_mode_arrows(self):
        assert names("\x1bOA\x1bOB") == ["up", "down"]

    def test_carriage_return_and_line_feed(self):
        assert names("\r\n") == ["return", "enter"]

    def test_ctrl_c(self):
        assert decode_keys("\x03") == [RawKey("\x03", "c", ctrl=True)]

    def test_meta_prefix(self):
        assert decode_keys("\x1bx") == [RawKey("x", "x", meta=True)]

    def test_lone_and_double_escape(self):
        assert names("\x1b") == ["escape"]
        assert names("\x1b\x1b") == ["escape", "escape"]

    def test_unknown_csi_sequence_is_one_key(self):
        keys = decode_keys("\x1b[15~q")
        assert keys[0] == RawKey("\x1b[15~", None)
        assert keys[1].name == "q"

    def test_uppercase_sets_shift(self):
        assert decode_keys("Q") == [RawKey("Q", "q", shift=True)]

    def test_backspace_variants(self):
        assert names("\x7f\x08") == ["backspace", "backspace"]

    @given(st.text(max_size=50))
    def test_never_raises_and_consumes_input(self, text: str):
        keys = decode_keys(text)
        if text:
            assert keys
        else:
            assert keys == []


class TestNormalizeKey:
    def test_named_keys(self):
        assert normalize_key("\x1b[A", RawKey("\x1b[A", "up")) is KeyName.UP
        assert normalize_key("\r", RawKey("\r", "return")) is KeyName.ENTER
        assert normalize_key("\n", RawKey("\n", "enter")) is KeyName.ENTER
        assert normalize_key("\x1b", RawKey("\x1b", "escape")) is KeyName.ESCAPE

    def test_literal_fallbacks(self):
        assert normalize_key("x", RawKey("x", "x")) == "x"
        assert normalize_key("x") == "x"
        assert normalize_key("", RawKey("", "f5")) == "f5"
        assert normalize_key(None) == "unknown"
        assert normalize_key("", RawKey("", None)) == "unknown"

    @given(
        st.one_of(st.none(), st.text(max_size=5)),
        st.one_of(
            st.none(),
            st.builds(RawKey, char=st.text(max_size=5), name=st.one_of(st.none(), st.text(max_size=8))),
        ),
    )
    def test_total(self, raw_char, descriptor):
        result = normalize_key(raw_char, descriptor)
        assert isinstance(result, str)
        assert result

    def test_key_event_from_raw_keeps_modifiers(self):
        event = KeyEvent.from_raw(RawKey("A", "a", shift=True))
        assert event.name == "A"
        assert event.is_literal
        assert event.modifiers == Modifiers(shift=True)


class TestRawMode:
    def test_enable_and_disable_are_idempotent(self, keys, fake_input):
        keys.enable_raw_mode()
        keys.enable_raw_mode()
        assert keys.is_raw
        keys.disable_raw_mode()
        keys.disable_raw_mode()
        assert not keys.is_raw
        assert fake_input.raw_calls == [True, False]

    def test_non_tty_skips_terminal_mode(self):
        fake = FakeKeyInput(is_tty=False)
        source = KeySource(fake)
        with source.raw_mode():
            assert source.is_raw
            assert fake.callback is not None
        assert fake.raw_calls == []
        assert not source.is_raw

    def test_raw_mode_context_restores_on_error(self, keys, fake_input):
        with pytest.raises(ValueError):
            with keys.raw_mode():
                raise ValueError("boom")
        assert fake_input.raw_calls == [True, False]

    def test_close_restores_and_clears_listeners(self, keys, fake_input):
        seen = []
        keys.on(KeyName.UP, seen.append)
        keys.on_any(seen.append)
        keys.enable_raw_mode()
        keys.close()
        assert fake_input.raw_calls == [True, False]
        keys.emit(KeyEvent("\x1b[A", KeyName.UP))
        assert seen == []


class TestDebounce:
    def test_burst_emits_only_last_key(self, keys, fake_input):
        async def scenario():
            seen = []
            keys.on_any(seen.append)
            keys.enable_raw_mode()
            fake_input.press("\x1b[B")
            fake_input.press("\x1b[B")
            fake_input.press("\r")
            await asyncio.sleep(SETTLE)
            return seen

        seen = asyncio.run(scenario())
        assert [event.name for event in seen] == [KeyName.ENTER]

    def test_spaced_keys_each_emit(self, keys, fake_input):
        async def scenario():
            seen = []
            keys.on_any(seen.append)
            keys.enable_raw_mode()
            fake_input.press("\x1b[B")
            await asyncio.sleep(SETTLE)
            fake_input.press("\x1b[A")
            await asyncio.sleep(SETTLE)
            return seen

        seen = asyncio.run(scenario())
        assert [event.name for event in seen] == [KeyName.DOWN, KeyName.UP]

    def test_disable_drops_pending_keys(self, keys, fake_input):
        async def scenario():
            seen = []
            keys.on_any(seen.append)
            keys.enable_raw_mode()
            fake_input.press("a")
            keys.disable_raw_mode()
            await asyncio.sleep(SETTLE)
            return seen

        assert asyncio.run(scenario()) == []


class TestInterrupt:
    def test_ctrl_c_bypasses_buffer(self, keys, fake_input, interrupts):
        async def scenario():
            seen = []
            keys.on_any(seen.append)
            keys.enable_raw_mode()
            fake_input.press("a")
            fake_input.press("\x03")
            await asyncio.sleep(SETTLE)
            return seen

        assert asyncio.run(scenario()) == []
        assert interrupts == [1]
        assert not keys.is_raw
        assert fake_input.raw_calls == [True, False]

    def test_default_interrupt_exits_successfully(self):
        fake = FakeKeyInput()
        source = KeySource(fake, debounce_delay=DEBOUNCE)
        source.enable_raw_mode()
        with pytest.raises(SystemExit) as exc_info:
            fake.press("\x03")
        assert exc_info.value.code == 0
        assert fake.raw_calls == [True, False]


class TestListeners:
    def test_named_listeners_run_in_registration_order_then_any(self, keys):
        calls = []
        keys.on("up", lambda e: calls.append("first"))
        keys.on_any(lambda e: calls.append("any"))
        keys.on(KeyName.UP, lambda e: calls.append("second"))
        keys.emit(KeyEvent("\x1b[A", KeyName.UP))
        assert calls == ["first", "second", "any"]

    def test_duplicate_registration_fires_twice_and_off_removes_one(self, keys):
        calls = []
        listener = calls.append
        keys.on(KeyName.DOWN, listener)
        keys.on(KeyName.DOWN, listener)
        event = KeyEvent("\x1b[B", KeyName.DOWN)
        keys.emit(event)
        assert len(calls) == 2
        keys.off(KeyName.DOWN, listener)
        keys.emit(event)
        assert len(calls) == 3

    def test_off_unknown_listener_is_noop(self, keys):
        keys.off(KeyName.UP, print)
        keys.off_any(print)

    def test_failing_listener_does_not_stop_others(self, keys):
        calls = []

        def broken(event):
            raise RuntimeError("listener bug")

        keys.on(KeyName.ENTER, broken)
        keys.on(KeyName.ENTER, calls.append)
        keys.emit(KeyEvent("\r", KeyName.ENTER))
        assert len(calls) == 1

    def test_listener_removing_itself_during_emit(self, keys):
        calls = []

        def once(event):
            calls.append(event)
            keys.off_any(once)

        keys.on_any(once)
        keys.on_any(calls.append)
        event = KeyEvent("x", "x")
        keys.emit(event)
        keys.emit(event)
        assert len(calls) == 3


class TestWaitForKey:
    def test_future_resolves_with_next_event(self, keys):
        async def scenario():
            future = keys.wait_for_key()
            event = KeyEvent("q", "q")
            keys.emit(event)
            return await future, event

        result, event = asyncio.run(scenario())
        assert result is event
        assert keys._any_listeners == []

    def test_get_key_holds_raw_mode_for_one_key(self, keys, fake_input):
        async def scenario():
            task = asyncio.create_task(keys.get_key())
            await asyncio.sleep(0)
            assert keys.is_raw
            fake_input.press("q")
            return await task

        event = asyncio.run(scenario())
        assert event.name == "q"
        assert not keys.is_raw
        assert fake_input.raw_calls == [True, False]


class TestEndOfInput:
    def test_resume_failure_restores_terminal(self):
        fake = FakeKeyInput(resume_error=OSError("cannot poll"))
        source = KeySource(fake)
        with pytest.raises(OSError):
            source.enable_raw_mode()
        assert fake.raw_calls == [True, False]
        assert not source.is_raw

    def test_end_flushes_buffered_key_then_notifies(self, keys, fake_input):
        calls = []

        async def scenario():
            keys.on_any(lambda e: calls.append(e.name))
            keys.on_end(lambda: calls.append("end"))
            keys.enable_raw_mode()
            fake_input.press("\r")
            fake_input.end()
            assert calls == [KeyName.ENTER, "end"]
            await asyncio.sleep(SETTLE)

        asyncio.run(scenario())
        assert calls == [KeyName.ENTER, "end"]

    def test_off_end_unsubscribes(self, keys, fake_input):
        calls = []
        listener = lambda: calls.append("end")
        keys.on_end(listener)
        keys.off_end(listener)
        keys.enable_raw_mode()
        fake_input.end()
        assert calls == []

    def test_wait_for_key_fails_at_end_of_input(self, keys, fake_input):
        async def scenario():
            with keys.raw_mode():
                future = keys.wait_for_key()
                fake_input.end()
                with pytest.raises(EOFError):
                    await future
            return keys._any_listeners, keys._end_listeners

        assert asyncio.run(scenario()) == ([], [])


@pytest.mark.skipif(os.name == "nt", reason="POSIX file descriptors")
class TestTerminalInput:
    def open_file(self, tmp_path, data: bytes) -> int:
        path = tmp_path / "stdin"
        path.write_bytes(data)
        return os.open(path, os.O_RDONLY)

    def test_regular_file_is_not_a_tty(self, tmp_path):
        fd = self.open_file(tmp_path, b"")
        try:
            assert TerminalInput(fd).is_tty is False
        finally:
            os.close(fd)

    def test_keys_from_regular_file(self, tmp_path):
        fd = self.open_file(tmp_path, b"q")
        try:
            source = KeySource(TerminalInput(fd), debounce_delay=DEBOUNCE)
            event = asyncio.run(asyncio.wait_for(source.get_key(), 2.0))
        finally:
            os.close(fd)
        assert event.name == "q"
        assert not source.is_raw

    def test_empty_file_ends_input(self, tmp_path):
        fd = self.open_file(tmp_path, b"")
        try:
            source = KeySource(TerminalInput(fd), debounce_delay=DEBOUNCE)
            with pytest.raises(EOFError):
                asyncio.run(asyncio.wait_for(source.get_key(), 2.0))
        finally:
            os.close(fd)
        assert not source.is_raw

    def test_closed_pipe_ends_input(self):
        read_fd, write_fd = os.pipe()
        os.write(write_fd, b"\x1b[A")
        os.close(write_fd)
        try:
            source = KeySource(TerminalInput(read_fd), debounce_delay=DEBOUNCE)
            event = asyncio.run(asyncio.wait_for(source.get_key(), 2.0))
        finally:
            os.close(read_fd)
        assert event.name is KeyName.UP
