"""
Tests for key decoding, the keymaps, the prompt and list widgets, the
terminal drawing calls and the reader/writer lock.
"""

import io
import os
import sys
import threading
import time

import pytest
from rich.console import Console
from rich.text import Text

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from kubedig import keymap  # noqa: E402
from kubedig.keymap import Signal  # noqa: E402
from kubedig.shared import Guarded, RWLock  # noqa: E402
from kubedig.terminal import Terminal, decode_key, read_key  # noqa: E402
from kubedig.widgets import CURSOR_STYLE, ListBox, TextEditor  # noqa: E402


def editor_with(text):
    return TextEditor(chars=list(text), position=len(text))


class TestDecodeKey:
    """Test translation of raw key bytes into key names."""

    @pytest.mark.parametrize(
        "data,expected",
        [
            (b"a", "a"),
            (b"Z", "Z"),
            (b" ", " "),
            ("é".encode(), "é"),
            (b"\x03", "ctrl-c"),
            (b"\x06", "ctrl-f"),
            (b"\x12", "ctrl-r"),
            (b"\x1b", "esc"),
            (b"\r", "enter"),
            (b"\t", "tab"),
            (b"\x7f", "backspace"),
            (b"\x1b[A", "up"),
            (b"\x1bOB", "down"),
            (b"\x1b[5~", "pageup"),
            (b"\x1b[6~", "pagedown"),
            (b"\x1b[3~", "delete"),
            (b"\x1b[H", "home"),
            (b"\x1b[4~", "end"),
            (b"\x1b[99~", "unknown"),
            (b"", "unknown"),
        ],
    )
    def test_decode(self, data, expected):
        assert decode_key(data) == expected

    def test_read_key_from_pipe(self):
        read_fd, write_fd = os.pipe()
        try:
            os.write(write_fd, b"\x1b[Bx" + "✓".encode())
            assert read_key(read_fd) == "down"
            assert read_key(read_fd) == "x"
            assert read_key(read_fd) == "✓"
        finally:
            os.close(read_fd)
            os.close(write_fd)

    def test_closed_input_reads_as_quit(self):
        """EOF on the tty must end the session instead of redrawing forever."""
        read_fd, write_fd = os.pipe()
        os.close(write_fd)
        try:
            assert read_key(read_fd) == "ctrl-c"
            assert keymap.live("ctrl-c", TextEditor()) is Signal.QUIT
        finally:
            os.close(read_fd)

    @pytest.mark.parametrize(
        "data,expected",
        [
            (b"\xe2", "\ufffd"),
            (b"\xf0\x9f", "\ufffd"),
            (b"\x1b", "esc"),
            (b"\x1b[", "unknown"),
        ],
    )
    def test_truncated_key_before_eof_returns(self, data, expected):
        read_fd, write_fd = os.pipe()
        os.write(write_fd, data)
        os.close(write_fd)
        result = []
        reader = threading.Thread(target=lambda: result.append(read_key(read_fd)), daemon=True)
        try:
            reader.start()
            reader.join(2)
            assert not reader.is_alive(), "read_key kept waiting after end of input"
            assert result == [expected]
        finally:
            os.close(read_fd)


class TestTextEditor:
    """Test the single-line query editor."""

    def test_insert_and_cursor_moves(self):
        editor = TextEditor()
        for char in "eror":
            editor.insert(char)
        editor.move_left()
        editor.move_left()
        editor.insert("r")
        assert editor.text == "error"
        assert editor.position == 3

    def test_backspace_and_delete(self):
        editor = editor_with("abc")
        editor.backspace()
        assert editor.text == "ab"
        editor.move_to_head()
        editor.backspace()
        assert editor.text == "ab"
        editor.delete()
        assert editor.text == "b"
        editor.move_to_tail()
        editor.delete()
        assert editor.text == "b"

    def test_cursor_stays_in_bounds(self):
        editor = editor_with("ab")
        editor.move_right()
        assert editor.position == 2
        editor.move_to_head()
        editor.move_left()
        assert editor.position == 0

    def test_render_marks_cursor(self):
        editor = editor_with("ab")
        editor.move_left()
        line = editor.render()
        assert line.plain == "❯❯ ab"
        cursor = [line.plain[s.start : s.end] for s in line.spans if s.style == CURSOR_STYLE]
        assert cursor == ["b"]

    def test_render_cursor_past_end(self):
        line = editor_with("ab").render()
        assert line.plain == "❯❯ ab "


class TestListBox:
    """Test the scrollable result list."""

    def items(self, count):
        return [Text(f"item {i}") for i in range(count)]

    def test_cursor_scrolls_window(self):
        listbox = ListBox()
        listbox.replace(self.items(10))

        assert [text.plain for _, text in listbox.visible(3)] == ["item 0", "item 1", "item 2"]
        listbox.move_down(4)
        rows = listbox.visible(3)
        assert [text.plain for _, text in rows] == ["item 2", "item 3", "item 4"]
        assert [active for active, _ in rows] == [False, False, True]

        listbox.move_up(4)
        assert listbox.visible(3)[0] == (True, listbox.items[0])

    def test_moves_are_clamped(self):
        listbox = ListBox()
        listbox.replace(self.items(3))
        listbox.move_down(10)
        assert listbox.position == 2
        listbox.move_up(10)
        assert listbox.position == 0

    def test_empty_list(self):
        listbox = ListBox()
        listbox.move_down()
        assert listbox.position == 0
        assert listbox.render(5) == []

    def test_replace_resets_cursor(self):
        listbox = ListBox()
        listbox.replace(self.items(5))
        listbox.move_down(3)
        listbox.replace(self.items(2))
        assert listbox.position == 0

    def test_render_prefixes_cursor(self):
        listbox = ListBox()
        listbox.replace(self.items(2))
        assert [row.plain for row in listbox.render(5)] == ["❯ item 0", "  item 1"]


class TestKeymaps:
    """Test key bindings of both views."""

    @pytest.mark.parametrize(
        "key,signal",
        [("ctrl-c", Signal.QUIT), ("ctrl-f", Signal.TO_SEARCH), ("ctrl-r", Signal.TO_LIVE), ("x", Signal.CONTINUE)],
    )
    def test_live_signals(self, key, signal):
        assert keymap.live(key, TextEditor()) is signal

    def test_live_editing(self):
        editor = editor_with("abc")
        keymap.live("ctrl-a", editor)
        keymap.live("delete", editor)
        keymap.live("ctrl-e", editor)
        keymap.live("!", editor)
        assert editor.text == "bc!"
        keymap.live("ctrl-u", editor)
        assert editor.text == ""

    def test_live_ignores_navigation(self):
        editor = editor_with("abc")
        assert keymap.live("up", editor) is Signal.CONTINUE
        assert editor.text == "abc"

    @pytest.mark.parametrize("key,signal", [("ctrl-c", Signal.QUIT), ("esc", Signal.TO_LIVE), ("q", Signal.CONTINUE)])
    def test_dig_signals(self, key, signal):
        assert keymap.dig(key, TextEditor(), ListBox()) is signal

    def test_dig_navigation(self):
        listbox = ListBox()
        listbox.replace([Text(str(i)) for i in range(30)])
        editor = TextEditor()

        keymap.dig("pagedown", editor, listbox)
        assert listbox.position == keymap.PAGE_SIZE
        keymap.dig("down", editor, listbox)
        keymap.dig("up", editor, listbox)
        keymap.dig("up", editor, listbox)
        assert listbox.position == keymap.PAGE_SIZE - 1
        keymap.dig("pageup", editor, listbox)
        assert listbox.position == 0
        assert editor.text == ""


class TestTerminalDrawing:
    """Test what reaches the console."""

    def terminal(self):
        output = io.StringIO()
        console = Console(file=output, force_terminal=True, width=40, height=8, color_system=None)
        return Terminal(console=console), output

    def test_stream_line_is_printed_above_pane(self):
        terminal, output = self.terminal()
        terminal.draw_stream_and_pane(Text("web-1/app hello"), editor_with("he"))
        text = output.getvalue()
        assert text.index("web-1/app hello") < text.index("❯❯ he")

    def test_frame_draws_rows_and_pane(self):
        terminal, output = self.terminal()
        terminal.draw_frame([Text("❯ row one"), Text("  row two")], editor_with("q"))
        text = output.getvalue()
        assert "row one" in text and "row two" in text and "❯❯ q" in text

    def test_size(self):
        terminal, _ = self.terminal()
        assert terminal.size() == (40, 8)


class TestRWLock:
    """Test the reader/writer lock guarding shared editor and terminal state."""

    def test_readers_share(self):
        lock = RWLock()
        inside = threading.Event()

        def second_reader():
            with lock.read_lock():
                inside.set()

        with lock.read_lock():
            thread = threading.Thread(target=second_reader)
            thread.start()
            assert inside.wait(2)
        thread.join(2)

    def test_writer_waits_for_readers(self):
        lock = RWLock()
        acquired = threading.Event()

        def writer():
            with lock.write_lock():
                acquired.set()

        with lock.read_lock():
            thread = threading.Thread(target=writer)
            thread.start()
            time.sleep(0.05)
            assert not acquired.is_set()
        assert acquired.wait(2)
        thread.join(2)

    def test_guarded_value(self):
        guarded = Guarded(editor_with("a"))
        with guarded.write() as editor:
            editor.insert("b")
        with guarded.read() as editor:
            assert editor.text == "ab"
