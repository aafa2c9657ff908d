"""
Terminal input and drawing.

Keys are read straight from the tty with echo, line buffering and signal
generation turned off, so ctrl+c reaches the keymaps as an ordinary key.
Drawing goes through a rich Console.
"""

import contextlib
import logging
import os
import select
import sys

from rich.console import Console
from rich.control import Control, ControlType

logger = logging.getLogger(__name__)

# Escape sequences emitted by common terminals (xterm, VT220, rxvt).
ESCAPE_SEQUENCES = {
    "\x1b[A": "up",
    "\x1b[B": "down",
    "\x1b[C": "right",
    "\x1b[D": "left",
    "\x1b[H": "home",
    "\x1b[F": "end",
    "\x1bOA": "up",
    "\x1bOB": "down",
    "\x1bOC": "right",
    "\x1bOD": "left",
    "\x1bOH": "home",
    "\x1bOF": "end",
    "\x1b[1~": "home",
    "\x1b[7~": "home",
    "\x1b[4~": "end",
    "\x1b[8~": "end",
    "\x1b[3~": "delete",
    "\x1b[5~": "pageup",
    "\x1b[6~": "pagedown",
}

# Time to wait for the rest of an escape sequence after a lone ESC byte.
ESCAPE_TIMEOUT_SECONDS = 0.02


def decode_key(data):
    """
    Translate the bytes of one key press into a key name.

    Printable characters map to themselves; control keys map to names like
    "ctrl-c", "enter", "backspace" or "esc"; known escape sequences map to
    "up", "home", "delete" and so on. Anything else is "unknown".
    """
    text = data.decode("utf-8", errors="replace")
    if not text:
        return "unknown"
    if text in ESCAPE_SEQUENCES:
        return ESCAPE_SEQUENCES[text]
    if text == "\x1b":
        return "esc"
    if text in ("\r", "\n"):
        return "enter"
    if text == "\t":
        return "tab"
    if text in ("\x7f", "\x08"):
        return "backspace"
    if len(text) == 1:
        code = ord(text)
        if 1 <= code <= 26:
            return "ctrl-" + chr(code + ord("a") - 1)
        if text.isprintable():
            return text
    return "unknown"


def _utf8_length(first_byte):
    if first_byte >= 0xF0:
        return 4
    if first_byte >= 0xE0:
        return 3
    if first_byte >= 0xC0:
        return 2
    return 1


def read_key(fd):
    """
    Block until a key is pressed on fd and return its name.

    End of input (the terminal went away) reads as ctrl-c so the caller quits.
    """
    data = os.read(fd, 1)
    if not data:
        logger.info("Input closed, quitting")
        return "ctrl-c"
    if data == b"\x1b":
        while True:
            readable, _, _ = select.select([fd], [], [], ESCAPE_TIMEOUT_SECONDS)
            if not readable:
                break
            chunk = os.read(fd, 1)
            if not chunk:
                break
            data += chunk
            # A sequence ends with a letter or "~" after its introducer.
            if len(data) >= 3 and (chr(data[-1]).isalpha() or data[-1:] == b"~"):
                break
    else:
        remaining = _utf8_length(data[0]) - 1
        while remaining > 0:
            chunk = os.read(fd, remaining)
            if not chunk:
                break
            data += chunk
            remaining = _utf8_length(data[0]) - len(data)
    return decode_key(data)


@contextlib.contextmanager
def raw_input_mode(fd):
    """Disable echo, canonical mode and signal keys on fd for the duration of the block."""
    import termios

    old_attrs = termios.tcgetattr(fd)
    new_attrs = termios.tcgetattr(fd)
    new_attrs[3] &= ~(termios.ECHO | termios.ICANON | termios.ISIG | termios.IEXTEN)
    new_attrs[6][termios.VMIN] = 1
    new_attrs[6][termios.VTIME] = 0
    termios.tcsetattr(fd, termios.TCSANOW, new_attrs)
    try:
        yield
    finally:
        termios.tcsetattr(fd, termios.TCSANOW, old_attrs)
        termios.tcflush(fd, termios.TCIFLUSH)


ERASE_LINE = Control((ControlType.ERASE_IN_LINE, 2))


class Terminal:
    """
    Draws both views.

    Live view: log lines scroll above a single prompt line. Dig view: a full
    frame of list rows with the prompt on the last row.
    """

    def __init__(self, console=None, stdin=None):
        self.console = console or Console(highlight=False)
        self.stdin = stdin or sys.stdin

    def size(self):
        width, height = self.console.size
        return width, height

    def read_key(self):
        return read_key(self.stdin.fileno())

    @contextlib.contextmanager
    def session(self):
        """Take over the terminal: raw keys, hidden cursor, cleared screen."""
        with raw_input_mode(self.stdin.fileno()):
            self.console.show_cursor(False)
            self.clear()
            try:
                yield self
            finally:
                self.clear()
                self.console.show_cursor(True)

    def clear(self):
        self.console.control(Control.clear(), Control.home())

    def draw_pane(self, editor):
        self.console.control(Control.move_to_column(0), ERASE_LINE)
        self.console.print(editor.render(), end="", no_wrap=True, overflow="crop")

    def draw_stream_and_pane(self, line, editor):
        self.console.control(Control.move_to_column(0), ERASE_LINE)
        self.console.print(line)
        self.console.print(editor.render(), end="", no_wrap=True, overflow="crop")

    def draw_frame(self, rows, editor):
        self.console.control(Control.home(), Control.clear())
        for row in rows:
            self.console.print(row, no_wrap=True, overflow="crop")
        self.console.print(editor.render(), end="", no_wrap=True, overflow="crop")
