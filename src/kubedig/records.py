import re
import zlib
from collections import deque
from dataclasses import dataclass
from typing import Iterable, Iterator, Optional, Tuple

from rich.text import Text

# Fixed palette for source prefixes. Order matters: colour_for() indexes into it.
PALETTE = (
    "red",
    "bright_red",
    "green",
    "bright_green",
    "yellow",
    "bright_yellow",
    "blue",
    "bright_blue",
    "magenta",
    "bright_magenta",
    "cyan",
    "bright_cyan",
)

HIGHLIGHT_STYLE = "black on yellow"

# ANSI escape sequences: OSC strings (terminated by BEL or ST), CSI sequences
# (ESC[ + parameter bytes + intermediate bytes + final byte) and two-byte escapes.
ANSI_ESCAPE = re.compile(r"\x1B\][^\x07\x1B]*(?:\x07|\x1B\\)|\x1B\[[0-?]*[ -/]*[@-~]|\x1B[@-Z\\-_]")
CONTROL_CHARS = re.compile(r"[\x00-\x1F\x7F-\x9F]")


def strip_ansi_codes(text):
    """
    Remove ANSI escape sequences from text.
    This includes color codes, cursor movement, window titles and other control sequences.
    """
    if text is None:
        return None
    return ANSI_ESCAPE.sub("", text)


def sanitize_log_message(message):
    """
    Make a raw log line safe to draw on a single terminal row.

    Newlines and tabs become spaces, escape sequences are stripped and any
    remaining control characters are dropped. Applying it twice gives the
    same result as applying it once.

    Args:
        message: Raw log line as read from the container

    Returns:
        Sanitized message string
    """
    if not message:
        return message

    message = message.replace("\n", " ").replace("\t", " ")
    message = strip_ansi_codes(message)
    return CONTROL_CHARS.sub("", message)


def source_key(pod_name: str, container_name: str) -> str:
    return f"{pod_name}/{container_name}"


def color_for(key: str) -> str:
    """Pick the palette colour for a source key. Stable across processes."""
    return PALETTE[zlib.crc32(key.encode("utf-8")) % len(PALETTE)]


@dataclass(frozen=True)
class LogRecord:
    """One sanitized log line tagged with the source it came from."""

    source_key: str
    color: str
    body: str

    @classmethod
    def from_line(cls, key: str, line: str, color: Optional[str] = None) -> "LogRecord":
        return cls(source_key=key, color=color or color_for(key), body=sanitize_log_message(line))

    def render(self, body: Optional[Text] = None) -> Text:
        """Build the display line: coloured source prefix, a space, then the body."""
        line = Text()
        line.append(self.source_key, style=self.color)
        line.append(" ")
        line.append_text(body if body is not None else Text(self.body))
        return line

    def highlight(self, query: str) -> Optional[Text]:
        """
        Render the record with every occurrence of query highlighted.

        Returns None when the query does not occur in the body. An empty
        query matches everything and highlights nothing.
        """
        if not query:
            return self.render()
        if query not in self.body:
            return None
        body = Text(self.body)
        body.highlight_words([query], style=HIGHLIGHT_STYLE)
        return self.render(body)


class HistoryBuffer:
    """
    Bounded FIFO store of the most recent log records.

    Appending to a full buffer evicts the oldest record first, so the buffer
    always holds the last `capacity` records in arrival order.
    """

    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError(f"History buffer capacity must be at least 1, got {capacity}")
        self.capacity = capacity
        self._records = deque(maxlen=capacity)

    def append(self, record: LogRecord) -> None:
        self._records.append(record)

    def extend(self, records: Iterable[LogRecord]) -> None:
        for record in records:
            self.append(record)

    def snapshot(self) -> Tuple[LogRecord, ...]:
        return tuple(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[LogRecord]:
        return iter(self._records)
