from dataclasses import dataclass, field
from typing import List

from rich.text import Text

CURSOR_STYLE = "on dark_cyan"


@dataclass
class TextEditor:
    """Single-line editor holding the query typed by the user."""

    prefix: str = "❯❯ "
    prefix_style: str = "green"
    chars: List[str] = field(default_factory=list)
    position: int = 0

    @property
    def text(self):
        return "".join(self.chars)

    def insert(self, char):
        self.chars.insert(self.position, char)
        self.position += 1

    def backspace(self):
        if self.position > 0:
            self.position -= 1
            del self.chars[self.position]

    def delete(self):
        if self.position < len(self.chars):
            del self.chars[self.position]

    def move_left(self):
        self.position = max(0, self.position - 1)

    def move_right(self):
        self.position = min(len(self.chars), self.position + 1)

    def move_to_head(self):
        self.position = 0

    def move_to_tail(self):
        self.position = len(self.chars)

    def clear(self):
        self.chars.clear()
        self.position = 0

    def render(self):
        line = Text()
        line.append(self.prefix, style=self.prefix_style)
        line.append(self.text[: self.position])
        # The cursor sits on a trailing blank when it is past the last char.
        under_cursor = self.chars[self.position] if self.position < len(self.chars) else " "
        line.append(under_cursor, style=CURSOR_STYLE)
        line.append(self.text[self.position + 1 :])
        return line


@dataclass
class ListBox:
    """Scrollable list of rendered lines with a cursor."""

    items: List[Text] = field(default_factory=list)
    cursor: str = "❯ "
    position: int = 0
    offset: int = 0

    def replace(self, items):
        self.items = list(items)
        self.position = 0
        self.offset = 0

    def move_up(self, steps=1):
        self.position = max(0, self.position - steps)

    def move_down(self, steps=1):
        self.position = max(0, min(len(self.items) - 1, self.position + steps))

    def visible(self, height):
        """
        Rows to draw in a window of the given height, keeping the cursor in view.

        Returns a list of (is_active, text) pairs.
        """
        if height <= 0 or not self.items:
            return []
        if self.position < self.offset:
            self.offset = self.position
        elif self.position >= self.offset + height:
            self.offset = self.position - height + 1
        window = self.items[self.offset : self.offset + height]
        return [(self.offset + i == self.position, item) for i, item in enumerate(window)]

    def render(self, height):
        rows = []
        blank = " " * len(self.cursor)
        for active, item in self.visible(height):
            row = Text(self.cursor if active else blank)
            row.append_text(item)
            rows.append(row)
        return rows
