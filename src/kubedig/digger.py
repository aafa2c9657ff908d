"""
Dig mode: interactive full-text search over the buffered records.

The buffer snapshot is never modified. Every change of the query rescans the
whole snapshot; large snapshots are scanned in chunks on a process pool and
the matches are put back together in arrival order.
"""

import logging
import multiprocessing
import os
from concurrent.futures import ProcessPoolExecutor
from itertools import repeat

from . import keymap
from .keymap import Signal
from .widgets import ListBox, TextEditor

logger = logging.getLogger(__name__)

# Below this many records a plain loop beats shipping chunks to other processes.
PARALLEL_THRESHOLD = 4096
CHUNK_SIZE = 2048


def match_chunk(bodies, query):
    """Indices of the bodies that contain query."""
    return [index for index, body in enumerate(bodies) if query in body]


def search(records, query, executor=None, chunk_size=CHUNK_SIZE, parallel_threshold=PARALLEL_THRESHOLD):
    """
    Filter and highlight records by a plain substring query.

    Args:
        records: sequence of LogRecords in arrival order
        query: text to look for; an empty query keeps every record unhighlighted
        executor: optional concurrent.futures executor used for large inputs
        chunk_size: number of records per parallel task
        parallel_threshold: minimum number of records before the executor is used

    Returns:
        list: rendered rich Text lines of the matching records, in arrival order
    """
    if not query:
        return [record.render() for record in records]

    if executor is None or len(records) < parallel_threshold:
        matches = [record for record in records if query in record.body]
    else:
        starts = range(0, len(records), chunk_size)
        chunks = [[record.body for record in records[start : start + chunk_size]] for start in starts]
        matches = []
        # executor.map yields results in submission order
        for start, hits in zip(starts, executor.map(match_chunk, chunks, repeat(query))):
            matches.extend(records[start + index] for index in hits)

    return [record.highlight(query) for record in matches]


class Digger:
    """State of one dig session: the frozen records, the query editor and the result list."""

    def __init__(self, records, terminal, executor=None):
        self.records = tuple(records)
        self.terminal = terminal
        self.executor = executor
        self.editor = TextEditor(prefix="❯❯❯ ", prefix_style="blue")
        self.listbox = ListBox()
        self.listbox.replace(record.render() for record in self.records)
        self._last_query = ""

    def evaluate(self, key):
        signal = keymap.dig(key, self.editor, self.listbox)
        query = self.editor.text
        # Cursor moves and no-op edits leave the results alone.
        if query != self._last_query:
            self._last_query = query
            self.listbox.replace(search(self.records, query, self.executor))
            logger.debug(f"Query {query!r} matched {len(self.listbox.items)} of {len(self.records)} records")
        return signal

    def render(self):
        _, height = self.terminal.size()
        self.terminal.draw_frame(self.listbox.render(height - 1), self.editor)

    def run(self):
        self.render()
        while True:
            signal = self.evaluate(self.terminal.read_key())
            if signal is not Signal.CONTINUE:
                return signal
            self.render()


def run(terminal, records):
    """
    Run dig mode over a buffer snapshot until the user leaves it.

    Returns:
        Signal: TO_LIVE to resume tailing, QUIT to exit
    """
    logger.info(f"Digging into {len(records)} records")
    if len(records) < PARALLEL_THRESHOLD:
        return Digger(records, terminal).run()

    workers = os.cpu_count() or 1
    with ProcessPoolExecutor(max_workers=workers, mp_context=multiprocessing.get_context("spawn")) as executor:
        return Digger(records, terminal, executor).run()
