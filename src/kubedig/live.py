"""
Live tail view.

One session runs the stream workers, an aggregator thread that drains their
records into the history buffer and draws them, and the key loop on the
calling thread. The key loop owns the editor and terminal for writing; the
aggregator only reads them.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor

from . import keymap
from .keymap import Signal
from .log_streamer import StreamSupervisor
from .records import HistoryBuffer
from .shared import Guarded
from .widgets import TextEditor

logger = logging.getLogger(__name__)


class Ticker:
    """
    Fixed-interval ticks. The first tick fires immediately; ticks missed while
    the caller was busy are skipped rather than fired in a burst.
    """

    def __init__(self, interval, clock=time.monotonic, sleep=time.sleep):
        self.interval = interval
        self._clock = clock
        self._sleep = sleep
        self._deadline = None

    def wait(self):
        now = self._clock()
        if self._deadline is None:
            self._deadline = now
        elif self._deadline > now:
            self._sleep(self._deadline - now)
            now = self._deadline
        self._deadline = max(self._deadline, now) + self.interval


class LiveAggregator:
    """
    Drain the record channel into the history buffer and draw each record.

    At most one record is taken per render tick. With an empty query every
    record is drawn as is; otherwise only records containing the query are
    drawn, highlighted. Every record is buffered either way. Once the session
    is cancelled the remaining records are buffered without drawing.
    """

    def __init__(self, channel, buffer, shared_editor, shared_terminal, render_interval, cancel):
        self.channel = channel
        self.buffer = buffer
        self.shared_editor = shared_editor
        self.shared_terminal = shared_terminal
        self.cancel = cancel
        self.ticker = Ticker(render_interval)

    def run(self):
        while True:
            if not self.cancel.is_set():
                self.ticker.wait()
            record = self.channel.recv()
            if record is None:
                break

            self.buffer.append(record)
            if not self.cancel.is_set():
                self.render(record)
        return self.buffer

    def render(self, record):
        with self.shared_editor.read() as editor:
            line = record.highlight(editor.text)
            if line is None:
                return
            with self.shared_terminal.read() as terminal:
                terminal.draw_stream_and_pane(line, editor)


def read_input(terminal, shared_editor, shared_terminal):
    """Run the key loop until a key asks to leave the live view."""
    while True:
        key = terminal.read_key()
        with shared_editor.write() as editor:
            signal = keymap.live(key, editor)
            if signal is not Signal.CONTINUE:
                return signal
            with shared_terminal.write() as term:
                term.draw_pane(editor)


def run(terminal, sources, open_stream, settings):
    """
    Run one live session.

    Args:
        terminal: Terminal to draw on and read keys from
        sources: Sources to tail, as resolved by the SourceMatcher
        open_stream: callable (pod, container) -> log line iterable
        settings: Settings with timeouts and buffer capacity

    Returns:
        tuple: (Signal that ended the session, tuple of buffered LogRecords)
    """
    editor = TextEditor(prefix="❯❯ ", prefix_style="green")
    shared_editor = Guarded(editor)
    shared_terminal = Guarded(terminal)
    terminal.clear()
    terminal.draw_pane(editor)

    supervisor = StreamSupervisor(sources, open_stream, settings.log_retrieval_timeout)
    aggregator = LiveAggregator(
        supervisor.channel,
        HistoryBuffer(settings.queue_capacity),
        shared_editor,
        shared_terminal,
        settings.render_interval,
        supervisor.cancel,
    )

    with ThreadPoolExecutor(max_workers=1, thread_name_prefix="LiveAggregator") as executor:
        aggregating = executor.submit(aggregator.run)
        try:
            supervisor.launch()
            signal = read_input(terminal, shared_editor, shared_terminal)
        finally:
            supervisor.shutdown()
        buffer = aggregating.result()

    logger.info(f"Live session ended with {signal.value}, {len(buffer)} records buffered")
    return signal, buffer.snapshot()
