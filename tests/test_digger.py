"""
Tests for dig mode: searching the buffered records and the search view loop.
"""

import os
import sys
from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor
from unittest.mock import patch

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from kubedig import digger  # noqa: E402
from kubedig.digger import Digger, match_chunk, search  # noqa: E402
from kubedig.keymap import Signal  # noqa: E402
from kubedig.records import HIGHLIGHT_STYLE, LogRecord  # noqa: E402


def make_records(*bodies, key="web-1/app"):
    return tuple(LogRecord.from_line(key, body) for body in bodies)


def highlighted(line):
    return [line.plain[s.start : s.end] for s in line.spans if s.style == HIGHLIGHT_STYLE]


class FakeTerminal:
    def __init__(self, keys=(), height=6):
        self.keys = list(keys)
        self.height = height
        self.frames = []
        self.rows = []

    def size(self):
        return 80, self.height

    def read_key(self):
        return self.keys.pop(0)

    def draw_frame(self, rows, editor):
        self.rows = list(rows)
        self.frames.append(([row.plain for row in rows], editor.text))


class TestSearch:
    """Test filtering and highlighting of a buffer snapshot."""

    def test_matches_in_arrival_order_with_highlight(self):
        records = make_records("start", "timeout a", "ok", "timeout b", "done")

        results = search(records, "timeout")

        assert [line.plain for line in results] == ["web-1/app timeout a", "web-1/app timeout b"]
        assert all(highlighted(line) == ["timeout"] for line in results)

    def test_empty_query_returns_every_record(self):
        records = make_records("a", "b", "c")
        assert [line.plain for line in search(records, "")] == ["web-1/app a", "web-1/app b", "web-1/app c"]

    def test_no_match(self):
        assert search(make_records("a", "b"), "zzz") == []

    def test_query_does_not_match_source_prefix(self):
        assert search(make_records("hello"), "web") == []

    def test_search_is_pure(self):
        records = make_records("x1", "y", "x2")
        snapshot = tuple(records)

        first = [line.plain for line in search(records, "x")]
        second = [line.plain for line in search(records, "x")]

        assert first == second
        assert records == snapshot

    def test_results_are_a_subsequence_of_the_buffer(self):
        records = make_records(*[f"line {i} {'hit' if i % 3 == 0 else 'miss'}" for i in range(30)])
        plains = [record.render().plain for record in records]

        results = [line.plain for line in search(records, "hit")]

        positions = [plains.index(plain) for plain in results]
        assert positions == sorted(positions)
        assert len(results) == 10

    def test_parallel_search_matches_serial(self):
        records = make_records(*[f"request {i} {'timeout' if i % 7 == 0 else 'ok'}" for i in range(50)])
        serial = [line.plain for line in search(records, "timeout")]

        with ThreadPoolExecutor(max_workers=4) as executor:
            parallel = [
                line.plain for line in search(records, "timeout", executor, chunk_size=6, parallel_threshold=10)
            ]

        assert parallel == serial
        assert len(parallel) == 8

    def test_small_input_skips_executor(self):
        class Unusable:
            def map(self, *args):
                raise AssertionError("executor should not be used")

        records = make_records("timeout", "ok")
        assert len(search(records, "timeout", Unusable())) == 1

    def test_match_chunk(self):
        assert match_chunk(["abc", "xyz", "zabcz"], "abc") == [0, 2]


class TestDigger:
    """Test the search view's key handling and redraws."""

    def test_typing_filters_results(self):
        dig = Digger(make_records("timeout a", "ok", "timeout b"), FakeTerminal())
        for key in "time":
            dig.evaluate(key)

        assert dig.editor.text == "time"
        assert [line.plain for line in dig.listbox.items] == ["web-1/app timeout a", "web-1/app timeout b"]

    def test_cursor_moves_do_not_recompute(self):
        dig = Digger(make_records("timeout a", "ok", "timeout b"), FakeTerminal())
        with patch("kubedig.digger.search", wraps=digger.search) as spy:
            dig.evaluate("t")
            assert spy.call_count == 1

            for key in ("down", "up", "pagedown", "right", "unknown", "left"):
                assert dig.evaluate(key) is Signal.CONTINUE
            assert spy.call_count == 1

            # Backspace at the head of the query changes nothing
            dig.evaluate("backspace")
            assert spy.call_count == 1
            assert dig.editor.text == "t"

    def test_clearing_query_restores_everything(self):
        dig = Digger(make_records("a", "b"), FakeTerminal())
        dig.evaluate("a")
        dig.evaluate("backspace")
        assert len(dig.listbox.items) == 2

    def test_escape_returns_to_live(self):
        terminal = FakeTerminal(keys=["t", "o", "esc"])
        assert Digger(make_records("to", "no"), terminal).run() is Signal.TO_LIVE
        rows, query = terminal.frames[-1]
        assert query == "to"
        assert rows == ["❯ web-1/app to"]

    def test_ctrl_c_quits(self):
        assert Digger(make_records("a"), FakeTerminal(keys=["ctrl-c"])).run() is Signal.QUIT

    def test_frame_leaves_room_for_prompt(self):
        terminal = FakeTerminal(keys=["esc"], height=4)
        Digger(make_records(*"abcdefgh"), terminal).run()
        rows, _ = terminal.frames[0]
        assert len(rows) == 3
        assert rows[0].startswith("❯ ")

    def test_run_uses_serial_search_for_small_buffers(self):
        terminal = FakeTerminal(keys=["esc"])
        with patch("kubedig.digger.ProcessPoolExecutor") as pool:
            assert digger.run(terminal, make_records("a", "b")) is Signal.TO_LIVE
        pool.assert_not_called()

    def test_run_searches_large_buffers_on_process_pool(self):
        hits = {0, 1000, digger.CHUNK_SIZE, 3000, digger.PARALLEL_THRESHOLD}
        records = make_records(
            *[f"request {i} {'timeout' if i in hits else 'ok'}" for i in range(digger.PARALLEL_THRESHOLD + 1)]
        )
        terminal = FakeTerminal(keys=list("timeout") + ["esc"], height=10)

        with patch("kubedig.digger.ProcessPoolExecutor", wraps=ProcessPoolExecutor) as pool:
            assert digger.run(terminal, records) is Signal.TO_LIVE

        pool.assert_called_once()
        assert pool.call_args.kwargs["mp_context"].get_start_method() == "spawn"
        rows, query = terminal.frames[-1]
        assert query == "timeout"
        expected = [f"web-1/app request {i} timeout" for i in sorted(hits)]
        assert rows == ["❯ " + expected[0]] + ["  " + row for row in expected[1:]]
        assert all(highlighted(row) == ["timeout"] for row in terminal.rows)
