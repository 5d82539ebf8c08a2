"""Tests for engine_spine.progress — deferred progress reporting.

Timing-based: timeouts are kept short but with wide margins so the tests
are stable on slow CI runners.
"""

from __future__ import annotations

import io
import logging
import threading
import time

import pytest

from engine_spine.progress import CURSOR_UP, SPINNER_GLYPHS, Deferred, deferred

pytestmark = pytest.mark.slow


def make_reporter(lines_out: list[str], **kwargs) -> Deferred:
    kwargs.setdefault("stream", io.StringIO())
    return Deferred(kwargs.pop("timeout", 0.25), "Hello", emit=lines_out.append, **kwargs)


class TestDeferred:
    """Timer race and output."""

    def test_fast_operation_prints_nothing(self):
        out: list[str] = []
        reporter = make_reporter(out, spinner=True, is_terminal=True)

        cancel = reporter.start()
        time.sleep(0.1)
        cancel()

        assert out == []
        assert reporter.active is False

    def test_spinner_on_terminal(self):
        out: list[str] = []
        stream = io.StringIO()
        reporter = make_reporter(out, spinner=True, spinner_interval=0.1, is_terminal=True, stream=stream)

        cancel = reporter.start()
        time.sleep(0.5)
        cancel()

        frames = [line for line in out if line.startswith("Hello ") and line[-1] in SPINNER_GLYPHS]
        assert len(frames) >= 2
        # done is written before cancel returns
        assert out[-1] == "Hello, done"
        assert out.count("Hello, done") == 1
        assert stream.getvalue().count(CURSOR_UP) == len(frames)
        assert reporter.active is True

    def test_spinner_on_non_terminal(self):
        out: list[str] = []
        reporter = make_reporter(out, timeout=0.05, spinner=True, spinner_interval=0.01, is_terminal=False)

        cancel = reporter.start()
        time.sleep(0.2)
        cancel()

        assert out == ["Hello", "Hello, done"]

    def test_relays_lines(self):
        out: list[str] = []

        def pings(stop: threading.Event):
            while not stop.wait(0.05):
                yield "Ping"

        reporter = make_reporter(out, timeout=0.05, lines=pings)

        cancel = reporter.start()
        time.sleep(0.3)
        cancel()

        assert out[0] == "Hello"
        assert len(out) >= 2
        assert set(out[1:]) == {"Ping"}

    def test_message_only_without_lines_or_spinner(self):
        out: list[str] = []
        reporter = make_reporter(out, timeout=0.01)

        cancel = reporter.start()
        time.sleep(0.1)
        cancel()

        assert out == ["Hello"]

    def test_cancel_is_idempotent(self):
        out: list[str] = []
        reporter = make_reporter(out, timeout=10)
        cancel = reporter.start()

        cancel()
        cancel()

        assert out == []

    def test_cancel_before_start(self):
        reporter = make_reporter([], timeout=10)
        reporter.cancel()

    def test_start_twice(self):
        reporter = make_reporter([], timeout=10)
        cancel = reporter.start()
        try:
            with pytest.raises(RuntimeError, match="already started"):
                reporter.start()
        finally:
            cancel()

    def test_spinner_silent_when_info_disabled(self, caplog):
        caplog.set_level(logging.WARNING, logger="engine_spine.progress")
        reporter = Deferred(0.01, "Hello", spinner=True, stream=io.StringIO(), is_terminal=True)

        cancel = reporter.start()
        time.sleep(0.1)
        cancel()

        assert reporter.active is True
        assert caplog.records == []


class TestDeferredContextManager:
    def test_cancels_on_exit(self):
        out: list[str] = []
        with deferred(0.01, "Working", spinner=True, emit=out.append, is_terminal=False) as reporter:
            time.sleep(0.1)
        assert reporter.active
        assert out == ["Working", "Working, done"]

    def test_cancels_on_error(self):
        out: list[str] = []
        with pytest.raises(ValueError):
            with deferred(10, "Working", emit=out.append):
                raise ValueError("boom")
        assert out == []
