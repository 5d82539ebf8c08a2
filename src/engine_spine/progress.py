"""Deferred progress feedback for long-running operations.

A ``Deferred`` reporter stays silent unless the operation it decorates
outlives a timeout. Pulling an image that is already cached finishes in
milliseconds and prints nothing; a real download shows a message (with a
spinner, or with relayed log lines) until the operation completes.

┌──────────────────────────────────────────────────────────────────────┐
│  DEFERRED REPORTER                                                    │
│                                                                       │
│   start() ──► worker thread                                           │
│                  │                                                    │
│                  ├─ stop.wait(timeout) is True   ──► exit silently    │
│                  │                                                    │
│                  └─ timeout elapsed (Active)                          │
│                       ├─ spinner:  "<msg> ⠋" every interval           │
│                       │            until stop, then "<msg>, done"     │
│                       └─ relay:    "<msg>", then each line of         │
│                                    lines(stop) until exhausted/stop   │
│                                                                       │
│   cancel() ──► stop.set(); worker.join()                              │
└──────────────────────────────────────────────────────────────────────┘

``cancel()`` blocks until the worker has finished printing, so output of
the caller never interleaves with the reporter's, and the final
``"<msg>, done"`` line is always written before ``cancel()`` returns.

Example::

    cancel = Deferred(2.0, "installing srcd/gitbase:v0.19.0", spinner=True).start()
    try:
        gateway.pull("srcd/gitbase", "v0.19.0")
    finally:
        cancel()
"""

from __future__ import annotations

import logging
import sys
import threading
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from typing import TextIO

logger = logging.getLogger(__name__)

SPINNER_GLYPHS = "⠋⠙⠹⠸⠼⠴⠦⠧⠇⠏"
DEFAULT_SPINNER_INTERVAL = 0.2

# Moves the cursor one line up so the next frame overwrites the previous one.
CURSOR_UP = "\033[A"

LineSource = Callable[[threading.Event], Iterable[str]]


class Deferred:
    """Show a message only if an operation takes longer than ``timeout``.

    Args:
        timeout: Seconds to wait before becoming visible.
        message: Text shown once the timeout elapses.
        lines: Optional callable receiving the stop event and returning an
            iterable of lines to relay while active. It should stop producing
            once the event is set.
        spinner: Show a rotating glyph after the message. Ignored when
            ``lines`` is given.
        spinner_interval: Seconds between spinner frames.
        emit: Callable writing one line of output. Defaults to this module's
            logger at INFO; in that case the spinner is skipped entirely when
            INFO is not enabled.
        stream: Stream receiving the cursor movements of the spinner
            (``sys.stderr`` by default).
        is_terminal: Force terminal detection; defaults to ``stream.isatty()``.
    """

    def __init__(
        self,
        timeout: float,
        message: str,
        *,
        lines: LineSource | None = None,
        spinner: bool = False,
        spinner_interval: float = DEFAULT_SPINNER_INTERVAL,
        emit: Callable[[str], object] | None = None,
        stream: TextIO | None = None,
        is_terminal: bool | None = None,
    ) -> None:
        self.timeout = timeout
        self.message = message
        self.lines = lines
        self.spinner = spinner
        self.spinner_interval = spinner_interval or DEFAULT_SPINNER_INTERVAL
        self._uses_logger = emit is None
        self._emit = emit or logger.info
        self._stream = stream if stream is not None else sys.stderr
        if is_terminal is None:
            isatty = getattr(self._stream, "isatty", None)
            is_terminal = bool(isatty and isatty())
        self.is_terminal = is_terminal

        self._stop = threading.Event()
        self._lock = threading.Lock()
        self._thread: threading.Thread | None = None
        self._active = False

    @property
    def active(self) -> bool:
        """Whether the timeout elapsed before cancellation."""
        return self._active

    def start(self) -> Callable[[], None]:
        """Launch the worker and return the blocking cancel function."""
        with self._lock:
            if self._thread is not None:
                raise RuntimeError("progress reporter already started")
            self._thread = threading.Thread(target=self._run, daemon=True, name="engine-progress")
            self._thread.start()
        return self.cancel

    def cancel(self) -> None:
        """Signal the worker and wait until it has finished printing.

        Safe to call more than once; the signal is only delivered once.
        """
        with self._lock:
            if not self._stop.is_set():
                self._stop.set()
            thread = self._thread

        if thread is not None and thread is not threading.current_thread():
            thread.join()

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    def _run(self) -> None:
        if self._stop.wait(self.timeout):
            return

        self._active = True
        if self.lines is None and self.spinner:
            self._run_spinner()
        else:
            self._run_relay()

    def _run_relay(self) -> None:
        self._emit(self.message)
        if self.lines is None:
            return

        source: Iterator[str] = iter(self.lines(self._stop))
        try:
            for line in source:
                self._emit(line)
                if self._stop.is_set():
                    break
        finally:
            close = getattr(source, "close", None)
            if close is not None:
                close()

    def _run_spinner(self) -> None:
        if self._uses_logger and not logger.isEnabledFor(logging.INFO):
            self._stop.wait()
            return

        if not self.is_terminal:
            self._emit(self.message)
            self._stop.wait()
            self._emit(f"{self.message}, done")
            return

        i = 0
        while True:
            self._emit(f"{self.message} {SPINNER_GLYPHS[i % len(SPINNER_GLYPHS)]}")
            stopped = self._stop.wait(self.spinner_interval)
            self._stream.write(CURSOR_UP)
            self._stream.flush()
            if stopped:
                break
            i += 1
        self._emit(f"{self.message}, done")


@contextmanager
def deferred(timeout: float, message: str, **kwargs) -> Iterator[Deferred]:
    """Context-manager form of :class:`Deferred`.

    Example::

        with deferred(2.0, "starting srcd-cli-gitbase", spinner=True):
            orchestrator.ensure_running("srcd-cli-gitbase")
    """
    reporter = Deferred(timeout, message, **kwargs)
    cancel = reporter.start()
    try:
        yield reporter
    finally:
        cancel()


__all__ = ["Deferred", "SPINNER_GLYPHS", "deferred"]
