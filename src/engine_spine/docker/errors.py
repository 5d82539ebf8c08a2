"""Classify docker daemon diagnostics into typed errors.

The docker CLI only reports failures as text on stderr. This module is the
single place that pattern-matches that text; everything else branches on
the types in :mod:`engine_spine.core.errors`.
"""

from __future__ import annotations

import re

from engine_spine.core.errors import BindConflictError, DaemonError

DAEMON_MARKER = "Error response from daemon: "

_SERVICE_RE = re.compile(r" on endpoint (\S+)")
_BIND_RE = re.compile(
    r"Bind for (\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}):(\d+) failed: port is already allocated"
)


def classify(err: BaseException) -> BaseException:
    """Map a runtime failure to a structured error.

    Errors that do not carry the daemon marker (or are already classified)
    are returned unchanged. Otherwise a ``DaemonError`` naming the endpoint
    is returned, or a ``BindConflictError`` when the daemon reports that a
    host port is already allocated.
    """
    if isinstance(err, DaemonError):
        return err

    message = str(err)
    if DAEMON_MARKER not in message:
        return err

    service = ""
    match = _SERVICE_RE.search(message)
    if match:
        service = match.group(1)

    bind = _BIND_RE.search(message)
    if bind:
        return BindConflictError(service, bind.group(1), bind.group(2), err)

    return DaemonError(service, err)


__all__ = ["DAEMON_MARKER", "classify"]
