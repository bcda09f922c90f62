"""Contains utilities to conveniently log database activity."""
from __future__ import annotations

import sys
import threading
from collections.abc import Callable
from datetime import datetime
from typing import IO

Logger = Callable[..., None]
"""Loggers are used like a regular `print`."""


def timestamp() -> str:
    """Provides the current time as a nice and normalized string."""
    return datetime.now().strftime("%y-%m-%d %H:%M:%S")


def make_logger(enabled: bool = True, *, file: IO[str] = sys.stderr, prefix: str | Callable[[], str] = "",
                with_thread: bool = False) -> Logger:
    """Creates a print-style logging function.

    Connections and pools receive their logger once when they are created and call it unconditionally afterwards. If
    logging is disabled, the logger simply does nothing.

    Parameters
    ----------
    enabled : bool, optional
        Whether logging is enabled, by default *True*
    file : IO[str], optional
        Destination of the log entries, by default ``sys.stderr``
    prefix : str | Callable[[], str], optional
        Written before each log entry. Callables (e.g. `timestamp`) are evaluated anew for every entry.
    with_thread : bool, optional
        Whether the name of the calling thread should be included after the prefix. This is useful to follow the
        connections of a pool that is shared between many request handlers.

    Returns
    -------
    Logger
        The logging function
    """
    if not enabled:
        return lambda *args, **kwargs: None

    def _log(*args, **kwargs) -> None:
        header = prefix() if callable(prefix) else prefix
        if with_thread:
            header = f"{header} [{threading.current_thread().name}]".lstrip()
        kwargs.pop("file", None)
        kwargs.setdefault("flush", True)
        if header:
            print(header, *args, file=file, **kwargs)
        else:
            print(*args, file=file, **kwargs)

    return _log


def print_if(should_print: bool, *args, use_stderr: bool = False, **kwargs) -> None:
    """A normal `print` that only prints something if `should_print` evaluates true-ish. Can optionally print to stderr."""
    if should_print:
        out_device = kwargs.pop("file", sys.stderr if use_stderr else sys.stdout)
        print(*args, file=out_device, **kwargs)
