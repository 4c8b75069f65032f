from __future__ import annotations

import sys
import threading


QUIET = 0
NORMAL = 1
VERBOSE = 2


class Reporter:
    """Console progress sink handed to the orchestrator by the CLI.

    ``info`` lines are dropped when quiet, ``detail`` lines appear only when
    verbose, ``summary`` and ``warn`` always print (warnings on stderr).
    Safe to call from worker threads.
    """

    def __init__(self, level: int = NORMAL, *, out=None, err=None):
        self.level = level
        self._out = out
        self._err = err
        self._lock = threading.Lock()

    def _emit(self, msg: str, stream) -> None:
        with self._lock:
            print(msg, file=stream, flush=True)

    def info(self, msg: str) -> None:
        if self.level >= NORMAL:
            self._emit(msg, self._out or sys.stdout)

    def detail(self, msg: str) -> None:
        if self.level >= VERBOSE:
            self._emit(msg, self._out or sys.stdout)

    def summary(self, msg: str) -> None:
        self._emit(msg, self._out or sys.stdout)

    def warn(self, msg: str) -> None:
        self._emit(f"Warning: {msg}", self._err or sys.stderr)


class SilentReporter(Reporter):
    """Default for library callers: prints nothing, warnings included."""

    def __init__(self):
        super().__init__(QUIET)

    def summary(self, msg: str) -> None:
        pass

    def warn(self, msg: str) -> None:
        pass


def format_size(num_bytes: int) -> str:
    """Human-readable byte count (``1.50 MiB``)."""
    value = float(num_bytes)
    for unit in ("B", "KiB", "MiB", "GiB", "TiB"):
        if value < 1024.0 or unit == "TiB":
            if unit == "B":
                return f"{int(value)} B"
            return f"{value:.2f} {unit}"
        value /= 1024.0
    return f"{num_bytes} B"
