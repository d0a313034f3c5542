# report_pipeline/log.py
#
# Shared extraction logger with elapsed time and level.
#
# Design decisions:
#   - Single log() function used by every module, no logging framework: the
#     extractor is a short batch job and the log sink is owned by whoever runs it.
#   - Elapsed time is shown so the operator can see how long each phase takes
#     (retry sleeps included).
#   - INFO goes to stdout; WARN and ERROR go to stderr so a caller capturing
#     stdout still sees problems on the terminal.
#   - Thread-safe: sys.stdout.write of a single string is atomic in CPython.
from __future__ import annotations

import sys
import time

_start = time.monotonic()

_STDERR_LEVELS = frozenset({"WARN", "ERROR"})


def log(message: str, level: str = "INFO") -> None:
    """Write a timestamped log line.

    Args:
        message: Text of the log line.
        level:   INFO, WARN or ERROR.
    """
    elapsed = time.monotonic() - _start
    minutes, seconds = divmod(int(elapsed), 60)
    stream = sys.stderr if level in _STDERR_LEVELS else sys.stdout
    stream.write(f"[extract {minutes:02d}:{seconds:02d}] {level} {message}\n")
    stream.flush()


def warn(message: str) -> None:
    """Shorthand for ``log(message, "WARN")``."""
    log(message, "WARN")
