# catalog_etl/utils/verbosity.py
"""
Verbosity Utilities: Progress Log Gates for Line-Oriented Pipelines

Intent
- The producer and the consumer both walk millions of lines; this module decides
  which of them deserve a log line:
  - the first few lines (sample of what the stream looks like)
  - every N-th line as a heartbeat, N derived from `run.verbose`
- Emit logs only when verbose >= vmin.

Design
- Dependency-free and testable; the caller owns the real logger.
"""

from __future__ import annotations

from typing import Optional


def clamp_verbose(v: Optional[int]) -> int:
    """
    Clamp verbose into [0, 10]. None => 0.
    """
    if v is None:
        return 0
    try:
        iv = int(v)
    except (TypeError, ValueError):
        return 0
    return max(0, min(10, iv))


def line_log_every_n(verbose: int) -> Optional[int]:
    """
    Heartbeat cadence:
      - verbose <= 0: None (no heartbeat)
      - verbose 1..10: every 10**(7 - verbose) lines, floored at 1000
        (verbose=3 -> every 10_000 lines, verbose>=4 -> every 1_000 lines)
    """
    v = clamp_verbose(verbose)
    if v <= 0:
        return None
    return max(1000, 10 ** max(0, 7 - v))


def sample_first_n(verbose: int) -> int:
    """
    How many leading lines to log verbatim (truncated): 0 when quiet, else min(verbose, 5).
    """
    return min(clamp_verbose(verbose), 5)


class VerbosityLogger:
    """
    Small wrapper around a real logger that gates emission by `verbose >= vmin`.

    level: one of {"debug","info","warning","error"}
    """

    def __init__(self, logger, *, verbose: int) -> None:
        self.logger = logger
        self.verbose = clamp_verbose(verbose)
        self.every_n = line_log_every_n(self.verbose)
        self.first_n = sample_first_n(self.verbose)

    def log(self, vmin: int, level: str, msg: str, *args) -> None:
        if self.verbose < int(vmin):
            return

        lv = (level or "info").lower().strip()
        if lv == "debug":
            self.logger.debug(msg, *args)
        elif lv in ("warning", "warn"):
            self.logger.warning(msg, *args)
        elif lv == "error":
            self.logger.error(msg, *args)
        else:
            self.logger.info(msg, *args)

    def is_sample_line(self, line_no: int) -> bool:
        return line_no <= self.first_n

    def is_heartbeat(self, line_no: int) -> bool:
        return self.every_n is not None and line_no > 0 and line_no % self.every_n == 0


__all__ = [
    "clamp_verbose",
    "line_log_every_n",
    "sample_first_n",
    "VerbosityLogger",
]
