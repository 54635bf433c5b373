# catalog_etl/utils/logging.py
"""
Run logging for the split/load pipelines

Every pipeline entrypoint calls `configure_logging_from_params(params)` once;
library modules only call `get_logger(__name__, run_id=...)`. The run_id is the
producer run timestamp or the chunk key being loaded, so lines from concurrent
consumers can be told apart.

Client chatter
--------------
A multi-GB transfer makes botocore, urllib3 and the SQLAlchemy engine log a
line per request or statement. With `run.silence_client_lv_logs: true` those
namespaces are capped at WARNING and a NoisyLibFilter on root (and on each root
handler) drops whatever still arrives below that level.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterable, Optional

_LINE_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"

_CLIENT_NAMESPACES = (
    "boto3",
    "botocore",
    "s3transfer",
    "urllib3",
    "requests",
    "sqlalchemy.engine",
)

# module state, reset by tests
_CONFIGURED = False
_CURRENT_LOG_FILE: Optional[str] = None
_SILENCE_CLIENT_LV_LOGS: Optional[bool] = None


def _under(name: str, namespaces: Iterable[str]) -> bool:
    return any(name == ns or name.startswith(ns + ".") for ns in namespaces)


class RunIdFilter(logging.Filter):
    """Stamp `record.run_id` on every record passing through the logger."""

    def __init__(self, run_id: Optional[str] = None) -> None:
        super().__init__()
        self.run_id = run_id

    def filter(self, record: logging.LogRecord) -> bool:
        record.run_id = self.run_id
        return True


class NoisyLibFilter(logging.Filter):
    """Reject records below `min_level` coming from one of `prefixes` (no-op when disabled)."""

    def __init__(self, *, enabled: bool, prefixes: list[str], min_level: int) -> None:
        super().__init__()
        self.enabled = enabled
        self.prefixes = prefixes
        self.min_level = min_level

    def filter(self, record: logging.LogRecord) -> bool:
        if not self.enabled or record.levelno >= self.min_level:
            return True
        return not _under(record.name or "", self.prefixes)


def _refresh_client_filters(enabled: bool) -> None:
    root = logging.getLogger()
    for target in [*root.handlers, root]:
        for old in [f for f in target.filters if isinstance(f, NoisyLibFilter)]:
            target.removeFilter(old)
        target.addFilter(
            NoisyLibFilter(enabled=enabled, prefixes=list(_CLIENT_NAMESPACES), min_level=logging.WARNING)
        )


def _set_client_levels(silence: bool) -> None:
    # child loggers created before this call (e.g. botocore.credentials) too
    known = [n for n in list(logging.Logger.manager.loggerDict) if _under(n, _CLIENT_NAMESPACES)]  # type: ignore[attr-defined]
    level = logging.WARNING if silence else logging.NOTSET
    for name in sorted(set(_CLIENT_NAMESPACES).union(known)):
        client = logging.getLogger(name)
        client.disabled = False
        client.propagate = True
        client.setLevel(level)
    _refresh_client_filters(silence)


def _ensure_console(root: logging.Logger, formatter: logging.Formatter) -> None:
    if any(isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler) for h in root.handlers):
        return
    console = logging.StreamHandler()
    console.setFormatter(formatter)
    root.addHandler(console)


def _ensure_file(root: logging.Logger, formatter: logging.Formatter, log_file: str) -> bool:
    path = Path(log_file)
    path.parent.mkdir(parents=True, exist_ok=True)
    resolved = path.resolve()
    if any(isinstance(h, logging.FileHandler) and Path(h.baseFilename).resolve() == resolved for h in root.handlers):
        return False
    handler = logging.FileHandler(log_file, encoding="utf-8")
    handler.setFormatter(formatter)
    root.addHandler(handler)
    return True


def configure_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    *,
    silence_client_lv_logs: bool = False,
) -> None:
    """
    Set the root level and attach the console (and optional file) handler.

    Safe to call once per pipeline and again per chunk: handlers are only
    added when missing, and client levels are only rewritten when the
    silencing flag changes.
    """
    global _CONFIGURED, _CURRENT_LOG_FILE, _SILENCE_CLIENT_LV_LOGS

    numeric = logging.getLevelName(str(level).upper())
    if not isinstance(numeric, int):
        raise ValueError(f"Invalid log level: {level}")

    root = logging.getLogger()
    root.setLevel(numeric)
    formatter = logging.Formatter(fmt=_LINE_FORMAT, datefmt=_TIME_FORMAT)

    _ensure_console(root, formatter)
    new_file_handler = False
    if log_file:
        new_file_handler = _ensure_file(root, formatter, log_file)
        _CURRENT_LOG_FILE = log_file

    if _SILENCE_CLIENT_LV_LOGS != silence_client_lv_logs:
        _set_client_levels(silence_client_lv_logs)
        _SILENCE_CLIENT_LV_LOGS = silence_client_lv_logs
    elif new_file_handler:
        _refresh_client_filters(bool(_SILENCE_CLIENT_LV_LOGS))

    _CONFIGURED = True


def configure_logging_from_params(
    params: Any,
    *,
    level: Optional[str] = None,
    log_file: Optional[str] = None,
) -> None:
    """Configure from the `run:` block; explicit arguments take precedence."""
    run_cfg = getattr(params, "run", None)
    configure_logging(
        level=level or str(getattr(run_cfg, "log_level", "INFO")),
        log_file=log_file if log_file is not None else getattr(run_cfg, "log_file", None),
        silence_client_lv_logs=bool(getattr(run_cfg, "silence_client_lv_logs", False)),
    )


def get_logger(name: str, run_id: Optional[str] = None) -> logging.Logger:
    # library code may log before any entrypoint configured anything
    if not _CONFIGURED:
        configure_logging()

    logger = logging.getLogger(name)
    if run_id is not None and not any(
        isinstance(f, RunIdFilter) and f.run_id == run_id for f in logger.filters
    ):
        logger.addFilter(RunIdFilter(run_id=run_id))
    return logger


__all__ = [
    "get_logger",
    "configure_logging",
    "configure_logging_from_params",
    "RunIdFilter",
    "NoisyLibFilter",
]
