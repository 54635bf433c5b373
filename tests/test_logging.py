# tests/test_logging.py
import logging
from pathlib import Path
from types import SimpleNamespace

import pytest

import catalog_etl.utils.logging as log_mod


@pytest.fixture(autouse=True)
def _reset_logging_state(monkeypatch):
    """
    Reset module globals; leave pytest's own handlers on root alone.
    """
    monkeypatch.setattr(log_mod, "_CONFIGURED", False, raising=True)
    monkeypatch.setattr(log_mod, "_CURRENT_LOG_FILE", None, raising=True)
    monkeypatch.setattr(log_mod, "_SILENCE_CLIENT_LV_LOGS", None, raising=True)

    for name in list(logging.Logger.manager.loggerDict.keys()):  # type: ignore[attr-defined]
        lg = logging.getLogger(name)
        lg.disabled = False
        lg.propagate = True

    yield


def _count_file_handlers(root: logging.Logger) -> int:
    return sum(1 for h in root.handlers if isinstance(h, logging.FileHandler))


def test_configure_logging_idempotent_does_not_duplicate_handlers():
    root = logging.getLogger()

    before = len(root.handlers)
    log_mod.configure_logging(level="INFO", log_file=None, silence_client_lv_logs=False)
    after_first = len(root.handlers)
    assert after_first >= before

    log_mod.configure_logging(level="INFO", log_file=None, silence_client_lv_logs=False)
    assert len(root.handlers) == after_first


def test_configure_logging_adds_file_handler_once(tmp_path: Path):
    root = logging.getLogger()
    log_file = tmp_path / "logs" / "run.log"

    before_files = _count_file_handlers(root)
    log_mod.configure_logging(level="INFO", log_file=str(log_file), silence_client_lv_logs=False)
    after_files = _count_file_handlers(root)

    try:
        assert after_files == before_files + 1
        assert log_file.parent.exists()

        log_mod.configure_logging(level="INFO", log_file=str(log_file), silence_client_lv_logs=False)
        assert _count_file_handlers(root) == after_files
    finally:
        for h in list(root.handlers):
            if isinstance(h, logging.FileHandler) and Path(h.baseFilename) == log_file.resolve():
                root.removeHandler(h)
                h.close()


def test_get_logger_lazy_configures():
    assert log_mod._CONFIGURED is False
    lg = log_mod.get_logger("catalog.x")
    assert isinstance(lg, logging.Logger)
    assert log_mod._CONFIGURED is True
    assert log_mod.get_logger("catalog.x") is lg


def test_get_logger_run_id_filter_attached_once():
    lg = log_mod.get_logger("catalog.mod", run_id="2024-01-01T00:00:00")
    lg2 = log_mod.get_logger("catalog.mod", run_id="2024-01-01T00:00:00")

    assert lg2 is lg
    n = sum(isinstance(f, log_mod.RunIdFilter) and f.run_id == "2024-01-01T00:00:00" for f in lg.filters)
    assert n == 1


def test_silencing_raises_client_loggers_to_warning():
    log_mod.configure_logging(level="INFO", log_file=None, silence_client_lv_logs=True)

    assert logging.getLogger("botocore").level == logging.WARNING
    assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING

    root = logging.getLogger()
    assert any(isinstance(f, log_mod.NoisyLibFilter) for f in root.filters)

    log_mod.configure_logging(level="INFO", log_file=None, silence_client_lv_logs=False)
    assert logging.getLogger("botocore").level == logging.NOTSET


def test_noisy_filter_drops_client_info_keeps_warning():
    f = log_mod.NoisyLibFilter(enabled=True, prefixes=["botocore"], min_level=logging.WARNING)

    def rec(name: str, level: int) -> logging.LogRecord:
        return logging.LogRecord(name=name, level=level, pathname=__file__, lineno=1, msg="m", args=(), exc_info=None)

    assert f.filter(rec("botocore.credentials", logging.INFO)) is False
    assert f.filter(rec("botocore", logging.WARNING)) is True
    assert f.filter(rec("catalog_etl.core", logging.INFO)) is True
    assert f.filter(rec("botocorex", logging.INFO)) is True

    off = log_mod.NoisyLibFilter(enabled=False, prefixes=["botocore"], min_level=logging.WARNING)
    assert off.filter(rec("botocore", logging.DEBUG)) is True


def test_configure_logging_from_params_uses_run_block():
    params = SimpleNamespace(run=SimpleNamespace(log_level="WARNING", log_file=None, silence_client_lv_logs=True))
    log_mod.configure_logging_from_params(params)

    assert log_mod._SILENCE_CLIENT_LV_LOGS is True
    assert logging.getLogger().level == logging.WARNING

    log_mod.configure_logging_from_params(params, level="INFO")
    assert logging.getLogger().level == logging.INFO


def test_configure_logging_invalid_level_raises():
    with pytest.raises(ValueError):
        log_mod.configure_logging(level="NOT_A_LEVEL", log_file=None, silence_client_lv_logs=False)
