from __future__ import annotations

import json
import logging

from trade_harvester.config.loader import HOME_ENV
from trade_harvester.logging_conf import (
    APP_LOGGER,
    available_source_logs,
    close_source_logs,
    configure_logging,
    source_log_path,
    source_logger,
    source_slug,
    tail_log,
)


def test_source_logger_writes_json_lines(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv(HOME_ENV, str(tmp_path))

    source_logger("acct/42").info("page_fetched", page=3)
    close_source_logs(["acct/42"])

    path = source_log_path("acct/42")
    assert path == (tmp_path / "logs" / "sources" / "acct_42.log").resolve()
    payload = json.loads(tail_log(path, 1)[0])
    assert payload["message"] == "page_fetched"
    assert payload["source"] == "acct/42"
    assert payload["page"] == 3
    assert list(available_source_logs()) == [path]


def test_close_source_logs_releases_file_handlers(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv(HOME_ENV, str(tmp_path))
    source_logger(7).info("walk_done")
    py_logger = logging.getLogger(f"{APP_LOGGER}.source.7")
    assert len(py_logger.handlers) == 1

    close_source_logs([7, "never-opened"])

    assert py_logger.handlers == []


def test_reconfigure_moves_console_verbosity() -> None:
    app_logger = logging.getLogger(APP_LOGGER)
    console = next(handler for handler in app_logger.handlers if handler.get_name() == "console")

    configure_logging(verbose=True)
    try:
        assert console.level == logging.DEBUG
        assert app_logger.level == logging.DEBUG
    finally:
        configure_logging(verbose=False)

    assert console.level == logging.WARNING
    assert app_logger.level == logging.INFO


def test_source_slug_replaces_unsafe_characters() -> None:
    assert source_slug("a b/c") == "a_b_c"
    assert source_slug("") == "source"


def test_tail_log_handles_missing_and_long_files(tmp_path) -> None:
    assert tail_log(tmp_path / "missing.log") == []
    path = tmp_path / "many.log"
    path.write_text("".join(f"line {index}\n" for index in range(10)), encoding="utf-8")
    assert tail_log(path, 3) == ["line 7\n", "line 8\n", "line 9\n"]
