"""structlog over stdlib logging: JSON run log, error log and per-source files.

Library code only asks structlog for loggers. The CLI calls
:func:`configure_logging` once per process; until then per-source loggers
write nowhere but structlog's default output.
"""

from __future__ import annotations

import logging
import logging.config
from pathlib import Path
from typing import Any, Iterable

import structlog
from pythonjsonlogger.json import JsonFormatter

from .config.loader import project_root

APP_LOGGER = "trade_harvester"
SOURCE_LOGGER_PREFIX = f"{APP_LOGGER}.source"
JSON_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

_configured = False
_source_handlers: dict[str, logging.FileHandler] = {}


def log_dir() -> Path:
    return project_root() / "logs"


def run_log_path() -> Path:
    return log_dir() / "harvester.log"


def error_log_path() -> Path:
    return log_dir() / "error.log"


def source_slug(source: Any) -> str:
    """File-system safe name for a source id (``acct/42`` -> ``acct_42``)."""

    text = str(source)
    return "".join(ch if ch.isalnum() or ch in "-_" else "_" for ch in text) or "source"


def source_log_path(source: Any) -> Path:
    return log_dir() / "sources" / f"{source_slug(source)}.log"


def _console_level(verbose: bool) -> str:
    return "DEBUG" if verbose else "WARNING"


def _dict_config(verbose: bool) -> dict[str, Any]:
    def _file(path: Path, level: str) -> dict[str, Any]:
        return {
            "class": "logging.FileHandler",
            "level": level,
            "filename": str(path),
            "formatter": "json",
            "encoding": "utf-8",
        }

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"json": {"()": JsonFormatter, "fmt": JSON_FORMAT}},
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": _console_level(verbose),
                "formatter": "json",
            },
            "run_file": _file(run_log_path(), "INFO"),
            "error_file": _file(error_log_path(), "ERROR"),
        },
        "loggers": {
            APP_LOGGER: {
                "handlers": ["console", "run_file", "error_file"],
                "level": "DEBUG" if verbose else "INFO",
                "propagate": False,
            },
        },
    }


def configure_logging(verbose: bool = False) -> structlog.BoundLogger:
    """Install handlers on first call; later calls only move the verbosity."""

    global _configured
    app_logger = logging.getLogger(APP_LOGGER)
    if _configured:
        app_logger.setLevel(logging.DEBUG if verbose else logging.INFO)
        for handler in app_logger.handlers:
            if handler.get_name() == "console":
                handler.setLevel(_console_level(verbose))
        return structlog.get_logger(APP_LOGGER)

    (log_dir() / "sources").mkdir(parents=True, exist_ok=True)
    logging.config.dictConfig(_dict_config(verbose))
    # Event dicts travel as ``extra`` so the JSON formatter renders each key.
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.stdlib.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.render_to_log_kwargs,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    _configured = True
    return structlog.get_logger(APP_LOGGER)


def source_logger(source: Any) -> structlog.BoundLogger:
    """Logger bound to ``source``; mirrored into its own file once configured."""

    name = f"{SOURCE_LOGGER_PREFIX}.{source_slug(source)}"
    if _configured and name not in _source_handlers:
        path = source_log_path(source)
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(path, encoding="utf-8")
        handler.setFormatter(JsonFormatter(JSON_FORMAT))
        handler.setLevel(logging.INFO)
        logging.getLogger(name).addHandler(handler)
        _source_handlers[name] = handler
    return structlog.get_logger(name).bind(source=str(source))


def close_source_logs(sources: Iterable[Any]) -> None:
    """Detach and close the file handlers opened by :func:`source_logger`."""

    for source in sources:
        name = f"{SOURCE_LOGGER_PREFIX}.{source_slug(source)}"
        handler = _source_handlers.pop(name, None)
        if handler is None:
            continue
        logging.getLogger(name).removeHandler(handler)
        handler.close()


def tail_log(path: Path, line_count: int = 100) -> list[str]:
    if not path.exists():
        return []
    with path.open("r", encoding="utf-8", errors="ignore") as stream:
        lines = stream.readlines()
    return lines[-line_count:]


def available_source_logs() -> list[Path]:
    return sorted((log_dir() / "sources").glob("*.log"))


__all__ = [
    "APP_LOGGER",
    "available_source_logs",
    "close_source_logs",
    "configure_logging",
    "error_log_path",
    "log_dir",
    "run_log_path",
    "source_log_path",
    "source_logger",
    "source_slug",
    "tail_log",
]
