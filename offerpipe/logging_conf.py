"""Structured logging for the pipeline.

Every component logs through structlog on top of stdlib handlers rendered as
JSON lines. Workflows additionally get a per-workflow file under
``<home>/logs/workflows`` so ``offerpipe log show`` can tail a single run.
Credential-bearing keys are masked before any handler sees the event.
"""

from __future__ import annotations

import logging
import logging.config
import os
from collections import deque
from pathlib import Path
from typing import Any, Iterable, MutableMapping

import structlog

ROOT_LOGGER = "offerpipe"
SENSITIVE_KEYS = frozenset({"password", "secret", "cookies", "token", "access_token", "second_factor"})
_MASK = "***"
_configured = False


def default_log_dir() -> Path:
    home = os.environ.get("OFFERPIPE_HOME")
    if home:
        return Path(home).expanduser().resolve() / "logs"
    return Path(__file__).resolve().parents[1] / "logs"


def mask_sensitive(_logger: Any, _method: str, event_dict: MutableMapping[str, Any]) -> MutableMapping[str, Any]:
    """structlog processor hiding credential values, one level deep."""

    for key, value in list(event_dict.items()):
        if key in SENSITIVE_KEYS and value is not None:
            event_dict[key] = _MASK
        elif isinstance(value, dict):
            event_dict[key] = {k: (_MASK if k in SENSITIVE_KEYS else v) for k, v in value.items()}
    return event_dict


def _dict_config(level: str, log_dir: Path) -> dict[str, Any]:
    json_formatter = {
        "()": "pythonjsonlogger.jsonlogger.JsonFormatter",
        "fmt": "%(asctime)s %(levelname)s %(name)s %(message)s",
    }
    handlers: dict[str, dict[str, Any]] = {
        "console": {"class": "logging.StreamHandler", "level": level, "formatter": "json"},
    }
    for handler_name, file_level, filename in (
        ("pipeline_file", "INFO", "offerpipe.log"),
        ("error_file", "ERROR", "error.log"),
    ):
        handlers[handler_name] = {
            "class": "logging.FileHandler",
            "level": file_level,
            "filename": str(log_dir / filename),
            "encoding": "utf-8",
            "formatter": "json",
        }
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"json": json_formatter},
        "handlers": handlers,
        "loggers": {ROOT_LOGGER: {"handlers": list(handlers), "level": level, "propagate": False}},
    }


def configure_logging(verbose: bool = False) -> structlog.BoundLogger:
    """Install handlers once per process and return the pipeline logger."""

    global _configured
    log_dir = default_log_dir()
    (log_dir / "workflows").mkdir(parents=True, exist_ok=True)

    if not _configured:
        logging.config.dictConfig(_dict_config("DEBUG" if verbose else "INFO", log_dir))
        structlog.configure(
            processors=[
                structlog.contextvars.merge_contextvars,
                structlog.stdlib.add_log_level,
                mask_sensitive,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.format_exc_info,
                structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
            ],
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )
        _configured = True
    return structlog.get_logger(ROOT_LOGGER)


def workflow_log_path(workflow_name: str) -> Path:
    return default_log_dir() / "workflows" / f"{workflow_name}.log"


def workflow_logger(workflow_name: str, verbose: bool = False) -> structlog.BoundLogger:
    """Logger bound to one workflow; also appends to that workflow's own file."""

    configure_logging(verbose)
    log_path = workflow_log_path(workflow_name)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    name = f"{ROOT_LOGGER}.workflow.{workflow_name}"
    std_logger = logging.getLogger(name)
    target = str(log_path)
    if all(getattr(handler, "baseFilename", None) != target for handler in std_logger.handlers):
        handler = logging.FileHandler(log_path, encoding="utf-8")
        parent_handlers = logging.getLogger(ROOT_LOGGER).handlers
        if parent_handlers:
            handler.setFormatter(parent_handlers[0].formatter)
        handler.setLevel(logging.INFO)
        std_logger.addHandler(handler)

    return structlog.get_logger(name).bind(workflow=workflow_name)


def tail_log(path: Path, line_count: int = 100) -> list[str]:
    if not path.exists():
        return []
    with path.open("r", encoding="utf-8", errors="ignore") as stream:
        return list(deque(stream, maxlen=max(line_count, 0)))


def available_workflow_logs() -> Iterable[Path]:
    directory = default_log_dir() / "workflows"
    if not directory.is_dir():
        return []
    return sorted(directory.glob("*.log"))


__all__ = [
    "available_workflow_logs",
    "configure_logging",
    "default_log_dir",
    "mask_sensitive",
    "tail_log",
    "workflow_log_path",
    "workflow_logger",
]
