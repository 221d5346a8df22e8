"""JSON-line file logging for glprobe and crash hooks for the CLI."""

from __future__ import annotations

import faulthandler
import json
import logging
import logging.handlers
import sys
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .config import data_root

ROOT_LOGGER = "glprobe"
# Extras attached by the session, the hardware sampler and the crash hooks.
RECORD_FIELDS = ("event", "state", "iteration", "group", "crash_id")


def log_dir() -> Path:
    path = data_root() / "logs"
    path.mkdir(parents=True, exist_ok=True)
    return path


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts_utc": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        payload.update({name: getattr(record, name) for name in RECORD_FIELDS if hasattr(record, name)})
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True, default=str)


def configure_logging(keep_files: int = 7, console: bool = False) -> logging.Logger:
    """Attach the rotating JSON file handler, plus stderr when asked, once per process."""
    logger = logging.getLogger(ROOT_LOGGER)
    if logger.handlers:
        return logger

    logger.setLevel(logging.INFO)
    file_handler = logging.handlers.TimedRotatingFileHandler(
        filename=str(log_dir() / "glprobe.log"),
        when="midnight",
        backupCount=max(2, keep_files),
        encoding="utf-8",
    )
    file_handler.setFormatter(JsonFormatter())
    logger.addHandler(file_handler)

    if console:
        stream = logging.StreamHandler()
        stream.setFormatter(logging.Formatter("%(levelname)s %(name)s %(message)s"))
        logger.addHandler(stream)

    logger.info("logging configured", extra={"event": "logging_configured"})
    return logger


def get_logger(name: str | None = None) -> logging.Logger:
    return logging.getLogger(f"{ROOT_LOGGER}.{name}" if name else ROOT_LOGGER)


def install_crash_hooks() -> None:
    """Log uncaught main-thread and worker-thread exceptions under a crash id; dump faults to ``fault.log``."""
    logger = get_logger("crash")

    def _report(kind: str, exc_type, exc_value, exc_tb) -> None:
        crash_id = str(uuid.uuid4())
        logger.critical(
            "%s crash_id=%s",
            kind,
            crash_id,
            exc_info=(exc_type, exc_value, exc_tb),
            extra={"event": kind, "crash_id": crash_id},
        )

    def _excepthook(exc_type, exc_value, exc_tb) -> None:
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc_value, exc_tb)
            return
        _report("uncaught_exception", exc_type, exc_value, exc_tb)

    def _thread_hook(args: threading.ExceptHookArgs) -> None:
        _report("thread_exception", args.exc_type, args.exc_value, args.exc_traceback)

    sys.excepthook = _excepthook
    threading.excepthook = _thread_hook
    faulthandler.enable(file=(log_dir() / "fault.log").open("a", encoding="utf-8"), all_threads=True)
