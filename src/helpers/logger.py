"""Structured JSON logger for stdout collection (Kubernetes / CloudWatch)."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any


class ExporterLogger:
    """Structured JSON logger; keyword arguments become top-level fields.

    Every entry carries ``component``; :meth:`bind` derives a logger that
    also stamps fixed context such as ``account_id`` on each entry.
    """

    def __init__(
        self,
        name: str = "aws-cost-exporter",
        debug: bool = False,
        component: str = "exporter",
    ) -> None:
        self.logger = logging.getLogger(name)
        self.context: dict[str, Any] = {"component": component}
        if not self.logger.handlers:
            self.logger.setLevel(logging.DEBUG if debug else logging.INFO)
            handler = logging.StreamHandler()
            handler.setFormatter(JSONFormatter())
            self.logger.addHandler(handler)
            self.logger.propagate = False

    def bind(self, **context: Any) -> ExporterLogger:
        """Logger sharing this one's handler with extra fixed fields."""
        child = ExporterLogger.__new__(ExporterLogger)
        child.logger = self.logger
        child.context = {**self.context, **context}
        return child

    def _log(self, level: int, msg: str, **kwargs: Any) -> None:
        if not self.logger.isEnabledFor(level):
            return
        log_entry = {
            "message": msg,
            "time": datetime.now(timezone.utc).isoformat(),
            **self.context,
            **kwargs,
        }
        self.logger.log(level, log_entry)

    def debug(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.DEBUG, msg, **kwargs)

    def info(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.INFO, msg, **kwargs)

    def warning(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.WARNING, msg, **kwargs)

    def error(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.ERROR, msg, **kwargs)

    def critical(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.CRITICAL, msg, **kwargs)


class JSONFormatter(logging.Formatter):
    """One JSON object per line; amounts, dates and errors go through ``str``."""

    def format(self, record: logging.LogRecord) -> str:
        log_record = (
            dict(record.msg)
            if isinstance(record.msg, dict)
            else {"message": record.getMessage()}
        )
        log_record.setdefault("severity", record.levelname)
        log_record.setdefault("logger", record.name)
        log_record.setdefault("time", datetime.now(timezone.utc).isoformat())
        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_record, default=str)
