"""JSON logging for the FundFlow backend.

Every record is one JSON object. Values passed through ``extra=`` (project,
milestone and transaction ids) become top-level keys.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

from pythonjsonlogger import jsonlogger

SERVICE_NAME = "fundflow"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
# Libraries that log every outbound request at INFO.
QUIET_LOGGERS = ("httpx", "httpcore", "stripe")


class FundFlowJsonFormatter(jsonlogger.JsonFormatter):
    """Stamps records with the service name and deployment environment."""

    def __init__(self, *args: Any, env: str | None = None, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._env = env

    def add_fields(self, log_record: dict[str, Any], record: logging.LogRecord, message_dict: dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["level"] = log_record.pop("levelname", record.levelname)
        log_record.setdefault("service", SERVICE_NAME)
        if self._env:
            log_record.setdefault("env", self._env)


def setup_logging(level: str = "INFO", *, env: str | None = None) -> None:
    """Route the root logger to a single JSON stream handler."""

    root_logger = logging.getLogger()
    # Reloads would otherwise stack handlers.
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
    root_logger.setLevel(level.upper())

    handler = logging.StreamHandler()
    handler.setFormatter(FundFlowJsonFormatter(LOG_FORMAT, env=env))
    root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    logger = logging.getLogger(name)
    if level is not None:
        logger.setLevel(level.upper())
    return logger


__all__ = ["FundFlowJsonFormatter", "SERVICE_NAME", "get_logger", "setup_logging"]
