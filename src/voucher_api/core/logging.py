from __future__ import annotations

import json
import logging
from logging import LogRecord
from typing import Any, Dict, Mapping

from loguru import logger
from opentelemetry import trace


# Attributes every stdlib LogRecord carries; anything else was passed via ``extra=``.
_STDLIB_RECORD_ATTRS = frozenset(vars(LogRecord("", 0, "", 0, "", None, None))) | {"message", "taskName"}

_REDACTED_FIELDS = frozenset({"api_key", "x_api_key", "operator_api_key", "authorization"})
_REDACTED = "[redacted]"

_QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "aiosqlite")


class InterceptHandler(logging.Handler):
    """Forward stdlib records (uvicorn, sqlalchemy, alembic) into Loguru."""

    def emit(self, record: LogRecord) -> None:  # pragma: no cover - bridging glue
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Skip the logging module's own frames so Loguru reports the real caller.
        frame, depth = logging.currentframe(), 2
        while frame is not None and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        extra = {key: value for key, value in record.__dict__.items() if key not in _STDLIB_RECORD_ATTRS}
        message = record.getMessage().replace("{", "{{").replace("}", "}}")

        bound = logger.bind(**extra) if extra else logger
        bound.opt(depth=depth, exception=record.exc_info).log(level, message)


def _redact(extra: Mapping[str, Any]) -> Dict[str, Any]:
    return {key: (_REDACTED if key.lower() in _REDACTED_FIELDS else value) for key, value in extra.items()}


def build_log_payload(record: Mapping[str, Any], metadata: Mapping[str, str]) -> Dict[str, Any]:
    """Flatten a Loguru record into the JSON document shipped to the log pipeline."""

    payload: Dict[str, Any] = {
        "timestamp": record["time"].isoformat(),
        "level": record["level"].name.lower(),
        "message": record["message"],
        "logger": record["name"],
        "service": metadata.get("service_name", "unknown"),
        "environment": metadata.get("environment", "unknown"),
        "version": metadata.get("version", "unknown"),
    }

    span_context = trace.get_current_span().get_span_context()
    if span_context.is_valid:
        payload["trace_id"] = f"{span_context.trace_id:032x}"
        payload["span_id"] = f"{span_context.span_id:016x}"

    if record["extra"]:
        payload.update(_redact(record["extra"]))

    if record["exception"] is not None:
        payload["exception"] = repr(record["exception"].value)

    return payload


def configure_logging(*, service_name: str, environment: str, version: str, level: str = "DEBUG") -> None:
    """Route Loguru and stdlib logging to a single structured JSON stream on stdout."""

    metadata = {"service_name": service_name, "environment": environment, "version": version}

    def _sink(message: "logger.Message") -> None:
        print(json.dumps(build_log_payload(message.record, metadata), default=str))

    logger.remove()
    logger.add(_sink, level=level.upper(), backtrace=False, diagnose=False)

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
