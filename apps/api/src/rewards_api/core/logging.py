from __future__ import annotations

import json
import logging
import sys
from typing import Any, Dict

from loguru import logger
from opentelemetry import trace

# Attributes every stdlib LogRecord carries; anything else was passed via ``extra``.
_STDLIB_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}

_NOISY_LOGGERS = {
    "sqlalchemy.engine": logging.WARNING,
    "aiosqlite": logging.WARNING,
    "celery": logging.INFO,
    "kombu": logging.WARNING,
}


class InterceptHandler(logging.Handler):
    """Forward stdlib records (SQLAlchemy, Celery, kombu, redis) into Loguru."""

    def emit(self, record: logging.LogRecord) -> None:  # pragma: no cover - bridging glue
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Walk past the logging module so Loguru reports the real call site.
        frame, depth = logging.currentframe(), 2
        while frame is not None and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        extra = {key: value for key, value in vars(record).items() if key not in _STDLIB_RECORD_ATTRS}
        bound = logger.bind(stdlib_logger=record.name, **extra)
        bound.opt(depth=depth, exception=record.exc_info).log(level, "{}", record.getMessage())


def _trace_context() -> Dict[str, str]:
    span_context = trace.get_current_span().get_span_context()
    if not span_context.is_valid:
        return {}
    return {
        "trace_id": f"{span_context.trace_id:032x}",
        "span_id": f"{span_context.span_id:016x}",
    }


def _json_sink(message: "logger.Message") -> None:
    record = message.record
    payload: Dict[str, Any] = {
        "timestamp": record["time"].isoformat(),
        "level": record["level"].name.lower(),
        "message": record["message"],
        "logger": record["name"],
        "function": record["function"],
        **record["extra"],
        **_trace_context(),
    }

    if record["exception"] is not None:
        exc_type, exc_value, _ = record["exception"]
        payload["exception"] = {
            "type": exc_type.__name__ if exc_type else None,
            "message": str(exc_value) if exc_value else None,
        }

    sys.stdout.write(json.dumps(payload, default=str) + "\n")


def configure_logging(
    *,
    service_name: str,
    environment: str,
    version: str,
    level: str = "INFO",
    json_output: bool | None = None,
) -> None:
    """Install Loguru sinks and route stdlib logging through them.

    JSON lines are emitted outside development (or when ``json_output`` is
    forced); development keeps Loguru's coloured console format.
    """

    if json_output is None:
        json_output = environment != "development"

    logger.remove()
    logger.configure(extra={"service": service_name, "environment": environment, "version": version})
    if json_output:
        logger.add(_json_sink, level=level, backtrace=False, diagnose=False)
    else:
        logger.add(sys.stderr, level=level, backtrace=True, diagnose=False)

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name, noisy_level in _NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(noisy_level)
