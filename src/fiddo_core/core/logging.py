"""Structured log output for the loyalty core.

Every line is one JSON object. Loyalty identifiers bound through
:func:`operation_context` (or passed as keyword context on a log call) are
grouped under ``context`` so ledger events can be filtered per merchant or per
operation; any other keyword context lands under ``fields``.
"""

from __future__ import annotations

import json
import logging
import sys
from contextlib import contextmanager
from typing import Any, Dict, Iterator, TextIO

from loguru import logger
from opentelemetry import trace

CONTEXT_KEYS = (
    "operation",
    "merchant_id",
    "merchant_client_id",
    "end_user_id",
    "voucher_id",
    "job_id",
)

_QUIET_LOGGERS = ("sqlalchemy.engine", "apscheduler", "aiosqlite", "alembic.runtime.migration")


@contextmanager
def operation_context(operation: str, **identifiers: Any) -> Iterator[None]:
    """Attach the operation name and the identifiers it acts on to every log call inside."""

    bound = {key: value for key, value in identifiers.items() if value is not None}
    with logger.contextualize(operation=operation, **bound):
        yield


def build_log_payload(record: Dict[str, Any], *, service: str, environment: str) -> Dict[str, Any]:
    extra = dict(record["extra"])
    context = {key: extra.pop(key) for key in CONTEXT_KEYS if key in extra}

    payload: Dict[str, Any] = {
        "ts": record["time"].isoformat(),
        "level": record["level"].name.lower(),
        "event": record["message"],
        "source": f"{record['name']}:{record['function']}",
        "service": {"name": service, "environment": environment},
    }
    if context:
        payload["context"] = context
    if extra:
        payload["fields"] = extra

    span_context = trace.get_current_span().get_span_context()
    if span_context.is_valid:
        payload["trace"] = {
            "trace_id": format(span_context.trace_id, "032x"),
            "span_id": format(span_context.span_id, "016x"),
        }

    exception = record["exception"]
    if exception is not None and exception.value is not None:
        payload["error"] = {"type": exception.type.__name__, "message": str(exception.value)}
    return payload


class JsonLineSink:
    """Loguru sink writing one JSON document per record."""

    def __init__(self, stream: TextIO | None = None, *, service: str, environment: str) -> None:
        self._stream = stream
        self._service = service
        self._environment = environment

    def __call__(self, message: Any) -> None:
        stream = self._stream or sys.stdout
        payload = build_log_payload(message.record, service=self._service, environment=self._environment)
        stream.write(json.dumps(payload, default=str) + "\n")
        stream.flush()


class InterceptHandler(logging.Handler):
    """Forward stdlib records (SQLAlchemy, APScheduler, alembic) to loguru."""

    def emit(self, record: logging.LogRecord) -> None:  # pragma: no cover - stdlib bridge
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame is not None and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.bind(stdlib_logger=record.name).opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def configure_logging(
    *,
    service_name: str,
    environment: str,
    level: str = "INFO",
    stream: TextIO | None = None,
) -> None:
    """Replace loguru's default handler with the JSON sink and route stdlib logging through it."""

    logger.remove()
    logger.add(
        JsonLineSink(stream, service=service_name, environment=environment),
        level=level,
        backtrace=False,
        diagnose=False,
    )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


__all__ = [
    "CONTEXT_KEYS",
    "InterceptHandler",
    "JsonLineSink",
    "build_log_payload",
    "configure_logging",
    "operation_context",
]
