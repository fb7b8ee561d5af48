from __future__ import annotations

import json
import logging
import os
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import datetime, timezone
from time import perf_counter
from types import TracebackType
from typing import Any, Dict, Iterator, List, Optional

_LOGGER_NAME = "pnodewatch"

_LEVEL_SYMBOLS: Dict[int, str] = {
    logging.DEBUG: "(?)",
    logging.INFO: "(*)",
    logging.WARNING: "(!)",
    logging.ERROR: "(x)",
    logging.CRITICAL: "(X)",
}

# Field names whose values never reach a log line in full.
_SENSITIVE_FIELDS = {"email", "token", "secret", "key", "p256dh", "auth", "endpoint"}

_LOG_CONTEXT: ContextVar[Dict[str, Any]] = ContextVar("log_context", default={})


def mask_value(name: str, value: Any) -> Any:
    if name not in _SENSITIVE_FIELDS or value is None:
        return value
    text = str(value)
    if name == "email" and "@" in text:
        local, _, domain = text.partition("@")
        return f"{local[:1]}***@{domain}"
    if len(text) <= 8:
        return "***"
    return f"{text[:4]}...{text[-2:]}"


def _masked_fields(record: logging.LogRecord) -> Dict[str, Any]:
    return {name: mask_value(name, value) for name, value in dict(getattr(record, "fields", {})).items()}


class _TextFormatter(logging.Formatter):
    """``<utc time> | LEVEL | category | (*) event | message | key: value ...``"""

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        symbol = getattr(record, "symbol", _LEVEL_SYMBOLS.get(record.levelno, "(?)"))
        event = getattr(record, "event", "")
        message = record.getMessage()
        fields = _masked_fields(record)

        parts = [
            created.strftime("%Y-%m-%d %H:%M:%S.%f")[:-3],
            f"{record.levelname:<8}",
            str(getattr(record, "category", record.name)),
        ]
        if event == "operation.step":
            parts.append(f"{symbol} >> {fields.pop('step', 'step')}")
        else:
            parts.append(f"{symbol} {event or message}")
        if event and message:
            parts.append(message)
        parts.extend(f"{name}: {value}" for name, value in fields.items())

        line = " | ".join(parts)
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


class _JsonFormatter(logging.Formatter):
    """One JSON object per line for log shippers."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "category": getattr(record, "category", record.name),
            "event": getattr(record, "event", ""),
            "message": record.getMessage(),
        }
        payload.update(_masked_fields(record))
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


@dataclass
class Operation:
    """Async context manager timing a multi-step job; steps log under the same operation name."""

    logger: "BoundLogger"
    name: str
    message: str
    fields: Dict[str, Any] = field(default_factory=dict)
    started: float = 0.0

    async def __aenter__(self) -> "Operation":
        self.started = perf_counter()
        self.logger.info("operation.start", self.message, operation=self.name, **self.fields)
        return self

    async def __aexit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        duration_ms = round((perf_counter() - self.started) * 1000, 1)
        if exc_type is None:
            self.logger.info("operation.complete", "Completed", operation=self.name, duration_ms=duration_ms)
            return
        self.logger.exception(
            "operation.error",
            "Failed",
            operation=self.name,
            duration_ms=duration_ms,
            error_type=exc_type.__name__,
        )

    def step(self, name: str, message: str, *, level: int = logging.INFO, **fields: Any) -> None:
        self.logger.log(level, "operation.step", message, operation=self.name, step=name, **fields)

    def step_warning(self, name: str, message: str, **fields: Any) -> None:
        self.step(name, message, level=logging.WARNING, **fields)

    def step_error(self, name: str, message: str, **fields: Any) -> None:
        self.step(name, message, level=logging.ERROR, **fields)


class BoundLogger:
    def __init__(self, category: str) -> None:
        self._category = category

    @property
    def category(self) -> str:
        return self._category

    @contextmanager
    def context(self, **fields: Any) -> Iterator[None]:
        """Attach ``fields`` to every record logged inside the block, from any logger."""
        token = _LOG_CONTEXT.set({**_LOG_CONTEXT.get(), **fields})
        try:
            yield
        finally:
            _LOG_CONTEXT.reset(token)

    def operation(self, name: str, message: str, **fields: Any) -> Operation:
        return Operation(self, name=name, message=message, fields=fields)

    def debug(self, event: str, message: str, **fields: Any) -> None:
        self.log(logging.DEBUG, event, message, **fields)

    def info(self, event: str, message: str, **fields: Any) -> None:
        self.log(logging.INFO, event, message, **fields)

    def warning(self, event: str, message: str, **fields: Any) -> None:
        self.log(logging.WARNING, event, message, **fields)

    def error(self, event: str, message: str, **fields: Any) -> None:
        self.log(logging.ERROR, event, message, **fields)

    def exception(self, event: str, message: str, **fields: Any) -> None:
        self.log(logging.ERROR, event, message, exc_info=True, **fields)

    def log(self, level: int, event: str, message: str, *, exc_info: Any = None, **fields: Any) -> None:
        logging.getLogger(_LOGGER_NAME).log(
            level,
            message,
            extra={
                "category": self._category,
                "event": event,
                "symbol": _LEVEL_SYMBOLS.get(level, "(?)"),
                "fields": {**_LOG_CONTEXT.get(), **fields},
            },
            exc_info=exc_info,
        )


def configure_logging(log_level: str, log_file: Optional[str], *, log_format: str = "text") -> None:
    formatter: logging.Formatter = _JsonFormatter() if log_format == "json" else _TextFormatter()

    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))
    for handler in handlers:
        handler.setFormatter(formatter)

    # Service records and third-party records (uvicorn, alembic) share handlers.
    for logger in (logging.getLogger(), logging.getLogger(_LOGGER_NAME)):
        logger.setLevel(log_level)
        logger.handlers.clear()
        for handler in handlers:
            logger.addHandler(handler)
    logging.getLogger(_LOGGER_NAME).propagate = False

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.handlers.clear()
        uvicorn_logger.propagate = True


def get_logger(category: str) -> BoundLogger:
    return BoundLogger(category)
