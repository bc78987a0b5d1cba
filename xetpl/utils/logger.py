"""
xetpl Logger
============

Structured logging for the compiler and the template handler.

Every record carries key=value context::

    2024-01-15 10:30:45 [DEBUG] Template cache hit file=skins/default/list.html
"""

from __future__ import annotations

import sys
import traceback
from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum
from typing import Any, Dict, List, Optional, Union

import orjson


class LogLevel(IntEnum):
    """Log levels."""

    DEBUG = 10
    INFO = 20
    WARNING = 30
    ERROR = 40
    CRITICAL = 50

    @classmethod
    def parse(cls, value: Union[str, int, "LogLevel"]) -> "LogLevel":
        """Accept a level name or number."""
        if isinstance(value, str):
            return cls[value.strip().upper()]
        return cls(value)


@dataclass
class LogRecord:
    """
    Structured log record.

    Attributes:
        level: Log level
        message: Log message
        timestamp: Record timestamp
        context: Additional context
        exception: Exception info
    """

    level: LogLevel
    message: str
    timestamp: datetime = field(default_factory=datetime.now)
    context: Dict[str, Any] = field(default_factory=dict)
    exception: Optional[BaseException] = None
    logger_name: str = "xetpl"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        data = {
            "timestamp": self.timestamp.isoformat(),
            "level": self.level.name,
            "message": self.message,
            "logger": self.logger_name,
        }

        if self.context:
            data["context"] = self.context

        if self.exception:
            data["exception"] = {
                "type": type(self.exception).__name__,
                "message": str(self.exception),
                "traceback": traceback.format_exception(
                    type(self.exception),
                    self.exception,
                    self.exception.__traceback__,
                ),
            }

        return data

    def to_json(self) -> str:
        """Convert to JSON string."""
        return orjson.dumps(self.to_dict(), default=str).decode()


class LogFormatter:
    """Base log formatter."""

    def format(self, record: LogRecord) -> str:
        """Format log record."""
        raise NotImplementedError


class TextFormatter(LogFormatter):
    """Plain text formatter."""

    def __init__(
        self,
        format_string: Optional[str] = None,
        date_format: str = "%Y-%m-%d %H:%M:%S",
        colors: bool = True,
    ):
        self.format_string = format_string or "{timestamp} [{level}] {message}"
        self.date_format = date_format
        self.colors = colors and sys.stderr.isatty()

        self._colors = {
            LogLevel.DEBUG: "\033[36m",
            LogLevel.INFO: "\033[32m",
            LogLevel.WARNING: "\033[33m",
            LogLevel.ERROR: "\033[31m",
            LogLevel.CRITICAL: "\033[35m",
        }
        self._reset = "\033[0m"

    def format(self, record: LogRecord) -> str:
        """Format as text."""
        timestamp = record.timestamp.strftime(self.date_format)
        level = record.level.name

        if self.colors:
            level = f"{self._colors.get(record.level, '')}{level}{self._reset}"

        message = record.message
        if record.context:
            context_str = " ".join(f"{k}={v}" for k, v in record.context.items())
            message = f"{message} {context_str}"

        output = self.format_string.format(
            timestamp=timestamp,
            level=level,
            message=message,
            logger=record.logger_name,
        )

        if record.exception:
            output += "\n" + "".join(
                traceback.format_exception(
                    type(record.exception),
                    record.exception,
                    record.exception.__traceback__,
                )
            )

        return output


class JsonFormatter(LogFormatter):
    """One JSON object per line."""

    def __init__(self, pretty: bool = False):
        self.pretty = pretty

    def format(self, record: LogRecord) -> str:
        if self.pretty:
            return orjson.dumps(record.to_dict(), default=str, option=orjson.OPT_INDENT_2).decode()
        return record.to_json()


class LogHandler:
    """Base log handler."""

    def __init__(
        self,
        formatter: Optional[LogFormatter] = None,
        level: LogLevel = LogLevel.DEBUG,
    ):
        self.formatter = formatter or TextFormatter()
        self.level = level

    def handle(self, record: LogRecord) -> None:
        if record.level >= self.level:
            self.emit(record)

    def emit(self, record: LogRecord) -> None:
        raise NotImplementedError


class StreamHandler(LogHandler):
    """Stream output handler, stderr by default."""

    def __init__(
        self,
        stream: Any = None,
        formatter: Optional[LogFormatter] = None,
        level: LogLevel = LogLevel.DEBUG,
    ):
        super().__init__(formatter, level)
        self.stream = stream or sys.stderr

    def emit(self, record: LogRecord) -> None:
        self.stream.write(self.formatter.format(record) + "\n")
        self.stream.flush()


class Logger:
    """
    Structured logger.

    Example:
        logger = get_logger("xetpl.handler")
        logger.debug("Template compiled", file="list.html", elapsed=0.004)

        logger = logger.with_context(root="/app")
        logger.warning("Include directory not found")
    """

    def __init__(
        self,
        name: str = "xetpl",
        level: LogLevel = LogLevel.WARNING,
        handlers: Optional[List[LogHandler]] = None,
    ):
        self.name = name
        self.level = level
        self._handlers = handlers if handlers is not None else []
        self._context: Dict[str, Any] = {}

    def with_context(self, **context: Any) -> "Logger":
        """Create a logger that adds ``context`` to every record."""
        new_logger = Logger(name=self.name, level=self.level, handlers=self._handlers)
        new_logger._context = {**self._context, **context}
        return new_logger

    def _log(
        self,
        level: LogLevel,
        message: str,
        exception: Optional[BaseException] = None,
        **context: Any,
    ) -> None:
        if level < self.level:
            return

        record = LogRecord(
            level=level,
            message=message,
            context={**self._context, **context},
            exception=exception,
            logger_name=self.name,
        )

        for handler in self._handlers:
            try:
                handler.handle(record)
            except Exception:
                pass  # Logging must never break a render

    def debug(self, message: str, **context: Any) -> None:
        self._log(LogLevel.DEBUG, message, **context)

    def info(self, message: str, **context: Any) -> None:
        self._log(LogLevel.INFO, message, **context)

    def warning(self, message: str, **context: Any) -> None:
        self._log(LogLevel.WARNING, message, **context)

    def error(
        self,
        message: str,
        exception: Optional[BaseException] = None,
        **context: Any,
    ) -> None:
        self._log(LogLevel.ERROR, message, exception, **context)

    def exception(self, message: str, **context: Any) -> None:
        """Log the exception being handled."""
        self._log(LogLevel.ERROR, message, sys.exc_info()[1], **context)


# Global logger registry
_loggers: Dict[str, Logger] = {}
_default_level = LogLevel.WARNING
_default_handlers: List[LogHandler] = [StreamHandler()]


def get_logger(name: str = "xetpl", level: Optional[LogLevel] = None) -> Logger:
    """
    Get or create a logger.

    New loggers share the handlers installed by configure_logging().
    """
    if name not in _loggers:
        _loggers[name] = Logger(
            name=name,
            level=level or _default_level,
            handlers=_default_handlers,
        )
    return _loggers[name]


def configure_logging(
    level: Union[str, int, LogLevel] = LogLevel.WARNING,
    format: str = "text",
    stream: Any = None,
    colors: bool = True,
) -> Logger:
    """
    Configure every xetpl logger.

    Args:
        level: Log level or its name
        format: Output format ("text" or "json")
        stream: Output stream, stderr by default
        colors: Enable colored text output on a terminal

    Returns:
        The root "xetpl" logger
    """
    global _default_level

    formatter: LogFormatter
    if format == "json":
        formatter = JsonFormatter()
    else:
        formatter = TextFormatter(colors=colors)

    _default_level = LogLevel.parse(level)
    # Replace in place so existing loggers pick up the new handler
    _default_handlers[:] = [StreamHandler(stream=stream, formatter=formatter, level=_default_level)]

    for logger in _loggers.values():
        logger.level = _default_level

    return get_logger("xetpl")
