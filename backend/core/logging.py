"""
Structured logging for the order core.
Every entry is a JSON document with timestamp, level, message, service and logger,
plus optional user, metadata, exception and context blocks.
"""
import logging
import json
import sys
import traceback
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union
from enum import Enum


SERVICE_NAME = "order-core"


class LogLevel(Enum):
    """Log level enumeration"""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(Enum):
    """Log format enumeration"""
    SIMPLE = "simple"
    JSON = "json"


def _resolve_level(level: Union[str, LogLevel]) -> int:
    if isinstance(level, LogLevel):
        return getattr(logging, level.value)
    return getattr(logging, str(level).upper(), logging.INFO)


class StructuredLogger:
    """
    Structured logger writing to stdout, one JSON document per record by default.
    """

    def __init__(
        self,
        name: str = "order_core",
        level: Union[str, LogLevel] = LogLevel.INFO,
        log_format: LogFormat = LogFormat.JSON
    ):
        self.name = name
        self.logger = logging.getLogger(name)
        self.log_format = log_format
        self.logger.setLevel(_resolve_level(level))
        # Entries are complete documents; the root handler would print them twice.
        self.logger.propagate = False

        self.logger.handlers.clear()
        self._setup_console_handler()

    def _setup_console_handler(self):
        console_handler = logging.StreamHandler(sys.stdout)
        if self.log_format == LogFormat.JSON:
            formatter = logging.Formatter('%(message)s')
        else:
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
        console_handler.setFormatter(formatter)
        self.logger.addHandler(console_handler)

    def _create_log_entry(
        self,
        level: str,
        message: str,
        user_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        exception: Optional[BaseException] = None,
        extra_context: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": level.upper(),
            "message": message,
            "service": SERVICE_NAME,
            "logger": self.name,
        }

        if user_id:
            log_entry["user_id"] = user_id

        if metadata:
            log_entry["metadata"] = metadata

        if extra_context:
            log_entry["context"] = extra_context

        if exception:
            log_entry["exception"] = {
                "type": type(exception).__name__,
                "message": str(exception),
                "module": getattr(exception, '__module__', None),
                "traceback": "".join(traceback.format_exception(
                    type(exception), exception, exception.__traceback__)),
            }

        return log_entry

    def _log(
        self,
        level: str,
        message: str,
        user_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        exception: Optional[BaseException] = None,
        extra_context: Optional[Dict[str, Any]] = None
    ):
        if not self.logger.isEnabledFor(_resolve_level(level)):
            return
        if self.log_format == LogFormat.JSON:
            log_entry = self._create_log_entry(
                level, message, user_id, metadata, exception, extra_context
            )
            log_message = json.dumps(log_entry, default=str)
        else:
            log_message = message
            if metadata:
                log_message += f" | Metadata: {metadata}"
            if user_id:
                log_message += f" | User: {user_id}"
            if exception:
                log_message += f" | Exception: {type(exception).__name__}: {exception}"

        getattr(self.logger, level.lower())(log_message)

    def debug(self, message: str, user_id: Optional[str] = None,
              metadata: Optional[Dict[str, Any]] = None,
              extra_context: Optional[Dict[str, Any]] = None):
        self._log("debug", message, user_id, metadata, None, extra_context)

    def info(self, message: str, user_id: Optional[str] = None,
             metadata: Optional[Dict[str, Any]] = None,
             extra_context: Optional[Dict[str, Any]] = None):
        self._log("info", message, user_id, metadata, None, extra_context)

    def warning(self, message: str, user_id: Optional[str] = None,
                metadata: Optional[Dict[str, Any]] = None,
                exception: Optional[BaseException] = None,
                extra_context: Optional[Dict[str, Any]] = None):
        self._log("warning", message, user_id, metadata, exception, extra_context)

    def error(self, message: str, user_id: Optional[str] = None,
              metadata: Optional[Dict[str, Any]] = None,
              exception: Optional[BaseException] = None,
              extra_context: Optional[Dict[str, Any]] = None):
        self._log("error", message, user_id, metadata, exception, extra_context)

    def log_database_operation(
        self,
        operation: str,
        table: str,
        affected_rows: Optional[int] = None,
        user_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ):
        """Log database writes that matter for auditing (inserts, conditional updates)."""
        db_data = {
            "operation": operation,
            "table": table,
            "affected_rows": affected_rows
        }
        if metadata:
            db_data.update(metadata)

        self.info(
            f"DB {operation} on {table}",
            user_id=user_id,
            metadata=db_data,
            extra_context={"component": "database"}
        )

    def log_business_event(
        self,
        event_type: str,
        event_data: Dict[str, Any],
        user_id: Optional[str] = None
    ):
        """Log business events such as order creation, status changes and report jobs."""
        self.info(
            f"Business Event: {event_type}",
            user_id=user_id,
            metadata=event_data,
            extra_context={"component": "business_logic", "event_type": event_type}
        )


class LoggerManager:
    """
    Creates and caches structured loggers so every module shares one configuration.
    """

    _loggers: Dict[str, StructuredLogger] = {}
    _default_config: Dict[str, Any] = {
        "level": LogLevel.INFO,
        "log_format": LogFormat.JSON,
    }

    @classmethod
    def configure_defaults(
        cls,
        level: Union[str, LogLevel] = LogLevel.INFO,
        log_format: LogFormat = LogFormat.JSON
    ):
        cls._default_config = {"level": level, "log_format": log_format}
        # Reconfigure loggers created at import time.
        for name in list(cls._loggers):
            cls._loggers[name].__init__(name=name, **cls._default_config)

    @classmethod
    def get_logger(cls, name: str) -> StructuredLogger:
        if name not in cls._loggers:
            cls._loggers[name] = StructuredLogger(name=name, **cls._default_config)
        return cls._loggers[name]


def setup_logging(
    level: Union[str, LogLevel] = LogLevel.INFO,
    log_format: Union[str, LogFormat] = LogFormat.JSON
) -> None:
    """
    Configure application-wide logging.

    Args:
        level: Logging level name or LogLevel
        log_format: "json" or "simple"
    """
    if not isinstance(log_format, LogFormat):
        try:
            log_format = LogFormat(str(log_format).lower())
        except ValueError:
            log_format = LogFormat.JSON

    LoggerManager.configure_defaults(level=level, log_format=log_format)

    logging.basicConfig(
        level=_resolve_level(level),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler(sys.stdout)]
    )

    # Set specific log levels for noisy libraries
    logging.getLogger('sqlalchemy').setLevel(logging.WARNING)
    logging.getLogger('asyncio').setLevel(logging.WARNING)
    logging.getLogger('aiohttp').setLevel(logging.WARNING)


def get_structured_logger(name: str) -> StructuredLogger:
    """
    Get a structured logger instance for a module.

    Args:
        name: Logger name (typically __name__)
    """
    return LoggerManager.get_logger(name)


structured_logger = LoggerManager.get_logger("order_core")

__all__ = [
    'StructuredLogger',
    'LoggerManager',
    'LogLevel',
    'LogFormat',
    'setup_logging',
    'get_structured_logger',
    'structured_logger',
]
