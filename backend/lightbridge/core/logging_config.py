"""
JSON logging for the bridge

Every record carries a correlation ID taken from a context variable. The
bridge opens a new ID for each inbound MQTT message and each HomeKit
write, so all lines produced by one reaction can be grouped. Records go
to the console and to size-rotated files under LOG_DIR.
"""
import contextvars
import logging
import logging.handlers
import re
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pythonjsonlogger import jsonlogger

from lightbridge.core.config import settings

# Context variable for correlating every log line produced by one reaction
correlation_id_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    'correlation_id', default=None
)

# Application version (can be overridden)
APP_VERSION = "1.0.0"

# Third-party loggers that are too chatty at INFO
NOISY_LOGGERS = ('pyhap', 'paho', 'uvicorn.access', 'zeroconf')

_LINE_BREAKS = re.compile(r'\r\n|\r|\n')

# Composite telemetry can be large
MAX_LOG_VALUE_LENGTH = 2000

# Log files: (file name, level override, max bytes, backups)
LOG_FILES = (
    ('lightbridge.log', None, 10 * 1024 * 1024, 7),
    ('error.log', logging.ERROR, 5 * 1024 * 1024, 5),
)


class CorrelationIdFilter(logging.Filter):
    """
    Logging filter that adds correlation_id to all log records.

    The bridge sets a fresh ID when it starts handling an inbound MQTT
    message or a HomeKit characteristic write, so the decode, mirror
    update and publish/push lines of one reaction can be grouped.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = correlation_id_var.get() or "-"
        return True


class SanitizingFilter(logging.Filter):
    """
    Collapse line breaks in log messages.

    MQTT payloads are logged verbatim, so CR/LF coming off the wire must
    not be able to forge extra log entries.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = _LINE_BREAKS.sub(" ", record.msg)

        if isinstance(record.args, tuple):
            record.args = tuple(
                _LINE_BREAKS.sub(" ", arg) if isinstance(arg, str) else arg
                for arg in record.args
            )

        return True


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """
    JSON formatter that stamps every entry with the bridge's standard fields.

    Example entry:
    {
        "timestamp": "2026-01-05T18:02:11.412Z",
        "level": "INFO",
        "message": "Pushed brightness=42 to HomeKit",
        "logger": "lightbridge.services.lightbulb_accessory",
        "correlation_id": "3f9a0c1be27d",
        "event_type": "homekit_push",
        ...extra fields...
    }
    """

    def add_fields(self, log_record: dict, record: logging.LogRecord, message_dict: dict) -> None:
        super().add_fields(log_record, record, message_dict)

        if not log_record.get('timestamp'):
            log_record['timestamp'] = datetime.fromtimestamp(record.created, timezone.utc).isoformat()
        if not log_record.get('message'):
            log_record['message'] = record.getMessage()
        log_record.update(
            level=record.levelname,
            logger=record.name,
            module=record.module,
            function=record.funcName,
            line=record.lineno,
            correlation_id=getattr(record, 'correlation_id', '-'),
        )


def _attach(handler: logging.Handler, level: int, formatter: logging.Formatter) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(formatter)
    handler.addFilter(CorrelationIdFilter())
    handler.addFilter(SanitizingFilter())
    return handler


def setup_logging(
    log_level: Optional[str] = None,
    log_dir: Optional[str] = None,
    app_version: Optional[str] = None
) -> logging.Logger:
    """
    Install JSON logging on the root logger.

    Writes to the console, a rotating lightbridge.log and an error-only
    error.log under the log directory. Any handlers already on the root
    logger are replaced.

    Args:
        log_level: Override log level (default from settings.LOG_LEVEL)
        log_dir: Override log directory (default from settings.LOG_DIR)
        app_version: Version string reported by the app

    Returns:
        The configured root logger
    """
    global APP_VERSION
    if app_version:
        APP_VERSION = app_version

    level = logging.getLevelName((log_level or settings.LOG_LEVEL).upper())
    if not isinstance(level, int):
        level = logging.INFO

    directory = Path(log_dir or settings.LOG_DIR)
    directory.mkdir(parents=True, exist_ok=True)

    formatter = CustomJsonFormatter('%(timestamp)s %(level)s %(name)s %(message)s')

    root = logging.getLogger()
    root.setLevel(level)
    for handler in list(root.handlers):
        root.removeHandler(handler)

    root.addHandler(_attach(logging.StreamHandler(), level, formatter))
    for filename, file_level, max_bytes, backups in LOG_FILES:
        handler = logging.handlers.RotatingFileHandler(
            directory / filename,
            maxBytes=max_bytes,
            backupCount=backups,
            encoding='utf-8',
        )
        root.addHandler(_attach(handler, file_level or level, formatter))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the application's configuration."""
    return logging.getLogger(name)


def new_correlation_id() -> contextvars.Token:
    """
    Start a new correlation scope with a random ID.

    Returns:
        Token that can be passed to clear_correlation_id
    """
    return correlation_id_var.set(uuid.uuid4().hex[:12])


def set_correlation_id(correlation_id: Optional[str]) -> contextvars.Token:
    """
    Set the correlation ID for the current context.

    Args:
        correlation_id: Identifier to attach to subsequent log lines

    Returns:
        Token that can be used to reset the context
    """
    return correlation_id_var.set(correlation_id)


def get_correlation_id() -> Optional[str]:
    """Get the current correlation ID from context, or None if not set."""
    return correlation_id_var.get()


def clear_correlation_id(token: contextvars.Token) -> None:
    """Reset the correlation ID using the token from set_correlation_id."""
    correlation_id_var.reset(token)


def sanitize_log_value(value: str) -> str:
    """Flatten line breaks in a value and cap its length before logging."""
    if not isinstance(value, str):
        return str(value)

    sanitized = _LINE_BREAKS.sub(" ", value)
    if len(sanitized) > MAX_LOG_VALUE_LENGTH:
        return sanitized[:MAX_LOG_VALUE_LENGTH] + "...[truncated]"
    return sanitized
