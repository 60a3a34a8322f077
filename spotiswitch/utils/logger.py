#!/usr/bin/env python3
"""
🔍 Logging setup for SpotiSwitch
Console output for interactive runs, rotating files under the data directory,
optional structured JSON lines for log shippers.
"""

import json
import logging
import logging.handlers
import os
import platform
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict

IS_DEV_MODE = '--dev' in sys.argv or os.getenv('SPOTISWITCH_DEV') == '1'
ENABLE_JSON_LOGS = os.getenv('SPOTISWITCH_JSON_LOGS', '0') == '1'

LOG_LEVEL = logging.DEBUG if IS_DEV_MODE else logging.INFO
ENABLE_FILE_LOGGING = os.getenv('SPOTISWITCH_FILE_LOGS', '1') != '0'
MAX_LOG_SIZE = 2 * 1024 * 1024
BACKUP_COUNT = 3

_env_level = os.getenv('SPOTISWITCH_LOG_LEVEL')
if _env_level:
    LOG_LEVEL = getattr(logging, _env_level.upper(), LOG_LEVEL)


def _get_app_log_dir() -> Path:
    """Resolve the log directory (``SPOTISWITCH_LOG_DIR`` wins)."""
    env_dir = os.getenv('SPOTISWITCH_LOG_DIR')
    if env_dir:
        return Path(env_dir)
    return Path.home() / ".spotiswitch" / "logs"


LOG_DIR = _get_app_log_dir()

# Attributes every LogRecord carries; anything else came in through ``extra``.
_RESERVED_RECORD_KEYS = frozenset({
    'name', 'msg', 'args', 'created', 'filename', 'funcName',
    'levelname', 'levelno', 'lineno', 'module', 'msecs',
    'message', 'pathname', 'process', 'processName', 'relativeCreated',
    'thread', 'threadName', 'exc_info', 'exc_text', 'stack_info',
    'taskName', 'asctime', 'no_color',
})


class ColoredFormatter(logging.Formatter):
    """Level-colored console formatter that appends ``extra`` fields."""

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
        'RESET': '\033[0m'
    }

    def __init__(self) -> None:
        super().__init__('%(asctime)s | %(levelname)s | %(name)s | %(message)s', datefmt='%H:%M:%S')

    def format(self, record: logging.LogRecord) -> str:
        rendered = super().format(record)
        extras = {k: v for k, v in record.__dict__.items() if k not in _RESERVED_RECORD_KEYS}
        if extras:
            rendered += " | " + " ".join(f"{k}={v}" for k, v in extras.items())
        if getattr(record, 'no_color', False) or not sys.stderr.isatty():
            return rendered
        color = self.COLORS.get(record.levelname, self.COLORS['RESET'])
        return f"{color}{rendered}{self.COLORS['RESET']}"


class JSONFormatter(logging.Formatter):
    """One JSON object per line, ``extra`` fields promoted to top-level keys.

    Example output:
        {"level": "WARNING", "logger": "spotiswitch.poller",
         "message": "poller.fetch.rate_limited", "status": 429,
         "timestamp": "2025-06-01T10:30:00.123000Z"}
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc)
            .isoformat().replace('+00:00', 'Z'),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }

        if record.levelno >= logging.WARNING:
            log_data['source'] = f"{record.filename}:{record.lineno}"

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key in _RESERVED_RECORD_KEYS:
                continue
            try:
                json.dumps(value)
                log_data[key] = value
            except (TypeError, ValueError):
                log_data[key] = str(value)

        return json.dumps(log_data, ensure_ascii=True, sort_keys=True)


def _file_formatter() -> logging.Formatter:
    if ENABLE_JSON_LOGS:
        return JSONFormatter()
    return logging.Formatter(
        '%(asctime)s | %(name)s | %(levelname)s | %(filename)s:%(lineno)d | %(message)s'
    )


def setup_logger(name: str = "spotiswitch") -> logging.Logger:
    """
    Configure and return a logger.

    Handlers are attached once per logger name; child loggers such as
    ``spotiswitch.poller`` propagate to the ``spotiswitch`` root set up here.

    Args:
        name: Logger name

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    logger.setLevel(LOG_LEVEL)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(LOG_LEVEL)
    console_handler.setFormatter(JSONFormatter() if ENABLE_JSON_LOGS else ColoredFormatter())
    logger.addHandler(console_handler)

    if ENABLE_FILE_LOGGING:
        try:
            LOG_DIR.mkdir(parents=True, exist_ok=True)
            file_handler = logging.handlers.RotatingFileHandler(
                LOG_DIR / "spotiswitch.log",
                maxBytes=MAX_LOG_SIZE,
                backupCount=BACKUP_COUNT,
                encoding='utf-8'
            )
            file_handler.setLevel(LOG_LEVEL)
            file_handler.setFormatter(_file_formatter())
            logger.addHandler(file_handler)

            error_handler = logging.handlers.RotatingFileHandler(
                LOG_DIR / "spotiswitch_errors.log",
                maxBytes=MAX_LOG_SIZE,
                backupCount=BACKUP_COUNT,
                encoding='utf-8'
            )
            error_handler.setLevel(logging.ERROR)
            error_handler.setFormatter(_file_formatter())
            logger.addHandler(error_handler)
        except OSError:
            # Read-only home or sandbox: console only
            pass

    return logger


def set_log_level(logger: logging.Logger, level_name: str) -> None:
    """Apply a configured level name; ``--dev`` keeps DEBUG."""
    if IS_DEV_MODE:
        return
    level = logging.getLevelName(level_name.upper())
    if not isinstance(level, int):
        logger.warning("Unknown log level %r, keeping %s", level_name, logging.getLevelName(logger.level))
        return
    logger.setLevel(level)
    for handler in logger.handlers:
        # The error file keeps its own threshold.
        if handler.level != logging.ERROR:
            handler.setLevel(level)


def log_startup(logger: logging.Logger, app_info: str) -> None:
    """Log a short banner with platform and memory details.

    Args:
        logger: Logger instance to use for output
        app_info: Application name and version
    """
    import psutil

    logger.info(f"🎵 Starting {app_info}")
    try:
        memory_gb = psutil.virtual_memory().available / (1024 ** 3)
        logger.info(f"🖥️  Platform: {platform.platform()}")
        logger.info(f"🐍 Python: {platform.python_version()}")
        logger.info(f"💾 Memory: {memory_gb:.1f}GB available")
        logger.info(f"📂 Log Directory: {LOG_DIR}")
    except Exception as e:
        logger.warning(f"Could not gather system info: {e}")


def log_shutdown(logger: logging.Logger, component_name: str) -> None:
    """Log component shutdown and flush handlers."""
    logger.info(f"🛑 Shutting down {component_name}")
    for handler in logger.handlers:
        handler.flush()


def log_structured(logger: logging.Logger, level: int, message: str, **context: Any) -> None:
    """Log ``message`` with structured context fields.

    In JSON mode the context lands as separate keys; otherwise it is appended
    as ``key=value`` pairs.

    Example:
        >>> log_structured(logger, logging.INFO, "Playback transferred",
        ...                device_id="abc123", device_name="Kitchen")
    """
    if ENABLE_JSON_LOGS:
        logger.log(level, message, extra=context)
    elif context:
        context_str = " ".join(f"{k}={v}" for k, v in context.items())
        logger.log(level, f"{message} | {context_str}")
    else:
        logger.log(level, message)
