"""
Engine Logging

Every engine module logs through a child of the ``edugame`` logger. Output
is either a pipe-separated text line or one JSON object per record, and
records emitted through a LoggerAdapter carry session context (session,
game and user ids) that the JSON formatter lifts to the top level.
"""

import os
import sys
import json
import time
import logging
import datetime
import functools
import asyncio
from typing import Dict, Any, List, Optional, Union, Callable, TypeVar

ROOT_LOGGER_NAME = "edugame"
DEFAULT_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-30s | %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

F = TypeVar('F', bound=Callable[..., Any])

__all__ = [
    'configure_logger',
    'get_logger',
    'LoggerAdapter',
    'JsonFormatter',
    'with_context',
    'app_logger',
    'log_execution_time'
]


class JsonFormatter(logging.Formatter):
    """Render a record as a single-line (or indented) JSON object."""

    def __init__(self, datefmt: Optional[str] = None, *, indent: Optional[int] = None):
        super().__init__(datefmt=datefmt)
        self.indent = indent

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.datetime.fromtimestamp(record.created).isoformat(),
            "name": record.name,
            "level": record.levelname,
            "message": record.getMessage(),
            "module": record.module,
            "line": record.lineno
        }

        if record.exc_info and record.exc_info[0] is not None:
            exc_type, exc_value, _ = record.exc_info
            entry["exception"] = {
                "type": exc_type.__name__,
                "message": str(exc_value),
                "traceback": self.formatException(record.exc_info)
            }

        context = getattr(record, "data", None)
        if isinstance(context, dict):
            entry.update(context)

        return json.dumps(entry, indent=self.indent, default=str)


def _build_handlers(formatter: logging.Formatter, log_file: Optional[str],
                    console_output: bool) -> List[logging.Handler]:
    handlers: List[logging.Handler] = []
    if console_output:
        handlers.append(logging.StreamHandler(sys.stdout))

    if log_file:
        directory = os.path.dirname(log_file)
        try:
            if directory:
                os.makedirs(directory, exist_ok=True)
            handlers.append(logging.FileHandler(log_file))
        except OSError as e:
            logging.getLogger(f"{ROOT_LOGGER_NAME}.logging").warning(
                f"Log file {log_file} unavailable, logging to console only: {e}"
            )

    for handler in handlers:
        handler.setFormatter(formatter)
    return handlers


def configure_logger(
    name: str = ROOT_LOGGER_NAME,
    level: Union[str, int] = logging.INFO,
    format_string: str = DEFAULT_LOG_FORMAT,
    date_format: str = DEFAULT_DATE_FORMAT,
    use_json: bool = False,
    log_file: Optional[str] = None,
    console_output: bool = True
) -> logging.Logger:
    """
    (Re)configure a logger, replacing any handlers it already has.

    Args:
        name: Logger name
        level: Level name or number
        format_string: Text format, ignored when ``use_json`` is set
        date_format: Date format for text output
        use_json: Emit JSON objects instead of text lines
        log_file: Optional file to log to in addition to the console
        console_output: Whether to log to stdout

    Returns:
        The configured logger
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())

    formatter = JsonFormatter() if use_json else logging.Formatter(format_string, date_format)

    configured = logging.getLogger(name)
    configured.setLevel(level)
    configured.handlers = _build_handlers(formatter, log_file, console_output)
    return configured


def get_logger(name: str, parent: Optional[logging.Logger] = None) -> logging.Logger:
    return parent.getChild(name) if parent else logging.getLogger(name)


class LoggerAdapter(logging.LoggerAdapter):
    """
    Adapter that stamps every record with a fixed context.

    The context travels in the ``data`` extra so formatters that know about
    it (JsonFormatter) can render it while plain formatters ignore it.
    """

    def __init__(self, logger: logging.Logger, context: Optional[Dict[str, Any]] = None):
        super().__init__(logger, dict(context or {}))

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        extra = dict(kwargs.get('extra') or {})
        data = dict(self.extra)
        data.update(extra.get('data') or {})
        extra['data'] = data
        return msg, {**kwargs, 'extra': extra}

    def with_context(self, **context) -> 'LoggerAdapter':
        """Return a new adapter whose context extends this one."""
        return LoggerAdapter(self.logger, {**self.extra, **context})


def with_context(name: Optional[str] = None, **context) -> LoggerAdapter:
    """Adapter over the named logger (or ``app_logger``) carrying ``context``."""
    return LoggerAdapter(get_logger(name) if name else app_logger, context)


def get_app_logger() -> logging.Logger:
    """
    Return the ``edugame`` logger, configuring it from the environment on
    first use (``LOG_LEVEL``, ``LOG_JSON``, ``LOG_FILE``).
    """
    root = logging.getLogger(ROOT_LOGGER_NAME)
    if root.handlers:
        return root
    return configure_logger(
        name=ROOT_LOGGER_NAME,
        level=os.environ.get("LOG_LEVEL", "INFO"),
        use_json=os.environ.get("LOG_JSON", "false").lower() == "true",
        log_file=os.environ.get("LOG_FILE")
    )


app_logger = get_app_logger()


def log_execution_time(logger: Optional[logging.Logger] = None) -> Callable[[F], F]:
    """
    Decorator logging how long a call took: at debug level on success, at
    error level when it raised. Works for plain and coroutine functions.
    """
    def decorator(func: F) -> F:
        def report(started: float, error: Optional[Exception] = None) -> None:
            target = logger or get_app_logger()
            elapsed = time.time() - started
            if error is None:
                target.debug(f"{func.__name__} executed in {elapsed:.3f} seconds")
            else:
                target.error(f"{func.__name__} failed after {elapsed:.3f} seconds: {error}")

        if asyncio.iscoroutinefunction(func):
            @functools.wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                started = time.time()
                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    report(started, e)
                    raise
                report(started)
                return result

            return async_wrapper

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            started = time.time()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                report(started, e)
                raise
            report(started)
            return result

        return wrapper
    return decorator
