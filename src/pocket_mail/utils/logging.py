"""Logging for pocket-mail.

Records go to a rich console handler (warnings and up by default) and, unless
disabled, to two rotating JSON files under the logs directory: ``app.log``
with everything at the configured level and ``events.log`` with only the
records emitted through :func:`log_event`. Credentials and addresses are
masked before any handler sees a record.
"""

import json
import logging
import re
import time
from datetime import datetime, timezone
from functools import wraps
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, MutableMapping, Optional

from rich.logging import RichHandler

from .paths import LOGS_DIR

ROOT_LOGGER = "pocket_mail"

_LOG_DIR: Optional[Path] = None

# Attributes every LogRecord carries; anything else arrived through ``extra``
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", None, None)).keys()
) | {"message", "asctime"}


def _get_log_dir() -> Path:
    """Logs directory, created on first use."""
    from .errors import FileSystemError

    global _LOG_DIR

    if _LOG_DIR is None:
        try:
            LOGS_DIR.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FileSystemError(f"Failed to create log directory: {LOGS_DIR}") from e
        _LOG_DIR = LOGS_DIR

    return _LOG_DIR


def _record_extras(record: logging.LogRecord) -> Dict[str, Any]:
    return {
        key: value
        for key, value in vars(record).items()
        if key not in _RESERVED_ATTRS and not key.startswith("_")
    }


## Formatting


class JSONFormatter(logging.Formatter):
    """One JSON object per line, structured fields under ``extra``."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "function": record.funcName,
            "line": record.lineno,
            "message": record.getMessage(),
        }

        extras = _record_extras(record)
        if extras:
            entry["extra"] = extras
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class ContextAdapter(logging.LoggerAdapter):
    """Adds fixed context fields to every record of a logger."""

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs


## Masking


class SensitiveDataMasker:
    """Hides credentials and email addresses in log text and fields."""

    # key=value / key: value forms, and the arguments of an IMAP LOGIN command
    SECRET_PATTERNS = (
        re.compile(r'((?:password|passwd|secret|token)["\']?\s*[:=]\s*["\']?)([^"\'}\s,]+)', re.I),
        re.compile(r'(\bLOGIN\s+\S+\s+)("(?:[^"\\]|\\.)*"|\S+)', re.I),
    )
    EMAIL_PATTERN = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")

    SENSITIVE_FIELDS = frozenset(
        {"password", "passwd", "pwd", "secret", "token", "authorization", "credentials"}
    )

    STRATEGIES: Mapping[str, Callable[[str], str]] = {
        "full": lambda value: "[REDACTED]",
        "partial": lambda value: (
            value[:3] + "*" * (len(value) - 6) + value[-3:] if len(value) > 6 else "[REDACTED]"
        ),
    }

    def __init__(self, strategy: str = "full"):
        if strategy not in self.STRATEGIES:
            raise ValueError(f"Unknown masking strategy: {strategy}")
        self.strategy = strategy
        self.mask_func = self.STRATEGIES[strategy]

    def mask_string(self, text: str) -> str:
        if not text:
            return text

        for pattern in self.SECRET_PATTERNS:
            text = pattern.sub(lambda m: m.group(1) + self.mask_func(m.group(2)), text)

        return self.EMAIL_PATTERN.sub(lambda m: self.mask_email(m.group(0)), text)

    def mask_value(self, key: str, value: Any) -> Any:
        """Mask one named field, recursing into dicts."""
        if key.lower() in self.SENSITIVE_FIELDS:
            return self.mask_func(str(value))
        if isinstance(value, str):
            return self.mask_string(value)
        if isinstance(value, dict):
            return self.mask_dict(value)
        return value

    def mask_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return {key: self.mask_value(str(key), value) for key, value in data.items()}

    def mask_email(self, email: str) -> str:
        """``alice@example.com`` -> ``a***@e***``"""
        local, _, domain = email.partition("@")
        if not domain:
            return self.mask_func(email)
        head = f"{local[0]}***" if len(local) > 1 else "***"
        tail = f"{domain[0]}***" if len(domain) > 1 else f"{domain}*"
        return f"{head}@{tail}"


class SensitiveDataFilter(logging.Filter):
    """Applies :class:`SensitiveDataMasker` to a record in place."""

    def __init__(self, strategy: str = "full"):
        super().__init__()
        self.masker = SensitiveDataMasker(strategy)

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = self.masker.mask_string(record.msg)

        for key, value in _record_extras(record).items():
            setattr(record, key, self.masker.mask_value(key, value))

        return True


## Log Manager


class LogManager:
    """Owns the handlers of the ``pocket_mail`` logger tree."""

    def __init__(
        self,
        log_level: str = "INFO",
        console_level: str = "WARNING",
        file_logging: bool = True,
        max_file_size: int = 5_242_880,
        backup_count: int = 5,
    ):
        self.log_level = self._level(log_level)
        self.console_level = self._level(console_level)
        self.file_logging = file_logging
        self.max_file_size = max_file_size
        self.backup_count = backup_count

        self.root_logger = logging.getLogger(ROOT_LOGGER)
        self.root_logger.setLevel(logging.DEBUG)
        self.root_logger.propagate = False
        self._install_handlers()

    @staticmethod
    def _level(name: str) -> int:
        level = logging.getLevelName(name.upper())
        if not isinstance(level, int):
            raise ValueError(f"Invalid logging level: {name}")
        return level

    def _file_handler(self, path: Path, max_bytes: int, backups: int) -> RotatingFileHandler:
        from .errors import FileSystemError

        try:
            handler = RotatingFileHandler(
                path, maxBytes=max_bytes, backupCount=backups, encoding="utf-8"
            )
        except OSError as e:
            raise FileSystemError(f"Failed to open log file {path}: {e}") from e

        handler.setFormatter(JSONFormatter())
        return handler

    def _install_handlers(self) -> None:
        for handler in list(self.root_logger.handlers):
            self.root_logger.removeHandler(handler)
            handler.close()

        masking = SensitiveDataFilter()

        console = RichHandler(show_time=True, show_path=False, markup=False, rich_tracebacks=True)
        console.setLevel(self.console_level)
        console.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
        console.addFilter(masking)
        self.root_logger.addHandler(console)

        if not self.file_logging:
            return

        log_dir = _get_log_dir()

        app = self._file_handler(log_dir / "app.log", self.max_file_size, self.backup_count)
        app.setLevel(self.log_level)
        app.addFilter(masking)

        events = self._file_handler(log_dir / "events.log", 2_048_000, 3)
        events.setLevel(logging.INFO)
        events.addFilter(lambda record: hasattr(record, "event_type"))
        events.addFilter(masking)

        self.root_logger.addHandler(app)
        self.root_logger.addHandler(events)

    def get_logger(
        self, name: Optional[str] = None, **context
    ) -> logging.Logger | ContextAdapter:
        """Logger under the package root, wrapped with ``context`` if given."""
        if not name:
            name = ROOT_LOGGER
        elif not name.startswith(ROOT_LOGGER):
            name = f"{ROOT_LOGGER}.{name}"

        logger = logging.getLogger(name)
        return ContextAdapter(logger, context) if context else logger

    def log_event(self, event_type: str, message: str, level: str = "INFO", **extra):
        self.root_logger.log(
            self._level(level), message, extra={"event_type": event_type, **extra}
        )


## Decorators


def _call_logger(func) -> tuple[logging.Logger, str]:
    return logging.getLogger(ROOT_LOGGER), f"{func.__module__}.{func.__qualname__}"


def log_call(func):
    """Log entry, exit and duration of a function at DEBUG."""

    @wraps(func)
    def wrapper(*args, **kwargs):
        logger, name = _call_logger(func)
        logger.debug(f"-> {name}")
        start = time.perf_counter()
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            logger.debug(f"<- {name} raised after {time.perf_counter() - start:.3f}s: {e}")
            raise
        logger.debug(f"<- {name} ({time.perf_counter() - start:.3f}s)")
        return result

    return wrapper


def async_log_call(func):
    """:func:`log_call` for coroutine functions."""

    @wraps(func)
    async def wrapper(*args, **kwargs):
        logger, name = _call_logger(func)
        logger.debug(f"-> {name} (async)")
        start = time.perf_counter()
        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            logger.debug(f"<- {name} raised after {time.perf_counter() - start:.3f}s: {e}")
            raise
        logger.debug(f"<- {name} ({time.perf_counter() - start:.3f}s)")
        return result

    return wrapper


## Module-level LogManager


_log_manager: Optional[LogManager] = None


def init_logging(log_level: str = "INFO", force: bool = False, **options) -> LogManager:
    """Set up logging once; ``force`` rebuilds the handlers, e.g. after config load."""
    global _log_manager

    if _log_manager is None or force:
        _log_manager = LogManager(log_level, **options)

    return _log_manager


def get_logger(name: Optional[str] = None, **context) -> logging.Logger | ContextAdapter:
    return init_logging().get_logger(name, **context)


def log_event(event_type: str, message, **extra):
    """Emit a record that also lands in ``events.log``."""
    if isinstance(message, dict):
        extra.update(message)
        message = f"Event: {event_type}"

    init_logging().log_event(event_type, message, **extra)
