"""
Secure Logging Module
=====================

Logging setup for the ``journalvault`` logger tree.

Security Features:
- Passphrase, key and encoded-blob redaction on every handler
- Size-capped rotating log files
- Optional JSON lines output

Components log through ``logging.getLogger("journalvault.<component>")``.
They log entry ids, counts and algorithm tags. Titles, entry content,
keys and passphrases never reach a logger; the redaction here is the
second line, not the first.
"""

from __future__ import annotations

import json
import logging
import re
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Final, Iterable, NamedTuple, Optional, Pattern

from journalvault.core.config import LoggingConfig

REDACTED: Final[str] = "[REDACTED]"

ROOT_LOGGER_NAME: Final[str] = "journalvault"


class _Rule(NamedTuple):
    label: str
    pattern: Pattern[str]


def _assignment(words: str) -> Pattern[str]:
    return re.compile(rf'(?i)\b({words})\s*[=:]\s*["\']?[^\s"\']+["\']?')


_RULES: Final[tuple[_Rule, ...]] = (
    _Rule("passphrase", _assignment("passphrase|password|passwd|pwd")),
    _Rule("key", _assignment("key|salt|nonce")),
    _Rule("secret", _assignment("secret|token")),
    # Long base64 runs look like salts, nonces or ciphertext
    _Rule("base64_secret", re.compile(r"[A-Za-z0-9+/]{40,}={0,2}")),
    # 32+ bytes of hex looks like a raw key
    _Rule("hex_secret", re.compile(r"(?i)(?:0x)?[a-f0-9]{64,}")),
)

# Extra record attributes copied into JSON output when present
_CONTEXT_FIELDS: Final[tuple[str, ...]] = ("entry_id", "vault_root", "algorithm", "reference")

_CONSOLE_FORMAT: Final[str] = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_FILE_FORMAT: Final[str] = "%(asctime)s | %(levelname)-8s | %(name)s | %(funcName)s:%(lineno)d | %(message)s"


def redact(text: str, extra: Iterable[Pattern[str]] = ()) -> str:
    """Replace anything that looks like secret material in ``text``."""
    for rule in _RULES:
        text = rule.pattern.sub(f"{rule.label}={REDACTED}", text)
    for pattern in extra:
        text = pattern.sub(REDACTED, text)
    return text


class SecureLogFilter(logging.Filter):
    """
    Redacts the message template and string arguments of each record.

    Records are rewritten in place and always passed on, so a handler
    never sees the unredacted form.
    """

    def __init__(self, name: str = "", additional_patterns: Optional[list[Pattern[str]]] = None) -> None:
        super().__init__(name)
        self._extra = tuple(additional_patterns or ())

    def _clean(self, value: Any) -> Any:
        return redact(value, self._extra) if isinstance(value, str) else value

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = redact(record.msg, self._extra)

        args = record.args
        if isinstance(args, dict):
            record.args = {key: self._clean(value) for key, value in args.items()}
        elif isinstance(args, tuple):
            record.args = tuple(self._clean(value) for value in args)

        return True


class StructuredLogFormatter(logging.Formatter):
    """One JSON object per line, with vault context fields when supplied via ``extra``."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        for name in _CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                payload[name] = str(value)
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class SecureRotatingFileHandler(RotatingFileHandler):
    """
    RotatingFileHandler that refuses ``..`` in its path and creates the
    log directory on demand.
    """

    def __init__(
        self,
        filename: str | Path,
        mode: str = "a",
        maxBytes: int = 10 * 1024 * 1024,
        backupCount: int = 5,
        encoding: str = "utf-8",
    ) -> None:
        requested = Path(filename)
        if ".." in requested.parts:
            raise ValueError(f"Refusing log path with '..' component: {requested}")

        target = requested.resolve()
        target.parent.mkdir(parents=True, exist_ok=True)
        super().__init__(
            str(target), mode=mode, maxBytes=maxBytes, backupCount=backupCount, encoding=encoding
        )


def _console_handler() -> logging.Handler:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(_CONSOLE_FORMAT, datefmt="%H:%M:%S"))
    return handler


def _file_handler(path: Path, as_json: bool, max_bytes: int, backups: int) -> logging.Handler:
    handler = SecureRotatingFileHandler(path, maxBytes=max_bytes, backupCount=backups)
    if as_json:
        handler.setFormatter(StructuredLogFormatter())
    else:
        handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    return handler


def _attach(
    logger: logging.Logger,
    level: str,
    console: bool,
    log_file: Optional[Path],
    as_json: bool,
    max_bytes: int,
    backups: int,
) -> logging.Logger:
    logger.setLevel(getattr(logging, level.upper()))
    handlers: list[logging.Handler] = []
    if console:
        handlers.append(_console_handler())
    if log_file is not None:
        handlers.append(_file_handler(log_file, as_json, max_bytes, backups))

    # One filter instance shared by all handlers of this logger
    redactor = SecureLogFilter()
    for handler in handlers:
        handler.setLevel(logging.DEBUG)
        handler.addFilter(redactor)
        logger.addHandler(handler)

    logger.propagate = False
    return logger


def get_secure_logger(
    name: str,
    log_dir: Optional[Path] = None,
    level: str = "INFO",
    enable_console: bool = True,
    enable_file: bool = True,
    enable_json: bool = False,
    max_file_size: int = 10 * 1024 * 1024,
    backup_count: int = 5,
) -> logging.Logger:
    """
    Return a standalone logger with redacting handlers.

    The file, when enabled, is ``<log_dir>/<name with dots as underscores>.log``.
    A logger that already has handlers is returned unchanged.

    Args:
        name: Logger name
        log_dir: Directory for the log file (no file output if None)
        level: Logging level name
        enable_console: Write to stderr
        enable_file: Write to a rotating file
        enable_json: Use JSON lines for the file
        max_file_size: Rotation threshold in bytes
        backup_count: Rotated files to keep
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    log_file = log_dir / f"{name.replace('.', '_')}.log" if enable_file and log_dir else None
    return _attach(
        logger, level, enable_console, log_file, enable_json, max_file_size, backup_count
    )


def configure_logging(config: LoggingConfig, log_dir: Optional[Path] = None) -> logging.Logger:
    """
    (Re)configure the ``journalvault`` root logger from ``config``.

    Existing handlers are closed and replaced, so this may be called
    more than once. Child loggers inherit the result.

    Usage:
        configure_logging(VaultConfig.get_instance().logging, config.paths.log_dir)
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    log_file = log_dir / f"{ROOT_LOGGER_NAME}.log" if config.enable_file and log_dir else None
    return _attach(
        logger,
        config.level,
        config.enable_console,
        log_file,
        config.enable_json,
        config.max_file_size_bytes,
        config.backup_count,
    )
