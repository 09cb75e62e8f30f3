"""Logging configuration: JSON lines in production, plain text in development."""

import json
import logging
import re
import sys
from datetime import UTC, datetime

# Credentials that must never reach log output
_SENSITIVE_PATTERNS = [
    (re.compile(r"(Bearer\s+)[\w\-.=]+", re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r"\bsk_(live|test)_[A-Za-z0-9]+"), "[REDACTED_PAYSTACK_KEY]"),
    (re.compile(r"\bFLWSECK(_TEST)?-[A-Za-z0-9\-]+"), "[REDACTED_FLUTTERWAVE_KEY]"),
    (re.compile(r"\bre_[A-Za-z0-9]{16,}"), "[REDACTED_RESEND_KEY]"),
    (
        re.compile(r'((?:access_|refresh_)?token["\s:=]+)[^\s&"\',]+', re.IGNORECASE),
        r"\1[REDACTED]",
    ),
    (re.compile(r'(api[_-]?key["\s:=]+)[^\s&"\',]+', re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r'(password["\s:=]+)[^\s&"\',]+', re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r'((?:secret|verif-hash)["\s:=]+)[^\s&"\',]+', re.IGNORECASE), r"\1[REDACTED]"),
]

# Extra attributes copied into JSON log lines when a record carries them
_EXTRA_FIELDS = (
    "request_id",
    "method",
    "path",
    "status_code",
    "duration_ms",
    "user_id",
    "provider",
    "reference",
)

_NOISY_LOGGERS = {
    "sqlalchemy.engine": logging.WARNING,
    "aiosqlite": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "passlib": logging.ERROR,
    "multipart": logging.WARNING,
}


def redact(value: str) -> str:
    """Return ``value`` with every known credential pattern masked."""
    for pattern, replacement in _SENSITIVE_PATTERNS:
        value = pattern.sub(replacement, value)
    return value


class SensitiveDataFilter(logging.Filter):
    """Masks tokens, passwords and provider keys in messages and their arguments."""

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = redact(record.msg)
        if isinstance(record.args, tuple):
            record.args = tuple(redact(a) if isinstance(a, str) else a for a in record.args)
        elif isinstance(record.args, dict):
            record.args = {
                k: (redact(v) if isinstance(v, str) else v) for k, v in record.args.items()
            }
        return True


class JSONFormatter(logging.Formatter):
    """Formats log records as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)

        for key in _EXTRA_FIELDS:
            if hasattr(record, key):
                log_entry[key] = getattr(record, key)

        return json.dumps(log_entry, default=str)


def setup_logging(json_output: bool = False, level: str = "INFO") -> None:
    """
    Configure the root logger.

    Args:
        json_output: Use ``JSONFormatter`` (production) instead of the
                     human-readable format (development).
        level: Log level name.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s %(levelname)-8s %(name)s: %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )

    # Handler-level so records propagated from child loggers are scrubbed too
    handler.addFilter(SensitiveDataFilter())
    root.addHandler(handler)

    for name, noisy_level in _NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(noisy_level)
