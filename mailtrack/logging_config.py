"""
Logging setup with masking of credentials in log records.
"""

import logging
import re
import sys

from mailtrack.config import LOG_LEVEL

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

SENSITIVE_PATTERNS = [
    (re.compile(r"(Bearer\s+)([A-Za-z0-9\-_\.]+)", re.IGNORECASE), r"\1***"),
    (
        re.compile(r"\b(eyJ[A-Za-z0-9\-_]+\.eyJ[A-Za-z0-9\-_]+\.[A-Za-z0-9\-_]+)\b"),
        r"[JWT:***]",
    ),
    (
        re.compile(r"(password|secret|token)\s*[:=]\s*['\"]?([^'\"\s&,]+)['\"]?", re.IGNORECASE),
        r"\1=***",
    ),
    (
        re.compile(r"(postgresql(?:\+\w+)?|mysql(?:\+\w+)?)://([^:]+):([^@]+)@", re.IGNORECASE),
        r"\1://\2:***@",
    ),
]


def mask_sensitive(message: str) -> str:
    for pattern, replacement in SENSITIVE_PATTERNS:
        message = pattern.sub(replacement, message)
    return message


class SensitiveDataFilter(logging.Filter):
    """Rewrite the formatted message of every record with secrets masked."""

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            return True
        record.msg = mask_sensitive(message)
        record.args = None
        return True


def setup_logging(level: str = LOG_LEVEL) -> logging.Logger:
    """Configure the root logger once; later calls only adjust the level."""
    root = logging.getLogger()
    root.setLevel(level)

    if not any(getattr(h, "_mailtrack", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
        handler.addFilter(SensitiveDataFilter())
        handler._mailtrack = True
        root.addHandler(handler)

    return root
