"""Logging setup for the sync service.

Vendor access tokens and IMAP passwords must never reach a log line; the
redacting filter masks anything shaped like a bearer token or a LOGIN
command before records are formatted.
"""

import logging
import re
import sys

from mailsync.core.config import get_settings

_REDACTIONS = (
    (re.compile(r"(Bearer\s+)[A-Za-z0-9._~+/=-]+", re.IGNORECASE), r"\1***"),
    (re.compile(r"(LOGIN\s+\S+\s+)\S+", re.IGNORECASE), r"\1***"),
    (re.compile(r"((?:access|refresh)_token[\"']?\s*[:=]\s*[\"']?)[^\"'&\s,}]+", re.IGNORECASE), r"\1***"),
)

# Libraries that log request URLs or raw protocol lines at INFO/DEBUG.
_NOISY = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "aioimaplib": logging.WARNING,
    "googleapiclient.discovery_cache": logging.ERROR,
    "msal": logging.WARNING,
}


def redact(text: str) -> str:
    for pattern, replacement in _REDACTIONS:
        text = pattern.sub(replacement, text)
    return text


class RedactingFilter(logging.Filter):
    """Rewrites the rendered message with secrets masked."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        cleaned = redact(message)
        if cleaned != message:
            record.msg = cleaned
            record.args = None
        return True


def setup_logging() -> None:
    """Configure process-wide logging to stdout (DEBUG when settings.debug)."""
    settings = get_settings()
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RedactingFilter())
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[handler],
    )
    for name, level in _NOISY.items():
        logging.getLogger(name).setLevel(level)


def get_logger(name: str) -> logging.Logger:
    """Return a logger for the given module name (usually __name__)."""
    return logging.getLogger(name)
