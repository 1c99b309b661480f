"""Centralized logging helpers: setup, structured context, redaction and timing."""

from __future__ import annotations

import logging
import os
import re
import time
from typing import Any, Dict, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from fhirpkg.constants import Constants

_SENSITIVE_PARAMS = ("token", "key", "secret", "password", "auth", "signature")
_REDACTED = "[REDACTED]"


def configure_logging(level: Optional[str] = None) -> None:
    """Configure the root logger once.

    The level comes from ``level``, then ``$FHIRPKG_LOG_LEVEL``, then INFO.
    """
    name = (level or os.environ.get(Constants.ENV_LOG_LEVEL) or "INFO").upper()
    value = getattr(logging, name, logging.INFO)
    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(Constants.LOG_FORMAT))
        root.addHandler(handler)
    root.setLevel(value)


def is_debug_enabled(logger: logging.Logger) -> bool:
    """Return True if DEBUG records from ``logger`` would be emitted."""
    return logger.isEnabledFor(logging.DEBUG)


def extra_context(**fields: Any) -> Dict[str, Any]:
    """Build an ``extra`` mapping for structured log records, dropping None values."""
    return {k: v for k, v in fields.items() if v is not None}


def redact(text: str) -> str:
    """Mask bearer tokens and key=value secrets in free text."""
    if not text:
        return text
    text = re.sub(r"(?i)(bearer\s+)[^\s]+", r"\1" + _REDACTED, text)
    pattern = r"(?i)\b(" + "|".join(_SENSITIVE_PARAMS) + r")=([^&\s]+)"
    return re.sub(pattern, r"\1=" + _REDACTED, text)


def safe_url(url: str) -> str:
    """Strip credentials and mask sensitive query parameters from a URL."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return redact(url)
    netloc = parts.netloc
    if "@" in netloc:
        netloc = _REDACTED + "@" + netloc.rsplit("@", 1)[1]
    query = parts.query
    if query:
        pairs = []
        for key, value in parse_qsl(query, keep_blank_values=True):
            if any(s in key.lower() for s in _SENSITIVE_PARAMS):
                value = _REDACTED
            pairs.append((key, value))
        query = urlencode(pairs, safe="[]")
    return urlunsplit((parts.scheme, netloc, parts.path, query, parts.fragment))


class Timer:
    """Context manager measuring wall-clock duration in milliseconds."""

    def __init__(self) -> None:
        self._start = 0.0
        self._end: Optional[float] = None

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        self._end = None
        return self

    def __exit__(self, *exc_info) -> None:
        self._end = time.perf_counter()

    def duration_ms(self) -> float:
        """Elapsed milliseconds; live while the block is still running."""
        end = self._end if self._end is not None else time.perf_counter()
        return round((end - self._start) * 1000.0, 2)
