"""Centralized logging helpers.

Provides one-shot logging configuration for the CLI plus small helpers used
for structured DEBUG traces across the resolver, graph builder and HTTP
source.
"""

from __future__ import annotations

import logging
import os
import re
import time
from typing import Any, Dict, Optional
from urllib.parse import urlsplit, urlunsplit

from constants import Constants

_SECRET_QUERY_RE = re.compile(r"(?i)(token|key|secret|password|auth)=([^&]+)")


def configure_logging(log_file: Optional[str] = None, quiet: bool = False) -> None:
    """Configure the root logger from NPM2NIX_LOG_LEVEL.

    Existing handlers are replaced so repeated invocations (tests, embedding)
    do not duplicate output.
    """
    level_name = os.environ.get(Constants.ENV_LOG_LEVEL, "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    root = logging.getLogger()
    root.setLevel(level)
    for handler in list(root.handlers):
        root.removeHandler(handler)

    if not quiet:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(logging.Formatter(Constants.LOG_FORMAT))
        root.addHandler(stream_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        root.addHandler(file_handler)


def is_debug_enabled(logger: logging.Logger) -> bool:
    """Return True when DEBUG records would be emitted by logger."""
    return logger.isEnabledFor(logging.DEBUG)


def extra_context(**kwargs: Any) -> Dict[str, Any]:
    """Build an ``extra`` mapping for structured log records, dropping None values."""
    return {k: v for k, v in kwargs.items() if v is not None}


def redact(text: str) -> str:
    """Mask credential-looking query parameters."""
    return _SECRET_QUERY_RE.sub(r"\1=[REDACTED]", text)


def safe_url(url: str) -> str:
    """Strip userinfo and secret query parameters from a URL for logging."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return redact(url)
    netloc = parts.hostname or ""
    if parts.port:
        netloc = f"{netloc}:{parts.port}"
    if parts.username or parts.password:
        netloc = f"[REDACTED]@{netloc}"
    return urlunsplit((parts.scheme, netloc, parts.path, redact(parts.query), parts.fragment))


class Timer:
    """Context manager measuring wall-clock duration."""

    def __init__(self) -> None:
        self._start = 0.0
        self._end: Optional[float] = None

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self._end = time.perf_counter()

    def duration_ms(self) -> float:
        """Elapsed milliseconds, measured up to now while still running."""
        end = self._end if self._end is not None else time.perf_counter()
        return round((end - self._start) * 1000.0, 3)
