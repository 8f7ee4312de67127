"""Logging setup for the command line and server.

Library modules only create ``logging.getLogger(__name__)`` loggers; the
process entry point calls :func:`configure_logging` once.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import Any

from rich.console import Console
from rich.logging import RichHandler


class JsonFormatter(logging.Formatter):
    """Format records as newline-delimited JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload)


def configure_logging(level: str = "INFO", fmt: str = "terminal") -> None:
    """Install a single root handler.

    Args:
        level: Logging level name (``WARN`` and ``FATAL`` aliases accepted).
        fmt: ``terminal`` for rich console output, ``json`` for JSON lines.

    Example:
        >>> import logging
        >>> from repospine.core.logging import configure_logging
        >>> configure_logging("warn", "json")
        >>> logging.getLogger().level == logging.WARNING
        True
    """
    name = level.strip().upper()
    name = {"WARN": "WARNING", "FATAL": "CRITICAL"}.get(name, name)
    numeric = logging.getLevelName(name)
    if not isinstance(numeric, int):
        numeric = logging.INFO

    handler: logging.Handler
    if fmt == "json":
        handler = logging.StreamHandler()
        handler.setFormatter(JsonFormatter())
    else:
        handler = RichHandler(console=Console(stderr=True), show_path=False, rich_tracebacks=True)
        handler.setFormatter(logging.Formatter("%(message)s"))

    logging.basicConfig(level=numeric, handlers=[handler], force=True)
    # httpx logs every request at INFO; the fetcher already logs its own GETs
    logging.getLogger("httpx").setLevel(max(numeric, logging.WARNING))
