"""Logging configuration for the auth BFF.

Provides a plain text formatter for local runs and a JSON formatter for
log collectors. Messages may carry a tag prefix such as ``[MAIN]``,
which the JSON formatter lifts into its own field.
"""

import json
import logging
import re
import sys

_TAG_PATTERN = re.compile(r'\[([A-Z_]+)\]\s*(.*)', re.DOTALL)


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def __init__(self, service_name: str = "presskit-auth"):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        tag = None
        message = record.getMessage()
        tag_match = _TAG_PATTERN.match(message)
        if tag_match:
            tag = tag_match.group(1)
            message = tag_match.group(2)

        log_entry = {
            "service": self.service_name,
            "level": record.levelname,
            "logger": record.name,
            "tag": tag,
            "message": message,
            "module": record.module,
            "extra": {
                "function": record.funcName,
                "line": record.lineno,
            }
        }

        if record.exc_info:
            log_entry["extra"]["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry)


class PlainFormatter(logging.Formatter):
    """Plain text formatter for stderr output (local debugging)."""

    def __init__(self):
        super().__init__(
            fmt='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )


def setup_logging(level: str = "INFO", log_format: str = "plain") -> logging.Logger:
    """Configure the root logger with a single stderr handler.

    Args:
        level: Log level name (``DEBUG``, ``INFO``, ...).
        log_format: ``plain`` for human-readable lines, ``json`` for one JSON
            object per line.

    Returns:
        Configured root logger.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(level)
    stderr_handler.setFormatter(JSONFormatter() if log_format == "json" else PlainFormatter())
    root_logger.addHandler(stderr_handler)

    # The Supabase client talks through httpx; its request lines are noise here
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    logging.getLogger(__name__).info(f"[STARTUP] Logging configured (level={level}, format={log_format})")
    return root_logger
