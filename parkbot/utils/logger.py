# parkbot/utils/logger.py
"""
Centralised logging configuration for the entire application.
Logs to console and to a rotating file in /logs/.

configure_logging() installs the handlers once, at application startup.
Components take a logger in their constructor; bind() adds per-update
context (update id, event type, space id) to every line.
"""

import logging
import os
from logging.handlers import RotatingFileHandler

from parkbot.config import settings

LOG_DIR = os.path.join(os.path.dirname(os.path.dirname(os.path.dirname(__file__))), "logs")

_configured = False


def configure_logging(level: str = None, log_dir: str = LOG_DIR):
    global _configured
    if _configured:
        return
    _configured = True

    level = (level or settings.LOG_LEVEL).upper()
    fmt = logging.Formatter(
        fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Console handler
    console = logging.StreamHandler()
    console.setLevel(level)
    console.setFormatter(fmt)

    # Rotating file handler — keeps last 10 × 5MB log files
    os.makedirs(log_dir, exist_ok=True)
    file_handler = RotatingFileHandler(
        filename=os.path.join(log_dir, "bot.log"),
        maxBytes=5 * 1024 * 1024,
        backupCount=10,
        encoding="utf-8",
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(fmt)

    root = logging.getLogger()
    root.setLevel(level)
    root.addHandler(console)
    root.addHandler(file_handler)


def get_logger(name: str) -> logging.Logger:
    """Get a named logger. Handlers come from configure_logging()."""
    return logging.getLogger(name)


class ContextAdapter(logging.LoggerAdapter):
    """Prefixes every message with the bound key=value pairs."""

    def process(self, msg, kwargs):
        if not self.extra:
            return msg, kwargs
        ctx = " ".join(f"{k}={v}" for k, v in self.extra.items())
        return f"[{ctx}] {msg}", kwargs


def bind(logger, **context) -> logging.LoggerAdapter:
    """Return a logger that carries `context` on every line. Nested binds merge."""
    if isinstance(logger, ContextAdapter):
        merged = {**logger.extra, **context}
        return ContextAdapter(logger.logger, merged)
    return ContextAdapter(logger, context)
