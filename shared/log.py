#!/usr/bin/env python3
"""
wschat Logging Configuration

Centralized logging setup for consistent formatting across the project.
Supports both development (console + file) and production (console) modes.

Usage:
    from shared.log import get_logger

    logger = get_logger(__name__)
    logger.info("Connecting...")
    logger.error("Receive failed", extra={"conn": "ws://localhost:3000", "state": "connected"})
"""

from __future__ import annotations
import logging
import sys
from pathlib import Path
from typing import Optional, Dict, Any
import os


# ========================================
#           LOGGING FORMATTERS
# ========================================

class ColoredFormatter(logging.Formatter):
    """Colored formatter for console output"""

    # ANSI Color codes
    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
        'RESET': '\033[0m'       # Reset
    }

    def format(self, record: logging.LogRecord) -> str:
        levelname = record.levelname
        if levelname in self.COLORS:
            record.levelname = f"{self.COLORS[levelname]}{levelname}{self.COLORS['RESET']}"
        try:
            return super().format(record)
        finally:
            record.levelname = levelname


class GenericFormatter(logging.Formatter):

    def format(self, record: logging.LogRecord) -> str:
        # Prefix chat context if available
        chat_context = []

        if hasattr(record, 'conn'):
            chat_context.append(f"conn={record.conn}")
        if hasattr(record, 'sender'):
            chat_context.append(f"sender={record.sender}")
        if hasattr(record, 'state'):
            chat_context.append(f"state={record.state}")

        if not chat_context:
            return super().format(record)

        original = record.msg
        record.msg = f"[{' '.join(chat_context)}] {record.msg}"
        try:
            return super().format(record)
        finally:
            record.msg = original


# ========================================
#           LOGGING CONFIGURATION
# ========================================

_loggers_configured = set()
_level_override: Optional[str] = None

def get_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    """
    Get a configured logger for the given module.

    Args:
        name: Usually __name__ from the calling module
        level: Override log level ("DEBUG", "INFO", "WARNING", "ERROR")

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    # Only configure each logger once
    if name not in _loggers_configured:
        _configure_logger(logger, level)
        _loggers_configured.add(name)

    return logger


def _configure_logger(logger: logging.Logger, level: Optional[str] = None) -> None:
    """Configure a logger with appropriate handlers and formatters"""

    logger.setLevel(_get_log_level(level))

    # Clear existing handlers to avoid duplicates
    logger.handlers.clear()

    if _is_development():
        _add_console_handler(logger, colored=True)
        if _file_logging_enabled():
            _add_file_handler(logger)
    else:
        _add_console_handler(logger, colored=False)

    # Records still reach the root logger so pytest's caplog can observe them
    logger.propagate = 'pytest' in sys.modules


def _get_log_level(level: Optional[str] = None) -> int:
    """Determine appropriate log level"""

    level = level or _level_override or os.getenv('WSCHAT_LOG_LEVEL')
    if level:
        return getattr(logging, level.upper(), logging.INFO)

    return logging.DEBUG if _is_development() else logging.INFO


def _is_development() -> bool:
    """Detect if we're in development mode"""
    return (
        os.getenv('PYTHON_ENV', '').lower() in ['dev', 'development'] or
        'pytest' in sys.modules
    )


def _file_logging_enabled() -> bool:
    return os.getenv('WSCHAT_LOG_FILE', '1').lower() not in ['0', 'false', 'no']


def _add_console_handler(logger: logging.Logger, colored: bool = True) -> None:
    """Add console handler with appropriate formatter"""

    fmt = '[%(levelname)-8s][%(asctime)s][%(name)-5s]: %(message)s'
    handler = logging.StreamHandler(sys.stderr)

    if colored and _supports_color():
        formatter = ColoredFormatter(fmt=fmt, datefmt='%H:%M:%S')
    else:
        formatter = GenericFormatter(fmt=fmt, datefmt='%Y-%m-%d %H:%M:%S')

    handler.setFormatter(formatter)
    logger.addHandler(handler)


def _add_file_handler(logger: logging.Logger) -> None:
    """Add file handler for development logging"""

    log_dir = Path("logs")
    log_dir.mkdir(exist_ok=True)

    handler = logging.FileHandler(log_dir / "wschat.log")
    handler.setFormatter(GenericFormatter(
        fmt='%(asctime)s | %(name)-30s | %(levelname)-8s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))
    logger.addHandler(handler)


def _supports_color() -> bool:
    """Check if terminal supports color output"""

    if not (hasattr(sys.stderr, "isatty") and sys.stderr.isatty()):
        return False

    if os.getenv("TERM", "") == "dumb":
        return False

    if sys.platform == "win32":
        return os.getenv("ANSICON") is not None or os.getenv("WT_SESSION") is not None or os.getenv("TERM_PROGRAM") == "vscode" or "WindowsTerminal" in os.getenv("TERM", "")

    return True

# ========================================
#           CONVENIENCE FUNCTIONS
# ========================================

def configure_root_logging(level: str = "INFO") -> None:
    """
    Configure root logging for the entire application.
    Call this once at application startup.

    Args:
        level: Root log level ("DEBUG", "INFO", "WARNING", "ERROR")
    """
    root_logger = logging.getLogger()
    _configure_logger(root_logger, level)
    set_log_level(level)


def set_log_level(level: str) -> None:
    """Apply level to every logger from get_logger, including ones created later"""
    global _level_override
    _level_override = level
    numeric = _get_log_level(level)
    for name in _loggers_configured:
        logging.getLogger(name).setLevel(numeric)


def log_chat_event(logger: logging.Logger, level: str, message: str,
                   envelope: Optional[Dict[str, Any]] = None,
                   **context: Any) -> None:
    """
    Log a chat frame or lifecycle event with structured context.

    Args:
        logger: Logger instance
        level: Log level ("debug", "info", "warning", "error")
        message: Log message
        envelope: Envelope dict for automatic sender extraction
        **context: Additional context fields (conn, state, ...)

    Example:
        log_chat_event(logger, "debug", "Frame received",
                       envelope=env.to_dict(), conn=url)
    """

    extra_context: Dict[str, Any] = {}

    if envelope:
        extra_context['sender'] = envelope.get('sender')

    extra_context.update(context)

    log_func = getattr(logger, level.lower())
    log_func(message, extra=extra_context)
