"""
Centralized logging setup and configuration.

Provides colored, leveled logging for the certificate renewal run. The
verbosity names accepted on the command line are ERROR, WARN, INFO, DEBUG
and TRACE.
"""

import logging
import sys
from typing import Optional
from enum import IntEnum


TRACE = 5
logging.addLevelName(TRACE, "TRACE")


class LogLevel(IntEnum):
    """Log level enumeration."""
    TRACE = TRACE
    DEBUG = logging.DEBUG
    INFO = logging.INFO
    WARN = logging.WARNING
    ERROR = logging.ERROR


def parse_log_level(name: str) -> LogLevel:
    """
    Map a verbosity name to a log level.

    Args:
        name: One of ERROR, WARN, INFO, DEBUG, TRACE (case-insensitive).
              WARNING is accepted as an alias of WARN.

    Returns:
        The matching LogLevel

    Raises:
        ValueError: If the name is not a known level
    """
    normalized = (name or "").strip().upper()
    if normalized == "WARNING":
        normalized = "WARN"
    try:
        return LogLevel[normalized]
    except KeyError:
        valid = "|".join(level.name for level in sorted(LogLevel, reverse=True))
        raise ValueError(f"Invalid log level '{name}'. Must be one of: {valid}")


class ColoredFormatter(logging.Formatter):
    """
    Formatter that adds colors to the level name and to warning/error messages.

    Colors are only applied when output is to a terminal.
    """

    COLORS = {
        "TRACE": "\033[34m",     # Blue
        "DEBUG": "\033[36m",     # Cyan
        "INFO": "\033[32m",      # Green
        "WARNING": "\033[33m",   # Yellow
        "ERROR": "\033[31m",     # Red
        "CRITICAL": "\033[35m",  # Magenta
        "RESET": "\033[0m",
    }

    def __init__(self, fmt: str = None, use_colors: bool = True):
        super().__init__(fmt or "%(asctime)s [%(levelname)s] %(message)s")
        self.use_colors = use_colors and sys.stdout.isatty()

    def format(self, record: logging.LogRecord) -> str:
        original_levelname = record.levelname
        original_msg = record.msg

        if self.use_colors:
            color = self.COLORS.get(record.levelname, "")
            reset = self.COLORS["RESET"]
            record.levelname = f"{color}{record.levelname}{reset}"
            if original_levelname in ("WARNING", "ERROR", "CRITICAL"):
                record.msg = f"{color}{record.msg}{reset}"

        result = super().format(record)

        record.levelname = original_levelname
        record.msg = original_msg

        return result


class StructuredLogger(logging.Logger):
    """
    Extended logger with additional utility methods.
    """

    def section(self, title: str) -> None:
        """Log a section header."""
        self.info("=" * 60)
        self.info(title)
        self.info("=" * 60)

    def success(self, message: str) -> None:
        """Log a success message (INFO level with special formatting)."""
        self.info(f"[OK] {message}")

    def failure(self, message: str) -> None:
        """Log a failure message (ERROR level with special formatting)."""
        self.error(f"[FAIL] {message}")

    def trace(self, message: str, *args, **kwargs) -> None:
        """Log a message below DEBUG, used for raw tool output."""
        if self.isEnabledFor(TRACE):
            self._log(TRACE, message, args, **kwargs)


# Global logger instance
_logger: Optional[StructuredLogger] = None


def setup_logger(
    name: str = "CertRenewer",
    level: str = "INFO",
    use_colors: bool = True,
    log_file: Optional[str] = None,
) -> StructuredLogger:
    """
    Setup and configure the global logger.

    Args:
        name: Logger name
        level: Verbosity name (ERROR, WARN, INFO, DEBUG or TRACE)
        use_colors: Enable colored output
        log_file: Optional file path for log output

    Returns:
        Configured StructuredLogger instance

    Raises:
        ValueError: If the verbosity name is unknown
    """
    global _logger

    log_level = int(parse_log_level(level))

    logging.setLoggerClass(StructuredLogger)
    logger = logging.getLogger(name)
    logger.__class__ = StructuredLogger
    logger.setLevel(log_level)

    logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(ColoredFormatter(use_colors=use_colors))
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(log_level)
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s [%(levelname)s] %(message)s"
        ))
        logger.addHandler(file_handler)

    _logger = logger
    return logger


def get_logger() -> StructuredLogger:
    """
    Get the global logger instance, creating a default one on first use.

    Returns:
        The configured StructuredLogger instance
    """
    global _logger

    if _logger is None:
        _logger = setup_logger()

    return _logger
