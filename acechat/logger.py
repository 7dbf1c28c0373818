"""
Logging Configuration Module

Log output for the tutor. Records go to stderr so the conversation printed
on stdout stays readable, colored when stderr is a terminal, and optionally
to a log file as well.

Usage:
    from acechat.logger import get_logger

    logger = get_logger(__name__)
    logger.info("Engine ready")
"""

import logging
import sys
from pathlib import Path
from typing import List, Optional

from acechat.config import LoggingConfig, settings

# Client libraries that are chatty at INFO
_NOISY_LOGGERS = ("aiohttp", "asyncio", "urllib3")

CONSOLE_FORMAT = "%(asctime)s │ %(levelname)s │ %(name)s │ %(message)s"
PLAIN_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
FILE_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(funcName)s:%(lineno)d | %(message)s"


class ColoredFormatter(logging.Formatter):
    """Colors the level name of each record."""

    COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[1;31m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        # Copy so other handlers still see the plain level name
        colored = logging.makeLogRecord(record.__dict__)
        color = self.COLORS.get(record.levelno, self.RESET)
        colored.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(colored)


class _TutorHandlerMixin:
    """Marks handlers installed here so reconfiguring replaces only them."""


class _ConsoleHandler(_TutorHandlerMixin, logging.StreamHandler):
    pass


class _FileHandler(_TutorHandlerMixin, logging.FileHandler):
    pass


def _build_handlers(level: int, log_file: Optional[str], use_colors: bool) -> List[logging.Handler]:
    console = _ConsoleHandler(sys.stderr)
    if use_colors and sys.stderr.isatty():
        console.setFormatter(ColoredFormatter(CONSOLE_FORMAT, datefmt="%H:%M:%S"))
    else:
        console.setFormatter(logging.Formatter(PLAIN_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    handlers: List[logging.Handler] = [console]

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = _FileHandler(path, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        handlers.append(file_handler)

    for handler in handlers:
        handler.setLevel(level)
    return handlers


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    use_colors: bool = True
) -> None:
    """
    Install the tutor's console and file handlers on the root logger.

    Handlers added by a host (uvicorn, pytest) are left alone; calling this
    again replaces only the handlers installed by a previous call.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path to a log file
        use_colors: Color the console output when it is a terminal
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    root = logging.getLogger()
    for handler in [h for h in root.handlers if isinstance(h, _TutorHandlerMixin)]:
        root.removeHandler(handler)
        handler.close()

    root.setLevel(numeric_level)
    for handler in _build_handlers(numeric_level, log_file, use_colors):
        root.addHandler(handler)

    quiet_level = logging.WARNING if numeric_level > logging.DEBUG else logging.NOTSET
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)


def set_level(level: str) -> None:
    """Change the level of the root logger and the tutor's handlers."""
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    root = logging.getLogger()
    root.setLevel(numeric_level)
    for handler in root.handlers:
        if isinstance(handler, _TutorHandlerMixin):
            handler.setLevel(numeric_level)


def get_logger(name: str) -> logging.Logger:
    """Logger for a module; pass __name__."""
    return logging.getLogger(name)


def init_logging(config: Optional[LoggingConfig] = None) -> None:
    """Configure logging from LOG_LEVEL / LOG_FILE at application startup."""
    config = config or settings.logging
    setup_logging(level=config.level, log_file=config.file)
