"""Loguru setup for the relay

Standard library loggers (uvicorn, fastapi, httpx) are routed into loguru, and
httpx request lines are tagged with the upstream host of the request being
served.
"""
import sys
import logging
from contextvars import ContextVar
from pathlib import Path
from typing import Optional

from loguru import logger

# Upstream host of the request being served, empty outside a request
current_upstream: ContextVar[str] = ContextVar("current_upstream", default="")

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"

INTERCEPTED_LOGGERS = ("uvicorn", "uvicorn.access", "uvicorn.error", "fastapi", "httpx")


class InterceptHandler(logging.Handler):
    """Forward stdlib log records to loguru"""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Skip logging module frames so loguru reports the real caller
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        message = record.getMessage()
        upstream = current_upstream.get()
        if upstream and record.name.startswith("httpx") and "HTTP Request:" in message:
            message = f"[Upstream: {upstream}] {message}"

        logger.opt(depth=depth, exception=record.exc_info).log(level, message)


def setup_logging(log_level: str = "INFO", log_file: Optional[str] = "logs/app.log") -> None:
    """Replace loguru's default sink with the relay's console and file sinks

    Args:
        log_level: Console level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Rotating log file path, or None for console only
    """
    logger.remove()
    logger.add(sys.stdout, format=CONSOLE_FORMAT, level=log_level, colorize=True)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        # The file always gets DEBUG detail
        logger.add(
            log_file,
            format=FILE_FORMAT,
            level="DEBUG",
            rotation="500 MB",
            retention="10 days",
            compression="zip",
            encoding="utf-8",
        )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in INTERCEPTED_LOGGERS:
        std_logger = logging.getLogger(name)
        std_logger.handlers = [InterceptHandler()]
        std_logger.propagate = False

    logger.info(f"Logging initialized: level={log_level}, file={log_file or 'disabled'}")


def set_upstream_context(upstream: str) -> None:
    current_upstream.set(upstream)


def clear_upstream_context() -> None:
    current_upstream.set("")


def get_logger():
    """Return the shared loguru logger"""
    return logger
