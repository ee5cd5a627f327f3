"""
Loguru setup for the workbench.

``configure_logging`` runs once in the application lifespan and owns every
sink: stderr always, plus a daily rotating file when a log directory is
given. Records from stdlib loggers (httpx, uvicorn, websockets) are
forwarded into loguru so they share the same format.
"""

import logging
import sys
from pathlib import Path
from typing import Optional, Union

from loguru import logger


FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[logger_name]}</cyan> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)
LOG_FILE_NAME = "api_workbench_{time:YYYYMMDD}.log"
ROTATION = "10 MB"
RETENTION = "7 days"


class StdlibForwarder(logging.Handler):
    """Re-emits stdlib ``logging`` records through loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Report the caller, not the logging module frames
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def configure_logging(level: str = "INFO", log_dir: Union[str, Path, None] = None) -> None:
    """Replace all sinks. Calling it again drops the previous configuration."""
    reset_logging()
    logger.configure(extra={"logger_name": "-"})
    logger.add(sys.stderr, level=level, format=FORMAT)

    if log_dir is not None:
        directory = Path(log_dir)
        directory.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(directory / LOG_FILE_NAME),
            level=level,
            format=FORMAT,
            rotation=ROTATION,
            retention=RETENTION,
            encoding="utf-8",
        )

    logging.basicConfig(handlers=[StdlibForwarder()], level=level, force=True)
    for name in list(logging.root.manager.loggerDict):
        stdlib_logger = logging.getLogger(name)
        stdlib_logger.handlers = []
        stdlib_logger.propagate = True


def reset_logging() -> None:
    """Remove every loguru sink and detach the stdlib forwarder."""
    logger.remove()
    for handler in list(logging.root.handlers):
        if isinstance(handler, StdlibForwarder):
            logging.root.removeHandler(handler)


def get_logger(name: Optional[str] = None):
    return logger.bind(logger_name=name or "-")
