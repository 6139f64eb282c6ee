"""
Logging setup for dbmerge.

Console output goes through rich so it interleaves cleanly with the CLI's
own rich output; an optional rotating file keeps the full record.
"""

import logging
import logging.handlers
import os
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

from .config import LoggingConfig


LOG_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(
    config: Optional[LoggingConfig] = None,
    debug: bool = False,
    console: Optional[Console] = None,
) -> None:
    """Install console (and optional file) handlers on the root logger."""
    config = config or LoggingConfig()
    level = logging.DEBUG if debug else getattr(logging, config.level, logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    console_handler = RichHandler(
        level=level,
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=debug,
        log_time_format=LOG_TIME_FORMAT,
    )
    console_handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(console_handler)

    if config.file:
        log_dir = os.path.dirname(config.file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            filename=config.file,
            maxBytes=config.max_size,
            backupCount=config.backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(config.format, datefmt=LOG_TIME_FORMAT))
        root_logger.addHandler(file_handler)

    # asyncpg is chatty at DEBUG
    logging.getLogger("asyncpg").setLevel(max(level, logging.INFO))
