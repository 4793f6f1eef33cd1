"""Logging setup."""

import logging
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: str = "WARNING", log_file: Optional[Path] = None) -> None:
    """Configure root logging for the CLI.

    Args:
        level: Log level name
        log_file: Optional file that receives the same records
    """
    log_level = getattr(logging, level.upper(), logging.WARNING)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in list(root_logger.handlers):
        if getattr(handler, "_worktime", False):
            root_logger.removeHandler(handler)

    console_handler = RichHandler(
        console=Console(stderr=True), show_path=False, rich_tracebacks=False
    )
    console_handler.setLevel(log_level)
    console_handler._worktime = True  # type: ignore[attr-defined]
    root_logger.addHandler(console_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(log_level)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        file_handler._worktime = True  # type: ignore[attr-defined]
        root_logger.addHandler(file_handler)
