"""Logging configuration for the airgapctl package."""
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from airgapctl.config import Config


def add_file_handler(log_file: Optional[str], max_size_mb: int = 100, backup_count: int = 5) -> None:
    """
    Mirror root logging into a rotating file.

    Args:
        log_file: Path of the log file; nothing is done when empty
        max_size_mb: Size at which the file is rotated
        backup_count: Number of rotated files to keep
    """
    if not log_file:
        return
    path = Path(log_file).expanduser().absolute()
    path.parent.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    for handler in root.handlers:
        if isinstance(handler, RotatingFileHandler) and Path(handler.baseFilename) == path:
            return

    file_handler = RotatingFileHandler(
        filename=path,
        maxBytes=max_size_mb * 1024 * 1024,
        backupCount=backup_count
    )
    file_handler.setFormatter(logging.Formatter(Config.LOG_FORMAT))
    root.addHandler(file_handler)
