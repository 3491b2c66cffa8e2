"""
Logging configuration for the engine process.

Usage:
    from flash_arbitrage import logging_config
    logging_config.setup()
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

from .utils import ensure_path_exists

LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(message)s"
FILE_LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"


def setup(
    level: Union[int, str] = logging.INFO,
    log_file: Optional[Union[str, Path]] = None,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
) -> None:
    """
    Configure root logging.

    - Console output uses a compact time + level + message format
    - When ``log_file`` is given, a size-rotating file handler is added
    - Chatty HTTP client and server loggers are quieted
    """
    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)
    console.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt="%H:%M:%S"))
    root.addHandler(console)

    if log_file:
        path = ensure_path_exists(log_file, is_file=True)
        file_handler = RotatingFileHandler(
            path, maxBytes=max_bytes, backupCount=backup_count
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(fmt=FILE_LOG_FORMAT))
        root.addHandler(file_handler)

    # Suppress noisy loggers
    logging.getLogger("web3").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    logging.getLogger("flash_arbitrage").setLevel(level)
