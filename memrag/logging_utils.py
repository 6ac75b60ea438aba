"""Logging setup shared by the API server and the CLI."""

import logging
import logging.handlers
from pathlib import Path

from .config import LoggingConfig


def setup_logging(config: LoggingConfig) -> None:
    """
    Configure the root logger from a LoggingConfig.

    Installs a console handler and a size-rotated file handler, each
    optional, using the configured format.
    """
    handlers = []
    formatter = logging.Formatter(config.log_format)

    if config.enable_console_logging:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    if config.enable_file_logging and config.log_file:
        Path(config.log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            config.log_file,
            maxBytes=config.max_file_size_mb * 1024 * 1024,
            backupCount=config.backup_count
        )
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    logging.basicConfig(
        level=getattr(logging, config.level.upper(), logging.INFO),
        handlers=handlers,
        force=True
    )
    # Per-request HTTP logs from the client libraries are too noisy at INFO.
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
