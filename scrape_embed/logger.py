"""
Logging configuration for scrape_embed.

Records go to stderr so stdout stays free for command output (run_normalizer.py
prints JSON there). The initial level comes from SCRAPE_EMBED_LOG_LEVEL.

Log records never carry document or chunk text: only sizes, counts,
provider/model ids and error messages.
"""

import logging
import os
import sys
from typing import Optional, Union

PACKAGE_LOGGER = "scrape_embed"
LOG_LEVEL_ENV = "SCRAPE_EMBED_LOG_LEVEL"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def resolve_level(level: Union[int, str, None]) -> int:
    """Accept logging constants, level names ("debug", "WARNING") or None (env, then INFO)."""
    if level is None:
        level = os.getenv(LOG_LEVEL_ENV) or logging.INFO
    if isinstance(level, int):
        return level

    resolved = logging.getLevelName(str(level).strip().upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level: {level!r}")
    return resolved


def setup_logger(
    level: Union[int, str, None] = None,
    log_file: Optional[str] = None,
    name: str = PACKAGE_LOGGER,
) -> logging.Logger:
    """
    Configure and return the package logger.

    Safe to call again: the stderr handler is installed once, later calls
    change the level and may attach a log file.

    Args:
        level: Logging level as int or name; None reads SCRAPE_EMBED_LOG_LEVEL
        log_file: Optional file that receives the same records
        name: Logger name
    """
    logger = logging.getLogger(name)
    level = resolve_level(level)
    logger.setLevel(level)

    formatter = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    if not any(getattr(h, "_scrape_embed_console", False) for h in logger.handlers):
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(formatter)
        console_handler._scrape_embed_console = True
        logger.addHandler(console_handler)

    if log_file:
        path = os.path.abspath(log_file)
        if not any(getattr(h, "baseFilename", None) == path for h in logger.handlers):
            file_handler = logging.FileHandler(path)
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)

    # Handlers follow the logger's level
    for handler in logger.handlers:
        handler.setLevel(level)

    return logger


logger = setup_logger()


def get_module_logger(module_name: str) -> logging.Logger:
    """Child logger named "scrape_embed.<module_name>"; shares the package handlers."""
    return logging.getLogger(f"{PACKAGE_LOGGER}.{module_name}")
