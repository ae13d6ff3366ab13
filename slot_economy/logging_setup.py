"""
logging_setup.py - Loguru configuration

The package disables its logger namespace on import so that embedding
applications see nothing until they opt in with setup_logging().
"""

import sys
from pathlib import Path
from typing import Any, Optional, Union

from loguru import logger

from .config import EconomyConfig


CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level>"
)

FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} | {message}"


def setup_logging(
    level: Optional[str] = None,
    sink: Any = None,
    log_file: Optional[Union[str, Path]] = None,
) -> None:
    """
    Route slot_economy log records to the console (and optionally a file).

    Args:
        level: Minimum level; defaults to EconomyConfig.from_env().log_level
        sink: Console sink, sys.stderr by default
        log_file: Optional path for a rotating plain-text log
    """
    if level is None:
        level = EconomyConfig.from_env().log_level

    logger.remove()
    logger.add(
        sys.stderr if sink is None else sink,
        format=CONSOLE_FORMAT,
        level=level,
        colorize=sink is None,
    )
    if log_file is not None:
        logger.add(
            log_file,
            format=FILE_FORMAT,
            level="DEBUG",
            rotation="00:00",
            retention="7 days",
            encoding="utf-8",
        )
    logger.enable("slot_economy")
