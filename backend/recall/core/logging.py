"""Loguru sink configuration shared by the API process and scripts."""
from __future__ import annotations
import sys

from loguru import logger

from recall.core.config import LOG_LEVEL


def configure_logging(level: str = LOG_LEVEL) -> None:
    logger.remove()
    logger.add(
        sys.stderr,
        level=level,
        format="<dim>{time:YYYY-MM-DD HH:mm:ss}</dim> | <level>{level: <8}</level> | {name}:{line} - {message}",
    )
