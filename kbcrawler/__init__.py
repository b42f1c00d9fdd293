"""Knowledge base crawler package bootstrap."""

from __future__ import annotations

import sys

from loguru import logger

from kbcrawler.config import SERVICE_VERSION
from kbcrawler.observability.context import stamp_record

__version__ = SERVICE_VERSION


def configure_logging(level: str = "INFO") -> None:
    """Route loguru output to stderr with a compact single-line format."""
    logger.remove()
    logger.configure(patcher=stamp_record)
    logger.add(
        sys.stderr,
        level=level,
        format="{time:YYYY-MM-DD HH:mm:ss} | {level:<7} | {extra[correlation_id]} | {name}:{line} | {message}",
        backtrace=False,
        diagnose=False,
    )
