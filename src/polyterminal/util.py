"""Utility functions for the terminal feed client."""

import logging
import math
from time import time_ns
from typing import Optional


def setup_logging(
    name: str,
    level: str = "INFO",
    format_str: Optional[str] = None,
) -> logging.Logger:
    """
    Set up structured logging for a component.

    Args:
        name: Logger name
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_str: Optional custom format string

    Returns:
        Configured logger
    """
    if format_str is None:
        format_str = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format=format_str,
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    return logging.getLogger(name)


def now_ms() -> int:
    """Wall-clock time in milliseconds."""
    return time_ns() // 1_000_000


def clamp(value: float, min_val: float, max_val: float) -> float:
    """Clamp a value between min and max."""
    return max(min_val, min(max_val, value))


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero for positives."""
    return int(math.floor(value + 0.5))


def to_float(value, default: float = 0.0) -> float:
    """Coerce a loosely-typed JSON value to float, falling back to default."""
    if value is None or isinstance(value, bool):
        return default
    try:
        result = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(result) or math.isinf(result):
        return default
    return result
