"""Logging setup for the disruption kernel processes."""

import logging
import sys
from typing import Optional

DEFAULT_FORMAT = "[%(asctime)s] [{component}] %(levelname)s %(name)s - %(message)s"


def setup_logging(
    component_name: str = "disruption-kernel",
    level=logging.INFO,
    format_string: Optional[str] = None,
) -> logging.Logger:
    """
    Configure root logging once for a process.

    Args:
        component_name: Tag included in every line (e.g., 'controller').
        level: Logging level name or number.
        format_string: Custom format string (default provided).
    """
    if format_string is None:
        format_string = DEFAULT_FORMAT.format(component=component_name.upper())

    logging.basicConfig(
        level=level,
        format=format_string,
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    logger = logging.getLogger(component_name)
    logger.info(
        "logging initialized (level=%s)",
        logging.getLevelName(logging.getLogger().level),
    )
    return logger
