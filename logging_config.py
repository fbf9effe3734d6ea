"""Simple logging setup used across the project."""
import logging
from typing import Optional

from config import LOG_LEVEL


def setup_logging(level_name: Optional[str] = None):
    level_name = (level_name or LOG_LEVEL or "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    # Basic configuration for stdout
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# Do NOT configure logging on import automatically; entry points (CLI, API
# lifespan) call `setup_logging()` so library use and tests stay quiet.
