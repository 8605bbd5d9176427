"""Logging configuration."""
import logging
import sys
from typing import Optional

from callsignal.core.config import settings

# Loggers that flood INFO with per-statement or per-request noise.
QUIET_LOGGERS = ("sqlalchemy.engine", "aiosqlite", "asyncio", "uvicorn.access")


def setup_logging(level: Optional[str] = None) -> None:
    """Configure application logging; ``level`` overrides ``settings.log_level``."""
    name = (level or settings.log_level).upper()
    logging.basicConfig(
        level=getattr(logging, name, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
    )

    for logger_name in QUIET_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)
