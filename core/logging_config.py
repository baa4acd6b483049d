"""
Logging configuration shared by the API server and the CLI.
"""
import logging
import sys
from typing import Optional

from .config import settings

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

NOISY_LOGGERS = [
    "uvicorn.access",
    "watchfiles.main",
    "passlib.handlers.bcrypt",
    "httpx",
    "sqlalchemy.engine",
    "sqlalchemy.pool",
]


def setup_logging(log_level: Optional[str] = None) -> logging.Logger:
    """
    Configure root logging once for the process.

    Args:
        log_level: Level name (DEBUG, INFO, WARNING, ERROR); defaults to settings

    Returns:
        The ``accesshub`` service logger
    """
    level = (log_level or settings.log_level).upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format=LOG_FORMAT,
        datefmt='%H:%M:%S',
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    for noisy_logger in NOISY_LOGGERS:
        logging.getLogger(noisy_logger).setLevel(logging.WARNING)

    return logging.getLogger(settings.service_name)


def log_service_startup(logger: logging.Logger, port: int):
    logger.info(f"AccessHub v{settings.version} starting on port {port} ({settings.environment})")


def log_service_shutdown(logger: logging.Logger):
    logger.info("AccessHub shutting down")
