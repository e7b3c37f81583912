"""Logging setup for the Ads Finder API process.

API modules log through stdlib ``logging``; producers and the search pipeline
log through loguru. Both end up on stdout and in rotating files under LOG_DIR.
"""

import os
import sys
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from loguru import logger

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_DIR = Path(os.getenv("LOG_DIR", "logs"))

API_LOG_FILE = "adsfinder-api.log"
PIPELINE_LOG_FILE = "adsfinder-pipeline.log"
MAX_LOG_BYTES = 10 * 1024 * 1024
LOG_BACKUPS = 5

_configured = False


def _configure_stdlib(level: int):
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    fmt = logging.Formatter(
        "[%(asctime)s] %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(fmt)
    console.setLevel(level)
    root_logger.addHandler(console)

    file_handler = RotatingFileHandler(
        LOG_DIR / API_LOG_FILE,
        maxBytes=MAX_LOG_BYTES,
        backupCount=LOG_BACKUPS,
        encoding="utf-8",
    )
    file_handler.setFormatter(fmt)
    root_logger.addHandler(file_handler)

    # Graph/Apify requests are logged by the producers themselves
    for noisy in ("uvicorn.access", "sqlalchemy.engine", "httpx", "apify_client"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def _configure_loguru(level: str):
    logger.remove()
    logger.add(sys.stdout, level=level)
    logger.add(
        LOG_DIR / PIPELINE_LOG_FILE,
        level=level,
        rotation=MAX_LOG_BYTES,
        retention=LOG_BACKUPS,
        encoding="utf-8",
    )


def setup_logging(force: bool = False):
    """Configure both log stacks once per process."""
    global _configured
    if _configured and not force:
        return
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    _configure_stdlib(getattr(logging, LOG_LEVEL, logging.INFO))
    _configure_loguru(LOG_LEVEL if LOG_LEVEL in {"DEBUG", "INFO", "WARNING", "ERROR"} else "INFO")
    _configured = True
