"""
Structured logging setup.

- development: human-readable console output
- production: one JSON object per line (log aggregator friendly)
- level: LOG_LEVEL env variable
"""

import logging
import os

import structlog
from dotenv import load_dotenv

load_dotenv()


def configure_logging(app_env: str | None = None, level: str | None = None) -> None:
    app_env = (app_env or os.getenv("APP_ENV", "development")).lower()
    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    log_level = logging.getLevelName(level_name)
    if not isinstance(log_level, int):
        log_level = logging.INFO

    if app_env == "production":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        cache_logger_on_first_use=False,
    )
