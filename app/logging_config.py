"""
logging_config.py — Centralized Logging Configuration

Sets up Loguru as the single logging backend. Intercepts Python's stdlib
logging module so every service's getLogger("erpsync.*") call routes
through Loguru with structured output and request context.

Business Rules:
- All logs go through Loguru (no direct print() or stdlib handlers)
- JSON format in production (APP_ENV=production) for machine parsing
- Human-readable format in development
- Request ID from middleware is included when available
- Optional rotating file (LOG_FILE): 50MB files, 7-day retention

Called by: app/main.py (on startup)
Depends on: environment (LOG_LEVEL, APP_ENV, LOG_FILE)
"""

import logging
import os
import sys

from loguru import logger


def setup_logging() -> None:
    """Configure Loguru and intercept stdlib logging.

    Call once at app startup, before anything else logs.
    """
    logger.remove()

    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    is_production = os.getenv("APP_ENV", "").lower() == "production"

    if is_production:
        # JSON lines to stdout (container runtime captures these)
        logger.add(
            sys.stdout,
            level=log_level,
            format="{message}",
            serialize=True,
        )
    else:
        logger.add(
            sys.stdout,
            level=log_level,
            format=(
                "<green>{time:HH:mm:ss}</green> | "
                "<level>{level: <8}</level> | "
                "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
                "{extra[request_id]} {message}"
            ),
            colorize=True,
        )

    log_file = os.getenv("LOG_FILE")
    if log_file:
        logger.add(
            log_file,
            level=log_level,
            rotation="50 MB",
            retention="7 days",
            compression="gz",
            serialize=True,
        )

    logger.configure(extra={"request_id": "-"})

    # Route every logging.getLogger() call through Loguru
    logging.basicConfig(handlers=[_InterceptHandler()], level=0, force=True)

    # Quiet noisy third-party loggers
    for noisy in ("httpx", "httpcore", "uvicorn.access", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logger.info("Logging configured", level=log_level, production=is_production)


class _InterceptHandler(logging.Handler):
    """Route stdlib logging records to Loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Skip frames from stdlib logging internals to find the real caller
        frame, depth = logging.currentframe(), 0
        while frame and (depth == 0 or frame.f_code.co_filename == logging.__file__):
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )
