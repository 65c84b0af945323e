"""
Logging for pgbulk.

Records go to the ``pgbulk`` logger hierarchy, configured once through
``logging.config.dictConfig`` from ``PGBULK_LOG_LEVEL``, ``PGBULK_ENV`` and
``PGBULK_LOG_FILE``. Catalog round trips (bulk preloads and single-table
introspection) are timed with ``log_performance``.
"""

import functools
import inspect
import logging
import logging.config
import os
import sys
import time
from typing import Any, Dict

ROOT_LOGGER = "pgbulk"

DEVELOPMENT_FORMAT = "%(asctime)s | %(name)-28s | %(levelname)-8s | %(message)s"
PRODUCTION_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s | %(pathname)s:%(lineno)d"
FILE_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(funcName)s:%(lineno)d | %(message)s"

# third-party loggers and the level they are kept at
LIBRARY_LEVELS = {
    "asyncpg": "WARNING",
    "uvicorn": "INFO",
    "fastapi": "INFO",
}


def get_log_level() -> str:
    return os.getenv("PGBULK_LOG_LEVEL", "INFO").upper()


def get_log_format() -> str:
    if os.getenv("PGBULK_ENV", "development").lower() == "production":
        return PRODUCTION_FORMAT
    return DEVELOPMENT_FORMAT


def _file_handler(log_file: str, level: str) -> Dict[str, Any]:
    return {
        "class": "logging.handlers.RotatingFileHandler",
        "level": level,
        "formatter": "detailed",
        "filename": log_file,
        "maxBytes": 10 * 1024 * 1024,
        "backupCount": 5,
    }


def get_logging_config() -> Dict[str, Any]:
    """Build the ``dictConfig`` mapping for the current environment."""
    level = get_log_level()
    handlers: Dict[str, Any] = {
        "console": {
            "class": "logging.StreamHandler",
            "level": level,
            "formatter": "standard",
            "stream": sys.stdout,
        },
    }
    pgbulk_handlers = ["console"]

    log_file = os.getenv("PGBULK_LOG_FILE")
    if log_file:
        handlers["file"] = _file_handler(log_file, level)
        pgbulk_handlers.append("file")

    loggers = {
        ROOT_LOGGER: {"level": level, "handlers": pgbulk_handlers, "propagate": False},
    }
    for name, library_level in LIBRARY_LEVELS.items():
        loggers[name] = {"level": library_level, "handlers": ["console"], "propagate": False}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {"format": get_log_format(), "datefmt": "%Y-%m-%d %H:%M:%S"},
            "detailed": {"format": FILE_FORMAT, "datefmt": "%Y-%m-%d %H:%M:%S"},
        },
        "handlers": handlers,
        "loggers": loggers,
        "root": {"level": "WARNING", "handlers": ["console"]},
    }


def setup_logging() -> None:
    logging.config.dictConfig(get_logging_config())

    logger = logging.getLogger(f"{ROOT_LOGGER}.logging")
    logger.info("Logging configured with level: %s", get_log_level())
    if os.getenv("PGBULK_LOG_FILE"):
        logger.info("File logging enabled: %s", os.getenv("PGBULK_LOG_FILE"))


def get_logger(name: str) -> logging.Logger:
    """
    Logger for ``name`` (usually ``__name__``) inside the ``pgbulk`` hierarchy.

    Names outside it are prefixed; ``__main__`` becomes ``pgbulk.main``.
    """
    if name == "__main__":
        name = f"{ROOT_LOGGER}.main"
    elif name != ROOT_LOGGER and not name.startswith(f"{ROOT_LOGGER}."):
        name = f"{ROOT_LOGGER}.{name}"
    return logging.getLogger(name)


def log_performance(logger: logging.Logger, operation: str):
    """
    Decorator timing ``operation``: completion is logged at DEBUG, failures
    at ERROR before the exception is re-raised. Works on plain functions and
    coroutine functions.
    """

    def finished(started: float) -> None:
        logger.debug("Operation '%s' completed in %.3fs", operation, time.perf_counter() - started)

    def failed(started: float, error: Exception) -> None:
        logger.error("Operation '%s' failed after %.3fs: %s", operation, time.perf_counter() - started, error)

    def decorator(func):
        if inspect.iscoroutinefunction(func):
            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                started = time.perf_counter()
                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    failed(started, e)
                    raise
                finished(started)
                return result

            return async_wrapper

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs):
            started = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                failed(started, e)
                raise
            finished(started)
            return result

        return sync_wrapper

    return decorator


if not logging.getLogger().handlers:
    setup_logging()
