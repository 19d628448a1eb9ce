"""
Unified Logging Configuration for Backend Services
"""

import logging
import os
import sys
from typing import Callable, Dict, Optional

from .formatters import SimpleConsoleFormatter, StructuredJSONFormatter

STANDARD_FORMAT = "%(levelname)s:     %(asctime)s - %(name)s - [%(filename)s:%(lineno)d] - %(message)s"

FORMATTERS: Dict[str, Callable[[], logging.Formatter]] = {
    "simple": SimpleConsoleFormatter,
    "json": StructuredJSONFormatter,
    "standard": lambda: logging.Formatter(fmt=STANDARD_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"),
}

NOISY_LOGGERS = [
    "uvicorn",
    "uvicorn.error",
    "httpx",
    "httpcore",
    "asyncio",
    "apscheduler",
    "apscheduler.scheduler",
    "apscheduler.executors.default",
    "sqlalchemy.engine",
    "aiosqlite",
    "redis",
    "watchfiles",
]


def setup_logging(
    service_name: str,
    log_level: str = "INFO",
    log_format: Optional[str] = None,
) -> logging.Logger:
    """
    Route every logger of the process to one stdout handler

    ``LOG_LEVEL`` and ``LOG_FORMAT`` in the environment take precedence over the
    arguments. Calling it again replaces the handler instead of adding one.

    Args:
        service_name: Name of the service (e.g., "workflow_lifecycle")
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: "simple", "json" or "standard"; unknown values mean standard

    Returns:
        The service's logger
    """
    log_format = os.getenv("LOG_FORMAT", log_format or "simple").lower()
    log_level = os.getenv("LOG_LEVEL", log_level).upper()
    level = getattr(logging, log_level, logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(FORMATTERS.get(log_format, FORMATTERS["standard"])())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(level)
    root_logger.addHandler(handler)

    for logger_name in NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)
    # Access logs only matter when something breaks
    logging.getLogger("uvicorn.access").setLevel(logging.ERROR)

    logger = logging.getLogger(service_name)
    logger.info(f"Logging configured for {service_name} with level={log_level}, format={log_format}")
    return logger
