"""
Logging configuration and utilities.
Keeps one log file per business area (query transport, search, crawler,
serializer, jobs) with daily rotation and a 7 day retention window.
"""

import logging
import logging.handlers
import sys
import time
from pathlib import Path
from typing import Optional

import structlog


# Business log files, relative to the logs directory
BUSINESS_LOGS = {
    "query_client": "query_client.log",
    "search_client": "search_client.log",
    "crawler": "crawler.log",
    "serializer": "serializer.log",
    "jobs": "jobs.log",
}

def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    retention_days: int = 7
) -> None:
    """
    Set up logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional log file path; its directory also receives the business logs
        retention_days: Number of days to retain rotated log files
    """
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper()))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    ))
    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = _rotating_handler(log_path, retention_days)
        root_logger.addHandler(file_handler)

        # Business logs live next to the main log file
        for business_name, file_name in BUSINESS_LOGS.items():
            business_logger = get_business_logger(business_name)
            for handler in list(business_logger.handlers):
                business_logger.removeHandler(handler)
                handler.close()
            business_logger.addHandler(_rotating_handler(log_path.parent / file_name, retention_days))


def _rotating_handler(path: Path, retention_days: int) -> logging.Handler:
    handler = logging.handlers.TimedRotatingFileHandler(
        path,
        when='midnight',
        interval=1,
        backupCount=retention_days,
        encoding='utf-8'
    )
    handler.suffix = "%Y-%m-%d"
    handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
    ))
    return handler


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Standard library logger
    """
    return logging.getLogger(name)


def get_business_logger(business_name: str) -> logging.Logger:
    """
    Get the logger for a business area.

    Business loggers propagate to the root logger, so console output follows
    setup_logging(). When a log file is configured each business area also
    gets its own rotating file (see BUSINESS_LOGS).

    Args:
        business_name: Business area (e.g. 'query_client', 'crawler')

    Returns:
        Logger named wikidata_radius_dump.<business_name>
    """
    return logging.getLogger(f"wikidata_radius_dump.{business_name}")


def get_structured_logger(name: str):
    """Get a structlog logger bound to the given name (JSON output once setup_logging ran)."""
    return structlog.get_logger(name)


class log_duration:
    """
    Context manager logging how long an operation took.

    Usage:
        with log_duration(logger, "turtle conversion"):
            ...
    """

    def __init__(self, logger: logging.Logger, operation_name: str):
        self.logger = logger
        self.operation_name = operation_name
        self._start = 0.0

    def __enter__(self):
        self._start = time.time()
        self.logger.info(f"Starting {self.operation_name}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration = time.time() - self._start
        if exc_type is None:
            self.logger.info(f"Finished {self.operation_name} in {duration:.2f}s")
        else:
            self.logger.error(f"{self.operation_name} failed after {duration:.2f}s: {exc_val}")
        return False
