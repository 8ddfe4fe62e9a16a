"""
Logging configuration for the feed ingestion pipeline.

Routes structlog events through stdlib logging with ISO timestamps,
context variables (correlation ids, bound source URLs) and either JSON or
console rendering.
"""

import logging
import sys
from typing import Optional, Union
from uuid import uuid4

import structlog

from .config import IngestionSettings, get_settings


class LoggingConfig:
    """Centralized logging configuration."""

    DEFAULT_FORMAT = '%(message)s'

    # Third-party loggers (reduce noise)
    THIRD_PARTY_LEVELS = {
        'httpx': logging.WARNING,
        'httpcore': logging.WARNING,
        'asyncio': logging.WARNING,
    }

    @classmethod
    def setup_logging(
        cls,
        level: Union[str, int] = logging.INFO,
        json_logs: bool = False,
    ) -> None:
        """
        Configure stdlib logging and structlog.

        Args:
            level: Logging level name or number
            json_logs: Render events as JSON lines instead of console output
        """
        if isinstance(level, str):
            level = logging.getLevelName(level.upper())

        root_logger = logging.getLogger()
        root_logger.setLevel(level)
        root_logger.handlers.clear()

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        console_handler.setFormatter(logging.Formatter(cls.DEFAULT_FORMAT))
        root_logger.addHandler(console_handler)

        for logger_name, logger_level in cls.THIRD_PARTY_LEVELS.items():
            logging.getLogger(logger_name).setLevel(logger_level)

        renderer = (
            structlog.processors.JSONRenderer()
            if json_logs
            else structlog.dev.ConsoleRenderer(colors=False)
        )

        structlog.configure(
            processors=[
                structlog.contextvars.merge_contextvars,
                structlog.stdlib.add_logger_name,
                structlog.stdlib.add_log_level,
                structlog.processors.TimeStamper(fmt="iso", utc=True),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                renderer,
            ],
            wrapper_class=structlog.make_filtering_bound_logger(level),
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=False,
        )

        structlog.get_logger(__name__).info(
            "Logging system initialized",
            level=logging.getLevelName(level),
            json_logs=json_logs,
        )


class CorrelationContext:
    """Context manager binding a correlation id to every event logged inside it."""

    def __init__(self, correlation_id_value: Optional[str] = None, **extra):
        self.correlation_id_value = correlation_id_value or str(uuid4())
        self.extra = extra
        self._tokens = None

    def __enter__(self):
        self._tokens = structlog.contextvars.bind_contextvars(
            correlation_id=self.correlation_id_value, **self.extra
        )
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._tokens:
            structlog.contextvars.reset_contextvars(**self._tokens)


def get_correlation_id() -> Optional[str]:
    """Get the correlation id bound to the current context, if any."""
    return structlog.contextvars.get_contextvars().get("correlation_id")


def initialize_logging(config: Optional[IngestionSettings] = None) -> None:
    """Initialize logging from ingestion settings."""
    config = config or get_settings()
    LoggingConfig.setup_logging(level=config.log_level.value, json_logs=config.json_logs)
