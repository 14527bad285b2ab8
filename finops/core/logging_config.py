"""
Structured logging setup shared by the API service and the CLI.
"""

import logging
import sys
from typing import Optional

import structlog

from finops.core.config import get_settings


def configure_logging(level: Optional[str] = None, json_logs: Optional[bool] = None) -> None:
    """
    Configure stdlib logging and structlog with the platform processor chain.

    Args:
        level: Log level name, defaults to FINOPS_LOG_LEVEL
        json_logs: Render JSON lines instead of console output, defaults to FINOPS_LOG_JSON
    """
    settings = get_settings()
    level = (level or settings.app.log_level).upper()
    if json_logs is None:
        json_logs = settings.app.log_json

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, level, logging.INFO),
    )

    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()

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
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
