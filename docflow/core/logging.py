"""
Docflow Logging

Structured logging setup shared by every subsystem.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional

import structlog

from docflow.core.config import MonitoringConfig


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
) -> None:
    """Configure structured logging."""
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if log_format == "json"
        else structlog.dev.ConsoleRenderer()
    )

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
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def configure_from(monitoring: Optional[MonitoringConfig] = None) -> None:
    """Configure logging from a monitoring config section."""
    monitoring = monitoring or MonitoringConfig()
    setup_logging(monitoring.log_level.value, monitoring.log_format)
