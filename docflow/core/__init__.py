"""Docflow Core Module - configuration and logging shared by all subsystems."""

from docflow.core.config import (
    DocflowConfig,
    AutomationConfig,
    ApprovalConfig,
    MonitoringConfig,
    get_config,
    set_config,
    reset_config,
)
from docflow.core.logging import setup_logging

__all__ = [
    "DocflowConfig",
    "AutomationConfig",
    "ApprovalConfig",
    "MonitoringConfig",
    "get_config",
    "set_config",
    "reset_config",
    "setup_logging",
]
