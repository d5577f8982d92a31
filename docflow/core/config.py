"""
Docflow Configuration Management

Centralized configuration for the automation engine with:
- Environment-based configuration
- Type-safe settings with Pydantic
- Runtime configuration replacement for tests and embedding
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Literal, Optional
from enum import Enum
import json

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings


class LogLevel(str, Enum):
    """Logging levels for Docflow."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


def _default_time_saved() -> Dict[str, float]:
    # Minutes of manual work an action replaces, keyed by action kind
    return {
        "move": 2.0,
        "copy": 2.0,
        "delete": 1.0,
        "update_metadata": 3.0,
        "notify": 2.0,
        "create_approval": 5.0,
        "run_analysis": 15.0,
        "archive": 3.0,
        "apply_retention": 5.0,
        "send_email": 3.0,
        "webhook": 1.0,
    }


class AutomationConfig(BaseModel):
    """Configuration for workflow execution and batch processing."""
    # Batch settings
    batch_max_concurrent_ceiling: int = 5
    default_batch_concurrency: int = 3
    default_max_processing_minutes: float = 30.0
    max_batch_size: int = 1000

    # Workflow limits
    max_workflows: int = 100
    max_actions_per_workflow: int = 50
    max_concurrent_executions: int = 50
    execution_timeout_seconds: float = 3600.0
    default_action_timeout_seconds: float = 300.0

    # Collaborator retry (idempotent actions only)
    retry_attempts: int = 3
    retry_wait_multiplier: float = 1.0
    retry_wait_min: float = 1.0
    retry_wait_max: float = 10.0

    # Metrics
    time_saved_minutes: Dict[str, float] = Field(default_factory=_default_time_saved)

    persistence_path: Optional[Path] = None

    @field_validator("batch_max_concurrent_ceiling", "default_batch_concurrency")
    @classmethod
    def ensure_positive(cls, v: int) -> int:
        """Concurrency values must allow at least one worker."""
        if v < 1:
            raise ValueError("concurrency must be at least 1")
        return v


class ApprovalConfig(BaseModel):
    """Configuration for the approval sub-engine."""
    default_reminder_interval_hours: float = 24.0
    default_escalation_timeout_hours: float = 168.0
    reminder_template: str = "approval_reminder"
    escalation_template: str = "approval_escalation"
    request_template: str = "approval_request"


class MonitoringConfig(BaseModel):
    """Configuration for logging."""
    log_level: LogLevel = LogLevel.INFO
    log_format: Literal["json", "text"] = "json"


class DocflowConfig(BaseSettings):
    """
    Main Docflow Configuration

    Loads configuration from environment variables and/or config files.
    Environment variables are prefixed with DOCFLOW_
    (e.g., DOCFLOW_AUTOMATION__MAX_BATCH_SIZE=500)
    """

    instance_id: str = Field(default="docflow-primary")
    environment: Literal["development", "staging", "production"] = "development"

    automation: AutomationConfig = Field(default_factory=AutomationConfig)
    approval: ApprovalConfig = Field(default_factory=ApprovalConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)

    model_config = {
        "env_prefix": "DOCFLOW_",
        "env_nested_delimiter": "__",
        "case_sensitive": False,
    }

    @classmethod
    def from_file(cls, config_path: Path) -> "DocflowConfig":
        """Load configuration from a JSON file."""
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with open(config_path) as f:
            config_data = json.load(f)

        return cls(**config_data)

    def to_file(self, config_path: Path) -> None:
        """Save configuration to a JSON file."""
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w") as f:
            json.dump(self.model_dump(), f, indent=2, default=str)

    def capabilities(self) -> Dict[str, Any]:
        """Limits advertised to callers."""
        return {
            "max_workflows": self.automation.max_workflows,
            "max_actions_per_workflow": self.automation.max_actions_per_workflow,
            "max_batch_size": self.automation.max_batch_size,
            "max_batch_concurrency": self.automation.batch_max_concurrent_ceiling,
            "max_concurrent_executions": self.automation.max_concurrent_executions,
            "execution_timeout_seconds": self.automation.execution_timeout_seconds,
        }


# Global configuration instance (lazy loaded)
_config: Optional[DocflowConfig] = None


def get_config() -> DocflowConfig:
    """Get the global Docflow configuration instance."""
    global _config
    if _config is None:
        _config = DocflowConfig()
    return _config


def set_config(config: DocflowConfig) -> None:
    """Set the global Docflow configuration instance."""
    global _config
    _config = config


def reset_config() -> None:
    """Reset the global configuration to default."""
    global _config
    _config = None
