"""
Docflow - Document Workflow Automation

Rule-based document processing with:
- Versioned workflow definitions (triggers, conditions, actions)
- Execution state machine with step history
- Bounded-concurrency batch processing
- Multi-stage approvals with reminders and escalation
- Lifecycle policies and execution metrics
"""

__version__ = "1.0.0"
__author__ = "Docflow Team"

from docflow.core.config import DocflowConfig
from docflow.automation.service import AutomationService, OperationResult

__all__ = ["AutomationService", "OperationResult", "DocflowConfig", "__version__"]
