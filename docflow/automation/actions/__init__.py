"""
Docflow Automation Actions

Action handlers for workflow steps.
"""

from docflow.automation.actions.executor import (
    ActionExecutor,
    ActionOutcome,
    BaseActionHandler,
)
from docflow.automation.actions.documents import (
    MoveActionHandler,
    CopyActionHandler,
    DeleteActionHandler,
    UpdateMetadataActionHandler,
    ArchiveActionHandler,
    ApplyRetentionActionHandler,
)
from docflow.automation.actions.notification import (
    NotifyActionHandler,
    SendEmailActionHandler,
)
from docflow.automation.actions.analysis import RunAnalysisActionHandler
from docflow.automation.actions.approval import CreateApprovalActionHandler
from docflow.automation.actions.webhook import WebhookActionHandler

__all__ = [
    "ActionExecutor",
    "ActionOutcome",
    "BaseActionHandler",
    "MoveActionHandler",
    "CopyActionHandler",
    "DeleteActionHandler",
    "UpdateMetadataActionHandler",
    "ArchiveActionHandler",
    "ApplyRetentionActionHandler",
    "NotifyActionHandler",
    "SendEmailActionHandler",
    "RunAnalysisActionHandler",
    "CreateApprovalActionHandler",
    "WebhookActionHandler",
]
