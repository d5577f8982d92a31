"""
Docflow Built-in Workflows

Workflow definitions installed by the automation service on start.
"""

from __future__ import annotations

from typing import List, Optional, Sequence

from docflow.automation.types import (
    ActionConfig,
    ActionType,
    ArchiveParams,
    Condition,
    ConditionOperator,
    CreateApprovalParams,
    NotifyParams,
    RunAnalysisParams,
    TriggerConfig,
    TriggerType,
    Workflow,
    WorkflowCategory,
    WorkflowPriority,
)

DEFAULT_APPROVERS = ("document-approvers",)


def document_lifecycle_workflow() -> Workflow:
    """Nightly analysis followed by archiving."""
    return Workflow(
        id="document_lifecycle_management",
        name="Document Lifecycle Management",
        description="Automated document archiving and retention based on age and usage",
        triggers=[
            TriggerConfig(
                trigger_type=TriggerType.SCHEDULE,
                cron_expression="0 2 * * *",
                description="Daily at 02:00",
            ),
        ],
        actions=[
            ActionConfig(
                kind=ActionType.RUN_ANALYSIS,
                params=RunAnalysisParams(formats=["lifecycle"]),
                id="analyze_documents",
                name="Analyze Document Age",
            ),
            ActionConfig(
                kind=ActionType.ARCHIVE,
                params=ArchiveParams(location="archive_library"),
                id="archive_old_documents",
                name="Archive Old Documents",
                depends_on=["analyze_documents"],
            ),
        ],
        category=WorkflowCategory.LIFECYCLE,
        priority=WorkflowPriority.HIGH,
        author="system",
    )


def document_approval_workflow(approvers: Optional[Sequence[str]] = None) -> Workflow:
    """Approval chain for newly created policy documents."""
    approvers = list(approvers or DEFAULT_APPROVERS)
    return Workflow(
        id="document_approval_process",
        name="Document Approval Process",
        description="Multi-stage document approval with notifications",
        triggers=[
            TriggerConfig(
                trigger_type=TriggerType.DOCUMENT_CREATED,
                event_filter={"contentType": "policy"},
            ),
        ],
        conditions=[
            Condition(
                id="content_type_check",
                path="contentType",
                operator=ConditionOperator.EQUALS,
                value="policy",
            ),
        ],
        actions=[
            ActionConfig(
                kind=ActionType.CREATE_APPROVAL,
                params=CreateApprovalParams(approvers=approvers, name="Policy approval"),
                id="create_approval",
                name="Create Approval Request",
            ),
            ActionConfig(
                kind=ActionType.NOTIFY,
                params=NotifyParams(
                    recipients=approvers,
                    template="approval_request",
                    message="{{ metadata.name }} is waiting for approval",
                ),
                id="send_notification",
                name="Notify Approvers",
            ),
        ],
        category=WorkflowCategory.APPROVAL,
        priority=WorkflowPriority.HIGH,
        author="system",
    )


def get_builtin_workflows(approvers: Optional[Sequence[str]] = None) -> List[Workflow]:
    """All built-in workflow definitions."""
    return [
        document_lifecycle_workflow(),
        document_approval_workflow(approvers),
    ]
