"""
Docflow Workflow Automation System

Engine that defines, triggers, executes and monitors document workflows.

Core Features:
- Trigger types for document events, schedules, manual runs and webhooks
- Conjunctive conditions with disjunctive groups
- Document, notification, analysis, approval and webhook actions
- Copy-on-execute versioning and advisory cancellation
- Batch processing with a concurrency ceiling and time budget
- Approval stages with reminder and escalation timers
- Lifecycle policies and metrics over execution history
"""

from docflow.automation.types import (
    # Enums
    WorkflowCategory,
    WorkflowPriority,
    TriggerType,
    ActionType,
    ConditionOperator,
    ExecutionStatus,
    StepStatus,
    ApprovalMode,
    ApprovalPolicy,
    ApprovalStatus,
    StageDecision,
    ApprovalDecision,
    # Rule model
    TriggerConfig,
    Condition,
    ActionConfig,
    Workflow,
    # Execution
    StepResult,
    WorkflowExecution,
    # Approvals
    ReminderSettings,
    EscalationSettings,
    ApprovalStage,
    ApprovalWorkflow,
)
from docflow.automation.errors import (
    ErrorDetail,
    WorkflowEngineError,
    InvalidWorkflow,
    NotFound,
    InvalidTransition,
    WorkflowDisabled,
    InvalidRequest,
    ConditionEvaluationError,
    UnsupportedActionKind,
    ActionTimeout,
    CollaboratorError,
    DocumentNotFound,
    ConflictError,
    DeliveryError,
    BatchTimeout,
    ApprovalError,
)
from docflow.automation.engine import WorkflowEngine
from docflow.automation.registry import WorkflowRegistry
from docflow.automation.actions.executor import ActionExecutor
from docflow.automation.conditions.evaluator import ConditionEvaluator
from docflow.automation.approval.engine import ApprovalEngine
from docflow.automation.execution.context import ABSENT, ExecutionContext
from docflow.automation.execution.history import ExecutionHistory
from docflow.automation.batch import BatchCoordinator, BatchOptions, BatchResult
from docflow.automation.lifecycle import LifecycleManager, LifecyclePolicy, LifecycleCondition
from docflow.automation.metrics import MetricsAggregator, WorkflowMetric
from docflow.automation.templates import get_builtin_workflows
from docflow.automation.service import AutomationService, OperationResult

__all__ = [
    # Enums
    "WorkflowCategory",
    "WorkflowPriority",
    "TriggerType",
    "ActionType",
    "ConditionOperator",
    "ExecutionStatus",
    "StepStatus",
    "ApprovalMode",
    "ApprovalPolicy",
    "ApprovalStatus",
    "StageDecision",
    "ApprovalDecision",
    # Rule model
    "TriggerConfig",
    "Condition",
    "ActionConfig",
    "Workflow",
    # Execution
    "StepResult",
    "WorkflowExecution",
    # Approvals
    "ReminderSettings",
    "EscalationSettings",
    "ApprovalStage",
    "ApprovalWorkflow",
    # Errors
    "ErrorDetail",
    "WorkflowEngineError",
    "InvalidWorkflow",
    "NotFound",
    "InvalidTransition",
    "WorkflowDisabled",
    "InvalidRequest",
    "ConditionEvaluationError",
    "UnsupportedActionKind",
    "ActionTimeout",
    "CollaboratorError",
    "DocumentNotFound",
    "ConflictError",
    "DeliveryError",
    "BatchTimeout",
    "ApprovalError",
    # Components
    "WorkflowEngine",
    "WorkflowRegistry",
    "ActionExecutor",
    "ConditionEvaluator",
    "ApprovalEngine",
    "ABSENT",
    "ExecutionContext",
    "ExecutionHistory",
    "BatchCoordinator",
    "BatchOptions",
    "BatchResult",
    "LifecycleManager",
    "LifecyclePolicy",
    "LifecycleCondition",
    "MetricsAggregator",
    "WorkflowMetric",
    "get_builtin_workflows",
    "AutomationService",
    "OperationResult",
]
