"""
Docflow Workflow Automation Types

Core dataclasses for workflow definitions, executions and approvals.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, asdict
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Type, Union
import copy
import uuid

from croniter import croniter

from docflow.automation.errors import ErrorDetail


# === Enums ===


class WorkflowCategory(str, Enum):
    """Business category of a workflow."""
    LIFECYCLE = "lifecycle"
    COMPLIANCE = "compliance"
    APPROVAL = "approval"
    CONTENT_MANAGEMENT = "content_management"
    ANALYTICS = "analytics"
    INTEGRATION = "integration"
    CUSTOM = "custom"


class WorkflowPriority(str, Enum):
    """Priority of a workflow. Ordered low < normal < high < critical."""
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self.value]

    def __lt__(self, other: "WorkflowPriority") -> bool:
        if not isinstance(other, WorkflowPriority):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: "WorkflowPriority") -> bool:
        if not isinstance(other, WorkflowPriority):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: "WorkflowPriority") -> bool:
        if not isinstance(other, WorkflowPriority):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: "WorkflowPriority") -> bool:
        if not isinstance(other, WorkflowPriority):
            return NotImplemented
        return self.rank >= other.rank


_PRIORITY_RANK = {"low": 0, "normal": 1, "high": 2, "critical": 3}


class TriggerType(str, Enum):
    """Types of workflow triggers."""
    DOCUMENT_CREATED = "document_created"
    DOCUMENT_MODIFIED = "document_modified"
    DOCUMENT_ACCESSED = "document_accessed"
    METADATA_CHANGED = "metadata_changed"
    SCHEDULE = "schedule"        # Cron-based
    MANUAL = "manual"            # User-initiated
    API_WEBHOOK = "api_webhook"  # External HTTP call


class ActionType(str, Enum):
    """Types of workflow actions."""
    MOVE = "move"
    COPY = "copy"
    DELETE = "delete"
    UPDATE_METADATA = "update_metadata"
    NOTIFY = "notify"
    CREATE_APPROVAL = "create_approval"
    RUN_ANALYSIS = "run_analysis"
    ARCHIVE = "archive"
    APPLY_RETENTION = "apply_retention"
    SEND_EMAIL = "send_email"
    WEBHOOK = "webhook"


class ConditionOperator(str, Enum):
    """Condition operators for comparisons."""
    EQUALS = "eq"
    NOT_EQUALS = "ne"
    GREATER_THAN = "gt"
    LESS_THAN = "lt"
    GREATER_EQUAL = "gte"
    LESS_EQUAL = "lte"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    MATCHES = "matches"          # Regex
    IN = "in"
    NOT_IN = "not_in"
    EXISTS = "exists"
    NOT_EXISTS = "not_exists"
    IS_EMPTY = "is_empty"
    IS_NOT_EMPTY = "is_not_empty"
    IS_TRUE = "is_true"
    IS_FALSE = "is_false"


class ExecutionStatus(str, Enum):
    """Status of a workflow execution."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class StepStatus(str, Enum):
    """Status of a single step within an execution."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


# === Trigger Configuration ===


@dataclass
class TriggerConfig:
    """Configuration for a workflow trigger. Triggers are matched by the caller."""
    trigger_type: TriggerType = TriggerType.MANUAL

    # Schedule trigger
    cron_expression: Optional[str] = None
    timezone: str = "UTC"

    # Event triggers (document/metadata events)
    event_filter: Optional[Dict[str, Any]] = None

    enabled: bool = True
    description: str = ""

    def next_run(self, after: Optional[datetime] = None) -> Optional[datetime]:
        """Next fire time of a schedule trigger."""
        if self.trigger_type != TriggerType.SCHEDULE or not self.cron_expression:
            return None
        return croniter(self.cron_expression, after or datetime.now()).get_next(datetime)

    def matches(self, event_type: Union[TriggerType, str], data: Optional[Dict[str, Any]] = None) -> bool:
        """Check whether an event of the given type (and payload) fires this trigger."""
        if not self.enabled:
            return False
        if TriggerType(event_type) != self.trigger_type:
            return False
        if self.event_filter:
            data = data or {}
            for key, expected in self.event_filter.items():
                if data.get(key) != expected:
                    return False
        return True

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "type": self.trigger_type.value,
            "cron": self.cron_expression,
            "timezone": self.timezone,
            "event_filter": self.event_filter,
            "enabled": self.enabled,
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TriggerConfig":
        """Create from dictionary."""
        return cls(
            trigger_type=TriggerType(data.get("type", "manual")),
            cron_expression=data.get("cron"),
            timezone=data.get("timezone", "UTC"),
            event_filter=data.get("event_filter"),
            enabled=data.get("enabled", True),
            description=data.get("description", ""),
        )


# === Conditions ===


@dataclass
class Condition:
    """
    A predicate over the execution context.

    A leaf compares the value at ``path`` (dotted) with ``value``.
    A node with ``any_of`` is a disjunctive group and is satisfied when any
    member is.
    """
    path: str = ""
    operator: ConditionOperator = ConditionOperator.EQUALS
    value: Any = None

    any_of: List["Condition"] = field(default_factory=list)
    negate: bool = False

    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def is_group(self) -> bool:
        return bool(self.any_of)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        result = {
            "id": self.id,
            "path": self.path,
            "operator": self.operator.value if isinstance(self.operator, ConditionOperator) else self.operator,
            "value": self.value,
            "negate": self.negate,
        }
        if self.any_of:
            result["any_of"] = [c.to_dict() for c in self.any_of]
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Condition":
        """Create from dictionary. Unknown operators are kept as strings for the validator."""
        operator = data.get("operator", "eq")
        try:
            operator = ConditionOperator(operator)
        except ValueError:
            pass
        return cls(
            id=data.get("id", str(uuid.uuid4())),
            path=data.get("path", data.get("field", "")),
            operator=operator,
            value=data.get("value"),
            negate=data.get("negate", False),
            any_of=[cls.from_dict(c) for c in data.get("any_of", [])],
        )


# === Action Parameters ===


@dataclass
class ActionParams:
    """Base for the per-kind parameter variants."""

    REQUIRED: ClassVar[Tuple[str, ...]] = ()

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ActionParams":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    def missing_fields(self) -> List[str]:
        return [name for name in self.REQUIRED if getattr(self, name) in (None, "", [], {})]


@dataclass
class MoveParams(ActionParams):
    REQUIRED: ClassVar[Tuple[str, ...]] = ("destination",)

    destination: str = ""
    overwrite: bool = False


@dataclass
class CopyParams(ActionParams):
    REQUIRED: ClassVar[Tuple[str, ...]] = ("destination",)

    destination: str = ""
    overwrite: bool = False


@dataclass
class DeleteParams(ActionParams):
    permanent: bool = False


@dataclass
class UpdateMetadataParams(ActionParams):
    REQUIRED: ClassVar[Tuple[str, ...]] = ("updates",)

    updates: Dict[str, Any] = field(default_factory=dict)


@dataclass
class NotifyParams(ActionParams):
    REQUIRED: ClassVar[Tuple[str, ...]] = ("recipients",)

    recipients: List[str] = field(default_factory=list)
    template: str = "workflow_notification"
    message: str = ""
    require_delivery: bool = False


@dataclass
class CreateApprovalParams(ActionParams):
    REQUIRED: ClassVar[Tuple[str, ...]] = ("approvers",)

    approvers: List[str] = field(default_factory=list)
    stages: List[Dict[str, Any]] = field(default_factory=list)
    name: str = "Document approval"
    mode: str = "sequential"
    policy: str = "unanimous"
    reminder_hours: Optional[float] = None
    escalation_hours: Optional[float] = None
    escalate_to: List[str] = field(default_factory=list)
    escalation_override: bool = True

    def missing_fields(self) -> List[str]:
        # Approvers are optional when explicit stages are supplied
        return [] if self.approvers or self.stages else ["approvers"]


@dataclass
class RunAnalysisParams(ActionParams):
    formats: List[str] = field(default_factory=lambda: ["executive"])
    tag: bool = True


@dataclass
class ArchiveParams(ActionParams):
    location: Optional[str] = None


@dataclass
class ApplyRetentionParams(ActionParams):
    REQUIRED: ClassVar[Tuple[str, ...]] = ("label",)

    label: str = ""
    retention_days: int = 365


@dataclass
class SendEmailParams(ActionParams):
    REQUIRED: ClassVar[Tuple[str, ...]] = ("to", "subject")

    to: List[str] = field(default_factory=list)
    subject: str = ""
    body: str = ""
    require_delivery: bool = False


@dataclass
class WebhookParams(ActionParams):
    REQUIRED: ClassVar[Tuple[str, ...]] = ("url",)

    url: str = ""
    method: str = "POST"
    headers: Dict[str, str] = field(default_factory=dict)
    payload: Optional[Dict[str, Any]] = None


@dataclass
class UnknownActionParams(ActionParams):
    """Parameters of an action kind this engine does not know about."""
    raw: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.raw)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UnknownActionParams":
        return cls(raw=dict(data))


ACTION_PARAMS: Dict[ActionType, Type[ActionParams]] = {
    ActionType.MOVE: MoveParams,
    ActionType.COPY: CopyParams,
    ActionType.DELETE: DeleteParams,
    ActionType.UPDATE_METADATA: UpdateMetadataParams,
    ActionType.NOTIFY: NotifyParams,
    ActionType.CREATE_APPROVAL: CreateApprovalParams,
    ActionType.RUN_ANALYSIS: RunAnalysisParams,
    ActionType.ARCHIVE: ArchiveParams,
    ActionType.APPLY_RETENTION: ApplyRetentionParams,
    ActionType.SEND_EMAIL: SendEmailParams,
    ActionType.WEBHOOK: WebhookParams,
}

# Kinds that may be retried on collaborator failure without an idempotency key
IDEMPOTENT_ACTIONS = frozenset({ActionType.RUN_ANALYSIS, ActionType.APPLY_RETENTION})


def parse_action_kind(value: Union[ActionType, str]) -> Union[ActionType, str]:
    """Return the ActionType for ``value``, or the raw string for unknown kinds."""
    if isinstance(value, ActionType):
        return value
    try:
        return ActionType(value)
    except ValueError:
        return value


def params_from_dict(kind: Union[ActionType, str], data: Optional[Dict[str, Any]]) -> ActionParams:
    """Build the tagged parameter variant for an action kind."""
    params_cls = ACTION_PARAMS.get(kind) if isinstance(kind, ActionType) else None
    if params_cls is None:
        return UnknownActionParams.from_dict(data or {})
    return params_cls.from_dict(data or {})


# === Actions ===


@dataclass
class ActionConfig:
    """A single action of a workflow."""
    kind: Union[ActionType, str] = ActionType.NOTIFY
    params: ActionParams = field(default_factory=NotifyParams)

    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    name: str = ""

    # Error handling (None inherits the workflow default)
    continue_on_error: Optional[bool] = None
    timeout_seconds: Optional[float] = None
    max_retries: Optional[int] = None
    idempotency_key: Optional[str] = None

    # Ordering
    depends_on: List[str] = field(default_factory=list)
    parallel_safe: bool = False

    # Step-level guard
    conditions: List[Condition] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.kind = parse_action_kind(self.kind)
        if isinstance(self.params, dict):
            self.params = params_from_dict(self.kind, self.params)

    @property
    def kind_value(self) -> str:
        return self.kind.value if isinstance(self.kind, ActionType) else str(self.kind)

    @property
    def is_known_kind(self) -> bool:
        return isinstance(self.kind, ActionType)

    @property
    def is_idempotent(self) -> bool:
        return self.kind in IDEMPOTENT_ACTIONS or bool(self.idempotency_key)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "kind": self.kind_value,
            "params": self.params.to_dict(),
            "continue_on_error": self.continue_on_error,
            "timeout_seconds": self.timeout_seconds,
            "max_retries": self.max_retries,
            "idempotency_key": self.idempotency_key,
            "depends_on": list(self.depends_on),
            "parallel_safe": self.parallel_safe,
            "conditions": [c.to_dict() for c in self.conditions],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ActionConfig":
        """Create from dictionary."""
        kind = parse_action_kind(data.get("kind", data.get("type", "notify")))
        return cls(
            id=data.get("id") or str(uuid.uuid4()),
            name=data.get("name", ""),
            kind=kind,
            params=params_from_dict(kind, data.get("params", {})),
            continue_on_error=data.get("continue_on_error"),
            timeout_seconds=data.get("timeout_seconds"),
            max_retries=data.get("max_retries"),
            idempotency_key=data.get("idempotency_key"),
            depends_on=list(data.get("depends_on", [])),
            parallel_safe=data.get("parallel_safe", False),
            conditions=[Condition.from_dict(c) for c in data.get("conditions", [])],
        )


# === Workflow ===


@dataclass
class Workflow:
    """A workflow definition."""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    # Identity
    name: str = ""
    description: str = ""
    version: int = 1
    enabled: bool = True

    # Rule
    triggers: List[TriggerConfig] = field(default_factory=list)
    conditions: List[Condition] = field(default_factory=list)
    actions: List[ActionConfig] = field(default_factory=list)

    # Classification
    category: WorkflowCategory = WorkflowCategory.CUSTOM
    priority: WorkflowPriority = WorkflowPriority.NORMAL

    # Settings
    continue_on_error: bool = False

    # Owner
    author: str = ""

    # Timestamps
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    # Metadata
    tags: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def get_action(self, action_id: str) -> Optional[ActionConfig]:
        """Get an action by ID."""
        for action in self.actions:
            if action.id == action_id:
                return action
        return None

    def continues_on_error(self, action: ActionConfig) -> bool:
        """Effective continue-on-error flag for an action."""
        if action.continue_on_error is None:
            return self.continue_on_error
        return action.continue_on_error

    def has_trigger(self, trigger_type: TriggerType) -> bool:
        return any(t.trigger_type == trigger_type and t.enabled for t in self.triggers)

    def snapshot(self) -> "Workflow":
        """Deep copy pinned by an execution at dispatch."""
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "version": self.version,
            "enabled": self.enabled,
            "triggers": [t.to_dict() for t in self.triggers],
            "conditions": [c.to_dict() for c in self.conditions],
            "actions": [a.to_dict() for a in self.actions],
            "category": self.category.value,
            "priority": self.priority.value,
            "continue_on_error": self.continue_on_error,
            "author": self.author,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "tags": list(self.tags),
            "metadata": copy.deepcopy(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Workflow":
        """Create from dictionary."""
        workflow = cls(
            id=data.get("id") or str(uuid.uuid4()),
            name=data.get("name", ""),
            description=data.get("description", ""),
            version=data.get("version", 1),
            enabled=data.get("enabled", True),
            category=WorkflowCategory(data.get("category", "custom")),
            priority=WorkflowPriority(data.get("priority", "normal")),
            continue_on_error=data.get("continue_on_error", False),
            author=data.get("author", ""),
            tags=list(data.get("tags", [])),
            metadata=dict(data.get("metadata", {})),
        )

        for trigger_data in data.get("triggers", []):
            workflow.triggers.append(TriggerConfig.from_dict(trigger_data))

        for condition_data in data.get("conditions", []):
            workflow.conditions.append(Condition.from_dict(condition_data))

        for action_data in data.get("actions", []):
            workflow.actions.append(ActionConfig.from_dict(action_data))

        if "created_at" in data:
            workflow.created_at = _parse_datetime(data["created_at"])
        if "updated_at" in data:
            workflow.updated_at = _parse_datetime(data["updated_at"])

        return workflow


# === Execution Types ===


@dataclass
class StepResult:
    """The record of one action's execution within an Execution."""
    action_index: int = 0
    action_id: str = ""
    action_name: str = ""
    kind: str = ""
    status: StepStatus = StepStatus.PENDING

    # Output
    output: Any = None
    error: Optional[ErrorDetail] = None
    warnings: List[str] = field(default_factory=list)
    skip_reason: Optional[str] = None

    # Timing
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    attempts: int = 0

    @property
    def duration_ms(self) -> float:
        if self.started_at and self.finished_at:
            return (self.finished_at - self.started_at).total_seconds() * 1000
        return 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "action_index": self.action_index,
            "action_id": self.action_id,
            "action_name": self.action_name,
            "kind": self.kind,
            "status": self.status.value,
            "output": self.output,
            "error": self.error.to_dict() if self.error else None,
            "warnings": list(self.warnings),
            "skip_reason": self.skip_reason,
            "started_at": _iso(self.started_at),
            "finished_at": _iso(self.finished_at),
            "duration_ms": self.duration_ms,
            "attempts": self.attempts,
        }


@dataclass
class WorkflowExecution:
    """An instance of workflow execution, pinned to one workflow version."""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    workflow_id: str = ""
    workflow_name: str = ""
    workflow_version: int = 1
    workflow_category: WorkflowCategory = WorkflowCategory.CUSTOM

    # Trigger info
    trigger_type: Optional[TriggerType] = None
    document_id: Optional[str] = None
    initiated_by: Optional[str] = None

    # State
    status: ExecutionStatus = ExecutionStatus.PENDING
    steps: List[StepResult] = field(default_factory=list)
    skipped: bool = False
    skip_reason: Optional[str] = None
    cancel_requested: bool = False

    # Failure
    error: Optional[ErrorDetail] = None
    failed_step_index: Optional[int] = None

    # Timing
    created_at: datetime = field(default_factory=datetime.now)
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None

    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def duration_ms(self) -> float:
        if self.started_at and self.ended_at:
            return (self.ended_at - self.started_at).total_seconds() * 1000
        return 0.0

    def is_terminal(self) -> bool:
        """Check if execution is in a terminal state."""
        return self.status in (
            ExecutionStatus.COMPLETED,
            ExecutionStatus.FAILED,
            ExecutionStatus.CANCELLED,
        )

    def completed_steps(self) -> List[StepResult]:
        return [s for s in self.steps if s.status == StepStatus.COMPLETED]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "workflow_id": self.workflow_id,
            "workflow_name": self.workflow_name,
            "workflow_version": self.workflow_version,
            "workflow_category": self.workflow_category.value,
            "trigger_type": self.trigger_type.value if self.trigger_type else None,
            "document_id": self.document_id,
            "initiated_by": self.initiated_by,
            "status": self.status.value,
            "steps": [s.to_dict() for s in self.steps],
            "skipped": self.skipped,
            "skip_reason": self.skip_reason,
            "cancel_requested": self.cancel_requested,
            "error": self.error.to_dict() if self.error else None,
            "failed_step_index": self.failed_step_index,
            "started_at": _iso(self.started_at),
            "ended_at": _iso(self.ended_at),
            "duration_ms": self.duration_ms,
            "metadata": self.metadata,
        }


# === Approval Types ===


class ApprovalMode(str, Enum):
    """How stages of an approval workflow are scheduled."""
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"


class ApprovalPolicy(str, Enum):
    """How a stage combines its approvers' decisions."""
    UNANIMOUS = "unanimous"
    FIRST_RESPONSE = "first_response"
    MAJORITY = "majority"


class ApprovalStatus(str, Enum):
    """Status of an approval workflow."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class StageDecision(str, Enum):
    """Decision of a single approval stage."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ApprovalDecision(str, Enum):
    """A single approver's vote."""
    APPROVE = "approve"
    REJECT = "reject"


@dataclass
class ReminderSettings:
    """Periodic reminders sent to approvers of a pending stage."""
    enabled: bool = False
    interval_hours: float = 24.0
    template: str = "approval_reminder"

    def to_dict(self) -> Dict[str, Any]:
        return {"enabled": self.enabled, "interval_hours": self.interval_hours, "template": self.template}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReminderSettings":
        return cls(
            enabled=data.get("enabled", False),
            interval_hours=data.get("interval_hours", 24.0),
            template=data.get("template", "approval_reminder"),
        )


@dataclass
class EscalationSettings:
    """
    One-shot escalation of a stage that stays pending too long.

    With ``override`` a decision from an escalation target settles the stage
    on its own; without it the targets vote alongside the stage approvers
    under the stage policy.
    """
    enabled: bool = False
    timeout_hours: float = 168.0
    escalate_to: List[str] = field(default_factory=list)
    template: str = "approval_escalation"
    override: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "timeout_hours": self.timeout_hours,
            "escalate_to": list(self.escalate_to),
            "template": self.template,
            "override": self.override,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EscalationSettings":
        return cls(
            enabled=data.get("enabled", False),
            timeout_hours=data.get("timeout_hours", 168.0),
            escalate_to=list(data.get("escalate_to", [])),
            template=data.get("template", "approval_escalation"),
            override=data.get("override", True),
        )


@dataclass
class ApprovalResponse:
    """A recorded approver decision."""
    approver: str = ""
    decision: ApprovalDecision = ApprovalDecision.APPROVE
    comment: str = ""
    responded_at: datetime = field(default_factory=datetime.now)
    escalated: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "approver": self.approver,
            "decision": self.decision.value,
            "comment": self.comment,
            "responded_at": self.responded_at.isoformat(),
            "escalated": self.escalated,
        }


@dataclass
class ApprovalStage:
    """One stage of an approval workflow."""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    name: str = ""
    tier: int = 0

    approvers: List[str] = field(default_factory=list)
    policy: ApprovalPolicy = ApprovalPolicy.UNANIMOUS
    allow_override: bool = False

    reminder: ReminderSettings = field(default_factory=ReminderSettings)
    escalation: EscalationSettings = field(default_factory=EscalationSettings)

    # State
    decision: StageDecision = StageDecision.PENDING
    escalated: bool = False
    escalated_to: List[str] = field(default_factory=list)
    responses: List[ApprovalResponse] = field(default_factory=list)
    reminders_sent: int = 0
    started_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.started_at is not None and self.decision == StageDecision.PENDING

    @property
    def eligible_approvers(self) -> List[str]:
        return list(self.approvers) + [a for a in self.escalated_to if a not in self.approvers]

    def has_responded(self, approver: str) -> bool:
        return any(r.approver == approver for r in self.responses)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "tier": self.tier,
            "approvers": list(self.approvers),
            "policy": self.policy.value,
            "allow_override": self.allow_override,
            "reminder": self.reminder.to_dict(),
            "escalation": self.escalation.to_dict(),
            "decision": self.decision.value,
            "escalated": self.escalated,
            "escalated_to": list(self.escalated_to),
            "responses": [r.to_dict() for r in self.responses],
            "reminders_sent": self.reminders_sent,
            "started_at": _iso(self.started_at),
            "resolved_at": _iso(self.resolved_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ApprovalStage":
        return cls(
            id=data.get("id") or str(uuid.uuid4()),
            name=data.get("name", ""),
            tier=data.get("tier", 0),
            approvers=list(data.get("approvers", [])),
            policy=ApprovalPolicy(data.get("policy", "unanimous")),
            allow_override=data.get("allow_override", False),
            reminder=ReminderSettings.from_dict(data.get("reminder", {})),
            escalation=EscalationSettings.from_dict(data.get("escalation", {})),
        )


@dataclass
class ApprovalWorkflow:
    """A multi-stage approval for a document."""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    name: str = ""
    document_id: Optional[str] = None
    mode: ApprovalMode = ApprovalMode.SEQUENTIAL
    stages: List[ApprovalStage] = field(default_factory=list)

    status: ApprovalStatus = ApprovalStatus.PENDING
    requested_by: Optional[str] = None
    execution_id: Optional[str] = None

    created_at: datetime = field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None

    metadata: Dict[str, Any] = field(default_factory=dict)

    def get_stage(self, stage_id: str) -> Optional[ApprovalStage]:
        """Get a stage by ID."""
        for stage in self.stages:
            if stage.id == stage_id:
                return stage
        return None

    def active_stages(self) -> List[ApprovalStage]:
        return [s for s in self.stages if s.is_active]

    def is_terminal(self) -> bool:
        return self.status in (
            ApprovalStatus.APPROVED,
            ApprovalStatus.REJECTED,
            ApprovalStatus.CANCELLED,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "document_id": self.document_id,
            "mode": self.mode.value,
            "stages": [s.to_dict() for s in self.stages],
            "status": self.status.value,
            "requested_by": self.requested_by,
            "execution_id": self.execution_id,
            "created_at": self.created_at.isoformat(),
            "completed_at": _iso(self.completed_at),
            "metadata": self.metadata,
        }
