"""
Docflow Automation Errors

Error taxonomy shared by the rule model, executor, batch coordinator
and approval sub-engine. Every error carries a stable code and, where
relevant, the id of the offending entity.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class ErrorDetail:
    """Structured error recorded on steps, executions and batch items."""
    code: str
    message: str
    offending_id: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "offending_id": self.offending_id,
            "details": self.details,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ErrorDetail":
        return cls(
            code=data["code"],
            message=data.get("message", ""),
            offending_id=data.get("offending_id"),
            details=data.get("details", {}),
        )


class WorkflowEngineError(Exception):
    """Base class for every engine error."""

    code = "WORKFLOW_ENGINE_ERROR"

    def __init__(
        self,
        message: str,
        offending_id: Optional[str] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.offending_id = offending_id
        if code:
            self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_detail(self) -> ErrorDetail:
        return ErrorDetail(
            code=self.code,
            message=self.message,
            offending_id=self.offending_id,
            details=dict(self.details),
        )


class InvalidWorkflow(WorkflowEngineError):
    """Raised when a workflow definition fails validation."""

    code = "INVALID_WORKFLOW"

    def __init__(
        self,
        message: str,
        offending_id: Optional[str] = None,
        errors: Optional[List[Dict[str, Any]]] = None,
    ):
        self.errors = errors or []
        super().__init__(message, offending_id, details={"errors": self.errors})


class NotFound(WorkflowEngineError):
    """Raised when a workflow, execution or approval does not exist."""

    code = "NOT_FOUND"


class InvalidTransition(WorkflowEngineError):
    """Raised when a state change is not allowed from the current state."""

    code = "INVALID_TRANSITION"


class WorkflowDisabled(WorkflowEngineError):
    """Raised when executing a disabled workflow."""

    code = "WORKFLOW_DISABLED"


class InvalidRequest(WorkflowEngineError):
    """Raised for malformed operation input."""

    code = "INVALID_REQUEST"


class ConditionEvaluationError(WorkflowEngineError):
    """Raised internally for malformed conditions."""

    code = "CONDITION_EVALUATION_ERROR"


class UnsupportedActionKind(WorkflowEngineError):
    """Raised when no handler is registered for an action kind."""

    code = "UNSUPPORTED_ACTION_KIND"


class ActionTimeout(WorkflowEngineError):
    """Raised when an action exceeds its timeout."""

    code = "ACTION_TIMEOUT"


class CollaboratorError(WorkflowEngineError):
    """Raised when a collaborator (content, analysis, notification) fails."""

    code = "COLLABORATOR_ERROR"


class DocumentNotFound(CollaboratorError):
    """The content service has no such document."""

    code = "DOCUMENT_NOT_FOUND"


class ConflictError(CollaboratorError):
    """The content service rejected a change because of a conflict."""

    code = "CONFLICT"


class DeliveryError(CollaboratorError):
    """A notification could not be delivered."""

    code = "DELIVERY_ERROR"


class BatchTimeout(WorkflowEngineError):
    """A batch item was not started before the batch budget expired."""

    code = "BATCH_TIMEOUT"


class ApprovalError(WorkflowEngineError):
    """Raised for invalid approval decisions."""

    code = "APPROVAL_ERROR"
