"""
Docflow Workflow Validator

Validates workflow definitions before they are stored.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import structlog
from croniter import croniter

from docflow.automation.conditions.evaluator import validate_condition
from docflow.automation.types import (
    ActionConfig,
    ActionType,
    ApprovalMode,
    ApprovalPolicy,
    Condition,
    CreateApprovalParams,
    TriggerType,
    Workflow,
)

logger = structlog.get_logger(__name__)


@dataclass
class ValidationError:
    """A validation error."""
    code: str
    message: str
    path: Optional[str] = None
    node_id: Optional[str] = None
    severity: str = "error"  # error, warning

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "path": self.path,
            "node_id": self.node_id,
            "severity": self.severity,
        }


@dataclass
class ValidationResult:
    """Result of workflow validation."""
    valid: bool
    errors: List[ValidationError] = field(default_factory=list)
    warnings: List[ValidationError] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
        }


class WorkflowValidator:
    """
    Validates workflow definitions.

    Checks:
    - At least one trigger and one action
    - Parameter schema per action kind
    - Condition operators and paths
    - Cron expressions of schedule triggers
    - Action references (existence, cycles)

    Unknown action kinds produce a warning so newer definitions still load.
    """

    def __init__(self, max_actions: int = 50):
        self.max_actions = max_actions

    def validate(self, workflow: Workflow) -> ValidationResult:
        """
        Validate a workflow definition.

        Args:
            workflow: Workflow to validate

        Returns:
            ValidationResult with errors and warnings
        """
        errors: List[ValidationError] = []
        warnings: List[ValidationError] = []

        errors.extend(self._validate_structure(workflow))
        errors.extend(self._validate_triggers(workflow))
        errors.extend(self._validate_conditions(workflow.conditions, "conditions"))

        action_errors, action_warnings = self._validate_actions(workflow)
        errors.extend(action_errors)
        warnings.extend(action_warnings)

        reference_errors, reference_warnings = self._validate_references(workflow)
        errors.extend(reference_errors)
        warnings.extend(reference_warnings)

        errors.extend(self._detect_cycles(workflow))

        result = ValidationResult(valid=not errors, errors=errors, warnings=warnings)
        if not result.valid:
            logger.debug(
                "workflow_invalid",
                workflow_id=workflow.id,
                codes=[e.code for e in errors],
            )
        return result

    def _validate_structure(self, workflow: Workflow) -> List[ValidationError]:
        errors = []

        if not workflow.id:
            errors.append(ValidationError(
                code="MISSING_ID",
                message="Workflow must have an ID",
                path="id",
            ))

        if not workflow.name:
            errors.append(ValidationError(
                code="MISSING_NAME",
                message="Workflow must have a name",
                path="name",
            ))

        if not workflow.triggers:
            errors.append(ValidationError(
                code="MISSING_TRIGGER",
                message="Workflow must have at least one trigger",
                path="triggers",
            ))

        if not workflow.actions:
            errors.append(ValidationError(
                code="MISSING_ACTION",
                message="Workflow must have at least one action",
                path="actions",
            ))
        elif len(workflow.actions) > self.max_actions:
            errors.append(ValidationError(
                code="TOO_MANY_ACTIONS",
                message=f"Workflow has {len(workflow.actions)} actions, limit is {self.max_actions}",
                path="actions",
            ))

        return errors

    def _validate_triggers(self, workflow: Workflow) -> List[ValidationError]:
        errors = []

        for i, trigger in enumerate(workflow.triggers):
            path = f"triggers[{i}]"

            if trigger.trigger_type != TriggerType.SCHEDULE:
                continue

            if not trigger.cron_expression:
                errors.append(ValidationError(
                    code="MISSING_TRIGGER_CONFIG",
                    message="Trigger type 'schedule' requires 'cron'",
                    path=f"{path}.cron",
                ))
            elif not croniter.is_valid(trigger.cron_expression):
                errors.append(ValidationError(
                    code="INVALID_CRON",
                    message=f"Invalid cron expression: {trigger.cron_expression}",
                    path=f"{path}.cron",
                ))

        return errors

    def _validate_conditions(
        self,
        conditions: List[Condition],
        path: str,
        node_id: Optional[str] = None,
    ) -> List[ValidationError]:
        errors = []
        for i, condition in enumerate(conditions):
            for message in validate_condition(condition, f"{path}[{i}]"):
                errors.append(ValidationError(
                    code="INVALID_CONDITION",
                    message=message,
                    path=f"{path}[{i}]",
                    node_id=node_id or condition.id,
                ))
        return errors

    def _validate_actions(self, workflow: Workflow):
        errors = []
        warnings = []
        action_ids = set()

        for i, action in enumerate(workflow.actions):
            path = f"actions[{i}]"

            if not action.id:
                errors.append(ValidationError(
                    code="MISSING_ACTION_ID",
                    message="Action must have an ID",
                    path=f"{path}.id",
                ))
            elif action.id in action_ids:
                errors.append(ValidationError(
                    code="DUPLICATE_ACTION_ID",
                    message=f"Duplicate action ID: {action.id}",
                    path=f"{path}.id",
                    node_id=action.id,
                ))
            else:
                action_ids.add(action.id)

            if not action.is_known_kind:
                warnings.append(ValidationError(
                    code="UNKNOWN_ACTION_KIND",
                    message=f"Action kind '{action.kind_value}' has no built-in handler",
                    path=f"{path}.kind",
                    node_id=action.id,
                    severity="warning",
                ))
            else:
                errors.extend(self._validate_params(action, path))

            if action.timeout_seconds is not None and action.timeout_seconds <= 0:
                errors.append(ValidationError(
                    code="INVALID_TIMEOUT",
                    message="Action timeout must be positive",
                    path=f"{path}.timeout_seconds",
                    node_id=action.id,
                ))

            errors.extend(self._validate_conditions(action.conditions, f"{path}.conditions", action.id))

        return errors, warnings

    def _validate_params(self, action: ActionConfig, path: str) -> List[ValidationError]:
        errors = []

        for name in action.params.missing_fields():
            errors.append(ValidationError(
                code="MISSING_ACTION_CONFIG",
                message=f"Action kind '{action.kind_value}' requires '{name}'",
                path=f"{path}.params.{name}",
                node_id=action.id,
            ))

        if action.kind == ActionType.WEBHOOK:
            url = action.params.url
            if url and "{{" not in url and not self._is_valid_url(url):
                errors.append(ValidationError(
                    code="INVALID_URL",
                    message=f"Invalid URL: {url}",
                    path=f"{path}.params.url",
                    node_id=action.id,
                ))

        if isinstance(action.params, CreateApprovalParams):
            if action.params.mode not in {m.value for m in ApprovalMode}:
                errors.append(ValidationError(
                    code="INVALID_APPROVAL_MODE",
                    message=f"Unknown approval mode: {action.params.mode}",
                    path=f"{path}.params.mode",
                    node_id=action.id,
                ))
            if action.params.policy not in {p.value for p in ApprovalPolicy}:
                errors.append(ValidationError(
                    code="INVALID_APPROVAL_POLICY",
                    message=f"Unknown approval policy: {action.params.policy}",
                    path=f"{path}.params.policy",
                    node_id=action.id,
                ))

        return errors

    def _validate_references(self, workflow: Workflow):
        errors = []
        warnings = []
        positions = {action.id: i for i, action in enumerate(workflow.actions)}

        for i, action in enumerate(workflow.actions):
            path = f"actions[{i}].depends_on"
            for dep in action.depends_on:
                if dep not in positions:
                    errors.append(ValidationError(
                        code="INVALID_DEPENDENCY",
                        message=f"Action '{action.id}' depends on non-existent action '{dep}'",
                        path=path,
                        node_id=action.id,
                    ))
                elif dep == action.id:
                    errors.append(ValidationError(
                        code="CYCLE_DETECTED",
                        message=f"Action '{action.id}' depends on itself",
                        path=path,
                        node_id=action.id,
                    ))
                elif positions[dep] > i:
                    warnings.append(ValidationError(
                        code="FORWARD_DEPENDENCY",
                        message=f"Action '{action.id}' depends on later action '{dep}' and will be skipped",
                        path=path,
                        node_id=action.id,
                        severity="warning",
                    ))

        return errors, warnings

    def _detect_cycles(self, workflow: Workflow) -> List[ValidationError]:
        """Detect cycles in action dependencies."""
        errors = []

        adjacency: Dict[str, List[str]] = {
            action.id: [d for d in action.depends_on if d != action.id]
            for action in workflow.actions
        }

        visited = set()
        path = set()

        def dfs(node: str) -> Optional[str]:
            visited.add(node)
            path.add(node)

            for neighbor in adjacency.get(node, []):
                if neighbor in path:
                    return neighbor
                if neighbor not in visited:
                    cycle = dfs(neighbor)
                    if cycle:
                        return cycle

            path.remove(node)
            return None

        for action in workflow.actions:
            if action.id not in visited:
                cycle_node = dfs(action.id)
                if cycle_node:
                    errors.append(ValidationError(
                        code="CYCLE_DETECTED",
                        message=f"Workflow contains a cycle involving action '{cycle_node}'",
                        node_id=cycle_node,
                    ))
                    break  # Report only one cycle

        return errors

    @staticmethod
    def _is_valid_url(url: str) -> bool:
        parsed = urlparse(url)
        return parsed.scheme in ("http", "https") and bool(parsed.netloc)
