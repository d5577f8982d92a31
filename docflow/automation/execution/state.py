"""
Docflow Execution State Machine

Guarded state transitions for executions and their steps.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, FrozenSet, List, Optional

import structlog

from docflow.automation.errors import ErrorDetail, InvalidTransition
from docflow.automation.types import (
    ExecutionStatus,
    StepResult,
    StepStatus,
    WorkflowExecution,
)

logger = structlog.get_logger(__name__)


EXECUTION_TRANSITIONS: Dict[ExecutionStatus, FrozenSet[ExecutionStatus]] = {
    ExecutionStatus.PENDING: frozenset({ExecutionStatus.RUNNING, ExecutionStatus.CANCELLED}),
    ExecutionStatus.RUNNING: frozenset({
        ExecutionStatus.COMPLETED,
        ExecutionStatus.FAILED,
        ExecutionStatus.CANCELLED,
    }),
    ExecutionStatus.COMPLETED: frozenset(),
    ExecutionStatus.FAILED: frozenset(),
    ExecutionStatus.CANCELLED: frozenset(),
}

STEP_TRANSITIONS: Dict[StepStatus, FrozenSet[StepStatus]] = {
    StepStatus.PENDING: frozenset({StepStatus.RUNNING, StepStatus.SKIPPED}),
    StepStatus.RUNNING: frozenset({StepStatus.COMPLETED, StepStatus.FAILED}),
    StepStatus.COMPLETED: frozenset(),
    StepStatus.FAILED: frozenset(),
    StepStatus.SKIPPED: frozenset(),
}


def can_transition(current: ExecutionStatus, target: ExecutionStatus) -> bool:
    """Check whether an execution may move from ``current`` to ``target``."""
    return target in EXECUTION_TRANSITIONS[current]


class ExecutionStateMachine:
    """
    Drives a WorkflowExecution through its lifecycle.

    PENDING -> RUNNING -> {COMPLETED, FAILED, CANCELLED}. Terminal states
    are final; any attempt to leave them raises InvalidTransition.
    """

    def __init__(self, execution: WorkflowExecution):
        self.execution = execution

    # === Execution Transitions ===

    def _transition(self, target: ExecutionStatus) -> None:
        current = self.execution.status
        if not can_transition(current, target):
            raise InvalidTransition(
                f"Execution cannot move from {current.value} to {target.value}",
                self.execution.id,
            )
        self.execution.status = target
        logger.debug(
            "execution_transition",
            execution_id=self.execution.id,
            from_status=current.value,
            to_status=target.value,
        )

    def start(self) -> None:
        """PENDING -> RUNNING."""
        self._transition(ExecutionStatus.RUNNING)
        self.execution.started_at = datetime.now()

    def complete(self, skip_reason: Optional[str] = None) -> None:
        """RUNNING -> COMPLETED. A skip reason marks the run as skipped."""
        self._transition(ExecutionStatus.COMPLETED)
        if skip_reason is not None:
            self.execution.skipped = True
            self.execution.skip_reason = skip_reason
        self._finish()

    def fail(self, error: ErrorDetail, failed_step_index: Optional[int] = None) -> None:
        """RUNNING -> FAILED."""
        self._transition(ExecutionStatus.FAILED)
        self.execution.error = error
        self.execution.failed_step_index = failed_step_index
        self._finish()

    def cancel(self) -> None:
        """Any non-terminal state -> CANCELLED. Pending steps are skipped."""
        self._transition(ExecutionStatus.CANCELLED)
        if self.execution.started_at is None:
            self.execution.started_at = datetime.now()
        self.skip_pending("cancelled")
        self._finish()

    def _finish(self) -> None:
        self.execution.ended_at = datetime.now()

    # === Step Transitions ===

    def _step_transition(self, step: StepResult, target: StepStatus) -> None:
        if target not in STEP_TRANSITIONS[step.status]:
            raise InvalidTransition(
                f"Step {step.action_index} cannot move from {step.status.value} to {target.value}",
                step.action_id,
            )
        step.status = target

    def start_step(self, step: StepResult) -> None:
        self._step_transition(step, StepStatus.RUNNING)
        step.started_at = datetime.now()

    def complete_step(
        self,
        step: StepResult,
        output: Any = None,
        warnings: Optional[List[str]] = None,
    ) -> None:
        self._step_transition(step, StepStatus.COMPLETED)
        step.output = output
        if warnings:
            step.warnings.extend(warnings)
        step.finished_at = datetime.now()

    def fail_step(self, step: StepResult, error: ErrorDetail) -> None:
        self._step_transition(step, StepStatus.FAILED)
        step.error = error
        step.finished_at = datetime.now()

    def skip_step(self, step: StepResult, reason: str) -> None:
        self._step_transition(step, StepStatus.SKIPPED)
        step.skip_reason = reason

    def skip_pending(self, reason: str) -> int:
        """Skip every step that has not started. Returns how many were skipped."""
        count = 0
        for step in self.execution.steps:
            if step.status == StepStatus.PENDING:
                self.skip_step(step, reason)
                count += 1
        return count
