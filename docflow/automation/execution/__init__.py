"""
Docflow Automation Execution

Execution context, state machine and history.
"""

from docflow.automation.execution.context import ABSENT, ExecutionContext
from docflow.automation.execution.history import ExecutionHistory
from docflow.automation.execution.state import (
    EXECUTION_TRANSITIONS,
    STEP_TRANSITIONS,
    ExecutionStateMachine,
    can_transition,
)

__all__ = [
    "ABSENT",
    "ExecutionContext",
    "ExecutionHistory",
    "EXECUTION_TRANSITIONS",
    "STEP_TRANSITIONS",
    "ExecutionStateMachine",
    "can_transition",
]
