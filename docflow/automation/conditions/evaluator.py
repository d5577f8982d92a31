"""
Docflow Condition Evaluator

Evaluates workflow conditions against an execution context.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, TYPE_CHECKING

import structlog

from docflow.automation.errors import ConditionEvaluationError
from docflow.automation.types import Condition, ConditionOperator
from docflow.automation.conditions.operators import compare, is_supported

if TYPE_CHECKING:
    from docflow.automation.execution.context import ExecutionContext

logger = structlog.get_logger(__name__)


@dataclass
class ConditionOutcome:
    """Result of evaluating a condition list, with the first failure."""
    passed: bool
    failed_condition_id: Optional[str] = None
    error: Optional[str] = None

    def __bool__(self) -> bool:
        return self.passed


class ConditionEvaluator:
    """
    Evaluates workflow conditions.

    Features:
    - Conjunction over the top-level list, left to right, short-circuit
    - Disjunctive groups (``any_of``)
    - Negation support
    - Malformed conditions evaluate to False and are logged

    Evaluation is pure: it never mutates the context and performs no I/O.
    """

    def evaluate(
        self,
        conditions: Sequence[Condition],
        context: "ExecutionContext",
    ) -> bool:
        """
        Evaluate a list of conditions (all must hold).

        Args:
            conditions: Conditions to evaluate
            context: Execution context for path resolution

        Returns:
            Boolean result
        """
        return self.explain(conditions, context).passed

    def explain(
        self,
        conditions: Sequence[Condition],
        context: "ExecutionContext",
    ) -> ConditionOutcome:
        """Evaluate and report which condition failed first."""
        for condition in conditions:
            try:
                result = self._evaluate_node(condition, context)
            except ConditionEvaluationError as e:
                logger.warning(
                    "condition_error",
                    condition_id=condition.id,
                    error=e.message,
                )
                return ConditionOutcome(False, condition.id, e.message)

            if not result:
                return ConditionOutcome(False, condition.id)

        return ConditionOutcome(True)

    def evaluate_one(
        self,
        condition: Condition,
        context: "ExecutionContext",
    ) -> bool:
        """Evaluate a single condition node."""
        return self.evaluate([condition], context)

    def _evaluate_node(
        self,
        condition: Condition,
        context: "ExecutionContext",
    ) -> bool:
        if condition.is_group:
            result = any(self._evaluate_node(c, context) for c in condition.any_of)
        else:
            result = self._evaluate_leaf(condition, context)

        if condition.negate:
            result = not result

        logger.debug(
            "condition_evaluated",
            condition_id=condition.id,
            result=result,
        )
        return result

    def _evaluate_leaf(
        self,
        condition: Condition,
        context: "ExecutionContext",
    ) -> bool:
        if not condition.path:
            raise ConditionEvaluationError("Condition has no path", condition.id)
        if not is_supported(condition.operator):
            raise ConditionEvaluationError(
                f"Unknown operator: {condition.operator}", condition.id
            )

        left = context.get(condition.path)
        right = self._resolve_value(condition.value, context)

        try:
            return compare(left, ConditionOperator(condition.operator), right)
        except (ValueError, TypeError) as e:
            raise ConditionEvaluationError(str(e), condition.id)

    def _resolve_value(self, value: Any, context: "ExecutionContext") -> Any:
        """Expected values may reference the context with {{ }}."""
        if isinstance(value, (str, list, dict)):
            return context.resolve(value)
        return value


def validate_condition(condition: Condition, path: str = "conditions") -> List[str]:
    """Static checks for a condition tree. Returns error messages."""
    errors = []
    if condition.is_group:
        for i, child in enumerate(condition.any_of):
            errors.extend(validate_condition(child, f"{path}.any_of[{i}]"))
        return errors

    if not condition.path:
        errors.append(f"{path}: condition path is required")
    if not is_supported(condition.operator):
        errors.append(f"{path}: unknown operator '{condition.operator}'")
    return errors
