"""
Docflow Automation Conditions

Condition evaluation for workflow rules.
"""

from docflow.automation.conditions.evaluator import (
    ConditionEvaluator,
    ConditionOutcome,
    validate_condition,
)
from docflow.automation.conditions.operators import OperatorRegistry, compare

__all__ = [
    "ConditionEvaluator",
    "ConditionOutcome",
    "validate_condition",
    "OperatorRegistry",
    "compare",
]
