"""
Docflow Lifecycle Policies

Age, size and tag based rules applied to individual documents.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import structlog

from docflow.automation.actions.executor import ActionExecutor, ActionOutcome
from docflow.automation.collaborators import ContentService, Document
from docflow.automation.errors import InvalidRequest
from docflow.automation.execution.context import ExecutionContext
from docflow.automation.types import (
    ActionConfig,
    ActionType,
    ArchiveParams,
    DeleteParams,
)

logger = structlog.get_logger(__name__)


class LifecycleField(str, Enum):
    """Document properties a lifecycle condition can inspect."""
    DOCUMENT_AGE = "document_age"
    LAST_ACCESSED = "last_accessed"
    FILE_SIZE = "file_size"
    DOCUMENT_TYPE = "document_type"
    METADATA_FIELD = "metadata_field"
    TAG_PRESENCE = "tag_presence"


class LifecycleOperator(str, Enum):
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    EQUALS = "equals"
    CONTAINS = "contains"


class LifecycleUnit(str, Enum):
    DAYS = "days"
    MONTHS = "months"
    YEARS = "years"
    BYTES = "bytes"
    KB = "kb"
    MB = "mb"
    GB = "gb"


_DAYS_PER_UNIT = {
    LifecycleUnit.DAYS: 1,
    LifecycleUnit.MONTHS: 30,
    LifecycleUnit.YEARS: 365,
}

_BYTES_PER_UNIT = {
    LifecycleUnit.BYTES: 1,
    LifecycleUnit.KB: 1024,
    LifecycleUnit.MB: 1024 ** 2,
    LifecycleUnit.GB: 1024 ** 3,
}


@dataclass
class LifecycleCondition:
    """
    A single check against a document.

    ``key`` names the metadata field for METADATA_FIELD conditions.
    Age conditions use whole days, converted to ``unit``.
    """
    field: LifecycleField
    operator: LifecycleOperator = LifecycleOperator.GREATER_THAN
    value: Any = None
    unit: Optional[LifecycleUnit] = None
    key: Optional[str] = None

    def measure(self, document: Document, now: datetime) -> Any:
        if self.field == LifecycleField.DOCUMENT_AGE:
            return self._age(document.created_at, now)
        if self.field == LifecycleField.LAST_ACCESSED:
            return self._age(document.last_accessed_at or document.modified_at, now)
        if self.field == LifecycleField.FILE_SIZE:
            return document.size_bytes / _BYTES_PER_UNIT.get(self.unit or LifecycleUnit.BYTES, 1)
        if self.field == LifecycleField.DOCUMENT_TYPE:
            return document.content_type
        if self.field == LifecycleField.METADATA_FIELD:
            return document.metadata.get(self.key) if self.key else None
        return list(document.tags)

    def _age(self, since: datetime, now: datetime) -> float:
        days = (now - since).days
        return days / _DAYS_PER_UNIT.get(self.unit or LifecycleUnit.DAYS, 1)

    def matches(self, document: Document, now: Optional[datetime] = None) -> bool:
        actual = self.measure(document, now or datetime.now())
        if actual is None:
            return False

        if self.operator == LifecycleOperator.CONTAINS:
            if isinstance(actual, (list, tuple, set)):
                return self.value in actual
            return str(self.value) in str(actual)
        if self.operator == LifecycleOperator.EQUALS:
            return actual == self.value

        try:
            if self.operator == LifecycleOperator.GREATER_THAN:
                return actual > self.value
            return actual < self.value
        except TypeError:
            return False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field": self.field.value,
            "operator": self.operator.value,
            "value": self.value,
            "unit": self.unit.value if self.unit else None,
            "key": self.key,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LifecycleCondition":
        unit = data.get("unit")
        return cls(
            field=LifecycleField(data["field"]),
            operator=LifecycleOperator(data.get("operator", "greater_than")),
            value=data.get("value"),
            unit=LifecycleUnit(unit) if unit else None,
            key=data.get("key"),
        )


@dataclass
class LifecyclePolicy:
    """A lifecycle rule: when every condition holds, run the action."""
    name: str
    conditions: List[LifecycleCondition]
    action: ActionConfig
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    enabled: bool = True
    priority: int = 0

    def matches(self, document: Document, now: Optional[datetime] = None) -> bool:
        return all(c.matches(document, now) for c in self.conditions)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "conditions": [c.to_dict() for c in self.conditions],
            "action": self.action.to_dict(),
            "enabled": self.enabled,
            "priority": self.priority,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LifecyclePolicy":
        return cls(
            id=data.get("id", str(uuid.uuid4())),
            name=data["name"],
            conditions=[LifecycleCondition.from_dict(c) for c in data.get("conditions", [])],
            action=ActionConfig.from_dict(data["action"]),
            enabled=data.get("enabled", True),
            priority=data.get("priority", 0),
        )


@dataclass
class AppliedPolicy:
    """A policy whose action ran against a document."""
    policy_id: str
    policy_name: str
    outcome: ActionOutcome

    def to_dict(self) -> Dict[str, Any]:
        return {
            "policy_id": self.policy_id,
            "policy_name": self.policy_name,
            "success": self.outcome.success,
            "output": self.outcome.output,
            "error": self.outcome.error.to_dict() if self.outcome.error else None,
        }


def default_policies() -> List[LifecyclePolicy]:
    """Archive old documents; delete stale temporary ones."""
    return [
        LifecyclePolicy(
            id="archive_old_documents",
            name="Archive documents older than 1 year",
            conditions=[
                LifecycleCondition(
                    field=LifecycleField.DOCUMENT_AGE,
                    operator=LifecycleOperator.GREATER_THAN,
                    value=365,
                    unit=LifecycleUnit.DAYS,
                ),
            ],
            action=ActionConfig(
                kind=ActionType.ARCHIVE,
                params=ArchiveParams(location="archive_library"),
                id="archive_old_documents",
                name="Archive",
            ),
            priority=100,
        ),
        LifecyclePolicy(
            id="delete_temp_files",
            name="Delete temporary files older than 30 days",
            conditions=[
                LifecycleCondition(
                    field=LifecycleField.DOCUMENT_AGE,
                    operator=LifecycleOperator.GREATER_THAN,
                    value=30,
                    unit=LifecycleUnit.DAYS,
                ),
                LifecycleCondition(
                    field=LifecycleField.TAG_PRESENCE,
                    operator=LifecycleOperator.CONTAINS,
                    value="temporary",
                ),
            ],
            action=ActionConfig(
                kind=ActionType.DELETE,
                params=DeleteParams(permanent=False),
                id="delete_temp_files",
                name="Delete",
            ),
            priority=90,
        ),
    ]


class LifecycleManager:
    """
    Applies lifecycle policies to documents.

    Enabled policies are evaluated by descending priority and the action of
    every matching policy runs through the action executor. A deleted
    document stops further policies.
    """

    def __init__(
        self,
        content: ContentService,
        executor: ActionExecutor,
        policies: Optional[List[LifecyclePolicy]] = None,
        now: Optional[Callable[[], datetime]] = None,
    ):
        self.content = content
        self.executor = executor
        self._policies: Dict[str, LifecyclePolicy] = {}
        self._now = now or datetime.now

        for policy in default_policies() if policies is None else policies:
            self.add_policy(policy)

    def add_policy(self, policy: LifecyclePolicy) -> LifecyclePolicy:
        if not policy.conditions:
            raise InvalidRequest("Lifecycle policy needs at least one condition", policy.id)
        self._policies[policy.id] = policy
        logger.info("lifecycle_policy_added", policy_id=policy.id, priority=policy.priority)
        return policy

    def remove_policy(self, policy_id: str) -> bool:
        return self._policies.pop(policy_id, None) is not None

    def get_policy(self, policy_id: str) -> Optional[LifecyclePolicy]:
        return self._policies.get(policy_id)

    def list_policies(self, enabled_only: bool = False) -> List[LifecyclePolicy]:
        policies = [p for p in self._policies.values() if p.enabled or not enabled_only]
        return sorted(policies, key=lambda p: p.priority, reverse=True)

    async def process_document(self, document_id: str) -> List[AppliedPolicy]:
        """
        Run matching lifecycle policies against one document.

        Raises:
            DocumentNotFound: the document does not exist
        """
        document = await self.content.get_document(document_id)

        now = self._now()
        context = ExecutionContext.for_document(document, initiated_by="lifecycle")

        applied: List[AppliedPolicy] = []
        for policy in self.list_policies(enabled_only=True):
            if not policy.matches(document, now):
                continue

            logger.info("lifecycle_policy_matched", policy_id=policy.id, document_id=document_id)
            outcome = await self.executor.execute(policy.action, context)
            applied.append(AppliedPolicy(policy.id, policy.name, outcome))

            if outcome.success and policy.action.kind == ActionType.DELETE:
                break

        logger.info(
            "lifecycle_processed",
            document_id=document_id,
            applied=len(applied),
            failed=len([a for a in applied if not a.outcome.success]),
        )
        return applied
