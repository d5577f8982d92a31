"""
Docflow Execution Context

Context owned by a single workflow execution.
"""

from __future__ import annotations

import copy
import json
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog

logger = structlog.get_logger(__name__)


class _Absent:
    """Marker for a path that does not resolve to anything."""

    _instance: Optional["_Absent"] = None

    def __new__(cls) -> "_Absent":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "ABSENT"

    def __deepcopy__(self, memo: Dict[int, Any]) -> "_Absent":
        return self


ABSENT = _Absent()


class ExecutionContext:
    """
    Execution context for workflows.

    Features:
    - Document metadata (mutable during the run)
    - Variables, permissions and initiator
    - Dotted path lookup (``metadata.owner``, ``document.id``)
    - Expression resolution with {{ }} syntax for action parameters

    Paths whose first segment is not a known namespace are looked up in
    the document metadata, so ``contentType`` means ``metadata.contentType``.
    """

    EXPRESSION_PATTERN = re.compile(r'\{\{\s*([^}]+)\s*\}\}')

    NAMESPACES = (
        "document",
        "metadata",
        "variables",
        "permissions",
        "initiated_by",
        "workflow",
        "execution",
        "steps",
        "now",
    )

    def __init__(
        self,
        document_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        variables: Optional[Dict[str, Any]] = None,
        permissions: Optional[List[str]] = None,
        initiated_by: Optional[str] = None,
    ):
        self.document_id = document_id
        self.metadata: Dict[str, Any] = copy.deepcopy(metadata) if metadata else {}
        self.variables: Dict[str, Any] = copy.deepcopy(variables) if variables else {}
        self.permissions: List[str] = list(permissions or [])
        self.initiated_by = initiated_by

        self.workflow: Dict[str, Any] = {}
        self.execution: Dict[str, Any] = {}
        self.steps: Dict[str, Any] = {}

    def bind(self, workflow_id: str, workflow_name: str, workflow_version: int, execution_id: str) -> None:
        """Attach workflow and execution identity for expressions."""
        self.workflow = {"id": workflow_id, "name": workflow_name, "version": workflow_version}
        self.execution = {"id": execution_id}

    # === Data Access ===

    def _root(self, name: str) -> Any:
        if name == "document":
            return {"id": self.document_id, "metadata": self.metadata}
        if name == "now":
            return datetime.now().isoformat()
        return getattr(self, name)

    def get(self, path: str) -> Any:
        """Get a value by dotted path. Missing paths return ABSENT."""
        if not path:
            return ABSENT

        parts = path.split(".")
        if parts[0] in self.NAMESPACES:
            return self._get_nested(self._root(parts[0]), parts[1:])
        return self._get_nested(self.metadata, parts)

    def has(self, path: str) -> bool:
        """Check if a path resolves."""
        return self.get(path) is not ABSENT

    def set(self, path: str, value: Any) -> None:
        """Set a value by dotted path. Unqualified paths write into variables."""
        parts = path.split(".")
        if parts[0] == "metadata" and len(parts) > 1:
            self._set_nested(self.metadata, parts[1:], value)
        else:
            if parts[0] == "variables":
                parts = parts[1:]
            self._set_nested(self.variables, parts, value)
        logger.debug("context_set", path=path)

    def update_metadata(self, updates: Dict[str, Any]) -> None:
        """Merge a metadata patch into the document metadata."""
        self.metadata.update(copy.deepcopy(updates))

    def set_step_output(self, action_id: str, output: Any) -> None:
        """Record a step output for later expressions."""
        self.steps[action_id] = {"output": output}

    # === Expression Resolution ===

    def resolve(self, value: Any) -> Any:
        """
        Resolve expressions in a value.

        Supports:
        - {{ metadata.owner }} - Nested access
        - {{ document.id }} - Document identity
        - {{ steps.<action_id>.output.key }} - Earlier step output
        - {{ now }} - Current datetime
        - {{ metadata.title | upper }} - Simple filters
        """
        if value is None:
            return None

        if isinstance(value, str):
            return self._resolve_string(value)

        if isinstance(value, dict):
            return {k: self.resolve(v) for k, v in value.items()}

        if isinstance(value, list):
            return [self.resolve(item) for item in value]

        return value

    def _resolve_string(self, value: str) -> Any:
        # A single expression keeps the resolved value's type
        match = self.EXPRESSION_PATTERN.fullmatch(value.strip())
        if match:
            resolved = self._evaluate_expression(match.group(1).strip())
            return None if resolved is ABSENT else resolved

        def replace(match):
            resolved = self._evaluate_expression(match.group(1).strip())
            return "" if resolved is ABSENT or resolved is None else str(resolved)

        return self.EXPRESSION_PATTERN.sub(replace, value)

    def _evaluate_expression(self, expr: str) -> Any:
        if "|" in expr:
            parts = expr.split("|")
            value = self.get(parts[0].strip())
            for filter_expr in parts[1:]:
                value = self._apply_filter(value, filter_expr.strip())
            return value

        return self.get(expr)

    def _apply_filter(self, value: Any, filter_expr: str) -> Any:
        if filter_expr.startswith("default("):
            match = re.match(r'default\(([^)]+)\)', filter_expr)
            if match and (value is ABSENT or value is None):
                return match.group(1).strip("'\"")
            return value

        if value is ABSENT:
            return value

        if filter_expr == "upper":
            return str(value).upper() if value else ""

        if filter_expr == "lower":
            return str(value).lower() if value else ""

        if filter_expr == "trim":
            return str(value).strip() if value else ""

        if filter_expr == "length":
            return len(value) if value else 0

        if filter_expr == "first":
            return value[0] if value else None

        if filter_expr == "last":
            return value[-1] if value else None

        if filter_expr == "json":
            return json.dumps(value, default=str)

        return value

    # === Nested Access Helpers ===

    def _set_nested(
        self,
        data: Dict[str, Any],
        parts: List[str],
        value: Any,
    ) -> None:
        if len(parts) == 1:
            data[parts[0]] = value
        else:
            if not isinstance(data.get(parts[0]), dict):
                data[parts[0]] = {}
            self._set_nested(data[parts[0]], parts[1:], value)

    def _get_nested(self, data: Any, parts: List[str]) -> Any:
        if not parts:
            return data

        if isinstance(data, dict):
            if parts[0] not in data:
                return ABSENT
            return self._get_nested(data[parts[0]], parts[1:])

        if isinstance(data, list):
            try:
                index = int(parts[0])
            except ValueError:
                return ABSENT
            if 0 <= index < len(data):
                return self._get_nested(data[index], parts[1:])
            return ABSENT

        return ABSENT

    # === Serialization ===

    def copy(self) -> "ExecutionContext":
        """Independent copy for a new execution."""
        return ExecutionContext(
            document_id=self.document_id,
            metadata=self.metadata,
            variables=self.variables,
            permissions=self.permissions,
            initiated_by=self.initiated_by,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Export context as dictionary."""
        return {
            "document_id": self.document_id,
            "metadata": copy.deepcopy(self.metadata),
            "variables": copy.deepcopy(self.variables),
            "permissions": list(self.permissions),
            "initiated_by": self.initiated_by,
        }

    @classmethod
    def for_document(
        cls,
        document: Any,
        initiated_by: Optional[str] = None,
        variables: Optional[Dict[str, Any]] = None,
    ) -> "ExecutionContext":
        """Context seeded from a content-service document."""
        metadata = copy.deepcopy(document.metadata)
        metadata.setdefault("name", document.name)
        metadata.setdefault("contentType", document.content_type)
        metadata.setdefault("location", document.location)
        metadata.setdefault("size", document.size_bytes)
        metadata.setdefault("tags", list(document.tags))
        return cls(
            document_id=document.id,
            metadata=metadata,
            variables=variables,
            initiated_by=initiated_by,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExecutionContext":
        """Create context from dictionary."""
        return cls(
            document_id=data.get("document_id"),
            metadata=data.get("metadata"),
            variables=data.get("variables"),
            permissions=data.get("permissions"),
            initiated_by=data.get("initiated_by"),
        )

    def __repr__(self) -> str:
        return f"ExecutionContext(document={self.document_id}, metadata_keys={list(self.metadata.keys())})"
