"""
Docflow Workflow Registry

Versioned storage and retrieval of workflow definitions.
"""

from __future__ import annotations

import asyncio
import json
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

import structlog

from docflow.automation.errors import InvalidRequest, InvalidWorkflow, NotFound
from docflow.automation.types import Workflow, WorkflowCategory
from docflow.automation.validation import ValidationError, ValidationResult, WorkflowValidator

logger = structlog.get_logger(__name__)

# Fields a patch may not change
_IMMUTABLE_FIELDS = ("id", "version", "created_at")


class WorkflowRegistry:
    """
    Registry for workflow definitions.

    Features:
    - Validation before storage (nothing is stored on failure)
    - Every version retained; edits bump the version
    - In-memory storage with optional JSON persistence
    - Query and filtering
    - Event callbacks

    Stored workflows are never handed out directly; callers receive copies,
    so a running execution keeps the snapshot it was dispatched with.
    """

    def __init__(
        self,
        validator: Optional[WorkflowValidator] = None,
        persistence_path: Optional[Path] = None,
        max_workflows: Optional[int] = None,
        auto_persist: bool = True,
    ):
        self.validator = validator or WorkflowValidator()
        self.persistence_path = persistence_path
        self.max_workflows = max_workflows
        self.auto_persist = auto_persist

        # Storage: id -> version -> workflow
        self._versions: Dict[str, Dict[int, Workflow]] = {}

        # Event callbacks
        self._on_workflow_defined: List[Callable] = []
        self._on_workflow_updated: List[Callable] = []
        self._on_workflow_deleted: List[Callable] = []

        self._initialized = False
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Initialize the registry."""
        if self._initialized:
            return

        if self.persistence_path and (self.persistence_path / "workflows.json").exists():
            await self._load_from_disk()

        self._initialized = True
        logger.info("Workflow registry initialized", workflow_count=len(self._versions))

    async def shutdown(self) -> None:
        """Shutdown the registry."""
        if self.persistence_path and self.auto_persist:
            await self._save_to_disk()

        self._initialized = False

    # === Workflow Operations ===

    def validate(self, workflow: Workflow) -> ValidationResult:
        """Validate without storing."""
        return self.validator.validate(workflow)

    async def define(self, spec: Union[Workflow, Dict[str, Any]]) -> Workflow:
        """
        Validate and store a new workflow.

        Raises:
            InvalidWorkflow: validation failed; nothing was stored
        """
        if isinstance(spec, dict):
            workflow = self._parse(spec, spec.get("id"))
        else:
            workflow = spec.snapshot()

        async with self._lock:
            if workflow.id in self._versions:
                raise InvalidWorkflow(
                    f"Workflow already exists: {workflow.id}",
                    workflow.id,
                    errors=[{"code": "DUPLICATE_WORKFLOW_ID", "message": "Workflow id is taken"}],
                )
            if self.max_workflows is not None and len(self._versions) >= self.max_workflows:
                raise InvalidRequest(
                    f"Workflow limit of {self.max_workflows} reached",
                    workflow.id,
                )

            self._raise_if_invalid(workflow)

            now = datetime.now()
            workflow.version = 1
            workflow.created_at = now
            workflow.updated_at = now
            self._versions[workflow.id] = {1: workflow}

            if self.persistence_path and self.auto_persist:
                await self._save_to_disk()

        await self._fire_callbacks(self._on_workflow_defined, workflow)

        logger.info(
            "workflow_defined",
            workflow_id=workflow.id,
            name=workflow.name,
            actions=len(workflow.actions),
        )
        return workflow.snapshot()

    async def update(self, workflow_id: str, patch: Dict[str, Any]) -> Workflow:
        """
        Apply a patch and store it as a new version.

        Raises:
            NotFound: no such workflow
            InvalidWorkflow: the patched definition is invalid; the current
                version stays in place
        """
        async with self._lock:
            current = self._latest(workflow_id)
            if current is None:
                raise NotFound(f"Workflow not found: {workflow_id}", workflow_id)

            data = current.to_dict()
            for key, value in patch.items():
                if key in _IMMUTABLE_FIELDS:
                    continue
                data[key] = value

            workflow = self._parse(data, workflow_id)
            self._raise_if_invalid(workflow)

            workflow.version = current.version + 1
            workflow.created_at = current.created_at
            workflow.updated_at = datetime.now()
            self._versions[workflow_id][workflow.version] = workflow

            if self.persistence_path and self.auto_persist:
                await self._save_to_disk()

        await self._fire_callbacks(self._on_workflow_updated, workflow)

        logger.info(
            "workflow_updated",
            workflow_id=workflow_id,
            version=workflow.version,
        )
        return workflow.snapshot()

    async def set_enabled(self, workflow_id: str, enabled: bool) -> Workflow:
        """Enable or disable a workflow (a new version)."""
        return await self.update(workflow_id, {"enabled": enabled})

    def get(self, workflow_id: str, version: Optional[int] = None) -> Optional[Workflow]:
        """Get a copy of a workflow, latest version by default."""
        if version is None:
            workflow = self._latest(workflow_id)
        else:
            workflow = self._versions.get(workflow_id, {}).get(version)
        return workflow.snapshot() if workflow else None

    def get_by_name(self, name: str) -> Optional[Workflow]:
        """Get a workflow by name."""
        for workflow_id in self._versions:
            workflow = self._latest(workflow_id)
            if workflow.name == name:
                return workflow.snapshot()
        return None

    def versions(self, workflow_id: str) -> List[int]:
        """All stored versions of a workflow, ascending."""
        return sorted(self._versions.get(workflow_id, {}))

    async def delete(self, workflow_id: str) -> bool:
        """Delete a workflow and all its versions."""
        async with self._lock:
            versions = self._versions.pop(workflow_id, None)
            if not versions:
                return False

            if self.persistence_path and self.auto_persist:
                await self._save_to_disk()

        await self._fire_callbacks(self._on_workflow_deleted, workflow_id)
        logger.info("workflow_deleted", workflow_id=workflow_id)
        return True

    def list(
        self,
        category: Optional[WorkflowCategory] = None,
        enabled: Optional[bool] = None,
        tag: Optional[str] = None,
        search: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Workflow]:
        """List latest versions with filters."""
        workflows = [self._latest(wid) for wid in self._versions]

        if category is not None:
            workflows = [w for w in workflows if w.category == category]

        if enabled is not None:
            workflows = [w for w in workflows if w.enabled == enabled]

        if tag:
            workflows = [w for w in workflows if tag in w.tags]

        if search:
            search_lower = search.lower()
            workflows = [
                w for w in workflows
                if search_lower in w.name.lower() or search_lower in w.description.lower()
            ]

        # Highest priority first, then most recently updated
        workflows.sort(key=lambda w: (w.priority.rank, w.updated_at), reverse=True)

        return [w.snapshot() for w in workflows[offset:offset + limit]]

    def count(self) -> int:
        return len(self._versions)

    def __contains__(self, workflow_id: str) -> bool:
        return workflow_id in self._versions

    # === Helpers ===

    def _latest(self, workflow_id: str) -> Optional[Workflow]:
        versions = self._versions.get(workflow_id)
        if not versions:
            return None
        return versions[max(versions)]

    @staticmethod
    def _parse(data: Dict[str, Any], offending_id: Optional[str]) -> Workflow:
        """Build a workflow from a definition, reporting bad values and shapes."""
        try:
            return Workflow.from_dict(data)
        except (ValueError, TypeError, KeyError, AttributeError) as e:
            raise InvalidWorkflow(
                f"Malformed workflow definition: {e}",
                offending_id,
                errors=[ValidationError(code="MALFORMED_DEFINITION", message=str(e)).to_dict()],
            ) from e

    def _raise_if_invalid(self, workflow: Workflow) -> None:
        result = self.validator.validate(workflow)
        if not result.valid:
            raise InvalidWorkflow(
                "; ".join(e.message for e in result.errors),
                workflow.id,
                errors=[e.to_dict() for e in result.errors],
            )
        for warning in result.warnings:
            logger.warning(
                "workflow_validation_warning",
                workflow_id=workflow.id,
                code=warning.code,
                message=warning.message,
            )

    # === Callbacks ===

    def on_workflow_defined(self, callback: Callable) -> None:
        self._on_workflow_defined.append(callback)

    def on_workflow_updated(self, callback: Callable) -> None:
        self._on_workflow_updated.append(callback)

    def on_workflow_deleted(self, callback: Callable) -> None:
        self._on_workflow_deleted.append(callback)

    async def _fire_callbacks(self, callbacks: List[Callable], *args) -> None:
        for callback in callbacks:
            try:
                result = callback(*args)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error("callback_error", error=str(e))

    # === Persistence ===

    async def _load_from_disk(self) -> None:
        """Load workflows from disk."""
        workflows_file = self.persistence_path / "workflows.json"
        with open(workflows_file) as f:
            data = json.load(f)

        for entry in data.get("workflows", []):
            workflow = Workflow.from_dict(entry)
            self._versions.setdefault(workflow.id, {})[workflow.version] = workflow

        logger.info("workflows_loaded", count=len(self._versions))

    async def _save_to_disk(self) -> None:
        """Save every version of every workflow to disk."""
        self.persistence_path.mkdir(parents=True, exist_ok=True)

        workflows_file = self.persistence_path / "workflows.json"
        data = {
            "workflows": [
                w.to_dict()
                for versions in self._versions.values()
                for w in versions.values()
            ],
            "saved_at": datetime.now().isoformat(),
        }

        with open(workflows_file, "w") as f:
            json.dump(data, f, indent=2, default=str)
