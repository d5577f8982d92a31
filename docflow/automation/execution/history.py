"""
Docflow Execution History

Append-only record of finished workflow executions.
"""

from __future__ import annotations

import asyncio
import copy
import json
from collections import defaultdict
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import structlog

from docflow.automation.types import (
    ExecutionStatus,
    WorkflowExecution,
)

logger = structlog.get_logger(__name__)


class ExecutionHistory:
    """
    Append-only history of terminal executions.

    Features:
    - Immutable records (deep copies taken at append time)
    - Indices by workflow and status
    - Optional JSON-lines export

    Readers such as the metrics aggregator see a consistent snapshot.
    """

    def __init__(self, persistence_path: Optional[Path] = None):
        self.persistence_path = persistence_path

        self._records: List[WorkflowExecution] = []
        self._by_id: Dict[str, WorkflowExecution] = {}

        # Indices
        self._by_workflow: Dict[str, List[str]] = defaultdict(list)
        self._by_status: Dict[ExecutionStatus, List[str]] = defaultdict(list)

        self._lock = asyncio.Lock()

    async def record(self, execution: WorkflowExecution) -> str:
        """Append a terminal execution."""
        if not execution.is_terminal():
            raise ValueError(f"Execution {execution.id} is not terminal")

        async with self._lock:
            if execution.id in self._by_id:
                raise ValueError(f"Execution {execution.id} already recorded")

            record = copy.deepcopy(execution)
            self._records.append(record)
            self._by_id[record.id] = record
            self._by_workflow[record.workflow_id].append(record.id)
            self._by_status[record.status].append(record.id)

            if self.persistence_path:
                self._append_to_disk(record)

        logger.debug(
            "execution_recorded",
            execution_id=execution.id,
            status=execution.status.value,
        )
        return execution.id

    def get(self, execution_id: str) -> Optional[WorkflowExecution]:
        """Get a history record by ID."""
        return self._by_id.get(execution_id)

    def list(
        self,
        workflow_id: Optional[str] = None,
        status: Optional[ExecutionStatus] = None,
        from_date: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[WorkflowExecution]:
        """List records in append order with filters."""
        if workflow_id is not None:
            records = [self._by_id[i] for i in self._by_workflow.get(workflow_id, [])]
        else:
            records = list(self._records)

        if status is not None:
            records = [r for r in records if r.status == status]

        if from_date is not None:
            records = [r for r in records if r.started_at and r.started_at >= from_date]

        if limit is not None:
            records = records[-limit:]

        return records

    def snapshot(self) -> Tuple[WorkflowExecution, ...]:
        """All records as an immutable sequence."""
        return tuple(self._records)

    def workflow_ids(self) -> List[str]:
        return list(self._by_workflow.keys())

    def count(self, status: Optional[ExecutionStatus] = None) -> int:
        if status is None:
            return len(self._records)
        return len(self._by_status.get(status, []))

    def __len__(self) -> int:
        return len(self._records)

    # === Persistence ===

    def _append_to_disk(self, record: WorkflowExecution) -> None:
        self.persistence_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.persistence_path, "a") as f:
            f.write(json.dumps(record.to_dict(), default=str) + "\n")

    def export(self) -> List[Dict[str, Any]]:
        """Export history as dictionaries."""
        return [r.to_dict() for r in self._records]
