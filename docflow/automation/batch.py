"""
Docflow Batch Coordinator

Runs one workflow (or the lifecycle policies) over many documents with
bounded concurrency and a wall-clock budget.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import structlog

from docflow.automation.collaborators import ContentService
from docflow.automation.engine import WorkflowEngine
from docflow.automation.errors import (
    BatchTimeout,
    ErrorDetail,
    InvalidRequest,
    NotFound,
    WorkflowEngineError,
)
from docflow.automation.execution.context import ExecutionContext
from docflow.automation.lifecycle import LifecycleManager
from docflow.automation.types import ExecutionStatus, TriggerType
from docflow.core.config import AutomationConfig

logger = structlog.get_logger(__name__)


@dataclass
class BatchOptions:
    """Per-call batch settings. None falls back to configuration."""
    max_concurrent: Optional[int] = None
    max_processing_minutes: Optional[float] = None
    skip_if_analyzed: bool = False

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "BatchOptions":
        data = data or {}
        return cls(
            max_concurrent=data.get("max_concurrent"),
            max_processing_minutes=data.get("max_processing_minutes", data.get("max_processing_time")),
            skip_if_analyzed=bool(data.get("skip_if_analyzed", False)),
        )


@dataclass
class BatchItemResult:
    """Outcome for one document of a batch."""
    document_id: str
    success: bool
    execution_id: Optional[str] = None
    status: Optional[str] = None
    skipped: bool = False
    skip_reason: Optional[str] = None
    error: Optional[ErrorDetail] = None
    output: Any = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def duration_ms(self) -> float:
        if self.started_at and self.finished_at:
            return (self.finished_at - self.started_at).total_seconds() * 1000
        return 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "document_id": self.document_id,
            "success": self.success,
            "execution_id": self.execution_id,
            "status": self.status,
            "skipped": self.skipped,
            "skip_reason": self.skip_reason,
            "error": self.error.to_dict() if self.error else None,
            "output": self.output,
            "duration_ms": self.duration_ms,
        }


@dataclass
class BatchResult:
    """Every input document lands in exactly one of the two lists."""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    workflow_id: Optional[str] = None
    successful: List[BatchItemResult] = field(default_factory=list)
    failed: List[BatchItemResult] = field(default_factory=list)
    max_concurrent: int = 1
    started_at: datetime = field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None

    @property
    def total(self) -> int:
        return len(self.successful) + len(self.failed)

    @property
    def success_rate(self) -> float:
        return len(self.successful) / self.total if self.total else 0.0

    @property
    def processing_time_ms(self) -> float:
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds() * 1000

    @property
    def skipped_count(self) -> int:
        return len([r for r in self.successful if r.skipped])

    def summary(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "successful": len(self.successful),
            "failed": len(self.failed),
            "skipped": self.skipped_count,
            "success_rate": self.success_rate,
            "processing_time_ms": self.processing_time_ms,
            "average_time_per_document_ms": (
                self.processing_time_ms / self.total if self.total else 0.0
            ),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "workflow_id": self.workflow_id,
            "successful": [r.to_dict() for r in self.successful],
            "failed": [r.to_dict() for r in self.failed],
            "max_concurrent": self.max_concurrent,
            "summary": self.summary(),
        }


class BatchCoordinator:
    """
    Processes many documents through independent executions.

    Admission is a fixed pool of workers pulling from a FIFO queue, so at
    most ``max_concurrent`` documents are in flight. Once the time budget
    is spent, documents still queued fail with BatchTimeout while running
    ones are left to finish.
    """

    def __init__(
        self,
        engine: WorkflowEngine,
        lifecycle: Optional[LifecycleManager] = None,
        content: Optional[ContentService] = None,
        config: Optional[AutomationConfig] = None,
        monotonic: Optional[Callable[[], float]] = None,
    ):
        self.engine = engine
        self.lifecycle = lifecycle
        self.content = content
        self.config = config or AutomationConfig()
        self._monotonic = monotonic or time.monotonic

    def effective_concurrency(self, requested: Optional[int]) -> int:
        """Clamp a requested concurrency to the configured ceiling."""
        value = requested if requested is not None else self.config.default_batch_concurrency
        return max(1, min(value, self.config.batch_max_concurrent_ceiling))

    async def run_batch(
        self,
        document_ids: List[str],
        workflow_id: Optional[str] = None,
        options: Optional[BatchOptions] = None,
    ) -> BatchResult:
        """
        Run a batch.

        Args:
            document_ids: Documents in admission order
            workflow_id: Workflow to run per document; lifecycle policies
                when omitted
            options: Concurrency, budget and skip settings

        Returns:
            BatchResult with one entry per input document

        Raises:
            NotFound: unknown workflow
            InvalidRequest: no workflow and no lifecycle manager
        """
        options = options or BatchOptions()

        if workflow_id is not None and self.engine.registry.get(workflow_id) is None:
            raise NotFound(f"Workflow not found: {workflow_id}", workflow_id)
        if workflow_id is None and self.lifecycle is None:
            raise InvalidRequest("Batch needs a workflow or lifecycle policies")

        max_concurrent = self.effective_concurrency(options.max_concurrent)
        budget_minutes = (
            options.max_processing_minutes
            if options.max_processing_minutes is not None
            else self.config.default_max_processing_minutes
        )
        deadline = self._monotonic() + budget_minutes * 60

        result = BatchResult(workflow_id=workflow_id, max_concurrent=max_concurrent)
        items: List[Optional[BatchItemResult]] = [None] * len(document_ids)

        queue: asyncio.Queue = asyncio.Queue()
        for index, document_id in enumerate(document_ids):
            queue.put_nowait((index, document_id))

        logger.info(
            "batch_started",
            batch_id=result.id,
            documents=len(document_ids),
            workflow_id=workflow_id,
            max_concurrent=max_concurrent,
            budget_minutes=budget_minutes,
        )

        async def worker() -> None:
            while True:
                try:
                    index, document_id = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return

                if self._monotonic() >= deadline:
                    items[index] = self._timed_out(document_id, budget_minutes)
                    continue

                items[index] = await self._process_one(document_id, workflow_id, options)

        workers = [
            asyncio.create_task(worker())
            for _ in range(min(max_concurrent, len(document_ids)))
        ]
        if workers:
            await asyncio.gather(*workers)

        for item in items:
            if item.success:
                result.successful.append(item)
            else:
                result.failed.append(item)
        result.finished_at = datetime.now()

        logger.info(
            "batch_completed",
            batch_id=result.id,
            successful=len(result.successful),
            failed=len(result.failed),
            skipped=result.skipped_count,
            processing_time_ms=result.processing_time_ms,
        )
        return result

    def _timed_out(self, document_id: str, budget_minutes: float) -> BatchItemResult:
        error = BatchTimeout(
            f"Batch exceeded {budget_minutes} minute budget before this document started",
            document_id,
        )
        logger.warning("batch_item_timed_out", document_id=document_id)
        return BatchItemResult(document_id=document_id, success=False, error=error.to_detail())

    async def _process_one(
        self,
        document_id: str,
        workflow_id: Optional[str],
        options: BatchOptions,
    ) -> BatchItemResult:
        item = BatchItemResult(document_id=document_id, success=False, started_at=datetime.now())

        try:
            context = ExecutionContext(document_id=document_id, initiated_by="batch")
            if self.content is not None:
                document = await self.content.get_document(document_id)
                if options.skip_if_analyzed and document.analyzed:
                    item.success = True
                    item.skipped = True
                    item.skip_reason = "already analyzed"
                    return item
                context = ExecutionContext.for_document(document, initiated_by="batch")

            if workflow_id is not None:
                execution = await self.engine.execute(
                    workflow_id,
                    context,
                    trigger_type=TriggerType.MANUAL,
                )
                item.execution_id = execution.id
                item.status = execution.status.value
                item.skipped = execution.skipped
                item.skip_reason = execution.skip_reason
                item.success = execution.status == ExecutionStatus.COMPLETED
                if not item.success:
                    item.error = execution.error or ErrorDetail(
                        code=f"EXECUTION_{execution.status.value.upper()}",
                        message=f"Execution {execution.status.value}",
                        offending_id=execution.id,
                    )
            else:
                applied = await self.lifecycle.process_document(document_id)
                item.output = [a.to_dict() for a in applied]
                failures = [a for a in applied if not a.outcome.success]
                item.success = not failures
                if failures:
                    item.error = failures[0].outcome.error

        except WorkflowEngineError as e:
            item.error = e.to_detail()
            if item.error.offending_id is None:
                item.error.offending_id = document_id

        except Exception as e:
            logger.exception("batch_item_error", document_id=document_id, error=str(e))
            item.error = ErrorDetail(
                code="BATCH_ITEM_FAILED",
                message=str(e) or type(e).__name__,
                offending_id=document_id,
            )

        finally:
            item.finished_at = datetime.now()

        if not item.success:
            logger.warning(
                "batch_item_failed",
                document_id=document_id,
                code=item.error.code if item.error else None,
            )
        return item
