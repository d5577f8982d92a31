"""
Docflow Metrics Aggregator

Pure fold over execution history into per-workflow metrics.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

import structlog

from docflow.automation.execution.history import ExecutionHistory
from docflow.automation.types import (
    ExecutionStatus,
    StepStatus,
    WorkflowCategory,
    WorkflowExecution,
)

logger = structlog.get_logger(__name__)


@dataclass
class PerformanceMetrics:
    times_saved: float = 0.0
    documents_processed: int = 0
    compliance_rate: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "times_saved": self.times_saved,
            "documents_processed": self.documents_processed,
            "compliance_rate": self.compliance_rate,
        }


@dataclass
class WorkflowMetric:
    """Aggregated metrics for one workflow."""
    workflow_id: str
    execution_count: int = 0
    completed_count: int = 0
    failed_count: int = 0
    cancelled_count: int = 0
    skipped_count: int = 0
    success_rate: float = 0.0
    average_duration_ms: float = 0.0
    failure_reasons: Dict[str, int] = field(default_factory=dict)
    performance_metrics: PerformanceMetrics = field(default_factory=PerformanceMetrics)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "workflow_id": self.workflow_id,
            "execution_count": self.execution_count,
            "completed_count": self.completed_count,
            "failed_count": self.failed_count,
            "cancelled_count": self.cancelled_count,
            "skipped_count": self.skipped_count,
            "success_rate": self.success_rate,
            "average_duration_ms": self.average_duration_ms,
            "failure_reasons": dict(self.failure_reasons),
            "performance_metrics": self.performance_metrics.to_dict(),
        }


def fold_metric(
    workflow_id: str,
    executions: Iterable[WorkflowExecution],
    time_saved_minutes: Dict[str, float],
) -> WorkflowMetric:
    """
    Build the metric for one workflow.

    success_rate is completed / (completed + failed); cancelled executions
    count toward execution_count only. times_saved sums the per-kind
    estimate over completed steps. compliance_rate is only defined for
    compliance workflows.
    """
    metric = WorkflowMetric(workflow_id=workflow_id)
    documents = set()
    durations: List[float] = []
    compliance_completed = 0
    compliance_decided = 0

    for execution in executions:
        metric.execution_count += 1
        if execution.document_id:
            documents.add(execution.document_id)

        if execution.status == ExecutionStatus.COMPLETED:
            metric.completed_count += 1
            durations.append(execution.duration_ms)
            if execution.skipped:
                metric.skipped_count += 1
        elif execution.status == ExecutionStatus.FAILED:
            metric.failed_count += 1
            code = execution.error.code if execution.error else "UNKNOWN_ERROR"
            metric.failure_reasons[code] = metric.failure_reasons.get(code, 0) + 1
        elif execution.status == ExecutionStatus.CANCELLED:
            metric.cancelled_count += 1

        for step in execution.steps:
            if step.status == StepStatus.COMPLETED:
                metric.performance_metrics.times_saved += time_saved_minutes.get(step.kind, 0.0)

        if execution.workflow_category == WorkflowCategory.COMPLIANCE:
            if execution.status == ExecutionStatus.COMPLETED:
                compliance_completed += 1
                compliance_decided += 1
            elif execution.status == ExecutionStatus.FAILED:
                compliance_decided += 1

    decided = metric.completed_count + metric.failed_count
    metric.success_rate = metric.completed_count / decided if decided else 0.0
    metric.average_duration_ms = sum(durations) / len(durations) if durations else 0.0
    metric.performance_metrics.documents_processed = len(documents)
    if compliance_decided:
        metric.performance_metrics.compliance_rate = compliance_completed / compliance_decided

    return metric


class MetricsAggregator:
    """Recomputes workflow metrics from execution history on demand."""

    def __init__(
        self,
        history: ExecutionHistory,
        time_saved_minutes: Optional[Dict[str, float]] = None,
    ):
        self.history = history
        self.time_saved_minutes = dict(time_saved_minutes or {})

    def recompute_metrics(self, workflow_id: Optional[str] = None) -> List[WorkflowMetric]:
        """
        Recompute metrics.

        Args:
            workflow_id: Restrict to one workflow; all workflows with history
                when omitted

        Returns:
            One WorkflowMetric per workflow, ordered by workflow id
        """
        grouped: Dict[str, List[WorkflowExecution]] = defaultdict(list)
        for execution in self.history.snapshot():
            if workflow_id is None or execution.workflow_id == workflow_id:
                grouped[execution.workflow_id].append(execution)

        if workflow_id is not None and workflow_id not in grouped:
            grouped[workflow_id] = []

        metrics = [
            fold_metric(wid, grouped[wid], self.time_saved_minutes)
            for wid in sorted(grouped)
        ]
        logger.debug("metrics_recomputed", workflows=len(metrics))
        return metrics

    def overview(self) -> Dict[str, Any]:
        """Totals across every workflow."""
        metrics = self.recompute_metrics()
        completed = sum(m.completed_count for m in metrics)
        failed = sum(m.failed_count for m in metrics)
        return {
            "workflows": len(metrics),
            "executions": sum(m.execution_count for m in metrics),
            "success_rate": completed / (completed + failed) if completed + failed else 0.0,
            "times_saved": sum(m.performance_metrics.times_saved for m in metrics),
            "documents_processed": len({
                e.document_id for e in self.history.snapshot() if e.document_id
            }),
        }
