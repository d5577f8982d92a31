"""
Docflow Approval Action Handler

Starts an approval workflow from a workflow step.
"""

from __future__ import annotations

from typing import Any, Dict, TYPE_CHECKING

import structlog

from docflow.automation.actions.executor import BaseActionHandler
from docflow.automation.types import ActionConfig, ActionParams

if TYPE_CHECKING:
    from docflow.automation.approval.engine import ApprovalEngine
    from docflow.automation.execution.context import ExecutionContext

logger = structlog.get_logger(__name__)


class CreateApprovalActionHandler(BaseActionHandler):
    """
    Creates and starts an approval workflow.

    The step completes once the approval is running; decisions arrive later
    through the approval engine.
    """

    def __init__(self, approvals: "ApprovalEngine"):
        self.approvals = approvals

    async def execute(
        self,
        action: ActionConfig,
        params: ActionParams,
        context: "ExecutionContext",
    ) -> Dict[str, Any]:
        approval = self.approvals.build_from_params(
            params,
            document_id=context.document_id,
            requested_by=context.initiated_by,
        )
        approval.execution_id = context.execution.get("id")
        approval.metadata["workflow_id"] = context.workflow.get("id")

        await self.approvals.create(approval)
        context.update_metadata({"approval_id": approval.id, "approval_status": approval.status.value})

        logger.info(
            "approval_requested",
            approval_id=approval.id,
            document_id=context.document_id,
            stages=len(approval.stages),
        )
        return {
            "approval_id": approval.id,
            "status": approval.status.value,
            "stages": [s.id for s in approval.stages],
        }
