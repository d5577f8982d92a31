"""
Docflow Automation Service

Facade wiring the registry, engine, approvals, batch coordinator and
metrics around injected collaborators. Every operation returns an
OperationResult instead of raising.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Dict, List, Optional, Sequence, Union

import structlog

from docflow.automation.actions.executor import ActionExecutor
from docflow.automation.approval.engine import ApprovalEngine
from docflow.automation.batch import BatchCoordinator, BatchOptions
from docflow.automation.clock import Clock
from docflow.automation.collaborators import (
    AnalysisService,
    ContentService,
    NotificationService,
)
from docflow.automation.conditions.evaluator import ConditionEvaluator
from docflow.automation.engine import WorkflowEngine
from docflow.automation.errors import (
    ErrorDetail,
    InvalidRequest,
    NotFound,
    WorkflowEngineError,
)
from docflow.automation.execution.context import ExecutionContext
from docflow.automation.execution.history import ExecutionHistory
from docflow.automation.lifecycle import LifecycleManager, LifecyclePolicy
from docflow.automation.metrics import MetricsAggregator
from docflow.automation.registry import WorkflowRegistry
from docflow.automation.templates import get_builtin_workflows
from docflow.automation.types import (
    ApprovalDecision,
    ApprovalStatus,
    ApprovalWorkflow,
    ExecutionStatus,
    TriggerType,
    Workflow,
    WorkflowCategory,
)
from docflow.automation.validation import WorkflowValidator
from docflow.core.config import DocflowConfig, get_config

logger = structlog.get_logger(__name__)


@dataclass
class OperationResult:
    """Outcome of a service operation."""
    success: bool
    data: Any = None
    error: Optional[ErrorDetail] = None

    @classmethod
    def ok(cls, data: Any = None) -> "OperationResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: ErrorDetail) -> "OperationResult":
        return cls(success=False, error=error)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "data": self.data,
            "error": self.error.to_dict() if self.error else None,
        }


class AutomationService:
    """
    Workflow automation entry point.

    Collaborators are injected; anything omitted disables the actions that
    need it. Call ``initialize`` before use.
    """

    def __init__(
        self,
        config: Optional[DocflowConfig] = None,
        content: Optional[ContentService] = None,
        analysis: Optional[AnalysisService] = None,
        notification: Optional[NotificationService] = None,
        http_client=None,
        clock: Optional[Clock] = None,
        lifecycle_policies: Optional[List[LifecyclePolicy]] = None,
        install_builtins: bool = True,
        builtin_approvers: Optional[Sequence[str]] = None,
    ):
        self.config = config or get_config()
        automation = self.config.automation
        persistence = automation.persistence_path

        self.content = content
        self.analysis = analysis
        self.notification = notification

        self.registry = WorkflowRegistry(
            validator=WorkflowValidator(max_actions=automation.max_actions_per_workflow),
            persistence_path=persistence,
            max_workflows=automation.max_workflows,
        )
        self.history = ExecutionHistory(
            persistence_path=persistence / "history.jsonl" if persistence else None,
        )
        self.approvals = ApprovalEngine(
            notification=notification,
            clock=clock,
            config=self.config.approval,
        )
        self.executor = ActionExecutor(
            content=content,
            analysis=analysis,
            notification=notification,
            approvals=self.approvals,
            http_client=http_client,
            config=automation,
        )
        self.engine = WorkflowEngine(
            registry=self.registry,
            executor=self.executor,
            evaluator=ConditionEvaluator(),
            history=self.history,
            config=automation,
        )
        self.lifecycle = (
            LifecycleManager(content, self.executor, lifecycle_policies)
            if content is not None
            else None
        )
        self.batch = BatchCoordinator(
            engine=self.engine,
            lifecycle=self.lifecycle,
            content=content,
            config=automation,
        )
        self.metrics = MetricsAggregator(self.history, automation.time_saved_minutes)

        self._install_builtins = install_builtins
        self._builtin_approvers = builtin_approvers
        self._last_schedule_check: Optional[datetime] = None
        self._initialized = False

    async def initialize(self) -> None:
        """Initialize every subsystem and install built-in workflows."""
        if self._initialized:
            return

        await self.approvals.initialize()
        await self.engine.initialize()

        if self._install_builtins:
            for workflow in get_builtin_workflows(self._builtin_approvers):
                if workflow.id not in self.registry:
                    await self.registry.define(workflow)

        self._last_schedule_check = datetime.now()
        self._initialized = True
        logger.info(
            "Automation service initialized",
            workflows=self.registry.count(),
            lifecycle=self.lifecycle is not None,
        )

    async def shutdown(self) -> None:
        """Stop executions and approval timers."""
        await self.engine.shutdown()
        await self.approvals.shutdown()
        self._initialized = False
        logger.info("Automation service shutdown")

    async def _run(self, operation: str, awaitable: Awaitable[Any]) -> OperationResult:
        try:
            data = await awaitable
        except WorkflowEngineError as e:
            logger.warning(
                "operation_failed",
                operation=operation,
                code=e.code,
                offending_id=e.offending_id,
                error=e.message,
            )
            return OperationResult.fail(e.to_detail())
        except ValueError as e:
            logger.warning("operation_failed", operation=operation, code=InvalidRequest.code, error=str(e))
            return OperationResult.fail(InvalidRequest(str(e)).to_detail())
        except Exception as e:
            logger.exception("operation_error", operation=operation, error=str(e))
            return OperationResult.fail(ErrorDetail(
                code="INTERNAL_ERROR",
                message=str(e) or type(e).__name__,
            ))
        return OperationResult.ok(data)

    # === Workflows ===

    async def create_workflow(self, spec: Union[Workflow, Dict[str, Any]]) -> OperationResult:
        async def op():
            return (await self.registry.define(spec)).to_dict()
        return await self._run("create_workflow", op())

    async def update_workflow(self, workflow_id: str, patch: Dict[str, Any]) -> OperationResult:
        async def op():
            return (await self.registry.update(workflow_id, patch)).to_dict()
        return await self._run("update_workflow", op())

    async def set_workflow_enabled(self, workflow_id: str, enabled: bool) -> OperationResult:
        async def op():
            return (await self.registry.set_enabled(workflow_id, enabled)).to_dict()
        return await self._run("set_workflow_enabled", op())

    async def delete_workflow(self, workflow_id: str) -> OperationResult:
        async def op():
            if not await self.registry.delete(workflow_id):
                raise NotFound(f"Workflow not found: {workflow_id}", workflow_id)
            return {"workflow_id": workflow_id, "deleted": True}
        return await self._run("delete_workflow", op())

    async def get_workflow(self, workflow_id: str, version: Optional[int] = None) -> OperationResult:
        async def op():
            workflow = self.registry.get(workflow_id, version)
            if workflow is None:
                raise NotFound(f"Workflow not found: {workflow_id}", workflow_id)
            return workflow.to_dict()
        return await self._run("get_workflow", op())

    async def list_workflows(
        self,
        category: Optional[Union[WorkflowCategory, str]] = None,
        enabled: Optional[bool] = None,
        tag: Optional[str] = None,
        search: Optional[str] = None,
    ) -> OperationResult:
        async def op():
            workflows = self.registry.list(
                category=WorkflowCategory(category) if category else None,
                enabled=enabled,
                tag=tag,
                search=search,
            )
            return [w.to_dict() for w in workflows]
        return await self._run("list_workflows", op())

    # === Execution ===

    async def _context(
        self,
        document_id: Optional[str],
        metadata: Optional[Dict[str, Any]],
        variables: Optional[Dict[str, Any]],
        initiated_by: Optional[str],
    ) -> ExecutionContext:
        if document_id is not None and self.content is not None:
            document = await self.content.get_document(document_id)
            context = ExecutionContext.for_document(document, initiated_by, variables)
            context.update_metadata(metadata or {})
            return context
        return ExecutionContext(
            document_id=document_id,
            metadata=metadata,
            variables=variables,
            initiated_by=initiated_by,
        )

    async def execute_workflow(
        self,
        workflow_id: str,
        document_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        variables: Optional[Dict[str, Any]] = None,
        initiated_by: Optional[str] = None,
        trigger_type: Union[TriggerType, str] = TriggerType.MANUAL,
        wait: bool = True,
    ) -> OperationResult:
        """
        Execute a workflow for a document (or with no document).

        With ``wait=False`` the result carries the dispatched execution and
        the caller polls ``get_execution``.
        """
        async def op():
            context = await self._context(document_id, metadata, variables, initiated_by)
            trigger = TriggerType(trigger_type)
            if wait:
                execution = await self.engine.execute(workflow_id, context, trigger)
            else:
                execution = await self.engine.start(workflow_id, context, trigger)
            return execution.to_dict()
        return await self._run("execute_workflow", op())

    async def execute_scheduled(self, now: Optional[datetime] = None) -> OperationResult:
        """
        Run every enabled workflow whose schedule fell due since the last check.
        """
        async def op():
            until = now or datetime.now()
            since = self._last_schedule_check or until
            self._last_schedule_check = until

            executions = []
            for workflow in self.registry.list(enabled=True, limit=self.registry.count()):
                due = [
                    t for t in workflow.triggers
                    if t.enabled and t.trigger_type == TriggerType.SCHEDULE
                    and t.next_run(since) is not None and t.next_run(since) <= until
                ]
                if not due:
                    continue
                execution = await self.engine.execute(
                    workflow.id,
                    ExecutionContext(initiated_by="scheduler"),
                    TriggerType.SCHEDULE,
                )
                executions.append(execution.to_dict())

            logger.info("schedule_checked", since=since.isoformat(), until=until.isoformat(), executed=len(executions))
            return executions
        return await self._run("execute_scheduled", op())

    async def handle_event(
        self,
        event_type: Union[TriggerType, str],
        document_id: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
        initiated_by: Optional[str] = None,
    ) -> OperationResult:
        """Execute every enabled workflow with a trigger matching the event."""
        async def op():
            event = TriggerType(event_type)
            context = await self._context(document_id, data, None, initiated_by)
            executions = []
            for workflow in self.registry.list(enabled=True, limit=self.registry.count()):
                if not any(t.matches(event, context.metadata) for t in workflow.triggers):
                    continue
                execution = await self.engine.execute(workflow.id, context, event)
                executions.append(execution.to_dict())
            return executions
        return await self._run("handle_event", op())

    async def cancel_execution(self, execution_id: str) -> OperationResult:
        async def op():
            return (await self.engine.cancel(execution_id)).to_dict()
        return await self._run("cancel_execution", op())

    async def get_execution(self, execution_id: str) -> OperationResult:
        async def op():
            execution = self.engine.get_execution(execution_id) or self.history.get(execution_id)
            if execution is None:
                raise NotFound(f"Execution not found: {execution_id}", execution_id)
            return execution.to_dict()
        return await self._run("get_execution", op())

    async def list_executions(
        self,
        workflow_id: Optional[str] = None,
        status: Optional[Union[ExecutionStatus, str]] = None,
        limit: int = 100,
    ) -> OperationResult:
        async def op():
            executions = self.history.list(
                workflow_id=workflow_id,
                status=ExecutionStatus(status) if status else None,
                limit=limit,
            )
            return [e.to_dict() for e in executions]
        return await self._run("list_executions", op())

    # === Lifecycle & Batch ===

    async def process_document_lifecycle(self, document_id: str) -> OperationResult:
        async def op():
            if self.lifecycle is None:
                raise InvalidRequest("Lifecycle policies need a content service")
            applied = await self.lifecycle.process_document(document_id)
            return {
                "document_id": document_id,
                "applied": [a.to_dict() for a in applied],
            }
        return await self._run("process_document_lifecycle", op())

    async def process_batch(
        self,
        document_ids: List[str],
        workflow_id: Optional[str] = None,
        options: Optional[Union[BatchOptions, Dict[str, Any]]] = None,
    ) -> OperationResult:
        async def op():
            if not document_ids:
                raise InvalidRequest("Batch needs at least one document")
            limit = self.config.automation.max_batch_size
            if len(document_ids) > limit:
                raise InvalidRequest(f"Batch exceeds {limit} documents")

            batch_options = options if isinstance(options, BatchOptions) else BatchOptions.from_dict(options)
            result = await self.batch.run_batch(document_ids, workflow_id, batch_options)
            return result.to_dict()
        return await self._run("process_batch", op())

    # === Approvals ===

    async def create_approval_workflow(
        self,
        spec: Union[ApprovalWorkflow, Dict[str, Any]],
        auto_start: bool = True,
    ) -> OperationResult:
        async def op():
            approval = await self.approvals.create(spec, auto_start=auto_start)
            return approval.to_dict()
        return await self._run("create_approval_workflow", op())

    async def submit_approval_decision(
        self,
        approval_id: str,
        stage_id: str,
        approver: str,
        decision: Union[ApprovalDecision, str],
        comment: str = "",
    ) -> OperationResult:
        async def op():
            try:
                parsed = ApprovalDecision(decision)
            except ValueError:
                raise InvalidRequest(f"Unknown decision: {decision}", approval_id)
            approval = await self.approvals.submit_decision(
                approval_id, stage_id, approver, parsed, comment
            )
            return approval.to_dict()
        return await self._run("submit_approval_decision", op())

    async def get_approval(self, approval_id: str) -> OperationResult:
        async def op():
            approval = self.approvals.get(approval_id)
            if approval is None:
                raise NotFound(f"Approval not found: {approval_id}", approval_id)
            return approval.to_dict()
        return await self._run("get_approval", op())

    async def list_approvals(
        self,
        status: Optional[Union[ApprovalStatus, str]] = None,
        approver: Optional[str] = None,
        document_id: Optional[str] = None,
    ) -> OperationResult:
        async def op():
            approvals = self.approvals.list(
                status=ApprovalStatus(status) if status else None,
                approver=approver,
                document_id=document_id,
            )
            return [a.to_dict() for a in approvals]
        return await self._run("list_approvals", op())

    async def cancel_approval(self, approval_id: str) -> OperationResult:
        async def op():
            return (await self.approvals.cancel(approval_id)).to_dict()
        return await self._run("cancel_approval", op())

    # === Metrics & Capabilities ===

    async def get_metrics(self, workflow_id: Optional[str] = None) -> OperationResult:
        async def op():
            return [m.to_dict() for m in self.metrics.recompute_metrics(workflow_id)]
        return await self._run("get_metrics", op())

    async def get_capabilities(self) -> OperationResult:
        async def op():
            return {
                "limits": self.config.capabilities(),
                "action_kinds": self.executor.supported_kinds(),
                "trigger_types": [t.value for t in TriggerType],
                "lifecycle_policies": (
                    [p.to_dict() for p in self.lifecycle.list_policies()]
                    if self.lifecycle is not None else []
                ),
                "engine": self.engine.get_stats(),
            }
        return await self._run("get_capabilities", op())
