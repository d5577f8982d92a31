"""
Docflow Workflow Engine

Runs workflow executions through their state machine.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict, List, Optional

import structlog

from docflow.automation.actions.executor import ActionExecutor
from docflow.automation.conditions.evaluator import ConditionEvaluator
from docflow.automation.errors import (
    ErrorDetail,
    InvalidTransition,
    NotFound,
    WorkflowDisabled,
)
from docflow.automation.execution.context import ExecutionContext
from docflow.automation.execution.history import ExecutionHistory
from docflow.automation.execution.state import ExecutionStateMachine
from docflow.automation.registry import WorkflowRegistry
from docflow.automation.types import (
    ExecutionStatus,
    StepResult,
    StepStatus,
    TriggerType,
    Workflow,
    WorkflowExecution,
)
from docflow.core.config import AutomationConfig

logger = structlog.get_logger(__name__)


class WorkflowEngine:
    """
    Main workflow execution engine.

    Features:
    - Copy-on-execute: each execution runs against the workflow version
      pinned at dispatch
    - Top-level conditions evaluated once; a miss completes the execution
      as skipped with no steps
    - Actions run in declared order; contiguous parallel-safe actions may
      run together while steps stay in declaration order
    - Abort on failure unless the action continues on error
    - Advisory cancellation honoured at step boundaries
    - Terminal executions move to history

    Every execution exclusively owns its context.
    """

    def __init__(
        self,
        registry: WorkflowRegistry,
        executor: ActionExecutor,
        evaluator: Optional[ConditionEvaluator] = None,
        history: Optional[ExecutionHistory] = None,
        config: Optional[AutomationConfig] = None,
    ):
        self.registry = registry
        self.executor = executor
        self.evaluator = evaluator or ConditionEvaluator()
        self.history = history or ExecutionHistory()
        self.config = config or AutomationConfig()

        # Executions not yet finalized; terminal ones live in history
        self._executions: Dict[str, WorkflowExecution] = {}
        self._execution_tasks: Dict[str, asyncio.Task] = {}

        # Semaphore for concurrency control
        self._semaphore = asyncio.Semaphore(self.config.max_concurrent_executions)

        # Event callbacks
        self._on_execution_started: List[Callable] = []
        self._on_execution_completed: List[Callable] = []
        self._on_step_started: List[Callable] = []
        self._on_step_completed: List[Callable] = []

        self._initialized = False

    async def initialize(self) -> None:
        """Initialize the engine."""
        if self._initialized:
            return

        await self.registry.initialize()
        await self.executor.initialize()

        self._initialized = True
        logger.info("Workflow engine initialized")

    async def shutdown(self) -> None:
        """Request cancellation of running executions and wait for them."""
        for execution_id, execution in list(self._executions.items()):
            if not execution.is_terminal():
                execution.cancel_requested = True

        tasks = list(self._execution_tasks.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        await self.registry.shutdown()
        self._initialized = False
        logger.info("Workflow engine shutdown")

    # === Dispatch ===

    def _dispatch(
        self,
        workflow_id: str,
        context: Optional[ExecutionContext],
        trigger_type: TriggerType,
        version: Optional[int],
    ):
        workflow = self.registry.get(workflow_id, version)
        if workflow is None:
            raise NotFound(f"Workflow not found: {workflow_id}", workflow_id)
        if not workflow.enabled:
            raise WorkflowDisabled("Workflow is disabled", workflow_id)

        context = context.copy() if context is not None else ExecutionContext()

        execution = WorkflowExecution(
            workflow_id=workflow.id,
            workflow_name=workflow.name,
            workflow_version=workflow.version,
            workflow_category=workflow.category,
            trigger_type=trigger_type,
            document_id=context.document_id,
            initiated_by=context.initiated_by or "system",
        )
        context.bind(workflow.id, workflow.name, workflow.version, execution.id)
        return workflow, execution, context

    async def start(
        self,
        workflow_id: str,
        context: Optional[ExecutionContext] = None,
        trigger_type: TriggerType = TriggerType.MANUAL,
        version: Optional[int] = None,
    ) -> WorkflowExecution:
        """
        Dispatch an execution and return without waiting for it.

        Raises:
            NotFound: unknown workflow
            WorkflowDisabled: the workflow is disabled
        """
        workflow, execution, context = self._dispatch(workflow_id, context, trigger_type, version)

        self._executions[execution.id] = execution
        task = asyncio.create_task(self._run_workflow(workflow, execution, context))
        self._execution_tasks[execution.id] = task

        logger.info(
            "execution_dispatched",
            execution_id=execution.id,
            workflow_id=workflow.id,
            version=workflow.version,
            trigger_type=trigger_type.value,
        )
        return execution

    async def execute(
        self,
        workflow_id: str,
        context: Optional[ExecutionContext] = None,
        trigger_type: TriggerType = TriggerType.MANUAL,
        version: Optional[int] = None,
    ) -> WorkflowExecution:
        """
        Execute a workflow and wait for a terminal state.

        Args:
            workflow_id: Workflow to execute
            context: Document, metadata and variables for the run
            trigger_type: What triggered the execution
            version: Pin a specific version (latest by default)

        Returns:
            The terminal execution
        """
        execution = await self.start(workflow_id, context, trigger_type, version)
        return await self.wait(execution.id)

    async def wait(self, execution_id: str) -> WorkflowExecution:
        """Wait until an execution is terminal."""
        execution = self._require(execution_id)
        task = self._execution_tasks.get(execution_id)
        if task is not None:
            await asyncio.shield(task)
        return execution

    # === Execution ===

    async def _run_workflow(
        self,
        workflow: Workflow,
        execution: WorkflowExecution,
        context: ExecutionContext,
    ) -> None:
        """Run a workflow execution."""
        machine = ExecutionStateMachine(execution)

        try:
            async with self._semaphore:
                if execution.is_terminal():
                    return

                if execution.cancel_requested:
                    machine.cancel()
                    return

                machine.start()
                await self._fire_callbacks(self._on_execution_started, execution)

                outcome = self.evaluator.explain(workflow.conditions, context)
                if not outcome.passed:
                    machine.complete(
                        skip_reason=f"Condition {outcome.failed_condition_id} not met"
                    )
                    return

                execution.steps = [
                    StepResult(
                        action_index=i,
                        action_id=action.id,
                        action_name=action.name,
                        kind=action.kind_value,
                    )
                    for i, action in enumerate(workflow.actions)
                ]

                try:
                    await asyncio.wait_for(
                        self._run_actions(workflow, execution, context, machine),
                        timeout=self.config.execution_timeout_seconds,
                    )
                except asyncio.TimeoutError:
                    self._time_out(execution, machine)

        except asyncio.CancelledError:
            if not execution.is_terminal():
                machine.cancel()
            raise

        finally:
            self._execution_tasks.pop(execution.id, None)
            if execution.is_terminal():
                await self._finalize(execution)

    async def _run_actions(
        self,
        workflow: Workflow,
        execution: WorkflowExecution,
        context: ExecutionContext,
        machine: ExecutionStateMachine,
    ) -> None:
        actions = workflow.actions
        index = 0

        while index < len(actions):
            if execution.cancel_requested:
                machine.cancel()
                logger.info("execution_cancelled", execution_id=execution.id, at_step=index)
                return

            group = self._parallel_group(workflow, index)
            if len(group) == 1:
                await self._run_step(workflow, execution, context, machine, index)
            else:
                await asyncio.gather(*(
                    self._run_step(workflow, execution, context, machine, i)
                    for i in group
                ))

            for i in group:
                step = execution.steps[i]
                if step.status == StepStatus.FAILED and not workflow.continues_on_error(actions[i]):
                    machine.skip_pending(f"aborted after step {i} failed")
                    machine.fail(step.error, i)
                    return

            index = group[-1] + 1

        machine.complete()

    def _parallel_group(self, workflow: Workflow, index: int) -> List[int]:
        """Indices of the contiguous parallel-safe run starting at ``index``."""
        group = [index]
        if not workflow.actions[index].parallel_safe:
            return group

        member_ids = {workflow.actions[index].id}
        for i in range(index + 1, len(workflow.actions)):
            action = workflow.actions[i]
            if not action.parallel_safe or member_ids.intersection(action.depends_on):
                break
            group.append(i)
            member_ids.add(action.id)
        return group

    async def _run_step(
        self,
        workflow: Workflow,
        execution: WorkflowExecution,
        context: ExecutionContext,
        machine: ExecutionStateMachine,
        index: int,
    ) -> None:
        action = workflow.actions[index]
        step = execution.steps[index]

        unmet = [d for d in action.depends_on if not self._dependency_met(execution, d)]
        if unmet:
            machine.skip_step(step, f"dependencies not completed: {', '.join(unmet)}")
            return

        if action.conditions and not self.evaluator.evaluate(action.conditions, context):
            machine.skip_step(step, "conditions not met")
            return

        machine.start_step(step)
        await self._fire_callbacks(self._on_step_started, execution, step)

        outcome = await self.executor.execute(action, context)
        step.attempts = outcome.attempts

        if outcome.success:
            machine.complete_step(step, outcome.output, outcome.warnings)
            context.set_step_output(action.id, outcome.output)
        else:
            machine.fail_step(step, outcome.error)
            logger.warning(
                "step_failed",
                execution_id=execution.id,
                step=index,
                code=outcome.error.code,
            )

        await self._fire_callbacks(self._on_step_completed, execution, step)

    @staticmethod
    def _dependency_met(execution: WorkflowExecution, action_id: str) -> bool:
        for step in execution.steps:
            if step.action_id == action_id:
                return step.status == StepStatus.COMPLETED
        return False

    def _time_out(self, execution: WorkflowExecution, machine: ExecutionStateMachine) -> None:
        error = ErrorDetail(
            code="EXECUTION_TIMEOUT",
            message=f"Execution exceeded {self.config.execution_timeout_seconds}s",
            offending_id=execution.id,
        )
        failed_index = None
        for step in execution.steps:
            if step.status == StepStatus.RUNNING:
                machine.fail_step(step, error)
                failed_index = step.action_index
        machine.skip_pending("execution timed out")
        machine.fail(error, failed_index)

    async def _finalize(self, execution: WorkflowExecution) -> None:
        if self._executions.pop(execution.id, None) is None:
            return

        await self.history.record(execution)
        await self._fire_callbacks(self._on_execution_completed, execution)

        logger.info(
            "execution_completed",
            execution_id=execution.id,
            workflow_id=execution.workflow_id,
            status=execution.status.value,
            skipped=execution.skipped,
            duration_ms=execution.duration_ms,
        )

    # === Queries & Control ===

    def _require(self, execution_id: str) -> WorkflowExecution:
        execution = self.get_execution(execution_id)
        if execution is None:
            raise NotFound(f"Execution not found: {execution_id}", execution_id)
        return execution

    def get_execution(self, execution_id: str) -> Optional[WorkflowExecution]:
        """Get an in-flight execution, or its history record once terminal."""
        return self._executions.get(execution_id) or self.history.get(execution_id)

    async def cancel(self, execution_id: str) -> WorkflowExecution:
        """
        Request cancellation.

        A pending execution is cancelled at once; a running one stops at the
        next step boundary, keeping the steps that already finished.

        Raises:
            NotFound: unknown execution
            InvalidTransition: the execution is already terminal
        """
        execution = self._require(execution_id)
        if execution.is_terminal():
            raise InvalidTransition(
                f"Execution is already {execution.status.value}",
                execution_id,
            )

        execution.cancel_requested = True
        if execution.status == ExecutionStatus.PENDING:
            ExecutionStateMachine(execution).cancel()
            await self._finalize(execution)

        logger.info("execution_cancel_requested", execution_id=execution_id)
        return execution

    def list_executions(
        self,
        workflow_id: Optional[str] = None,
        status: Optional[ExecutionStatus] = None,
        limit: int = 100,
    ) -> List[WorkflowExecution]:
        """List in-flight and recorded executions with filters, newest first."""
        executions = list(self._executions.values())

        if workflow_id:
            executions = [e for e in executions if e.workflow_id == workflow_id]

        if status:
            executions = [e for e in executions if e.status == status]

        executions.extend(self.history.list(workflow_id=workflow_id, status=status))
        executions.sort(key=lambda e: e.created_at, reverse=True)
        return executions[:limit]

    # === Event Callbacks ===

    def on_execution_started(self, callback: Callable) -> None:
        """Register callback for execution start."""
        self._on_execution_started.append(callback)

    def on_execution_completed(self, callback: Callable) -> None:
        """Register callback for execution completion."""
        self._on_execution_completed.append(callback)

    def on_step_started(self, callback: Callable) -> None:
        """Register callback for step start."""
        self._on_step_started.append(callback)

    def on_step_completed(self, callback: Callable) -> None:
        """Register callback for step completion."""
        self._on_step_completed.append(callback)

    async def _fire_callbacks(
        self,
        callbacks: List[Callable],
        *args,
    ) -> None:
        for callback in callbacks:
            try:
                result = callback(*args)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error("callback_error", error=str(e))

    # === Statistics ===

    def get_stats(self) -> Dict[str, Any]:
        """Get engine statistics."""
        status_counts = {}
        for status in ExecutionStatus:
            status_counts[status.value] = len([
                e for e in self._executions.values()
                if e.status == status
            ]) + self.history.count(status)

        return {
            "active_executions": len(self._execution_tasks),
            "total_executions": len(self._executions) + len(self.history),
            "by_status": status_counts,
            "max_concurrent": self.config.max_concurrent_executions,
            "history_size": len(self.history),
        }
