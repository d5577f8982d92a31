"""
Tests for the Docflow workflow engine and execution state machine.
"""

import asyncio

import pytest

from docflow.automation.actions.executor import ActionExecutor, BaseActionHandler
from docflow.automation.collaborators import Document, InMemoryContentService
from docflow.automation.engine import WorkflowEngine
from docflow.automation.errors import (
    ErrorDetail,
    InvalidTransition,
    NotFound,
    WorkflowDisabled,
)
from docflow.automation.execution.context import ExecutionContext
from docflow.automation.execution.state import ExecutionStateMachine, can_transition
from docflow.automation.registry import WorkflowRegistry
from docflow.automation.types import (
    ActionConfig,
    ActionType,
    ArchiveParams,
    Condition,
    ConditionOperator,
    ExecutionStatus,
    MoveParams,
    NotifyParams,
    StepResult,
    StepStatus,
    TriggerConfig,
    TriggerType,
    UpdateMetadataParams,
    Workflow,
    WorkflowExecution,
)
from docflow.core.config import AutomationConfig

from conftest import settle, wait_until


class GateHandler(BaseActionHandler):
    """Blocks until released; records how many calls overlap."""

    def __init__(self):
        self.release = asyncio.Event()
        self.entered = asyncio.Event()
        self.calls = 0
        self.in_flight = 0
        self.max_in_flight = 0

    async def execute(self, action, params, context):
        self.calls += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        self.entered.set()
        try:
            await self.release.wait()
        finally:
            self.in_flight -= 1
        return {"released": action.id}


def notify(action_id, **kwargs):
    return ActionConfig(
        kind=ActionType.NOTIFY,
        params=NotifyParams(recipients=["ops"], message=kwargs.pop("message", "")),
        id=action_id,
        **kwargs,
    )


def mark(action_id="mark", **kwargs):
    return ActionConfig(
        kind=ActionType.UPDATE_METADATA,
        params=UpdateMetadataParams(updates=kwargs.pop("updates", {"reviewed": True})),
        id=action_id,
        **kwargs,
    )


def move(action_id="move", **kwargs):
    return ActionConfig(
        kind=ActionType.MOVE,
        params=MoveParams(destination="/archive"),
        id=action_id,
        **kwargs,
    )


def workflow(actions, **kwargs):
    return Workflow(
        id=kwargs.pop("id", "wf"),
        name=kwargs.pop("name", "Review"),
        triggers=[TriggerConfig(trigger_type=TriggerType.MANUAL)],
        actions=actions,
        **kwargs,
    )


async def make_engine(content, notification, config):
    registry = WorkflowRegistry()
    executor = ActionExecutor(content=content, notification=notification, config=config)
    engine = WorkflowEngine(registry, executor, config=config)
    await engine.initialize()
    return engine


# === State Machine Tests ===


class TestExecutionStateMachine:
    """Tests for guarded execution and step transitions."""

    def test_transition_table(self):
        assert can_transition(ExecutionStatus.PENDING, ExecutionStatus.RUNNING)
        assert can_transition(ExecutionStatus.PENDING, ExecutionStatus.CANCELLED)
        assert not can_transition(ExecutionStatus.PENDING, ExecutionStatus.COMPLETED)
        assert not can_transition(ExecutionStatus.COMPLETED, ExecutionStatus.RUNNING)

    def test_terminal_states_are_final(self):
        execution = WorkflowExecution()
        machine = ExecutionStateMachine(execution)
        machine.start()
        machine.complete()

        with pytest.raises(InvalidTransition):
            machine.cancel()
        with pytest.raises(InvalidTransition):
            machine.fail(ErrorDetail(code="X", message="late"))

        assert execution.status == ExecutionStatus.COMPLETED
        assert execution.ended_at is not None

    def test_cancel_skips_pending_steps(self):
        execution = WorkflowExecution(steps=[StepResult(action_index=0), StepResult(action_index=1)])
        machine = ExecutionStateMachine(execution)
        machine.start()
        machine.start_step(execution.steps[0])
        machine.complete_step(execution.steps[0], {"ok": True})

        machine.cancel()

        assert execution.status == ExecutionStatus.CANCELLED
        assert execution.steps[0].status == StepStatus.COMPLETED
        assert execution.steps[1].status == StepStatus.SKIPPED
        assert execution.steps[1].skip_reason == "cancelled"

    def test_step_cannot_restart(self):
        step = StepResult()
        machine = ExecutionStateMachine(WorkflowExecution())
        machine.start_step(step)
        machine.fail_step(step, ErrorDetail(code="X", message="boom"))

        with pytest.raises(InvalidTransition):
            machine.start_step(step)


# === Engine Tests ===


class TestWorkflowEngine:
    """Tests for workflow execution."""

    @pytest.mark.asyncio
    async def test_successful_execution(self, content, notification, automation_config):
        engine = await make_engine(content, notification, automation_config)
        await engine.registry.define(workflow([mark(), notify("tell")]))

        execution = await engine.execute("wf", ExecutionContext(document_id="doc-1"))

        assert execution.status == ExecutionStatus.COMPLETED
        assert not execution.skipped
        assert [s.status for s in execution.steps] == [StepStatus.COMPLETED, StepStatus.COMPLETED]
        assert execution.started_at <= execution.ended_at
        assert content.documents["doc-1"].metadata["reviewed"] is True
        assert len(notification.sent) == 1
        assert engine.history.get(execution.id).status == ExecutionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_top_level_condition_skips_execution(self, content, notification, automation_config):
        engine = await make_engine(content, notification, automation_config)
        condition = Condition(id="is-finance", path="department", operator=ConditionOperator.EQUALS, value="finance")
        await engine.registry.define(workflow([mark()], conditions=[condition]))

        execution = await engine.execute(
            "wf",
            ExecutionContext(document_id="doc-1", metadata={"department": "legal"}),
        )

        assert execution.status == ExecutionStatus.COMPLETED
        assert execution.skipped
        assert execution.skip_reason == "Condition is-finance not met"
        assert execution.steps == []
        assert "reviewed" not in content.documents["doc-1"].metadata

    @pytest.mark.asyncio
    async def test_failure_aborts_and_skips_remaining(self, content, notification, automation_config):
        engine = await make_engine(content, notification, automation_config)
        await engine.registry.define(workflow([mark(), move(), notify("tell")]))

        execution = await engine.execute("wf", ExecutionContext(document_id="ghost"))

        assert execution.status == ExecutionStatus.FAILED
        # update_metadata against a missing document fails first
        assert execution.failed_step_index == 0
        assert execution.error.code == "DOCUMENT_NOT_FOUND"
        assert execution.steps[0].status == StepStatus.FAILED
        assert execution.steps[1].status == StepStatus.SKIPPED
        assert execution.steps[1].skip_reason == "aborted after step 0 failed"
        assert execution.steps[2].status == StepStatus.SKIPPED
        assert notification.sent == []

    @pytest.mark.asyncio
    async def test_continue_on_error(self, content, notification, automation_config):
        engine = await make_engine(content, notification, automation_config)
        await engine.registry.define(workflow([move(continue_on_error=True), notify("tell")]))

        execution = await engine.execute("wf", ExecutionContext(document_id="ghost"))

        assert execution.status == ExecutionStatus.COMPLETED
        assert execution.steps[0].status == StepStatus.FAILED
        assert execution.steps[0].error.code == "DOCUMENT_NOT_FOUND"
        assert execution.steps[1].status == StepStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_workflow_level_continue_on_error(self, content, notification, automation_config):
        engine = await make_engine(content, notification, automation_config)
        await engine.registry.define(workflow([move(), notify("tell")], continue_on_error=True))

        execution = await engine.execute("wf", ExecutionContext(document_id="ghost"))

        assert execution.status == ExecutionStatus.COMPLETED
        assert execution.steps[1].status == StepStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_dependency_on_failed_step_skips(self, content, notification, automation_config):
        engine = await make_engine(content, notification, automation_config)
        await engine.registry.define(workflow([
            move(continue_on_error=True),
            notify("tell", depends_on=["move"]),
        ]))

        execution = await engine.execute("wf", ExecutionContext(document_id="ghost"))

        assert execution.status == ExecutionStatus.COMPLETED
        assert execution.steps[1].status == StepStatus.SKIPPED
        assert execution.steps[1].skip_reason == "dependencies not completed: move"

    @pytest.mark.asyncio
    async def test_step_conditions(self, content, notification, automation_config):
        engine = await make_engine(content, notification, automation_config)
        guarded = notify(
            "tell",
            conditions=[Condition(path="reviewed", operator=ConditionOperator.IS_TRUE)],
        )
        never = notify(
            "never",
            conditions=[Condition(path="owner", operator=ConditionOperator.EQUALS, value="nobody")],
        )
        await engine.registry.define(workflow([mark(), guarded, never]))

        execution = await engine.execute("wf", ExecutionContext(document_id="doc-1"))

        # The metadata patch from step 0 is visible to the step 1 guard
        assert execution.steps[1].status == StepStatus.COMPLETED
        assert execution.steps[2].status == StepStatus.SKIPPED
        assert execution.steps[2].skip_reason == "conditions not met"
        assert execution.status == ExecutionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_step_output_available_to_later_steps(self, content, notification, automation_config):
        engine = await make_engine(content, notification, automation_config)
        await engine.registry.define(workflow([
            mark(),
            notify("tell", message="updated {{ steps.mark.output.updated | first }}"),
        ]))

        await engine.execute("wf", ExecutionContext(document_id="doc-1"))

        assert notification.sent[0].context["message"] == "updated reviewed"

    @pytest.mark.asyncio
    async def test_caller_context_not_mutated(self, content, notification, automation_config):
        engine = await make_engine(content, notification, automation_config)
        await engine.registry.define(workflow([mark()]))
        context = ExecutionContext(document_id="doc-1", metadata={"owner": "alice"})

        await engine.execute("wf", context)

        assert context.metadata == {"owner": "alice"}

    @pytest.mark.asyncio
    async def test_unknown_and_disabled_workflows(self, content, notification, automation_config):
        engine = await make_engine(content, notification, automation_config)
        await engine.registry.define(workflow([mark()], enabled=False))

        with pytest.raises(NotFound):
            await engine.execute("missing")
        with pytest.raises(WorkflowDisabled):
            await engine.execute("wf")

        assert engine.list_executions() == []

    @pytest.mark.asyncio
    async def test_execution_pinned_to_dispatched_version(self, content, notification, automation_config):
        engine = await make_engine(content, notification, automation_config)
        gate = GateHandler()
        engine.executor.register_handler(ActionType.NOTIFY, gate)
        await engine.registry.define(workflow([notify("tell"), mark()]))

        execution = await engine.start("wf", ExecutionContext(document_id="doc-1"))
        await gate.entered.wait()

        await engine.registry.update("wf", {"name": "Renamed", "actions": [notify("only").to_dict()]})
        gate.release.set()
        await engine.wait(execution.id)

        assert execution.workflow_version == 1
        assert execution.workflow_name == "Review"
        assert [s.action_id for s in execution.steps] == ["tell", "mark"]
        assert execution.status == ExecutionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_execute_specific_version(self, content, notification, automation_config):
        engine = await make_engine(content, notification, automation_config)
        await engine.registry.define(workflow([mark()]))
        await engine.registry.update("wf", {"description": "v2"})

        execution = await engine.execute("wf", ExecutionContext(document_id="doc-1"), version=1)

        assert execution.workflow_version == 1

    @pytest.mark.asyncio
    async def test_cancel_running_execution_at_step_boundary(self, content, notification, automation_config):
        engine = await make_engine(content, notification, automation_config)
        gate = GateHandler()
        engine.executor.register_handler(ActionType.NOTIFY, gate)
        await engine.registry.define(workflow([notify("tell"), mark()]))

        execution = await engine.start("wf", ExecutionContext(document_id="doc-1"))
        await gate.entered.wait()

        await engine.cancel(execution.id)
        assert execution.status == ExecutionStatus.RUNNING

        gate.release.set()
        await engine.wait(execution.id)

        assert execution.status == ExecutionStatus.CANCELLED
        assert execution.steps[0].status == StepStatus.COMPLETED
        assert execution.steps[1].status == StepStatus.SKIPPED
        assert "reviewed" not in content.documents["doc-1"].metadata
        assert engine.history.get(execution.id).status == ExecutionStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_cancel_pending_execution(self, content, notification):
        config = AutomationConfig(max_concurrent_executions=1)
        engine = await make_engine(content, notification, config)
        gate = GateHandler()
        engine.executor.register_handler(ActionType.NOTIFY, gate)
        await engine.registry.define(workflow([notify("tell")]))

        first = await engine.start("wf")
        await gate.entered.wait()
        second = await engine.start("wf")
        await settle()

        assert second.status == ExecutionStatus.PENDING
        await engine.cancel(second.id)
        assert second.status == ExecutionStatus.CANCELLED

        gate.release.set()
        await engine.wait(first.id)
        await engine.wait(second.id)

        assert first.status == ExecutionStatus.COMPLETED
        assert second.status == ExecutionStatus.CANCELLED
        assert gate.calls == 1
        assert engine.history.count(ExecutionStatus.CANCELLED) == 1

    @pytest.mark.asyncio
    async def test_cancel_terminal_or_unknown(self, content, notification, automation_config):
        engine = await make_engine(content, notification, automation_config)
        await engine.registry.define(workflow([mark()]))
        execution = await engine.execute("wf", ExecutionContext(document_id="doc-1"))

        with pytest.raises(InvalidTransition):
            await engine.cancel(execution.id)
        with pytest.raises(NotFound):
            await engine.cancel("missing")

    @pytest.mark.asyncio
    async def test_parallel_safe_actions_overlap(self, content, notification, automation_config):
        engine = await make_engine(content, notification, automation_config)
        gate = GateHandler()
        engine.executor.register_handler(ActionType.NOTIFY, gate)
        await engine.registry.define(workflow([
            notify("a", parallel_safe=True),
            notify("b", parallel_safe=True),
            mark(),
        ]))

        execution = await engine.start("wf", ExecutionContext(document_id="doc-1"))
        await wait_until(lambda: gate.in_flight == 2)

        gate.release.set()
        await engine.wait(execution.id)

        assert gate.max_in_flight == 2
        assert [s.action_id for s in execution.steps] == ["a", "b", "mark"]
        assert all(s.status == StepStatus.COMPLETED for s in execution.steps)

    @pytest.mark.asyncio
    async def test_parallel_group_breaks_on_dependency(self, content, notification, automation_config):
        engine = await make_engine(content, notification, automation_config)
        gate = GateHandler()
        engine.executor.register_handler(ActionType.NOTIFY, gate)
        await engine.registry.define(workflow([
            notify("a", parallel_safe=True),
            notify("b", parallel_safe=True, depends_on=["a"]),
        ]))

        execution = await engine.start("wf")
        await wait_until(lambda: gate.in_flight == 1)
        await settle()
        assert gate.in_flight == 1

        gate.release.set()
        await engine.wait(execution.id)
        assert gate.max_in_flight == 1
        assert execution.status == ExecutionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_execution_timeout(self, content, notification):
        config = AutomationConfig(execution_timeout_seconds=0.05)
        engine = await make_engine(content, notification, config)
        engine.executor.register_handler(ActionType.NOTIFY, GateHandler())
        await engine.registry.define(workflow([notify("tell"), mark()]))

        execution = await engine.execute("wf", ExecutionContext(document_id="doc-1"))

        assert execution.status == ExecutionStatus.FAILED
        assert execution.error.code == "EXECUTION_TIMEOUT"
        assert execution.failed_step_index == 0
        assert execution.steps[0].status == StepStatus.FAILED
        assert execution.steps[1].status == StepStatus.SKIPPED

    @pytest.mark.asyncio
    async def test_callbacks(self, content, notification, automation_config):
        engine = await make_engine(content, notification, automation_config)
        await engine.registry.define(workflow([mark()]))
        events = []

        engine.on_execution_started(lambda e: events.append(("started", e.id)))
        engine.on_step_completed(lambda e, s: events.append(("step", s.action_id)))

        async def completed(execution):
            events.append(("completed", execution.status.value))

        engine.on_execution_completed(completed)

        def broken(execution):
            raise RuntimeError("callback failure")

        engine.on_execution_completed(broken)

        execution = await engine.execute("wf", ExecutionContext(document_id="doc-1"))

        assert events == [("started", execution.id), ("step", "mark"), ("completed", "completed")]

    @pytest.mark.asyncio
    async def test_list_executions_and_stats(self, content, notification, automation_config):
        engine = await make_engine(content, notification, automation_config)
        await engine.registry.define(workflow([move()]))
        await engine.execute("wf", ExecutionContext(document_id="doc-1"))
        await engine.execute("wf", ExecutionContext(document_id="ghost"))

        failed = engine.list_executions(status=ExecutionStatus.FAILED)
        stats = engine.get_stats()

        assert len(failed) == 1
        assert failed[0].document_id == "ghost"
        assert stats["total_executions"] == 2
        assert stats["by_status"]["completed"] == 1
        assert stats["by_status"]["failed"] == 1
        assert stats["history_size"] == 2

    @pytest.mark.asyncio
    async def test_shutdown_waits_for_running(self, content, notification, automation_config):
        engine = await make_engine(content, notification, automation_config)
        gate = GateHandler()
        engine.executor.register_handler(ActionType.NOTIFY, gate)
        await engine.registry.define(workflow([notify("tell"), mark()]))

        execution = await engine.start("wf", ExecutionContext(document_id="doc-1"))
        await gate.entered.wait()

        shutdown = asyncio.create_task(engine.shutdown())
        await settle()
        gate.release.set()
        await shutdown

        assert execution.status == ExecutionStatus.CANCELLED
        assert execution.steps[0].status == StepStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_terminal_executions_move_to_history(self, content, notification, automation_config):
        engine = await make_engine(content, notification, automation_config)
        await engine.registry.define(workflow([mark()]))

        execution = await engine.execute("wf", ExecutionContext(document_id="doc-1"))

        assert engine._executions == {}
        assert engine.get_execution(execution.id) is engine.history.get(execution.id)
        assert engine.get_execution(execution.id).status == ExecutionStatus.COMPLETED
        assert [e.id for e in engine.list_executions()] == [execution.id]
        assert engine.get_stats()["total_executions"] == 1


# === Scenario Tests ===


class ArchiveCountingContentService(InMemoryContentService):
    def __init__(self, documents=None):
        super().__init__(documents)
        self.archived = []

    async def archive_document(self, document_id, location=None):
        self.archived.append(document_id)
        return await super().archive_document(document_id, location)


class TestArchiveLargeDocuments:
    """Archive documents above a size threshold; smaller ones are skipped."""

    @pytest.mark.asyncio
    async def test_archive_only_large_documents(self, notification, automation_config):
        content = ArchiveCountingContentService([
            Document(id="doc-a", name="large.pdf", size_bytes=2_000_000),
            Document(id="doc-b", name="small.pdf", size_bytes=500),
        ])
        engine = await make_engine(content, notification, automation_config)
        await engine.registry.define(workflow(
            [ActionConfig(kind=ActionType.ARCHIVE, params=ArchiveParams(location="archive"), id="archive")],
            conditions=[Condition(id="large", path="metadata.size", operator=ConditionOperator.GREATER_THAN, value=1_000_000)],
        ))

        large = await engine.execute(
            "wf", ExecutionContext.for_document(await content.get_document("doc-a"))
        )
        small = await engine.execute(
            "wf", ExecutionContext.for_document(await content.get_document("doc-b"))
        )

        assert large.status == ExecutionStatus.COMPLETED
        assert [s.status for s in large.steps] == [StepStatus.COMPLETED]
        assert small.status == ExecutionStatus.COMPLETED
        assert small.skipped
        assert small.steps == []
        assert content.archived == ["doc-a"]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
