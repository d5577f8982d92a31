"""
Tests for the Docflow rule model, conditions, context and action executor.
"""

import asyncio
import json

import httpx
import pytest

from docflow.automation.types import (
    ActionConfig,
    ActionType,
    ApplyRetentionParams,
    Condition,
    ConditionOperator,
    CreateApprovalParams,
    MoveParams,
    NotifyParams,
    RunAnalysisParams,
    TriggerConfig,
    TriggerType,
    UnknownActionParams,
    UpdateMetadataParams,
    WebhookParams,
    Workflow,
    WorkflowCategory,
    WorkflowPriority,
)
from docflow.automation.errors import (
    CollaboratorError,
    InvalidRequest,
    InvalidWorkflow,
    NotFound,
)
from docflow.automation.registry import WorkflowRegistry
from docflow.automation.validation import WorkflowValidator
from docflow.automation.execution.context import ABSENT, ExecutionContext
from docflow.automation.conditions.evaluator import ConditionEvaluator
from docflow.automation.conditions.operators import compare
from docflow.automation.actions.executor import ActionExecutor, BaseActionHandler
from docflow.automation.collaborators import InMemoryNotificationService

from conftest import FlakyContentService


def make_workflow(**overrides) -> Workflow:
    data = dict(
        id="wf-1",
        name="Tag legal documents",
        triggers=[TriggerConfig(trigger_type=TriggerType.MANUAL)],
        actions=[
            ActionConfig(
                kind=ActionType.UPDATE_METADATA,
                params=UpdateMetadataParams(updates={"reviewed": True}),
                id="mark",
            ),
        ],
    )
    data.update(overrides)
    return Workflow(**data)


# === Type Tests ===


class TestWorkflowTypes:
    """Tests for workflow type definitions."""

    def test_priority_ordering(self):
        """Priorities compare low < normal < high < critical."""
        assert WorkflowPriority.LOW < WorkflowPriority.NORMAL
        assert WorkflowPriority.HIGH < WorkflowPriority.CRITICAL
        assert max(WorkflowPriority) == WorkflowPriority.CRITICAL

    def test_action_params_variant_from_dict(self):
        """Action params are parsed into the variant for their kind."""
        action = ActionConfig.from_dict({
            "id": "move",
            "type": "move",
            "params": {"destination": "/archive", "unexpected": 1},
        })

        assert action.kind == ActionType.MOVE
        assert isinstance(action.params, MoveParams)
        assert action.params.destination == "/archive"

    def test_unknown_action_kind_kept(self):
        """Unknown kinds keep their name and raw parameters."""
        action = ActionConfig.from_dict({"id": "x", "kind": "shred", "params": {"passes": 3}})

        assert action.kind == "shred"
        assert not action.is_known_kind
        assert isinstance(action.params, UnknownActionParams)
        assert action.to_dict()["params"] == {"passes": 3}

    def test_idempotency(self):
        """Analysis and retention are idempotent; others need a key."""
        assert ActionConfig(kind=ActionType.RUN_ANALYSIS, params=RunAnalysisParams()).is_idempotent
        assert ActionConfig(kind=ActionType.APPLY_RETENTION, params=ApplyRetentionParams(label="x")).is_idempotent
        assert not ActionConfig(kind=ActionType.MOVE, params=MoveParams(destination="/a")).is_idempotent
        assert ActionConfig(
            kind=ActionType.MOVE,
            params=MoveParams(destination="/a"),
            idempotency_key="move-once",
        ).is_idempotent

    def test_continue_on_error_inherits_workflow_default(self):
        """A per-action None inherits the workflow setting."""
        inherit = ActionConfig(kind=ActionType.NOTIFY, params=NotifyParams(recipients=["a"]))
        explicit = ActionConfig(
            kind=ActionType.NOTIFY,
            params=NotifyParams(recipients=["a"]),
            continue_on_error=False,
        )
        workflow = make_workflow(continue_on_error=True, actions=[inherit, explicit])

        assert workflow.continues_on_error(inherit) is True
        assert workflow.continues_on_error(explicit) is False

    def test_workflow_serialization(self):
        """Test workflow to_dict and from_dict."""
        workflow = make_workflow(
            conditions=[Condition(path="department", operator=ConditionOperator.EQUALS, value="legal")],
            category=WorkflowCategory.COMPLIANCE,
            priority=WorkflowPriority.HIGH,
            tags=["legal"],
        )

        restored = Workflow.from_dict(json.loads(json.dumps(workflow.to_dict())))

        assert restored.id == workflow.id
        assert restored.category == WorkflowCategory.COMPLIANCE
        assert restored.priority == WorkflowPriority.HIGH
        assert restored.conditions[0].path == "department"
        assert restored.actions[0].params.updates == {"reviewed": True}

    def test_schedule_trigger_next_run(self):
        """Schedule triggers compute their next fire time."""
        from datetime import datetime

        trigger = TriggerConfig(trigger_type=TriggerType.SCHEDULE, cron_expression="0 2 * * *")
        next_run = trigger.next_run(datetime(2026, 3, 1, 12, 0))

        assert next_run == datetime(2026, 3, 2, 2, 0)
        assert TriggerConfig(trigger_type=TriggerType.MANUAL).next_run() is None

    def test_event_trigger_matching(self):
        """Event triggers match type and equality filters."""
        trigger = TriggerConfig(
            trigger_type=TriggerType.DOCUMENT_CREATED,
            event_filter={"contentType": "policy"},
        )

        assert trigger.matches("document_created", {"contentType": "policy"})
        assert not trigger.matches("document_created", {"contentType": "memo"})
        assert not trigger.matches(TriggerType.DOCUMENT_MODIFIED, {"contentType": "policy"})


# === Validation Tests ===


class TestWorkflowValidator:
    """Tests for workflow definition validation."""

    def codes(self, workflow):
        return {e.code for e in WorkflowValidator().validate(workflow).errors}

    def test_valid_workflow(self):
        result = WorkflowValidator().validate(make_workflow())
        assert result.valid
        assert result.errors == []

    def test_requires_trigger_and_action(self):
        codes = self.codes(make_workflow(triggers=[], actions=[]))
        assert "MISSING_TRIGGER" in codes
        assert "MISSING_ACTION" in codes

    def test_invalid_cron(self):
        workflow = make_workflow(triggers=[
            TriggerConfig(trigger_type=TriggerType.SCHEDULE, cron_expression="every day"),
        ])
        assert "INVALID_CRON" in self.codes(workflow)

    def test_missing_action_parameter(self):
        workflow = make_workflow(actions=[
            ActionConfig(kind=ActionType.MOVE, params=MoveParams(), id="move"),
        ])
        assert "MISSING_ACTION_CONFIG" in self.codes(workflow)

    def test_duplicate_action_ids(self):
        action = ActionConfig(kind=ActionType.NOTIFY, params=NotifyParams(recipients=["a"]), id="same")
        other = ActionConfig(kind=ActionType.NOTIFY, params=NotifyParams(recipients=["b"]), id="same")
        assert "DUPLICATE_ACTION_ID" in self.codes(make_workflow(actions=[action, other]))

    def test_dependency_cycle(self):
        a = ActionConfig(kind=ActionType.NOTIFY, params=NotifyParams(recipients=["a"]), id="a", depends_on=["b"])
        b = ActionConfig(kind=ActionType.NOTIFY, params=NotifyParams(recipients=["b"]), id="b", depends_on=["a"])
        assert "CYCLE_DETECTED" in self.codes(make_workflow(actions=[a, b]))

    def test_unknown_dependency(self):
        a = ActionConfig(kind=ActionType.NOTIFY, params=NotifyParams(recipients=["a"]), id="a", depends_on=["ghost"])
        assert "INVALID_DEPENDENCY" in self.codes(make_workflow(actions=[a]))

    def test_unknown_condition_operator(self):
        condition = Condition.from_dict({"path": "owner", "operator": "sounds_like", "value": "x"})
        assert "INVALID_CONDITION" in self.codes(make_workflow(conditions=[condition]))

    def test_unknown_kind_is_warning(self):
        workflow = make_workflow(actions=[ActionConfig(kind="shred", params={}, id="shred")])
        result = WorkflowValidator().validate(workflow)

        assert result.valid
        assert [w.code for w in result.warnings] == ["UNKNOWN_ACTION_KIND"]

    def test_action_limit(self):
        actions = [
            ActionConfig(kind=ActionType.NOTIFY, params=NotifyParams(recipients=["a"]), id=f"n{i}")
            for i in range(3)
        ]
        result = WorkflowValidator(max_actions=2).validate(make_workflow(actions=actions))
        assert "TOO_MANY_ACTIONS" in {e.code for e in result.errors}


# === Registry Tests ===


class TestWorkflowRegistry:
    """Tests for the versioned workflow registry."""

    @pytest.mark.asyncio
    async def test_define_and_get(self):
        registry = WorkflowRegistry()
        await registry.initialize()

        workflow = await registry.define(make_workflow())

        assert workflow.version == 1
        assert registry.get("wf-1").name == "Tag legal documents"
        assert "wf-1" in registry

    @pytest.mark.asyncio
    async def test_invalid_definition_not_stored(self):
        registry = WorkflowRegistry()

        with pytest.raises(InvalidWorkflow) as exc_info:
            await registry.define(make_workflow(actions=[]))

        assert exc_info.value.offending_id == "wf-1"
        assert any(e["code"] == "MISSING_ACTION" for e in exc_info.value.errors)
        assert registry.get("wf-1") is None
        assert registry.count() == 0

    @pytest.mark.asyncio
    async def test_duplicate_id_rejected(self):
        registry = WorkflowRegistry()
        await registry.define(make_workflow())

        with pytest.raises(InvalidWorkflow):
            await registry.define(make_workflow())

    @pytest.mark.asyncio
    @pytest.mark.parametrize("overrides", [
        {"category": "bogus"},
        {"priority": "urgent"},
        {"triggers": [{"type": "telepathy"}]},
        {"actions": "archive everything"},
        {"conditions": [42]},
    ])
    async def test_malformed_definition_is_invalid_workflow(self, overrides):
        registry = WorkflowRegistry()
        data = make_workflow().to_dict()
        data.update(overrides)

        with pytest.raises(InvalidWorkflow) as exc_info:
            await registry.define(data)

        assert exc_info.value.offending_id == "wf-1"
        assert exc_info.value.errors[0]["code"] == "MALFORMED_DEFINITION"
        assert registry.count() == 0

    @pytest.mark.asyncio
    async def test_malformed_patch_keeps_current_version(self):
        registry = WorkflowRegistry()
        await registry.define(make_workflow())

        with pytest.raises(InvalidWorkflow) as exc_info:
            await registry.update("wf-1", {"priority": "whenever"})

        assert exc_info.value.offending_id == "wf-1"
        assert exc_info.value.errors[0]["code"] == "MALFORMED_DEFINITION"
        assert registry.versions("wf-1") == [1]

    @pytest.mark.asyncio
    async def test_update_bumps_version_and_keeps_history(self):
        registry = WorkflowRegistry()
        await registry.define(make_workflow())

        updated = await registry.update("wf-1", {"name": "Renamed", "version": 99})

        assert updated.version == 2
        assert updated.name == "Renamed"
        assert registry.versions("wf-1") == [1, 2]
        assert registry.get("wf-1", version=1).name == "Tag legal documents"

    @pytest.mark.asyncio
    async def test_invalid_update_keeps_current_version(self):
        registry = WorkflowRegistry()
        await registry.define(make_workflow())

        with pytest.raises(InvalidWorkflow):
            await registry.update("wf-1", {"actions": []})

        assert registry.versions("wf-1") == [1]

    @pytest.mark.asyncio
    async def test_update_unknown(self):
        registry = WorkflowRegistry()
        with pytest.raises(NotFound):
            await registry.update("missing", {"name": "x"})

    @pytest.mark.asyncio
    async def test_returned_copies_are_isolated(self):
        registry = WorkflowRegistry()
        await registry.define(make_workflow())

        copy = registry.get("wf-1")
        copy.name = "mutated"

        assert registry.get("wf-1").name == "Tag legal documents"

    @pytest.mark.asyncio
    async def test_list_filters_and_priority_order(self):
        registry = WorkflowRegistry()
        await registry.define(make_workflow(id="low", priority=WorkflowPriority.LOW))
        await registry.define(make_workflow(
            id="critical",
            priority=WorkflowPriority.CRITICAL,
            category=WorkflowCategory.COMPLIANCE,
        ))
        await registry.define(make_workflow(id="off", enabled=False))

        assert [w.id for w in registry.list(enabled=True)] == ["critical", "low"]
        assert [w.id for w in registry.list(category=WorkflowCategory.COMPLIANCE)] == ["critical"]

    @pytest.mark.asyncio
    async def test_workflow_limit(self):
        registry = WorkflowRegistry(max_workflows=1)
        await registry.define(make_workflow(id="one"))

        with pytest.raises(InvalidRequest):
            await registry.define(make_workflow(id="two"))

    @pytest.mark.asyncio
    async def test_persistence_round_trip(self, tmp_path):
        registry = WorkflowRegistry(persistence_path=tmp_path)
        await registry.initialize()
        await registry.define(make_workflow())
        await registry.update("wf-1", {"description": "second"})
        await registry.shutdown()

        reloaded = WorkflowRegistry(persistence_path=tmp_path)
        await reloaded.initialize()

        assert reloaded.versions("wf-1") == [1, 2]
        assert reloaded.get("wf-1").description == "second"


# === Context Tests ===


class TestExecutionContext:
    """Tests for execution context."""

    def test_path_lookup(self):
        context = ExecutionContext(
            document_id="doc-1",
            metadata={"owner": {"name": "alice"}, "pages": 3},
            variables={"threshold": 10},
        )

        assert context.get("metadata.owner.name") == "alice"
        assert context.get("owner.name") == "alice"
        assert context.get("document.id") == "doc-1"
        assert context.get("variables.threshold") == 10

    def test_missing_path_is_absent(self):
        context = ExecutionContext(metadata={"owner": None})

        assert context.get("metadata.missing") is ABSENT
        assert context.get("metadata.owner") is None
        assert context.has("metadata.owner")
        assert not context.has("metadata.missing")

    def test_context_owns_its_metadata(self):
        source = {"tags": ["a"]}
        context = ExecutionContext(metadata=source)
        context.metadata["tags"].append("b")

        assert source == {"tags": ["a"]}
        assert context.copy().metadata is not context.metadata

    def test_expression_resolution(self):
        context = ExecutionContext(document_id="doc-1", metadata={"title": "Policy", "count": 3})

        assert context.resolve("{{ metadata.count }}") == 3
        assert context.resolve("Doc {{ document.id }}: {{ metadata.title | upper }}") == "Doc doc-1: POLICY"
        assert context.resolve("{{ metadata.missing | default('n/a') }}") == "n/a"
        assert context.resolve({"to": ["{{ metadata.title }}"]}) == {"to": ["Policy"]}


# === Condition Tests ===


class TestConditionEvaluator:
    """Tests for condition evaluation."""

    def setup_method(self):
        self.evaluator = ConditionEvaluator()
        self.context = ExecutionContext(
            document_id="doc-1",
            metadata={
                "department": "legal",
                "pages": 12,
                "tags": ["contract", "signed"],
                "title": "Master services agreement",
                "approved": False,
            },
        )

    def cond(self, path, operator, value=None, **kwargs):
        return Condition(path=path, operator=operator, value=value, **kwargs)

    def test_conjunction(self):
        assert self.evaluator.evaluate([
            self.cond("department", ConditionOperator.EQUALS, "legal"),
            self.cond("pages", ConditionOperator.GREATER_THAN, 10),
        ], self.context)

        assert not self.evaluator.evaluate([
            self.cond("department", ConditionOperator.EQUALS, "legal"),
            self.cond("pages", ConditionOperator.LESS_THAN, 10),
        ], self.context)

    def test_empty_list_passes(self):
        assert self.evaluator.evaluate([], self.context)

    def test_any_of_group(self):
        group = Condition(any_of=[
            self.cond("department", ConditionOperator.EQUALS, "finance"),
            self.cond("tags", ConditionOperator.CONTAINS, "signed"),
        ])
        assert self.evaluator.evaluate([group], self.context)

    def test_negate(self):
        condition = self.cond("department", ConditionOperator.EQUALS, "legal", negate=True)
        assert not self.evaluator.evaluate([condition], self.context)

    def test_absent_path_fails_comparisons(self):
        for operator in (
            ConditionOperator.EQUALS,
            ConditionOperator.NOT_EQUALS,
            ConditionOperator.GREATER_THAN,
            ConditionOperator.CONTAINS,
            ConditionOperator.EXISTS,
            ConditionOperator.IS_EMPTY,
        ):
            assert not self.evaluator.evaluate([self.cond("missing", operator, "x")], self.context)

        assert self.evaluator.evaluate([self.cond("missing", ConditionOperator.NOT_EXISTS)], self.context)

    def test_string_operators(self):
        assert self.evaluator.evaluate([self.cond("title", ConditionOperator.STARTS_WITH, "Master")], self.context)
        assert self.evaluator.evaluate([self.cond("title", ConditionOperator.ENDS_WITH, "agreement")], self.context)
        assert self.evaluator.evaluate([self.cond("title", ConditionOperator.MATCHES, r"serv\w+")], self.context)

    def test_membership_operators(self):
        assert self.evaluator.evaluate([self.cond("department", ConditionOperator.IN, ["legal", "hr"])], self.context)
        assert self.evaluator.evaluate([self.cond("department", ConditionOperator.NOT_IN, ["it"])], self.context)
        assert self.evaluator.evaluate([self.cond("approved", ConditionOperator.IS_FALSE)], self.context)

    def test_value_resolved_from_context(self):
        context = ExecutionContext(metadata={"pages": 12}, variables={"limit": 10})
        condition = self.cond("pages", ConditionOperator.GREATER_THAN, "{{ variables.limit }}")
        assert self.evaluator.evaluate([condition], context)

    def test_malformed_condition_is_false(self):
        bad_regex = self.cond("title", ConditionOperator.MATCHES, "(unclosed")
        outcome = self.evaluator.explain([bad_regex], self.context)

        assert not outcome.passed
        assert outcome.failed_condition_id == bad_regex.id
        assert outcome.error is not None

    def test_incomparable_ordering_is_false(self):
        condition = self.cond("tags", ConditionOperator.GREATER_THAN, 3)
        assert not self.evaluator.evaluate([condition], self.context)

    def test_short_circuit_reports_first_failure(self):
        first = self.cond("department", ConditionOperator.EQUALS, "finance")
        second = self.cond("title", ConditionOperator.MATCHES, "(unclosed")

        outcome = self.evaluator.explain([first, second], self.context)

        assert outcome.failed_condition_id == first.id
        assert outcome.error is None

    def test_evaluation_does_not_mutate_context(self):
        before = self.context.to_dict()
        self.evaluator.evaluate([self.cond("pages", ConditionOperator.GREATER_EQUAL, 12)], self.context)
        assert self.context.to_dict() == before


class TestOperators:
    """Tests for the raw compare function."""

    def test_numeric_coercion(self):
        assert compare("10", ConditionOperator.EQUALS, 10)
        assert compare("12", ConditionOperator.GREATER_THAN, 5)

    def test_iso_dates_order(self):
        assert compare("2026-01-02", ConditionOperator.GREATER_THAN, "2026-01-01")

    def test_empty_checks(self):
        assert compare("", ConditionOperator.IS_EMPTY, None)
        assert compare([1], ConditionOperator.IS_NOT_EMPTY, None)


# === Action Executor Tests ===


class TestActionExecutor:
    """Tests for action dispatch, retries and collaborator errors."""

    @pytest.mark.asyncio
    async def test_update_metadata_updates_document_and_context(self, content, automation_config):
        executor = ActionExecutor(content=content, config=automation_config)
        context = ExecutionContext(document_id="doc-1")
        action = ActionConfig(
            kind=ActionType.UPDATE_METADATA,
            params=UpdateMetadataParams(updates={"status": "{{ variables.state }}"}),
        )
        context.variables["state"] = "reviewed"

        outcome = await executor.execute(action, context)

        assert outcome.success
        assert content.documents["doc-1"].metadata["status"] == "reviewed"
        assert context.get("metadata.status") == "reviewed"

    @pytest.mark.asyncio
    async def test_missing_handler_is_unsupported(self, automation_config):
        executor = ActionExecutor(config=automation_config)

        outcome = await executor.execute(
            ActionConfig(kind=ActionType.MOVE, params=MoveParams(destination="/a"), id="move"),
            ExecutionContext(document_id="doc-1"),
        )

        assert not outcome.success
        assert outcome.error.code == "UNSUPPORTED_ACTION_KIND"
        assert outcome.error.offending_id == "move"
        assert outcome.attempts == 0

    @pytest.mark.asyncio
    async def test_unknown_kind_is_unsupported(self, content, automation_config):
        executor = ActionExecutor(content=content, config=automation_config)

        outcome = await executor.execute(ActionConfig(kind="shred", params={}), ExecutionContext())

        assert outcome.error.code == "UNSUPPORTED_ACTION_KIND"

    @pytest.mark.asyncio
    async def test_document_not_found(self, content, automation_config):
        executor = ActionExecutor(content=content, config=automation_config)

        outcome = await executor.execute(
            ActionConfig(kind=ActionType.MOVE, params=MoveParams(destination="/a")),
            ExecutionContext(document_id="ghost"),
        )

        assert outcome.error.code == "DOCUMENT_NOT_FOUND"
        assert outcome.error.offending_id == "ghost"

    @pytest.mark.asyncio
    async def test_conflict_is_not_retried(self, documents, automation_config):
        from docflow.automation.collaborators import Document, InMemoryContentService

        content = InMemoryContentService(documents + [
            Document(id="clash", name="policy.docx", location="/archive"),
        ])
        executor = ActionExecutor(content=content, config=automation_config)

        outcome = await executor.execute(
            ActionConfig(
                kind=ActionType.MOVE,
                params=MoveParams(destination="/archive"),
                idempotency_key="k",
            ),
            ExecutionContext(document_id="doc-1"),
        )

        assert outcome.error.code == "CONFLICT"
        assert outcome.attempts == 1

    @pytest.mark.asyncio
    async def test_idempotent_action_retried(self, documents, automation_config):
        content = FlakyContentService(documents, failures=2)
        executor = ActionExecutor(content=content, config=automation_config)

        outcome = await executor.execute(
            ActionConfig(kind=ActionType.APPLY_RETENTION, params=ApplyRetentionParams(label="7y")),
            ExecutionContext(document_id="doc-1"),
        )

        assert outcome.success
        assert outcome.attempts == 3
        assert content.documents["doc-1"].retention_label == "7y"

    @pytest.mark.asyncio
    async def test_retries_are_bounded(self, documents, automation_config):
        content = FlakyContentService(documents, failures=10)
        executor = ActionExecutor(content=content, config=automation_config)

        outcome = await executor.execute(
            ActionConfig(
                kind=ActionType.APPLY_RETENTION,
                params=ApplyRetentionParams(label="7y"),
                max_retries=1,
            ),
            ExecutionContext(document_id="doc-1"),
        )

        assert not outcome.success
        assert outcome.error.code == "COLLABORATOR_ERROR"
        assert content.retention_calls == 2

    @pytest.mark.asyncio
    async def test_non_idempotent_action_not_retried(self, documents, automation_config):
        content = FlakyContentService(documents, failures=1)
        executor = ActionExecutor(content=content, config=automation_config)

        outcome = await executor.execute(
            ActionConfig(kind=ActionType.MOVE, params=MoveParams(destination="/archive")),
            ExecutionContext(document_id="doc-1"),
        )

        assert not outcome.success
        assert content.move_calls == 1

    @pytest.mark.asyncio
    async def test_idempotency_key_enables_retry(self, documents, automation_config):
        content = FlakyContentService(documents, failures=1)
        executor = ActionExecutor(content=content, config=automation_config)

        outcome = await executor.execute(
            ActionConfig(
                kind=ActionType.MOVE,
                params=MoveParams(destination="/archive"),
                idempotency_key="move-doc-1",
            ),
            ExecutionContext(document_id="doc-1"),
        )

        assert outcome.success
        assert content.move_calls == 2

    @pytest.mark.asyncio
    async def test_delivery_failure_is_warning(self, automation_config):
        notification = InMemoryNotificationService(undeliverable=["bob"])
        executor = ActionExecutor(notification=notification, config=automation_config)

        outcome = await executor.execute(
            ActionConfig(kind=ActionType.NOTIFY, params=NotifyParams(recipients=["alice", "bob"])),
            ExecutionContext(),
        )

        assert outcome.success
        assert outcome.output["delivered"] is False
        assert outcome.warnings and "Delivery failed" in outcome.warnings[0]

    @pytest.mark.asyncio
    async def test_required_delivery_failure_fails(self, automation_config):
        notification = InMemoryNotificationService(undeliverable=["bob"])
        executor = ActionExecutor(notification=notification, config=automation_config)

        outcome = await executor.execute(
            ActionConfig(
                kind=ActionType.NOTIFY,
                params=NotifyParams(recipients=["bob"], require_delivery=True),
            ),
            ExecutionContext(),
        )

        assert not outcome.success
        assert outcome.error.code == "DELIVERY_ERROR"

    @pytest.mark.asyncio
    async def test_run_analysis_marks_document(self, content, analysis, automation_config):
        executor = ActionExecutor(content=content, analysis=analysis, config=automation_config)
        context = ExecutionContext(document_id="doc-1")

        outcome = await executor.execute(
            ActionConfig(kind=ActionType.RUN_ANALYSIS, params=RunAnalysisParams()),
            context,
        )

        assert outcome.success
        assert outcome.output["tags"] == ["policy", "legal"]
        assert content.documents["doc-1"].analyzed
        assert context.get("metadata.ai_tags") == ["policy", "legal"]

    @pytest.mark.asyncio
    async def test_action_without_document(self, content, automation_config):
        executor = ActionExecutor(content=content, config=automation_config)

        outcome = await executor.execute(
            ActionConfig(kind=ActionType.MOVE, params=MoveParams(destination="/a")),
            ExecutionContext(),
        )

        assert outcome.error.code == "DOCUMENT_REQUIRED"

    @pytest.mark.asyncio
    async def test_action_timeout(self, automation_config):
        class Stalled(BaseActionHandler):
            async def execute(self, action, params, context):
                await asyncio.sleep(5)

        executor = ActionExecutor(config=automation_config)
        await executor.initialize()
        executor.register_handler(ActionType.NOTIFY, Stalled())

        outcome = await executor.execute(
            ActionConfig(
                kind=ActionType.NOTIFY,
                params=NotifyParams(recipients=["a"]),
                timeout_seconds=0.01,
            ),
            ExecutionContext(),
        )

        assert outcome.error.code == "ACTION_TIMEOUT"

    @pytest.mark.asyncio
    async def test_unexpected_handler_error_is_captured(self, automation_config):
        class Broken(BaseActionHandler):
            async def execute(self, action, params, context):
                raise RuntimeError("boom")

        executor = ActionExecutor(config=automation_config)
        await executor.initialize()
        executor.register_handler(ActionType.NOTIFY, Broken())

        outcome = await executor.execute(
            ActionConfig(kind=ActionType.NOTIFY, params=NotifyParams(recipients=["a"]), id="n"),
            ExecutionContext(),
        )

        assert outcome.error.code == "ACTION_EXECUTION_FAILED"
        assert outcome.error.message == "boom"

    @pytest.mark.asyncio
    async def test_webhook_through_mock_transport(self, automation_config):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return httpx.Response(200, json={"accepted": True})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            executor = ActionExecutor(http_client=client, config=automation_config)
            context = ExecutionContext(document_id="doc-1")
            outcome = await executor.execute(
                ActionConfig(
                    kind=ActionType.WEBHOOK,
                    params=WebhookParams(
                        url="https://hooks.example.com/docflow",
                        payload={"document": "{{ document.id }}"},
                    ),
                ),
                context,
            )

        assert outcome.success
        assert outcome.output["body"] == {"accepted": True}
        assert seen == [{"document": "doc-1"}]

    @pytest.mark.asyncio
    async def test_webhook_error_status(self, automation_config):
        transport = httpx.MockTransport(lambda request: httpx.Response(503))

        async with httpx.AsyncClient(transport=transport) as client:
            executor = ActionExecutor(http_client=client, config=automation_config)
            outcome = await executor.execute(
                ActionConfig(kind=ActionType.WEBHOOK, params=WebhookParams(url="https://hooks.example.com")),
                ExecutionContext(),
            )

        assert outcome.error.code == "COLLABORATOR_ERROR"
        assert outcome.error.details["status_code"] == 503
        assert outcome.attempts == 1


class TestCreateApprovalParams:
    """create_approval accepts approvers or explicit stages."""

    def test_missing_fields(self):
        assert CreateApprovalParams().missing_fields() == ["approvers"]
        assert CreateApprovalParams(approvers=["a"]).missing_fields() == []
        assert CreateApprovalParams(stages=[{"approvers": ["a"]}]).missing_fields() == []


def test_collaborator_error_detail():
    error = CollaboratorError("storage down", "doc-1")
    detail = error.to_detail()
    assert detail.code == "COLLABORATOR_ERROR"
    assert detail.offending_id == "doc-1"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
