"""
Docflow Approval Engine

Multi-stage document approvals with reminders and escalation.
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from functools import partial
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import structlog

from docflow.automation.clock import Clock, SystemClock
from docflow.automation.errors import ApprovalError, InvalidRequest, NotFound
from docflow.automation.types import (
    ApprovalDecision,
    ApprovalMode,
    ApprovalPolicy,
    ApprovalResponse,
    ApprovalStage,
    ApprovalStatus,
    ApprovalWorkflow,
    CreateApprovalParams,
    EscalationSettings,
    ReminderSettings,
    StageDecision,
)
from docflow.core.config import ApprovalConfig

logger = structlog.get_logger(__name__)

# Deferred notification or callback, run once the engine lock is released
Effect = Callable[[], Awaitable[None]]


def resolve_stage(stage: ApprovalStage, response: ApprovalResponse) -> Optional[StageDecision]:
    """
    Decide a stage after ``response`` was recorded, or None if still open.

    When the stage escalation overrides, a decision from an escalation target
    settles the stage on its own. Otherwise escalation targets count as
    approvers under the stage policy.
    """
    settles_alone = response.escalated and stage.escalation.override
    if settles_alone or stage.policy == ApprovalPolicy.FIRST_RESPONSE:
        return (
            StageDecision.APPROVED
            if response.decision == ApprovalDecision.APPROVE
            else StageDecision.REJECTED
        )

    voters = stage.approvers if stage.escalation.override else stage.eligible_approvers
    votes = [r for r in stage.responses if r.approver in voters]
    approvals = sum(1 for r in votes if r.decision == ApprovalDecision.APPROVE)
    rejections = len(votes) - approvals
    total = len(voters)

    if stage.policy == ApprovalPolicy.UNANIMOUS:
        if rejections:
            return StageDecision.REJECTED
        if approvals == total:
            return StageDecision.APPROVED
        return None

    # Majority: strictly more than half must approve
    if approvals * 2 > total:
        return StageDecision.APPROVED
    if (total - rejections) * 2 <= total:
        return StageDecision.REJECTED
    return None


class ApprovalEngine:
    """
    Runs approval workflows.

    Features:
    - Sequential stages or parallel tiers
    - Unanimous, first-response and majority policies
    - Rejection terminates the workflow unless the stage allows override
    - Per-stage reminder and escalation timers, cancelled on resolution
    - Notification failures are logged and never affect decisions

    Timers run on an injected Clock; every timer callback re-checks the
    stage before acting, so a late wake-up after resolution is a no-op.
    """

    def __init__(
        self,
        notification=None,
        clock: Optional[Clock] = None,
        store: Optional[Dict[str, ApprovalWorkflow]] = None,
        config: Optional[ApprovalConfig] = None,
    ):
        self.notification = notification
        self.clock = clock or SystemClock()
        self.config = config or ApprovalConfig()

        self._store: Dict[str, ApprovalWorkflow] = store if store is not None else {}

        # stage id -> timer tasks
        self._timers: Dict[str, List[asyncio.Task]] = {}

        # Event callbacks
        self._on_stage_resolved: List[Callable] = []
        self._on_completed: List[Callable] = []

        self._lock = asyncio.Lock()
        self._initialized = False

    async def initialize(self) -> None:
        """Initialize the approval engine."""
        if self._initialized:
            return
        self._initialized = True
        logger.info("Approval engine initialized", approvals=len(self._store))

    async def shutdown(self) -> None:
        """Cancel every timer."""
        for stage_id in list(self._timers):
            self._cancel_timers(stage_id)
        self._initialized = False

    # === Creation ===

    def build_from_params(
        self,
        params: CreateApprovalParams,
        document_id: Optional[str] = None,
        requested_by: Optional[str] = None,
    ) -> ApprovalWorkflow:
        """Build an approval workflow from create-approval action parameters."""
        mode = ApprovalMode(params.mode)
        policy = ApprovalPolicy(params.policy)

        reminder = ReminderSettings(
            enabled=params.reminder_hours is not None,
            interval_hours=params.reminder_hours or self.config.default_reminder_interval_hours,
            template=self.config.reminder_template,
        )
        escalation = EscalationSettings(
            enabled=params.escalation_hours is not None and bool(params.escalate_to),
            timeout_hours=params.escalation_hours or self.config.default_escalation_timeout_hours,
            escalate_to=list(params.escalate_to),
            template=self.config.escalation_template,
            override=params.escalation_override,
        )

        if params.stages:
            stages = [ApprovalStage.from_dict(s) for s in params.stages]
        elif mode == ApprovalMode.SEQUENTIAL:
            # One stage per approver, in order
            stages = [
                ApprovalStage(
                    name=f"Approval by {approver}",
                    tier=i,
                    approvers=[approver],
                    policy=policy,
                    reminder=replace(reminder),
                    escalation=replace(escalation, escalate_to=list(escalation.escalate_to)),
                )
                for i, approver in enumerate(params.approvers)
            ]
        else:
            stages = [
                ApprovalStage(
                    name=params.name,
                    approvers=list(params.approvers),
                    policy=policy,
                    reminder=reminder,
                    escalation=escalation,
                )
            ]

        return ApprovalWorkflow(
            name=params.name,
            document_id=document_id,
            mode=mode,
            stages=stages,
            requested_by=requested_by,
        )

    async def create(
        self,
        approval: Union[ApprovalWorkflow, Dict[str, Any]],
        auto_start: bool = True,
    ) -> ApprovalWorkflow:
        """
        Register an approval workflow and (by default) start it.

        Raises:
            InvalidRequest: no stages, or a stage without approvers
        """
        if isinstance(approval, dict):
            approval = self._from_dict(approval)

        if not approval.stages:
            raise InvalidRequest("Approval workflow needs at least one stage", approval.id)
        for stage in approval.stages:
            if not stage.approvers:
                raise InvalidRequest(f"Stage '{stage.name or stage.id}' has no approvers", stage.id)
            if stage.reminder.enabled and stage.reminder.interval_hours <= 0:
                raise InvalidRequest("Reminder interval must be positive", stage.id)
            if stage.escalation.enabled and stage.escalation.timeout_hours <= 0:
                raise InvalidRequest("Escalation timeout must be positive", stage.id)

        async with self._lock:
            if approval.id in self._store:
                raise InvalidRequest(f"Approval already exists: {approval.id}", approval.id)
            self._store[approval.id] = approval

        logger.info(
            "approval_created",
            approval_id=approval.id,
            mode=approval.mode.value,
            stages=len(approval.stages),
        )

        if auto_start:
            await self.start(approval.id)
        return approval

    def _from_dict(self, data: Dict[str, Any]) -> ApprovalWorkflow:
        approval = ApprovalWorkflow(
            name=data.get("name", ""),
            document_id=data.get("document_id"),
            mode=ApprovalMode(data.get("mode", "sequential")),
            stages=[ApprovalStage.from_dict(s) for s in data.get("stages", [])],
            requested_by=data.get("requested_by"),
            execution_id=data.get("execution_id"),
            metadata=dict(data.get("metadata", {})),
        )
        if data.get("id"):
            approval.id = data["id"]
        return approval

    async def start(self, approval_id: str) -> ApprovalWorkflow:
        """Start the first stage (sequential) or the first tier (parallel)."""
        effects: List[Effect] = []

        async with self._lock:
            approval = self._require(approval_id)
            if approval.status != ApprovalStatus.PENDING:
                raise ApprovalError(
                    f"Approval {approval_id} already started",
                    approval_id,
                    code="APPROVAL_ALREADY_STARTED",
                )

            approval.status = ApprovalStatus.IN_PROGRESS
            self._advance(approval, effects)

        await self._run_effects(effects)
        return approval

    # === Queries ===

    def get(self, approval_id: str) -> Optional[ApprovalWorkflow]:
        """Get an approval workflow by ID."""
        return self._store.get(approval_id)

    def list(
        self,
        status: Optional[ApprovalStatus] = None,
        approver: Optional[str] = None,
        document_id: Optional[str] = None,
    ) -> List[ApprovalWorkflow]:
        """List approval workflows with filters."""
        approvals = list(self._store.values())

        if status is not None:
            approvals = [a for a in approvals if a.status == status]

        if approver:
            approvals = [
                a for a in approvals
                if any(approver in s.eligible_approvers for s in a.active_stages())
            ]

        if document_id:
            approvals = [a for a in approvals if a.document_id == document_id]

        approvals.sort(key=lambda a: a.created_at, reverse=True)
        return approvals

    def active_timer_count(self, stage_id: Optional[str] = None) -> int:
        """Number of live timer tasks, for one stage or overall."""
        if stage_id is not None:
            return sum(1 for t in self._timers.get(stage_id, []) if not t.done())
        return sum(1 for tasks in self._timers.values() for t in tasks if not t.done())

    # === Decisions ===

    async def submit_decision(
        self,
        approval_id: str,
        stage_id: str,
        approver: str,
        decision: Union[ApprovalDecision, str],
        comment: str = "",
    ) -> ApprovalWorkflow:
        """
        Record an approver's decision and advance the workflow.

        Raises:
            NotFound: unknown approval or stage
            ApprovalError: stage not pending, approver not eligible, or the
                approver already decided
        """
        decision = ApprovalDecision(decision)
        effects: List[Effect] = []

        async with self._lock:
            approval = self._require(approval_id)
            stage = approval.get_stage(stage_id)
            if stage is None:
                raise NotFound(f"Stage not found: {stage_id}", stage_id)

            if approval.is_terminal() or not stage.is_active:
                raise ApprovalError(
                    f"Stage {stage_id} is not pending",
                    stage_id,
                    code="STAGE_NOT_PENDING",
                )
            if approver not in stage.eligible_approvers:
                raise ApprovalError(
                    f"{approver} is not an approver of stage {stage_id}",
                    approver,
                    code="APPROVER_NOT_ELIGIBLE",
                )
            if stage.has_responded(approver):
                raise ApprovalError(
                    f"{approver} already decided on stage {stage_id}",
                    approver,
                    code="DUPLICATE_DECISION",
                )

            response = ApprovalResponse(
                approver=approver,
                decision=decision,
                comment=comment,
                responded_at=self.clock.now(),
                escalated=approver in stage.escalated_to and approver not in stage.approvers,
            )
            stage.responses.append(response)

            logger.info(
                "approval_decision",
                approval_id=approval_id,
                stage_id=stage_id,
                approver=approver,
                decision=decision.value,
            )

            outcome = resolve_stage(stage, response)
            if outcome is not None:
                self._resolve_stage(approval, stage, outcome, effects)

        await self._run_effects(effects)
        return approval

    async def cancel(self, approval_id: str) -> ApprovalWorkflow:
        """Cancel an approval workflow and its timers."""
        async with self._lock:
            approval = self._require(approval_id)
            if approval.is_terminal():
                return approval

            for stage in approval.stages:
                self._cancel_timers(stage.id)
            self._finish(approval, ApprovalStatus.CANCELLED)

        await self._fire_callbacks(self._on_completed, approval)
        return approval

    # === Progression ===
    #
    # Progression only mutates state. Notifications and callbacks are queued
    # as effects and run by the caller after the lock is released.

    def _resolve_stage(
        self,
        approval: ApprovalWorkflow,
        stage: ApprovalStage,
        outcome: StageDecision,
        effects: List[Effect],
    ) -> None:
        stage.decision = outcome
        stage.resolved_at = self.clock.now()
        self._cancel_timers(stage.id)

        logger.info(
            "approval_stage_resolved",
            approval_id=approval.id,
            stage_id=stage.id,
            decision=outcome.value,
        )
        effects.append(partial(self._fire_callbacks, self._on_stage_resolved, approval, stage))

        if outcome == StageDecision.REJECTED and not stage.allow_override:
            for other in approval.stages:
                self._cancel_timers(other.id)
            self._finish(approval, ApprovalStatus.REJECTED)
            effects.append(partial(self._fire_callbacks, self._on_completed, approval))
            return

        self._advance(approval, effects)

    def _advance(self, approval: ApprovalWorkflow, effects: List[Effect]) -> None:
        """Start whatever comes next, or finish when every stage is decided."""
        if approval.active_stages():
            return

        unstarted = [s for s in approval.stages if s.started_at is None]
        if not unstarted:
            self._finish(approval, ApprovalStatus.APPROVED)
            effects.append(partial(self._fire_callbacks, self._on_completed, approval))
            return

        if approval.mode == ApprovalMode.SEQUENTIAL:
            self._start_stage(approval, unstarted[0], effects)
        else:
            tier = min(s.tier for s in unstarted)
            for stage in unstarted:
                if stage.tier == tier:
                    self._start_stage(approval, stage, effects)

    def _start_stage(self, approval: ApprovalWorkflow, stage: ApprovalStage, effects: List[Effect]) -> None:
        stage.started_at = self.clock.now()

        timers = []
        if stage.reminder.enabled:
            timers.append(asyncio.create_task(self._reminder_loop(approval.id, stage.id)))
        if stage.escalation.enabled and stage.escalation.escalate_to:
            timers.append(asyncio.create_task(self._escalation_timer(approval.id, stage.id)))
        self._timers[stage.id] = timers

        logger.info(
            "approval_stage_started",
            approval_id=approval.id,
            stage_id=stage.id,
            approvers=stage.approvers,
        )
        effects.append(partial(
            self._notify,
            list(stage.approvers),
            self.config.request_template,
            self._payload(approval, stage),
        ))

    @staticmethod
    async def _run_effects(effects: List[Effect]) -> None:
        for effect in effects:
            await effect()

    def _finish(self, approval: ApprovalWorkflow, status: ApprovalStatus) -> None:
        approval.status = status
        approval.completed_at = self.clock.now()
        logger.info("approval_completed", approval_id=approval.id, status=status.value)

    # === Timers ===

    def _live_stage(self, approval_id: str, stage_id: str) -> Optional[ApprovalStage]:
        approval = self._store.get(approval_id)
        if approval is None or approval.is_terminal():
            return None
        stage = approval.get_stage(stage_id)
        if stage is None or not stage.is_active:
            return None
        return stage

    async def _reminder_loop(self, approval_id: str, stage_id: str) -> None:
        """Remind outstanding approvers every interval while the stage is pending."""
        while True:
            stage = self._live_stage(approval_id, stage_id)
            if stage is None:
                return

            await self.clock.sleep(stage.reminder.interval_hours * 3600)

            stage = self._live_stage(approval_id, stage_id)
            if stage is None:
                return

            outstanding = [a for a in stage.eligible_approvers if not stage.has_responded(a)]
            stage.reminders_sent += 1
            logger.info(
                "approval_reminder",
                approval_id=approval_id,
                stage_id=stage_id,
                count=stage.reminders_sent,
            )
            await self._notify(
                outstanding,
                stage.reminder.template,
                self._payload(self._store[approval_id], stage),
            )

    async def _escalation_timer(self, approval_id: str, stage_id: str) -> None:
        """Fire once after the timeout; add the escalation targets if still pending."""
        stage = self._live_stage(approval_id, stage_id)
        if stage is None:
            return

        await self.clock.sleep(stage.escalation.timeout_hours * 3600)

        stage = self._live_stage(approval_id, stage_id)
        if stage is None or stage.escalated:
            return

        stage.escalated = True
        for target in stage.escalation.escalate_to:
            if target not in stage.escalated_to:
                stage.escalated_to.append(target)

        logger.info(
            "approval_escalated",
            approval_id=approval_id,
            stage_id=stage_id,
            escalate_to=stage.escalation.escalate_to,
        )
        await self._notify(
            stage.escalation.escalate_to,
            stage.escalation.template,
            self._payload(self._store[approval_id], stage),
        )

    def _cancel_timers(self, stage_id: str) -> None:
        current = asyncio.current_task()
        for task in self._timers.pop(stage_id, []):
            if task is not current and not task.done():
                task.cancel()

    # === Helpers ===

    def _require(self, approval_id: str) -> ApprovalWorkflow:
        approval = self._store.get(approval_id)
        if approval is None:
            raise NotFound(f"Approval not found: {approval_id}", approval_id)
        return approval

    @staticmethod
    def _payload(approval: ApprovalWorkflow, stage: ApprovalStage) -> Dict[str, Any]:
        return {
            "approval_id": approval.id,
            "approval_name": approval.name,
            "document_id": approval.document_id,
            "stage_id": stage.id,
            "stage_name": stage.name,
        }

    async def _notify(self, recipients: List[str], template: str, payload: Dict[str, Any]) -> None:
        if self.notification is None or not recipients:
            return
        try:
            await self.notification.notify(list(recipients), template, payload)
        except Exception as e:
            logger.warning(
                "approval_notification_failed",
                template=template,
                approval_id=payload.get("approval_id"),
                error=str(e),
            )

    def on_stage_resolved(self, callback: Callable) -> None:
        self._on_stage_resolved.append(callback)

    def on_completed(self, callback: Callable) -> None:
        self._on_completed.append(callback)

    async def _fire_callbacks(self, callbacks: List[Callable], *args) -> None:
        for callback in callbacks:
            try:
                result = callback(*args)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error("callback_error", error=str(e))
