"""
Docflow Action Executor

Dispatches workflow actions to their handlers.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Dict, List, Optional, TYPE_CHECKING

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from docflow.automation.errors import (
    ActionTimeout,
    CollaboratorError,
    ConflictError,
    DocumentNotFound,
    ErrorDetail,
    InvalidRequest,
    UnsupportedActionKind,
    WorkflowEngineError,
)
from docflow.automation.types import (
    ActionConfig,
    ActionParams,
    ActionType,
    params_from_dict,
)
from docflow.core.config import AutomationConfig

if TYPE_CHECKING:
    from docflow.automation.execution.context import ExecutionContext

logger = structlog.get_logger(__name__)


@dataclass
class ActionOutcome:
    """What happened when an action ran."""
    success: bool
    output: Any = None
    error: Optional[ErrorDetail] = None
    warnings: List[str] = field(default_factory=list)
    attempts: int = 1


def _is_transient(error: BaseException) -> bool:
    # Missing documents and conflicts will not fix themselves
    return isinstance(error, CollaboratorError) and not isinstance(
        error, (DocumentNotFound, ConflictError)
    )


class ActionExecutor:
    """
    Executes workflow actions.

    Supports:
    - Document operations (move, copy, delete, archive, retention, metadata)
    - Notifications and email
    - Document analysis
    - Approval workflows
    - Webhooks

    ``execute`` never raises for action failures: the result is an
    ActionOutcome carrying a structured error. Collaborator failures are
    retried only for idempotent actions.
    """

    def __init__(
        self,
        content=None,
        analysis=None,
        notification=None,
        approvals=None,
        http_client=None,
        config: Optional[AutomationConfig] = None,
    ):
        self.content = content
        self.analysis = analysis
        self.notification = notification
        self.approvals = approvals
        self.http_client = http_client
        self.config = config or AutomationConfig()

        self._handlers: Dict[ActionType, "BaseActionHandler"] = {}
        self._initialized = False

    async def initialize(self) -> None:
        """Initialize the action executor."""
        if self._initialized:
            return

        from docflow.automation.actions.documents import (
            MoveActionHandler,
            CopyActionHandler,
            DeleteActionHandler,
            UpdateMetadataActionHandler,
            ArchiveActionHandler,
            ApplyRetentionActionHandler,
        )
        from docflow.automation.actions.notification import (
            NotifyActionHandler,
            SendEmailActionHandler,
        )
        from docflow.automation.actions.analysis import RunAnalysisActionHandler
        from docflow.automation.actions.approval import CreateApprovalActionHandler
        from docflow.automation.actions.webhook import WebhookActionHandler

        if self.content is not None:
            self._handlers[ActionType.MOVE] = MoveActionHandler(self.content)
            self._handlers[ActionType.COPY] = CopyActionHandler(self.content)
            self._handlers[ActionType.DELETE] = DeleteActionHandler(self.content)
            self._handlers[ActionType.UPDATE_METADATA] = UpdateMetadataActionHandler(self.content)
            self._handlers[ActionType.ARCHIVE] = ArchiveActionHandler(self.content)
            self._handlers[ActionType.APPLY_RETENTION] = ApplyRetentionActionHandler(self.content)

        if self.notification is not None:
            self._handlers[ActionType.NOTIFY] = NotifyActionHandler(self.notification)
            self._handlers[ActionType.SEND_EMAIL] = SendEmailActionHandler(self.notification)

        if self.analysis is not None:
            self._handlers[ActionType.RUN_ANALYSIS] = RunAnalysisActionHandler(self.analysis, self.content)

        if self.approvals is not None:
            self._handlers[ActionType.CREATE_APPROVAL] = CreateApprovalActionHandler(self.approvals)

        self._handlers[ActionType.WEBHOOK] = WebhookActionHandler(self.http_client)

        self._initialized = True
        logger.info("Action executor initialized", handlers=len(self._handlers))

    async def execute(
        self,
        action: ActionConfig,
        context: "ExecutionContext",
    ) -> ActionOutcome:
        """
        Execute an action.

        Args:
            action: Action configuration
            context: Execution context

        Returns:
            ActionOutcome (never raises for handler failures)
        """
        if not self._initialized:
            await self.initialize()

        handler = self._handlers.get(action.kind) if action.is_known_kind else None
        if handler is None:
            error = UnsupportedActionKind(
                f"No handler for action kind: {action.kind_value}",
                action.id,
            )
            logger.warning("unsupported_action_kind", action_id=action.id, kind=action.kind_value)
            return ActionOutcome(success=False, error=error.to_detail(), attempts=0)

        timeout = action.timeout_seconds or self.config.default_action_timeout_seconds
        max_attempts = self._max_attempts(action)
        attempts = 0

        retrying = AsyncRetrying(
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential(
                multiplier=self.config.retry_wait_multiplier,
                min=self.config.retry_wait_min,
                max=self.config.retry_wait_max,
            ),
            retry=retry_if_exception(_is_transient),
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    attempts += 1
                    params = handler.resolve_params(action, context)
                    try:
                        result = await asyncio.wait_for(
                            handler.execute(action, params, context),
                            timeout=timeout,
                        )
                    except asyncio.TimeoutError:
                        raise ActionTimeout(
                            f"Action timed out after {timeout}s",
                            action.id,
                        )

        except WorkflowEngineError as e:
            logger.error(
                "action_error",
                action_id=action.id,
                kind=action.kind_value,
                code=e.code,
                error=e.message,
                attempts=attempts,
            )
            detail = e.to_detail()
            if detail.offending_id is None:
                detail.offending_id = action.id
            return ActionOutcome(success=False, error=detail, attempts=attempts)

        except Exception as e:
            logger.exception(
                "action_error",
                action_id=action.id,
                kind=action.kind_value,
                error=str(e),
            )
            return ActionOutcome(
                success=False,
                error=ErrorDetail(
                    code="ACTION_EXECUTION_FAILED",
                    message=str(e) or type(e).__name__,
                    offending_id=action.id,
                ),
                attempts=attempts,
            )

        outcome = result if isinstance(result, ActionOutcome) else ActionOutcome(success=True, output=result)
        outcome.attempts = attempts

        logger.debug(
            "action_executed",
            action_id=action.id,
            kind=action.kind_value,
            success=outcome.success,
            attempts=attempts,
        )
        return outcome

    def _max_attempts(self, action: ActionConfig) -> int:
        if not action.is_idempotent:
            return 1
        if action.max_retries is not None:
            return max(1, action.max_retries + 1)
        return max(1, self.config.retry_attempts)

    def register_handler(
        self,
        action_type: ActionType,
        handler: "BaseActionHandler",
    ) -> None:
        """Register a custom action handler."""
        self._handlers[action_type] = handler
        logger.info("handler_registered", action_type=action_type.value)

    def unregister_handler(self, action_type: ActionType) -> None:
        self._handlers.pop(action_type, None)

    def get_handler(
        self,
        action_type: ActionType,
    ) -> Optional["BaseActionHandler"]:
        """Get a handler by action type."""
        return self._handlers.get(action_type)

    def supported_kinds(self) -> List[str]:
        return sorted(k.value for k in self._handlers)


class BaseActionHandler:
    """Base class for action handlers."""

    async def execute(
        self,
        action: ActionConfig,
        params: ActionParams,
        context: "ExecutionContext",
    ) -> Any:
        """Execute the action with resolved parameters."""
        raise NotImplementedError

    def resolve_params(
        self,
        action: ActionConfig,
        context: "ExecutionContext",
    ) -> ActionParams:
        """Resolve {{ }} expressions in the action parameters."""
        return params_from_dict(action.kind, context.resolve(action.params.to_dict()))

    @staticmethod
    def require_document(context: "ExecutionContext", action: ActionConfig) -> str:
        if not context.document_id:
            raise InvalidRequest(
                f"Action '{action.kind_value}' needs a document",
                action.id,
                code="DOCUMENT_REQUIRED",
            )
        return context.document_id

    @staticmethod
    async def call(awaitable: Awaitable[Any], offending_id: Optional[str] = None) -> Any:
        """Await a collaborator call, wrapping foreign errors as CollaboratorError."""
        try:
            return await awaitable
        except WorkflowEngineError:
            raise
        except Exception as e:
            raise CollaboratorError(str(e) or type(e).__name__, offending_id) from e
