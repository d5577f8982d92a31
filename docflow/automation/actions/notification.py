"""
Docflow Notification Action Handlers

Send notifications and email from workflows.
"""

from __future__ import annotations

from typing import Any, Dict, List, TYPE_CHECKING

import structlog

from docflow.automation.actions.executor import ActionOutcome, BaseActionHandler
from docflow.automation.errors import DeliveryError
from docflow.automation.types import ActionConfig, ActionParams

if TYPE_CHECKING:
    from docflow.automation.collaborators import NotificationService
    from docflow.automation.execution.context import ExecutionContext

logger = structlog.get_logger(__name__)


class NotificationActionHandler(BaseActionHandler):
    """
    Base for handlers that deliver through the notification service.

    A DeliveryError is downgraded to a step warning unless the action asks
    for confirmed delivery.
    """

    def __init__(self, notification: "NotificationService"):
        self.notification = notification

    async def deliver(
        self,
        action: ActionConfig,
        recipients: List[str],
        template: str,
        payload: Dict[str, Any],
        require_delivery: bool,
    ) -> ActionOutcome:
        logger.info(
            "sending_notification",
            action_id=action.id,
            template=template,
            recipients=len(recipients),
        )

        try:
            await self.call(self.notification.notify(recipients, template, payload))
        except DeliveryError as e:
            if require_delivery:
                raise
            logger.warning("notification_undelivered", action_id=action.id, error=e.message)
            return ActionOutcome(
                success=True,
                output={"delivered": False, "recipients": recipients},
                warnings=[f"Delivery failed: {e.message}"],
            )

        return ActionOutcome(
            success=True,
            output={"delivered": True, "recipients": recipients},
        )


class NotifyActionHandler(NotificationActionHandler):

    async def execute(
        self,
        action: ActionConfig,
        params: ActionParams,
        context: "ExecutionContext",
    ) -> Any:
        payload = {
            "message": params.message,
            "document_id": context.document_id,
            "workflow": context.workflow,
            "metadata": dict(context.metadata),
        }
        return await self.deliver(
            action,
            list(params.recipients),
            params.template,
            payload,
            params.require_delivery,
        )


class SendEmailActionHandler(NotificationActionHandler):

    async def execute(
        self,
        action: ActionConfig,
        params: ActionParams,
        context: "ExecutionContext",
    ) -> Any:
        payload = {
            "subject": params.subject,
            "body": params.body,
            "document_id": context.document_id,
        }
        return await self.deliver(
            action,
            list(params.to),
            "email",
            payload,
            params.require_delivery,
        )
