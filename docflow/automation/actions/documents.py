"""
Docflow Document Action Handlers

Move, copy, delete, archive, retention and metadata actions routed to the
content service.
"""

from __future__ import annotations

from typing import Any, Dict, TYPE_CHECKING

import structlog

from docflow.automation.actions.executor import BaseActionHandler
from docflow.automation.types import ActionConfig, ActionParams

if TYPE_CHECKING:
    from docflow.automation.collaborators import ContentService
    from docflow.automation.execution.context import ExecutionContext

logger = structlog.get_logger(__name__)


class ContentActionHandler(BaseActionHandler):
    """Base for handlers backed by the content service."""

    def __init__(self, content: "ContentService"):
        self.content = content


class MoveActionHandler(ContentActionHandler):

    async def execute(
        self,
        action: ActionConfig,
        params: ActionParams,
        context: "ExecutionContext",
    ) -> Dict[str, Any]:
        document_id = self.require_document(context, action)
        document = await self.call(
            self.content.move_document(document_id, params.destination, params.overwrite),
            document_id,
        )
        logger.info("document_moved", document_id=document_id, destination=params.destination)
        return {"document_id": document_id, "location": document.location}


class CopyActionHandler(ContentActionHandler):

    async def execute(
        self,
        action: ActionConfig,
        params: ActionParams,
        context: "ExecutionContext",
    ) -> Dict[str, Any]:
        document_id = self.require_document(context, action)
        duplicate = await self.call(
            self.content.copy_document(document_id, params.destination, params.overwrite),
            document_id,
        )
        logger.info("document_copied", document_id=document_id, copy_id=duplicate.id)
        return {"document_id": document_id, "copy_id": duplicate.id, "location": duplicate.location}


class DeleteActionHandler(ContentActionHandler):

    async def execute(
        self,
        action: ActionConfig,
        params: ActionParams,
        context: "ExecutionContext",
    ) -> Dict[str, Any]:
        document_id = self.require_document(context, action)
        await self.call(self.content.delete_document(document_id, params.permanent), document_id)
        logger.info("document_deleted", document_id=document_id, permanent=params.permanent)
        return {"document_id": document_id, "deleted": True, "permanent": params.permanent}


class UpdateMetadataActionHandler(ContentActionHandler):
    """
    Updates document metadata.

    The patch is applied to the execution context as well, so later
    conditions and expressions in the same run see the new values. Without
    a document only the context is updated.
    """

    async def execute(
        self,
        action: ActionConfig,
        params: ActionParams,
        context: "ExecutionContext",
    ) -> Dict[str, Any]:
        if context.document_id:
            await self.call(
                self.content.update_metadata(context.document_id, params.updates),
                context.document_id,
            )
        context.update_metadata(params.updates)
        return {"document_id": context.document_id, "updated": sorted(params.updates)}


class ArchiveActionHandler(ContentActionHandler):

    async def execute(
        self,
        action: ActionConfig,
        params: ActionParams,
        context: "ExecutionContext",
    ) -> Dict[str, Any]:
        document_id = self.require_document(context, action)
        document = await self.call(
            self.content.archive_document(document_id, params.location),
            document_id,
        )
        context.update_metadata({"archived": True})
        logger.info("document_archived", document_id=document_id)
        return {"document_id": document_id, "archived": True, "location": document.location}


class ApplyRetentionActionHandler(ContentActionHandler):

    async def execute(
        self,
        action: ActionConfig,
        params: ActionParams,
        context: "ExecutionContext",
    ) -> Dict[str, Any]:
        document_id = self.require_document(context, action)
        await self.call(
            self.content.apply_retention(document_id, params.label, params.retention_days),
            document_id,
        )
        context.update_metadata({"retention_label": params.label})
        return {
            "document_id": document_id,
            "label": params.label,
            "retention_days": params.retention_days,
        }
