"""
Docflow Analysis Action Handler

Runs document analysis (summaries and smart tagging).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional, TYPE_CHECKING

import structlog

from docflow.automation.actions.executor import BaseActionHandler
from docflow.automation.types import ActionConfig, ActionParams

if TYPE_CHECKING:
    from docflow.automation.collaborators import AnalysisService, ContentService
    from docflow.automation.execution.context import ExecutionContext

logger = structlog.get_logger(__name__)


class RunAnalysisActionHandler(BaseActionHandler):
    """
    Summarizes a document and optionally tags it.

    On success the document is marked ``analyzed`` so batch runs can skip it.
    """

    def __init__(
        self,
        analysis: "AnalysisService",
        content: Optional["ContentService"] = None,
    ):
        self.analysis = analysis
        self.content = content

    async def execute(
        self,
        action: ActionConfig,
        params: ActionParams,
        context: "ExecutionContext",
    ) -> Dict[str, Any]:
        document_id = self.require_document(context, action)

        summaries = await self.call(self.analysis.summarize(document_id, list(params.formats)), document_id)
        tags = []
        if params.tag:
            tags = await self.call(self.analysis.tag(document_id), document_id)

        patch = {
            "analyzed": True,
            "analyzed_at": datetime.now().isoformat(),
        }
        if tags:
            patch["ai_tags"] = list(tags)

        if self.content is not None:
            await self.call(self.content.update_metadata(document_id, patch), document_id)
        context.update_metadata(patch)

        logger.info(
            "document_analyzed",
            document_id=document_id,
            formats=list(summaries),
            tags=len(tags),
        )
        return {"document_id": document_id, "summaries": summaries, "tags": tags}
