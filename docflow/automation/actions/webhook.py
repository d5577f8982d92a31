"""
Docflow Webhook Action Handler

Call external webhooks from workflows.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, TYPE_CHECKING

import httpx
import structlog

from docflow.automation.actions.executor import BaseActionHandler
from docflow.automation.errors import CollaboratorError
from docflow.automation.types import ActionConfig, ActionParams

if TYPE_CHECKING:
    from docflow.automation.execution.context import ExecutionContext

logger = structlog.get_logger(__name__)


class WebhookActionHandler(BaseActionHandler):
    """
    Handler for webhook actions.

    Makes HTTP requests to external URLs. A shared ``httpx.AsyncClient`` may
    be injected; otherwise a client is opened per call.
    """

    def __init__(self, client: Optional[httpx.AsyncClient] = None, timeout: float = 30.0):
        self.client = client
        self.timeout = timeout

    async def execute(
        self,
        action: ActionConfig,
        params: ActionParams,
        context: "ExecutionContext",
    ) -> Dict[str, Any]:
        method = (params.method or "POST").upper()
        body = params.payload
        if body is None:
            body = {
                "document_id": context.document_id,
                "workflow": context.workflow,
                "execution": context.execution,
            }

        logger.info("calling_webhook", url=params.url, method=method)

        try:
            if self.client is not None:
                response = await self._send(self.client, method, params.url, params.headers, body)
            else:
                async with httpx.AsyncClient() as client:
                    response = await self._send(client, method, params.url, params.headers, body)
        except httpx.HTTPError as e:
            raise CollaboratorError(f"Webhook request failed: {e}", action.id) from e

        if response.status_code >= 400:
            raise CollaboratorError(
                f"Webhook returned {response.status_code}",
                action.id,
                details={"status_code": response.status_code},
            )

        content_type = response.headers.get("content-type", "")
        if "application/json" in content_type:
            response_body = response.json()
        else:
            response_body = response.text

        return {
            "url": params.url,
            "method": method,
            "status_code": response.status_code,
            "body": response_body,
        }

    async def _send(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: str,
        headers: Dict[str, str],
        body: Any,
    ) -> httpx.Response:
        return await client.request(
            method=method,
            url=url,
            headers=headers,
            json=body,
            timeout=self.timeout,
        )
