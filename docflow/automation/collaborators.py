"""
Docflow Collaborator Interfaces

The engine reaches the outside world only through these three services:
content (document storage), analysis (summaries and tags) and
notification. In-memory implementations are provided for local use.
"""

from __future__ import annotations

import copy
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog

from docflow.automation.errors import ConflictError, DeliveryError, DocumentNotFound

logger = structlog.get_logger(__name__)


@dataclass
class Document:
    """A document as seen by the engine."""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    name: str = ""
    location: str = "/"
    content_type: str = ""
    size_bytes: int = 0
    tags: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    created_at: datetime = field(default_factory=datetime.now)
    modified_at: datetime = field(default_factory=datetime.now)
    last_accessed_at: Optional[datetime] = None

    archived: bool = False
    retention_label: Optional[str] = None

    @property
    def analyzed(self) -> bool:
        return bool(self.metadata.get("analyzed"))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "location": self.location,
            "content_type": self.content_type,
            "size_bytes": self.size_bytes,
            "tags": list(self.tags),
            "metadata": copy.deepcopy(self.metadata),
            "created_at": self.created_at.isoformat(),
            "modified_at": self.modified_at.isoformat(),
            "last_accessed_at": self.last_accessed_at.isoformat() if self.last_accessed_at else None,
            "archived": self.archived,
            "retention_label": self.retention_label,
        }


# === Interfaces ===


class ContentService(ABC):
    """Document storage."""

    @abstractmethod
    async def get_document(self, document_id: str) -> Document:
        """Fetch a document. Raises DocumentNotFound."""

    @abstractmethod
    async def update_metadata(self, document_id: str, patch: Dict[str, Any]) -> Document:
        """Merge a metadata patch."""

    @abstractmethod
    async def move_document(self, document_id: str, destination: str, overwrite: bool = False) -> Document:
        """Move a document. Raises ConflictError when the destination is taken."""

    @abstractmethod
    async def copy_document(self, document_id: str, destination: str, overwrite: bool = False) -> Document:
        """Copy a document and return the copy."""

    @abstractmethod
    async def delete_document(self, document_id: str, permanent: bool = False) -> None:
        """Delete a document."""

    @abstractmethod
    async def archive_document(self, document_id: str, location: Optional[str] = None) -> Document:
        """Archive a document."""

    @abstractmethod
    async def apply_retention(self, document_id: str, label: str, retention_days: int) -> Document:
        """Apply a retention label."""


class AnalysisService(ABC):
    """Document analysis."""

    @abstractmethod
    async def summarize(self, document_id: str, formats: List[str]) -> Dict[str, str]:
        """Summaries keyed by format (executive, technical, brief, bullet)."""

    @abstractmethod
    async def tag(self, document_id: str) -> List[str]:
        """Suggested tags."""


class NotificationService(ABC):
    """Outbound notifications."""

    @abstractmethod
    async def notify(self, recipients: List[str], template: str, context: Dict[str, Any]) -> None:
        """Send a notification. Raises DeliveryError."""


# === In-Memory Implementations ===


class InMemoryContentService(ContentService):
    """Content service backed by a dict."""

    def __init__(self, documents: Optional[List[Document]] = None):
        self.documents: Dict[str, Document] = {d.id: d for d in documents or []}
        self.deleted: List[str] = []

    def add(self, document: Document) -> Document:
        self.documents[document.id] = document
        return document

    def _require(self, document_id: str) -> Document:
        document = self.documents.get(document_id)
        if document is None:
            raise DocumentNotFound(f"Document not found: {document_id}", document_id)
        return document

    def _occupied(self, name: str, location: str, exclude: str) -> bool:
        return any(
            d.name == name and d.location == location and d.id != exclude
            for d in self.documents.values()
        )

    async def get_document(self, document_id: str) -> Document:
        document = self._require(document_id)
        document.last_accessed_at = datetime.now()
        return copy.deepcopy(document)

    async def update_metadata(self, document_id: str, patch: Dict[str, Any]) -> Document:
        document = self._require(document_id)
        document.metadata.update(copy.deepcopy(patch))
        document.modified_at = datetime.now()
        return copy.deepcopy(document)

    async def move_document(self, document_id: str, destination: str, overwrite: bool = False) -> Document:
        document = self._require(document_id)
        if not overwrite and self._occupied(document.name, destination, document_id):
            raise ConflictError(f"{document.name} already exists in {destination}", document_id)
        document.location = destination
        document.modified_at = datetime.now()
        return copy.deepcopy(document)

    async def copy_document(self, document_id: str, destination: str, overwrite: bool = False) -> Document:
        document = self._require(document_id)
        if not overwrite and self._occupied(document.name, destination, document_id):
            raise ConflictError(f"{document.name} already exists in {destination}", document_id)
        duplicate = copy.deepcopy(document)
        duplicate.id = str(uuid.uuid4())
        duplicate.location = destination
        self.documents[duplicate.id] = duplicate
        return copy.deepcopy(duplicate)

    async def delete_document(self, document_id: str, permanent: bool = False) -> None:
        self._require(document_id)
        del self.documents[document_id]
        self.deleted.append(document_id)

    async def archive_document(self, document_id: str, location: Optional[str] = None) -> Document:
        document = self._require(document_id)
        document.archived = True
        if location:
            document.location = location
        return copy.deepcopy(document)

    async def apply_retention(self, document_id: str, label: str, retention_days: int) -> Document:
        document = self._require(document_id)
        document.retention_label = label
        document.metadata["retention_days"] = retention_days
        return copy.deepcopy(document)


class InMemoryAnalysisService(AnalysisService):
    """Analysis service returning canned results."""

    def __init__(self, tags: Optional[Dict[str, List[str]]] = None):
        self._tags = tags or {}
        self.calls: List[str] = []

    async def summarize(self, document_id: str, formats: List[str]) -> Dict[str, str]:
        self.calls.append(document_id)
        return {fmt: f"{fmt} summary of {document_id}" for fmt in formats}

    async def tag(self, document_id: str) -> List[str]:
        return list(self._tags.get(document_id, []))


@dataclass
class SentNotification:
    recipients: List[str]
    template: str
    context: Dict[str, Any]
    sent_at: datetime = field(default_factory=datetime.now)


class InMemoryNotificationService(NotificationService):
    """Notification service recording every message."""

    def __init__(self, undeliverable: Optional[List[str]] = None):
        self.undeliverable = set(undeliverable or [])
        self.sent: List[SentNotification] = []

    async def notify(self, recipients: List[str], template: str, context: Dict[str, Any]) -> None:
        failed = [r for r in recipients if r in self.undeliverable]
        if failed:
            raise DeliveryError(f"Could not deliver to {', '.join(failed)}")
        self.sent.append(SentNotification(list(recipients), template, dict(context)))
        logger.debug("notification_sent", template=template, recipients=len(recipients))

    def sent_with(self, template: str) -> List[SentNotification]:
        return [n for n in self.sent if n.template == template]
