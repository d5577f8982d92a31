"""
Shared fixtures for Docflow tests.
"""

import asyncio
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

import pytest

from docflow.automation.clock import Clock
from docflow.automation.collaborators import (
    Document,
    InMemoryAnalysisService,
    InMemoryContentService,
    InMemoryNotificationService,
)
from docflow.automation.errors import CollaboratorError
from docflow.core.config import AutomationConfig


async def settle(rounds: int = 10) -> None:
    """Let ready tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


async def wait_until(predicate, timeout: float = 1.0) -> None:
    """Poll the event loop until ``predicate()`` holds."""

    async def poll():
        while not predicate():
            await asyncio.sleep(0)

    await asyncio.wait_for(poll(), timeout)


class ManualClock(Clock):
    """Clock whose time only moves when a test calls ``advance``."""

    def __init__(self, start: Optional[datetime] = None):
        self._now = start or datetime(2026, 1, 5, 9, 0, 0)
        self._sleepers: List[Tuple[datetime, int, asyncio.Future]] = []
        self._seq = 0

    def now(self) -> datetime:
        return self._now

    async def sleep(self, seconds: float) -> None:
        future = asyncio.get_running_loop().create_future()
        entry = (self._now + timedelta(seconds=seconds), self._seq, future)
        self._seq += 1
        self._sleepers.append(entry)
        try:
            await future
        finally:
            if entry in self._sleepers:
                self._sleepers.remove(entry)

    @property
    def sleeping(self) -> int:
        return len([s for s in self._sleepers if not s[2].done()])

    async def advance(self, seconds: float) -> None:
        """Move time forward, waking sleepers in due order."""
        target = self._now + timedelta(seconds=seconds)
        await settle()

        while True:
            due = sorted(
                (s for s in self._sleepers if s[0] <= target and not s[2].done()),
                key=lambda s: (s[0], s[1]),
            )
            if not due:
                break
            when, _, future = due[0]
            self._now = max(self._now, when)
            self._sleepers.remove(due[0])
            future.set_result(None)
            await settle()

        self._now = target
        await settle()

    async def advance_hours(self, hours: float) -> None:
        await self.advance(hours * 3600)


class FlakyContentService(InMemoryContentService):
    """Fails the first ``failures`` calls of each operation with a transient error."""

    def __init__(self, documents=None, failures: int = 1):
        super().__init__(documents)
        self.failures = failures
        self.retention_calls = 0
        self.move_calls = 0

    async def apply_retention(self, document_id, label, retention_days):
        self.retention_calls += 1
        if self.retention_calls <= self.failures:
            raise CollaboratorError("storage unavailable", document_id)
        return await super().apply_retention(document_id, label, retention_days)

    async def move_document(self, document_id, destination, overwrite=False):
        self.move_calls += 1
        if self.move_calls <= self.failures:
            raise CollaboratorError("storage unavailable", document_id)
        return await super().move_document(document_id, destination, overwrite)


class SlowContentService(InMemoryContentService):
    """Records how many document fetches are in flight at once."""

    def __init__(self, documents=None, delay: float = 0.02):
        super().__init__(documents)
        self.delay = delay
        self.in_flight = 0
        self.max_in_flight = 0
        self.started: List[str] = []

    async def get_document(self, document_id):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        self.started.append(document_id)
        try:
            await asyncio.sleep(self.delay)
            return await super().get_document(document_id)
        finally:
            self.in_flight -= 1


def make_documents(count: int, **kwargs) -> List[Document]:
    return [
        Document(id=f"doc-{i}", name=f"file-{i}.docx", **kwargs)
        for i in range(count)
    ]


@pytest.fixture
def automation_config():
    """Configuration with retry waits disabled."""
    return AutomationConfig(
        retry_attempts=3,
        retry_wait_multiplier=0,
        retry_wait_min=0,
        retry_wait_max=0,
    )


@pytest.fixture
def documents():
    return [
        Document(
            id="doc-1",
            name="policy.docx",
            location="/policies",
            content_type="policy",
            size_bytes=2048,
            metadata={"owner": "alice", "department": "legal", "contentType": "policy"},
        ),
        Document(
            id="doc-2",
            name="notes.txt",
            location="/scratch",
            content_type="text",
            size_bytes=100,
            tags=["temporary"],
            metadata={"owner": "bob"},
        ),
    ]


@pytest.fixture
def content(documents):
    return InMemoryContentService(documents)


@pytest.fixture
def analysis():
    return InMemoryAnalysisService(tags={"doc-1": ["policy", "legal"]})


@pytest.fixture
def notification():
    return InMemoryNotificationService()


@pytest.fixture
def clock():
    return ManualClock()
