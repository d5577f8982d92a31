"""
Docflow Clock

Time source used by long-running timers, so tests can drive time.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime


class Clock(ABC):
    """Source of wall time and sleeping."""

    @abstractmethod
    def now(self) -> datetime:
        """Current time."""

    @abstractmethod
    async def sleep(self, seconds: float) -> None:
        """Suspend for ``seconds``."""


class SystemClock(Clock):
    """The real clock."""

    def now(self) -> datetime:
        return datetime.now()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)
