"""Wall-clock abstraction so schedule math is testable without real waits."""

from __future__ import annotations

import asyncio
from datetime import datetime


class Clock:
    """Local wall clock. Ledger dates are naive local datetimes."""

    def now(self) -> datetime:
        return datetime.now()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(seconds, 0.0))
