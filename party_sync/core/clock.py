"""Time source used by every timer and polling loop."""

from __future__ import annotations

import asyncio
import time


class SystemClock:
    """Wall-clock time in epoch milliseconds and an asyncio-backed sleep."""

    def now_ms(self) -> float:
        return time.time() * 1000

    async def sleep(self, delay_ms: float) -> None:
        await asyncio.sleep(max(0.0, delay_ms) / 1000)
