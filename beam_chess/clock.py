"""Time source for paced computer turns."""

from __future__ import annotations

import asyncio
from typing import Protocol


class Clock(Protocol):
    async def sleep(self, seconds: float) -> None: ...


class AsyncioClock:
    """Wall-clock delays on the running event loop."""

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)
