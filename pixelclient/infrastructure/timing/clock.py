"""Wall-clock implementation of the Clock port."""

import asyncio
import time
from datetime import datetime, timezone

from pixelclient.domain.interfaces.clock import Clock


class SystemClock(Clock):
    """Reads the real time and sleeps with asyncio."""

    def now_ms(self) -> int:
        return int(time.time() * 1000)

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, seconds))
