"""Injectable source of randomness and sleeping for human-paced actions."""

import asyncio
import random
import time
from typing import Optional


class DelayProvider:
    """Randomness and sleeping, in milliseconds."""

    def __init__(self, rng: Optional[random.Random] = None):
        self._rng = rng or random.Random()

    def uniform(self, low: float, high: float) -> float:
        return self._rng.uniform(low, high)

    def randint(self, low: int, high: int) -> int:
        return self._rng.randint(low, high)

    async def sleep(self, ms: float) -> None:
        if ms > 0:
            await asyncio.sleep(ms / 1000.0)

    def monotonic_ms(self) -> float:
        return time.monotonic() * 1000.0
