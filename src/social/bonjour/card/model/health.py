import asyncio


class HealthGauge:
    """
    Failure counter backing the readiness check.

    Handlers call `womp` when a request fails for a reason outside of regular flow control (a storage
    outage, an unexpected exception), never for a rejected submission. A background task calls `tick`
    periodically to decay the count. While the count is above the threshold, `is_healthy` reports false
    and `/internal/ready` answers 503 so the instance is taken out of rotation until failures subside.
    """

    def __init__(self, value: int = 0, health_threshold: int = 100) -> None:
        self._value = value
        self._health_threshold = health_threshold
        self._lock = asyncio.Lock()

    async def womp(self, d=1) -> int:
        async with self._lock:
            self._value += int(d)
            return self._value

    async def tick(self) -> None:
        async with self._lock:
            self._value = max(self._value - 1, 0)

    async def value(self) -> int:
        async with self._lock:
            return self._value

    async def is_healthy(self) -> bool:
        return await self.value() <= self._health_threshold
