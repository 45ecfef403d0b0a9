"""
Test doubles shared across the test modules.
"""
import asyncio

from apiscope.storage import MemoryStore, StorageError


class FakeClock:
    """Deterministic millisecond clock advancing by one step per call."""

    def __init__(self, start: int = 1_000, step: int = 10):
        self.value = start - step
        self.step = step

    def __call__(self) -> int:
        self.value += self.step
        return self.value


class YieldingStore(MemoryStore):
    """MemoryStore that suspends on every read and write, like a real async backend."""

    async def get(self, key, default=None):
        await asyncio.sleep(0)
        return await super().get(key, default)

    async def set(self, key, value):
        await asyncio.sleep(0)
        await super().set(key, value)


class FailingStore(MemoryStore):
    """MemoryStore whose writes always fail."""

    async def set(self, key, value):
        raise StorageError("store unavailable")
