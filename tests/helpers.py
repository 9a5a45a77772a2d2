import asyncio
from datetime import datetime, timedelta


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 1.0) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


async def eventually(predicate, timeout: float = 2.0, interval: float = 0.01) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(interval)


class Collector:
    """Bus callback that records raw payloads."""

    def __init__(self) -> None:
        self.payloads = []
        self.received = asyncio.Event()

    async def __call__(self, raw: str) -> None:
        self.payloads.append(raw)
        self.received.set()
