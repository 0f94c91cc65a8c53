from __future__ import annotations

import asyncio
import datetime
import time
from typing import Protocol


class Clock(Protocol):
    def time(self) -> float: ...

    def now(self) -> datetime.datetime: ...

    async def sleep(self, seconds: float) -> None: ...


class SystemClock:
    def time(self) -> float:
        return time.time()

    def now(self) -> datetime.datetime:
        return datetime.datetime.now(datetime.UTC)

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(seconds, 0.0))


class ManualClock:
    """Deterministic clock that only moves when told to.

    ``sleep`` never waits: it records the requested duration, advances the
    clock by that amount and yields to the event loop once.

        clock = ManualClock(start=datetime.datetime(2025, 3, 3, 15, 0, tzinfo=datetime.UTC))
        clock.advance(seconds=30)
    """

    def __init__(self, start: datetime.datetime | float | None = None) -> None:
        if start is None:
            start = datetime.datetime(2025, 3, 3, 15, 0, tzinfo=datetime.UTC)
        if isinstance(start, datetime.datetime):
            if start.tzinfo is None:
                start = start.replace(tzinfo=datetime.UTC)
            start = start.timestamp()
        self._now = float(start)
        self.sleeps: list[float] = []

    def time(self) -> float:
        return self._now

    def now(self) -> datetime.datetime:
        return datetime.datetime.fromtimestamp(self._now, tz=datetime.UTC)

    def advance(self, seconds: float = 0, minutes: float = 0) -> None:
        self._now += seconds + minutes * 60

    def set(self, value: datetime.datetime | float) -> None:
        if isinstance(value, datetime.datetime):
            value = value.timestamp()
        self._now = float(value)

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self._now += max(seconds, 0.0)
        await asyncio.sleep(0)
