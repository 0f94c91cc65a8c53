from __future__ import annotations

import asyncio
import datetime
import random

from tickersync.clock import Clock
from tickersync.errors import NetworkError
from tickersync.schemas.quote import Candle, Snapshot


class RandomWalkQuoteSource:
    """Offline data source for development: prices take a small random walk."""

    name = "mock"

    def __init__(
        self,
        clock: Clock,
        error_rate: float = 0.0,
        delay: float = 0.0,
        seed: int | None = None,
        start_prices: dict[str, float] | None = None,
    ) -> None:
        self._clock = clock
        self._error_rate = error_rate
        self._delay = delay
        self._random = random.Random(seed)
        self._prices: dict[str, float] = dict(start_prices or {})
        self._previous_close: dict[str, float] = {}

    def _base_price(self, symbol: str) -> float:
        if symbol not in self._prices:
            self._prices[symbol] = round(self._random.uniform(20, 500), 2)
        self._previous_close.setdefault(symbol, self._prices[symbol])
        return self._prices[symbol]

    async def fetch_quote(self, symbol: str) -> Snapshot:
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._error_rate and self._random.random() < self._error_rate:
            raise NetworkError("simulated network failure", symbol=symbol)

        price = self._base_price(symbol) * (1 + self._random.gauss(0, 0.002))
        price = round(max(price, 0.01), 2)
        self._prices[symbol] = price
        return Snapshot(
            symbol=symbol,
            price=price,
            previous_close=self._previous_close[symbol],
            volume=float(self._random.randint(10_000, 5_000_000)),
            name=symbol,
            as_of=self._clock.now(),
            provider=self.name,
        )

    async def fetch_candles(
        self, symbol: str, start: datetime.date, end: datetime.date
    ) -> list[Candle]:
        close = self._base_price(symbol)
        candles: list[Candle] = []
        day = start
        while day <= end:
            if day.isoweekday() <= 5:
                open_ = close
                close = round(max(open_ * (1 + self._random.gauss(0, 0.01)), 0.01), 2)
                candles.append(
                    Candle(
                        timestamp=datetime.datetime.combine(day, datetime.time.min, tzinfo=datetime.UTC),
                        open=open_,
                        high=max(open_, close),
                        low=min(open_, close),
                        close=close,
                        volume=float(self._random.randint(10_000, 5_000_000)),
                    )
                )
            day += datetime.timedelta(days=1)
        return candles
