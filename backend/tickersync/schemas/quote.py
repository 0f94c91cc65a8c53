from __future__ import annotations

import datetime

from pydantic import BaseModel, ConfigDict, Field


class Snapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    symbol: str
    price: float
    previous_close: float
    volume: float = 0.0
    name: str | None = None
    as_of: datetime.datetime
    provider: str | None = None

    @property
    def change(self) -> float:
        return self.price - self.previous_close

    @property
    def change_percent(self) -> float:
        if not self.previous_close:
            return 0.0
        return self.change / self.previous_close * 100


class Candle(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: datetime.datetime
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0


class CandleSeries(BaseModel):
    symbol: str
    start: datetime.date
    end: datetime.date
    candles: list[Candle] = Field(default_factory=list)
