from __future__ import annotations

import datetime
from typing import Protocol

from tickersync.schemas.quote import Candle, Snapshot


class MarketDataSource(Protocol):
    """Upstream quote provider.

    Implementations raise NetworkError, HttpError, ParseError or
    ValidationError from ``tickersync.errors``; the wire format stays inside
    the implementation.
    """

    name: str

    async def fetch_quote(self, symbol: str) -> Snapshot: ...

    async def fetch_candles(
        self, symbol: str, start: datetime.date, end: datetime.date
    ) -> list[Candle]: ...
