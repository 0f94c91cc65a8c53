from __future__ import annotations

import datetime
import logging
from collections.abc import Iterable, Sequence

from tickersync.errors import HttpError, NetworkError, ParseError
from tickersync.providers.base import MarketDataSource
from tickersync.schemas.quote import Candle, Snapshot

logger = logging.getLogger(__name__)

_FALLBACK_ERRORS = (NetworkError, HttpError, ParseError)


def _normalize(symbols: Iterable[str]) -> set[str]:
    return {symbol.strip().upper() for symbol in symbols}


class FallbackQuoteSource:
    """Tries each source in order until one answers.

    Index symbols go straight to ``index_source`` when one is given. The
    last source's error is raised when every source fails.
    """

    name = "fallback"

    def __init__(
        self,
        sources: Sequence[MarketDataSource],
        index_symbols: Iterable[str] = (),
        index_source: MarketDataSource | None = None,
    ) -> None:
        if not sources:
            raise ValueError("FallbackQuoteSource needs at least one source")
        self._sources = list(sources)
        self._index_symbols = _normalize(index_symbols)
        self._index_source = index_source

    def _chain(self, symbol: str) -> list[MarketDataSource]:
        if self._index_source is not None and symbol.strip().upper() in self._index_symbols:
            return [self._index_source]
        return self._sources

    async def fetch_quote(self, symbol: str) -> Snapshot:
        chain = self._chain(symbol)
        for position, source in enumerate(chain):
            try:
                return await source.fetch_quote(symbol)
            except _FALLBACK_ERRORS as exc:
                if position == len(chain) - 1:
                    raise
                logger.info("%s failed for %s (%s), falling back", source.name, symbol, exc)
        raise AssertionError("unreachable")

    async def fetch_candles(
        self, symbol: str, start: datetime.date, end: datetime.date
    ) -> list[Candle]:
        chain = self._chain(symbol)
        for position, source in enumerate(chain):
            try:
                return await source.fetch_candles(symbol, start, end)
            except _FALLBACK_ERRORS as exc:
                if position == len(chain) - 1:
                    raise
                logger.info("%s candles failed for %s (%s), falling back", source.name, symbol, exc)
        raise AssertionError("unreachable")
