from __future__ import annotations

from collections.abc import Iterable

from tickersync.cache import QuoteCache
from tickersync.clock import Clock
from tickersync.schemas.status import PortfolioTotals


class Aggregator:
    """Portfolio totals over whatever quotes the cache currently holds.

    Symbols without a live cached snapshot are left out entirely rather than
    counted as zero.
    """

    def __init__(self, cache: QuoteCache, clock: Clock, excluded: Iterable[str] = ()) -> None:
        self._cache = cache
        self._clock = clock
        self._excluded = set(excluded)

    def compute_totals(self) -> PortfolioTotals:
        total_value = 0.0
        total_change = 0.0
        count = 0
        for snapshot in self._cache.quotes():
            if snapshot.symbol in self._excluded:
                continue
            total_value += snapshot.price
            total_change += snapshot.change
            count += 1

        base = total_value - total_change
        change_percent = total_change / base * 100 if base else 0.0
        return PortfolioTotals(
            total_value=total_value,
            total_change=total_change,
            change_percent=change_percent,
            symbol_count=count,
            as_of=self._clock.now(),
        )
