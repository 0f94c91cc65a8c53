from __future__ import annotations

import asyncio
import datetime
import logging
from typing import Any

from tickersync.alerts.evaluator import AlertEvaluator
from tickersync.cache import HISTORICAL_PREFIX, QuoteCache, quote_key
from tickersync.clock import Clock, SystemClock
from tickersync.config.settings import Settings
from tickersync.errors import InvalidInputError
from tickersync.events import ALERTS_TOPIC, TOTALS_TOPIC, EventHub, LoggingNotifier, Notifier
from tickersync.market.session import market_status
from tickersync.portfolio.aggregator import Aggregator
from tickersync.providers.base import MarketDataSource
from tickersync.schemas.alert import Alert, AlertDirection
from tickersync.schemas.quote import CandleSeries, Snapshot
from tickersync.schemas.status import MarketStatus, PortfolioTotals, SymbolUpdate
from tickersync.storage import (
    ALERTS_KEY,
    PREFERENCES_KEY,
    WATCHLIST_KEY,
    KeyValueStore,
    MemoryKeyValueStore,
)
from tickersync.sync.client import RequestClient
from tickersync.sync.scheduler import Scheduler
from tickersync.validation.validator import normalize_symbol

logger = logging.getLogger(__name__)


class QuoteSyncService:
    """Wires the sync core together and owns the user's watchlist and alerts."""

    def __init__(
        self,
        settings: Settings,
        source: MarketDataSource,
        store: KeyValueStore | None = None,
        clock: Clock | None = None,
        notifier: Notifier | None = None,
        hub: EventHub | None = None,
        track_indices: bool = True,
    ) -> None:
        self.settings = settings
        self.track_indices = track_indices
        self.clock = clock or SystemClock()
        self.store = store if store is not None else MemoryKeyValueStore(self.clock)
        self.notifier = notifier or LoggingNotifier()
        self.hub = hub or EventHub()
        self.index_symbols = set(settings.market.index_symbols.values())

        self.cache = QuoteCache(settings.cache, self.clock)
        self.client = RequestClient(source, settings.api, settings.validation, self.clock)
        self.scheduler = Scheduler(
            self.client,
            self.cache,
            settings.polling,
            settings.market,
            self.clock,
            notifier=self.notifier,
            hub=self.hub,
        )
        self.alerts = AlertEvaluator(settings.alerts, self.clock)
        self.aggregator = Aggregator(self.cache, self.clock, excluded=self.index_symbols)
        self.scheduler.add_snapshot_listener(self._on_snapshot)

    # -- lifecycle ----------------------------------------------------------

    def start(self, track_indices: bool | None = None) -> list[str]:
        if track_indices is None:
            track_indices = self.track_indices
        loaded = self.alerts.load(self.store.get(ALERTS_KEY, []))
        stored = self.store.get(WATCHLIST_KEY)
        symbols = stored if isinstance(stored, list) else list(self.settings.watchlist.default_symbols)

        for raw in symbols[: self.settings.watchlist.max_symbols]:
            try:
                symbol = normalize_symbol(raw, self.settings.watchlist)
            except InvalidInputError:
                logger.warning("Ignoring invalid stored symbol %r", raw)
                continue
            self.scheduler.schedule(symbol)
        if track_indices:
            for symbol in self.settings.market.index_symbols.values():
                self.scheduler.schedule(symbol)

        logger.info("Tracking %d symbols, %d alerts restored", len(self.watchlist()), loaded)
        return self.watchlist()

    async def run(self, stop: asyncio.Event | None = None) -> None:
        await self.scheduler.run_forever(stop)

    def set_visible(self, visible: bool) -> None:
        self.scheduler.set_visible(visible)

    # -- watchlist ----------------------------------------------------------

    def watchlist(self) -> list[str]:
        return [symbol for symbol in self.scheduler.symbols() if symbol not in self.index_symbols]

    def add_symbol(self, raw: str) -> SymbolUpdate:
        symbol = normalize_symbol(raw, self.settings.watchlist)
        if symbol in self.scheduler:
            raise InvalidInputError(f"{symbol} is already added")
        if len(self.watchlist()) >= self.settings.watchlist.max_symbols:
            raise InvalidInputError(f"Maximum {self.settings.watchlist.max_symbols} stocks allowed")
        tracked = self.scheduler.schedule(symbol)
        self._save_watchlist()
        logger.info("Added %s to watchlist", symbol)
        return self.scheduler.describe(tracked)

    def remove_symbol(self, raw: str) -> None:
        symbol = raw.strip().upper()
        if symbol not in self.scheduler or symbol in self.index_symbols:
            raise KeyError(symbol)
        self.scheduler.cancel(symbol)
        self.cache.delete(quote_key(symbol))
        self._save_watchlist()
        self._publish_totals()
        logger.info("Removed %s from watchlist", symbol)

    def clear_watchlist(self) -> int:
        symbols = self.watchlist()
        for symbol in symbols:
            self.scheduler.cancel(symbol)
            self.cache.delete(quote_key(symbol))
        self._save_watchlist()
        self._publish_totals()
        return len(symbols)

    def symbol_updates(self) -> list[SymbolUpdate]:
        updates = []
        for symbol in self.scheduler.symbols():
            tracked = self.scheduler.tracked(symbol)
            if tracked is not None:
                updates.append(self.scheduler.describe(tracked))
        return updates

    def symbol_update(self, raw: str) -> SymbolUpdate:
        tracked = self.scheduler.tracked(raw.strip().upper())
        if tracked is None:
            raise KeyError(raw)
        return self.scheduler.describe(tracked)

    def refresh(self, raw: str) -> bool:
        symbol = raw.strip().upper()
        if symbol not in self.scheduler:
            raise KeyError(symbol)
        return self.scheduler.refresh(symbol)

    def resume(self, raw: str) -> bool:
        symbol = raw.strip().upper()
        if symbol not in self.scheduler:
            raise KeyError(symbol)
        return self.scheduler.resume(symbol)

    def _save_watchlist(self) -> None:
        self.store.set(WATCHLIST_KEY, self.watchlist())

    # -- alerts -------------------------------------------------------------

    def add_alert(
        self, raw: str, threshold: float, direction: AlertDirection = AlertDirection.ABOVE
    ) -> Alert:
        symbol = normalize_symbol(raw, self.settings.watchlist, extra_allowed=self.index_symbols)
        snapshot = self.cache.get_quote(symbol)
        created_price = snapshot.price if snapshot else None
        alert = self.alerts.add(symbol, threshold, direction, created_price=created_price)
        self._save_alerts()
        return alert

    def remove_alert(self, alert_id: str) -> Alert:
        alert = self.alerts.remove(alert_id)
        self._save_alerts()
        return alert

    def acknowledge_alert(self, alert_id: str) -> Alert:
        alert = self.alerts.acknowledge(alert_id)
        self._save_alerts()
        return alert

    def _save_alerts(self) -> None:
        self.store.set(ALERTS_KEY, self.alerts.dump())

    # -- preferences --------------------------------------------------------

    def preferences(self) -> dict[str, Any]:
        stored = self.store.get(PREFERENCES_KEY, {})
        return stored if isinstance(stored, dict) else {}

    def update_preferences(self, values: dict[str, Any]) -> dict[str, Any]:
        merged = {**self.preferences(), **values}
        self.store.set(PREFERENCES_KEY, merged)
        return merged

    # -- read model ---------------------------------------------------------

    def totals(self) -> PortfolioTotals:
        return self.aggregator.compute_totals()

    def market_status(self) -> MarketStatus:
        return market_status(self.clock.now(), self.settings.market)

    async def history(self, raw: str, days: int = 30) -> CandleSeries:
        symbol = normalize_symbol(raw, self.settings.watchlist, extra_allowed=self.index_symbols)
        end = self.clock.now().date()
        start = end - datetime.timedelta(days=days)
        key = f"{HISTORICAL_PREFIX}{symbol}:{start.isoformat()}:{end.isoformat()}"
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        candles = await self.client.fetch_history(symbol, start, end)
        series = CandleSeries(symbol=symbol, start=start, end=end, candles=candles)
        self.cache.put(key, series)
        return series

    # -- reactions ----------------------------------------------------------

    def _on_snapshot(self, snapshot: Snapshot) -> None:
        events = self.alerts.evaluate(snapshot)
        for event in events:
            try:
                self.notifier.notify(event)
            except Exception:
                logger.exception("Notifier failed on alert %s", event.alert_id)
            self.hub.publish(ALERTS_TOPIC, event)
        if events:
            self._save_alerts()
        if snapshot.symbol not in self.index_symbols:
            self._publish_totals()

    def _publish_totals(self) -> None:
        self.hub.publish(TOTALS_TOPIC, self.aggregator.compute_totals())
