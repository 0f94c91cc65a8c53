from __future__ import annotations

import asyncio
import datetime
import heapq
import itertools
import logging
from collections.abc import Callable
from dataclasses import dataclass

from tickersync.cache import QuoteCache
from tickersync.clock import Clock
from tickersync.config.settings import MarketSettings, PollingSettings
from tickersync.errors import MarketDataError
from tickersync.events import SYMBOLS_TOPIC, EventHub, Notifier
from tickersync.market.session import session_at
from tickersync.schemas.quote import Snapshot
from tickersync.schemas.status import (
    MarketSession,
    SchedulerEvent,
    SchedulerEventKind,
    SymbolState,
    SymbolUpdate,
)
from tickersync.sync.client import RequestClient

logger = logging.getLogger(__name__)

SnapshotListener = Callable[[Snapshot], None]


@dataclass(slots=True, eq=False)
class TrackedSymbol:
    symbol: str
    interval: float
    state: SymbolState = SymbolState.IDLE
    consecutive_failures: int = 0
    paused_until: float | None = None
    last_snapshot: Snapshot | None = None
    last_error: str | None = None
    due_at: float | None = None
    token: int = 0


def _to_datetime(value: float | None) -> datetime.datetime | None:
    if value is None:
        return None
    return datetime.datetime.fromtimestamp(value, tz=datetime.UTC)


class Scheduler:
    """Polls every tracked symbol from one queue of due-times.

    The heap holds ``(due_at, seq, symbol, token)``; re-arming a symbol bumps
    its token so older heap entries are skipped when popped. At most one
    fetch per symbol is outstanding at any time, even across remove and re-add.
    """

    def __init__(
        self,
        client: RequestClient,
        cache: QuoteCache,
        polling: PollingSettings,
        market: MarketSettings,
        clock: Clock,
        notifier: Notifier | None = None,
        hub: EventHub | None = None,
    ) -> None:
        self._client = client
        self._cache = cache
        self._polling = polling
        self._market = market
        self._clock = clock
        self._notifier = notifier
        self._hub = hub
        self._tracked: dict[str, TrackedSymbol] = {}
        self._queue: list[tuple[float, int, str, int]] = []
        self._seq = itertools.count()
        self._tasks: set[asyncio.Task] = set()
        self._in_flight: set[str] = set()
        self._listeners: list[SnapshotListener] = []
        self._suspended = False

    def __contains__(self, symbol: str) -> bool:
        return symbol in self._tracked

    def __len__(self) -> int:
        return len(self._tracked)

    @property
    def suspended(self) -> bool:
        return self._suspended

    def symbols(self) -> list[str]:
        return list(self._tracked)

    def tracked(self, symbol: str) -> TrackedSymbol | None:
        return self._tracked.get(symbol)

    def is_in_flight(self, symbol: str) -> bool:
        return symbol in self._in_flight

    def add_snapshot_listener(self, listener: SnapshotListener) -> None:
        self._listeners.append(listener)

    def adaptive_interval(self, session: MarketSession | None = None) -> float:
        polling = self._polling
        if not polling.adaptive_polling:
            base = polling.default_interval
        else:
            if session is None:
                session = session_at(self._clock.now(), self._market)
            if session == MarketSession.OPEN:
                base = polling.market_hours_interval
            else:
                base = polling.after_hours_interval
        return min(max(base, polling.min_interval), polling.max_interval)

    def describe(self, tracked: TrackedSymbol) -> SymbolUpdate:
        return SymbolUpdate(
            symbol=tracked.symbol,
            state=tracked.state,
            last_snapshot=tracked.last_snapshot,
            error=tracked.last_error,
            consecutive_failures=tracked.consecutive_failures,
            interval=tracked.interval,
            paused_until=_to_datetime(tracked.paused_until),
        )

    # -- timers -------------------------------------------------------------

    def schedule(self, symbol: str) -> TrackedSymbol:
        tracked = self._tracked.get(symbol)
        if tracked is not None:
            return tracked
        tracked = TrackedSymbol(symbol=symbol, interval=self.adaptive_interval())
        self._tracked[symbol] = tracked
        self._arm(tracked, self._clock.time())
        logger.debug("Scheduled %s every %.0fs", symbol, tracked.interval)
        return tracked

    def cancel(self, symbol: str) -> bool:
        tracked = self._tracked.pop(symbol, None)
        if tracked is None:
            return False
        tracked.token += 1
        tracked.due_at = None
        logger.debug("Cancelled %s", symbol)
        return True

    def refresh(self, symbol: str) -> bool:
        tracked = self._tracked.get(symbol)
        if tracked is None or tracked.state == SymbolState.PAUSED:
            return False
        self._arm(tracked, self._clock.time())
        return True

    def refresh_all(self) -> int:
        return sum(1 for symbol in list(self._tracked) if self.refresh(symbol))

    def resume(self, symbol: str) -> bool:
        tracked = self._tracked.get(symbol)
        if tracked is None or tracked.state != SymbolState.PAUSED:
            return False
        self._resume(tracked)
        self._arm(tracked, self._clock.time())
        return True

    def set_visible(self, visible: bool) -> None:
        if not visible and self._polling.pause_on_hidden:
            self._suspended = True
            logger.info("Host hidden, polling suspended")
        elif visible and self._suspended and self._polling.resume_on_visible:
            self.resume_ticks()

    def resume_ticks(self) -> None:
        if self._suspended:
            logger.info("Polling resumed")
        self._suspended = False

    def next_due(self) -> float | None:
        while self._queue:
            due_at, _, symbol, token = self._queue[0]
            tracked = self._tracked.get(symbol)
            if tracked is not None and tracked.token == token:
                return due_at
            heapq.heappop(self._queue)
        return None

    def _arm(self, tracked: TrackedSymbol, due_at: float) -> None:
        tracked.token += 1
        tracked.due_at = due_at
        heapq.heappush(self._queue, (due_at, next(self._seq), tracked.symbol, tracked.token))

    # -- driving ------------------------------------------------------------

    def run_pending(self) -> list[str]:
        """Start a tick for every symbol whose due-time has passed."""
        if self._suspended:
            return []
        now = self._clock.time()
        started: list[str] = []
        while self._queue and self._queue[0][0] <= now:
            _, _, symbol, token = heapq.heappop(self._queue)
            tracked = self._tracked.get(symbol)
            if tracked is None or tracked.token != token:
                continue
            if symbol in self._in_flight:
                tracked.due_at = None
                continue
            self._in_flight.add(symbol)
            task = asyncio.create_task(self._tick_claimed(tracked))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            started.append(symbol)
        return started

    async def drain(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def run_forever(self, stop: asyncio.Event | None = None, poll: float = 1.0) -> None:
        stop = stop or asyncio.Event()
        logger.info("Scheduler started with %d symbols", len(self._tracked))
        while not stop.is_set():
            self.run_pending()
            delay = poll
            next_due = self.next_due()
            if next_due is not None and not self._suspended:
                delay = min(poll, max(next_due - self._clock.time(), 0.0))
            await self._clock.sleep(delay)
        await self.drain()
        logger.info("Scheduler stopped")

    async def tick(self, symbol: str) -> None:
        tracked = self._tracked.get(symbol)
        if tracked is None or symbol in self._in_flight:
            return
        self._in_flight.add(symbol)
        await self._tick_claimed(tracked)

    async def _tick_claimed(self, tracked: TrackedSymbol) -> None:
        try:
            await self._run_tick(tracked)
        finally:
            self._in_flight.discard(tracked.symbol)
            current = self._tracked.get(tracked.symbol)
            if current is not None and current is not tracked and current.due_at is None:
                # re-added while this fetch was outstanding; its due entry was skipped
                self._arm(current, self._clock.time())

    def _is_current(self, tracked: TrackedSymbol) -> bool:
        return self._tracked.get(tracked.symbol) is tracked

    async def _run_tick(self, tracked: TrackedSymbol) -> None:
        if tracked.state == SymbolState.PAUSED:
            if tracked.paused_until is not None and self._clock.time() < tracked.paused_until:
                return
            self._resume(tracked)

        tracked.state = SymbolState.LOADING
        self._publish(tracked)
        try:
            snapshot = await self._client.fetch(tracked.symbol)
        except MarketDataError as exc:
            if not self._is_current(tracked):
                logger.debug("Dropping failure for removed symbol %s", tracked.symbol)
                return
            if exc.counts_as_failure:
                self._on_failure(tracked, exc)
            else:
                self._on_throttled(tracked, exc)
            return
        except Exception as exc:
            logger.exception("Unexpected error while fetching %s", tracked.symbol)
            if self._is_current(tracked):
                self._on_failure(tracked, exc)
            return

        if not self._is_current(tracked):
            logger.debug("Dropping result for removed symbol %s", tracked.symbol)
            return
        self._on_success(tracked, snapshot)

    def _on_success(self, tracked: TrackedSymbol, snapshot: Snapshot) -> None:
        accepted = self._cache.put_quote(snapshot)
        if accepted:
            tracked.last_snapshot = snapshot
        tracked.consecutive_failures = 0
        tracked.last_error = None
        tracked.interval = self.adaptive_interval()
        tracked.state = SymbolState.SUCCESS
        self._publish(tracked)
        tracked.state = SymbolState.IDLE
        self._arm(tracked, self._clock.time() + tracked.interval)

        if accepted:
            for listener in list(self._listeners):
                try:
                    listener(snapshot)
                except Exception:
                    logger.exception("Snapshot listener failed for %s", snapshot.symbol)

    def _on_throttled(self, tracked: TrackedSymbol, exc: MarketDataError) -> None:
        logger.info("Throttled %s: %s", tracked.symbol, exc)
        tracked.last_error = str(exc)
        tracked.state = SymbolState.IDLE
        self._publish(tracked)
        self._arm(tracked, self._clock.time() + tracked.interval)

    def _on_failure(self, tracked: TrackedSymbol, exc: Exception) -> None:
        polling = self._polling
        tracked.consecutive_failures += 1
        tracked.last_error = str(exc)
        if polling.exponential_backoff:
            tracked.interval = min(tracked.interval * polling.backoff_multiplier, polling.max_interval)
        now = self._clock.time()

        if polling.auto_pause_on_error and tracked.consecutive_failures >= polling.max_retries:
            tracked.state = SymbolState.PAUSED
            tracked.paused_until = now + polling.auto_resume_delay
            self._arm(tracked, tracked.paused_until)
            logger.warning(
                "Pausing %s after %d consecutive failures: %s",
                tracked.symbol,
                tracked.consecutive_failures,
                exc,
            )
            self._publish(tracked)
            self._emit(tracked, SchedulerEventKind.PAUSED, str(exc))
            return

        logger.warning(
            "Fetch failed for %s (%d in a row), next try in %.0fs: %s",
            tracked.symbol,
            tracked.consecutive_failures,
            tracked.interval,
            exc,
        )
        tracked.state = SymbolState.ERROR
        self._publish(tracked)
        self._emit(tracked, SchedulerEventKind.ERROR, str(exc))
        tracked.state = SymbolState.IDLE
        self._arm(tracked, now + tracked.interval)

    def _resume(self, tracked: TrackedSymbol) -> None:
        tracked.state = SymbolState.IDLE
        tracked.consecutive_failures = 0
        tracked.paused_until = None
        tracked.interval = self.adaptive_interval()
        logger.info("Resuming %s", tracked.symbol)
        self._publish(tracked)
        self._emit(tracked, SchedulerEventKind.RESUMED)

    def _publish(self, tracked: TrackedSymbol) -> None:
        if self._hub is not None:
            self._hub.publish(SYMBOLS_TOPIC, self.describe(tracked))

    def _emit(self, tracked: TrackedSymbol, kind: SchedulerEventKind, error: str | None = None) -> None:
        if self._notifier is None:
            return
        event = SchedulerEvent(symbol=tracked.symbol, kind=kind, at=self._clock.now(), error=error)
        try:
            self._notifier.notify(event)
        except Exception:
            logger.exception("Notifier failed on %s event for %s", kind.value, tracked.symbol)
