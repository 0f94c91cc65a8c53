import asyncio
import datetime

from fakes import BlockingSource, RecordingNotifier, ScriptedSource, make_snapshot

from tickersync.cache import QuoteCache
from tickersync.clock import ManualClock
from tickersync.config.settings import Settings
from tickersync.errors import NetworkError, ParseError
from tickersync.events import EventHub
from tickersync.schemas.status import MarketSession, SchedulerEventKind, SymbolState
from tickersync.sync.client import RequestClient
from tickersync.sync.scheduler import Scheduler


def build_scheduler(source, clock: ManualClock, **overrides):
    settings = Settings(**overrides)
    cache = QuoteCache(settings.cache, clock)
    client = RequestClient(source, settings.api, settings.validation, clock)
    notifier = RecordingNotifier()
    hub = EventHub()
    scheduler = Scheduler(
        client, cache, settings.polling, settings.market, clock, notifier=notifier, hub=hub
    )
    return scheduler, cache, notifier, hub


async def step(scheduler: Scheduler, clock: ManualClock, seconds: float) -> list[str]:
    clock.advance(seconds=seconds)
    started = scheduler.run_pending()
    await scheduler.drain()
    return started


def test_new_symbol_is_fetched_immediately_and_rearmed() -> None:
    async def scenario() -> None:
        clock = ManualClock()
        source = ScriptedSource(clock, {"AAPL": [150.0]})
        scheduler, cache, _, _ = build_scheduler(source, clock)
        scheduler.schedule("AAPL")

        assert await step(scheduler, clock, 0) == ["AAPL"]
        tracked = scheduler.tracked("AAPL")
        assert tracked.state == SymbolState.IDLE
        assert tracked.interval == 15.0
        assert tracked.due_at == clock.time() + 15.0
        assert cache.get_quote("AAPL").price == 150.0

        assert await step(scheduler, clock, 14) == []
        assert await step(scheduler, clock, 1) == ["AAPL"]
        assert source.calls == ["AAPL", "AAPL"]

    asyncio.run(scenario())


def test_second_tick_while_fetch_outstanding_is_noop() -> None:
    async def scenario() -> None:
        clock = ManualClock()
        source = BlockingSource(clock)
        scheduler, _, _, _ = build_scheduler(source, clock)
        scheduler.schedule("AAPL")

        first = asyncio.create_task(scheduler.tick("AAPL"))
        while not source.calls:
            await asyncio.sleep(0)
        await scheduler.tick("AAPL")
        scheduler.refresh("AAPL")
        assert scheduler.run_pending() == []
        assert source.calls == ["AAPL"]

        source.release()
        await first
        assert scheduler.is_in_flight("AAPL") is False

    asyncio.run(scenario())


def test_three_failures_pause_until_resume_delay() -> None:
    async def scenario() -> None:
        clock = ManualClock()
        source = ScriptedSource(
            clock, {"AAPL": [ParseError("bad"), ParseError("bad"), ParseError("bad")]}
        )
        scheduler, _, notifier, _ = build_scheduler(
            source,
            clock,
            polling={"max_retries": 3, "auto_pause_on_error": True, "auto_resume_delay": 30},
        )
        scheduler.schedule("AAPL")
        tracked = scheduler.tracked("AAPL")

        await step(scheduler, clock, 0)
        assert tracked.consecutive_failures == 1
        assert tracked.interval == 30.0
        await step(scheduler, clock, 30)
        assert tracked.interval == 60.0
        await step(scheduler, clock, 60)
        assert tracked.state == SymbolState.PAUSED
        assert tracked.paused_until == clock.time() + 30
        assert len(source.calls) == 3

        await step(scheduler, clock, 29)
        assert len(source.calls) == 3
        assert tracked.state == SymbolState.PAUSED

        await step(scheduler, clock, 1)
        assert len(source.calls) == 4
        assert tracked.state == SymbolState.IDLE
        assert tracked.consecutive_failures == 0
        assert tracked.interval == 15.0
        assert [event.kind for event in notifier.events] == [
            SchedulerEventKind.ERROR,
            SchedulerEventKind.ERROR,
            SchedulerEventKind.PAUSED,
            SchedulerEventKind.RESUMED,
        ]

    asyncio.run(scenario())


def test_manual_resume_clears_pause() -> None:
    async def scenario() -> None:
        clock = ManualClock()
        source = ScriptedSource(clock, {"AAPL": [ParseError("bad")]})
        scheduler, _, _, _ = build_scheduler(source, clock, polling={"max_retries": 1})
        scheduler.schedule("AAPL")

        await step(scheduler, clock, 0)
        assert scheduler.tracked("AAPL").state == SymbolState.PAUSED
        assert scheduler.refresh("AAPL") is False

        assert scheduler.resume("AAPL") is True
        await step(scheduler, clock, 0)
        assert scheduler.tracked("AAPL").state == SymbolState.IDLE
        assert len(source.calls) == 2

    asyncio.run(scenario())


def test_backoff_is_capped_at_max_interval() -> None:
    async def scenario() -> None:
        clock = ManualClock()
        source = ScriptedSource(clock, {"AAPL": [ParseError(str(n)) for n in range(4)]})
        scheduler, _, _, _ = build_scheduler(
            source,
            clock,
            polling={"auto_pause_on_error": False, "max_interval": 40, "min_interval": 5},
        )
        scheduler.schedule("AAPL")
        tracked = scheduler.tracked("AAPL")

        intervals = []
        for _ in range(3):
            await step(scheduler, clock, tracked.due_at - clock.time())
            intervals.append(tracked.interval)

        assert intervals == [30.0, 40.0, 40.0]
        assert tracked.consecutive_failures == 3
        assert tracked.state == SymbolState.IDLE

    asyncio.run(scenario())


def test_rate_limited_tick_keeps_interval_and_failure_count() -> None:
    async def scenario() -> None:
        clock = ManualClock()
        source = ScriptedSource(clock)
        scheduler, _, _, _ = build_scheduler(source, clock, api={"max_requests_per_minute": 1})
        scheduler.schedule("AAPL")
        scheduler.schedule("MSFT")

        await step(scheduler, clock, 0)

        throttled = scheduler.tracked("MSFT")
        assert source.calls == ["AAPL"]
        assert throttled.consecutive_failures == 0
        assert throttled.interval == 15.0
        assert throttled.due_at == clock.time() + 15.0
        assert throttled.state == SymbolState.IDLE
        assert "requests per minute" in throttled.last_error

    asyncio.run(scenario())


def test_throttled_retry_still_counts_network_failure() -> None:
    async def scenario() -> None:
        clock = ManualClock()
        source = ScriptedSource(clock, {"AAPL": [NetworkError("down") for _ in range(10)]})
        scheduler, _, notifier, _ = build_scheduler(
            source,
            clock,
            api={"max_requests_per_minute": 1},
            polling={"max_retries": 3},
        )
        scheduler.schedule("AAPL")
        tracked = scheduler.tracked("AAPL")

        failures = []
        for _ in range(3):
            await step(scheduler, clock, 120)
            failures.append(tracked.consecutive_failures)

        assert failures == [1, 2, 3]
        assert tracked.state == SymbolState.PAUSED
        assert "down" in tracked.last_error
        assert len(source.calls) == 3
        assert notifier.events[-1].kind == SchedulerEventKind.PAUSED

    asyncio.run(scenario())


def test_cancelled_symbol_discards_in_flight_result() -> None:
    async def scenario() -> None:
        clock = ManualClock()
        source = BlockingSource(clock)
        scheduler, cache, _, _ = build_scheduler(source, clock)
        seen = []
        scheduler.add_snapshot_listener(seen.append)
        scheduler.schedule("AAPL")

        scheduler.run_pending()
        while not source.calls:
            await asyncio.sleep(0)
        assert scheduler.cancel("AAPL") is True
        source.release()
        await scheduler.drain()

        assert cache.get_quote("AAPL") is None
        assert seen == []
        assert scheduler.next_due() is None

    asyncio.run(scenario())


def test_readded_symbol_waits_for_outstanding_fetch() -> None:
    async def scenario() -> None:
        clock = ManualClock()
        source = BlockingSource(clock)
        scheduler, cache, _, _ = build_scheduler(source, clock)
        scheduler.schedule("AAPL")

        scheduler.run_pending()
        while not source.calls:
            await asyncio.sleep(0)
        scheduler.cancel("AAPL")
        scheduler.schedule("AAPL")

        assert scheduler.run_pending() == []
        assert source.calls == ["AAPL"]
        assert scheduler.is_in_flight("AAPL") is True

        source.release()
        await scheduler.drain()
        assert cache.get_quote("AAPL") is None
        assert scheduler.next_due() == clock.time()

        assert await step(scheduler, clock, 0) == ["AAPL"]
        assert source.calls == ["AAPL", "AAPL"]
        assert cache.get_quote("AAPL") is not None

    asyncio.run(scenario())


def test_failure_of_one_symbol_does_not_affect_another() -> None:
    async def scenario() -> None:
        clock = ManualClock()
        source = ScriptedSource(clock, {"BAD": [ParseError("x") for _ in range(5)]})
        scheduler, cache, _, _ = build_scheduler(source, clock, polling={"max_retries": 1})
        scheduler.schedule("BAD")
        scheduler.schedule("GOOD")

        await step(scheduler, clock, 0)

        assert scheduler.tracked("BAD").state == SymbolState.PAUSED
        assert scheduler.tracked("GOOD").state == SymbolState.IDLE
        assert cache.get_quote("GOOD") is not None

    asyncio.run(scenario())


def test_late_stale_response_does_not_overwrite_cache() -> None:
    async def scenario() -> None:
        clock = ManualClock()
        old = make_snapshot(price=90.0, as_of=datetime.datetime(2025, 3, 3, 14, 0, tzinfo=datetime.UTC))
        source = ScriptedSource(clock, {"AAPL": [120.0, old]})
        scheduler, cache, _, _ = build_scheduler(source, clock)
        seen = []
        scheduler.add_snapshot_listener(seen.append)
        scheduler.schedule("AAPL")

        await step(scheduler, clock, 0)
        await step(scheduler, clock, 15)

        assert cache.get_quote("AAPL").price == 120.0
        assert [snapshot.price for snapshot in seen] == [120.0]
        assert scheduler.tracked("AAPL").last_snapshot.price == 120.0

    asyncio.run(scenario())


def test_hidden_host_suspends_ticks_and_keeps_due_time() -> None:
    async def scenario() -> None:
        clock = ManualClock()
        source = ScriptedSource(clock)
        scheduler, _, _, _ = build_scheduler(
            source, clock, polling={"pause_on_hidden": True, "resume_on_visible": True}
        )
        scheduler.schedule("AAPL")
        due_at = scheduler.tracked("AAPL").due_at

        scheduler.set_visible(False)
        assert await step(scheduler, clock, 60) == []
        assert source.calls == []
        assert scheduler.tracked("AAPL").due_at == due_at

        scheduler.set_visible(True)
        assert await step(scheduler, clock, 0) == ["AAPL"]

    asyncio.run(scenario())


def test_visibility_is_ignored_unless_configured() -> None:
    clock = ManualClock()
    scheduler, _, _, _ = build_scheduler(ScriptedSource(clock), clock)
    scheduler.set_visible(False)
    assert scheduler.suspended is False


def test_adaptive_interval_follows_session() -> None:
    clock = ManualClock()
    scheduler, _, _, _ = build_scheduler(ScriptedSource(clock), clock)
    assert scheduler.adaptive_interval(MarketSession.OPEN) == 15.0
    assert scheduler.adaptive_interval(MarketSession.AFTER_HOURS) == 60.0
    assert scheduler.adaptive_interval(MarketSession.WEEKEND) == 60.0

    clock.set(datetime.datetime(2025, 3, 8, 16, 0, tzinfo=datetime.UTC))
    assert scheduler.adaptive_interval() == 60.0


def test_adaptive_interval_is_clamped_and_can_be_disabled() -> None:
    clock = ManualClock()
    clamped, _, _, _ = build_scheduler(
        ScriptedSource(clock), clock, polling={"market_hours_interval": 1, "min_interval": 5}
    )
    assert clamped.adaptive_interval(MarketSession.OPEN) == 5.0

    fixed, _, _, _ = build_scheduler(
        ScriptedSource(clock), clock, polling={"adaptive_polling": False}
    )
    assert fixed.adaptive_interval(MarketSession.OPEN) == 30.0


def test_symbol_updates_are_published() -> None:
    async def scenario() -> None:
        clock = ManualClock()
        scheduler, _, _, hub = build_scheduler(ScriptedSource(clock), clock)
        updates = []
        hub.subscribe_symbols(updates.append)
        scheduler.schedule("AAPL")

        await step(scheduler, clock, 0)

        assert [update.state for update in updates] == [SymbolState.LOADING, SymbolState.SUCCESS]
        assert updates[-1].last_snapshot.symbol == "AAPL"

    asyncio.run(scenario())


def test_run_forever_stops_on_event() -> None:
    async def scenario() -> None:
        clock = ManualClock()
        source = ScriptedSource(clock)
        scheduler, _, _, _ = build_scheduler(source, clock)
        scheduler.schedule("AAPL")
        stop = asyncio.Event()
        deadline = clock.time() + 60

        async def stopper() -> None:
            while clock.time() < deadline:
                await asyncio.sleep(0)
            stop.set()

        await asyncio.gather(scheduler.run_forever(stop, poll=1.0), stopper())
        assert len(source.calls) >= 3

    asyncio.run(scenario())
