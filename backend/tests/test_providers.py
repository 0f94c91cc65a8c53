import asyncio
import datetime
import json
from unittest.mock import patch
from urllib.error import HTTPError, URLError

import pytest
from fakes import ScriptedSource

from tickersync.cache import QuoteCache
from tickersync.clock import ManualClock
from tickersync.config.settings import CacheSettings, ProviderSettings
from tickersync.errors import HttpError, NetworkError, ParseError
from tickersync.providers.finnhub import FinnhubQuoteSource, parse_candles, parse_quote
from tickersync.providers.mock import RandomWalkQuoteSource
from tickersync.providers.selector import FallbackQuoteSource


class FakeResponse:
    def __init__(self, payload) -> None:
        self._body = payload if isinstance(payload, str) else json.dumps(payload)

    def read(self) -> bytes:
        return self._body.encode("utf-8")

    def __enter__(self) -> "FakeResponse":
        return self

    def __exit__(self, *exc_info) -> None:
        return None


def finnhub_source(cache: QuoteCache | None = None) -> FinnhubQuoteSource:
    return FinnhubQuoteSource(ProviderSettings(finnhub_api_key="test-key"), cache=cache)


def test_parse_quote_reads_finnhub_fields() -> None:
    snapshot = parse_quote(
        "AAPL", {"c": 190.5, "pc": 188.0, "t": 1741014000, "v": 1200}, name="Apple Inc"
    )

    assert snapshot.price == 190.5
    assert snapshot.previous_close == 188.0
    assert snapshot.volume == 1200.0
    assert snapshot.name == "Apple Inc"
    assert snapshot.provider == "finnhub"
    assert snapshot.as_of == datetime.datetime(2025, 3, 3, 15, 0, tzinfo=datetime.UTC)


@pytest.mark.parametrize(
    "payload",
    [
        [],
        {},
        {"c": 190.5, "pc": 188.0},
        {"c": "190.5", "pc": 188.0, "t": 1741014000},
    ],
)
def test_parse_quote_rejects_malformed_payloads(payload) -> None:
    with pytest.raises(ParseError):
        parse_quote("AAPL", payload)


def test_parse_candles_sorts_rows_and_handles_no_data() -> None:
    payload = {
        "s": "ok",
        "t": [1741132800, 1741046400],
        "o": [11.0, 10.0],
        "h": [12.0, 11.0],
        "l": [10.5, 9.5],
        "c": [11.5, 10.8],
        "v": [100, 200],
    }

    candles = parse_candles("AAPL", payload)

    assert [candle.close for candle in candles] == [10.8, 11.5]
    assert parse_candles("AAPL", {"s": "no_data"}) == []
    with pytest.raises(ParseError):
        parse_candles("AAPL", {"s": "error"})


def test_finnhub_requires_api_key() -> None:
    with pytest.raises(ValueError):
        FinnhubQuoteSource(ProviderSettings())


def test_finnhub_fetch_quote_caches_company_name() -> None:
    clock = ManualClock()
    cache = QuoteCache(CacheSettings(), clock)
    source = finnhub_source(cache)
    requested: list[str] = []

    def respond(request, timeout):
        requested.append(request.full_url)
        if "/stock/profile2" in request.full_url:
            return FakeResponse({"name": "Apple Inc"})
        return FakeResponse({"c": 190.5, "pc": 188.0, "t": 1741014000})

    with patch("tickersync.providers.finnhub.urlopen", side_effect=respond):
        first = asyncio.run(source.fetch_quote("AAPL"))
        second = asyncio.run(source.fetch_quote("AAPL"))

    assert first.name == "Apple Inc"
    assert second.name == "Apple Inc"
    assert sum("/stock/profile2" in url for url in requested) == 1
    assert all("token=test-key" in url for url in requested)


def test_finnhub_maps_transport_failures() -> None:
    source = finnhub_source()
    http_error = HTTPError("https://finnhub.io/api/v1/quote", 429, "Too Many Requests", None, None)

    with patch("tickersync.providers.finnhub.urlopen", side_effect=http_error):
        with pytest.raises(HttpError) as excinfo:
            asyncio.run(source.fetch_quote("AAPL"))
    assert excinfo.value.status_code == 429

    with patch("tickersync.providers.finnhub.urlopen", side_effect=URLError("no route")):
        with pytest.raises(NetworkError):
            asyncio.run(source.fetch_quote("AAPL"))

    with patch("tickersync.providers.finnhub.urlopen", return_value=FakeResponse("<html>")):
        with pytest.raises(ParseError):
            asyncio.run(source.fetch_quote("AAPL"))


def test_fallback_moves_to_next_source_on_fetch_errors() -> None:
    clock = ManualClock()
    primary = ScriptedSource(clock, {"AAPL": [NetworkError("down")]})
    secondary = ScriptedSource(clock, default_price=123.0)
    source = FallbackQuoteSource([primary, secondary])

    snapshot = asyncio.run(source.fetch_quote("AAPL"))

    assert snapshot.price == 123.0
    assert primary.calls == ["AAPL"]
    assert secondary.calls == ["AAPL"]


def test_fallback_raises_last_error_when_all_fail() -> None:
    clock = ManualClock()
    primary = ScriptedSource(clock, {"AAPL": [NetworkError("down")]})
    secondary = ScriptedSource(clock, {"AAPL": [ParseError("garbage")]})

    with pytest.raises(ParseError):
        asyncio.run(FallbackQuoteSource([primary, secondary]).fetch_quote("AAPL"))


def test_fallback_routes_index_symbols_to_index_source() -> None:
    clock = ManualClock()
    stocks = ScriptedSource(clock)
    indices = ScriptedSource(clock, default_price=5000.0)
    source = FallbackQuoteSource([stocks], index_symbols=["^GSPC"], index_source=indices)

    async def scenario() -> None:
        await source.fetch_quote("^GSPC")
        await source.fetch_quote("AAPL")

    asyncio.run(scenario())

    assert indices.calls == ["^GSPC"]
    assert stocks.calls == ["AAPL"]


def test_random_walk_source_is_seeded_and_stays_positive() -> None:
    clock = ManualClock()
    first = RandomWalkQuoteSource(clock, seed=7, start_prices={"AAPL": 100.0})
    second = RandomWalkQuoteSource(clock, seed=7, start_prices={"AAPL": 100.0})

    async def walk(source: RandomWalkQuoteSource) -> list[float]:
        return [(await source.fetch_quote("AAPL")).price for _ in range(5)]

    prices = asyncio.run(walk(first))

    assert prices == asyncio.run(walk(second))
    assert all(price > 0 for price in prices)


def test_random_walk_source_can_simulate_failures() -> None:
    source = RandomWalkQuoteSource(ManualClock(), error_rate=1.0, seed=1)
    with pytest.raises(NetworkError):
        asyncio.run(source.fetch_quote("AAPL"))


def test_random_walk_candles_skip_weekends() -> None:
    source = RandomWalkQuoteSource(ManualClock(), seed=3)
    candles = asyncio.run(
        source.fetch_candles("AAPL", datetime.date(2025, 3, 3), datetime.date(2025, 3, 9))
    )
    assert len(candles) == 5
