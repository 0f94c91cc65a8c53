from __future__ import annotations

import asyncio
import datetime
import json
import logging
import socket
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from tickersync.cache import META_PREFIX, QuoteCache
from tickersync.config.settings import ProviderSettings
from tickersync.errors import HttpError, NetworkError, ParseError
from tickersync.schemas.quote import Candle, Snapshot

logger = logging.getLogger(__name__)

_QUOTE_PATH = "/api/v1/quote"
_CANDLE_PATH = "/api/v1/stock/candle"
_PROFILE_PATH = "/api/v1/stock/profile2"


def _number(payload: dict, key: str, symbol: str) -> float:
    value = payload.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ParseError(f"field {key!r} missing or not numeric", symbol=symbol)
    return float(value)


def parse_quote(symbol: str, payload: object, name: str | None = None) -> Snapshot:
    if not isinstance(payload, dict):
        raise ParseError("quote payload is not an object", symbol=symbol)
    if payload.get("c") is None and payload.get("pc") is None:
        raise ParseError("quote payload carries no prices", symbol=symbol)

    timestamp = payload.get("t")
    if isinstance(timestamp, (int, float)) and timestamp > 0:
        as_of = datetime.datetime.fromtimestamp(timestamp, tz=datetime.UTC)
    else:
        raise ParseError("quote payload has no timestamp", symbol=symbol)

    volume = payload.get("v")
    return Snapshot(
        symbol=symbol,
        price=_number(payload, "c", symbol),
        previous_close=_number(payload, "pc", symbol),
        volume=float(volume) if isinstance(volume, (int, float)) else 0.0,
        name=name,
        as_of=as_of,
        provider="finnhub",
    )


def parse_candles(symbol: str, payload: object) -> list[Candle]:
    if not isinstance(payload, dict):
        raise ParseError("candle payload is not an object", symbol=symbol)
    if payload.get("s") == "no_data":
        return []
    if payload.get("s") != "ok":
        raise ParseError(f"unexpected candle status {payload.get('s')!r}", symbol=symbol)

    columns = [payload.get(key) or [] for key in ("t", "o", "h", "l", "c", "v")]
    if not all(isinstance(column, list) for column in columns):
        raise ParseError("candle columns are not lists", symbol=symbol)

    candles: list[Candle] = []
    for ts_value, open_, high, low, close, volume in zip(*columns):
        if not isinstance(ts_value, (int, float)):
            continue
        candles.append(
            Candle(
                timestamp=datetime.datetime.fromtimestamp(int(ts_value), tz=datetime.UTC),
                open=float(open_),
                high=float(high),
                low=float(low),
                close=float(close),
                volume=float(volume or 0),
            )
        )
    candles.sort(key=lambda candle: candle.timestamp)
    return candles


class FinnhubQuoteSource:
    name = "finnhub"

    def __init__(
        self,
        settings: ProviderSettings,
        cache: QuoteCache | None = None,
        timeout: float = 10.0,
    ) -> None:
        if not settings.finnhub_api_key:
            raise ValueError("Finnhub API key is not configured")
        self._api_key = settings.finnhub_api_key
        self._base_url = settings.finnhub_base_url.rstrip("/")
        self._cache = cache
        self._timeout = timeout

    def attach_cache(self, cache: QuoteCache) -> None:
        self._cache = cache

    def _build_url(self, path: str, params: dict[str, str]) -> str:
        return f"{self._base_url}{path}?{urlencode({**params, 'token': self._api_key})}"

    def _get_json(self, path: str, params: dict[str, str], symbol: str) -> object:
        request = Request(self._build_url(path, params))
        try:
            with urlopen(request, timeout=self._timeout) as response:
                body = response.read().decode("utf-8")
        except HTTPError as exc:
            raise HttpError(exc.code, symbol=symbol) from exc
        except (URLError, TimeoutError, socket.timeout) as exc:
            raise NetworkError(str(exc), symbol=symbol) from exc

        try:
            return json.loads(body)
        except json.JSONDecodeError as exc:
            raise ParseError(f"invalid JSON: {exc.msg}", symbol=symbol) from exc

    def _fetch_name(self, symbol: str) -> str:
        try:
            payload = self._get_json(_PROFILE_PATH, {"symbol": symbol}, symbol)
        except (HttpError, NetworkError, ParseError) as exc:
            logger.debug("No company profile for %s: %s", symbol, exc)
            return ""
        name = payload.get("name") if isinstance(payload, dict) else None
        return name if isinstance(name, str) else ""

    async def _company_name(self, symbol: str) -> str | None:
        # The cache is only touched from the event loop thread.
        key = f"{META_PREFIX}name:{symbol}"
        cached = self._cache.get(key) if self._cache is not None else None
        if cached is not None:
            return cached or None
        name = await asyncio.to_thread(self._fetch_name, symbol)
        if self._cache is not None:
            self._cache.put(key, name)
        return name or None

    def _fetch_candles(self, symbol: str, start: datetime.date, end: datetime.date) -> list[Candle]:
        start_ts = int(
            datetime.datetime.combine(start, datetime.time.min, tzinfo=datetime.UTC).timestamp()
        )
        end_ts = int(
            datetime.datetime.combine(end, datetime.time.max, tzinfo=datetime.UTC).timestamp()
        )
        payload = self._get_json(
            _CANDLE_PATH,
            {"symbol": symbol, "resolution": "D", "from": str(start_ts), "to": str(end_ts)},
            symbol,
        )
        return parse_candles(symbol, payload)

    async def fetch_quote(self, symbol: str) -> Snapshot:
        payload = await asyncio.to_thread(self._get_json, _QUOTE_PATH, {"symbol": symbol}, symbol)
        name = await self._company_name(symbol)
        return parse_quote(symbol, payload, name=name)

    async def fetch_candles(
        self, symbol: str, start: datetime.date, end: datetime.date
    ) -> list[Candle]:
        return await asyncio.to_thread(self._fetch_candles, symbol, start, end)
