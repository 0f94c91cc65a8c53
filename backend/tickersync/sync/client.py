from __future__ import annotations

import asyncio
import datetime
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from tickersync.clock import Clock
from tickersync.config.settings import ApiSettings, ValidationSettings
from tickersync.errors import MarketDataError, NetworkError, RateLimited, ValidationError
from tickersync.providers.base import MarketDataSource
from tickersync.schemas.quote import Candle, Snapshot
from tickersync.sync.limiter import SlidingWindowLimiter
from tickersync.validation.validator import validate_snapshot

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RequestClient:
    """Retrying, rate-limited wrapper around a MarketDataSource.

    Network and HTTP failures (timeouts included) are retried with a linear
    delay of ``retry_delay * attempt``. Parse and validation failures are
    raised on the first occurrence. Every attempt takes a slot from the
    shared limiter. When none is left the first attempt fails with
    RateLimited, while a throttled retry re-raises the failure before it.
    """

    def __init__(
        self,
        source: MarketDataSource,
        api: ApiSettings,
        bounds: ValidationSettings,
        clock: Clock,
        limiter: SlidingWindowLimiter | None = None,
    ) -> None:
        self._source = source
        self._api = api
        self._bounds = bounds
        self._clock = clock
        self._limiter = limiter or SlidingWindowLimiter(api.max_requests_per_minute, clock)
        self.attempts = 0

    @property
    def limiter(self) -> SlidingWindowLimiter:
        return self._limiter

    async def fetch(self, symbol: str) -> Snapshot:
        snapshot = await self._call(symbol, lambda: self._source.fetch_quote(symbol))
        result = validate_snapshot(snapshot, self._bounds)
        if result.failed:
            raise ValidationError(result.describe(), symbol=symbol)
        return snapshot

    async def fetch_history(
        self, symbol: str, start: datetime.date, end: datetime.date
    ) -> list[Candle]:
        return await self._call(symbol, lambda: self._source.fetch_candles(symbol, start, end))

    async def _call(self, symbol: str, request: Callable[[], Awaitable[T]]) -> T:
        max_attempts = self._api.retry_attempts
        attempt = 0
        last_error: MarketDataError | None = None
        while True:
            if not self._limiter.try_acquire():
                if last_error is not None:
                    logger.warning(
                        "Retry for %s throttled after %d attempts: %s", symbol, attempt, last_error
                    )
                    raise last_error
                raise RateLimited(
                    f"more than {self._limiter.max_requests} requests per minute", symbol=symbol
                )
            attempt += 1
            self.attempts += 1
            try:
                return await asyncio.wait_for(request(), timeout=self._api.timeout)
            except asyncio.TimeoutError:
                error: MarketDataError = NetworkError(
                    f"request timed out after {self._api.timeout}s", symbol=symbol
                )
            except MarketDataError as exc:
                if not exc.retryable:
                    raise
                error = exc
            last_error = error

            if attempt >= max_attempts:
                logger.warning("Giving up on %s after %d attempts: %s", symbol, attempt, error)
                raise error

            delay = self._api.retry_delay * attempt
            logger.warning(
                "Attempt %d/%d for %s failed (%s); retrying in %.1fs",
                attempt,
                max_attempts,
                symbol,
                error,
                delay,
            )
            await self._clock.sleep(delay)
