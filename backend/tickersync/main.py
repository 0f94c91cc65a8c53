from __future__ import annotations

import asyncio
import contextlib
import logging

from fastapi import FastAPI

from tickersync.api.routes import router
from tickersync.clock import SystemClock
from tickersync.config.settings import Settings, load_settings
from tickersync.logging_config import configure_logging
from tickersync.providers.base import MarketDataSource
from tickersync.providers.finnhub import FinnhubQuoteSource
from tickersync.providers.mock import RandomWalkQuoteSource
from tickersync.providers.selector import FallbackQuoteSource
from tickersync.service import QuoteSyncService
from tickersync.storage import KeyValueStore, MemoryKeyValueStore, RedisKeyValueStore

logger = logging.getLogger(__name__)


def build_service(settings: Settings) -> QuoteSyncService:
    """Finnhub when a key is configured, simulated quotes otherwise.

    Finnhub has no index quotes, so index symbols are only tracked when the
    simulated source is in the chain: always without a key, and as a fallback
    in development.
    """
    clock = SystemClock()
    finnhub: FinnhubQuoteSource | None = None
    sources: list[MarketDataSource] = []
    if settings.providers.finnhub_api_key:
        finnhub = FinnhubQuoteSource(settings.providers, timeout=settings.api.timeout)
        sources.append(finnhub)
    else:
        logger.warning("No Finnhub API key configured, serving simulated quotes")

    index_source: MarketDataSource | None = None
    if finnhub is None or settings.environment == "development":
        mock = RandomWalkQuoteSource(clock, error_rate=settings.providers.mock_error_rate)
        sources.append(mock)
        index_source = mock
    source = FallbackQuoteSource(
        sources,
        index_symbols=settings.market.index_symbols.values(),
        index_source=index_source,
    )

    store: KeyValueStore
    if settings.redis_url:
        store = RedisKeyValueStore.from_url(settings.redis_url)
    else:
        store = MemoryKeyValueStore(clock)

    service = QuoteSyncService(
        settings, source, store=store, clock=clock, track_indices=index_source is not None
    )
    if finnhub is not None:
        # company names share the service cache under meta:
        finnhub.attach_cache(service.cache)
    return service


def create_app(settings: Settings | None = None, service: QuoteSyncService | None = None) -> FastAPI:
    settings = settings or load_settings()
    configure_logging(settings.log_level)
    service = service or build_service(settings)

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI):
        stop = asyncio.Event()
        service.start()
        runner = asyncio.create_task(service.run(stop))
        try:
            yield
        finally:
            stop.set()
            await runner

    app = FastAPI(title="tickersync", lifespan=lifespan)
    app.state.service = service
    app.include_router(router)
    return app
