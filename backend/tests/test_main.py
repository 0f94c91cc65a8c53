import asyncio
from unittest.mock import patch
from urllib.error import URLError

from tickersync.config.settings import Settings
from tickersync.main import build_service


def test_without_key_indices_are_tracked_from_simulated_quotes() -> None:
    service = build_service(Settings())
    service.start()

    assert "^GSPC" in service.scheduler
    snapshot = asyncio.run(service.client.fetch("^GSPC"))
    assert snapshot.provider == "mock"


def test_finnhub_only_leaves_indices_untracked() -> None:
    service = build_service(Settings(providers={"finnhub_api_key": "test-key"}))

    assert service.start() == ["AAPL", "GOOGL", "MSFT", "TSLA", "AMZN"]
    assert "^GSPC" not in service.scheduler
    assert "^DJI" not in service.scheduler


def test_development_falls_back_to_simulated_quotes() -> None:
    settings = Settings(environment="development", providers={"finnhub_api_key": "test-key"})
    service = build_service(settings)
    service.start()

    assert "^IXIC" in service.scheduler
    with patch("tickersync.providers.finnhub.urlopen", side_effect=URLError("offline")) as urlopen:
        stock = asyncio.run(service.client.fetch("AAPL"))
        index = asyncio.run(service.client.fetch("^IXIC"))

    assert stock.provider == "mock"
    assert index.provider == "mock"
    assert urlopen.call_count == 1
