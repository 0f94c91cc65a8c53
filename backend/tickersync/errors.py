from __future__ import annotations


class MarketDataError(Exception):
    """Base class for every failure a quote fetch can surface."""

    retryable = False
    counts_as_failure = True

    def __init__(self, message: str, symbol: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.symbol = symbol

    def __str__(self) -> str:
        if self.symbol:
            return f"{self.symbol}: {self.message}"
        return self.message


class NetworkError(MarketDataError):
    """Connectivity failure or timeout."""

    retryable = True


class HttpError(MarketDataError):
    retryable = True

    def __init__(self, status_code: int, message: str | None = None, symbol: str | None = None) -> None:
        super().__init__(message or f"HTTP {status_code}", symbol=symbol)
        self.status_code = status_code


class ParseError(MarketDataError):
    """Upstream payload could not be decoded into a snapshot."""


class ValidationError(MarketDataError):
    """Snapshot decoded fine but its numbers are outside the configured bounds."""


class RateLimited(MarketDataError):
    """Local throttling. Not retried and not counted as a failure."""

    counts_as_failure = False


class InvalidInputError(ValueError):
    """User supplied symbol, alert or watchlist change was rejected."""
