from __future__ import annotations

import datetime
import enum

from pydantic import BaseModel

from tickersync.schemas.quote import Snapshot


class MarketSession(str, enum.Enum):
    OPEN = "OPEN"
    PRE_MARKET = "PRE_MARKET"
    AFTER_HOURS = "AFTER_HOURS"
    CLOSED = "CLOSED"
    HOLIDAY = "HOLIDAY"
    WEEKEND = "WEEKEND"


class MarketStatus(BaseModel):
    session: MarketSession
    as_of: datetime.datetime
    message: str


class SymbolState(str, enum.Enum):
    IDLE = "IDLE"
    LOADING = "LOADING"
    SUCCESS = "SUCCESS"
    ERROR = "ERROR"
    PAUSED = "PAUSED"


class SymbolUpdate(BaseModel):
    symbol: str
    state: SymbolState
    last_snapshot: Snapshot | None = None
    error: str | None = None
    consecutive_failures: int = 0
    interval: float | None = None
    paused_until: datetime.datetime | None = None


class SchedulerEventKind(str, enum.Enum):
    PAUSED = "PAUSED"
    RESUMED = "RESUMED"
    ERROR = "ERROR"


class SchedulerEvent(BaseModel):
    symbol: str
    kind: SchedulerEventKind
    at: datetime.datetime
    error: str | None = None


class PortfolioTotals(BaseModel):
    total_value: float = 0.0
    total_change: float = 0.0
    change_percent: float = 0.0
    symbol_count: int = 0
    as_of: datetime.datetime | None = None
