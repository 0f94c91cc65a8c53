from __future__ import annotations

import datetime
from zoneinfo import ZoneInfo

from tickersync.config.settings import MarketSettings
from tickersync.schemas.status import MarketSession, MarketStatus

_MESSAGES = {
    MarketSession.OPEN: "Market is open",
    MarketSession.PRE_MARKET: "Pre-market trading",
    MarketSession.AFTER_HOURS: "After-hours trading",
    MarketSession.CLOSED: "Market is closed",
    MarketSession.HOLIDAY: "Market holiday",
    MarketSession.WEEKEND: "Market closed for the weekend",
}


def _localize(now: datetime.datetime, market: MarketSettings) -> datetime.datetime:
    if now.tzinfo is None:
        now = now.replace(tzinfo=datetime.UTC)
    return now.astimezone(ZoneInfo(market.timezone))


def is_trading_day(day: datetime.date, market: MarketSettings) -> bool:
    return day.isoweekday() in market.trading_days and day not in market.holidays


def session_at(now: datetime.datetime, market: MarketSettings) -> MarketSession:
    local = _localize(now, market)
    today = local.date()
    if today in market.holidays:
        return MarketSession.HOLIDAY
    if local.isoweekday() not in market.trading_days:
        return MarketSession.WEEKEND

    current = local.time()
    if market.pre_market_start <= current < market.open:
        return MarketSession.PRE_MARKET
    if market.open <= current < market.close:
        return MarketSession.OPEN
    if market.close <= current < market.after_hours_end:
        return MarketSession.AFTER_HOURS
    return MarketSession.CLOSED


def market_status(now: datetime.datetime, market: MarketSettings) -> MarketStatus:
    session = session_at(now, market)
    return MarketStatus(session=session, as_of=now, message=_MESSAGES[session])
