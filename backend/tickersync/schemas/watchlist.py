from __future__ import annotations

from pydantic import BaseModel


class WatchlistRequest(BaseModel):
    symbol: str
