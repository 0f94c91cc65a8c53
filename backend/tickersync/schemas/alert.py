from __future__ import annotations

import datetime
import enum
import uuid

from pydantic import BaseModel, Field


class AlertDirection(str, enum.Enum):
    ABOVE = "above"
    BELOW = "below"
    CHANGE = "change"


class Alert(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    symbol: str
    threshold: float
    direction: AlertDirection = AlertDirection.ABOVE
    created_at: datetime.datetime
    created_price: float | None = None
    triggered: bool = False
    triggered_at: datetime.datetime | None = None
    triggered_price: float | None = None


class AlertRequest(BaseModel):
    symbol: str
    threshold: float
    direction: AlertDirection = AlertDirection.ABOVE


class AlertEvent(BaseModel):
    alert_id: str
    symbol: str
    threshold: float
    price: float
    direction: AlertDirection
