from __future__ import annotations

import logging

from tickersync.clock import Clock
from tickersync.config.settings import AlertSettings
from tickersync.schemas.alert import Alert, AlertDirection, AlertEvent
from tickersync.schemas.quote import Snapshot
from tickersync.validation.validator import validate_alert

logger = logging.getLogger(__name__)


def should_fire(alert: Alert, price: float) -> bool:
    if alert.direction == AlertDirection.ABOVE:
        return price >= alert.threshold
    if alert.direction == AlertDirection.BELOW:
        return price <= alert.threshold
    if not alert.created_price or alert.created_price <= 0:
        return False
    moved = abs((price - alert.created_price) / alert.created_price) * 100
    return moved >= alert.threshold


class AlertEvaluator:
    """Holds the user's one-shot price alerts and fires them against new snapshots."""

    def __init__(self, limits: AlertSettings, clock: Clock) -> None:
        self._limits = limits
        self._clock = clock
        self._alerts: dict[str, Alert] = {}

    def __len__(self) -> int:
        return len(self._alerts)

    def get(self, alert_id: str) -> Alert | None:
        return self._alerts.get(alert_id)

    def all(self) -> list[Alert]:
        return list(self._alerts.values())

    def active(self) -> list[Alert]:
        return [alert for alert in self._alerts.values() if not alert.triggered]

    def for_symbol(self, symbol: str) -> list[Alert]:
        return [alert for alert in self._alerts.values() if alert.symbol == symbol]

    def add(
        self,
        symbol: str,
        threshold: float,
        direction: AlertDirection = AlertDirection.ABOVE,
        created_price: float | None = None,
    ) -> Alert:
        pending = [alert for alert in self.for_symbol(symbol) if not alert.triggered]
        validate_alert(threshold, direction, created_price, len(pending), self._limits)
        alert = Alert(
            symbol=symbol,
            threshold=float(threshold),
            direction=direction,
            created_at=self._clock.now(),
            created_price=created_price,
        )
        self._alerts[alert.id] = alert
        logger.info("Alert %s set for %s (%s %.2f)", alert.id, symbol, direction.value, threshold)
        return alert

    def remove(self, alert_id: str) -> Alert:
        return self._alerts.pop(alert_id)

    def remove_symbol(self, symbol: str) -> int:
        doomed = [alert.id for alert in self.for_symbol(symbol)]
        for alert_id in doomed:
            del self._alerts[alert_id]
        return len(doomed)

    def acknowledge(self, alert_id: str) -> Alert:
        alert = self._alerts[alert_id]
        if not alert.triggered:
            raise ValueError(f"Alert {alert_id} has not fired yet")
        return self._alerts.pop(alert_id)

    def evaluate(self, snapshot: Snapshot) -> list[AlertEvent]:
        events: list[AlertEvent] = []
        for alert in self.for_symbol(snapshot.symbol):
            if alert.triggered or not should_fire(alert, snapshot.price):
                continue
            alert.triggered = True
            alert.triggered_at = self._clock.now()
            alert.triggered_price = snapshot.price
            events.append(
                AlertEvent(
                    alert_id=alert.id,
                    symbol=alert.symbol,
                    threshold=alert.threshold,
                    price=snapshot.price,
                    direction=alert.direction,
                )
            )
        return events

    def dump(self) -> list[dict]:
        return [alert.model_dump(mode="json") for alert in self._alerts.values()]

    def load(self, payload: list[dict] | None) -> int:
        loaded = 0
        for item in payload or []:
            try:
                alert = Alert.model_validate(item)
            except ValueError:
                logger.warning("Skipping unreadable stored alert: %r", item)
                continue
            self._alerts[alert.id] = alert
            loaded += 1
        return loaded
