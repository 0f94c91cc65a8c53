from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from typing import Any, Protocol

from tickersync.schemas.alert import AlertEvent
from tickersync.schemas.status import PortfolioTotals, SchedulerEvent, SymbolUpdate

logger = logging.getLogger(__name__)

SYMBOLS_TOPIC = "symbols"
TOTALS_TOPIC = "totals"
ALERTS_TOPIC = "alerts"


class Notifier(Protocol):
    def notify(self, event: AlertEvent | SchedulerEvent) -> None: ...


class LoggingNotifier:
    def notify(self, event: AlertEvent | SchedulerEvent) -> None:
        if isinstance(event, AlertEvent):
            logger.info(
                "%s price alert (%s %.2f) fired at %.2f",
                event.symbol,
                event.direction.value,
                event.threshold,
                event.price,
            )
        else:
            logger.info("%s scheduler %s %s", event.symbol, event.kind.value, event.error or "")


class EventHub:
    """Fan-out point the presentation layer subscribes to.

    Subscriber errors are logged and never reach the publisher.
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, list[Callable[[Any], None]]] = defaultdict(list)

    def subscribe(self, topic: str, callback: Callable[[Any], None]) -> Callable[[], None]:
        self._subscribers[topic].append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers[topic]:
                self._subscribers[topic].remove(callback)

        return unsubscribe

    def subscribe_symbols(self, callback: Callable[[SymbolUpdate], None]) -> Callable[[], None]:
        return self.subscribe(SYMBOLS_TOPIC, callback)

    def subscribe_totals(self, callback: Callable[[PortfolioTotals], None]) -> Callable[[], None]:
        return self.subscribe(TOTALS_TOPIC, callback)

    def subscribe_alerts(self, callback: Callable[[AlertEvent], None]) -> Callable[[], None]:
        return self.subscribe(ALERTS_TOPIC, callback)

    def publish(self, topic: str, payload: Any) -> None:
        for callback in list(self._subscribers.get(topic, ())):
            try:
                callback(payload)
            except Exception:
                logger.exception("Subscriber %r failed on topic %s", callback, topic)
