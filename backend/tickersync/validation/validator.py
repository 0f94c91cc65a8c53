from __future__ import annotations

import math
import re

from tickersync.config.settings import AlertSettings, ValidationSettings, WatchlistSettings
from tickersync.errors import InvalidInputError
from tickersync.schemas.alert import AlertDirection
from tickersync.schemas.quote import Snapshot
from tickersync.schemas.validation import ValidationIssue, ValidationResult


def _result(issues: list[ValidationIssue]) -> ValidationResult:
    status = "ok"
    if any(issue.level == "fail" for issue in issues):
        status = "fail"
    elif issues:
        status = "warn"
    return ValidationResult(status=status, issues=issues)


def validate_snapshot(snapshot: Snapshot, bounds: ValidationSettings) -> ValidationResult:
    issues: list[ValidationIssue] = []

    for field_name in ("price", "previous_close", "volume"):
        value = getattr(snapshot, field_name)
        if not math.isfinite(value):
            issues.append(
                ValidationIssue(
                    field=field_name,
                    level="fail",
                    message=f"Field '{field_name}' must be a valid number",
                )
            )
    if issues:
        return _result(issues)

    if not bounds.price_min <= snapshot.price <= bounds.price_max:
        issues.append(
            ValidationIssue(
                field="price",
                level="fail",
                message=f"Price must be between {bounds.price_min} and {bounds.price_max}",
            )
        )

    if snapshot.volume < bounds.volume_min:
        issues.append(
            ValidationIssue(
                field="volume",
                level="fail",
                message=f"Volume must be at least {bounds.volume_min}",
            )
        )

    if abs(snapshot.change_percent) > bounds.change_percent_max:
        issues.append(
            ValidationIssue(
                field="change_percent",
                level="fail",
                message=f"Change percentage seems invalid: {snapshot.change_percent:.2f}%",
            )
        )

    if snapshot.previous_close <= 0:
        issues.append(
            ValidationIssue(
                field="previous_close",
                level="warn",
                message="Previous close missing, change cannot be computed",
            )
        )

    return _result(issues)


def normalize_symbol(
    symbol: str, watchlist: WatchlistSettings, extra_allowed: set[str] | None = None
) -> str:
    if not symbol or not isinstance(symbol, str):
        raise InvalidInputError("Symbol is required and must be a string")
    cleaned = symbol.strip().upper()
    if extra_allowed and cleaned in extra_allowed:
        return cleaned
    if not re.fullmatch(watchlist.symbol_pattern, cleaned):
        raise InvalidInputError(f"Invalid symbol: {symbol!r}")
    return cleaned


def validate_alert(
    threshold: float,
    direction: AlertDirection,
    created_price: float | None,
    existing_for_symbol: int,
    limits: AlertSettings,
) -> None:
    if not isinstance(threshold, (int, float)) or not math.isfinite(threshold):
        raise InvalidInputError("Alert threshold must be a valid number")
    if not limits.min_threshold <= threshold <= limits.max_threshold:
        raise InvalidInputError(
            f"Alert threshold must be between {limits.min_threshold} and {limits.max_threshold}"
        )
    if direction == AlertDirection.CHANGE and not (created_price and created_price > 0):
        raise InvalidInputError("A change alert needs a current price to measure from")
    if existing_for_symbol >= limits.max_alerts_per_symbol:
        raise InvalidInputError(
            f"At most {limits.max_alerts_per_symbol} alerts per symbol are allowed"
        )
