from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from tickersync.errors import InvalidInputError, MarketDataError
from tickersync.schemas.alert import Alert, AlertRequest
from tickersync.schemas.quote import CandleSeries
from tickersync.schemas.status import MarketStatus, PortfolioTotals, SymbolUpdate
from tickersync.schemas.watchlist import WatchlistRequest
from tickersync.service import QuoteSyncService

router = APIRouter()


def get_service(request: Request) -> QuoteSyncService:
    return request.app.state.service


def _bad_request(exc: Exception) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail={"message": str(exc)})


def _not_found(what: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{what} not found.")


@router.get("/health")
def health() -> dict:
    return {"status": "ok"}


@router.get("/symbols", response_model=list[SymbolUpdate])
def list_symbols(service: QuoteSyncService = Depends(get_service)) -> list[SymbolUpdate]:
    return service.symbol_updates()


@router.post("/symbols", response_model=SymbolUpdate, status_code=status.HTTP_201_CREATED)
def add_symbol(
    payload: WatchlistRequest, service: QuoteSyncService = Depends(get_service)
) -> SymbolUpdate:
    try:
        return service.add_symbol(payload.symbol)
    except InvalidInputError as exc:
        raise _bad_request(exc) from exc


@router.get("/symbols/{symbol}", response_model=SymbolUpdate)
def get_symbol(symbol: str, service: QuoteSyncService = Depends(get_service)) -> SymbolUpdate:
    try:
        return service.symbol_update(symbol)
    except KeyError as exc:
        raise _not_found(symbol) from exc


@router.delete("/symbols/{symbol}", status_code=status.HTTP_204_NO_CONTENT)
def remove_symbol(symbol: str, service: QuoteSyncService = Depends(get_service)) -> None:
    try:
        service.remove_symbol(symbol)
    except KeyError as exc:
        raise _not_found(symbol) from exc


@router.post("/symbols/{symbol}/refresh")
def refresh_symbol(symbol: str, service: QuoteSyncService = Depends(get_service)) -> dict:
    try:
        return {"scheduled": service.refresh(symbol)}
    except KeyError as exc:
        raise _not_found(symbol) from exc


@router.post("/symbols/{symbol}/resume")
def resume_symbol(symbol: str, service: QuoteSyncService = Depends(get_service)) -> dict:
    try:
        return {"resumed": service.resume(symbol)}
    except KeyError as exc:
        raise _not_found(symbol) from exc


@router.get("/totals", response_model=PortfolioTotals)
def get_totals(service: QuoteSyncService = Depends(get_service)) -> PortfolioTotals:
    return service.totals()


@router.get("/market-status", response_model=MarketStatus)
def get_market_status(service: QuoteSyncService = Depends(get_service)) -> MarketStatus:
    return service.market_status()


@router.get("/alerts", response_model=list[Alert])
def list_alerts(service: QuoteSyncService = Depends(get_service)) -> list[Alert]:
    return service.alerts.all()


@router.post("/alerts", response_model=Alert, status_code=status.HTTP_201_CREATED)
def add_alert(payload: AlertRequest, service: QuoteSyncService = Depends(get_service)) -> Alert:
    try:
        return service.add_alert(payload.symbol, payload.threshold, payload.direction)
    except InvalidInputError as exc:
        raise _bad_request(exc) from exc


@router.delete("/alerts/{alert_id}", response_model=Alert)
def remove_alert(alert_id: str, service: QuoteSyncService = Depends(get_service)) -> Alert:
    try:
        return service.remove_alert(alert_id)
    except KeyError as exc:
        raise _not_found("Alert") from exc


@router.post("/alerts/{alert_id}/acknowledge", response_model=Alert)
def acknowledge_alert(alert_id: str, service: QuoteSyncService = Depends(get_service)) -> Alert:
    try:
        return service.acknowledge_alert(alert_id)
    except KeyError as exc:
        raise _not_found("Alert") from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail={"message": str(exc)}) from exc


@router.get("/history/{symbol}", response_model=CandleSeries)
async def get_history(
    symbol: str,
    days: int = Query(30, ge=1, le=3650),
    service: QuoteSyncService = Depends(get_service),
) -> CandleSeries:
    try:
        return await service.history(symbol, days=days)
    except InvalidInputError as exc:
        raise _bad_request(exc) from exc
    except MarketDataError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY, detail={"message": str(exc)}
        ) from exc
