"""HTTP routes for ledger sync, status sweeps and the reimbursement dashboard."""

from __future__ import annotations

import logging
from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ..dependencies import get_ledger_service, get_orchestrator
from ..errors import (
    InvalidStatusTransition,
    LedgerSyncError,
    PersistenceError,
    ReportTimeoutError,
    SyncInProgressError,
)
from ..models import InventoryLedgerEvent
from ..orchestrator import LedgerSyncOrchestrator
from ..schemas import (
    ClaimTextResponse,
    LedgerEventListResponse,
    LedgerEventResponse,
    LedgerStatsResponse,
    StatusSweepResponse,
    SyncLogResponse,
    SyncRequest,
    SyncRunResponse,
)
from ..services import LedgerService, generate_claim_text

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/inventory-ledger", tags=["inventory-ledger"])


def _sync_error_status(exc: LedgerSyncError) -> int:
    if isinstance(exc, SyncInProgressError):
        return status.HTTP_409_CONFLICT
    if isinstance(exc, ReportTimeoutError):
        return status.HTTP_504_GATEWAY_TIMEOUT
    if isinstance(exc, PersistenceError):
        return status.HTTP_500_INTERNAL_SERVER_ERROR
    return status.HTTP_502_BAD_GATEWAY


def _sync_error(exc: LedgerSyncError) -> HTTPException:
    return HTTPException(
        status_code=_sync_error_status(exc),
        detail={"stage": exc.stage, "message": str(exc)},
    )


async def _get_event_or_404(service: LedgerService, event_id: str) -> InventoryLedgerEvent:
    event = await service.repository.get_event(event_id)
    if event is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Ledger event not found")
    return event


@router.post("/sync", response_model=SyncRunResponse)
async def sync_ledger(
    payload: SyncRequest,
    orchestrator: LedgerSyncOrchestrator = Depends(get_orchestrator),
) -> SyncRunResponse:
    try:
        run = await orchestrator.run_sync(payload.data_start_time, payload.data_end_time)
    except LedgerSyncError as exc:
        raise _sync_error(exc) from exc
    return SyncRunResponse.model_validate(run)


@router.post("/update-statuses", response_model=StatusSweepResponse)
async def update_statuses(
    orchestrator: LedgerSyncOrchestrator = Depends(get_orchestrator),
) -> StatusSweepResponse:
    try:
        result = await orchestrator.run_status_sweep()
    except LedgerSyncError as exc:
        raise _sync_error(exc) from exc
    return StatusSweepResponse.model_validate(result)


@router.get("", response_model=LedgerEventListResponse)
async def list_ledger_events(
    status_filter: list[str] = Query(default=[], alias="status"),
    event_type: list[str] = Query(default=[], alias="eventType"),
    fulfillment_center: list[str] = Query(default=[], alias="fulfillmentCenter"),
    date_from: date | None = Query(default=None, alias="dateFrom"),
    date_to: date | None = Query(default=None, alias="dateTo"),
    fnsku: str | None = None,
    asin: str | None = None,
    sku: str | None = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=500),
    service: LedgerService = Depends(get_ledger_service),
) -> LedgerEventListResponse:
    result = await service.list_events(
        statuses=status_filter,
        event_types=event_type,
        fulfillment_centers=fulfillment_center,
        date_from=date_from,
        date_to=date_to,
        fnsku=fnsku,
        asin=asin,
        sku=sku,
        page=page,
        limit=limit,
    )
    return LedgerEventListResponse(
        items=[LedgerEventResponse.model_validate(event) for event in result.items],
        total=result.total,
        page=result.page,
        limit=result.limit,
        total_pages=result.total_pages,
    )


@router.get("/stats", response_model=LedgerStatsResponse)
async def ledger_stats(service: LedgerService = Depends(get_ledger_service)) -> LedgerStatsResponse:
    stats = await service.stats()
    return LedgerStatsResponse.model_validate(stats, from_attributes=True)


@router.get("/claimable", response_model=list[LedgerEventResponse])
async def claimable_events(
    limit: int = Query(default=100, ge=1, le=1000),
    service: LedgerService = Depends(get_ledger_service),
) -> list[LedgerEventResponse]:
    events = await service.claimable_events(limit=limit)
    return [LedgerEventResponse.model_validate(event) for event in events]


@router.get("/sync-runs", response_model=list[SyncLogResponse])
async def sync_runs(
    limit: int = Query(default=20, ge=1, le=200),
    service: LedgerService = Depends(get_ledger_service),
) -> list[SyncLogResponse]:
    logs = await service.recent_sync_logs(limit=limit)
    return [SyncLogResponse.model_validate(log) for log in logs]


@router.get("/{event_id}/claim-text", response_model=ClaimTextResponse)
async def claim_text(
    event_id: str,
    service: LedgerService = Depends(get_ledger_service),
) -> ClaimTextResponse:
    event = await _get_event_or_404(service, event_id)
    return ClaimTextResponse(
        claim_text=generate_claim_text(event),
        event=LedgerEventResponse.model_validate(event),
    )


@router.post("/{event_id}/claim", response_model=LedgerEventResponse)
async def mark_claimed(
    event_id: str,
    service: LedgerService = Depends(get_ledger_service),
) -> LedgerEventResponse:
    event = await _get_event_or_404(service, event_id)
    try:
        updated = await service.mark_claimed(event)
    except InvalidStatusTransition as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except PersistenceError as exc:
        await service.repository.session.rollback()
        raise _sync_error(exc) from exc
    logger.info("Ledger event claimed", extra={"context": {"eventId": event_id}})
    return LedgerEventResponse.model_validate(updated)


@router.post("/{event_id}/paid", response_model=LedgerEventResponse)
async def mark_paid(
    event_id: str,
    service: LedgerService = Depends(get_ledger_service),
) -> LedgerEventResponse:
    event = await _get_event_or_404(service, event_id)
    try:
        updated = await service.mark_paid(event)
    except InvalidStatusTransition as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except PersistenceError as exc:
        await service.repository.session.rollback()
        raise _sync_error(exc) from exc
    logger.info("Ledger event marked paid", extra={"context": {"eventId": event_id}})
    return LedgerEventResponse.model_validate(updated)
