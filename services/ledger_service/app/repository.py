"""Data access helpers for the ledger service."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Sequence

from sqlalchemy import Select, and_, delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import InventoryLedgerEvent, LedgerSyncLog
from .normalizer import LedgerEventData


def _nullable_equals(column, value: Any):
    if value is None:
        return column.is_(None)
    return column == value


class InventoryLedgerRepository:
    """Persistence utilities for ledger events and sync logs."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    # Reconciliation ---------------------------------------------------------------------

    async def find_by_natural_key(self, data: LedgerEventData) -> InventoryLedgerEvent | None:
        stmt = select(InventoryLedgerEvent).where(
            InventoryLedgerEvent.fnsku == data.fnsku,
            InventoryLedgerEvent.asin == data.asin,
            InventoryLedgerEvent.event_date == data.event_date,
            InventoryLedgerEvent.event_type == data.event_type,
            _nullable_equals(InventoryLedgerEvent.reference_id, data.reference_id),
            _nullable_equals(InventoryLedgerEvent.fulfillment_center, data.fulfillment_center),
        )
        result = await self.session.execute(stmt.limit(1))
        return result.scalars().first()

    async def create_event(self, data: LedgerEventData, *, status: str) -> InventoryLedgerEvent:
        event = InventoryLedgerEvent(status=status, **data.as_columns())
        self.session.add(event)
        await self.session.flush()
        await self.session.refresh(event, attribute_names=["created_at", "updated_at"])
        return event

    async def refresh_event(
        self,
        event: InventoryLedgerEvent,
        data: LedgerEventData,
        *,
        status: str,
    ) -> InventoryLedgerEvent:
        for column, value in data.as_columns().items():
            setattr(event, column, value)
        event.status = status
        await self.session.flush()
        await self.session.refresh(event, attribute_names=["updated_at"])
        return event

    # Status sweep -----------------------------------------------------------------------

    async def promote_waiting_to_claimable(self, *, cutoff: date) -> int:
        result = await self.session.execute(
            update(InventoryLedgerEvent)
            .where(
                InventoryLedgerEvent.status == "WAITING",
                InventoryLedgerEvent.event_date <= cutoff,
                InventoryLedgerEvent.unreconciled_quantity > 0,
            )
            .values(status="CLAIMABLE", updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def resolve_reconciled_claimables(self) -> int:
        result = await self.session.execute(
            update(InventoryLedgerEvent)
            .where(
                InventoryLedgerEvent.status == "CLAIMABLE",
                InventoryLedgerEvent.unreconciled_quantity == 0,
            )
            .values(status="RESOLVED", updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def purge_resolved_before(self, cutoff: datetime) -> int:
        result = await self.session.execute(
            delete(InventoryLedgerEvent)
            .where(
                InventoryLedgerEvent.status == "RESOLVED",
                InventoryLedgerEvent.updated_at < cutoff,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    # Dashboard reads and operator actions -----------------------------------------------

    async def get_event(self, event_id: str) -> InventoryLedgerEvent | None:
        return await self.session.get(InventoryLedgerEvent, event_id)

    async def list_events(
        self,
        *,
        statuses: Sequence[str] = (),
        event_types: Sequence[str] = (),
        fulfillment_centers: Sequence[str] = (),
        date_from: date | None = None,
        date_to: date | None = None,
        fnsku: str | None = None,
        asin: str | None = None,
        sku: str | None = None,
        limit: int,
        offset: int,
    ) -> tuple[list[InventoryLedgerEvent], int]:
        filters = []
        if statuses:
            filters.append(InventoryLedgerEvent.status.in_(list(statuses)))
        if event_types:
            filters.append(InventoryLedgerEvent.event_type.in_(list(event_types)))
        if fulfillment_centers:
            filters.append(InventoryLedgerEvent.fulfillment_center.in_(list(fulfillment_centers)))
        if date_from is not None:
            filters.append(InventoryLedgerEvent.event_date >= date_from)
        if date_to is not None:
            filters.append(InventoryLedgerEvent.event_date <= date_to)
        if fnsku:
            filters.append(InventoryLedgerEvent.fnsku.icontains(fnsku))
        if asin:
            filters.append(InventoryLedgerEvent.asin.icontains(asin))
        if sku:
            filters.append(InventoryLedgerEvent.sku.icontains(sku))

        base: Select[tuple[InventoryLedgerEvent]] = select(InventoryLedgerEvent).order_by(
            InventoryLedgerEvent.event_date.desc(), InventoryLedgerEvent.created_at.desc()
        )
        count: Select[tuple[int]] = select(func.count(InventoryLedgerEvent.id))
        if filters:
            clause = and_(*filters)
            base = base.where(clause)
            count = count.where(clause)

        total = (await self.session.execute(count)).scalar_one()
        result = await self.session.execute(base.offset(offset).limit(limit))
        return list(result.scalars()), total

    async def list_claimable(self, *, limit: int) -> list[InventoryLedgerEvent]:
        result = await self.session.execute(
            select(InventoryLedgerEvent)
            .where(InventoryLedgerEvent.status == "CLAIMABLE")
            .order_by(InventoryLedgerEvent.event_date.desc())
            .limit(limit)
        )
        return list(result.scalars())

    async def status_summary(self) -> dict[str, tuple[int, int]]:
        """Return ``{status: (event_count, unreconciled_units)}``."""

        result = await self.session.execute(
            select(
                InventoryLedgerEvent.status,
                func.count(InventoryLedgerEvent.id),
                func.coalesce(func.sum(InventoryLedgerEvent.unreconciled_quantity), 0),
            ).group_by(InventoryLedgerEvent.status)
        )
        return {status: (int(count), int(units)) for status, count, units in result.all()}

    async def set_status(self, event: InventoryLedgerEvent, status: str) -> InventoryLedgerEvent:
        event.status = status
        await self.session.flush()
        await self.session.refresh(event, attribute_names=["updated_at"])
        return event

    # Sync logs --------------------------------------------------------------------------

    async def create_sync_log(
        self,
        *,
        sync_type: str,
        data_start_time: datetime,
        data_end_time: datetime,
    ) -> LedgerSyncLog:
        log = LedgerSyncLog(
            sync_type=sync_type,
            data_start_time=data_start_time,
            data_end_time=data_end_time,
            status="running",
        )
        self.session.add(log)
        await self.session.flush()
        await self.session.refresh(log, attribute_names=["created_at"])
        return log

    async def finish_sync_log(
        self,
        log_id: str,
        *,
        status: str,
        completed_at: datetime,
        report_id: str | None = None,
        records_processed: int = 0,
        records_added: int = 0,
        records_updated: int = 0,
        failed_stage: str | None = None,
        error_message: str | None = None,
    ) -> LedgerSyncLog | None:
        log = await self.session.get(LedgerSyncLog, log_id)
        if log is None:
            return None
        log.status = status
        log.completed_at = completed_at
        log.report_id = report_id
        log.records_processed = records_processed
        log.records_added = records_added
        log.records_updated = records_updated
        log.failed_stage = failed_stage
        log.error_message = error_message
        await self.session.flush()
        return log

    async def list_sync_logs(self, *, limit: int) -> list[LedgerSyncLog]:
        result = await self.session.execute(
            select(LedgerSyncLog).order_by(LedgerSyncLog.created_at.desc()).limit(limit)
        )
        return list(result.scalars())
