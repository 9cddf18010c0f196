"""Dashboard reads and operator actions over persisted ledger events."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Sequence

from sqlalchemy.exc import SQLAlchemyError

from .errors import PersistenceError
from .metrics import LEDGER_STATUS_TRANSITIONS_TOTAL
from .models import InventoryLedgerEvent, LedgerSyncLog
from .normalizer import Clock, utcnow
from .repository import InventoryLedgerRepository
from .status import LedgerStatus, ensure_operator_transition


@dataclass(slots=True)
class LedgerEventPage:
    items: list[InventoryLedgerEvent]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


@dataclass(slots=True)
class LedgerStats:
    total_claimable_units: int
    total_estimated_value: float
    total_waiting: int
    total_resolved: int
    total_claimed: int
    total_paid: int
    claimable_events_count: int
    waiting_events_count: int


def generate_claim_text(event: InventoryLedgerEvent) -> str:
    quantity = abs(event.unreconciled_quantity)
    center = event.fulfillment_center or "Unknown"
    return (
        f"FNSKU {event.fnsku} (ASIN {event.asin}) lost in FC {center} on "
        f"{event.event_date.isoformat()}. Quantity unreconciled: {quantity}. "
        "Please review and reimburse."
    )


class LedgerService:
    """High-level ledger queries used by the HTTP surface and the daily script."""

    def __init__(self, repository: InventoryLedgerRepository, *, clock: Clock = utcnow) -> None:
        self.repository = repository
        self._clock = clock

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
        page: int = 1,
        limit: int = 50,
    ) -> LedgerEventPage:
        items, total = await self.repository.list_events(
            statuses=statuses,
            event_types=event_types,
            fulfillment_centers=fulfillment_centers,
            date_from=date_from,
            date_to=date_to,
            fnsku=fnsku,
            asin=asin,
            sku=sku,
            limit=limit,
            offset=(page - 1) * limit,
        )
        return LedgerEventPage(items=items, total=total, page=page, limit=limit)

    async def stats(self) -> LedgerStats:
        summary = await self.repository.status_summary()

        def count(status: LedgerStatus) -> int:
            return summary.get(status.value, (0, 0))[0]

        def units(status: LedgerStatus) -> int:
            return summary.get(status.value, (0, 0))[1]

        return LedgerStats(
            total_claimable_units=units(LedgerStatus.CLAIMABLE),
            # Unit cost data is not ingested, so no value estimate is available.
            total_estimated_value=0.0,
            total_waiting=units(LedgerStatus.WAITING),
            total_resolved=count(LedgerStatus.RESOLVED),
            total_claimed=count(LedgerStatus.CLAIMED),
            total_paid=count(LedgerStatus.PAID),
            claimable_events_count=count(LedgerStatus.CLAIMABLE),
            waiting_events_count=count(LedgerStatus.WAITING),
        )

    async def claimable_events(self, *, limit: int = 100) -> list[InventoryLedgerEvent]:
        return await self.repository.list_claimable(limit=limit)

    async def mark_claimed(self, event: InventoryLedgerEvent) -> InventoryLedgerEvent:
        return await self._operator_transition(event, LedgerStatus.CLAIMED)

    async def mark_paid(self, event: InventoryLedgerEvent) -> InventoryLedgerEvent:
        return await self._operator_transition(event, LedgerStatus.PAID)

    async def _operator_transition(
        self, event: InventoryLedgerEvent, target: LedgerStatus
    ) -> InventoryLedgerEvent:
        previous = event.status
        ensure_operator_transition(previous, target)
        try:
            updated = await self.repository.set_status(event, target.value)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not mark event {event.id} as {target.value}: {exc}") from exc
        LEDGER_STATUS_TRANSITIONS_TOTAL.labels(source=previous, target=target.value).inc()
        return updated

    async def purge_resolved(self, *, older_than_days: int) -> int:
        cutoff: datetime = self._clock() - timedelta(days=older_than_days)
        try:
            return await self.repository.purge_resolved_before(cutoff)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Retention purge failed: {exc}", stage="purge") from exc

    async def recent_sync_logs(self, *, limit: int = 20) -> list[LedgerSyncLog]:
        return await self.repository.list_sync_logs(limit=limit)
