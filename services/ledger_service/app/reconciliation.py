"""Reconcile normalized ledger events against persisted state."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.common import lifespan_session

from .metrics import LEDGER_RECONCILE_EVENTS_TOTAL, normalise_outcome
from .models import InventoryLedgerEvent
from .normalizer import Clock, LedgerEventData, utcnow
from .repository import InventoryLedgerRepository
from .status import DEFAULT_CLAIMABLE_AFTER_DAYS, advance_status, compute_status

logger = logging.getLogger(__name__)

ELIGIBLE_EVENT_TYPES = frozenset({"Shipments", "WhseTransfers", "Adjustments", "Receipts"})
MUTABLE_FIELDS = (
    "quantity",
    "reconciled_quantity",
    "unreconciled_quantity",
    "disposition",
    "product_title",
)


@dataclass(slots=True)
class ReconcileResult:
    processed_count: int = 0
    new_events_count: int = 0
    updated_events_count: int = 0
    failed_count: int = 0


def is_eligible(event: LedgerEventData) -> bool:
    """Identified units that left inventory and are still unreconciled upstream."""

    return (
        event.is_valid
        and event.event_type in ELIGIBLE_EVENT_TYPES
        and event.quantity < 0
        and event.unreconciled_quantity > 0
    )


def filter_eligible(events: Iterable[LedgerEventData]) -> list[LedgerEventData]:
    return [event for event in events if is_eligible(event)]


def has_material_changes(existing: InventoryLedgerEvent, incoming: LedgerEventData) -> bool:
    return any(getattr(existing, name) != getattr(incoming, name) for name in MUTABLE_FIELDS)


class ReconciliationEngine:
    """Create-or-update ledger events by natural key, one transaction per event."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        claimable_after_days: int = DEFAULT_CLAIMABLE_AFTER_DAYS,
        clock: Clock = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._claimable_after_days = claimable_after_days
        self._clock = clock

    async def reconcile(self, events: Sequence[LedgerEventData]) -> ReconcileResult:
        eligible = filter_eligible(events)
        skipped = len(events) - len(eligible)
        if skipped:
            LEDGER_RECONCILE_EVENTS_TOTAL.labels(outcome="ineligible").inc(skipped)
        logger.info(
            "Filtered eligible ledger events",
            extra={"context": {"total": len(events), "eligible": len(eligible)}},
        )

        result = ReconcileResult()
        for event in eligible:
            try:
                outcome = await self._reconcile_one(event)
            except SQLAlchemyError as exc:
                result.failed_count += 1
                LEDGER_RECONCILE_EVENTS_TOTAL.labels(outcome="failed").inc()
                logger.error(
                    "Failed to reconcile ledger event",
                    extra={
                        "context": {
                            "fnsku": event.fnsku,
                            "asin": event.asin,
                            "eventType": event.event_type,
                            "eventDate": event.event_date.isoformat(),
                            "referenceId": event.reference_id,
                            "error": str(exc),
                        }
                    },
                )
                continue

            LEDGER_RECONCILE_EVENTS_TOTAL.labels(outcome=normalise_outcome(outcome)).inc()
            result.processed_count += 1
            if outcome == "created":
                result.new_events_count += 1
            elif outcome == "updated":
                result.updated_events_count += 1
        return result

    async def _reconcile_one(self, event: LedgerEventData) -> str:
        computed = compute_status(
            event.event_date,
            event.unreconciled_quantity,
            now=self._clock(),
            claimable_after_days=self._claimable_after_days,
        )
        async with lifespan_session(self._session_factory) as session:
            repository = InventoryLedgerRepository(session)
            existing = await repository.find_by_natural_key(event)
            if existing is None:
                created = await repository.create_event(event, status=computed.value)
                logger.debug(
                    "Created ledger event",
                    extra={"context": {"eventId": created.id, "fnsku": created.fnsku, "status": created.status}},
                )
                return "created"
            if not has_material_changes(existing, event):
                return "unchanged"
            status = advance_status(existing.status, computed)
            await repository.refresh_event(existing, event, status=status.value)
            logger.debug(
                "Updated ledger event",
                extra={"context": {"eventId": existing.id, "fnsku": existing.fnsku, "status": existing.status}},
            )
            return "updated"
