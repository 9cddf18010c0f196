from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from services.common import create_schema, dispose_engines, get_session_factory, lifespan_session
from services.ledger_service.app.errors import InvalidStatusTransition
from services.ledger_service.app.models import Base, InventoryLedgerEvent
from services.ledger_service.app.status import (
    LedgerStatus,
    StatusSweeper,
    advance_status,
    age_in_days,
    claimable_cutoff,
    compute_status,
    ensure_operator_transition,
)

NOW = datetime(2024, 6, 20, 8, 30, tzinfo=timezone.utc)


def test_age_counts_whole_days_from_utc_midnight() -> None:
    assert age_in_days(date(2024, 6, 20), NOW) == 0
    assert age_in_days(date(2024, 6, 13), NOW) == 7
    assert age_in_days(date(2024, 6, 14), datetime(2024, 6, 20, 23, 59)) == 6


def test_compute_status_thresholds() -> None:
    assert compute_status(NOW.date() - timedelta(days=6), 5, now=NOW) is LedgerStatus.WAITING
    assert compute_status(NOW.date() - timedelta(days=7), 5, now=NOW) is LedgerStatus.CLAIMABLE
    assert compute_status(NOW.date() - timedelta(days=7), 0, now=NOW) is LedgerStatus.RESOLVED
    assert compute_status(NOW.date() - timedelta(days=2), 0, now=NOW) is LedgerStatus.WAITING
    assert compute_status(NOW.date() - timedelta(days=2), 5, now=NOW, claimable_after_days=1) is LedgerStatus.CLAIMABLE


def test_advance_status_never_demotes_or_touches_operator_states() -> None:
    assert advance_status("WAITING", LedgerStatus.CLAIMABLE) is LedgerStatus.CLAIMABLE
    assert advance_status("CLAIMABLE", LedgerStatus.WAITING) is LedgerStatus.CLAIMABLE
    assert advance_status("RESOLVED", LedgerStatus.CLAIMABLE) is LedgerStatus.RESOLVED
    assert advance_status("CLAIMED", LedgerStatus.RESOLVED) is LedgerStatus.CLAIMED
    assert advance_status("PAID", LedgerStatus.WAITING) is LedgerStatus.PAID


def test_operator_transitions() -> None:
    ensure_operator_transition("CLAIMABLE", LedgerStatus.CLAIMED)
    ensure_operator_transition("CLAIMED", LedgerStatus.PAID)
    with pytest.raises(InvalidStatusTransition):
        ensure_operator_transition("WAITING", LedgerStatus.CLAIMED)
    with pytest.raises(InvalidStatusTransition):
        ensure_operator_transition("CLAIMABLE", LedgerStatus.PAID)
    with pytest.raises(InvalidStatusTransition):
        ensure_operator_transition("CLAIMABLE", LedgerStatus.RESOLVED)


def test_claimable_cutoff_is_a_calendar_date() -> None:
    assert claimable_cutoff(NOW) == date(2024, 6, 13)
    assert claimable_cutoff(datetime(2024, 6, 20, 0, 0)) == date(2024, 6, 13)


def _event(**overrides) -> InventoryLedgerEvent:
    values = {
        "event_date": date(2024, 6, 1),
        "fnsku": "X001",
        "asin": "B001",
        "sku": "SKU-1",
        "product_title": "Widget",
        "event_type": "Shipments",
        "reference_id": "REF-1",
        "quantity": -3,
        "fulfillment_center": "PHX7",
        "reconciled_quantity": 0,
        "unreconciled_quantity": 3,
        "country": "US",
        "raw_timestamp": NOW,
        "status": "WAITING",
    }
    values.update(overrides)
    return InventoryLedgerEvent(**values)


@pytest.mark.asyncio
async def test_sweep_promotes_forward_and_is_idempotent(database_url: str) -> None:
    await create_schema(database_url, Base.metadata)
    session_factory = get_session_factory(database_url)
    try:
        async with lifespan_session(session_factory) as session:
            session.add_all(
                [
                    _event(fnsku="OLD-WAITING", event_date=date(2024, 6, 13)),
                    _event(fnsku="YOUNG-WAITING", event_date=date(2024, 6, 14)),
                    _event(fnsku="OLD-ZERO", event_date=date(2024, 6, 1), unreconciled_quantity=0),
                    _event(fnsku="RECONCILED", status="CLAIMABLE", unreconciled_quantity=0),
                    _event(fnsku="STILL-OPEN", status="CLAIMABLE", unreconciled_quantity=2),
                    _event(fnsku="CLAIMED", status="CLAIMED", unreconciled_quantity=0),
                    _event(fnsku="PAID", status="PAID", unreconciled_quantity=0),
                ]
            )

        sweeper = StatusSweeper(session_factory, clock=lambda: NOW)
        first = await sweeper.sweep()
        assert first.waiting_to_claimable == 1
        assert first.claimable_to_resolved == 1
        assert first.updated_count == 2

        second = await sweeper.sweep()
        assert second.updated_count == 0

        async with lifespan_session(session_factory) as session:
            rows = (await session.execute(select(InventoryLedgerEvent))).scalars().all()
        statuses = {row.fnsku: row.status for row in rows}
        assert statuses == {
            "OLD-WAITING": "CLAIMABLE",
            "YOUNG-WAITING": "WAITING",
            "OLD-ZERO": "WAITING",
            "RECONCILED": "RESOLVED",
            "STILL-OPEN": "CLAIMABLE",
            "CLAIMED": "CLAIMED",
            "PAID": "PAID",
        }
    finally:
        await dispose_engines()
