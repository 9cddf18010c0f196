from dataclasses import replace
from datetime import date, datetime, timezone

import pytest
from prometheus_client import REGISTRY
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from services.common import create_schema, dispose_engines, get_session_factory, lifespan_session
from services.ledger_service.app.models import Base, InventoryLedgerEvent
from services.ledger_service.app.normalizer import LedgerEventData
from services.ledger_service.app.reconciliation import (
    ReconciliationEngine,
    filter_eligible,
    is_eligible,
)
from services.ledger_service.app.repository import InventoryLedgerRepository

NOW = datetime(2024, 6, 20, 8, 30, tzinfo=timezone.utc)


def _data(**overrides) -> LedgerEventData:
    values = dict(
        event_date=date(2024, 6, 1),
        fnsku="X001",
        asin="B001",
        sku="SKU-1",
        product_title="Widget",
        event_type="Shipments",
        reference_id="REF-1",
        quantity=-3,
        fulfillment_center="PHX7",
        disposition="SELLABLE",
        reason=None,
        reconciled_quantity=0,
        unreconciled_quantity=3,
        country="US",
        raw_timestamp=NOW,
        store_id=None,
    )
    values.update(overrides)
    return LedgerEventData(**values)


def _metric(outcome: str) -> float:
    return REGISTRY.get_sample_value("ledger_reconcile_events_total", {"outcome": outcome}) or 0.0


async def _engine(database_url: str) -> tuple[ReconciliationEngine, object]:
    await create_schema(database_url, Base.metadata)
    session_factory = get_session_factory(database_url)
    return ReconciliationEngine(session_factory, clock=lambda: NOW), session_factory


async def _stored(session_factory) -> list[InventoryLedgerEvent]:
    async with lifespan_session(session_factory) as session:
        result = await session.execute(select(InventoryLedgerEvent).order_by(InventoryLedgerEvent.fnsku))
        return list(result.scalars())


def test_eligibility_rules() -> None:
    assert is_eligible(_data())
    assert is_eligible(_data(event_type="Receipts"))
    assert not is_eligible(_data(event_type="CustomerReturns"))
    assert not is_eligible(_data(quantity=2))
    assert not is_eligible(_data(unreconciled_quantity=0))
    assert not is_eligible(_data(fnsku=""))
    assert filter_eligible([_data(), _data(asin="")]) == [_data()]


@pytest.mark.asyncio
async def test_create_then_unchanged_then_update(database_url: str) -> None:
    engine, session_factory = await _engine(database_url)
    try:
        first = await engine.reconcile([_data(), _data(fnsku="X002", event_date=date(2024, 6, 18))])
        assert (first.processed_count, first.new_events_count, first.updated_events_count) == (2, 2, 0)

        stored = await _stored(session_factory)
        assert [(event.fnsku, event.status) for event in stored] == [
            ("X001", "CLAIMABLE"),
            ("X002", "WAITING"),
        ]

        unchanged = await engine.reconcile([_data(), _data(fnsku="X002", event_date=date(2024, 6, 18))])
        assert (unchanged.processed_count, unchanged.new_events_count, unchanged.updated_events_count) == (2, 0, 0)

        updated = await engine.reconcile([_data(unreconciled_quantity=1, reconciled_quantity=2)])
        assert (updated.processed_count, updated.new_events_count, updated.updated_events_count) == (1, 0, 1)

        stored = await _stored(session_factory)
        assert len(stored) == 2
        assert stored[0].unreconciled_quantity == 1
        assert stored[0].status == "CLAIMABLE"
    finally:
        await dispose_engines()


@pytest.mark.asyncio
async def test_null_reference_matches_existing_event(database_url: str) -> None:
    engine, session_factory = await _engine(database_url)
    try:
        await engine.reconcile([_data(reference_id=None, fulfillment_center=None)])
        again = await engine.reconcile([_data(reference_id=None, fulfillment_center=None, product_title="Renamed")])

        assert again.updated_events_count == 1
        assert len(await _stored(session_factory)) == 1
    finally:
        await dispose_engines()


@pytest.mark.asyncio
async def test_update_keeps_operator_status(database_url: str) -> None:
    engine, session_factory = await _engine(database_url)
    try:
        await engine.reconcile([_data()])
        async with lifespan_session(session_factory) as session:
            repository = InventoryLedgerRepository(session)
            existing = await repository.find_by_natural_key(_data())
            await repository.set_status(existing, "CLAIMED")

        result = await engine.reconcile([_data(unreconciled_quantity=1)])

        assert result.updated_events_count == 1
        assert (await _stored(session_factory))[0].status == "CLAIMED"
    finally:
        await dispose_engines()


@pytest.mark.asyncio
async def test_invalid_and_ineligible_rows_are_not_persisted(database_url: str) -> None:
    engine, session_factory = await _engine(database_url)
    ineligible_before = _metric("ineligible")
    try:
        result = await engine.reconcile(
            [_data(), _data(fnsku=""), _data(fnsku="X003", event_type="CustomerReturns", quantity=1)]
        )

        assert result.processed_count == 1
        assert [event.fnsku for event in await _stored(session_factory)] == ["X001"]
        assert _metric("ineligible") - ineligible_before == 2
    finally:
        await dispose_engines()


@pytest.mark.asyncio
async def test_single_row_failure_does_not_abort_batch(database_url: str, monkeypatch: pytest.MonkeyPatch) -> None:
    engine, session_factory = await _engine(database_url)
    original = InventoryLedgerRepository.create_event

    async def flaky_create(self, data, *, status):
        if data.fnsku == "X-BAD":
            raise OperationalError("INSERT INTO inventory_ledger_events", {}, Exception("database is locked"))
        return await original(self, data, status=status)

    monkeypatch.setattr(InventoryLedgerRepository, "create_event", flaky_create)
    failed_before = _metric("failed")
    try:
        result = await engine.reconcile([_data(), replace(_data(), fnsku="X-BAD"), _data(fnsku="X002")])

        assert result.processed_count == 2
        assert result.new_events_count == 2
        assert result.failed_count == 1
        assert [event.fnsku for event in await _stored(session_factory)] == ["X001", "X002"]
        assert _metric("failed") - failed_before == 1
    finally:
        await dispose_engines()
