import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from services.common import ServiceSettings, dispose_engines
from services.ledger_service.app.main import create_app

SYNC_BODY = {"dataStartTime": "2024-06-01T00:00:00Z", "dataEndTime": "2024-06-19T00:00:00Z"}


def _run(coro):
    return asyncio.run(coro)


def _prepare_app(tmp_path, api, **overrides) -> FastAPI:
    values = {
        "app_name": "Ledger Service Test",
        "enable_metrics": False,
        "enable_tracing": False,
        "database_url": f"sqlite+aiosqlite:///{tmp_path / 'ledger_api.db'}",
        "reports_api_url": "https://reports.test",
        "report_poll_interval_seconds": 0.01,
    }
    values.update(overrides)
    return create_app(ServiceSettings(**values), reports_transport=api.transport)


def _document(report_builder, make_row) -> bytes:
    today = datetime.now(timezone.utc).date()
    old = (today - timedelta(days=20)).isoformat()
    recent = (today - timedelta(days=2)).isoformat()
    return report_builder(
        [
            make_row(**{"Date": old, "Fulfillment Center": "PHX7"}),
            make_row(
                **{
                    "Date": recent,
                    "FNSKU": "X002",
                    "ASIN": "B002",
                    "MSKU": "SKU-2",
                    "Event Type": "Adjustments",
                    "Reference ID": "REF-2",
                    "Quantity": "-2",
                    "Fulfillment Center": "",
                    "Unreconciled Quantity": "2",
                }
            ),
        ]
    ).encode("utf-8")


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with app.router.lifespan_context(app):
        yield


def test_sync_and_dashboard_flow(tmp_path, fake_reports_api, report_builder, make_row) -> None:
    api = fake_reports_api(statuses=["IN_PROGRESS", "DONE"], document=_document(report_builder, make_row))
    app = _prepare_app(tmp_path, api)

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                sync_resp = await client.post("/inventory-ledger/sync", json=SYNC_BODY)
                assert sync_resp.status_code == 200
                assert sync_resp.json() == {
                    "reportId": "R1",
                    "processedCount": 2,
                    "newEventsCount": 2,
                    "updatedEventsCount": 0,
                    "rowCount": 2,
                    "invalidRowCount": 0,
                }
                assert api.created[0]["dataStartTime"] == "2024-06-01T00:00:00Z"

                listing = await client.get("/inventory-ledger", params={"fnsku": "x00", "limit": 1})
                assert listing.status_code == 200
                page = listing.json()
                assert page["total"] == 2
                assert page["totalPages"] == 2
                assert len(page["items"]) == 1

                adjustments = await client.get("/inventory-ledger", params={"eventType": ["Adjustments"]})
                assert [item["fnsku"] for item in adjustments.json()["items"]] == ["X002"]

                stats = await client.get("/inventory-ledger/stats")
                assert stats.json() == {
                    "totalClaimableUnits": 3,
                    "totalEstimatedValue": 0.0,
                    "totalWaiting": 2,
                    "totalResolved": 0,
                    "totalClaimed": 0,
                    "totalPaid": 0,
                    "claimableEventsCount": 1,
                    "waitingEventsCount": 1,
                }

                claimable = await client.get("/inventory-ledger/claimable")
                assert [item["fnsku"] for item in claimable.json()] == ["X001"]
                claimable_id = claimable.json()[0]["id"]
                event_date = claimable.json()[0]["eventDate"]

                waiting = await client.get("/inventory-ledger", params={"status": "WAITING"})
                waiting_id = waiting.json()["items"][0]["id"]

                text = await client.get(f"/inventory-ledger/{claimable_id}/claim-text")
                assert text.status_code == 200
                assert text.json()["claimText"] == (
                    f"FNSKU X001 (ASIN B001) lost in FC PHX7 on {event_date}. "
                    "Quantity unreconciled: 3. Please review and reimburse."
                )

                waiting_text = await client.get(f"/inventory-ledger/{waiting_id}/claim-text")
                assert "lost in FC Unknown" in waiting_text.json()["claimText"]

                rejected = await client.post(f"/inventory-ledger/{waiting_id}/claim")
                assert rejected.status_code == 409

                early_paid = await client.post(f"/inventory-ledger/{claimable_id}/paid")
                assert early_paid.status_code == 409

                claimed = await client.post(f"/inventory-ledger/{claimable_id}/claim")
                assert claimed.status_code == 200
                assert claimed.json()["status"] == "CLAIMED"

                paid = await client.post(f"/inventory-ledger/{claimable_id}/paid")
                assert paid.status_code == 200
                assert paid.json()["status"] == "PAID"

                sweep = await client.post("/inventory-ledger/update-statuses")
                assert sweep.status_code == 200
                assert sweep.json()["updatedCount"] == 0

                missing = await client.get("/inventory-ledger/does-not-exist/claim-text")
                assert missing.status_code == 404

                runs = await client.get("/inventory-ledger/sync-runs")
                assert runs.status_code == 200
                assert runs.json()[0]["status"] == "succeeded"
                assert runs.json()[0]["recordsAdded"] == 2

    _run(body())
    _run(dispose_engines())


def test_sync_rejects_inverted_window(tmp_path, fake_reports_api) -> None:
    api = fake_reports_api()
    app = _prepare_app(tmp_path, api)

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                response = await client.post(
                    "/inventory-ledger/sync",
                    json={"dataStartTime": "2024-06-19T00:00:00Z", "dataEndTime": "2024-06-01T00:00:00Z"},
                )
                assert response.status_code == 422

    _run(body())
    _run(dispose_engines())
    assert api.created == []


def test_upstream_failures_map_to_gateway_errors(tmp_path, fake_reports_api) -> None:
    fatal_api = fake_reports_api(statuses=["FATAL"])
    fatal_app = _prepare_app(tmp_path, fatal_api)

    async def fatal_body() -> None:
        async with lifespan(fatal_app):
            transport = ASGITransport(app=fatal_app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                response = await client.post("/inventory-ledger/sync", json=SYNC_BODY)
                assert response.status_code == 502
                assert response.json()["detail"]["stage"] == "poll"

                runs = await client.get("/inventory-ledger/sync-runs")
                assert runs.json()[0]["status"] == "failed"
                assert runs.json()[0]["failedStage"] == "poll"

    _run(fatal_body())
    _run(dispose_engines())

    slow_api = fake_reports_api(statuses=["IN_PROGRESS"])
    slow_dir = tmp_path / "slow"
    slow_dir.mkdir()
    slow_app = _prepare_app(
        slow_dir,
        slow_api,
        report_max_wait_seconds=0.05,
        report_poll_interval_seconds=0.02,
    )

    async def slow_body() -> None:
        async with lifespan(slow_app):
            transport = ASGITransport(app=slow_app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                response = await client.post("/inventory-ledger/sync", json=SYNC_BODY)
                assert response.status_code == 504

    _run(slow_body())
    _run(dispose_engines())
