#!/usr/bin/env python3
"""Daily inventory ledger sync: pull yesterday's report, sweep statuses, print a summary."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from dataclasses import asdict
from datetime import datetime, time, timedelta, timezone
from time import perf_counter
from typing import Any

import httpx

from services.common import (
    ServiceSettings,
    close_redis_connections,
    configure_logging,
    configure_tracing,
    create_schema,
    dispose_engines,
    get_session_factory,
    lifespan_session,
    resolve_database_url,
    resolve_redis,
)
from services.ledger_service.app.events import LedgerCheckpointPublisher
from services.ledger_service.app.locking import SyncLock
from services.ledger_service.app.main import DEFAULT_DATABASE_URL, build_reports_client
from services.ledger_service.app.models import Base
from services.ledger_service.app.normalizer import Clock, utcnow
from services.ledger_service.app.orchestrator import LedgerSyncOrchestrator
from services.ledger_service.app.repository import InventoryLedgerRepository
from services.ledger_service.app.services import LedgerService

logger = logging.getLogger("scripts.ledger.daily_sync")


def _parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Sync the inventory ledger report and update event statuses")
    parser.add_argument(
        "--start",
        type=_parse_timestamp,
        default=None,
        help="Report window start, ISO-8601 (default: yesterday 00:00 UTC)",
    )
    parser.add_argument(
        "--end",
        type=_parse_timestamp,
        default=None,
        help="Report window end, ISO-8601 (default: today 00:00 UTC)",
    )
    parser.add_argument(
        "--skip-sync",
        action="store_true",
        help="Only run the status sweep and statistics, without requesting a report",
    )
    parser.add_argument(
        "--purge-resolved",
        action="store_true",
        help="Delete RESOLVED events older than SERVICE_RESOLVED_RETENTION_DAYS",
    )
    return parser.parse_args(argv)


def default_window(now: datetime) -> tuple[datetime, datetime]:
    """Yesterday 00:00 UTC through today 00:00 UTC."""

    today = datetime.combine(now.astimezone(timezone.utc).date(), time.min, tzinfo=timezone.utc)
    return today - timedelta(days=1), today


async def run_daily_sync(
    settings: ServiceSettings,
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    skip_sync: bool = False,
    purge_resolved: bool = False,
    transport: httpx.AsyncBaseTransport | None = None,
    clock: Clock = utcnow,
) -> dict[str, Any]:
    started = perf_counter()
    default_start, default_end = default_window(clock())
    start = start or default_start
    end = end or default_end
    if end <= start:
        raise ValueError("--end must be after --start")

    database_url = resolve_database_url(settings, DEFAULT_DATABASE_URL)
    await create_schema(database_url, Base.metadata)
    session_factory = get_session_factory(database_url)
    publisher = LedgerCheckpointPublisher()
    reports_client = build_reports_client(settings, publisher, transport=transport)
    orchestrator = LedgerSyncOrchestrator(
        client=reports_client,
        session_factory=session_factory,
        publisher=publisher,
        lock=SyncLock(resolve_redis(settings), ttl_seconds=settings.sync_lock_ttl_seconds),
        max_wait=settings.report_max_wait_seconds,
        poll_interval=settings.report_poll_interval_seconds,
        claimable_after_days=settings.claimable_after_days,
        clock=clock,
    )

    summary: dict[str, Any] = {
        "dataStartTime": start.isoformat(),
        "dataEndTime": end.isoformat(),
    }
    try:
        if skip_sync:
            summary["sync"] = None
        else:
            logger.info(
                "Step 1: syncing inventory ledger report",
                extra={"context": {"dataStartTime": summary["dataStartTime"], "dataEndTime": summary["dataEndTime"]}},
            )
            summary["sync"] = asdict(await orchestrator.run_sync(start, end))

        logger.info("Step 2: updating event statuses")
        summary["statuses"] = asdict(await orchestrator.run_status_sweep())

        async with lifespan_session(session_factory) as session:
            service = LedgerService(InventoryLedgerRepository(session), clock=clock)
            if purge_resolved:
                logger.info(
                    "Step 3: purging resolved events",
                    extra={"context": {"retentionDays": settings.resolved_retention_days}},
                )
                summary["purged"] = await service.purge_resolved(
                    older_than_days=settings.resolved_retention_days
                )
            summary["stats"] = asdict(await service.stats())
    finally:
        await reports_client.close()

    summary["durationSeconds"] = round(perf_counter() - started, 3)
    logger.info("Daily inventory ledger sync completed", extra={"context": {"durationSeconds": summary["durationSeconds"]}})
    return summary


async def main_async(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    settings = ServiceSettings(app_name="ledger-daily-sync", enable_metrics=False)
    configure_logging(settings)
    configure_tracing(None, settings)
    try:
        summary = await run_daily_sync(
            settings,
            start=args.start,
            end=args.end,
            skip_sync=args.skip_sync,
            purge_resolved=args.purge_resolved,
        )
    finally:
        await dispose_engines()
        await close_redis_connections()

    print(json.dumps(summary, indent=2, sort_keys=True, default=str))
    return 0


def main() -> None:
    try:
        exit_code = asyncio.run(main_async())
    except Exception as exc:
        logger.exception("Daily inventory ledger sync failed")
        print(json.dumps({"error": str(exc), "stage": getattr(exc, "stage", None)}))
        exit_code = 1
    raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
