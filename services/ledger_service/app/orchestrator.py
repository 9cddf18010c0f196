"""End-to-end ledger sync: submit, wait, download, decode, normalize, reconcile."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from time import perf_counter

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.common import lifespan_session, stage_span

from .errors import LedgerSyncError, PersistenceError
from .events import LedgerCheckpointPublisher
from .locking import SyncLock
from .metrics import LEDGER_SYNC_DURATION_SECONDS, LEDGER_SYNC_FAILURES_TOTAL
from .normalizer import Clock, normalize_row, utcnow
from .reconciliation import ReconciliationEngine
from .report_client import (
    DEFAULT_MAX_WAIT_SECONDS,
    DEFAULT_POLL_INTERVAL_SECONDS,
    INVENTORY_LEDGER_REPORT,
    ReportsClient,
    format_report_time,
)
from .repository import InventoryLedgerRepository
from .status import DEFAULT_CLAIMABLE_AFTER_DAYS, StatusSweeper, StatusSweepResult
from .tabular import decode_payload

logger = logging.getLogger(__name__)

LEDGER_REPORT_OPTIONS = {"aggregatedByTimePeriod": "DAILY"}


@dataclass(slots=True)
class SyncRun:
    report_id: str
    processed_count: int
    new_events_count: int
    updated_events_count: int
    row_count: int = 0
    invalid_row_count: int = 0


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class LedgerSyncOrchestrator:
    """Runs one sync per call; nothing is reconciled until the whole document is decoded."""

    def __init__(
        self,
        *,
        client: ReportsClient,
        session_factory: async_sessionmaker[AsyncSession],
        publisher: LedgerCheckpointPublisher | None = None,
        lock: SyncLock | None = None,
        report_type: str = INVENTORY_LEDGER_REPORT,
        max_wait: float = DEFAULT_MAX_WAIT_SECONDS,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        claimable_after_days: int = DEFAULT_CLAIMABLE_AFTER_DAYS,
        clock: Clock = utcnow,
    ) -> None:
        self._client = client
        self._session_factory = session_factory
        self._publisher = publisher or LedgerCheckpointPublisher()
        self._lock = lock or SyncLock()
        self._report_type = report_type
        self._max_wait = max_wait
        self._poll_interval = poll_interval
        self._clock = clock
        self._engine = ReconciliationEngine(
            session_factory, claimable_after_days=claimable_after_days, clock=clock
        )
        self._sweeper = StatusSweeper(
            session_factory, claimable_after_days=claimable_after_days, clock=clock
        )

    async def run_sync(self, start_time: datetime, end_time: datetime) -> SyncRun:
        start_time, end_time = _as_utc(start_time), _as_utc(end_time)
        data_start, data_end = format_report_time(start_time), format_report_time(end_time)
        started = perf_counter()
        async with self._lock.hold(self._report_type):
            log_id: str | None = None
            try:
                log_id = await self._open_sync_log(start_time, end_time)
                run = await self._run_pipeline(data_start, data_end)
            except LedgerSyncError as exc:
                await self._record_failure(exc, exc.stage, started, data_start, data_end, log_id)
                raise
            except BaseException as exc:
                stage = LedgerSyncError.default_stage
                await self._record_failure(exc, stage, started, data_start, data_end, log_id)
                raise

        LEDGER_SYNC_DURATION_SECONDS.labels(outcome="succeeded").observe(perf_counter() - started)
        await self._close_sync_log(log_id, run=run)
        return run

    async def _record_failure(
        self,
        exc: BaseException,
        stage: str,
        started: float,
        data_start: str,
        data_end: str,
        log_id: str | None,
    ) -> None:
        LEDGER_SYNC_FAILURES_TOTAL.labels(stage=stage).inc()
        LEDGER_SYNC_DURATION_SECONDS.labels(outcome="failed").observe(perf_counter() - started)
        if isinstance(exc, LedgerSyncError):
            await self._publisher.sync_failed(exc, data_start_time=data_start, data_end_time=data_end)
        else:
            logger.exception(
                "Ledger sync failed with an unexpected error",
                extra={"context": {"stage": stage, "dataStartTime": data_start, "dataEndTime": data_end}},
            )
        if log_id is not None:
            await self._close_sync_log(log_id, failure=exc, failed_stage=stage)

    async def _run_pipeline(self, data_start: str, data_end: str) -> SyncRun:
        with stage_span("submit", report_type=self._report_type, data_start=data_start, data_end=data_end):
            report_id = await self._client.submit_report(
                self._report_type, data_start, data_end, options=LEDGER_REPORT_OPTIONS
            )

        with stage_span("poll", report_id=report_id):
            handle = await self._client.poll_until_ready(
                report_id,
                max_wait=self._max_wait,
                poll_interval=self._poll_interval,
                data_start_time=data_start,
                data_end_time=data_end,
            )

        with stage_span("download", report_id=report_id, document_id=handle.document_id):
            payload = await self._client.fetch_document(handle.document_id)

        with stage_span("decode", report_id=report_id):
            rows = decode_payload(payload)
            events = [normalize_row(row, clock=self._clock) for row in rows]
            valid = [event for event in events if event.is_valid]
        await self._publisher.report_decoded(
            report_id=report_id,
            row_count=len(rows),
            valid_rows=len(valid),
            invalid_rows=len(events) - len(valid),
            byte_count=len(payload),
        )

        with stage_span("reconcile", report_id=report_id):
            result = await self._engine.reconcile(valid)
        await self._publisher.events_reconciled(
            report_id=report_id,
            eligible=result.processed_count + result.failed_count,
            processed=result.processed_count,
            created=result.new_events_count,
            updated=result.updated_events_count,
            failed=result.failed_count,
        )
        return SyncRun(
            report_id=report_id,
            processed_count=result.processed_count,
            new_events_count=result.new_events_count,
            updated_events_count=result.updated_events_count,
            row_count=len(rows),
            invalid_row_count=len(events) - len(valid),
        )

    async def run_status_sweep(self) -> StatusSweepResult:
        with stage_span("sweep"):
            result = await self._sweeper.sweep()
        await self._publisher.status_swept(
            waiting_to_claimable=result.waiting_to_claimable,
            claimable_to_resolved=result.claimable_to_resolved,
        )
        return result

    async def _open_sync_log(self, start_time: datetime, end_time: datetime) -> str:
        try:
            async with lifespan_session(self._session_factory) as session:
                log = await InventoryLedgerRepository(session).create_sync_log(
                    sync_type=self._report_type,
                    data_start_time=start_time,
                    data_end_time=end_time,
                )
                return log.id
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not record sync start: {exc}") from exc

    async def _close_sync_log(
        self,
        log_id: str,
        *,
        run: SyncRun | None = None,
        failure: BaseException | None = None,
        failed_stage: str | None = None,
    ) -> None:
        try:
            async with lifespan_session(self._session_factory) as session:
                repository = InventoryLedgerRepository(session)
                if run is not None:
                    await repository.finish_sync_log(
                        log_id,
                        status="succeeded",
                        completed_at=self._clock(),
                        report_id=run.report_id,
                        records_processed=run.processed_count,
                        records_added=run.new_events_count,
                        records_updated=run.updated_events_count,
                    )
                else:
                    context = failure.context if isinstance(failure, LedgerSyncError) else {}
                    await repository.finish_sync_log(
                        log_id,
                        status="failed",
                        completed_at=self._clock(),
                        report_id=context.get("reportId"),
                        failed_stage=failed_stage,
                        error_message=(str(failure) or type(failure).__name__) if failure else None,
                    )
        except SQLAlchemyError:
            # The sync result is still returned when the log row cannot be closed.
            logger.exception("Failed to record sync completion", extra={"context": {"syncLogId": log_id}})
