"""Structured checkpoint events for the ledger sync pipeline.

Business code reports progress only through ``LedgerCheckpointPublisher``; each checkpoint is
logged once, counted in Prometheus and handed to any subscribers (tests, dashboards).
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from .errors import LedgerSyncError
from .metrics import LEDGER_CHECKPOINTS_TOTAL

logger = logging.getLogger("services.ledger_service.checkpoints")

CheckpointSubscriber = Callable[[dict[str, Any]], Awaitable[None]]

REPORT_SUBMITTED = "ledger.report.submitted"
REPORT_POLLED = "ledger.report.polled"
REPORT_READY = "ledger.report.ready"
REPORT_DECODED = "ledger.report.decoded"
EVENTS_RECONCILED = "ledger.events.reconciled"
STATUS_SWEPT = "ledger.status.swept"
SYNC_FAILED = "ledger.sync.failed"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class LedgerCheckpointPublisher:
    """Emits one structured record per pipeline checkpoint."""

    def __init__(self, subscribers: list[CheckpointSubscriber] | None = None) -> None:
        self._subscribers: list[CheckpointSubscriber] = list(subscribers or [])

    def subscribe(self, subscriber: CheckpointSubscriber) -> None:
        self._subscribers.append(subscriber)

    async def _emit(self, checkpoint: str, payload: dict[str, Any], *, level: int = logging.INFO) -> None:
        LEDGER_CHECKPOINTS_TOTAL.labels(checkpoint=checkpoint).inc()
        logger.log(level, checkpoint, extra={"context": payload})
        if not self._subscribers:
            return
        envelope = {"checkpoint": checkpoint, "occurredAt": _now_iso(), **payload}
        for subscriber in list(self._subscribers):
            await subscriber(envelope)

    async def report_submitted(
        self, *, report_id: str, report_type: str, data_start_time: str, data_end_time: str
    ) -> None:
        await self._emit(
            REPORT_SUBMITTED,
            {
                "reportId": report_id,
                "reportType": report_type,
                "dataStartTime": data_start_time,
                "dataEndTime": data_end_time,
            },
        )

    async def report_polled(self, *, report_id: str, attempt: int, status: str | None) -> None:
        await self._emit(
            REPORT_POLLED,
            {"reportId": report_id, "attempt": attempt, "status": status or "UNKNOWN"},
            level=logging.DEBUG,
        )

    async def report_ready(self, *, report_id: str, document_id: str, attempts: int) -> None:
        await self._emit(
            REPORT_READY,
            {"reportId": report_id, "reportDocumentId": document_id, "attempts": attempts},
        )

    async def report_decoded(
        self, *, report_id: str, row_count: int, valid_rows: int, invalid_rows: int, byte_count: int
    ) -> None:
        await self._emit(
            REPORT_DECODED,
            {
                "reportId": report_id,
                "rowCount": row_count,
                "validRows": valid_rows,
                "invalidRows": invalid_rows,
                "bytes": byte_count,
            },
        )

    async def events_reconciled(
        self,
        *,
        report_id: str | None,
        eligible: int,
        processed: int,
        created: int,
        updated: int,
        failed: int,
    ) -> None:
        await self._emit(
            EVENTS_RECONCILED,
            {
                "reportId": report_id,
                "eligible": eligible,
                "processed": processed,
                "created": created,
                "updated": updated,
                "failed": failed,
            },
        )

    async def status_swept(self, *, waiting_to_claimable: int, claimable_to_resolved: int) -> None:
        await self._emit(
            STATUS_SWEPT,
            {
                "waitingToClaimable": waiting_to_claimable,
                "claimableToResolved": claimable_to_resolved,
            },
        )

    async def sync_failed(self, error: LedgerSyncError, *, data_start_time: str, data_end_time: str) -> None:
        await self._emit(
            SYNC_FAILED,
            {
                "stage": error.stage,
                "error": str(error),
                "dataStartTime": data_start_time,
                "dataEndTime": data_end_time,
                **error.context,
            },
            level=logging.ERROR,
        )
