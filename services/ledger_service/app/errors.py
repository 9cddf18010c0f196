"""Error taxonomy for the ledger sync pipeline."""

from __future__ import annotations

from typing import Any


class LedgerSyncError(Exception):
    """Base error; ``stage`` names the pipeline stage that failed."""

    default_stage = "sync"

    def __init__(self, message: str, *, stage: str | None = None, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.stage = stage or self.default_stage
        self.context: dict[str, Any] = dict(context or {})


class RemoteRequestError(LedgerSyncError):
    """The upstream report API call failed or returned no usable identifier."""

    default_stage = "submit"


class ReportFailedError(LedgerSyncError):
    """The report job reached a terminal FATAL or CANCELLED state."""

    default_stage = "poll"

    def __init__(
        self,
        *,
        report_id: str,
        status: str,
        data_start_time: str | None,
        data_end_time: str | None,
    ) -> None:
        message = (
            f"Report {report_id} processing failed with status {status}. "
            f"Date range: {data_start_time} to {data_end_time}. "
            "This typically means the date range is too recent or contains no data; "
            "try a range that ends at least 48 hours ago."
        )
        super().__init__(
            message,
            context={
                "reportId": report_id,
                "status": status,
                "dataStartTime": data_start_time,
                "dataEndTime": data_end_time,
            },
        )
        self.report_id = report_id
        self.status = status
        self.data_start_time = data_start_time
        self.data_end_time = data_end_time


class ReportTimeoutError(LedgerSyncError):
    """The report job did not reach a terminal state within the wait bound."""

    default_stage = "poll"


class DownloadError(LedgerSyncError):
    """The report document could not be resolved or fetched."""

    default_stage = "download"


class DecodeError(LedgerSyncError):
    """A payload or upstream response could not be read at all."""

    default_stage = "decode"


class PersistenceError(LedgerSyncError):
    """A store operation failed."""

    default_stage = "persist"


class SyncInProgressError(LedgerSyncError):
    """Another sync for the same report kind currently holds the lock."""

    default_stage = "lock"


class InvalidStatusTransition(ValueError):
    """An operator action was requested from a status that does not allow it."""

    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"cannot move event from {current} to {target}")
        self.current = current
        self.target = target
