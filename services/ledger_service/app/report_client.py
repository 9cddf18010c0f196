"""Client adapter for the upstream asynchronous bulk report API.

Report generation is a job system without push notifications: a job is submitted, its status
is polled at a fixed interval up to a bounded wait, and the finished document is fetched from a
short-lived URL.
"""

from __future__ import annotations

import asyncio
import gzip
import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, TypeVar

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import DecodeError, DownloadError, RemoteRequestError, ReportFailedError, ReportTimeoutError
from .events import LedgerCheckpointPublisher

logger = logging.getLogger(__name__)

INVENTORY_LEDGER_REPORT = "GET_LEDGER_DETAIL_VIEW_DATA"
REPORTS_API_PATH = "/reports/2021-06-30"
ACCESS_TOKEN_HEADER = "x-amz-access-token"

STATUS_DONE = "DONE"
TERMINAL_FAILURE_STATUSES = frozenset({"FATAL", "CANCELLED"})
DEFAULT_MAX_WAIT_SECONDS = 300.0
DEFAULT_POLL_INTERVAL_SECONDS = 10.0

_GZIP_MAGIC = b"\x1f\x8b"
_ModelT = TypeVar("_ModelT", bound=BaseModel)


class _UpstreamModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class CreateReportResponse(_UpstreamModel):
    report_id: str | None = Field(default=None, alias="reportId")


class ReportStatusResponse(_UpstreamModel):
    report_id: str | None = Field(default=None, alias="reportId")
    processing_status: str | None = Field(default=None, alias="processingStatus")
    report_document_id: str | None = Field(default=None, alias="reportDocumentId")
    data_start_time: str | None = Field(default=None, alias="dataStartTime")
    data_end_time: str | None = Field(default=None, alias="dataEndTime")


class ReportDocumentResponse(_UpstreamModel):
    report_document_id: str | None = Field(default=None, alias="reportDocumentId")
    url: str | None = None
    compression_algorithm: str | None = Field(default=None, alias="compressionAlgorithm")


@dataclass(slots=True)
class ReportHandle:
    report_id: str
    document_id: str
    status: str
    attempts: int
    data_start_time: str | None = None
    data_end_time: str | None = None


def format_report_time(value: datetime | str) -> str:
    """Render a report boundary as ISO-8601 in UTC."""

    if isinstance(value, str):
        return value
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse(model: type[_ModelT], response: httpx.Response, *, stage: str) -> _ModelT:
    try:
        return model.model_validate(response.json())
    except (json.JSONDecodeError, ValidationError) as exc:
        raise DecodeError(
            f"Unexpected {model.__name__} payload from report API: {exc}",
            stage=stage,
        ) from exc


class ReportsClient:
    """Narrow async wrapper over the report API (submit, poll, fetch)."""

    def __init__(
        self,
        *,
        client: httpx.AsyncClient,
        marketplace_id: str,
        access_token: str | None = None,
        publisher: LedgerCheckpointPublisher | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client
        self._marketplace_id = marketplace_id
        self._access_token = access_token
        self._publisher = publisher or LedgerCheckpointPublisher()
        self._sleep = sleep
        self._monotonic = monotonic

    async def close(self) -> None:
        await self._client.aclose()

    def _headers(self) -> dict[str, str]:
        if not self._access_token:
            return {}
        return {ACCESS_TOKEN_HEADER: self._access_token}

    async def submit_report(
        self,
        kind: str,
        start_time: datetime | str,
        end_time: datetime | str,
        *,
        options: dict[str, str] | None = None,
    ) -> str:
        """Request a report job for ``[start_time, end_time]`` and return its id."""

        data_start, data_end = format_report_time(start_time), format_report_time(end_time)
        body: dict[str, Any] = {
            "reportType": kind,
            "marketplaceIds": [self._marketplace_id],
            "dataStartTime": data_start,
            "dataEndTime": data_end,
        }
        if options:
            body["reportOptions"] = options

        try:
            response = await self._client.post(
                f"{REPORTS_API_PATH}/reports", json=body, headers=self._headers()
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise RemoteRequestError(
                f"Failed to create {kind} report: {exc}",
                context={"dataStartTime": data_start, "dataEndTime": data_end},
            ) from exc

        created = _parse(CreateReportResponse, response, stage="submit")
        if not created.report_id:
            raise RemoteRequestError(
                f"No report id returned when creating {kind} report",
                context={"dataStartTime": data_start, "dataEndTime": data_end},
            )
        await self._publisher.report_submitted(
            report_id=created.report_id,
            report_type=kind,
            data_start_time=data_start,
            data_end_time=data_end,
        )
        return created.report_id

    async def get_report_status(self, report_id: str) -> ReportStatusResponse:
        try:
            response = await self._client.get(
                f"{REPORTS_API_PATH}/reports/{report_id}", headers=self._headers()
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise RemoteRequestError(
                f"Failed to read status of report {report_id}: {exc}",
                stage="poll",
                context={"reportId": report_id},
            ) from exc
        return _parse(ReportStatusResponse, response, stage="poll")

    async def poll_until_ready(
        self,
        report_id: str,
        *,
        max_wait: float = DEFAULT_MAX_WAIT_SECONDS,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        data_start_time: str | None = None,
        data_end_time: str | None = None,
    ) -> ReportHandle:
        """Poll the job until DONE; raise on FATAL/CANCELLED or when ``max_wait`` elapses."""

        deadline = self._monotonic() + max_wait
        attempts = 0
        while self._monotonic() < deadline:
            attempts += 1
            report = await self.get_report_status(report_id)
            status = (report.processing_status or "").strip().upper() or None
            await self._publisher.report_polled(report_id=report_id, attempt=attempts, status=status)

            if status == STATUS_DONE:
                if not report.report_document_id:
                    raise DownloadError(
                        f"Report {report_id} is DONE but carries no document id",
                        stage="poll",
                        context={"reportId": report_id},
                    )
                await self._publisher.report_ready(
                    report_id=report_id, document_id=report.report_document_id, attempts=attempts
                )
                return ReportHandle(
                    report_id=report_id,
                    document_id=report.report_document_id,
                    status=status,
                    attempts=attempts,
                    data_start_time=report.data_start_time or data_start_time,
                    data_end_time=report.data_end_time or data_end_time,
                )
            if status in TERMINAL_FAILURE_STATUSES:
                raise ReportFailedError(
                    report_id=report_id,
                    status=status,
                    data_start_time=report.data_start_time or data_start_time,
                    data_end_time=report.data_end_time or data_end_time,
                )
            if status is None:
                logger.warning(
                    "Report status missing from poll response; continuing",
                    extra={"context": {"reportId": report_id, "attempt": attempts}},
                )
            await self._sleep(poll_interval)

        raise ReportTimeoutError(
            f"Report {report_id} did not complete within {max_wait:g}s",
            context={
                "reportId": report_id,
                "attempts": attempts,
                "dataStartTime": data_start_time,
                "dataEndTime": data_end_time,
            },
        )

    async def get_report_document(self, document_id: str) -> ReportDocumentResponse:
        try:
            response = await self._client.get(
                f"{REPORTS_API_PATH}/documents/{document_id}", headers=self._headers()
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise DownloadError(
                f"Failed to resolve report document {document_id}: {exc}",
                context={"reportDocumentId": document_id},
            ) from exc
        return _parse(ReportDocumentResponse, response, stage="download")

    async def fetch_document(self, document_id: str) -> bytes:
        """Resolve the document URL, download it and undo GZIP compression if declared."""

        document = await self.get_report_document(document_id)
        if not document.url:
            raise DownloadError(
                f"No download URL found for report document {document_id}",
                context={"reportDocumentId": document_id},
            )
        try:
            # Pre-signed URL: the API access token must not be forwarded.
            response = await self._client.get(document.url)
            response.raise_for_status()
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise DownloadError(
                f"Failed to download report document {document_id}: {exc}",
                context={"reportDocumentId": document_id},
            ) from exc

        payload = response.content
        if (document.compression_algorithm or "").upper() != "GZIP":
            return payload
        if not payload.startswith(_GZIP_MAGIC):
            logger.warning(
                "Document declared GZIP but payload is not compressed; using it as-is",
                extra={"context": {"reportDocumentId": document_id}},
            )
            return payload
        try:
            return gzip.decompress(payload)
        except (OSError, EOFError) as exc:
            raise DecodeError(
                f"Report document {document_id} is not valid GZIP data: {exc}",
                stage="download",
            ) from exc
