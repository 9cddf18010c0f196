import json
from collections.abc import Callable, Sequence
from typing import Any

import httpx
import pytest

REPORT_HEADERS = (
    "Date",
    "FNSKU",
    "ASIN",
    "MSKU",
    "Title",
    "Event Type",
    "Reference ID",
    "Quantity",
    "Fulfillment Center",
    "Disposition",
    "Reason",
    "Country",
    "Reconciled Quantity",
    "Unreconciled Quantity",
    "Date and Time",
)

API_BASE_URL = "https://reports.test"
DOWNLOAD_URL = "https://download.test/documents/D1"


class FakeReportsApi:
    """In-memory stand-in for the upstream report API, served through ``httpx.MockTransport``."""

    def __init__(
        self,
        *,
        statuses: Sequence[str] = ("DONE",),
        document: bytes = b"",
        compression: str | None = None,
        report_id: str | None = "R1",
        document_id: str = "D1",
        download_url: str | None = DOWNLOAD_URL,
    ) -> None:
        self.statuses = list(statuses)
        self.document = document
        self.compression = compression
        self.report_id = report_id
        self.document_id = document_id
        self.download_url = download_url
        self.requests: list[httpx.Request] = []
        self.created: list[dict[str, Any]] = []
        self.status_calls = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if request.method == "POST" and path == "/reports/2021-06-30/reports":
            self.created.append(json.loads(request.content))
            return httpx.Response(202, json={"reportId": self.report_id} if self.report_id else {})
        if request.method == "GET" and path == f"/reports/2021-06-30/reports/{self.report_id}":
            self.status_calls += 1
            status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
            body: dict[str, Any] = {"reportId": self.report_id}
            if status:
                body["processingStatus"] = status
            if status == "DONE":
                body["reportDocumentId"] = self.document_id
            return httpx.Response(200, json=body)
        if request.method == "GET" and path == f"/reports/2021-06-30/documents/{self.document_id}":
            body = {"reportDocumentId": self.document_id}
            if self.download_url:
                body["url"] = self.download_url
            if self.compression:
                body["compressionAlgorithm"] = self.compression
            return httpx.Response(200, json=body)
        if request.url.host == "download.test":
            return httpx.Response(200, content=self.document)
        return httpx.Response(404, json={"errors": [{"code": "NotFound"}]})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=API_BASE_URL, transport=self.transport)


def build_report(rows: Sequence[dict[str, str]]) -> str:
    lines = ["\t".join(REPORT_HEADERS)]
    for row in rows:
        lines.append("\t".join(row.get(header, "") for header in REPORT_HEADERS))
    return "\n".join(lines) + "\n"


def ledger_row(**overrides: str) -> dict[str, str]:
    row = {
        "Date": "2024-06-01",
        "FNSKU": "X001",
        "ASIN": "B001",
        "MSKU": "SKU-1",
        "Title": "Widget",
        "Event Type": "Shipments",
        "Reference ID": "REF-1",
        "Quantity": "-3",
        "Fulfillment Center": "PHX7",
        "Disposition": "SELLABLE",
        "Reason": "",
        "Country": "US",
        "Reconciled Quantity": "0",
        "Unreconciled Quantity": "3",
        "Date and Time": "2024-06-01T10:00:00Z",
    }
    row.update(overrides)
    return row


@pytest.fixture
def fake_reports_api() -> Callable[..., FakeReportsApi]:
    return FakeReportsApi


@pytest.fixture
def report_builder() -> Callable[[Sequence[dict[str, str]]], str]:
    return build_report


@pytest.fixture
def make_row() -> Callable[..., dict[str, str]]:
    return ledger_row


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}"
