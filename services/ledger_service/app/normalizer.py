"""Map decoded ledger report rows onto typed event records.

Row-level problems never raise: unparseable dates fall back to the current time and bad
integers to zero, each with a warning, so one malformed row cannot abort a large batch.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import date, datetime, timezone
from typing import Any, Callable, Mapping

logger = logging.getLogger(__name__)

_DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%m-%d-%Y")
_DATETIME_FORMATS = ("%Y-%m-%d %H:%M:%S", "%m/%d/%Y %H:%M:%S")

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class LedgerEventData:
    """One ledger report row after normalization, before persistence."""

    event_date: date
    fnsku: str
    asin: str
    sku: str
    product_title: str
    event_type: str
    reference_id: str | None
    quantity: int
    fulfillment_center: str | None
    disposition: str | None
    reason: str | None
    reconciled_quantity: int
    unreconciled_quantity: int
    country: str
    raw_timestamp: datetime
    store_id: str | None

    @property
    def is_valid(self) -> bool:
        return bool(self.fnsku) and bool(self.asin)

    @property
    def natural_key(self) -> tuple[str, str, date, str, str | None, str | None]:
        return (
            self.fnsku,
            self.asin,
            self.event_date,
            self.event_type,
            self.reference_id,
            self.fulfillment_center,
        )

    def as_columns(self) -> dict[str, Any]:
        return asdict(self)


def _optional(value: str | None) -> str | None:
    if value is None:
        return None
    cleaned = value.strip()
    return cleaned or None


def parse_int(value: str | None, *, field: str = "value") -> int:
    """Parse a signed integer column, defaulting to 0 for absent or invalid input."""

    if value is None or not value.strip():
        return 0
    try:
        return int(value.strip())
    except ValueError:
        logger.warning(
            "Invalid integer in ledger row; using 0",
            extra={"context": {"field": field, "raw": value}},
        )
        return 0


def parse_report_date(value: str | None, *, clock: Clock = utcnow) -> date:
    """Parse ``YYYY-MM-DD``, ``MM/DD/YYYY`` or ``MM-DD-YYYY``; fall back to today."""

    text = (value or "").strip()
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    logger.warning("Failed to parse ledger date", extra={"context": {"raw": value}})
    return clock().date()


def parse_report_datetime(value: str | None, *, clock: Clock = utcnow) -> datetime:
    """Parse ISO-8601, ``YYYY-MM-DD HH:MM:SS`` or ``MM/DD/YYYY HH:MM:SS``; fall back to now.

    Naive values are taken to be UTC.
    """

    text = (value or "").strip()
    parsed: datetime | None = None
    if text:
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            for fmt in _DATETIME_FORMATS:
                try:
                    parsed = datetime.strptime(text, fmt)
                    break
                except ValueError:
                    continue
    if parsed is None:
        logger.warning("Failed to parse ledger timestamp", extra={"context": {"raw": value}})
        return clock()
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed


def normalize_row(row: Mapping[str, str], *, clock: Clock = utcnow) -> LedgerEventData:
    """Convert one decoded report row (header -> value) into ``LedgerEventData``."""

    return LedgerEventData(
        event_date=parse_report_date(row.get("Date"), clock=clock),
        fnsku=(row.get("FNSKU") or "").strip(),
        asin=(row.get("ASIN") or "").strip(),
        sku=(row.get("MSKU") or "").strip(),
        product_title=(row.get("Title") or "").strip(),
        event_type=(row.get("Event Type") or "").strip(),
        reference_id=_optional(row.get("Reference ID")),
        quantity=parse_int(row.get("Quantity"), field="Quantity"),
        fulfillment_center=_optional(row.get("Fulfillment Center")),
        disposition=_optional(row.get("Disposition")),
        reason=_optional(row.get("Reason")),
        reconciled_quantity=parse_int(row.get("Reconciled Quantity"), field="Reconciled Quantity"),
        unreconciled_quantity=parse_int(row.get("Unreconciled Quantity"), field="Unreconciled Quantity"),
        country=_optional(row.get("Country")) or "US",
        raw_timestamp=parse_report_datetime(row.get("Date and Time"), clock=clock),
        store_id=_optional(row.get("Store")),
    )
