"""SQLAlchemy models for the ledger service."""

from __future__ import annotations

import uuid
from datetime import date, datetime

from sqlalchemy import Date, DateTime, Index, Integer, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _uuid() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Base class for ledger ORM models."""


class InventoryLedgerEvent(Base):
    __tablename__ = "inventory_ledger_events"
    __table_args__ = (
        Index(
            "ix_inventory_ledger_events_natural_key",
            "fnsku",
            "asin",
            "event_date",
            "event_type",
            "reference_id",
            "fulfillment_center",
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    event_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    fnsku: Mapped[str] = mapped_column(String(50), nullable=False)
    asin: Mapped[str] = mapped_column(String(20), nullable=False)
    sku: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    product_title: Mapped[str] = mapped_column(Text, nullable=False, default="")
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    reference_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    fulfillment_center: Mapped[str | None] = mapped_column(String(20), nullable=True)
    disposition: Mapped[str | None] = mapped_column(String(50), nullable=True)
    reason: Mapped[str | None] = mapped_column(String(10), nullable=True)
    reconciled_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    unreconciled_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    country: Mapped[str] = mapped_column(String(10), nullable=False, default="US")
    raw_timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    # Weak reference to a store; no foreign key so deleting a store never cascades here.
    store_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="WAITING", index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )


class LedgerSyncLog(Base):
    __tablename__ = "ledger_sync_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    sync_type: Mapped[str] = mapped_column(String(64), nullable=False)
    report_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    data_start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    data_end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="running")
    failed_stage: Mapped[str | None] = mapped_column(String(32), nullable=True)
    records_processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    records_added: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    records_updated: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
