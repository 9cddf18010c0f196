"""Pydantic schemas for the ledger service."""

from __future__ import annotations

from datetime import date, datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, NonNegativeInt, field_validator, model_validator


class SyncRequest(BaseModel):
    data_start_time: datetime = Field(alias="dataStartTime")
    data_end_time: datetime = Field(alias="dataEndTime")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("data_start_time", "data_end_time")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @model_validator(mode="after")
    def _check_range(self) -> "SyncRequest":
        if self.data_end_time <= self.data_start_time:
            msg = "dataEndTime must be after dataStartTime"
            raise ValueError(msg)
        return self


class SyncRunResponse(BaseModel):
    report_id: str = Field(alias="reportId")
    processed_count: NonNegativeInt = Field(alias="processedCount")
    new_events_count: NonNegativeInt = Field(alias="newEventsCount")
    updated_events_count: NonNegativeInt = Field(alias="updatedEventsCount")
    row_count: NonNegativeInt = Field(default=0, alias="rowCount")
    invalid_row_count: NonNegativeInt = Field(default=0, alias="invalidRowCount")

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


class StatusSweepResponse(BaseModel):
    updated_count: NonNegativeInt = Field(alias="updatedCount")
    waiting_to_claimable: NonNegativeInt = Field(alias="waitingToClaimable")
    claimable_to_resolved: NonNegativeInt = Field(alias="claimableToResolved")

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


class LedgerEventResponse(BaseModel):
    id: str
    event_date: date = Field(alias="eventDate")
    fnsku: str
    asin: str
    sku: str
    product_title: str = Field(alias="productTitle")
    event_type: str = Field(alias="eventType")
    reference_id: str | None = Field(alias="referenceId")
    quantity: int
    fulfillment_center: str | None = Field(alias="fulfillmentCenter")
    disposition: str | None
    reason: str | None
    reconciled_quantity: int = Field(alias="reconciledQuantity")
    unreconciled_quantity: int = Field(alias="unreconciledQuantity")
    country: str
    raw_timestamp: datetime = Field(alias="rawTimestamp")
    store_id: str | None = Field(alias="storeId")
    status: str
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


class LedgerEventListResponse(BaseModel):
    items: list[LedgerEventResponse]
    total: int
    page: int
    limit: int
    total_pages: int = Field(alias="totalPages")

    model_config = ConfigDict(populate_by_name=True)


class LedgerStatsResponse(BaseModel):
    total_claimable_units: int = Field(alias="totalClaimableUnits")
    total_estimated_value: float = Field(alias="totalEstimatedValue")
    total_waiting: int = Field(alias="totalWaiting")
    total_resolved: int = Field(alias="totalResolved")
    total_claimed: int = Field(alias="totalClaimed")
    total_paid: int = Field(alias="totalPaid")
    claimable_events_count: int = Field(alias="claimableEventsCount")
    waiting_events_count: int = Field(alias="waitingEventsCount")

    model_config = ConfigDict(populate_by_name=True)


class ClaimTextResponse(BaseModel):
    claim_text: str = Field(alias="claimText")
    event: LedgerEventResponse

    model_config = ConfigDict(populate_by_name=True)


class SyncLogResponse(BaseModel):
    id: str
    sync_type: str = Field(alias="syncType")
    report_id: str | None = Field(alias="reportId")
    data_start_time: datetime = Field(alias="dataStartTime")
    data_end_time: datetime = Field(alias="dataEndTime")
    status: str
    failed_stage: str | None = Field(alias="failedStage")
    records_processed: int = Field(alias="recordsProcessed")
    records_added: int = Field(alias="recordsAdded")
    records_updated: int = Field(alias="recordsUpdated")
    error_message: str | None = Field(alias="errorMessage")
    created_at: datetime = Field(alias="createdAt")
    completed_at: datetime | None = Field(alias="completedAt")

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)
