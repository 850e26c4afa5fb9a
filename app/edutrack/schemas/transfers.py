from __future__ import annotations

from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, Field


TransferKind = Literal["SUPPLIER_RECEIPT", "DIRECT_SHIPMENT", "COUNCIL_SHIPMENT", "DISTRIBUTION"]
ConditionOnReceipt = Literal["NEW", "GOOD", "FAIR", "DAMAGED"]
ValidationDecision = Literal["VALIDATED", "DISCREPANCY"]

_LINE_ITEM_EXAMPLE = {
    "item_id": "0b7c8f0e-5a8f-4a55-a1a4-0e4f4c1b2a10",
    "quantity_expected": 100,
    "unit_of_measure": "box",
    "batch_number": "B-2024-07",
}


class LineItemCreate(BaseModel):
    item_id: str
    quantity_expected: int
    unit_of_measure: str | None = None
    batch_number: str | None = None
    expiry_date: date | None = None
    notes: str | None = None

    model_config = {"json_schema_extra": {"example": _LINE_ITEM_EXAMPLE}}


class LineItemResult(BaseModel):
    line_item_id: str
    quantity_received: int
    quantity_damaged: int = 0
    condition_on_receipt: ConditionOnReceipt | None = None
    batch_number: str | None = None
    expiry_date: date | None = None
    notes: str | None = None


class DispatchDetails(BaseModel):
    expected_arrival_date: date | None = None
    tracking_number: str | None = None
    transport_method: str | None = None
    notes: str | None = None


class Evidence(BaseModel):
    attachment_ids: list[str] = Field(default_factory=list)
    quality_check_ids: list[str] = Field(default_factory=list)


class CreateTransferRequest(BaseModel):
    kind: TransferKind
    origin_ref: str
    destination_ref: str
    line_items: list[LineItemCreate]
    reference_number: str | None = None
    expected_arrival_date: date | None = None
    notes: str | None = None


class AmendTransferRequest(BaseModel):
    line_items: list[LineItemCreate] | None = None
    expected_arrival_date: date | None = None
    notes: str | None = None


class ReceivePayload(BaseModel):
    actual_arrival_date: date | None = None
    line_items: list[LineItemResult]
    notes: str | None = None
    discrepancy_notes: str | None = None
    evidence: Evidence | None = None


class ValidatePayload(BaseModel):
    decision: ValidationDecision = "VALIDATED"
    discrepancy_notes: str | None = None
    line_items: list[LineItemResult] | None = None
    evidence: Evidence | None = None


class CancelPayload(BaseModel):
    reason: str | None = None


class TransferActionRequest(BaseModel):
    action: Literal["dispatch", "mark_in_transit", "mark_delivered", "receive", "validate", "cancel"]
    dispatch: DispatchDetails | None = None
    receive: ReceivePayload | None = None
    validate_: ValidatePayload | None = Field(default=None, alias="validate")
    cancel: CancelPayload | None = None

    model_config = {"populate_by_name": True}


class LineItemSnapshot(BaseModel):
    id: str
    position: int
    item_id: str
    unit_of_measure: str
    quantity_expected: int
    quantity_received: int | None
    quantity_damaged: int | None
    condition_on_receipt: str | None
    batch_number: str | None
    expiry_date: date | None
    notes: str | None
    discrepancy_quantity: int | None
    has_discrepancy: bool


class TransferSnapshot(BaseModel):
    id: str
    kind: str
    status: str
    reference_number: str
    origin_ref: str
    destination_ref: str
    expected_arrival_date: date | None
    actual_arrival_date: date | None
    tracking_number: str | None
    transport_method: str | None
    notes: str | None
    discrepancy_notes: str | None
    created_by: str
    dispatched_by: str | None
    received_by: str | None
    validated_by: str | None
    cancelled_by: str | None
    created_at: datetime
    updated_at: datetime
    dispatched_at: datetime | None
    received_at: datetime | None
    validated_at: datetime | None
    cancelled_at: datetime | None
    version: int


class TransferResponse(BaseModel):
    transfer: TransferSnapshot
    line_items: list[LineItemSnapshot]
    noop: bool = False


class TransferListResponse(BaseModel):
    rows: list[TransferSnapshot]
    total: int
    limit: int
    offset: int


class AuditEntryResponse(BaseModel):
    id: str
    transfer_id: str
    sequence_number: int
    event_type: str
    actor_id: str
    actor_role: str | None
    from_status: str | None
    to_status: str
    notes: str | None
    attachment_ids: list[str]
    quality_check_ids: list[str]
    trace_id: str | None
    timestamp: datetime


class AuditTrailResponse(BaseModel):
    transfer_id: str
    entries: list[AuditEntryResponse]
    total: int
    limit: int | None
    offset: int


class StuckTransferResponse(BaseModel):
    transfer: TransferSnapshot
    days_waiting: int
    urgency: Literal["critical", "high", "medium"]


class StuckTransferListResponse(BaseModel):
    rows: list[StuckTransferResponse]
    older_than_days: int
