"""
Pydantic schemas for the call API.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from codconfirm.calls.models import CallResult


class CallAttemptResponse(BaseModel):
    """Schema for call attempt response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_id: UUID
    provider_call_id: str | None
    attempt_number: int
    started_at: datetime | None
    ended_at: datetime | None
    duration_seconds: int | None
    cost: Decimal | None
    ended_reason: str | None
    transcript: str | None
    recording_url: str | None
    summary: str | None
    result: CallResult | None
    created_at: datetime


class CallOrderSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    order_number: str
    customer_name: str
    customer_phone: str
    store_id: UUID | None


class CallLogEntry(CallAttemptResponse):
    order: CallOrderSummary


class CallListResponse(BaseModel):
    calls: list[CallLogEntry]


class DispatchResponse(BaseModel):
    """Result of one dispatch tick."""

    success: bool = True
    triggered: int = 0
    results: list[dict] = Field(default_factory=list)
    message: str | None = None


class SampleCallRequest(BaseModel):
    """Sample call used to check the assistant setup. Nothing is stored."""

    phone: str = Field(default="", description="Destination number (required)")
    customer_name: str | None = None
    order_number: str | None = None
    product: str | None = None
    amount: str | float | None = None
    address: str | None = None
    store_name: str | None = None


class SampleCallResponse(BaseModel):
    success: bool = True
    message: str
    call_id: str
    status: str
