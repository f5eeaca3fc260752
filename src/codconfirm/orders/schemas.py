"""
Pydantic schemas for the order dashboard API.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from codconfirm.calls.schemas import CallAttemptResponse
from codconfirm.orders.models import OrderStatus


class OrderResponse(BaseModel):
    """Order row as stored."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    external_order_id: str
    order_number: str
    store_id: UUID | None
    customer_name: str
    customer_phone: str
    address: str
    product: str
    amount: Decimal
    currency: str
    status: OrderStatus
    call_scheduled_at: datetime | None
    call_attempts: int
    address_corrected: str | None
    notes: str | None
    created_at: datetime
    updated_at: datetime


class OrderWithCallsResponse(OrderResponse):
    """Dashboard view: the order, its store and its calls (newest first)."""

    store_name: str = ""
    store_url: str = ""
    calls: list[CallAttemptResponse] = Field(default_factory=list)
    last_call: CallAttemptResponse | None = None


class OrderListResponse(BaseModel):
    orders: list[OrderWithCallsResponse]


class OrderUpdate(BaseModel):
    """Operator override. Only these fields can be changed by hand."""

    model_config = ConfigDict(extra="ignore")

    id: UUID
    status: OrderStatus | None = Field(
        default=None,
        description="New status (bypasses the transition table)",
    )
    notes: str | None = Field(default=None, description="Free-text operator notes")
    address_corrected: str | None = Field(default=None, description="Corrected delivery address")


class OrderUpdateResponse(BaseModel):
    order: OrderResponse
