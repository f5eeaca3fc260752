"""
Order dashboard API router.
"""

from collections.abc import Callable
from datetime import date, datetime
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from codconfirm.calls.repository import CallAttemptRepository
from codconfirm.calls.schemas import CallAttemptResponse
from codconfirm.orders.models import OrderStatus
from codconfirm.orders.repository import OrderFilters, OrderRepository
from codconfirm.orders.schemas import (
    OrderListResponse,
    OrderResponse,
    OrderUpdate,
    OrderUpdateResponse,
    OrderWithCallsResponse,
)
from codconfirm.shared.clock import day_end, day_start, get_clock
from codconfirm.shared.database import get_db_session
from codconfirm.shared.exceptions import NotFoundError, ValidationError
from codconfirm.shared.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/api/orders", tags=["orders"])


@router.get("", response_model=OrderListResponse)
async def list_orders(
    session: Annotated[AsyncSession, Depends(get_db_session)],
    status: OrderStatus | None = None,
    store_id: UUID | None = None,
    from_date: Annotated[date | None, Query(alias="from")] = None,
    to_date: Annotated[date | None, Query(alias="to")] = None,
    search: str | None = None,
    limit: Annotated[int, Query(ge=1, le=1000)] = 200,
) -> OrderListResponse:
    """List orders newest first, each with its store and call history."""
    filters = OrderFilters(
        status=status,
        store_id=store_id,
        created_from=day_start(from_date),
        created_to=day_end(to_date),
        search=search or None,
        limit=limit,
    )
    rows = await OrderRepository(session).list_with_store(filters)
    calls_by_order = await CallAttemptRepository(session).list_for_orders(
        [order.id for order, _ in rows]
    )

    orders = []
    for order, store in rows:
        calls = [CallAttemptResponse.model_validate(c) for c in calls_by_order.get(order.id, [])]
        orders.append(
            OrderWithCallsResponse(
                **OrderResponse.model_validate(order).model_dump(),
                store_name=store.name if store else "",
                store_url=store.url if store else "",
                calls=calls,
                last_call=calls[0] if calls else None,
            )
        )
    return OrderListResponse(orders=orders)


@router.patch("", response_model=OrderUpdateResponse)
async def update_order(
    payload: OrderUpdate,
    session: Annotated[AsyncSession, Depends(get_db_session)],
    clock: Annotated[Callable[[], datetime], Depends(get_clock)],
) -> OrderUpdateResponse:
    """Operator override of status, notes or corrected address.

    The status is set as given; the call attempt counter is never touched.
    """
    values = payload.model_dump(exclude_unset=True, exclude={"id"})
    if values.get("status", "") is None:
        raise ValidationError("status cannot be null")

    repo = OrderRepository(session)
    order = await repo.get_by_id(payload.id)
    if order is None:
        raise NotFoundError(f"Order {payload.id} not found")

    previous = OrderStatus(order.status)
    if values:
        await repo.update_fields(order, values, clock())
        await session.commit()

    logger.info(
        "Operator override applied",
        extra={
            "order_id": str(order.id),
            "fields": sorted(values),
            "from_status": previous.value,
            "to_status": OrderStatus(order.status).value,
        },
    )
    return OrderUpdateResponse(order=OrderResponse.model_validate(order))
