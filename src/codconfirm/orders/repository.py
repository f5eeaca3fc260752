"""
Repository for order database operations.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from codconfirm.orders.models import DISPATCHABLE_STATUSES, Order, OrderStatus
from codconfirm.shared.clock import as_utc
from codconfirm.stores.models import Store


@dataclass(frozen=True)
class OrderFilters:
    """Dashboard list filters."""

    status: OrderStatus | None = None
    store_id: UUID | None = None
    created_from: datetime | None = None
    created_to: datetime | None = None
    search: str | None = None
    limit: int = 200


class OrderRepository:
    """Repository for order database operations."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: Async database session.
        """
        self._session = session

    async def get_by_id(self, order_id: UUID) -> Order | None:
        stmt = (
            select(Order)
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_external_id(self, external_order_id: str) -> Order | None:
        stmt = (
            select(Order)
            .where(Order.external_order_id == external_order_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def existing_external_ids(self, external_ids: Iterable[str]) -> set[str]:
        """One-query snapshot of which upstream ids are already stored."""
        ids = list(external_ids)
        if not ids:
            return set()
        stmt = select(Order.external_order_id).where(Order.external_order_id.in_(ids))
        result = await self._session.execute(stmt)
        return set(result.scalars().all())

    async def create(self, order: Order) -> Order:
        """Insert an order.

        Raises:
            sqlalchemy.exc.IntegrityError: If the external id already exists.
        """
        self._session.add(order)
        await self._session.flush()
        await self._session.refresh(order)
        return order

    async def list_dispatchable(
        self,
        now: datetime,
        max_retries: int,
        limit: int,
    ) -> list[Order]:
        """Orders due for a call, oldest schedule first."""
        stmt = (
            select(Order)
            .where(Order.status.in_(DISPATCHABLE_STATUSES))
            .where(Order.call_scheduled_at.is_not(None))
            .where(Order.call_scheduled_at <= as_utc(now))
            .where(Order.call_attempts < max_retries)
            .order_by(Order.call_scheduled_at.asc())
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def claim_for_call(
        self,
        order_id: UUID,
        expected_status: OrderStatus,
        expected_attempts: int,
        max_retries: int,
        now: datetime,
    ) -> bool:
        """Compare-and-set the order into `en_llamada`, consuming one attempt.

        Only succeeds if the row still has the status and attempt count the
        caller selected, so two overlapping dispatch ticks cannot both win.
        Does not commit.
        """
        stmt = (
            update(Order)
            .where(
                Order.id == order_id,
                Order.status == expected_status,
                Order.call_attempts == expected_attempts,
                Order.call_attempts < max_retries,
            )
            .values(
                status=OrderStatus.IN_CALL,
                call_attempts=Order.call_attempts + 1,
                updated_at=as_utc(now),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return (result.rowcount or 0) == 1

    async def release_claim(
        self,
        order_id: UUID,
        previous_status: OrderStatus,
        previous_attempts: int,
        now: datetime,
    ) -> None:
        """Undo `claim_for_call` when the call could not be placed or recorded. Does not commit."""
        stmt = (
            update(Order)
            .where(Order.id == order_id, Order.status == OrderStatus.IN_CALL)
            .values(
                status=previous_status,
                call_attempts=previous_attempts,
                updated_at=as_utc(now),
            )
            .execution_options(synchronize_session=False)
        )
        await self._session.execute(stmt)

    async def latest_in_call(self) -> Order | None:
        """Most recently updated order currently on a call."""
        stmt = (
            select(Order)
            .where(Order.status == OrderStatus.IN_CALL)
            .order_by(Order.updated_at.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_with_store(self, filters: OrderFilters) -> list[tuple[Order, Store | None]]:
        """Orders for the dashboard, newest first, each with its store."""
        stmt = (
            select(Order, Store)
            .outerjoin(Store, Store.id == Order.store_id)
            .order_by(Order.created_at.desc())
            .limit(filters.limit)
            .execution_options(populate_existing=True)
        )
        if filters.status is not None:
            stmt = stmt.where(Order.status == filters.status)
        if filters.store_id is not None:
            stmt = stmt.where(Order.store_id == filters.store_id)
        if filters.created_from is not None:
            stmt = stmt.where(Order.created_at >= as_utc(filters.created_from))
        if filters.created_to is not None:
            stmt = stmt.where(Order.created_at <= as_utc(filters.created_to))
        if filters.search:
            pattern = f"%{filters.search}%"
            stmt = stmt.where(
                or_(
                    Order.customer_name.ilike(pattern),
                    Order.customer_phone.ilike(pattern),
                    Order.order_number.ilike(pattern),
                    Order.product.ilike(pattern),
                )
            )
        result = await self._session.execute(stmt)
        return [(row[0], row[1]) for row in result.all()]

    async def update_fields(self, order: Order, values: dict[str, Any], now: datetime) -> Order:
        """Set attributes on an attached order and flush. Does not commit."""
        for key, value in values.items():
            setattr(order, key, value)
        order.updated_at = as_utc(now)
        await self._session.flush()
        return order
