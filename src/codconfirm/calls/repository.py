"""
Repository for call attempt database operations.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Sequence
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from codconfirm.calls.models import CallAttempt, CallResult
from codconfirm.orders.models import Order
from codconfirm.shared.clock import as_utc


@dataclass(frozen=True)
class CallFilters:
    """Call log list filters."""

    order_id: UUID | None = None
    result: CallResult | None = None
    created_from: datetime | None = None
    created_to: datetime | None = None
    limit: int = 200


@dataclass(frozen=True)
class CallCompletion:
    """Fields written when a call attempt ends."""

    ended_at: datetime
    result: CallResult
    duration_seconds: int | None = None
    cost: Decimal | None = None
    ended_reason: str | None = None
    transcript: str | None = None
    recording_url: str | None = None
    summary: str | None = None


class CallAttemptRepository:
    """Repository for call attempt database operations."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: Async database session.
        """
        self._session = session

    async def get_by_provider_call_id(self, provider_call_id: str) -> CallAttempt | None:
        """Get call attempt by the voice provider's call identifier."""
        stmt = (
            select(CallAttempt)
            .where(CallAttempt.provider_call_id == provider_call_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def create(
        self,
        order_id: UUID,
        attempt_number: int,
        provider_call_id: str | None,
        started_at: datetime,
    ) -> CallAttempt:
        """Create a new call attempt record. Does not commit.

        Args:
            order_id: Owning order UUID.
            attempt_number: 1-based attempt number for this order.
            provider_call_id: Identifier returned by the voice provider.
            started_at: When the call was placed.

        Returns:
            Created CallAttempt instance.
        """
        attempt = CallAttempt(
            order_id=order_id,
            attempt_number=attempt_number,
            provider_call_id=provider_call_id,
            started_at=as_utc(started_at),
            created_at=as_utc(started_at),
        )
        self._session.add(attempt)
        await self._session.flush()
        await self._session.refresh(attempt)
        return attempt

    async def complete_if_open(self, attempt_id: UUID, completion: CallCompletion) -> bool:
        """Write completion fields unless the attempt already ended.

        Returns:
            True if this call closed the attempt, False on a replay.
        """
        stmt = (
            update(CallAttempt)
            .where(CallAttempt.id == attempt_id, CallAttempt.ended_at.is_(None))
            .values(
                ended_at=as_utc(completion.ended_at),
                result=completion.result,
                duration_seconds=completion.duration_seconds,
                cost=completion.cost,
                ended_reason=completion.ended_reason,
                transcript=completion.transcript,
                recording_url=completion.recording_url,
                summary=completion.summary,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return (result.rowcount or 0) == 1

    async def list_for_orders(self, order_ids: Sequence[UUID]) -> dict[UUID, list[CallAttempt]]:
        """Attempts grouped by order, newest first within each group."""
        if not order_ids:
            return {}
        stmt = (
            select(CallAttempt)
            .where(CallAttempt.order_id.in_(list(order_ids)))
            .order_by(CallAttempt.created_at.desc(), CallAttempt.attempt_number.desc())
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        grouped: dict[UUID, list[CallAttempt]] = {}
        for attempt in result.scalars().all():
            grouped.setdefault(attempt.order_id, []).append(attempt)
        return grouped

    async def list_with_order(self, filters: CallFilters) -> list[tuple[CallAttempt, Order]]:
        """Call log, newest first, each with its order."""
        stmt = (
            select(CallAttempt, Order)
            .join(Order, Order.id == CallAttempt.order_id)
            .order_by(CallAttempt.created_at.desc())
            .limit(filters.limit)
            .execution_options(populate_existing=True)
        )
        if filters.order_id is not None:
            stmt = stmt.where(CallAttempt.order_id == filters.order_id)
        if filters.result is not None:
            stmt = stmt.where(CallAttempt.result == filters.result)
        if filters.created_from is not None:
            stmt = stmt.where(CallAttempt.created_at >= as_utc(filters.created_from))
        if filters.created_to is not None:
            stmt = stmt.where(CallAttempt.created_at <= as_utc(filters.created_to))
        result = await self._session.execute(stmt)
        return [(row[0], row[1]) for row in result.all()]
