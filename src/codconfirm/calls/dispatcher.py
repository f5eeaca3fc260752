"""
Call dispatcher.

Each tick picks up to five due orders and places one confirmation call per
order. Orders are isolated from each other: every order gets its own commit,
and a provider failure on one never stops the rest of the batch.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from codconfirm.calls.repository import CallAttemptRepository
from codconfirm.orders.models import Order, OrderStatus
from codconfirm.orders.repository import OrderRepository
from codconfirm.orders.state_machine import OrderEvent, transition
from codconfirm.scheduling.business_hours import is_within_business_hours
from codconfirm.settings.runtime import RuntimeSettings
from codconfirm.shared.exceptions import ProviderError
from codconfirm.shared.logging import get_logger
from codconfirm.stores.repository import StoreRepository
from codconfirm.telephony.interface import CallCredentials, CallRequest, VoiceProvider

logger = get_logger(__name__)

DISPATCH_BATCH_SIZE = 5
NO_PHONE_NOTE = "[Auto] Sin teléfono de contacto"

MSG_NOT_CONFIGURED = "Vapi not configured"
MSG_OUTSIDE_HOURS = "Outside business hours"
MSG_NO_PENDING = "No pending calls"


class DispatchOutcome:
    CALLED = "called"
    SKIPPED_NO_PHONE = "skipped_no_phone"
    ALREADY_CLAIMED = "already_claimed"
    VAPI_ERROR = "vapi_error"
    ERROR = "error"


@dataclass(frozen=True)
class DueOrderSnapshot:
    """Plain copy of a due order, taken before any per-order commit or rollback."""

    id: UUID
    order_number: str
    status: OrderStatus
    call_attempts: int
    customer_name: str
    customer_phone: str
    product: str
    amount: str
    address: str
    store_id: UUID | None

    @classmethod
    def from_order(cls, order: Order) -> "DueOrderSnapshot":
        return cls(
            id=order.id,
            order_number=order.order_number or "",
            status=OrderStatus(order.status),
            call_attempts=order.call_attempts or 0,
            customer_name=order.customer_name or "",
            customer_phone=(order.customer_phone or "").strip(),
            product=order.product or "",
            amount=str(order.amount if order.amount is not None else "0"),
            address=order.address or "",
            store_id=order.store_id,
        )


@dataclass
class DispatchResult:
    triggered: int = 0
    results: list[dict[str, Any]] = field(default_factory=list)
    message: str | None = None


def build_call_variables(order: DueOrderSnapshot, store_name: str) -> dict[str, str]:
    """Variables the assistant reads to the customer."""
    return {
        "nombre_cliente": order.customer_name,
        "numero_pedido": order.order_number,
        "producto": order.product,
        "importe": order.amount,
        "direccion": order.address,
        "tienda": store_name,
    }


def append_note(notes: str | None, line: str) -> str:
    return f"{notes or ''}\n{line}"


class CallDispatcher:
    """Places confirmation calls for due orders."""

    def __init__(
        self,
        session: AsyncSession,
        provider: VoiceProvider,
        business_tz: ZoneInfo,
        batch_size: int = DISPATCH_BATCH_SIZE,
    ) -> None:
        self._session = session
        self._provider = provider
        self._tz = business_tz
        self._batch_size = batch_size
        self._orders = OrderRepository(session)
        self._attempts = CallAttemptRepository(session)
        self._stores = StoreRepository(session)

    async def dispatch_pending_calls(
        self,
        now: datetime,
        settings: RuntimeSettings,
    ) -> DispatchResult:
        """Run one dispatch tick.

        Missing voice credentials and closed business hours are no-ops, not
        errors.
        """
        if not settings.voice_configured:
            logger.info("Dispatch skipped: voice provider not configured")
            return DispatchResult(message=MSG_NOT_CONFIGURED)

        local_now = now.astimezone(self._tz)
        if not is_within_business_hours(local_now, settings.hour_start, settings.hour_end):
            logger.info(
                "Dispatch skipped: outside business hours",
                extra={
                    "local_time": local_now.isoformat(),
                    "hour_start": settings.hour_start,
                    "hour_end": settings.hour_end,
                },
            )
            return DispatchResult(message=MSG_OUTSIDE_HOURS)

        due = await self._orders.list_dispatchable(now, settings.max_retries, self._batch_size)
        snapshots = [DueOrderSnapshot.from_order(order) for order in due]
        if not snapshots:
            return DispatchResult(message=MSG_NO_PENDING)

        credentials = CallCredentials(
            api_key=settings.vapi_key,
            assistant_id=settings.vapi_assistant_id,
            phone_number_id=settings.vapi_phone_id,
        )

        result = DispatchResult()
        for order in snapshots:
            try:
                entry = await self._dispatch_one(order, credentials, settings, now)
            except SQLAlchemyError as e:
                await self._session.rollback()
                logger.exception("Dispatch failed for order", extra={"order_id": str(order.id)})
                entry = {"order": order.order_number, "status": DispatchOutcome.ERROR, "error": str(e)}

            if entry["status"] == DispatchOutcome.CALLED:
                result.triggered += 1
            result.results.append(entry)

        logger.info(
            "Dispatch tick completed",
            extra={"selected": len(snapshots), "triggered": result.triggered},
        )
        return result

    async def _dispatch_one(
        self,
        order: DueOrderSnapshot,
        credentials: CallCredentials,
        settings: RuntimeSettings,
        now: datetime,
    ) -> dict[str, Any]:
        if not order.customer_phone:
            return await self._skip_without_phone(order, now)

        transition(order.status, OrderEvent.CALL_STARTED)
        claimed = await self._orders.claim_for_call(
            order.id,
            expected_status=order.status,
            expected_attempts=order.call_attempts,
            max_retries=settings.max_retries,
            now=now,
        )
        if not claimed:
            await self._session.rollback()
            logger.info("Order already claimed by another tick", extra={"order_id": str(order.id)})
            return {"order": order.order_number, "status": DispatchOutcome.ALREADY_CLAIMED}
        await self._session.commit()

        store_name = ""
        if order.store_id is not None:
            store = await self._stores.get_by_id(order.store_id)
            store_name = store.name if store else ""

        request = CallRequest(
            to=order.customer_phone,
            credentials=credentials,
            variables=build_call_variables(order, store_name),
        )

        try:
            response = await self._provider.place_call(request)
        except ProviderError as e:
            await self._orders.release_claim(order.id, order.status, order.call_attempts, now)
            await self._session.commit()
            logger.error(
                "Voice provider refused call; claim released",
                extra={
                    "order_id": str(order.id),
                    "error_code": e.error_code,
                    "error": str(e),
                },
            )
            return {
                "order": order.order_number,
                "status": DispatchOutcome.VAPI_ERROR,
                "error": e.provider_response or str(e),
            }

        try:
            await self._attempts.create(
                order_id=order.id,
                attempt_number=order.call_attempts + 1,
                provider_call_id=response.provider_call_id,
                started_at=now,
            )
            await self._session.commit()
        except SQLAlchemyError as e:
            # the claim is already committed; without an attempt row the
            # order would stay en_llamada forever
            await self._session.rollback()
            await self._orders.release_claim(order.id, order.status, order.call_attempts, now)
            await self._session.commit()
            logger.exception(
                "Call attempt could not be recorded; claim released",
                extra={"order_id": str(order.id), "provider_call_id": response.provider_call_id},
            )
            return {"order": order.order_number, "status": DispatchOutcome.ERROR, "error": str(e)}

        logger.info(
            "Confirmation call placed",
            extra={
                "order_id": str(order.id),
                "provider_call_id": response.provider_call_id,
                "attempt_number": order.call_attempts + 1,
                "from_status": order.status.value,
                "to_status": OrderStatus.IN_CALL.value,
            },
        )
        return {
            "order": order.order_number,
            "status": DispatchOutcome.CALLED,
            "vapi_call_id": response.provider_call_id,
        }

    async def _skip_without_phone(self, order: DueOrderSnapshot, now: datetime) -> dict[str, Any]:
        new_status = transition(order.status, OrderEvent.NO_PHONE)
        current = await self._orders.get_by_id(order.id)
        if current is None or current.status != order.status:
            await self._session.rollback()
            return {"order": order.order_number, "status": DispatchOutcome.ALREADY_CLAIMED}

        await self._orders.update_fields(
            current,
            {"status": new_status, "notes": append_note(current.notes, NO_PHONE_NOTE)},
            now,
        )
        await self._session.commit()
        logger.warning(
            "Order has no phone; marked as not reachable",
            extra={"order_id": str(order.id), "to_status": new_status.value},
        )
        return {"order": order.order_number, "status": DispatchOutcome.SKIPPED_NO_PHONE}
