"""
Mid-call tool decisions.

The assistant calls `actualizar_pedido` while still on the line once the
customer confirms or rejects. The order is found through the call attempt;
when that link is missing, the most recently updated order on a call is used
instead. That fallback can pick the wrong order if several calls run at once.
"""

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from codconfirm.calls.repository import CallAttemptRepository
from codconfirm.orders.models import Order, OrderStatus
from codconfirm.orders.repository import OrderRepository
from codconfirm.orders.state_machine import OrderEvent, transition
from codconfirm.shared.exceptions import InvalidTransitionError
from codconfirm.shared.logging import get_logger
from codconfirm.telephony.events import ToolCall

logger = get_logger(__name__)

UPDATE_ORDER_FUNCTION = "actualizar_pedido"

MSG_UNKNOWN_FUNCTION = "Función no reconocida"
MSG_ORDER_NOT_FOUND = "No se encontró el pedido activo. El equipo lo revisará manualmente."
MSG_UPDATE_FAILED = "Error al actualizar el pedido. El equipo lo revisará manualmente."
MSG_INTERNAL_ERROR = "Error interno. El equipo revisará el pedido manualmente."


@dataclass(frozen=True)
class ToolDecisionResult:
    tool_call_id: str
    message: str

    def as_provider_response(self) -> dict[str, list[dict[str, str]]]:
        return {"results": [{"toolCallId": self.tool_call_id, "result": self.message}]}


class ToolCallResolver:
    """Applies `actualizar_pedido` decisions to orders."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._orders = OrderRepository(session)
        self._attempts = CallAttemptRepository(session)

    async def _resolve_order(self, provider_call_id: str) -> Order | None:
        if provider_call_id:
            attempt = await self._attempts.get_by_provider_call_id(provider_call_id)
            if attempt is not None:
                order = await self._orders.get_by_id(attempt.order_id)
                if order is not None:
                    return order

        order = await self._orders.latest_in_call()
        if order is not None:
            logger.warning(
                "Tool call resolved through in-call fallback",
                extra={"provider_call_id": provider_call_id, "order_id": str(order.id)},
            )
        return order

    async def apply_tool_decision(self, tool_call: ToolCall, now: datetime) -> ToolDecisionResult:
        """Apply one decision and return the sentence the assistant reads back."""
        def reply(message: str) -> ToolDecisionResult:
            return ToolDecisionResult(tool_call.tool_call_id, message)

        if tool_call.function_name != UPDATE_ORDER_FUNCTION:
            return reply(MSG_UNKNOWN_FUNCTION)

        args = tool_call.arguments
        decision = str(args.get("resultado") or args.get("result") or "").strip()
        new_address = str(args.get("nueva_direccion") or args.get("new_address") or "").strip()

        order = await self._resolve_order(tool_call.provider_call_id)
        if order is None:
            return reply(MSG_ORDER_NOT_FOUND)

        number = order.order_number
        values: dict[str, object] = {}
        if decision == "confirmado" and new_address:
            event = OrderEvent.ADDRESS_CHANGED
            values["address_corrected"] = new_address
            message = f"Pedido {number} confirmado con nueva dirección: {new_address}"
        elif decision == "confirmado":
            event = OrderEvent.CALL_CONFIRMED
            message = f"Pedido {number} confirmado correctamente"
        elif decision == "rechazado":
            event = OrderEvent.CALL_REJECTED
            message = f"Pedido {number} marcado como rechazado"
        else:
            return reply(f'Resultado "{decision}" no reconocido. El equipo lo revisará.')

        current = OrderStatus(order.status)
        try:
            values["status"] = transition(current, event)
        except InvalidTransitionError as e:
            logger.warning(
                "Tool decision rejected by transition table",
                extra={"order_id": str(order.id), "error": str(e)},
            )
            return reply(MSG_ORDER_NOT_FOUND)

        order_id = order.id
        try:
            await self._orders.update_fields(order, values, now)
            await self._session.commit()
        except SQLAlchemyError:
            await self._session.rollback()
            logger.exception("Tool decision could not be stored", extra={"order_id": str(order_id)})
            return reply(MSG_UPDATE_FAILED)

        logger.info(
            "Tool decision applied",
            extra={
                "order_id": str(order_id),
                "provider_call_id": tool_call.provider_call_id,
                "from_status": current.value,
                "to_status": OrderStatus(values["status"]).value,
            },
        )
        return reply(message)
