"""
Explicit order status transition table.

Call-decision events are accepted from `en_llamada` and from every status a
decision of the same call may already have written: the mid-call tool decision
and the end-of-call report race, and the later one wins.
"""

from enum import Enum
from types import MappingProxyType

from codconfirm.orders.models import OrderStatus
from codconfirm.shared.exceptions import InvalidTransitionError


class OrderEvent(str, Enum):
    """Things that move an order between statuses."""

    CALL_STARTED = "call_started"
    NO_PHONE = "no_phone"
    CALL_CONFIRMED = "call_confirmed"
    CALL_REJECTED = "call_rejected"
    CALL_NO_ANSWER = "call_no_answer"
    CALL_CALLBACK = "call_callback"
    ADDRESS_CHANGED = "address_changed"
    RETRY = "retry"


_DECISION_SOURCES = (
    OrderStatus.IN_CALL,
    OrderStatus.CONFIRMED,
    OrderStatus.REJECTED,
    OrderStatus.ADDRESS_CHANGED,
    OrderStatus.NO_ANSWER,
    OrderStatus.SCHEDULED,
)

_DECISION_TARGETS = {
    OrderEvent.CALL_CONFIRMED: OrderStatus.CONFIRMED,
    OrderEvent.CALL_REJECTED: OrderStatus.REJECTED,
    OrderEvent.CALL_NO_ANSWER: OrderStatus.NO_ANSWER,
    OrderEvent.CALL_CALLBACK: OrderStatus.SCHEDULED,
    OrderEvent.ADDRESS_CHANGED: OrderStatus.ADDRESS_CHANGED,
}


def _build_table() -> dict[tuple[OrderStatus, OrderEvent], OrderStatus]:
    table: dict[tuple[OrderStatus, OrderEvent], OrderStatus] = {
        (OrderStatus.PENDING, OrderEvent.CALL_STARTED): OrderStatus.IN_CALL,
        (OrderStatus.SCHEDULED, OrderEvent.CALL_STARTED): OrderStatus.IN_CALL,
        (OrderStatus.PENDING, OrderEvent.NO_PHONE): OrderStatus.NO_ANSWER,
        (OrderStatus.SCHEDULED, OrderEvent.NO_PHONE): OrderStatus.NO_ANSWER,
        (OrderStatus.NO_ANSWER, OrderEvent.RETRY): OrderStatus.SCHEDULED,
    }
    for source in _DECISION_SOURCES:
        for event, target in _DECISION_TARGETS.items():
            table[(source, event)] = target
    return table


TRANSITIONS = MappingProxyType(_build_table())


def can_transition(current: OrderStatus, event: OrderEvent) -> bool:
    return (OrderStatus(current), event) in TRANSITIONS


def transition(current: OrderStatus, event: OrderEvent) -> OrderStatus:
    """Return the status `event` leads to from `current`.

    Raises:
        InvalidTransitionError: If the pair is not in the table.
    """
    try:
        return TRANSITIONS[(OrderStatus(current), event)]
    except KeyError:
        raise InvalidTransitionError(
            f"Event {event.value!r} not allowed from status {OrderStatus(current).value!r}"
        ) from None
