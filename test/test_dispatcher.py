"""Tests for the call dispatcher."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from codconfirm.calls.dispatcher import (
    MSG_NO_PENDING,
    MSG_NOT_CONFIGURED,
    MSG_OUTSIDE_HOURS,
    NO_PHONE_NOTE,
    CallDispatcher,
    DispatchOutcome,
)
from codconfirm.calls.models import CallAttempt
from codconfirm.orders.models import Order, OrderStatus
from codconfirm.orders.repository import OrderRepository
from codconfirm.settings.runtime import RuntimeSettings

from conftest import FIXED_NOW, reload


@pytest.fixture
def dispatcher(db_session, mock_provider, tz) -> CallDispatcher:
    return CallDispatcher(db_session, mock_provider, tz)


async def attempts_for(session, order_id) -> list[CallAttempt]:
    result = await session.execute(select(CallAttempt).where(CallAttempt.order_id == order_id))
    return list(result.scalars().all())


class TestDispatchGuards:
    async def test_not_configured_is_a_noop(self, dispatcher, make_order, mock_provider, now) -> None:
        await make_order()

        result = await dispatcher.dispatch_pending_calls(now, RuntimeSettings())

        assert result.triggered == 0
        assert result.message == MSG_NOT_CONFIGURED
        assert mock_provider.calls == []

    async def test_outside_business_hours_is_a_noop(
        self, dispatcher, make_order, mock_provider, runtime_settings
    ) -> None:
        await make_order()
        # 22:30 Madrid
        late = datetime(2024, 3, 5, 21, 30, tzinfo=timezone.utc)

        result = await dispatcher.dispatch_pending_calls(late, runtime_settings)

        assert result.triggered == 0
        assert result.message == MSG_OUTSIDE_HOURS
        assert mock_provider.calls == []

    async def test_nothing_due(self, dispatcher, mock_provider, runtime_settings, now) -> None:
        result = await dispatcher.dispatch_pending_calls(now, runtime_settings)

        assert result.triggered == 0
        assert result.message == MSG_NO_PENDING
        assert mock_provider.calls == []


class TestDispatchSelection:
    async def test_future_and_exhausted_orders_are_not_called(
        self, dispatcher, db_session, make_order, mock_provider, runtime_settings, now
    ) -> None:
        await make_order(call_scheduled_at=now + timedelta(minutes=10))
        await make_order(call_attempts=3)
        await make_order(status=OrderStatus.CONFIRMED)

        result = await dispatcher.dispatch_pending_calls(now, runtime_settings)

        assert result.triggered == 0
        assert mock_provider.calls == []

    async def test_batch_is_capped_oldest_first(
        self, dispatcher, db_session, make_order, mock_provider, runtime_settings, now
    ) -> None:
        orders = []
        for minutes_ago in range(7, 0, -1):
            orders.append(await make_order(call_scheduled_at=now - timedelta(minutes=minutes_ago)))

        result = await dispatcher.dispatch_pending_calls(now, runtime_settings)

        assert result.triggered == 5
        assert [r["order"] for r in result.results] == [o.order_number for o in orders[:5]]
        for order in orders[5:]:
            untouched = await reload(db_session, Order, order.id)
            assert untouched.status == OrderStatus.PENDING

    async def test_scheduled_orders_are_called_too(
        self, dispatcher, make_order, runtime_settings, now
    ) -> None:
        await make_order(status=OrderStatus.SCHEDULED, call_scheduled_at=now - timedelta(hours=2))

        result = await dispatcher.dispatch_pending_calls(now, runtime_settings)

        assert result.triggered == 1


class TestDispatchOne:
    async def test_successful_call_claims_order_and_records_attempt(
        self, dispatcher, db_session, make_store, make_order, mock_provider, runtime_settings, now
    ) -> None:
        store = await make_store()
        order = await make_order(store_id=store.id, call_attempts=1)

        result = await dispatcher.dispatch_pending_calls(now, runtime_settings)

        assert result.triggered == 1
        assert result.results == [
            {"order": order.order_number, "status": DispatchOutcome.CALLED, "vapi_call_id": "MOCK_CALL_000001"}
        ]

        updated = await reload(db_session, Order, order.id)
        assert updated.status == OrderStatus.IN_CALL
        assert updated.call_attempts == 2

        attempts = await attempts_for(db_session, order.id)
        assert len(attempts) == 1
        assert attempts[0].provider_call_id == "MOCK_CALL_000001"
        assert attempts[0].attempt_number == 2
        assert attempts[0].ended_at is None
        assert attempts[0].result is None

        request = mock_provider.get_last_call()
        assert request.to == "+34600111222"
        assert request.credentials.api_key == "test-key"
        assert request.credentials.assistant_id == "asst-123"
        assert request.credentials.phone_number_id == "phone-456"
        assert request.variables["nombre_cliente"] == "María García"
        assert request.variables["numero_pedido"] == order.order_number
        assert request.variables["importe"] == "59.90"
        assert request.variables["tienda"] == "Tienda Uno"

    async def test_order_without_store_sends_empty_store_name(
        self, dispatcher, make_order, mock_provider, runtime_settings, now
    ) -> None:
        await make_order(store_id=None)

        await dispatcher.dispatch_pending_calls(now, runtime_settings)

        assert mock_provider.get_last_call().variables["tienda"] == ""

    async def test_missing_phone_marks_order_unreachable(
        self, dispatcher, db_session, make_order, mock_provider, runtime_settings, now
    ) -> None:
        order = await make_order(customer_phone="", notes="Cliente VIP")

        result = await dispatcher.dispatch_pending_calls(now, runtime_settings)

        assert result.triggered == 0
        assert result.results[0]["status"] == DispatchOutcome.SKIPPED_NO_PHONE
        assert mock_provider.calls == []

        updated = await reload(db_session, Order, order.id)
        assert updated.status == OrderStatus.NO_ANSWER
        assert updated.call_attempts == 0
        assert updated.notes == f"Cliente VIP\n{NO_PHONE_NOTE}"

    async def test_provider_failure_releases_claim(
        self, dispatcher, db_session, make_order, mock_provider, runtime_settings, now
    ) -> None:
        order = await make_order(status=OrderStatus.SCHEDULED, call_attempts=1)
        mock_provider.configure_failure(error_message="Invalid assistant", error_code="HTTP_400")

        result = await dispatcher.dispatch_pending_calls(now, runtime_settings)

        assert result.triggered == 0
        assert result.results[0]["status"] == DispatchOutcome.VAPI_ERROR
        assert result.results[0]["error"] == "Invalid assistant"

        updated = await reload(db_session, Order, order.id)
        assert updated.status == OrderStatus.SCHEDULED
        assert updated.call_attempts == 1
        assert await attempts_for(db_session, order.id) == []

    async def test_failure_does_not_stop_the_batch(
        self, dispatcher, db_session, make_order, mock_provider, runtime_settings, now
    ) -> None:
        no_phone = await make_order(customer_phone="  ", call_scheduled_at=now - timedelta(minutes=9))
        callable_order = await make_order(call_scheduled_at=now - timedelta(minutes=1))

        result = await dispatcher.dispatch_pending_calls(now, runtime_settings)

        assert [r["status"] for r in result.results] == [
            DispatchOutcome.SKIPPED_NO_PHONE,
            DispatchOutcome.CALLED,
        ]
        assert (await reload(db_session, Order, no_phone.id)).status == OrderStatus.NO_ANSWER
        assert (await reload(db_session, Order, callable_order.id)).status == OrderStatus.IN_CALL


    async def test_attempt_write_failure_releases_claim(
        self, dispatcher, db_session, make_order, make_attempt, mock_provider, runtime_settings, now
    ) -> None:
        # another order already owns the provider call id the mock hands out next
        other = await make_order(status=OrderStatus.CONFIRMED, call_attempts=1)
        await make_attempt(other, provider_call_id="MOCK_CALL_000001")
        order = await make_order(call_attempts=1)

        result = await dispatcher.dispatch_pending_calls(now, runtime_settings)

        assert result.triggered == 0
        assert [(r["order"], r["status"]) for r in result.results] == [
            (order.order_number, DispatchOutcome.ERROR)
        ]
        updated = await reload(db_session, Order, order.id)
        assert updated.status == OrderStatus.PENDING
        assert updated.call_attempts == 1
        assert await attempts_for(db_session, order.id) == []

        # released orders are picked up again on the next tick
        retry = await dispatcher.dispatch_pending_calls(now, runtime_settings)
        assert retry.results[0]["status"] == DispatchOutcome.CALLED


class TestClaim:
    async def test_claim_fails_when_row_changed(self, db_session, make_order, now) -> None:
        order = await make_order(call_attempts=1)
        repo = OrderRepository(db_session)

        stale = await repo.claim_for_call(
            order.id, OrderStatus.PENDING, expected_attempts=0, max_retries=3, now=now
        )
        fresh = await repo.claim_for_call(
            order.id, OrderStatus.PENDING, expected_attempts=1, max_retries=3, now=now
        )
        again = await repo.claim_for_call(
            order.id, OrderStatus.PENDING, expected_attempts=1, max_retries=3, now=now
        )
        await db_session.commit()

        assert stale is False
        assert fresh is True
        assert again is False
        updated = await reload(db_session, Order, order.id)
        assert updated.status == OrderStatus.IN_CALL
        assert updated.call_attempts == 2

    async def test_claim_respects_retry_ceiling(self, db_session, make_order) -> None:
        order = await make_order(call_attempts=3)

        claimed = await OrderRepository(db_session).claim_for_call(
            order.id, OrderStatus.PENDING, expected_attempts=3, max_retries=3, now=FIXED_NOW
        )

        assert claimed is False
