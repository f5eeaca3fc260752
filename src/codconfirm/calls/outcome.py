"""
Call outcome interpreter.

Turns an end-of-call report into a classified call result, closes the call
attempt and moves the order to its next status, scheduling a retry when the
customer could not be reached and attempts remain.
"""

from dataclasses import dataclass
from datetime import datetime
from zoneinfo import ZoneInfo

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from codconfirm.calls.models import CallResult
from codconfirm.calls.repository import CallAttemptRepository, CallCompletion
from codconfirm.orders.models import OrderStatus
from codconfirm.orders.repository import OrderRepository
from codconfirm.orders.state_machine import OrderEvent, transition
from codconfirm.scheduling.business_hours import next_eligible_time
from codconfirm.settings.runtime import RuntimeSettings
from codconfirm.shared.clock import as_utc
from codconfirm.shared.exceptions import InvalidTransitionError, ValidationError
from codconfirm.shared.logging import get_logger
from codconfirm.telephony.events import CompletionReport

logger = get_logger(__name__)

RETRY_DELAY_MINUTES = 30

ADDRESS_CHANGE_MARKERS = ("cambiar", "nueva dirección", "correg", "no es correcta")

RESULT_TO_STATUS: dict[CallResult, OrderStatus] = {
    CallResult.CONFIRMED: OrderStatus.CONFIRMED,
    CallResult.REJECTED: OrderStatus.REJECTED,
    CallResult.CALLBACK: OrderStatus.SCHEDULED,
    CallResult.NO_ANSWER: OrderStatus.NO_ANSWER,
    CallResult.VOICEMAIL: OrderStatus.NO_ANSWER,
}

_STATUS_TO_EVENT: dict[OrderStatus, OrderEvent] = {
    OrderStatus.CONFIRMED: OrderEvent.CALL_CONFIRMED,
    OrderStatus.ADDRESS_CHANGED: OrderEvent.ADDRESS_CHANGED,
    OrderStatus.REJECTED: OrderEvent.CALL_REJECTED,
    OrderStatus.SCHEDULED: OrderEvent.CALL_CALLBACK,
    OrderStatus.NO_ANSWER: OrderEvent.CALL_NO_ANSWER,
}


class CompletionStatus:
    PROCESSED = "processed"
    IGNORED = "ignored"
    DUPLICATE = "duplicate"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class CallClassification:
    result: CallResult
    order_status: OrderStatus
    address_change_requested: bool


@dataclass(frozen=True)
class CompletionResult:
    status: str
    provider_call_id: str = ""
    result: CallResult | None = None
    order_status: OrderStatus | None = None


def classify_call(success_evaluation: str, ended_reason: str, transcript: str) -> CallClassification:
    """Classify a finished call.

    The success evaluation is read first; the ended reason then overrides it
    for voicemail and unreachable calls. An address change mentioned in the
    transcript upgrades a confirmation to `direccion_cambiada`.
    """
    evaluation = (success_evaluation or "").strip().lower()
    if "success" in evaluation or evaluation == "true":
        result = CallResult.CONFIRMED
    elif "fail" in evaluation or evaluation == "false":
        result = CallResult.REJECTED
    elif "callback" in evaluation:
        result = CallResult.CALLBACK
    else:
        result = CallResult.NO_ANSWER

    reason = (ended_reason or "").lower()
    if "voicemail" in reason:
        result = CallResult.VOICEMAIL
    if "no-answer" in reason or "failed-to-connect" in reason:
        result = CallResult.NO_ANSWER

    text = (transcript or "").lower()
    address_change = any(marker in text for marker in ADDRESS_CHANGE_MARKERS)

    status = RESULT_TO_STATUS[result]
    if address_change and result == CallResult.CONFIRMED:
        status = OrderStatus.ADDRESS_CHANGED

    return CallClassification(
        result=result,
        order_status=status,
        address_change_requested=address_change,
    )


class CallOutcomeService:
    """Applies end-of-call reports to call attempts and orders."""

    def __init__(self, session: AsyncSession, business_tz: ZoneInfo) -> None:
        self._session = session
        self._tz = business_tz
        self._orders = OrderRepository(session)
        self._attempts = CallAttemptRepository(session)

    def _retry_time(self, now: datetime, settings: RuntimeSettings) -> datetime:
        scheduled_at, _ = next_eligible_time(
            now.astimezone(self._tz),
            RETRY_DELAY_MINUTES,
            settings.hour_start,
            settings.hour_end,
        )
        return as_utc(scheduled_at)

    async def apply_call_completion(
        self,
        report: CompletionReport,
        settings: RuntimeSettings,
        now: datetime,
    ) -> CompletionResult:
        """Close the call attempt and transition its order in one transaction.

        A report for an attempt that already ended is acknowledged as a
        duplicate and changes nothing.

        Raises:
            ValidationError: If the report carries no provider call id.
            SQLAlchemyError: On storage failure (nothing is committed).
        """
        if not report.is_end_of_call:
            return CompletionResult(status=CompletionStatus.IGNORED)

        call_id = report.provider_call_id
        if not call_id:
            raise ValidationError("No call ID found")

        attempt = await self._attempts.get_by_provider_call_id(call_id)
        if attempt is None:
            logger.warning("No call attempt for provider call id", extra={"provider_call_id": call_id})
            return CompletionResult(status=CompletionStatus.NOT_FOUND, provider_call_id=call_id)
        order_id = attempt.order_id
        recorded_result = attempt.result

        classification = classify_call(
            report.success_evaluation,
            report.ended_reason,
            report.transcript,
        )

        try:
            closed = await self._attempts.complete_if_open(
                attempt.id,
                CallCompletion(
                    ended_at=now,
                    result=classification.result,
                    duration_seconds=report.duration_seconds or 0,
                    cost=report.cost,
                    ended_reason=report.ended_reason,
                    transcript=report.transcript,
                    recording_url=report.recording_url,
                    summary=report.summary,
                ),
            )
            if not closed:
                await self._session.rollback()
                logger.info("Replayed end-of-call report ignored", extra={"provider_call_id": call_id})
                return CompletionResult(
                    status=CompletionStatus.DUPLICATE,
                    provider_call_id=call_id,
                    result=recorded_result,
                )

            order = await self._orders.get_by_id(order_id)
            if order is None:
                await self._session.commit()
                return CompletionResult(
                    status=CompletionStatus.NOT_FOUND,
                    provider_call_id=call_id,
                    result=classification.result,
                )

            current = OrderStatus(order.status)
            try:
                new_status = transition(current, _STATUS_TO_EVENT[classification.order_status])
            except InvalidTransitionError as e:
                await self._session.commit()
                logger.warning(
                    "Call outcome recorded; order left unchanged",
                    extra={"order_id": str(order_id), "provider_call_id": call_id, "error": str(e)},
                )
                return CompletionResult(
                    status=CompletionStatus.PROCESSED,
                    provider_call_id=call_id,
                    result=classification.result,
                    order_status=current,
                )

            values: dict[str, object] = {"status": new_status}
            if classification.address_change_requested:
                corrected = report.new_address or report.summary
                if corrected:
                    values["address_corrected"] = corrected

            if new_status == OrderStatus.SCHEDULED:
                values["call_scheduled_at"] = self._retry_time(now, settings)
            elif new_status == OrderStatus.NO_ANSWER and order.call_attempts < settings.max_retries:
                values["status"] = transition(new_status, OrderEvent.RETRY)
                values["call_scheduled_at"] = self._retry_time(now, settings)

            await self._orders.update_fields(order, values, now)
            await self._session.commit()
        except SQLAlchemyError:
            await self._session.rollback()
            raise

        final_status = OrderStatus(values["status"])
        logger.info(
            "Call outcome applied",
            extra={
                "order_id": str(order_id),
                "provider_call_id": call_id,
                "result": classification.result.value,
                "from_status": current.value,
                "to_status": final_status.value,
                "call_attempts": order.call_attempts,
            },
        )
        return CompletionResult(
            status=CompletionStatus.PROCESSED,
            provider_call_id=call_id,
            result=classification.result,
            order_status=final_status,
        )
