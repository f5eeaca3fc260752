"""
FastAPI router for voice provider webhooks.

Two server messages are handled: the end-of-call report and mid-call tool
calls. The tool endpoint always answers 200 in the provider's `results`
shape, since anything else is read aloud as a failure to the customer.
"""

from collections.abc import Callable
from datetime import datetime
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from codconfirm.calls.outcome import CallOutcomeService, CompletionStatus
from codconfirm.calls.tool_resolver import MSG_INTERNAL_ERROR, ToolCallResolver, ToolDecisionResult
from codconfirm.config import get_settings
from codconfirm.settings.repository import SettingsRepository
from codconfirm.shared.clock import get_clock
from codconfirm.shared.database import get_db_session
from codconfirm.shared.logging import get_logger
from codconfirm.telephony.factory import get_voice_provider
from codconfirm.telephony.interface import VoiceProvider

logger = get_logger(__name__)

router = APIRouter(prefix="/webhooks/vapi", tags=["webhooks"])


async def _json_body(request: Request) -> dict[str, Any] | None:
    try:
        body = await request.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


@router.post("/callback")
async def call_completed(
    request: Request,
    session: Annotated[AsyncSession, Depends(get_db_session)],
    provider: Annotated[VoiceProvider, Depends(get_voice_provider)],
    clock: Annotated[Callable[[], datetime], Depends(get_clock)],
) -> JSONResponse:
    """Apply an end-of-call report."""
    body = await _json_body(request)
    if body is None:
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": "Invalid payload"})

    report = provider.parse_completion_report(body)
    if not report.is_end_of_call:
        return JSONResponse(content={"message": "Ignored non-end event"})
    if not report.provider_call_id:
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": "No call ID found"})

    try:
        runtime = await SettingsRepository(session).load_runtime()
        service = CallOutcomeService(session, get_settings().business_tz)
        outcome = await service.apply_call_completion(report, runtime, clock())
    except Exception:
        logger.exception(
            "End-of-call report could not be applied",
            extra={"provider_call_id": report.provider_call_id},
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal server error"},
        )

    if outcome.status == CompletionStatus.NOT_FOUND:
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"error": "Call record not found"})

    return JSONResponse(
        content={
            "success": True,
            "duplicate": outcome.status == CompletionStatus.DUPLICATE,
            "result": outcome.result.value if outcome.result else None,
            "orderStatus": outcome.order_status.value if outcome.order_status else None,
        }
    )


@router.post("/tool")
async def tool_call(
    request: Request,
    session: Annotated[AsyncSession, Depends(get_db_session)],
    provider: Annotated[VoiceProvider, Depends(get_voice_provider)],
    clock: Annotated[Callable[[], datetime], Depends(get_clock)],
) -> JSONResponse:
    """Apply a mid-call `actualizar_pedido` decision."""
    body = await _json_body(request)
    tool = provider.parse_tool_call(body) if body is not None else None
    if tool is None:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "No tool call found in payload"},
        )

    logger.info(
        "Tool call received",
        extra={
            "function": tool.function_name,
            "tool_call_id": tool.tool_call_id,
            "provider_call_id": tool.provider_call_id,
        },
    )

    try:
        result = await ToolCallResolver(session).apply_tool_decision(tool, clock())
    except Exception:
        logger.exception("Tool call failed", extra={"tool_call_id": tool.tool_call_id})
        result = ToolDecisionResult(tool_call_id="error", message=MSG_INTERNAL_ERROR)

    return JSONResponse(content=result.as_provider_response())
