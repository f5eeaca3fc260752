"""
Call API router: call log, dispatch trigger and sample calls.
"""

from collections.abc import Callable
from datetime import date, datetime
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from codconfirm.calls.dispatcher import CallDispatcher
from codconfirm.calls.models import CallResult
from codconfirm.calls.repository import CallAttemptRepository, CallFilters
from codconfirm.calls.schemas import (
    CallListResponse,
    CallLogEntry,
    CallOrderSummary,
    CallAttemptResponse,
    DispatchResponse,
    SampleCallRequest,
    SampleCallResponse,
)
from codconfirm.config import get_settings
from codconfirm.settings.repository import SettingsRepository
from codconfirm.shared.clock import day_end, day_start, get_clock
from codconfirm.shared.database import get_db_session
from codconfirm.shared.exceptions import ProviderError, ValidationError
from codconfirm.shared.logging import get_logger
from codconfirm.telephony.factory import get_voice_provider
from codconfirm.telephony.interface import CallCredentials, CallRequest, VoiceProvider

logger = get_logger(__name__)

router = APIRouter(prefix="/api/calls", tags=["calls"])

SAMPLE_VARIABLES = {
    "nombre_cliente": "Cliente de Prueba",
    "numero_pedido": "#TEST-001",
    "producto": "Producto de Ejemplo",
    "importe": "29.99",
    "direccion": "Calle de Prueba 123, Madrid",
    "tienda": "Mi Tienda Test",
}


@router.get("", response_model=CallListResponse)
async def list_calls(
    session: Annotated[AsyncSession, Depends(get_db_session)],
    order_id: UUID | None = None,
    result: CallResult | None = None,
    from_date: Annotated[date | None, Query(alias="from")] = None,
    to_date: Annotated[date | None, Query(alias="to")] = None,
    limit: Annotated[int, Query(ge=1, le=1000)] = 200,
) -> CallListResponse:
    """Call log, newest first, with the order each call belongs to."""
    filters = CallFilters(
        order_id=order_id,
        result=result,
        created_from=day_start(from_date),
        created_to=day_end(to_date),
        limit=limit,
    )
    rows = await CallAttemptRepository(session).list_with_order(filters)
    return CallListResponse(
        calls=[
            CallLogEntry(
                **CallAttemptResponse.model_validate(attempt).model_dump(),
                order=CallOrderSummary.model_validate(order),
            )
            for attempt, order in rows
        ]
    )


@router.post("/trigger", response_model=DispatchResponse)
async def trigger_calls(
    session: Annotated[AsyncSession, Depends(get_db_session)],
    provider: Annotated[VoiceProvider, Depends(get_voice_provider)],
    clock: Annotated[Callable[[], datetime], Depends(get_clock)],
) -> DispatchResponse:
    """Run one dispatch tick now."""
    runtime = await SettingsRepository(session).load_runtime()
    dispatcher = CallDispatcher(session, provider, get_settings().business_tz)
    outcome = await dispatcher.dispatch_pending_calls(clock(), runtime)
    return DispatchResponse(
        triggered=outcome.triggered,
        results=outcome.results,
        message=outcome.message,
    )


@router.post("/test", response_model=SampleCallResponse)
async def sample_call(
    payload: SampleCallRequest,
    session: Annotated[AsyncSession, Depends(get_db_session)],
    provider: Annotated[VoiceProvider, Depends(get_voice_provider)],
) -> SampleCallResponse:
    """Place a call with sample order data to check the assistant setup."""
    if not payload.phone.strip():
        raise ValidationError("El teléfono es obligatorio")

    runtime = await SettingsRepository(session).load_runtime()
    if not (runtime.vapi_key and runtime.vapi_assistant_id and runtime.vapi_phone_id):
        raise ValidationError(
            "Vapi no está configurado. Configura la API Key, el ID del Asistente "
            "y el Phone Number ID en Configuración."
        )

    variables = {
        "nombre_cliente": payload.customer_name or SAMPLE_VARIABLES["nombre_cliente"],
        "numero_pedido": payload.order_number or SAMPLE_VARIABLES["numero_pedido"],
        "producto": payload.product or SAMPLE_VARIABLES["producto"],
        "importe": str(payload.amount or SAMPLE_VARIABLES["importe"]),
        "direccion": payload.address or SAMPLE_VARIABLES["direccion"],
        "tienda": payload.store_name or SAMPLE_VARIABLES["tienda"],
    }
    request = CallRequest(
        to=payload.phone.strip(),
        credentials=CallCredentials(
            api_key=runtime.vapi_key,
            assistant_id=runtime.vapi_assistant_id,
            phone_number_id=runtime.vapi_phone_id,
        ),
        variables=variables,
    )

    try:
        response = await provider.place_call(request)
    except ProviderError as e:
        logger.warning("Sample call failed", extra={"error": str(e), "error_code": e.error_code})
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "Error al iniciar la llamada de prueba", "details": str(e)},
        ) from e

    return SampleCallResponse(
        message="Llamada de prueba iniciada correctamente",
        call_id=response.provider_call_id,
        status=response.status,
    )
