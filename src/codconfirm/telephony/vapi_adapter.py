"""
Vapi voice provider adapter.
"""

from datetime import datetime, timezone
from typing import Any

import httpx

from codconfirm.shared.logging import get_logger
from codconfirm.telephony.config import VoiceConfig, get_voice_config
from codconfirm.telephony.interface import (
    CallInitiationError,
    CallRequest,
    CallResponse,
    VoiceProvider,
)

logger = get_logger(__name__)

CALL_PHONE_PATH = "/call/phone"


class VapiAdapter(VoiceProvider):
    """Places outbound calls through the Vapi REST API.

    Uses a sync httpx client so tests can inject a mock; the async entrypoint
    from `VoiceProvider` delegates here in a worker thread.
    """

    def __init__(
        self,
        config: VoiceConfig | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        self._config = config or get_voice_config()
        self._http_client = http_client
        self._owns_client = http_client is None

    def _get_client(self) -> httpx.Client:
        if self._http_client is None:
            self._http_client = httpx.Client(
                timeout=httpx.Timeout(self._config.request_timeout_seconds)
            )
        return self._http_client

    def close(self) -> None:
        if self._owns_client and self._http_client is not None:
            self._http_client.close()
            self._http_client = None

    @staticmethod
    def build_payload(request: CallRequest) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "assistantId": request.credentials.assistant_id,
            "customer": {"number": request.to},
            "assistantOverrides": {"variableValues": dict(request.variables)},
        }
        if request.credentials.phone_number_id:
            payload["phoneNumberId"] = request.credentials.phone_number_id
        return payload

    def place_call_sync(self, request: CallRequest) -> CallResponse:
        """Place an outbound call via Vapi (sync)."""
        client = self._get_client()

        logger.info(
            "Placing Vapi call",
            extra={
                "to": request.to,
                "order_number": request.variables.get("numero_pedido", ""),
            },
        )

        try:
            response = client.post(
                self._config.get_api_url(CALL_PHONE_PATH),
                json=self.build_payload(request),
                headers={"Authorization": f"Bearer {request.credentials.api_key}"},
            )
        except httpx.HTTPError as e:
            logger.exception("HTTP error during Vapi call placement", extra={"to": request.to})
            raise CallInitiationError(
                message=f"HTTP error: {e!s}",
                error_code="TIMEOUT" if isinstance(e, httpx.TimeoutException) else "HTTP_ERROR",
            ) from e

        try:
            data = response.json() if response.content else {}
        except ValueError:
            data = {"raw": response.text}
        if not isinstance(data, dict):
            data = {"raw": data}

        if response.status_code >= 400:
            logger.error(
                "Vapi call placement failed",
                extra={"status_code": response.status_code, "error": data, "to": request.to},
            )
            message = data.get("message") or "Call placement failed"
            if isinstance(message, list):
                message = "; ".join(str(m) for m in message)
            raise CallInitiationError(
                message=str(message),
                error_code=str(data.get("statusCode", response.status_code)),
                provider_response=data,
            )

        provider_call_id = str(data.get("id") or "")
        if not provider_call_id:
            raise CallInitiationError(
                message="Provider response without call id",
                error_code="MISSING_CALL_ID",
                provider_response=data,
            )

        created_at = datetime.now(timezone.utc)
        if data.get("createdAt"):
            try:
                created_at = datetime.fromisoformat(str(data["createdAt"]).replace("Z", "+00:00"))
            except ValueError:
                pass

        return CallResponse(
            provider_call_id=provider_call_id,
            status=str(data.get("status") or "queued"),
            created_at=created_at,
            raw_response=data,
        )
