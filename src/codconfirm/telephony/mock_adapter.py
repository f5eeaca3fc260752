"""
Mock voice provider for local runs and tests.
"""

from datetime import datetime, timezone

from codconfirm.shared.logging import get_logger
from codconfirm.telephony.interface import (
    CallInitiationError,
    CallRequest,
    CallResponse,
    VoiceProvider,
)

logger = get_logger(__name__)


class MockVoiceProvider(VoiceProvider):
    """Records placed calls instead of dialing anyone."""

    def __init__(self) -> None:
        self._calls: list[CallRequest] = []
        self._next_call_id: int = 1
        self._should_fail: bool = False
        self._fail_error: str = "Mock failure"
        self._fail_code: str = "MOCK_ERROR"

    def reset(self) -> None:
        self._calls.clear()
        self._next_call_id = 1
        self._should_fail = False
        self._fail_error = "Mock failure"
        self._fail_code = "MOCK_ERROR"

    def configure_failure(
        self,
        should_fail: bool = True,
        error_message: str = "Mock failure",
        error_code: str = "MOCK_ERROR",
    ) -> None:
        self._should_fail = should_fail
        self._fail_error = error_message
        self._fail_code = error_code

    @property
    def calls(self) -> list[CallRequest]:
        return self._calls.copy()

    def get_last_call(self) -> CallRequest | None:
        return self._calls[-1] if self._calls else None

    def place_call_sync(self, request: CallRequest) -> CallResponse:
        logger.info("Mock: placing call", extra={"to": request.to})

        if self._should_fail:
            raise CallInitiationError(
                message=self._fail_error,
                error_code=self._fail_code,
            )

        self._calls.append(request)

        provider_call_id = f"MOCK_CALL_{self._next_call_id:06d}"
        self._next_call_id += 1

        return CallResponse(
            provider_call_id=provider_call_id,
            status="queued",
            created_at=datetime.now(timezone.utc),
            raw_response={"mock": True, "id": provider_call_id},
        )
