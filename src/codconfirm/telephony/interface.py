"""
Voice provider interface definition.

Adapters implement `place_call_sync`; the async entrypoint runs it in a worker
thread so the event loop never blocks on provider HTTP.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping

import anyio

from codconfirm.shared.exceptions import ProviderError
from codconfirm.telephony.events import (
    CompletionReport,
    ToolCall,
    parse_completion_report,
    parse_tool_call,
)


@dataclass(frozen=True)
class CallCredentials:
    """Provider account identifiers, read from business settings."""

    api_key: str
    assistant_id: str
    phone_number_id: str = ""


@dataclass(frozen=True)
class CallRequest:
    """Request to place an outbound confirmation call."""

    to: str
    credentials: CallCredentials
    variables: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class CallResponse:
    """Response from call placement."""

    provider_call_id: str
    status: str
    created_at: datetime
    raw_response: dict[str, Any] = field(default_factory=dict)


class VoiceProviderError(ProviderError):
    """Base exception for voice provider errors."""


class CallInitiationError(VoiceProviderError):
    """Error during call placement (HTTP failure, timeout or rejection)."""


class VoiceProvider(ABC):
    """Abstract interface for voice providers."""

    async def place_call(self, request: CallRequest) -> CallResponse:
        """Place an outbound call without blocking the event loop."""
        return await anyio.to_thread.run_sync(self.place_call_sync, request)

    @abstractmethod
    def place_call_sync(self, request: CallRequest) -> CallResponse:
        """Place an outbound call.

        Raises:
            CallInitiationError: If the provider refuses or cannot be reached.
        """
        ...

    def parse_completion_report(self, payload: Mapping[str, Any]) -> CompletionReport:
        return parse_completion_report(payload)

    def parse_tool_call(self, payload: Mapping[str, Any]) -> ToolCall | None:
        return parse_tool_call(payload)

    def close(self) -> None:
        """Release provider resources."""
