"""
Normalized models for voice provider webhook payloads.

The provider posts two kinds of server messages: an end-of-call report once a
call finishes, and tool calls while the assistant is still talking to the
customer. Both may arrive wrapped in a top-level `message` object or bare.
"""

import json
from collections.abc import Mapping
from decimal import Decimal, InvalidOperation
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from codconfirm.shared.logging import get_logger

logger = get_logger(__name__)

END_OF_CALL_REPORT = "end-of-call-report"
TOOL_CALLS = "tool-calls"


class CompletionReport(BaseModel):
    """End-of-call report for one provider call."""

    model_config = ConfigDict(frozen=True)

    message_type: str = ""
    provider_call_id: str = ""
    success_evaluation: str = ""
    ended_reason: str = ""
    transcript: str = ""
    summary: str = ""
    recording_url: str = ""
    duration_seconds: int | None = None
    cost: Decimal | None = None
    new_address: str = ""
    raw_payload: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_end_of_call(self) -> bool:
        # untyped payloads are treated as reports
        return not self.message_type or self.message_type == END_OF_CALL_REPORT


class ToolCall(BaseModel):
    """One structured function invocation made by the assistant mid-call."""

    model_config = ConfigDict(frozen=True)

    tool_call_id: str
    function_name: str = ""
    arguments: dict[str, Any] = Field(default_factory=dict)
    provider_call_id: str = ""


def _as_dict(value: Any) -> dict[str, Any]:
    return dict(value) if isinstance(value, Mapping) else {}


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _first(*values: Any) -> Any:
    for value in values:
        if value not in (None, ""):
            return value
    return None


def _int_or_none(value: Any) -> int | None:
    try:
        return int(float(value)) if value not in (None, "") else None
    except (TypeError, ValueError):
        return None


def _decimal_or_none(value: Any) -> Decimal | None:
    try:
        return Decimal(str(value)) if value not in (None, "") else None
    except InvalidOperation:
        return None


def unwrap_message(body: Mapping[str, Any]) -> dict[str, Any]:
    """Return the server message, unwrapping a top-level `message` key."""
    message = body.get("message")
    return _as_dict(message) if isinstance(message, Mapping) else _as_dict(body)


def parse_completion_report(body: Mapping[str, Any]) -> CompletionReport:
    """Parse an end-of-call report.

    Fields are read from the message first and from its `call` object second.
    """
    message = unwrap_message(body)
    call = _as_dict(message.get("call"))
    analysis = _as_dict(message.get("analysis"))
    artifact = _as_dict(message.get("artifact"))
    structured = _as_dict(analysis.get("structuredData"))

    return CompletionReport(
        message_type=_text(message.get("type")),
        provider_call_id=_text(_first(call.get("id"), message.get("callId"))),
        success_evaluation=_text(
            _first(analysis.get("successEvaluation"), message.get("successEvaluation"))
        ),
        ended_reason=_text(_first(message.get("endedReason"), call.get("endedReason"))),
        transcript=_text(_first(message.get("transcript"), artifact.get("transcript"))),
        summary=_text(_first(message.get("summary"), analysis.get("summary"))),
        recording_url=_text(
            _first(
                message.get("recordingUrl"),
                call.get("recordingUrl"),
                artifact.get("recordingUrl"),
            )
        ),
        duration_seconds=_int_or_none(
            _first(message.get("durationSeconds"), call.get("durationSeconds"))
        ),
        cost=_decimal_or_none(_first(message.get("cost"), call.get("cost"))),
        new_address=_text(structured.get("new_address")),
        raw_payload=_as_dict(body),
    )


def _parse_arguments(raw: Any, tool_call_id: str) -> dict[str, Any]:
    if isinstance(raw, Mapping):
        return dict(raw)
    if isinstance(raw, str) and raw.strip():
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Tool call arguments are not valid JSON", extra={"tool_call_id": tool_call_id})
            return {}
        return _as_dict(parsed)
    return {}


def parse_tool_call(body: Mapping[str, Any]) -> ToolCall | None:
    """Extract the first tool call from any of the accepted payload shapes.

    Shapes, in order: a `tool-calls` message with `toolCallList`, any message
    carrying a `toolCallList`, or a direct `functionCall`/`function_call`.
    Returns None when the payload holds no tool call.
    """
    message = unwrap_message(body)
    raw_call: dict[str, Any] | None = None
    provider_call_id = ""

    if message.get("type") == TOOL_CALLS:
        tool_calls = message.get("toolCallList") or []
        raw_call = _as_dict(tool_calls[0]) if tool_calls else None
        provider_call_id = _text(_as_dict(message.get("call")).get("id"))
    elif message.get("toolCallList"):
        raw_call = _as_dict(message["toolCallList"][0])
        provider_call_id = _text(
            _first(_as_dict(message.get("call")).get("id"), _as_dict(body.get("call")).get("id"))
        )
    elif body.get("functionCall") or body.get("function_call"):
        raw_call = {
            "id": body.get("toolCallId") or "direct",
            "function": body.get("functionCall") or body.get("function_call"),
        }
        provider_call_id = _text(_first(_as_dict(body.get("call")).get("id"), body.get("callId")))

    if not raw_call:
        return None

    tool_call_id = _text(raw_call.get("id")) or "direct"
    function = _as_dict(raw_call.get("function"))
    return ToolCall(
        tool_call_id=tool_call_id,
        function_name=_text(function.get("name")),
        arguments=_parse_arguments(function.get("arguments"), tool_call_id),
        provider_call_id=provider_call_id,
    )
