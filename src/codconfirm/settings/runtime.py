"""
Typed view over the key/value settings table.

Settings are re-read for every operation and passed explicitly into the core
services; nothing here is cached.
"""

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_WAIT_MINUTES = 15
DEFAULT_HOUR_START = 9
DEFAULT_HOUR_END = 21
DEFAULT_MAX_RETRIES = 3


def _leading_int(value: Any) -> int | None:
    """Parse the leading integer of a value, like `"09:00"` -> 9 or `"15 min"` -> 15."""
    if value is None:
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    text = str(value).strip()
    digits = ""
    for ch in text:
        if ch.isdigit() or (ch == "-" and not digits):
            digits += ch
        else:
            break
    try:
        return int(digits)
    except ValueError:
        return None


class RuntimeSettings(BaseModel):
    """Business settings for one operation (hours, retries, voice credentials)."""

    model_config = ConfigDict(frozen=True)

    wait_minutes: int = Field(default=DEFAULT_WAIT_MINUTES)
    hour_start: int = Field(default=DEFAULT_HOUR_START)
    hour_end: int = Field(default=DEFAULT_HOUR_END)
    max_retries: int = Field(default=DEFAULT_MAX_RETRIES)

    vapi_key: str = ""
    vapi_assistant_id: str = ""
    vapi_phone_id: str = ""

    @field_validator("wait_minutes", "max_retries", mode="before")
    @classmethod
    def _positive_or_default(cls, v: Any, info: Any) -> int:
        parsed = _leading_int(v)
        if not parsed or parsed < 0:
            return DEFAULT_WAIT_MINUTES if info.field_name == "wait_minutes" else DEFAULT_MAX_RETRIES
        return parsed

    @field_validator("hour_start", "hour_end", mode="before")
    @classmethod
    def _hour_of_day(cls, v: Any, info: Any) -> int:
        # hour_start becomes a clock hour (0..23); hour_end is exclusive and may be 24
        is_start = info.field_name == "hour_start"
        parsed = _leading_int(v)
        if parsed is None or not 0 <= parsed <= (23 if is_start else 24):
            return DEFAULT_HOUR_START if is_start else DEFAULT_HOUR_END
        return parsed

    @field_validator("vapi_key", "vapi_assistant_id", "vapi_phone_id", mode="before")
    @classmethod
    def _strip(cls, v: Any) -> str:
        return str(v or "").strip()

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "RuntimeSettings":
        """Build from the raw key/value map; unknown keys are ignored."""
        known = {k: v for k, v in values.items() if k in cls.model_fields and v not in (None, "")}
        return cls(**known)

    @property
    def voice_configured(self) -> bool:
        return bool(self.vapi_key and self.vapi_assistant_id)
