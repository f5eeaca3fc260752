"""
Voice provider configuration.

Call credentials (API key, assistant id, phone number id) are business
settings stored in the database; this covers only process-level wiring.
"""

from enum import Enum

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ProviderType(str, Enum):
    """Supported voice provider types."""

    VAPI = "vapi"
    MOCK = "mock"


class VoiceConfig(BaseSettings):
    """Voice provider configuration from environment."""

    model_config = SettingsConfigDict(
        env_prefix="VOICE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    provider_type: ProviderType = Field(default=ProviderType.VAPI)
    api_base_url: str = Field(default="https://api.vapi.ai")

    # Bounded so one slow call cannot stall a dispatch batch
    request_timeout_seconds: float = Field(default=20.0, gt=0, le=120)

    def get_api_url(self, path: str) -> str:
        return f"{self.api_base_url.rstrip('/')}{path}"


def get_voice_config() -> VoiceConfig:
    return VoiceConfig()
