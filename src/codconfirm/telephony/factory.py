"""
Voice provider factory.

Configuration comes from VoiceConfig (OS env + .env); never read raw
environment variables here.
"""

from functools import lru_cache

from codconfirm.shared.logging import get_logger
from codconfirm.telephony.config import ProviderType, VoiceConfig, get_voice_config
from codconfirm.telephony.interface import VoiceProvider
from codconfirm.telephony.mock_adapter import MockVoiceProvider
from codconfirm.telephony.vapi_adapter import VapiAdapter

logger = get_logger(__name__)


def create_voice_provider(config: VoiceConfig) -> VoiceProvider:
    if config.provider_type == ProviderType.VAPI:
        return VapiAdapter(config)

    if config.provider_type == ProviderType.MOCK:
        return MockVoiceProvider()

    raise ValueError(f"Unsupported voice provider_type: {config.provider_type}")


@lru_cache(maxsize=1)
def get_voice_provider() -> VoiceProvider:
    """Create and cache the voice provider (also usable as a FastAPI dependency)."""
    cfg = get_voice_config()

    logger.info(
        "Voice provider config resolved",
        extra={
            "provider_type": cfg.provider_type.value,
            "api_base_url": cfg.api_base_url,
            "request_timeout_seconds": cfg.request_timeout_seconds,
        },
    )
    return create_voice_provider(cfg)
