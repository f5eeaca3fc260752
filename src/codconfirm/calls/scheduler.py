"""
Periodic scheduler tick: optional store pull, then one dispatch batch.
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from zoneinfo import ZoneInfo

from sqlalchemy.ext.asyncio import AsyncSession

from codconfirm.calls.dispatcher import CallDispatcher, DispatchResult
from codconfirm.orders.ingestor import CommerceClientProtocol, OrderIngestor, SyncResult
from codconfirm.settings.repository import SettingsRepository
from codconfirm.shared.clock import utcnow
from codconfirm.shared.logging import get_logger
from codconfirm.telephony.interface import VoiceProvider

logger = get_logger(__name__)


@dataclass
class CallSchedulerConfig:
    """Configuration for the call scheduler."""

    interval_seconds: int = 60
    sync_enabled: bool = False


@dataclass
class TickResult:
    dispatch: DispatchResult
    sync: SyncResult | None = None


class CallScheduler:
    """Runs one scheduler tick against a fresh session."""

    def __init__(
        self,
        session: AsyncSession,
        provider: VoiceProvider,
        business_tz: ZoneInfo,
        config: CallSchedulerConfig,
        commerce_client: CommerceClientProtocol | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session = session
        self._provider = provider
        self._tz = business_tz
        self._config = config
        self._commerce_client = commerce_client
        self._clock = clock

    async def run_once(self) -> TickResult:
        now = self._clock()
        runtime = await SettingsRepository(self._session).load_runtime()

        sync_result = None
        if self._config.sync_enabled and self._commerce_client is not None:
            ingestor = OrderIngestor(self._session, self._tz, commerce_client=self._commerce_client)
            sync_result = await ingestor.sync_active_stores(runtime, now)

        dispatcher = CallDispatcher(self._session, self._provider, self._tz)
        dispatch_result = await dispatcher.dispatch_pending_calls(now, runtime)

        logger.info(
            "Scheduler tick completed",
            extra={
                "synced": sync_result.synced if sync_result else None,
                "triggered": dispatch_result.triggered,
                "message": dispatch_result.message,
            },
        )
        return TickResult(dispatch=dispatch_result, sync=sync_result)
