"""
Unit tests for the scheduler tick (in-memory SQLite, mock provider).
"""

from codconfirm.calls.scheduler import CallScheduler, CallSchedulerConfig
from codconfirm.main import _advisory_lock_id
from codconfirm.settings.repository import SettingsRepository

from conftest import FIXED_NOW, sample_raw_order


async def configure(session) -> None:
    await SettingsRepository(session).upsert_many(
        {"vapi_key": "test-key", "vapi_assistant_id": "asst-123", "vapi_phone_id": "phone-456"}
    )
    await session.commit()


def test_config_defaults() -> None:
    cfg = CallSchedulerConfig()

    assert cfg.interval_seconds == 60
    assert cfg.sync_enabled is False


def test_advisory_lock_id_is_stable_signed_bigint() -> None:
    first = _advisory_lock_id("codconfirm_scheduler_v1")

    assert first == _advisory_lock_id("codconfirm_scheduler_v1")
    assert first != _advisory_lock_id("other")
    assert 0 <= first < 2**63


async def test_tick_dispatches_due_orders(db_session, tz, mock_provider, make_order) -> None:
    await configure(db_session)
    await make_order()

    scheduler = CallScheduler(
        session=db_session,
        provider=mock_provider,
        business_tz=tz,
        config=CallSchedulerConfig(),
        clock=lambda: FIXED_NOW,
    )
    result = await scheduler.run_once()

    assert result.sync is None
    assert result.dispatch.triggered == 1
    assert len(mock_provider.calls) == 1


async def test_tick_syncs_before_dispatch(
    db_session, tz, mock_provider, make_store, commerce_client
) -> None:
    await configure(db_session)
    store = await make_store()
    commerce_client.orders_by_url[store.url] = [sample_raw_order()]

    scheduler = CallScheduler(
        session=db_session,
        provider=mock_provider,
        business_tz=tz,
        config=CallSchedulerConfig(sync_enabled=True),
        commerce_client=commerce_client,
        clock=lambda: FIXED_NOW,
    )
    result = await scheduler.run_once()

    assert result.sync.synced == 1
    # freshly synced order waits 15 minutes before it is due
    assert result.dispatch.triggered == 0
