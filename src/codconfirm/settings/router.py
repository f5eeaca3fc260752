"""
Business settings API router.
"""

from typing import Annotated, Any

from fastapi import APIRouter, Body, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from codconfirm.settings.repository import SettingsRepository
from codconfirm.shared.database import get_db_session
from codconfirm.shared.exceptions import ValidationError
from codconfirm.shared.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/api/settings", tags=["settings"])


@router.get("")
async def get_settings_map(
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> dict[str, dict[str, str]]:
    return {"settings": await SettingsRepository(session).get_all()}


@router.post("")
async def upsert_settings(
    session: Annotated[AsyncSession, Depends(get_db_session)],
    updates: Annotated[Any, Body()] = None,
) -> dict[str, bool]:
    """Upsert every key of the posted object; values are stored as text."""
    if not isinstance(updates, dict):
        raise ValidationError("Invalid settings")

    await SettingsRepository(session).upsert_many(updates)
    await session.commit()

    # credentials are never logged
    logger.info("Settings updated", extra={"keys": sorted(updates)})
    return {"success": True}
