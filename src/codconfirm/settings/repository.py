"""
Repository for the key/value settings table.
"""

from collections.abc import Mapping
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from codconfirm.settings.models import SettingEntry
from codconfirm.settings.runtime import RuntimeSettings


class SettingsRepository:
    """Reads and upserts settings."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_all(self) -> dict[str, str]:
        """Return every setting as a plain key -> value map."""
        result = await self._session.execute(select(SettingEntry))
        return {entry.key: entry.value for entry in result.scalars().all()}

    async def load_runtime(self) -> RuntimeSettings:
        """Fresh typed settings for one operation."""
        return RuntimeSettings.from_mapping(await self.get_all())

    async def upsert_many(self, values: Mapping[str, Any]) -> None:
        """Insert or overwrite each key; values are stored as strings.

        Does not commit; the caller owns the transaction.
        """
        if not values:
            return
        existing = await self._session.execute(
            select(SettingEntry).where(SettingEntry.key.in_(list(values.keys())))
        )
        by_key = {entry.key: entry for entry in existing.scalars().all()}

        for key, value in values.items():
            text = "" if value is None else str(value)
            entry = by_key.get(key)
            if entry is None:
                self._session.add(SettingEntry(key=key, value=text))
            else:
                entry.value = text
        await self._session.flush()
