"""
Repository for store database operations.
"""

from typing import Sequence
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from codconfirm.stores.models import Store


def normalize_shop_domain(value: str) -> str:
    """Strip scheme and trailing slashes: `https://x.myshopify.com/` -> `x.myshopify.com`."""
    domain = value.strip()
    for prefix in ("https://", "http://"):
        if domain.lower().startswith(prefix):
            domain = domain[len(prefix):]
    return domain.rstrip("/").lower()


class StoreRepository:
    """Repository for store database operations."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: Async database session.
        """
        self._session = session

    async def get_by_id(self, store_id: UUID) -> Store | None:
        stmt = select(Store).where(Store.id == store_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_all(self) -> Sequence[Store]:
        stmt = select(Store).order_by(Store.created_at.desc())
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def list_active_with_credentials(self) -> Sequence[Store]:
        """Active stores that can be pulled from the commerce API."""
        stmt = (
            select(Store)
            .where(Store.is_active.is_(True))
            .where(Store.access_token != "")
            .order_by(Store.created_at.asc())
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def find_active_by_domain(self, shop_domain: str) -> Store | None:
        """Resolve the store a push webhook belongs to.

        Args:
            shop_domain: Value of the `X-Shopify-Shop-Domain` header.

        Returns:
            The first active store whose URL contains the domain, or None.
        """
        domain = normalize_shop_domain(shop_domain)
        if not domain:
            return None
        stmt = (
            select(Store)
            .where(Store.is_active.is_(True))
            .where(Store.url.ilike(f"%{domain}%"))
            .order_by(Store.created_at.asc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_domain(self, shop_domain: str) -> Store | None:
        """Exact domain match regardless of scheme, case or active flag."""
        domain = normalize_shop_domain(shop_domain)
        if not domain:
            return None
        stmt = select(Store).where(Store.url.ilike(f"%{domain}%")).order_by(Store.created_at.asc())
        result = await self._session.execute(stmt)
        for store in result.scalars():
            if normalize_shop_domain(store.url) == domain:
                return store
        return None

    async def upsert_connected(self, shop_domain: str, name: str, access_token: str) -> Store:
        """Save the token of a freshly installed shop, reactivating it if known."""
        store = await self.get_by_domain(shop_domain)
        if store is None:
            return await self.create(
                Store(
                    name=name,
                    url=normalize_shop_domain(shop_domain),
                    access_token=access_token,
                    is_active=True,
                )
            )

        store.name = name
        store.access_token = access_token
        store.is_active = True
        await self._session.flush()
        return store

    async def create(self, store: Store) -> Store:
        self._session.add(store)
        await self._session.flush()
        await self._session.refresh(store)
        return store

    async def delete(self, store_id: UUID) -> bool:
        result = await self._session.execute(delete(Store).where(Store.id == store_id))
        return (result.rowcount or 0) > 0
