"""
Store management API router.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from codconfirm.shared.database import get_db_session
from codconfirm.shared.exceptions import NotFoundError, ValidationError
from codconfirm.shared.logging import get_logger
from codconfirm.stores.models import DEFAULT_COD_GATEWAY_NAME, Store
from codconfirm.stores.repository import StoreRepository
from codconfirm.stores.schemas import (
    StoreCreate,
    StoreCreatedResponse,
    StoreListResponse,
    StoreResponse,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/api/stores", tags=["stores"])


@router.get("", response_model=StoreListResponse)
async def list_stores(
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> StoreListResponse:
    stores = await StoreRepository(session).list_all()
    return StoreListResponse(stores=[StoreResponse.model_validate(s) for s in stores])


@router.post("", response_model=StoreCreatedResponse, status_code=status.HTTP_201_CREATED)
async def create_store(
    payload: StoreCreate,
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> StoreCreatedResponse:
    if not payload.name.strip() or not payload.url.strip():
        raise ValidationError("Name and URL are required")

    store = await StoreRepository(session).create(
        Store(
            name=payload.name.strip(),
            url=payload.url.strip(),
            access_token=payload.access_token.strip(),
            cod_gateway_name=payload.cod_gateway_name.strip() or DEFAULT_COD_GATEWAY_NAME,
            is_active=True,
        )
    )
    await session.commit()

    logger.info("Store created", extra={"store_id": str(store.id), "url": store.url})
    return StoreCreatedResponse(store=StoreResponse.model_validate(store))


@router.delete("")
async def delete_store(
    session: Annotated[AsyncSession, Depends(get_db_session)],
    id: UUID | None = None,
) -> dict[str, bool]:
    if id is None:
        raise ValidationError("Missing store id")

    deleted = await StoreRepository(session).delete(id)
    if not deleted:
        raise NotFoundError(f"Store {id} not found")
    await session.commit()

    logger.info("Store deleted", extra={"store_id": str(id)})
    return {"success": True}
