"""
Commerce endpoints: order push webhook, on-demand pull sync and the
Shopify app install flow.
"""

import json
import secrets
from collections.abc import Callable
from datetime import datetime
from functools import lru_cache
from typing import Annotated

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse, RedirectResponse, Response
from sqlalchemy.ext.asyncio import AsyncSession

from codconfirm.commerce.shopify_client import (
    CommerceAPIError,
    ShopifyClient,
    authorize_url,
    sign_oauth_state,
    validate_shop_domain,
    verify_oauth_hmac,
    verify_oauth_state,
    verify_webhook_hmac,
)
from codconfirm.config import Settings, get_settings
from codconfirm.orders.ingestor import CommerceClientProtocol, OrderIngestor
from codconfirm.settings.repository import SettingsRepository
from codconfirm.shared.clock import get_clock
from codconfirm.shared.database import get_db_session
from codconfirm.shared.logging import get_logger
from codconfirm.stores.repository import StoreRepository

logger = get_logger(__name__)

webhook_router = APIRouter(prefix="/webhooks/shopify", tags=["webhooks"])
router = APIRouter(prefix="/api/shopify", tags=["commerce"])


MSG_MISSING_SHOP = "Missing shop parameter"
MSG_INVALID_SHOP = "Invalid shop domain. Use your-store.myshopify.com"
MSG_NOT_CONFIGURED = "Shopify app not configured"


@lru_cache(maxsize=1)
def get_shopify_client() -> ShopifyClient:
    return ShopifyClient(get_settings())


def get_commerce_client() -> CommerceClientProtocol:
    return get_shopify_client()


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _oauth_configured(settings: Settings) -> bool:
    return bool(settings.shopify_client_id and settings.shopify_client_secret and settings.app_url)


def _base_url(settings: Settings) -> str:
    return settings.app_url.rstrip("/")


@webhook_router.post("/orders")
async def order_created(
    request: Request,
    session: Annotated[AsyncSession, Depends(get_db_session)],
    clock: Annotated[Callable[[], datetime], Depends(get_clock)],
) -> JSONResponse:
    """Ingest one order pushed by the shop."""
    settings = get_settings()
    raw = await request.body()

    if settings.shopify_webhook_secret:
        signature = request.headers.get("x-shopify-hmac-sha256", "")
        if not verify_webhook_hmac(raw, signature, settings.shopify_webhook_secret):
            logger.warning("Shopify webhook signature mismatch")
            return JSONResponse(status_code=status.HTTP_401_UNAUTHORIZED, content={"error": "Invalid signature"})

    try:
        order = json.loads(raw or b"null")
    except ValueError:
        order = None
    if not isinstance(order, dict) or not order.get("id"):
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": "Invalid order payload"})

    shop_domain = request.headers.get("x-shopify-shop-domain", "")
    store = await StoreRepository(session).find_active_by_domain(shop_domain) if shop_domain else None
    if store is None:
        logger.info("Webhook order without a matching store", extra={"shop_domain": shop_domain})

    runtime = await SettingsRepository(session).load_runtime()
    ingestor = OrderIngestor(session, settings.business_tz)
    try:
        result = await ingestor.ingest_order(order, store, runtime, clock())
    except Exception:
        logger.exception("Webhook order could not be saved", extra={"external_order_id": str(order.get("id"))})
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Failed to save order"},
        )

    if result.reason == "not_cod":
        return JSONResponse(content={"message": "Not a COD order, skipped"})
    if result.reason == "duplicate":
        content: dict[str, object] = {"message": "Order already exists"}
        if result.order_id:
            content["id"] = str(result.order_id)
        return JSONResponse(content=content)

    return JSONResponse(
        content={
            "success": True,
            "order_id": str(result.order_id),
            "status": result.status.value if result.status else None,
        }
    )


@router.post("/sync")
async def sync_orders(
    session: Annotated[AsyncSession, Depends(get_db_session)],
    client: Annotated[CommerceClientProtocol, Depends(get_commerce_client)],
    clock: Annotated[Callable[[], datetime], Depends(get_clock)],
) -> JSONResponse:
    """Pull recent orders from every active store."""
    if not await StoreRepository(session).list_active_with_credentials():
        return JSONResponse(content={"message": "No active stores with tokens", "synced": 0})

    runtime = await SettingsRepository(session).load_runtime()
    ingestor = OrderIngestor(session, get_settings().business_tz, commerce_client=client)
    result = await ingestor.sync_active_stores(runtime, clock())

    content: dict[str, object] = {
        "success": True,
        "synced": result.synced,
        "new_orders": result.new_orders,
    }
    if result.errors:
        content["errors"] = result.errors
    return JSONResponse(content=content)


@router.get("/auth")
async def start_install(shop: str | None = None) -> Response:
    """Send the merchant to Shopify to approve the app."""
    settings = get_settings()
    if not shop:
        return _error(status.HTTP_400_BAD_REQUEST, MSG_MISSING_SHOP)
    domain = validate_shop_domain(shop)
    if domain is None:
        return _error(status.HTTP_400_BAD_REQUEST, MSG_INVALID_SHOP)
    if not _oauth_configured(settings):
        logger.error("Shopify install requested but the app is not configured")
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, MSG_NOT_CONFIGURED)

    state = sign_oauth_state(secrets.token_urlsafe(16), settings.shopify_client_secret)
    url = authorize_url(
        domain,
        settings.shopify_client_id,
        settings.shopify_oauth_scopes,
        f"{_base_url(settings)}{router.prefix}/callback",
        state,
    )
    logger.info("Redirecting to Shopify install", extra={"shop": domain})
    return RedirectResponse(url, status_code=status.HTTP_302_FOUND)


@router.get("/callback")
async def finish_install(
    request: Request,
    session: Annotated[AsyncSession, Depends(get_db_session)],
    client: Annotated[ShopifyClient, Depends(get_shopify_client)],
) -> Response:
    """Store the shop's token and subscribe it to new-order webhooks."""
    settings = get_settings()
    params = dict(request.query_params)
    if not params.get("shop") or not params.get("code"):
        return _error(status.HTTP_400_BAD_REQUEST, "Missing required parameters (shop or code)")
    domain = validate_shop_domain(params["shop"])
    if domain is None:
        return _error(status.HTTP_400_BAD_REQUEST, MSG_INVALID_SHOP)
    if not _oauth_configured(settings):
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, MSG_NOT_CONFIGURED)

    secret = settings.shopify_client_secret
    if not verify_oauth_hmac(params, secret):
        logger.warning("Shopify install callback signature mismatch", extra={"shop": domain})
        return _error(status.HTTP_401_UNAUTHORIZED, "Invalid signature")
    if not verify_oauth_state(params.get("state", ""), secret):
        logger.warning("Shopify install callback with unknown state", extra={"shop": domain})
        return _error(status.HTTP_401_UNAUTHORIZED, "Invalid state")

    try:
        access_token = await client.exchange_code(domain, settings.shopify_client_id, secret, params["code"])
    except CommerceAPIError as e:
        logger.error("Shopify token exchange failed", extra={"shop": domain, "error": str(e)})
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to get access token")

    try:
        name = await client.fetch_shop_name(domain, access_token)
    except CommerceAPIError as e:
        logger.warning("Could not read shop name", extra={"shop": domain, "error": str(e)})
        name = None

    store = await StoreRepository(session).upsert_connected(domain, name or domain, access_token)
    store_id = store.id
    await session.commit()

    address = f"{_base_url(settings)}{webhook_router.prefix}/orders"
    try:
        await client.register_order_webhook(domain, access_token, address)
    except CommerceAPIError as e:
        # the store is usable through pull sync without the push webhook
        logger.warning("Order webhook registration failed", extra={"shop": domain, "error": str(e)})

    logger.info("Shopify store connected", extra={"shop": domain, "store_id": str(store_id)})
    return RedirectResponse(f"{_base_url(settings)}/?connected=success", status_code=status.HTTP_302_FOUND)
