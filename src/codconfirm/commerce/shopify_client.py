"""
Shopify Admin REST client: recent-order pull, app install (OAuth) and
webhook registration.
"""

import base64
import hashlib
import hmac
import re
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
from typing import Any
from urllib.parse import urlencode

import anyio
import httpx

from codconfirm.config import Settings, get_settings
from codconfirm.orders.ingestor import StoreSnapshot
from codconfirm.shared.exceptions import ProviderError
from codconfirm.shared.logging import get_logger
from codconfirm.stores.repository import normalize_shop_domain

logger = get_logger(__name__)

SHOP_DOMAIN_RE = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9-]*\.myshopify\.com$")
ORDER_WEBHOOK_TOPIC = "orders/create"


class CommerceAPIError(ProviderError):
    """The commerce API could not be reached or refused the request."""


def verify_webhook_hmac(body: bytes, signature: str, secret: str) -> bool:
    """Check `X-Shopify-Hmac-Sha256` (base64 HMAC-SHA256 of the raw body)."""
    if not signature or not secret:
        return False
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    expected = base64.b64encode(digest).decode("ascii")
    return hmac.compare_digest(expected, signature.strip())


def validate_shop_domain(value: str) -> str | None:
    """Normalize a `shop` parameter; None unless it is a `*.myshopify.com` host."""
    domain = normalize_shop_domain(value or "")
    if not SHOP_DOMAIN_RE.match(domain):
        return None
    return domain


def verify_oauth_hmac(params: Mapping[str, str], secret: str) -> bool:
    """Check the `hmac` query parameter Shopify adds to install redirects.

    The message is every other parameter, sorted by key and joined as
    `k=v&k=v`; the digest is hex.
    """
    signature = params.get("hmac", "")
    if not signature or not secret:
        return False
    message = "&".join(f"{k}={v}" for k, v in sorted(params.items()) if k != "hmac")
    expected = hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature)


def sign_oauth_state(nonce: str, secret: str) -> str:
    mac = hmac.new(secret.encode("utf-8"), nonce.encode("utf-8"), hashlib.sha256).hexdigest()
    return f"{nonce}.{mac[:32]}"


def verify_oauth_state(state: str, secret: str) -> bool:
    nonce, _, _ = (state or "").partition(".")
    if not nonce or not secret:
        return False
    return hmac.compare_digest(sign_oauth_state(nonce, secret), state)


def authorize_url(shop: str, client_id: str, scopes: str, redirect_uri: str, state: str) -> str:
    query = urlencode(
        {
            "client_id": client_id,
            "scope": scopes,
            "redirect_uri": redirect_uri,
            "state": state,
        }
    )
    return f"https://{shop}/admin/oauth/authorize?{query}"


class ShopifyClient:
    """Talks to one shop's Admin REST API.

    Sync httpx underneath so tests can inject a mock client; the async
    entrypoints run it in a worker thread.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._http_client = http_client
        self._owns_client = http_client is None

    def _get_client(self) -> httpx.Client:
        if self._http_client is None:
            self._http_client = httpx.Client(
                timeout=httpx.Timeout(self._settings.commerce_request_timeout_seconds)
            )
        return self._http_client

    def close(self) -> None:
        if self._owns_client and self._http_client is not None:
            self._http_client.close()
            self._http_client = None

    def admin_url(self, shop: str, resource: str) -> str:
        domain = normalize_shop_domain(shop)
        return f"https://{domain}/admin/api/{self._settings.shopify_api_version}/{resource}"

    def orders_url(self, store: StoreSnapshot) -> str:
        return self.admin_url(store.url, "orders.json")

    def build_params(self, now: datetime) -> dict[str, Any]:
        created_min = now.astimezone(timezone.utc) - timedelta(
            days=self._settings.shopify_sync_lookback_days
        )
        return {
            "status": "any",
            "limit": self._settings.shopify_sync_page_limit,
            "created_at_min": created_min.isoformat(),
        }

    def _send(
        self,
        method: str,
        url: str,
        shop: str,
        access_token: str | None = None,
        **kwargs: Any,
    ) -> Any:
        """Send one request and return the decoded JSON body.

        Raises:
            CommerceAPIError: On HTTP errors, timeouts, a non-2xx response
                or a body that is not JSON.
        """
        headers = {"Content-Type": "application/json"}
        if access_token is not None:
            headers["X-Shopify-Access-Token"] = access_token

        try:
            response = self._get_client().request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            logger.exception("HTTP error calling Shopify", extra={"shop": shop, "url": url})
            raise CommerceAPIError(message=f"HTTP error: {e!s}", error_code="HTTP_ERROR") from e

        if response.status_code >= 400:
            logger.error(
                "Shopify API error",
                extra={"shop": shop, "url": url, "status_code": response.status_code},
            )
            raise CommerceAPIError(
                message=f"HTTP {response.status_code}",
                error_code=str(response.status_code),
                provider_response={"body": response.text[:500]},
            )

        try:
            return response.json()
        except ValueError as e:
            raise CommerceAPIError(message="Invalid JSON from Shopify", error_code="BAD_JSON") from e

    async def fetch_recent_orders(self, store: StoreSnapshot) -> list[dict[str, Any]]:
        return await anyio.to_thread.run_sync(self.fetch_recent_orders_sync, store)

    def fetch_recent_orders_sync(
        self,
        store: StoreSnapshot,
        now: datetime | None = None,
    ) -> list[dict[str, Any]]:
        """Fetch orders created within the lookback window.

        Raises:
            CommerceAPIError: On HTTP errors, timeouts or a non-2xx response.
        """
        now = now or datetime.now(timezone.utc)
        data = self._send(
            "GET",
            self.orders_url(store),
            store.name,
            access_token=store.access_token,
            params=self.build_params(now),
        )
        orders = data.get("orders") if isinstance(data, dict) else None
        return [o for o in orders or [] if isinstance(o, dict)]

    async def exchange_code(self, shop: str, client_id: str, client_secret: str, code: str) -> str:
        return await anyio.to_thread.run_sync(self.exchange_code_sync, shop, client_id, client_secret, code)

    def exchange_code_sync(self, shop: str, client_id: str, client_secret: str, code: str) -> str:
        """Trade the install `code` for a permanent Admin API access token."""
        data = self._send(
            "POST",
            f"https://{normalize_shop_domain(shop)}/admin/oauth/access_token",
            shop,
            json={"client_id": client_id, "client_secret": client_secret, "code": code},
        )
        token = data.get("access_token") if isinstance(data, dict) else None
        if not token:
            raise CommerceAPIError(message="No access token in Shopify response", error_code="MISSING_TOKEN")
        logger.info("Shopify access token obtained", extra={"shop": shop})
        return str(token)

    async def fetch_shop_name(self, shop: str, access_token: str) -> str | None:
        return await anyio.to_thread.run_sync(self.fetch_shop_name_sync, shop, access_token)

    def fetch_shop_name_sync(self, shop: str, access_token: str) -> str | None:
        data = self._send("GET", self.admin_url(shop, "shop.json"), shop, access_token=access_token)
        info = data.get("shop") if isinstance(data, dict) else None
        name = info.get("name") if isinstance(info, dict) else None
        return str(name) if name else None

    async def register_order_webhook(self, shop: str, access_token: str, address: str) -> None:
        await anyio.to_thread.run_sync(self.register_order_webhook_sync, shop, access_token, address)

    def register_order_webhook_sync(self, shop: str, access_token: str, address: str) -> None:
        """Subscribe `address` to the shop's new-order notifications."""
        self._send(
            "POST",
            self.admin_url(shop, "webhooks.json"),
            shop,
            access_token=access_token,
            json={"webhook": {"topic": ORDER_WEBHOOK_TOPIC, "address": address, "format": "json"}},
        )
        logger.info("Order webhook registered", extra={"shop": shop, "address": address})
