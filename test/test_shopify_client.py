"""Tests for the Shopify client and webhook signature check (sync-only, no DB)."""

import base64
import hashlib
import hmac
from datetime import datetime, timezone
from unittest.mock import MagicMock
from uuid import uuid4

import httpx
import pytest

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
from codconfirm.config import Settings
from codconfirm.orders.ingestor import StoreSnapshot


@pytest.fixture
def store() -> StoreSnapshot:
    return StoreSnapshot(
        id=uuid4(),
        name="Tienda Uno",
        url="https://Tienda-Uno.myshopify.com/",
        access_token="shpat_abc",
        cod_gateway_name="Cash on Delivery",
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(shopify_api_version="2024-01", shopify_sync_lookback_days=30, shopify_sync_page_limit=50)


class TestShopifyClient:
    def test_orders_url_normalizes_domain(self, settings: Settings, store: StoreSnapshot) -> None:
        client = ShopifyClient(settings=settings, http_client=MagicMock(spec=httpx.Client))

        assert client.orders_url(store) == "https://tienda-uno.myshopify.com/admin/api/2024-01/orders.json"

    def test_build_params(self, settings: Settings) -> None:
        client = ShopifyClient(settings=settings, http_client=MagicMock(spec=httpx.Client))

        params = client.build_params(datetime(2024, 3, 31, 12, 0, tzinfo=timezone.utc))

        assert params == {
            "status": "any",
            "limit": 50,
            "created_at_min": "2024-03-01T12:00:00+00:00",
        }

    def test_fetch_returns_orders(self, settings: Settings, store: StoreSnapshot) -> None:
        mock_http = MagicMock(spec=httpx.Client)
        mock_http.request.return_value = httpx.Response(
            status_code=200, json={"orders": [{"id": 1}, {"id": 2}, "junk"]}
        )

        orders = ShopifyClient(settings=settings, http_client=mock_http).fetch_recent_orders_sync(store)

        assert orders == [{"id": 1}, {"id": 2}]
        _, kwargs = mock_http.request.call_args
        assert kwargs["headers"]["X-Shopify-Access-Token"] == "shpat_abc"
        assert kwargs["params"]["status"] == "any"

    def test_http_error_status(self, settings: Settings, store: StoreSnapshot) -> None:
        mock_http = MagicMock(spec=httpx.Client)
        mock_http.request.return_value = httpx.Response(status_code=401, text="Invalid API key")

        with pytest.raises(CommerceAPIError) as exc_info:
            ShopifyClient(settings=settings, http_client=mock_http).fetch_recent_orders_sync(store)

        assert str(exc_info.value) == "HTTP 401"
        assert exc_info.value.error_code == "401"

    def test_transport_error(self, settings: Settings, store: StoreSnapshot) -> None:
        mock_http = MagicMock(spec=httpx.Client)
        mock_http.request.side_effect = httpx.ConnectError("refused")

        with pytest.raises(CommerceAPIError):
            ShopifyClient(settings=settings, http_client=mock_http).fetch_recent_orders_sync(store)

    async def test_async_fetch(self, settings: Settings, store: StoreSnapshot) -> None:
        mock_http = MagicMock(spec=httpx.Client)
        mock_http.request.return_value = httpx.Response(status_code=200, json={"orders": []})

        assert await ShopifyClient(settings=settings, http_client=mock_http).fetch_recent_orders(store) == []


class TestVerifyWebhookHmac:
    def test_valid_signature(self) -> None:
        body = b'{"id": 1}'
        signature = base64.b64encode(hmac.new(b"secret", body, hashlib.sha256).digest()).decode()

        assert verify_webhook_hmac(body, signature, "secret") is True

    def test_tampered_body(self) -> None:
        signature = base64.b64encode(hmac.new(b"secret", b"a", hashlib.sha256).digest()).decode()

        assert verify_webhook_hmac(b"b", signature, "secret") is False

    def test_missing_signature(self) -> None:
        assert verify_webhook_hmac(b"a", "", "secret") is False


class TestInstallCalls:
    def test_exchange_code(self, settings: Settings) -> None:
        mock_http = MagicMock(spec=httpx.Client)
        mock_http.request.return_value = httpx.Response(status_code=200, json={"access_token": "shpat_new"})

        token = ShopifyClient(settings=settings, http_client=mock_http).exchange_code_sync(
            "Tienda-Uno.myshopify.com", "client-123", "secret", "auth-code"
        )

        assert token == "shpat_new"
        args, kwargs = mock_http.request.call_args
        assert args == ("POST", "https://tienda-uno.myshopify.com/admin/oauth/access_token")
        assert kwargs["json"] == {"client_id": "client-123", "client_secret": "secret", "code": "auth-code"}
        assert "X-Shopify-Access-Token" not in kwargs["headers"]

    def test_exchange_code_without_token(self, settings: Settings) -> None:
        mock_http = MagicMock(spec=httpx.Client)
        mock_http.request.return_value = httpx.Response(status_code=200, json={"error": "invalid_request"})

        with pytest.raises(CommerceAPIError) as exc_info:
            ShopifyClient(settings=settings, http_client=mock_http).exchange_code_sync(
                "tienda-uno.myshopify.com", "client-123", "secret", "used-code"
            )

        assert exc_info.value.error_code == "MISSING_TOKEN"

    def test_fetch_shop_name(self, settings: Settings) -> None:
        mock_http = MagicMock(spec=httpx.Client)
        mock_http.request.return_value = httpx.Response(status_code=200, json={"shop": {"name": "Tienda Uno"}})

        name = ShopifyClient(settings=settings, http_client=mock_http).fetch_shop_name_sync(
            "tienda-uno.myshopify.com", "shpat_abc"
        )

        assert name == "Tienda Uno"
        args, kwargs = mock_http.request.call_args
        assert args == ("GET", "https://tienda-uno.myshopify.com/admin/api/2024-01/shop.json")
        assert kwargs["headers"]["X-Shopify-Access-Token"] == "shpat_abc"

    def test_fetch_shop_name_missing(self, settings: Settings) -> None:
        mock_http = MagicMock(spec=httpx.Client)
        mock_http.request.return_value = httpx.Response(status_code=200, json={"shop": {}})

        assert (
            ShopifyClient(settings=settings, http_client=mock_http).fetch_shop_name_sync(
                "tienda-uno.myshopify.com", "shpat_abc"
            )
            is None
        )

    async def test_register_order_webhook(self, settings: Settings) -> None:
        mock_http = MagicMock(spec=httpx.Client)
        mock_http.request.return_value = httpx.Response(status_code=201, json={"webhook": {"id": 9}})

        await ShopifyClient(settings=settings, http_client=mock_http).register_order_webhook(
            "tienda-uno.myshopify.com", "shpat_abc", "https://app.example.com/webhooks/shopify/orders"
        )

        args, kwargs = mock_http.request.call_args
        assert args == ("POST", "https://tienda-uno.myshopify.com/admin/api/2024-01/webhooks.json")
        assert kwargs["json"] == {
            "webhook": {
                "topic": "orders/create",
                "address": "https://app.example.com/webhooks/shopify/orders",
                "format": "json",
            }
        }

    def test_register_order_webhook_rejected(self, settings: Settings) -> None:
        mock_http = MagicMock(spec=httpx.Client)
        mock_http.request.return_value = httpx.Response(status_code=422, json={"errors": {"address": ["taken"]}})

        with pytest.raises(CommerceAPIError) as exc_info:
            ShopifyClient(settings=settings, http_client=mock_http).register_order_webhook_sync(
                "tienda-uno.myshopify.com", "shpat_abc", "https://app.example.com/webhooks/shopify/orders"
            )

        assert exc_info.value.error_code == "422"


class TestInstallHelpers:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("tienda-uno.myshopify.com", "tienda-uno.myshopify.com"),
            ("https://Tienda-Uno.myshopify.com/", "tienda-uno.myshopify.com"),
            ("tienda-uno.myshopify.com.evil.com", None),
            ("tienda uno.myshopify.com", None),
            ("", None),
        ],
    )
    def test_validate_shop_domain(self, raw: str, expected: str | None) -> None:
        assert validate_shop_domain(raw) == expected

    def test_oauth_hmac(self) -> None:
        params = {"shop": "tienda-uno.myshopify.com", "code": "abc", "timestamp": "1709632800"}
        message = "code=abc&shop=tienda-uno.myshopify.com&timestamp=1709632800"
        params["hmac"] = hmac.new(b"secret", message.encode(), hashlib.sha256).hexdigest()

        assert verify_oauth_hmac(params, "secret") is True
        assert verify_oauth_hmac({**params, "code": "xyz"}, "secret") is False
        assert verify_oauth_hmac(params, "") is False

    def test_state_roundtrip(self) -> None:
        state = sign_oauth_state("nonce123", "secret")

        assert verify_oauth_state(state, "secret") is True
        assert verify_oauth_state(state, "other") is False
        assert verify_oauth_state("nonce123.forged", "secret") is False
        assert verify_oauth_state("", "secret") is False

    def test_authorize_url(self) -> None:
        url = httpx.URL(
            authorize_url(
                "tienda-uno.myshopify.com",
                "client-123",
                "read_orders,write_orders",
                "https://app.example.com/api/shopify/callback",
                "nonce.mac",
            )
        )

        assert url.host == "tienda-uno.myshopify.com"
        assert url.path == "/admin/oauth/authorize"
        assert dict(url.params) == {
            "client_id": "client-123",
            "scope": "read_orders,write_orders",
            "redirect_uri": "https://app.example.com/api/shopify/callback",
            "state": "nonce.mac",
        }
