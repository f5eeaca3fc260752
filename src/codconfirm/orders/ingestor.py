"""
Upstream order ingestion.

Normalizes raw commerce orders into `Order` rows: dedup, COD check, customer
and address extraction, initial call scheduling.
"""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Protocol
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from codconfirm.orders.cod import is_cod
from codconfirm.orders.dedup import filter_new
from codconfirm.orders.models import Order, OrderStatus
from codconfirm.orders.repository import OrderRepository
from codconfirm.scheduling.business_hours import next_eligible_time
from codconfirm.settings.runtime import RuntimeSettings
from codconfirm.shared.clock import as_utc
from codconfirm.shared.exceptions import ProviderError
from codconfirm.shared.logging import get_logger
from codconfirm.stores.models import DEFAULT_COD_GATEWAY_NAME, Store
from codconfirm.stores.repository import StoreRepository

logger = get_logger(__name__)

NO_NAME_PLACEHOLDER = "Sin nombre"
NO_PRODUCT_PLACEHOLDER = "Producto no especificado"
DEFAULT_CURRENCY = "EUR"

_ADDRESS_PARTS = ("address1", "address2", "city", "province", "zip", "country")


@dataclass(frozen=True)
class StoreSnapshot:
    """Plain copy of the store columns ingestion needs.

    Taken up front so a rollback of one order never expires the store
    instance the rest of the batch is still reading.
    """

    id: UUID
    name: str
    url: str
    access_token: str
    cod_gateway_name: str

    @classmethod
    def from_store(cls, store: Store) -> "StoreSnapshot":
        return cls(
            id=store.id,
            name=store.name,
            url=store.url,
            access_token=store.access_token or "",
            cod_gateway_name=store.cod_gateway_name or DEFAULT_COD_GATEWAY_NAME,
        )


class CommerceClientProtocol(Protocol):
    """Pulls raw orders from a store's commerce API."""

    async def fetch_recent_orders(self, store: StoreSnapshot) -> list[dict[str, Any]]:
        ...


@dataclass(frozen=True)
class NormalizedOrder:
    """Internal order fields derived from one raw upstream payload."""

    external_order_id: str
    order_number: str
    customer_name: str
    customer_phone: str
    address: str
    product: str
    amount: Decimal
    currency: str


@dataclass(frozen=True)
class IngestResult:
    accepted: bool
    reason: str
    order_id: UUID | None = None
    status: OrderStatus | None = None
    order_number: str | None = None
    customer_name: str | None = None


@dataclass
class SyncResult:
    synced: int = 0
    new_orders: list[dict[str, Any]] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)

    def merge(self, other: "SyncResult") -> None:
        self.synced += other.synced
        self.new_orders.extend(other.new_orders)
        self.errors.extend(other.errors)


def _text(value: Any) -> str:
    return "" if value is None else str(value).strip()


def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def external_id_of(raw_order: Mapping[str, Any]) -> str:
    """Upstream ids arrive as JSON numbers; store them as text."""
    return _text(raw_order.get("id"))


def build_address(address: Mapping[str, Any]) -> str:
    return ", ".join(_text(address.get(part)) for part in _ADDRESS_PARTS if _text(address.get(part)))


def build_product_description(line_items: Sequence[Mapping[str, Any]]) -> str:
    parts = []
    for item in line_items:
        title = _text(item.get("title"))
        try:
            quantity = int(item.get("quantity") or 0)
        except (TypeError, ValueError):
            quantity = 0
        parts.append(f"{title} x{quantity}" if quantity > 1 else title)
    return ", ".join(parts) or NO_PRODUCT_PLACEHOLDER


def _amount(value: Any) -> Decimal:
    try:
        return Decimal(str(value)) if value not in (None, "") else Decimal("0")
    except InvalidOperation:
        return Decimal("0")


def normalize_order(raw_order: Mapping[str, Any]) -> NormalizedOrder:
    """Extract customer, address and product fields from a raw order.

    Shipping address wins over billing; the customer's first name and a
    placeholder back up an empty shipping name; phone falls back from
    shipping to order to billing.
    """
    billing = _mapping(raw_order.get("billing_address"))
    shipping = _mapping(raw_order.get("shipping_address")) or billing
    customer = _mapping(raw_order.get("customer"))

    full_name = f"{_text(shipping.get('first_name'))} {_text(shipping.get('last_name'))}".strip()
    customer_name = full_name or _text(customer.get("first_name")) or NO_NAME_PLACEHOLDER

    phone = (
        _text(shipping.get("phone"))
        or _text(raw_order.get("phone"))
        or _text(billing.get("phone"))
    )

    order_number = _text(raw_order.get("name"))
    if not order_number:
        order_number = f"#{_text(raw_order.get('order_number'))}"

    line_items = [item for item in raw_order.get("line_items") or [] if isinstance(item, Mapping)]

    return NormalizedOrder(
        external_order_id=external_id_of(raw_order),
        order_number=order_number,
        customer_name=customer_name,
        customer_phone=phone,
        address=build_address(shipping),
        product=build_product_description(line_items),
        amount=_amount(raw_order.get("total_price")),
        currency=_text(raw_order.get("currency")) or DEFAULT_CURRENCY,
    )


class OrderIngestor:
    """Creates orders from upstream payloads (push webhooks and pull sync)."""

    def __init__(
        self,
        session: AsyncSession,
        business_tz: ZoneInfo,
        commerce_client: CommerceClientProtocol | None = None,
    ) -> None:
        self._session = session
        self._tz = business_tz
        self._commerce_client = commerce_client
        self._orders = OrderRepository(session)
        self._stores = StoreRepository(session)

    async def ingest_order(
        self,
        raw_order: Mapping[str, Any],
        store: Store | StoreSnapshot | None,
        settings: RuntimeSettings,
        now: datetime,
        *,
        check_existing: bool = True,
    ) -> IngestResult:
        """Create one order if it is new and paid cash on delivery.

        Commits on success and rolls back on failure, so callers can loop
        over a batch with per-item isolation.

        Raises:
            SQLAlchemyError: On storage failures other than a duplicate id.
        """
        snapshot = StoreSnapshot.from_store(store) if isinstance(store, Store) else store

        external_id = external_id_of(raw_order)
        if not external_id:
            logger.warning("Upstream order without id rejected")
            return IngestResult(accepted=False, reason="invalid")

        if check_existing:
            existing = await self._orders.existing_external_ids([external_id])
            if filter_new([external_id], existing) == set():
                found = await self._orders.get_by_external_id(external_id)
                return IngestResult(
                    accepted=False,
                    reason="duplicate",
                    order_id=found.id if found else None,
                )

        cod_label = snapshot.cod_gateway_name if snapshot else DEFAULT_COD_GATEWAY_NAME
        gateways = [g for g in raw_order.get("payment_gateway_names") or [] if isinstance(g, str)]
        if not is_cod(gateways, cod_label):
            logger.debug("Non-COD order skipped", extra={"external_order_id": external_id})
            return IngestResult(accepted=False, reason="not_cod")

        normalized = normalize_order(raw_order)
        scheduled_at, fell_outside = next_eligible_time(
            now.astimezone(self._tz),
            settings.wait_minutes,
            settings.hour_start,
            settings.hour_end,
        )
        status = OrderStatus.SCHEDULED if fell_outside else OrderStatus.PENDING

        order = Order(
            external_order_id=normalized.external_order_id,
            order_number=normalized.order_number,
            store_id=snapshot.id if snapshot else None,
            customer_name=normalized.customer_name,
            customer_phone=normalized.customer_phone,
            address=normalized.address,
            product=normalized.product,
            amount=normalized.amount,
            currency=normalized.currency,
            status=status,
            call_scheduled_at=as_utc(scheduled_at),
            call_attempts=0,
            created_at=as_utc(now),
            updated_at=as_utc(now),
        )

        try:
            order = await self._orders.create(order)
            order_id = order.id
            await self._session.commit()
        except IntegrityError:
            await self._session.rollback()
            logger.info(
                "Duplicate order prevented by DB constraint",
                extra={"external_order_id": external_id},
            )
            return IngestResult(accepted=False, reason="duplicate")
        except SQLAlchemyError:
            await self._session.rollback()
            raise

        logger.info(
            "Order ingested",
            extra={
                "order_id": str(order_id),
                "external_order_id": external_id,
                "status": status.value,
                "call_scheduled_at": scheduled_at.isoformat(),
                "store_id": str(snapshot.id) if snapshot else None,
            },
        )
        return IngestResult(
            accepted=True,
            reason="created",
            order_id=order_id,
            status=status,
            order_number=normalized.order_number,
            customer_name=normalized.customer_name,
        )

    async def sync_store(
        self,
        store: Store | StoreSnapshot,
        settings: RuntimeSettings,
        now: datetime,
    ) -> SyncResult:
        """Pull recent orders of one store and ingest the new COD ones."""
        if self._commerce_client is None:
            raise RuntimeError("OrderIngestor.sync_store requires a commerce client")

        snapshot = StoreSnapshot.from_store(store) if isinstance(store, Store) else store
        result = SyncResult()

        try:
            raw_orders = await self._commerce_client.fetch_recent_orders(snapshot)
        except ProviderError as e:
            logger.error(
                "Commerce API error during sync",
                extra={"store_id": str(snapshot.id), "store": snapshot.name, "error": str(e)},
            )
            result.errors.append({"store": snapshot.name, "error": str(e)})
            return result

        by_id = {external_id_of(o): o for o in raw_orders if external_id_of(o)}
        try:
            existing = await self._orders.existing_external_ids(by_id.keys())
        except SQLAlchemyError as e:
            await self._session.rollback()
            logger.exception(
                "Known order lookup failed during sync",
                extra={"store_id": str(snapshot.id), "store": snapshot.name},
            )
            result.errors.append({"store": snapshot.name, "error": str(e)})
            return result
        fresh = filter_new(by_id.keys(), existing)

        # keep upstream ordering
        for external_id, raw_order in by_id.items():
            if external_id not in fresh:
                continue
            try:
                ingested = await self.ingest_order(
                    raw_order, snapshot, settings, now, check_existing=False
                )
            except SQLAlchemyError as e:
                logger.exception(
                    "Order insert failed during sync",
                    extra={"store_id": str(snapshot.id), "external_order_id": external_id},
                )
                result.errors.append(
                    {"store": snapshot.name, "order": external_id, "error": str(e)}
                )
                continue

            if not ingested.accepted:
                continue

            result.synced += 1
            result.new_orders.append(
                {
                    "id": str(ingested.order_id),
                    "order_number": ingested.order_number,
                    "customer_name": ingested.customer_name,
                    "store": snapshot.name,
                }
            )

        logger.info(
            "Store sync completed",
            extra={
                "store_id": str(snapshot.id),
                "fetched": len(raw_orders),
                "already_known": len(existing),
                "synced": result.synced,
            },
        )
        return result

    async def sync_active_stores(self, settings: RuntimeSettings, now: datetime) -> SyncResult:
        """Run `sync_store` for every active store with an access token."""
        stores = [StoreSnapshot.from_store(s) for s in await self._stores.list_active_with_credentials()]
        total = SyncResult()
        for store in stores:
            total.merge(await self.sync_store(store, settings, now))
        return total
