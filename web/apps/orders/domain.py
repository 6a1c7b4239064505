"""Domain models and ports for the storefront order core.

This module contains the dataclasses used as DTOs between the services and
their collaborators, the enums describing order lifecycle and payment
methods, and the protocol definitions (ports) that any datastore or payment
gateway must satisfy. It performs no I/O.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable, List, Optional, Protocol, Tuple

from .errors import ValidationError


# ---- Enums ----
class OrderStatus(str, Enum):
    """Statuses accepted by the API.

    Only DELIVERED and CANCELLED are special-cased by the lifecycle manager;
    the in-progress statuses are free-form tags from its point of view.
    """

    PENDING = "pending"
    PAID = "paid"
    PREPARING = "preparing"
    READY = "ready"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentMethod(str, Enum):
    CASH = "cash"
    TRANSFER = "transfer"
    MERCADOPAGO = "mercadopago"

    @property
    def requires_preference(self) -> bool:
        """True when the payer must be redirected to the payment provider."""
        return self is PaymentMethod.MERCADOPAGO


class DedupKey(str, Enum):
    """Which contact fields identify a returning customer within a tenant."""

    EMAIL = "email"
    EMAIL_AND_PHONE = "email_and_phone"


# ---- Entities / DTOs ----
@dataclass(frozen=True)
class Tenant:
    """A store account; the unit of data partitioning.

    Attributes:
        id: Numeric tenant id. Every write uses this, never the slug.
        slug: Public identifier used in storefront URLs.
        template: Display template tag (e.g. 'gallery', 'gastronomy').
        enforces_stock: Whether orders are limited by recorded stock.
        owner_id: Auth user id of the tenant owner.
        payment_credential: Encrypted MercadoPago access token, only
            populated by ``TenantLookup.find_by_slug_with_token``.
    """

    id: int
    slug: str
    template: Optional[str] = None
    enforces_stock: bool = True
    owner_id: Optional[str] = None
    payment_credential: Optional[str] = None


@dataclass(frozen=True)
class SizeVariant:
    id: str
    label: str
    stock: int = 0


@dataclass
class Product:
    """Catalog product as seen by the order pipelines.

    ``sizes`` maps a size id to its variant; when a product tracks stock
    per size the flat ``stock`` is ignored for sized order lines.
    """

    id: int
    tenant_id: int
    name: str
    price: Decimal
    active: bool = True
    stock: Optional[int] = None
    sizes: dict = field(default_factory=dict)

    def stock_for(self, size_id: Optional[str] = None) -> Tuple[int, str]:
        """Return ``(available, label)`` for an order line.

        Args:
            size_id: Optional size variant requested by the caller.

        Returns:
            The available stock and the label used in error messages.

        Raises:
            ValidationError: If ``size_id`` is not a size of this product.
        """
        if size_id:
            size = self.sizes.get(size_id)
            if size is None:
                raise ValidationError(f"Invalid size for {self.name}")
            return size.stock or 0, f"{self.name} ({size.label})"
        return self.stock or 0, self.name


@dataclass(frozen=True)
class CustomerInput:
    name: str
    email: str
    phone: str


@dataclass(frozen=True)
class OrderItemInput:
    product_id: int
    quantity: int
    size_id: Optional[str] = None


@dataclass(frozen=True)
class CheckoutItem:
    """Denormalized cart line sent by the public checkout.

    Name, price and image are supplied by the caller and stored as-is.
    """

    product_id: int
    name: str
    price: Decimal
    quantity: int
    currency: str
    image: Optional[str] = None
    size_id: Optional[str] = None
    color: Optional[dict] = None


@dataclass(frozen=True)
class OrderLine:
    """A line item as persisted inside an order."""

    product_id: int
    name: str
    quantity: int
    unit_price: Decimal
    size_id: Optional[str] = None
    extra: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        data = {
            "product_id": self.product_id,
            "name": self.name,
            "quantity": self.quantity,
            "unit_price": str(self.unit_price),
            "size_id": self.size_id,
        }
        data.update(self.extra)
        return data

    @classmethod
    def from_checkout_item(cls, item: CheckoutItem) -> "OrderLine":
        extra: dict[str, Any] = {"price": str(item.price), "currency": item.currency}
        if item.image:
            extra["image"] = item.image
        if item.color:
            extra["color"] = item.color
        return cls(
            product_id=item.product_id,
            name=item.name,
            quantity=item.quantity,
            unit_price=item.price,
            size_id=item.size_id,
            extra=extra,
        )


@dataclass(frozen=True)
class StockReservation:
    """Quantity to take from a product (or one of its sizes) on insert."""

    product_id: int
    quantity: int
    size_id: Optional[str] = None


@dataclass
class NewOrder:
    tenant_id: int
    customer_id: int
    items: List[OrderLine]
    total: Decimal
    payment_method: str
    notes: Optional[str] = None
    status: str = OrderStatus.PENDING.value


@dataclass
class Order:
    """Persisted order as returned by the store."""

    id: int
    tenant_id: int
    customer_id: Optional[int]
    items: List[dict]
    total: Decimal
    status: str
    payment_method: Optional[str] = None
    payment_id: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    customer: Optional[dict] = None


@dataclass(frozen=True)
class OrderOwnership:
    """Order status plus the identity of the owner of its tenant."""

    id: int
    tenant_id: int
    status: str
    owner_id: Optional[str]


@dataclass(frozen=True)
class OrderFilters:
    status: Optional[str] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    limit: int = 50
    offset: int = 0


@dataclass(frozen=True)
class PreferenceRequest:
    """Payment preference sent to MercadoPago."""

    items: List[dict]
    payer: dict
    back_urls: dict
    external_reference: str
    auto_return: Optional[str] = None
    notification_url: Optional[str] = None

    def to_payload(self) -> dict:
        payload = {
            "items": self.items,
            "payer": self.payer,
            "back_urls": self.back_urls,
            "external_reference": self.external_reference,
        }
        if self.auto_return:
            payload["auto_return"] = self.auto_return
        if self.notification_url:
            payload["notification_url"] = self.notification_url
        return payload


@dataclass(frozen=True)
class Preference:
    id: str
    init_point: Optional[str]


@dataclass(frozen=True)
class PaymentInfo:
    """Payment as reported by the provider when a notification arrives."""

    id: str
    status: str
    external_reference: Optional[str] = None


@dataclass(frozen=True)
class PaymentNotification:
    """Verified webhook body: notification ``type`` and the referenced ``data.id``."""

    type: str
    payment_id: Optional[str] = None


# ---- Service inputs / results ----
@dataclass(frozen=True)
class CreateOrderInput:
    tenant_slug: str
    customer: CustomerInput
    items: List[OrderItemInput]
    payment_method: str
    notes: Optional[str] = None


@dataclass(frozen=True)
class CreateOrderResult:
    order_id: int
    total: Decimal


@dataclass(frozen=True)
class CheckoutInput:
    customer: CustomerInput
    payment_method: str
    items: List[CheckoutItem]
    total: Decimal
    currency: str
    tenant_slug: str
    return_url: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class CheckoutResult:
    order_id: int
    preference_id: Optional[str] = None
    init_point: Optional[str] = None


@dataclass(frozen=True)
class UpdateStatusInput:
    order_id: int
    user_id: str
    new_status: str
    user_email: Optional[str] = None


@dataclass(frozen=True)
class ListOrdersInput:
    tenant_id: int
    user_id: str
    user_email: Optional[str] = None
    filters: OrderFilters = field(default_factory=OrderFilters)


# ---- Ports (DIP) ----
class TenantLookup(Protocol):
    """Resolves tenants. Returns None when no tenant matches."""

    def find_by_slug(self, slug: str) -> Optional[Tenant]:
        raise NotImplementedError()

    def find_by_slug_with_token(self, slug: str) -> Optional[Tenant]:
        """Like ``find_by_slug`` but also loads ``payment_credential``."""
        raise NotImplementedError()

    def find_by_id(self, tenant_id: int) -> Optional[Tenant]:
        raise NotImplementedError()


class CustomerDirectory(Protocol):
    """Tenant-scoped customer records."""

    def find_by_key(self, tenant_id: int, key: DedupKey, customer: CustomerInput) -> Optional[int]:
        """Return the id of the customer matching ``key`` or None.

        Args:
            tenant_id: Tenant the customer must belong to.
            key: Which contact fields of ``customer`` to match on.
            customer: Contact details supplied with the order.
        """
        raise NotImplementedError()

    def create(self, tenant_id: int, name: str, email: str, phone: str) -> int:
        raise NotImplementedError()

    def update(self, customer_id: int, **fields: Any) -> None:
        raise NotImplementedError()


class ProductCatalog(Protocol):
    """Product lookup. Tenant filtering is the caller's job, not the catalog's."""

    def find_by_ids(self, ids: Iterable[int]) -> List[Product]:
        raise NotImplementedError()


class OrderStore(Protocol):
    """Order persistence."""

    def create(self, order: NewOrder, reservations: Iterable[StockReservation] = ()) -> int:
        """Insert ``order`` and take ``reservations`` from stock atomically.

        Raises:
            InsufficientStockError: If stock changed since validation and
                can no longer cover a reservation. Nothing is written.
        """
        raise NotImplementedError()

    def find_by_id_with_tenant(self, order_id: int) -> Optional[OrderOwnership]:
        raise NotImplementedError()

    def update_status(self, order_id: int, status: str) -> Order:
        raise NotImplementedError()

    def set_payment_id(self, order_id: int, payment_id: str) -> None:
        raise NotImplementedError()

    def get(self, order_id: int) -> Optional[Order]:
        raise NotImplementedError()

    def list(self, tenant_id: int, filters: OrderFilters) -> Tuple[List[Order], int]:
        """Return one page of orders and the total match count."""
        raise NotImplementedError()


class PaymentProvider(Protocol):
    """Port describing the payment provider used by the checkout."""

    def create_preference(
        self,
        access_token: str,
        request: PreferenceRequest,
        idempotency_key: Optional[str] = None,
    ) -> Preference:
        """Create a payment preference.

        Raises:
            PaymentProviderError: When the provider rejects or fails the call.
        """
        raise NotImplementedError()

    def get_payment(self, access_token: str, payment_id: str) -> PaymentInfo:
        raise NotImplementedError()


class AuthorizationPolicy(Protocol):
    """Capability check for managing a tenant's orders."""

    def can_manage(self, owner_id: Optional[str], user_id: str, user_email: Optional[str] = None) -> bool:
        raise NotImplementedError()
