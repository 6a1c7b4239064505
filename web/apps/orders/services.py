"""Domain services for the order and checkout core.

The services orchestrate the ports defined in ``domain``: they resolve the
tenant, validate the cart, deduplicate the customer and persist the order.
They do not know about Django, HTTP or any concrete datastore; everything
is injected, which keeps them trivially testable with stub ports.
"""

import logging
from decimal import Decimal
from typing import Callable, Iterable, List, Optional

from .domain import (
    AuthorizationPolicy,
    CheckoutInput,
    CheckoutItem,
    CheckoutResult,
    CreateOrderInput,
    CreateOrderResult,
    CustomerDirectory,
    CustomerInput,
    DedupKey,
    ListOrdersInput,
    NewOrder,
    Order,
    OrderLine,
    OrderStatus,
    OrderStore,
    PaymentMethod,
    PaymentNotification,
    PaymentProvider,
    PreferenceRequest,
    ProductCatalog,
    StockReservation,
    TenantLookup,
    UpdateStatusInput,
)
from .errors import (
    ForbiddenError,
    GatewayError,
    InsufficientStockError,
    InternalError,
    NotFoundError,
    PaymentProviderError,
    ValidationError,
)

logger = logging.getLogger(__name__)

LOCAL_HOSTS = ("localhost", "127.0.0.1")
DEFAULT_BASE_URL = "http://localhost:3000"


# ---- Authorization ----
class OwnerOrSuperadminPolicy(AuthorizationPolicy):
    """Allow the tenant owner and a configured set of superadmin emails.

    Emails are compared trimmed and case-insensitive.
    """

    def __init__(self, superadmin_emails: Iterable[str] = ()):
        self.superadmin_emails = frozenset(
            e.strip().lower() for e in superadmin_emails if e and e.strip()
        )

    def is_superadmin(self, user_email: Optional[str]) -> bool:
        return bool(user_email) and user_email.strip().lower() in self.superadmin_emails

    def can_manage(self, owner_id: Optional[str], user_id: str, user_email: Optional[str] = None) -> bool:
        if self.is_superadmin(user_email):
            return True
        return owner_id is not None and owner_id == user_id


# ---- Customers ----
def upsert_customer(
    directory: CustomerDirectory,
    tenant_id: int,
    customer: CustomerInput,
    key: DedupKey,
) -> int:
    """Find-or-create a tenant-scoped customer and return its id.

    An existing customer matched by ``key`` gets its name and phone
    refreshed with the values from this order, so repeat buyers keep their
    latest contact details.

    Args:
        directory: Customer Directory port.
        tenant_id: Resolved numeric tenant id.
        customer: Contact details supplied with the order.
        key: Dedup key; checkout uses ``EMAIL``, admin order entry uses
            ``EMAIL_AND_PHONE``.

    Returns:
        The id of the existing or newly created customer.

    Raises:
        InternalError: If the directory fails to create or update.
    """
    existing = directory.find_by_key(tenant_id, key, customer)
    if existing is not None:
        directory.update(existing, name=customer.name, phone=customer.phone)
        return existing
    return directory.create(tenant_id, customer.name, customer.email, customer.phone)


def _check_quantity(product_id: int, quantity: int) -> None:
    if quantity < 1:
        raise ValidationError(f"Invalid quantity for product {product_id}")


# ---- Order creation ----
class OrderService:
    """Admin order entry: re-derives every line from the catalog.

    This service validates the cart against the Product Catalog (tenant
    ownership, availability, sizes and stock), computes the total from
    catalog prices and persists the order as ``pending``.
    """

    def __init__(
        self,
        tenants: TenantLookup,
        customers: CustomerDirectory,
        orders: OrderStore,
        products: ProductCatalog,
        policy: Optional[AuthorizationPolicy] = None,
    ):
        self.tenants = tenants
        self.customers = customers
        self.orders = orders
        self.products = products
        self.policy = policy or OwnerOrSuperadminPolicy()

    def create_order(self, data: CreateOrderInput) -> CreateOrderResult:
        """Validate a cart and persist it as a pending order.

        Stock is only enforced for tenants with ``enforces_stock``; for those
        the store takes the quantities from stock in the same transaction as
        the insert.

        Args:
            data: Tenant slug, customer, requested items, payment method and
                optional notes.

        Returns:
            CreateOrderResult with the new order id and the computed total.

        Raises:
            NotFoundError: Unknown tenant slug.
            ValidationError: Quantity below one, no product resolved, unknown
                or inactive product, invalid size, or insufficient stock.
            ForbiddenError: A product belongs to another tenant.
        """
        tenant = self.tenants.find_by_slug(data.tenant_slug)
        if tenant is None:
            raise NotFoundError("Tenant")

        products = self.products.find_by_ids([i.product_id for i in data.items])
        if not products:
            raise ValidationError("Failed to validate products")

        foreign = [p.id for p in products if p.tenant_id != tenant.id]
        if foreign:
            logger.warning(
                "product ownership mismatch",
                extra={"tenant_id": tenant.id, "product_ids": foreign},
            )
            raise ForbiddenError("Product ownership mismatch")

        by_id = {p.id: p for p in products}
        lines: List[OrderLine] = []
        reservations: List[StockReservation] = []
        total = Decimal("0")

        for item in data.items:
            _check_quantity(item.product_id, item.quantity)
            product = by_id.get(item.product_id)
            if product is None:
                raise ValidationError(f"Product {item.product_id} not found")
            if not product.active:
                raise ValidationError(f"Product {product.name} is not available")

            available, label = product.stock_for(item.size_id)
            if tenant.enforces_stock:
                if available < item.quantity:
                    raise InsufficientStockError(label, available)
                reservations.append(StockReservation(product.id, item.quantity, item.size_id))

            lines.append(
                OrderLine(
                    product_id=product.id,
                    name=product.name,
                    quantity=item.quantity,
                    unit_price=product.price,
                    size_id=item.size_id,
                )
            )
            total += product.price * item.quantity

        customer_id = upsert_customer(self.customers, tenant.id, data.customer, DedupKey.EMAIL_AND_PHONE)

        order_id = self.orders.create(
            NewOrder(
                tenant_id=tenant.id,
                customer_id=customer_id,
                items=lines,
                total=total,
                payment_method=data.payment_method,
                notes=data.notes,
            ),
            reservations=reservations,
        )
        logger.info(
            "order created",
            extra={"order_id": order_id, "tenant_id": tenant.id, "total": str(total)},
        )
        return CreateOrderResult(order_id=order_id, total=total)

    def list_orders(self, data: ListOrdersInput) -> dict:
        """Return one page of a tenant's orders, newest first.

        Raises:
            NotFoundError: Unknown tenant id.
            ForbiddenError: Caller neither owns the tenant nor is superadmin.
        """
        tenant = self.tenants.find_by_id(data.tenant_id)
        if tenant is None:
            raise NotFoundError("Tenant")
        if not self.policy.can_manage(tenant.owner_id, data.user_id, data.user_email):
            raise ForbiddenError("You do not own this store")

        filters = data.filters
        orders, count = self.orders.list(tenant.id, filters)
        return {
            "orders": orders,
            "total_count": count,
            "page": filters.offset // filters.limit + 1,
            "per_page": filters.limit,
        }

    def get_order(self, order_id: int) -> Order:
        order = self.orders.get(order_id)
        if order is None:
            raise NotFoundError("Order")
        return order


# ---- Checkout ----
class CheckoutService:
    """Public checkout: persists the cart as sent and requests a payment preference.

    Unlike ``OrderService`` the line items (name, price, image) and the total
    are trusted as supplied by the storefront, and customers are deduplicated
    by email only. The order is written before the provider is called, so a
    provider failure leaves a ``pending`` order without payment reference.
    """

    def __init__(
        self,
        tenants: TenantLookup,
        customers: CustomerDirectory,
        orders: OrderStore,
        payments: PaymentProvider,
        decrypt: Callable[[str], str],
        public_base_url: Optional[str] = None,
        locale: str = "es",
    ):
        self.tenants = tenants
        self.customers = customers
        self.orders = orders
        self.payments = payments
        self.decrypt = decrypt
        self.public_base_url = public_base_url
        self.locale = locale

    def execute(self, data: CheckoutInput) -> CheckoutResult:
        """Run the checkout.

        Args:
            data: Customer, payment method, denormalized items, total,
                currency, tenant slug and optional return URL.

        Returns:
            CheckoutResult with only ``order_id`` for offline payment
            methods, or with the preference id and redirect URL otherwise.

        Raises:
            NotFoundError: Unknown tenant slug.
            ValidationError: A line with a quantity below one or a negative
                price, or a tenant with no payment credential stored.
            GatewayError: The payment provider failed.
            InternalError: The stored credential cannot be decrypted.
        """
        tenant = self.tenants.find_by_slug(data.tenant_slug)
        if tenant is None:
            raise NotFoundError("Tenant")

        for item in data.items:
            _check_quantity(item.product_id, item.quantity)
            if item.price < 0:
                raise ValidationError(f"Invalid price for product {item.product_id}")

        customer_id = upsert_customer(self.customers, tenant.id, data.customer, DedupKey.EMAIL)

        order_id = self.orders.create(
            NewOrder(
                tenant_id=tenant.id,
                customer_id=customer_id,
                items=[OrderLine.from_checkout_item(i) for i in data.items],
                total=data.total,
                payment_method=data.payment_method,
                notes=data.notes or "",
            )
        )
        logger.info(
            "checkout order created",
            extra={"order_id": order_id, "tenant_id": tenant.id, "payment_method": data.payment_method},
        )

        if not PaymentMethod(data.payment_method).requires_preference:
            return CheckoutResult(order_id=order_id)

        tenant_data = self.tenants.find_by_slug_with_token(data.tenant_slug)
        if tenant_data is None or not tenant_data.payment_credential:
            raise ValidationError("MercadoPago not configured for this tenant")

        try:
            access_token = self.decrypt(tenant_data.payment_credential)
        except ValueError as exc:
            logger.error("payment credential unreadable", extra={"tenant_id": tenant.id})
            raise InternalError("Failed to read payment credential") from exc

        request = self.build_preference(data, order_id)
        try:
            preference = self.payments.create_preference(
                access_token, request, idempotency_key=f"order-{order_id}"
            )
        except PaymentProviderError as exc:
            logger.error(
                "payment preference failed",
                extra={"order_id": order_id, "tenant_id": tenant.id, "error": str(exc)},
            )
            raise GatewayError(f"MercadoPago API error: {exc}") from exc

        self.orders.set_payment_id(order_id, preference.id)
        return CheckoutResult(
            order_id=order_id,
            preference_id=preference.id,
            init_point=preference.init_point,
        )

    def build_preference(self, data: CheckoutInput, order_id: int) -> PreferenceRequest:
        base_url = (data.return_url or self.public_base_url or DEFAULT_BASE_URL).rstrip("/")
        is_production = not any(host in base_url for host in LOCAL_HOSTS)
        checkout_url = f"{base_url}/{self.locale}/{data.tenant_slug}/checkout"
        currency_id = "ARS" if data.currency == "ARS" else "USD"

        return PreferenceRequest(
            items=[_preference_item(i, currency_id) for i in data.items],
            payer={
                "name": data.customer.name,
                "email": data.customer.email,
                "phone": {"number": data.customer.phone},
            },
            back_urls={
                "success": f"{checkout_url}/success",
                "failure": f"{checkout_url}/failure",
                "pending": f"{checkout_url}/pending",
            },
            external_reference=str(order_id),
            auto_return="approved" if is_production else None,
            notification_url=f"{base_url}/api/webhooks/mercadopago" if is_production else None,
        )


def _preference_item(item: CheckoutItem, currency_id: str) -> dict:
    return {
        "id": str(item.product_id),
        "title": item.name,
        "unit_price": float(item.price),
        "quantity": item.quantity,
        "currency_id": currency_id,
        "description": item.name,
    }


# ---- Lifecycle ----
def check_transition(current: str, target: str) -> None:
    """Reject status changes out of the terminal states.

    Delivered orders may only be cancelled; cancelled orders stay cancelled.
    Any other transition is accepted.

    Raises:
        ValidationError: For an illegal transition.
    """
    if current == OrderStatus.DELIVERED.value and target != OrderStatus.CANCELLED.value:
        raise ValidationError("Cannot change status of delivered order")
    if current == OrderStatus.CANCELLED.value and target != OrderStatus.CANCELLED.value:
        raise ValidationError("Cannot change status of cancelled order")


class OrderLifecycleManager:
    """Authorizes and applies order status changes."""

    def __init__(self, orders: OrderStore, policy: AuthorizationPolicy):
        self.orders = orders
        self.policy = policy

    def update_status(self, data: UpdateStatusInput) -> Order:
        """Change an order's status.

        The order lookup comes first, then authorization, then the
        transition rule evaluated against the persisted status.

        Returns:
            The updated order.

        Raises:
            NotFoundError: No order with that id.
            ForbiddenError: Caller is neither tenant owner nor superadmin.
            ValidationError: Illegal transition out of a terminal state.
        """
        order = self.orders.find_by_id_with_tenant(data.order_id)
        if order is None:
            raise NotFoundError("Order")

        if not self.policy.can_manage(order.owner_id, data.user_id, data.user_email):
            logger.warning(
                "status change denied",
                extra={"order_id": order.id, "user_id": data.user_id},
            )
            raise ForbiddenError("You do not own this order")

        check_transition(order.status, data.new_status)

        updated = self.orders.update_status(order.id, data.new_status)
        logger.info(
            "order status changed",
            extra={"order_id": order.id, "from": order.status, "to": data.new_status},
        )
        return updated


# ---- Payment notifications ----
PAYMENT_STATUS_MAP = {
    "approved": OrderStatus.PAID.value,
    "rejected": OrderStatus.CANCELLED.value,
    "pending": OrderStatus.PENDING.value,
    "in_process": OrderStatus.PENDING.value,
    "cancelled": OrderStatus.CANCELLED.value,
    "refunded": OrderStatus.CANCELLED.value,
    "charged_back": OrderStatus.CANCELLED.value,
}


def order_status_for_payment(payment_status: str) -> str:
    """Map a provider payment status onto an order status; unknown ones stay pending."""
    return PAYMENT_STATUS_MAP.get(payment_status, OrderStatus.PENDING.value)


class PaymentWebhookService:
    """Applies verified MercadoPago payment notifications to orders.

    The payment is fetched back from the provider with the platform access
    token, and its ``external_reference`` (the order id sent with the
    preference) selects the order to update. Notifications that cannot be
    matched to an order are acknowledged and ignored so the provider does
    not keep retrying them.
    """

    def __init__(self, orders: OrderStore, payments: PaymentProvider, access_token: Optional[str]):
        self.orders = orders
        self.payments = payments
        self.access_token = access_token

    def handle(self, notification: PaymentNotification) -> Optional[Order]:
        """Apply one notification.

        Args:
            notification: Notification type and referenced payment id.

        Returns:
            The updated order, or None when the notification was ignored.

        Raises:
            ValidationError: A payment notification without payment id.
            InternalError: No platform access token configured.
            GatewayError: The provider failed to return the payment.
        """
        if notification.type != "payment":
            logger.info("notification ignored", extra={"type": notification.type})
            return None
        if not notification.payment_id:
            raise ValidationError("Missing payment ID")
        if not self.access_token:
            logger.error("webhook access token not configured")
            raise InternalError("MercadoPago not configured")

        try:
            payment = self.payments.get_payment(self.access_token, notification.payment_id)
        except PaymentProviderError as exc:
            logger.error(
                "payment lookup failed",
                extra={"payment_id": notification.payment_id, "error": str(exc)},
            )
            raise GatewayError(f"MercadoPago API error: {exc}") from exc

        try:
            order_id = int(payment.external_reference)
        except (TypeError, ValueError):
            logger.warning(
                "payment without order reference",
                extra={"payment_id": payment.id, "external_reference": payment.external_reference},
            )
            return None

        order = self.orders.find_by_id_with_tenant(order_id)
        if order is None:
            logger.warning("payment for unknown order", extra={"payment_id": payment.id, "order_id": order_id})
            return None

        new_status = order_status_for_payment(payment.status)
        try:
            check_transition(order.status, new_status)
        except ValidationError:
            logger.warning(
                "payment status not applied",
                extra={"order_id": order.id, "from": order.status, "to": new_status},
            )
            return None

        self.orders.set_payment_id(order.id, payment.id)
        updated = self.orders.update_status(order.id, new_status)
        logger.info(
            "order payment updated",
            extra={"order_id": order.id, "payment_id": payment.id, "payment_status": payment.status, "to": new_status},
        )
        return updated
