"""In-process adapters for the orders domain ports.

These implement every port without a database or network calls. They are
intended for unit tests and local development where deterministic
behavior is useful. Each store guards its state with a lock so the
in-memory order store gives the same all-or-nothing stock reservation as
the ORM store.
"""

import itertools
import threading
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple

from .domain import (
    CustomerInput,
    DedupKey,
    NewOrder,
    Order,
    OrderFilters,
    OrderOwnership,
    PaymentInfo,
    Preference,
    PreferenceRequest,
    Product,
    StockReservation,
    Tenant,
)
from .errors import InsufficientStockError, NotFoundError, PaymentProviderError


class InMemoryTenantLookup:
    """Tenants keyed by slug; the credential is hidden except from the token lookup."""

    def __init__(self, tenants: Iterable[Tenant] = ()):
        self._by_slug: Dict[str, Tenant] = {t.slug: t for t in tenants}

    def add(self, tenant: Tenant) -> Tenant:
        self._by_slug[tenant.slug] = tenant
        return tenant

    def find_by_slug(self, slug: str) -> Optional[Tenant]:
        tenant = self._by_slug.get(slug)
        return replace(tenant, payment_credential=None) if tenant else None

    def find_by_slug_with_token(self, slug: str) -> Optional[Tenant]:
        return self._by_slug.get(slug)

    def find_by_id(self, tenant_id: int) -> Optional[Tenant]:
        for tenant in self._by_slug.values():
            if tenant.id == tenant_id:
                return replace(tenant, payment_credential=None)
        return None


class InMemoryProductCatalog:
    """Product catalog holding ``Product`` dataclasses keyed by id."""

    def __init__(self, products: Iterable[Product] = ()):
        self.lock = threading.RLock()
        self._products: Dict[int, Product] = {p.id: p for p in products}

    def add(self, product: Product) -> Product:
        with self.lock:
            self._products[product.id] = product
        return product

    def get(self, product_id: int) -> Optional[Product]:
        """Return the stored product (not a copy), for assertions."""
        return self._products.get(product_id)

    def find_by_ids(self, ids: Iterable[int]) -> List[Product]:
        """Return copies of the known products, once per id, in request order."""
        with self.lock:
            return [replace(self._products[i]) for i in dict.fromkeys(ids) if i in self._products]

    def reserve(self, reservations: List[StockReservation]) -> None:
        """Check then decrement every reservation, or change nothing.

        Raises:
            InsufficientStockError: If any line cannot be covered.
        """
        with self.lock:
            wanted: Dict[Tuple[int, Optional[str]], int] = {}
            for r in reservations:
                wanted[(r.product_id, r.size_id)] = wanted.get((r.product_id, r.size_id), 0) + r.quantity

            for (pid, size_id), quantity in wanted.items():
                product = self._products.get(pid)
                if product is None:
                    raise NotFoundError(f"Product {pid}")
                available, label = product.stock_for(size_id)
                if available < quantity:
                    raise InsufficientStockError(label, available)

            for (pid, size_id), quantity in wanted.items():
                product = self._products[pid]
                if size_id:
                    size = product.sizes[size_id]
                    sizes = dict(product.sizes)
                    sizes[size_id] = replace(size, stock=(size.stock or 0) - quantity)
                    self._products[pid] = replace(product, sizes=sizes)
                else:
                    self._products[pid] = replace(product, stock=(product.stock or 0) - quantity)


class InMemoryCustomerDirectory:
    """Customers as plain dicts in ``records``, keyed by id."""

    def __init__(self):
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self.records: Dict[int, dict] = {}

    def find_by_key(self, tenant_id: int, key: DedupKey, customer: CustomerInput) -> Optional[int]:
        with self._lock:
            for cid, rec in self.records.items():
                if rec["tenant_id"] != tenant_id or rec["email"] != customer.email:
                    continue
                if key == DedupKey.EMAIL_AND_PHONE and rec["phone"] != customer.phone:
                    continue
                return cid
        return None

    def create(self, tenant_id: int, name: str, email: str, phone: str) -> int:
        with self._lock:
            cid = next(self._ids)
            self.records[cid] = {"tenant_id": tenant_id, "name": name, "email": email, "phone": phone}
        return cid

    def update(self, customer_id: int, **fields) -> None:
        with self._lock:
            self.records[customer_id].update(fields)


class InMemoryOrderStore:
    """Order store that shares the catalog's lock for stock reservations."""

    def __init__(self, tenants: InMemoryTenantLookup, catalog: Optional[InMemoryProductCatalog] = None,
                 customers: Optional[InMemoryCustomerDirectory] = None):
        self.tenants = tenants
        self.catalog = catalog or InMemoryProductCatalog()
        self.customers = customers
        self._ids = itertools.count(1)
        self.orders: Dict[int, Order] = {}

    def create(self, order: NewOrder, reservations: Iterable[StockReservation] = ()) -> int:
        """Reserve stock and insert under the catalog lock, or do neither.

        Raises:
            InsufficientStockError: A reservation cannot be covered.
        """
        reservations = list(reservations)
        with self.catalog.lock:
            if reservations:
                self.catalog.reserve(reservations)
            oid = next(self._ids)
            now = datetime.now(timezone.utc)
            self.orders[oid] = Order(
                id=oid,
                tenant_id=order.tenant_id,
                customer_id=order.customer_id,
                items=[line.to_dict() for line in order.items],
                total=order.total,
                status=order.status,
                payment_method=order.payment_method,
                notes=order.notes,
                created_at=now,
                updated_at=now,
            )
        return oid

    def find_by_id_with_tenant(self, order_id: int) -> Optional[OrderOwnership]:
        order = self.orders.get(order_id)
        if order is None:
            return None
        tenant = self.tenants.find_by_id(order.tenant_id)
        return OrderOwnership(
            id=order.id,
            tenant_id=order.tenant_id,
            status=order.status,
            owner_id=tenant.owner_id if tenant else None,
        )

    def update_status(self, order_id: int, status: str) -> Order:
        order = self.orders.get(order_id)
        if order is None:
            raise NotFoundError("Order")
        order.status = status
        order.updated_at = datetime.now(timezone.utc)
        return order

    def set_payment_id(self, order_id: int, payment_id: str) -> None:
        self.orders[order_id].payment_id = payment_id

    def get(self, order_id: int) -> Optional[Order]:
        """Return the order with its ``customer`` dict attached when known."""
        order = self.orders.get(order_id)
        if order is not None and self.customers is not None and order.customer_id in self.customers.records:
            rec = self.customers.records[order.customer_id]
            order = replace(order, customer={"id": order.customer_id, **{k: rec[k] for k in ("name", "email", "phone")}})
        return order

    def list(self, tenant_id: int, filters: OrderFilters) -> Tuple[List[Order], int]:
        matches = [
            o for o in self.orders.values()
            if o.tenant_id == tenant_id
            and (not filters.status or o.status == filters.status)
            and (not filters.date_from or o.created_at.date() >= filters.date_from)
            and (not filters.date_to or o.created_at.date() <= filters.date_to)
        ]
        matches.sort(key=lambda o: (o.created_at, o.id), reverse=True)
        return matches[filters.offset:filters.offset + filters.limit], len(matches)


class PaymentsStub:
    """Stub implementation of ``PaymentProvider``.

    Approves preferences for any non-empty access token and returns a
    sandbox redirect URL. Requests are kept in ``calls`` for assertions.
    Payments answered by ``get_payment`` are registered with ``add_payment``.
    """

    def __init__(self):
        self.calls: List[Tuple[str, PreferenceRequest, Optional[str]]] = []
        self.payments: Dict[str, PaymentInfo] = {}

    def add_payment(self, payment: PaymentInfo) -> PaymentInfo:
        self.payments[payment.id] = payment
        return payment

    def create_preference(self, access_token: str, request: PreferenceRequest,
                          idempotency_key: Optional[str] = None) -> Preference:
        self.calls.append((access_token, request, idempotency_key))
        if not access_token:
            raise PaymentProviderError("invalid access token")
        pref_id = f"pref-{uuid.uuid4().hex[:12]}"
        return Preference(
            id=pref_id,
            init_point=f"https://sandbox.mercadopago.com/checkout/v1/redirect?pref_id={pref_id}",
        )

    def get_payment(self, access_token: str, payment_id: str) -> PaymentInfo:
        if not access_token:
            raise PaymentProviderError("invalid access token")
        payment = self.payments.get(str(payment_id))
        if payment is None:
            raise PaymentProviderError(f"payment {payment_id} not found")
        return payment
