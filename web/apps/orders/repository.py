"""Repository layer backed by the Django ORM.

Each class implements one port from ``domain`` and maps ORM rows into the
domain dataclasses, so services never see Django model instances. Database
failures are wrapped into ``InternalError`` with the store's message.

Stock is taken inside ``DjangoOrderStore.create``: the product rows are
locked with ``SELECT ... FOR UPDATE``, re-checked and decremented in the
same transaction as the order insert, so two concurrent carts cannot both
consume the last unit.
"""

import logging
from collections import defaultdict
from contextlib import contextmanager
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple

from django.db import DatabaseError, transaction
from django.utils import timezone

from .domain import (
    CustomerInput,
    DedupKey,
    NewOrder,
    Order,
    OrderFilters,
    OrderOwnership,
    Product,
    SizeVariant,
    StockReservation,
    Tenant,
)
from .errors import InsufficientStockError, InternalError, NotFoundError
from .models import CustomerModel, OrderModel, ProductModel, TenantModel, template_enforces_stock

logger = logging.getLogger(__name__)


@contextmanager
def _store_errors(action: str):
    """Translate ORM failures into ``InternalError``."""
    try:
        yield
    except DatabaseError as exc:
        logger.exception("store failure", extra={"action": action})
        raise InternalError(f"Failed to {action}: {exc}") from exc


# ---- Mappers ----
def tenant_from_row(row: TenantModel, with_token: bool = False) -> Tenant:
    """Map a tenant row; a NULL ``enforces_stock`` falls back to the template policy."""
    enforces_stock = row.enforces_stock
    if enforces_stock is None:
        enforces_stock = template_enforces_stock(row.template)
    return Tenant(
        id=row.id,
        slug=row.slug,
        template=row.template,
        enforces_stock=enforces_stock,
        owner_id=row.owner_id or None,
        payment_credential=row.mp_access_token if with_token else None,
    )


def product_from_row(row: ProductModel) -> Product:
    sizes = {}
    for size in (row.metadata or {}).get("sizes") or []:
        sid = str(size["id"])
        sizes[sid] = SizeVariant(id=sid, label=size.get("label", sid), stock=int(size.get("stock") or 0))
    return Product(
        id=row.id,
        tenant_id=row.tenant_id,
        name=row.name,
        price=Decimal(row.price),
        active=row.active,
        stock=row.stock,
        sizes=sizes,
    )


def order_from_row(row: OrderModel, with_customer: bool = False) -> Order:
    customer = None
    if with_customer and row.customer is not None:
        customer = {
            "id": row.customer.id,
            "name": row.customer.name,
            "email": row.customer.email,
            "phone": row.customer.phone,
        }
    return Order(
        id=row.id,
        tenant_id=row.tenant_id,
        customer_id=row.customer_id,
        items=list(row.items or []),
        total=Decimal(row.total),
        status=row.status,
        payment_method=row.payment_method,
        payment_id=row.payment_id,
        notes=row.notes,
        created_at=row.created_at,
        updated_at=row.updated_at,
        customer=customer,
    )


# ---- Repositories ----
class DjangoTenantLookup:
    """``TenantLookup`` over the ``tenants`` table.

    The encrypted payment credential is only mapped by
    ``find_by_slug_with_token``; the other lookups leave it empty so it does
    not travel further than the checkout step that needs it.
    """

    def find_by_slug(self, slug: str) -> Optional[Tenant]:
        """Return the tenant for a storefront slug, or None."""
        with _store_errors("fetch tenant"):
            row = TenantModel.objects.filter(slug=slug).first()
        return tenant_from_row(row) if row else None

    def find_by_slug_with_token(self, slug: str) -> Optional[Tenant]:
        """Like ``find_by_slug`` but including ``payment_credential``."""
        with _store_errors("fetch tenant token"):
            row = TenantModel.objects.filter(slug=slug).first()
        return tenant_from_row(row, with_token=True) if row else None

    def find_by_id(self, tenant_id: int) -> Optional[Tenant]:
        with _store_errors("fetch tenant"):
            row = TenantModel.objects.filter(id=tenant_id).first()
        return tenant_from_row(row) if row else None


class DjangoCustomerDirectory:
    """``CustomerDirectory`` over the ``customers`` table, always tenant scoped."""

    def find_by_key(self, tenant_id: int, key: DedupKey, customer: CustomerInput) -> Optional[int]:
        """Return the oldest customer id matching ``key`` within the tenant.

        Args:
            tenant_id: Tenant the customer must belong to.
            key: ``EMAIL`` matches on email only; ``EMAIL_AND_PHONE`` also
                requires the phone to match.
            customer: Contact details supplied with the order.

        Returns:
            The customer id, or None when no row matches.
        """
        qs = CustomerModel.objects.filter(tenant_id=tenant_id, email=customer.email)
        if key == DedupKey.EMAIL_AND_PHONE:
            qs = qs.filter(phone=customer.phone)
        with _store_errors("fetch customer"):
            return qs.order_by("id").values_list("id", flat=True).first()

    def create(self, tenant_id: int, name: str, email: str, phone: str) -> int:
        """Insert a customer and return its id."""
        with _store_errors("create customer"):
            row = CustomerModel.objects.create(tenant_id=tenant_id, name=name, email=email, phone=phone)
        return row.id

    def update(self, customer_id: int, **fields) -> None:
        """Overwrite ``fields`` and bump ``updated_at``."""
        with _store_errors("update customer"):
            CustomerModel.objects.filter(id=customer_id).update(updated_at=timezone.now(), **fields)


class DjangoProductCatalog:
    """``ProductCatalog`` over the ``products`` table.

    Lookups are not filtered by tenant: ownership is checked by the caller.
    """

    def find_by_ids(self, ids: Iterable[int]) -> List[Product]:
        with _store_errors("fetch products"):
            rows = list(ProductModel.objects.filter(id__in=set(ids)))
        return [product_from_row(r) for r in rows]


class DjangoOrderStore:
    """``OrderStore`` over the ``orders`` table."""

    def create(self, order: NewOrder, reservations: Iterable[StockReservation] = ()) -> int:
        """Insert the order, taking ``reservations`` from stock in the same transaction.

        Args:
            order: Order to persist.
            reservations: Quantities to decrement. Empty for tenants that do
                not enforce stock and for checkout orders.

        Returns:
            int: The new order id.

        Raises:
            InsufficientStockError: When a locked row no longer covers the
                requested quantity; the transaction is rolled back.
            InternalError: On any database failure.
        """
        reservations = list(reservations)
        with _store_errors("create order"), transaction.atomic():
            if reservations:
                _reserve_stock(reservations)
            row = OrderModel.objects.create(
                tenant_id=order.tenant_id,
                customer_id=order.customer_id,
                items=[line.to_dict() for line in order.items],
                total=order.total,
                status=order.status,
                payment_method=order.payment_method,
                notes=order.notes,
            )
        return row.id

    def find_by_id_with_tenant(self, order_id: int) -> Optional[OrderOwnership]:
        """Return the order status together with its tenant owner id, or None."""
        with _store_errors("fetch order"):
            row = OrderModel.objects.select_related("tenant").filter(id=order_id).first()
        if row is None:
            return None
        return OrderOwnership(
            id=row.id,
            tenant_id=row.tenant_id,
            status=row.status,
            owner_id=row.tenant.owner_id or None,
        )

    def update_status(self, order_id: int, status: str) -> Order:
        """Persist ``status`` and ``updated_at`` and return the updated order.

        Raises:
            NotFoundError: No order with that id.
        """
        with _store_errors("update order status"):
            updated = OrderModel.objects.filter(id=order_id).update(status=status, updated_at=timezone.now())
            if not updated:
                raise NotFoundError("Order")
            row = OrderModel.objects.get(id=order_id)
        return order_from_row(row)

    def set_payment_id(self, order_id: int, payment_id: str) -> None:
        with _store_errors("store payment reference"):
            OrderModel.objects.filter(id=order_id).update(payment_id=payment_id, updated_at=timezone.now())

    def get(self, order_id: int) -> Optional[Order]:
        with _store_errors("fetch order"):
            row = OrderModel.objects.select_related("customer").filter(id=order_id).first()
        return order_from_row(row, with_customer=True) if row else None

    def list(self, tenant_id: int, filters: OrderFilters) -> Tuple[List[Order], int]:
        """Return one page of the tenant's orders, newest first, and the match count.

        ``date_from`` and ``date_to`` compare the calendar day of
        ``created_at`` in the current time zone, both bounds inclusive.
        """
        qs = OrderModel.objects.select_related("customer").filter(tenant_id=tenant_id)
        if filters.status:
            qs = qs.filter(status=filters.status)
        if filters.date_from:
            qs = qs.filter(created_at__date__gte=filters.date_from)
        if filters.date_to:
            qs = qs.filter(created_at__date__lte=filters.date_to)
        qs = qs.order_by("-created_at", "-id")
        with _store_errors("list orders"):
            count = qs.count()
            rows = list(qs[filters.offset:filters.offset + filters.limit])
        return [order_from_row(r, with_customer=True) for r in rows], count


def _reserve_stock(reservations: List[StockReservation]) -> None:
    """Lock, re-check and decrement stock. Must run inside ``transaction.atomic``."""
    wanted = defaultdict(int)
    for r in reservations:
        wanted[(r.product_id, r.size_id)] += r.quantity

    product_ids = {pid for pid, _ in wanted}
    rows = {p.id: p for p in ProductModel.objects.select_for_update().filter(id__in=product_ids).order_by("id")}

    # Check everything before touching any row
    for (pid, size_id), quantity in wanted.items():
        row = rows.get(pid)
        if row is None:
            raise NotFoundError(f"Product {pid}")
        available, label = product_from_row(row).stock_for(size_id)
        if available < quantity:
            raise InsufficientStockError(label, available)

    for (pid, size_id), quantity in wanted.items():
        row = rows[pid]
        if size_id:
            metadata = dict(row.metadata or {})
            sizes = [dict(s) for s in metadata.get("sizes") or []]
            for size in sizes:
                if str(size["id"]) == size_id:
                    size["stock"] = int(size.get("stock") or 0) - quantity
            metadata["sizes"] = sizes
            row.metadata = metadata
        else:
            row.stock = (row.stock or 0) - quantity

    for row in rows.values():
        row.save(update_fields=["stock", "metadata", "updated_at"])
