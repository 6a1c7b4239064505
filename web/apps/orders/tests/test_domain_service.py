"""Unit tests for the order creation pipeline (OrderService.create_order).

These tests drive the service through in-memory ports: tenant resolution,
ownership checks, availability, sizes, stock policy and the computed total.
A recording store is used where the test must prove nothing was written.
"""

from decimal import Decimal

import pytest

from apps.orders.domain import CreateOrderInput, CustomerInput, OrderItemInput, Product
from apps.orders.errors import ForbiddenError, InsufficientStockError, NotFoundError, ValidationError
from apps.orders.services import OrderService

CUSTOMER = CustomerInput(name="Ana Garcia", email="ana@test.com", phone="1234567890")


class RecordingStore:
    """Order store stub that fails the test if anything is written."""

    def __init__(self):
        self.created = []

    def create(self, order, reservations=()):
        self.created.append((order, list(reservations)))
        return 99


def make_service(world, orders=None):
    return OrderService(world["tenants"], world["customers"], orders or world["orders"], world["catalog"])


def cart(*items, slug="t"):
    return CreateOrderInput(
        tenant_slug=slug,
        customer=CUSTOMER,
        items=[OrderItemInput(*i) for i in items],
        payment_method="mercadopago",
    )


def test_create_order_ok(store_world):
    """Happy path: total comes from the catalog and the order is pending."""
    service = make_service(store_world)
    out = service.create_order(cart((1, 1)))
    assert out.total == Decimal("50")
    order = store_world["orders"].orders[out.order_id]
    assert order.status == "pending"
    assert order.tenant_id == 10
    assert order.items[0]["unit_price"] == "50"
    assert order.payment_method == "mercadopago"


def test_insufficient_stock_then_reduced_quantity_succeeds(store_world):
    service = make_service(store_world)
    with pytest.raises(InsufficientStockError) as e:
        service.create_order(cart((1, 2)))
    assert str(e.value) == "Insufficient stock for Widget. Available: 1"
    assert store_world["orders"].orders == {}

    out = service.create_order(cart((1, 1)))
    assert out.total == Decimal("50")


def test_stock_is_taken_on_insert(store_world):
    service = make_service(store_world)
    service.create_order(cart((1, 1)))
    assert store_world["catalog"].get(1).stock == 0
    with pytest.raises(InsufficientStockError):
        service.create_order(cart((1, 1)))


def test_unknown_tenant_is_not_found(store_world):
    with pytest.raises(NotFoundError) as e:
        make_service(store_world).create_order(cart((1, 1), slug="nope"))
    assert str(e.value) == "Tenant not found"


def test_no_product_resolved(store_world):
    with pytest.raises(ValidationError) as e:
        make_service(store_world).create_order(cart((404, 1)))
    assert str(e.value) == "Failed to validate products"


def test_foreign_product_is_forbidden_and_nothing_written(store_world):
    """A product of tenant 20 in tenant 10's cart is an ownership mismatch."""
    store = RecordingStore()
    with pytest.raises(ForbiddenError) as e:
        make_service(store_world, orders=store).create_order(cart((1, 1), (4, 1)))
    assert str(e.value) == "Product ownership mismatch"
    assert store.created == []
    assert store_world["customers"].records == {}


def test_missing_product_in_batch(store_world):
    with pytest.raises(ValidationError) as e:
        make_service(store_world).create_order(cart((1, 1), (777, 1)))
    assert str(e.value) == "Product 777 not found"


def test_inactive_product_rejected(store_world):
    store = RecordingStore()
    with pytest.raises(ValidationError) as e:
        make_service(store_world, orders=store).create_order(cart((3, 1)))
    assert str(e.value) == "Product Retired is not available"
    assert store.created == []


def test_size_stock_used_with_compound_label(store_world):
    service = make_service(store_world)
    with pytest.raises(InsufficientStockError) as e:
        service.create_order(cart((2, 1, "l")))
    assert str(e.value) == "Insufficient stock for Shirt (L). Available: 0"

    out = service.create_order(cart((2, 2, "m")))
    assert out.total == Decimal("40")
    assert store_world["catalog"].get(2).sizes["m"].stock == 0


def test_invalid_size(store_world):
    with pytest.raises(ValidationError) as e:
        make_service(store_world).create_order(cart((2, 1, "xxl")))
    assert str(e.value) == "Invalid size for Shirt"


def test_no_stock_limit_tenant_skips_stock(store_world):
    """Stock 0 does not block a tenant that does not enforce stock."""
    store = RecordingStore()
    out = make_service(store_world, orders=store).create_order(cart((4, 12), slug="food"))
    assert out.total == Decimal("42.00")
    _, reservations = store.created[0]
    assert reservations == []


def test_client_price_never_used(store_world):
    """Total is the catalog price times quantity, summed over lines."""
    store_world["catalog"].add(Product(id=5, tenant_id=10, name="Mug", price=Decimal("7.25"), stock=100))
    out = make_service(store_world).create_order(cart((5, 3), (1, 1)))
    assert out.total == Decimal("71.75")


def test_customer_deduplicated_by_email_and_phone(store_world):
    service = make_service(store_world)
    store_world["catalog"].add(Product(id=5, tenant_id=10, name="Mug", price=Decimal("1"), stock=100))
    first = service.create_order(cart((5, 1)))
    second = service.create_order(cart((5, 1)))
    orders = store_world["orders"].orders
    assert orders[first.order_id].customer_id == orders[second.order_id].customer_id
    assert len(store_world["customers"].records) == 1


@pytest.mark.parametrize("quantity", [0, -5])
def test_quantity_below_one_rejected_and_stock_untouched(store_world, quantity):
    store = RecordingStore()
    with pytest.raises(ValidationError) as e:
        make_service(store_world, orders=store).create_order(cart((1, quantity)))
    assert str(e.value) == "Invalid quantity for product 1"
    assert store.created == []
    assert store_world["catalog"].get(1).stock == 1


def test_negative_quantity_rejected_without_stock_limit(store_world):
    """No stock check runs for this tenant, so the total would go negative."""
    with pytest.raises(ValidationError):
        make_service(store_world).create_order(cart((4, 2), (4, -3), slug="food"))
    assert store_world["orders"].orders == {}
    assert store_world["customers"].records == {}
