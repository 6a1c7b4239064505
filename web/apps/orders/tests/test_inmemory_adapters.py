"""Tests for the in-process adapters: customer dedup and atomic reservations."""

import threading
from decimal import Decimal

import pytest

from apps.orders.adapters import InMemoryCustomerDirectory
from apps.orders.domain import (
    CreateOrderInput,
    CustomerInput,
    DedupKey,
    NewOrder,
    OrderFilters,
    OrderItemInput,
    StockReservation,
)
from apps.orders.errors import InsufficientStockError
from apps.orders.services import OrderService, upsert_customer

ANA = CustomerInput(name="Ana", email="ana@test.com", phone="1111111111")


def test_upsert_creates_then_reuses_by_email():
    directory = InMemoryCustomerDirectory()
    first = upsert_customer(directory, 10, ANA, DedupKey.EMAIL)
    again = upsert_customer(directory, 10, CustomerInput("Ana Maria", "ana@test.com", "2222222222"), DedupKey.EMAIL)
    assert first == again
    assert directory.records[first] == {
        "tenant_id": 10, "name": "Ana Maria", "email": "ana@test.com", "phone": "2222222222",
    }


def test_email_and_phone_key_creates_new_customer_on_phone_change():
    directory = InMemoryCustomerDirectory()
    first = upsert_customer(directory, 10, ANA, DedupKey.EMAIL_AND_PHONE)
    other = upsert_customer(directory, 10, CustomerInput("Ana", "ana@test.com", "2222222222"),
                            DedupKey.EMAIL_AND_PHONE)
    assert first != other
    assert len(directory.records) == 2


def test_customers_are_tenant_scoped():
    directory = InMemoryCustomerDirectory()
    a = upsert_customer(directory, 10, ANA, DedupKey.EMAIL)
    b = upsert_customer(directory, 20, ANA, DedupKey.EMAIL)
    assert a != b


def test_reserve_is_all_or_nothing(store_world):
    catalog = store_world["catalog"]
    with pytest.raises(InsufficientStockError):
        catalog.reserve([StockReservation(1, 1), StockReservation(2, 3, "m")])
    assert catalog.get(1).stock == 1
    assert catalog.get(2).sizes["m"].stock == 2


def test_reserve_aggregates_repeated_lines(store_world):
    catalog = store_world["catalog"]
    with pytest.raises(InsufficientStockError) as e:
        catalog.reserve([StockReservation(2, 1, "m"), StockReservation(2, 2, "m")])
    assert e.value.available == 2


def test_failed_reservation_writes_no_order(store_world):
    orders = store_world["orders"]
    with pytest.raises(InsufficientStockError):
        orders.create(
            NewOrder(tenant_id=10, customer_id=1, items=[], total=Decimal("0"), payment_method="cash"),
            reservations=[StockReservation(1, 5)],
        )
    assert orders.orders == {}


def test_concurrent_orders_for_last_unit(store_world):
    """Two carts racing for the single Widget: exactly one order succeeds."""
    service = OrderService(store_world["tenants"], store_world["customers"],
                           store_world["orders"], store_world["catalog"])
    barrier = threading.Barrier(2)
    results = []

    def buy(n):
        barrier.wait()
        try:
            service.create_order(CreateOrderInput(
                tenant_slug="t",
                customer=CustomerInput(f"Buyer {n}", f"b{n}@test.com", "1234567890"),
                items=[OrderItemInput(1, 1)],
                payment_method="cash",
            ))
            results.append("ok")
        except InsufficientStockError:
            results.append("stock")

    threads = [threading.Thread(target=buy, args=(n,)) for n in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(results) == ["ok", "stock"]
    assert store_world["catalog"].get(1).stock == 0
    assert len(store_world["orders"].orders) == 1


def test_list_filters_and_paginates(store_world):
    orders = store_world["orders"]
    for status in ("pending", "paid", "paid"):
        orders.create(NewOrder(tenant_id=10, customer_id=None, items=[], total=Decimal("1"),
                               payment_method="cash", status=status))
    orders.create(NewOrder(tenant_id=20, customer_id=None, items=[], total=Decimal("1"), payment_method="cash"))

    page, count = orders.list(10, OrderFilters(status="paid", limit=1))
    assert count == 2 and len(page) == 1
    assert page[0].id == 3

    page, count = orders.list(10, OrderFilters())
    assert count == 3
    assert [o.id for o in page] == [3, 2, 1]
