"""Django ORM repositories: mapping, dedup queries and transactional stock."""

from datetime import date, datetime
from datetime import timezone as dt_timezone
from decimal import Decimal

import pytest

from apps.orders import providers
from apps.orders.domain import (
    CreateOrderInput,
    CustomerInput,
    DedupKey,
    NewOrder,
    OrderFilters,
    OrderItemInput,
    OrderLine,
    StockReservation,
)
from apps.orders.errors import InsufficientStockError, NotFoundError
from apps.orders.models import CustomerModel, OrderModel, ProductModel, TenantModel
from apps.orders.repository import (
    DjangoCustomerDirectory,
    DjangoOrderStore,
    DjangoProductCatalog,
    DjangoTenantLookup,
)


def new_order(tenant, **kw):
    data = dict(
        tenant_id=tenant.id,
        customer_id=None,
        items=[OrderLine(product_id=1, name="Widget", quantity=1, unit_price=Decimal("50"))],
        total=Decimal("50"),
        payment_method="cash",
    )
    data.update(kw)
    return NewOrder(**data)


@pytest.mark.django_db
def test_enforces_stock_defaults_from_template(shop):
    assert shop["t"].enforces_stock is True
    assert shop["food"].enforces_stock is False
    explicit = TenantModel.objects.create(slug="bar", template="gastronomy", enforces_stock=True)
    assert explicit.enforces_stock is True


@pytest.mark.django_db
def test_no_stock_limit_templates_setting(settings):
    settings.NO_STOCK_LIMIT_TEMPLATES = ("gallery",)
    assert TenantModel.objects.create(slug="g", template="gallery").enforces_stock is False


@pytest.mark.django_db
def test_tenant_lookup_hides_credential_unless_asked(shop):
    lookup = DjangoTenantLookup()
    plain = lookup.find_by_slug("t")
    assert plain.id == shop["t"].id and plain.owner_id == "u1"
    assert plain.payment_credential is None
    assert lookup.find_by_slug_with_token("t").payment_credential == shop["t"].mp_access_token
    assert lookup.find_by_id(shop["food"].id).slug == "food"
    assert lookup.find_by_slug("nope") is None


@pytest.mark.django_db
def test_catalog_maps_sizes(shop):
    products = {p.name: p for p in DjangoProductCatalog().find_by_ids([shop["shirt"].id, shop["widget"].id, 999])}
    assert set(products) == {"Shirt", "Widget"}
    shirt = products["Shirt"]
    assert shirt.stock_for("m") == (2, "Shirt (M)")
    assert shirt.price == Decimal("20")
    assert products["Widget"].sizes == {}


@pytest.mark.django_db
def test_customer_directory_keys(shop):
    directory = DjangoCustomerDirectory()
    tid = shop["t"].id
    cid = directory.create(tid, "Ana", "ana@test.com", "1111111111")

    other_phone = CustomerInput("Ana", "ana@test.com", "2222222222")
    assert directory.find_by_key(tid, DedupKey.EMAIL, other_phone) == cid
    assert directory.find_by_key(tid, DedupKey.EMAIL_AND_PHONE, other_phone) is None
    assert directory.find_by_key(shop["food"].id, DedupKey.EMAIL, other_phone) is None

    directory.update(cid, name="Ana M", phone="2222222222")
    row = CustomerModel.objects.get(id=cid)
    assert (row.name, row.phone) == ("Ana M", "2222222222")


@pytest.mark.django_db
def test_create_order_takes_stock_in_same_transaction(shop):
    store = DjangoOrderStore()
    oid = store.create(
        new_order(shop["t"]),
        reservations=[StockReservation(shop["widget"].id, 1), StockReservation(shop["shirt"].id, 2, "m")],
    )
    row = OrderModel.objects.get(id=oid)
    assert row.status == "pending"
    assert row.items[0]["unit_price"] == "50"

    shop["widget"].refresh_from_db()
    shop["shirt"].refresh_from_db()
    assert shop["widget"].stock == 0
    assert shop["shirt"].metadata["sizes"][0] == {"id": "m", "label": "M", "stock": 0}


@pytest.mark.django_db
def test_failed_reservation_rolls_back_everything(shop):
    store = DjangoOrderStore()
    with pytest.raises(InsufficientStockError) as e:
        store.create(
            new_order(shop["t"]),
            reservations=[StockReservation(shop["widget"].id, 1), StockReservation(shop["shirt"].id, 1, "l")],
        )
    assert str(e.value) == "Insufficient stock for Shirt (L). Available: 0"
    assert OrderModel.objects.count() == 0
    assert ProductModel.objects.get(id=shop["widget"].id).stock == 1


@pytest.mark.django_db
def test_second_order_for_last_unit_fails(shop):
    store = DjangoOrderStore()
    reservation = [StockReservation(shop["widget"].id, 1)]
    store.create(new_order(shop["t"]), reservations=reservation)
    with pytest.raises(InsufficientStockError):
        store.create(new_order(shop["t"]), reservations=reservation)
    assert OrderModel.objects.count() == 1


@pytest.mark.django_db
def test_status_and_payment_reference(shop):
    store = DjangoOrderStore()
    oid = store.create(new_order(shop["t"]))

    ownership = store.find_by_id_with_tenant(oid)
    assert (ownership.status, ownership.owner_id) == ("pending", "u1")

    updated = store.update_status(oid, "paid")
    assert updated.status == "paid"

    store.set_payment_id(oid, "pref-1")
    assert store.get(oid).payment_id == "pref-1"

    with pytest.raises(NotFoundError):
        store.update_status(oid + 100, "paid")
    assert store.find_by_id_with_tenant(oid + 100) is None


@pytest.mark.django_db
def test_get_includes_customer(shop):
    cid = DjangoCustomerDirectory().create(shop["t"].id, "Ana", "ana@test.com", "1111111111")
    store = DjangoOrderStore()
    oid = store.create(new_order(shop["t"], customer_id=cid))
    order = store.get(oid)
    assert order.customer == {"id": cid, "name": "Ana", "email": "ana@test.com", "phone": "1111111111"}
    assert order.total == Decimal("50")


@pytest.mark.django_db
def test_list_is_tenant_scoped_newest_first(shop):
    store = DjangoOrderStore()
    ids = [store.create(new_order(shop["t"], status=s)) for s in ("pending", "paid", "paid")]
    store.create(new_order(shop["food"]))

    orders, count = store.list(shop["t"].id, OrderFilters())
    assert count == 3
    assert [o.id for o in orders] == ids[::-1]

    orders, count = store.list(shop["t"].id, OrderFilters(status="paid", limit=1, offset=1))
    assert count == 2
    assert [o.id for o in orders] == [ids[1]]


@pytest.mark.django_db
def test_tenant_with_null_stock_flag_follows_template():
    """Rows written without ``save()`` keep NULL and take the template's policy."""
    TenantModel.objects.bulk_create([
        TenantModel(slug="bulk", template="gallery"),
        TenantModel(slug="bulk-food", template="gastronomy"),
    ])
    assert TenantModel.objects.get(slug="bulk").enforces_stock is None

    lookup = DjangoTenantLookup()
    assert lookup.find_by_slug("bulk").enforces_stock is True
    assert lookup.find_by_slug("bulk-food").enforces_stock is False


@pytest.mark.django_db
def test_null_stock_flag_still_limits_orders():
    TenantModel.objects.bulk_create([TenantModel(slug="bulk", template="gallery")])
    tenant = TenantModel.objects.get(slug="bulk")
    product = ProductModel.objects.create(tenant=tenant, name="Lamp", price=Decimal("10"), stock=1)

    with pytest.raises(InsufficientStockError):
        providers.get_order_service().create_order(CreateOrderInput(
            tenant_slug="bulk",
            customer=CustomerInput(name="Ana", email="ana@test.com", phone="1234567890"),
            items=[OrderItemInput(product_id=product.id, quantity=5)],
            payment_method="cash",
        ))
    assert ProductModel.objects.get(id=product.id).stock == 1
    assert OrderModel.objects.count() == 0


def _created_at(order_id, when):
    OrderModel.objects.filter(id=order_id).update(created_at=when)


@pytest.mark.django_db
def test_list_date_bounds_are_inclusive_calendar_days(shop):
    store = DjangoOrderStore()
    before = store.create(new_order(shop["t"]))
    first_day = store.create(new_order(shop["t"]))
    last_minute = store.create(new_order(shop["t"]))
    after = store.create(new_order(shop["t"]))
    _created_at(before, datetime(2024, 3, 9, 23, 59, tzinfo=dt_timezone.utc))
    _created_at(first_day, datetime(2024, 3, 10, 0, 0, tzinfo=dt_timezone.utc))
    _created_at(last_minute, datetime(2024, 3, 12, 23, 59, tzinfo=dt_timezone.utc))
    _created_at(after, datetime(2024, 3, 13, 0, 0, tzinfo=dt_timezone.utc))

    filters = OrderFilters(date_from=date(2024, 3, 10), date_to=date(2024, 3, 12))
    orders, count = store.list(shop["t"].id, filters)
    assert count == 2
    assert [o.id for o in orders] == [last_minute, first_day]

    orders, _ = store.list(shop["t"].id, OrderFilters(date_from=date(2024, 3, 13)))
    assert [o.id for o in orders] == [after]
    orders, _ = store.list(shop["t"].id, OrderFilters(date_to=date(2024, 3, 9)))
    assert [o.id for o in orders] == [before]
