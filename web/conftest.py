from decimal import Decimal

import pytest
from django.core.cache import cache

from apps.orders.adapters import (
    InMemoryCustomerDirectory,
    InMemoryOrderStore,
    InMemoryProductCatalog,
    InMemoryTenantLookup,
    PaymentsStub,
)
from apps.orders.domain import Product, SizeVariant, Tenant

TEST_ENCRYPTION_KEY = "0f" * 32
TEST_WEBHOOK_SECRET = "whsec-test"


@pytest.fixture(autouse=True)
def use_stubs_for_tests(settings):
    settings.USE_HTTP_ADAPTERS = False
    settings.ENCRYPTION_KEY = TEST_ENCRYPTION_KEY
    settings.SUPERADMIN_EMAILS = ["root@storefront.test"]
    settings.HTTP_RETRY_BACKOFF_BASE = 0.0
    settings.MERCADOPAGO_WEBHOOK_SECRET = TEST_WEBHOOK_SECRET
    settings.MERCADOPAGO_ACCESS_TOKEN = "APP_USR-platform"
    # throttle counters live in the cache
    cache.clear()


@pytest.fixture
def store_world():
    """In-memory ports seeded with one regular and one no-stock-limit tenant."""
    tenants = InMemoryTenantLookup([
        Tenant(id=10, slug="t", template="gallery", enforces_stock=True, owner_id="u1"),
        Tenant(id=20, slug="food", template="gastronomy", enforces_stock=False, owner_id="u2"),
    ])
    catalog = InMemoryProductCatalog([
        Product(id=1, tenant_id=10, name="Widget", price=Decimal("50"), stock=1),
        Product(id=2, tenant_id=10, name="Shirt", price=Decimal("20"),
                sizes={"m": SizeVariant("m", "M", 2), "l": SizeVariant("l", "L", 0)}),
        Product(id=3, tenant_id=10, name="Retired", price=Decimal("5"), stock=10, active=False),
        Product(id=4, tenant_id=20, name="Empanada", price=Decimal("3.50"), stock=0),
    ])
    customers = InMemoryCustomerDirectory()
    orders = InMemoryOrderStore(tenants, catalog, customers)
    return {
        "tenants": tenants,
        "catalog": catalog,
        "customers": customers,
        "orders": orders,
        "payments": PaymentsStub(),
    }


@pytest.fixture
def shop(db):
    """Database rows mirroring ``store_world``; returns the created models by name."""
    from apps.orders.crypto import encrypt_token
    from apps.orders.models import ProductModel, TenantModel

    t = TenantModel.objects.create(slug="t", owner_id="u1", template="gallery",
                                   mp_access_token=encrypt_token("APP_USR-123"))
    food = TenantModel.objects.create(slug="food", owner_id="u2", template="gastronomy")
    return {
        "t": t,
        "food": food,
        "widget": ProductModel.objects.create(tenant=t, name="Widget", price=Decimal("50"), stock=1),
        "shirt": ProductModel.objects.create(
            tenant=t, name="Shirt", price=Decimal("20"),
            metadata={"sizes": [{"id": "m", "label": "M", "stock": 2}, {"id": "l", "label": "L", "stock": 0}]},
        ),
        "retired": ProductModel.objects.create(tenant=t, name="Retired", price=Decimal("5"), stock=10, active=False),
        "empanada": ProductModel.objects.create(tenant=food, name="Empanada", price=Decimal("3.50"), stock=0),
    }
