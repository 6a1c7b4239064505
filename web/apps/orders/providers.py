"""Service provider helpers wiring the order services with their ports.

Views call these factories instead of constructing services so tests can
swap the wiring. Repositories are the Django ORM implementations. The
payment provider is the httpx MercadoPago client when
``settings.USE_HTTP_ADAPTERS`` is truthy, otherwise the in-process
``PaymentsStub``.
"""

from django.conf import settings

from .adapters import PaymentsStub
from .crypto import decrypt_token
from .domain import PaymentProvider
from .http_adapters import HttpMercadoPagoClient
from .repository import DjangoCustomerDirectory, DjangoOrderStore, DjangoProductCatalog, DjangoTenantLookup
from .services import (
    CheckoutService,
    OrderLifecycleManager,
    OrderService,
    OwnerOrSuperadminPolicy,
    PaymentWebhookService,
)


def get_policy() -> OwnerOrSuperadminPolicy:
    return OwnerOrSuperadminPolicy(getattr(settings, "SUPERADMIN_EMAILS", ()))


def get_payment_provider() -> PaymentProvider:
    if getattr(settings, "USE_HTTP_ADAPTERS", True):
        return HttpMercadoPagoClient()
    return PaymentsStub()


def get_order_service() -> OrderService:
    return OrderService(
        tenants=DjangoTenantLookup(),
        customers=DjangoCustomerDirectory(),
        orders=DjangoOrderStore(),
        products=DjangoProductCatalog(),
        policy=get_policy(),
    )


def get_checkout_service() -> CheckoutService:
    """Return a CheckoutService configured from settings.

    ``PUBLIC_BASE_URL`` is the fallback for the callback URLs when the
    storefront sends no return URL; ``CHECKOUT_LOCALE`` prefixes them.
    """
    return CheckoutService(
        tenants=DjangoTenantLookup(),
        customers=DjangoCustomerDirectory(),
        orders=DjangoOrderStore(),
        payments=get_payment_provider(),
        decrypt=decrypt_token,
        public_base_url=getattr(settings, "PUBLIC_BASE_URL", None),
        locale=getattr(settings, "CHECKOUT_LOCALE", "es"),
    )


def get_lifecycle_manager() -> OrderLifecycleManager:
    return OrderLifecycleManager(orders=DjangoOrderStore(), policy=get_policy())


def get_webhook_service() -> PaymentWebhookService:
    """Payments are looked up with the platform's ``MERCADOPAGO_ACCESS_TOKEN``."""
    return PaymentWebhookService(
        orders=DjangoOrderStore(),
        payments=get_payment_provider(),
        access_token=getattr(settings, "MERCADOPAGO_ACCESS_TOKEN", None),
    )
