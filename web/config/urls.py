from django.urls import include, path, re_path

from apps.orders.views import CheckoutPreferenceView, PaymentWebhookView

urlpatterns = [
    path("api/orders/", include("apps.orders.urls")),
    path("api/checkout/create-preference/", CheckoutPreferenceView.as_view(), name="checkout-create-preference"),
    # preferences advertise the URL without a trailing slash
    re_path(r"^api/webhooks/mercadopago/?$", PaymentWebhookView.as_view(), name="webhooks-mercadopago"),
]
