from django.urls import path

from .views import OrdersCollectionView, OrderStatusView, OrdersPingView, RetrieveOrderView

app_name = "orders"

urlpatterns = [
    path("ping/", OrdersPingView.as_view(), name="ping"),
    path("", OrdersCollectionView.as_view(), name="orders-collection"),  # GET list / POST create
    path("<int:oid>/", RetrieveOrderView.as_view(), name="orders-detail"),
    path("<int:oid>/status/", OrderStatusView.as_view(), name="orders-status"),
]
