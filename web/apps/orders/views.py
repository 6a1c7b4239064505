"""HTTP views for the orders and checkout API.

Views are kept intentionally small: they validate requests (via Pydantic),
map them to domain inputs, delegate to a service obtained from
``providers`` and return a DRF response. Domain errors (``AppError``) are
answered with their own status code and ``{"error", "code"}`` body; any
other exception is logged and answered with a generic 500.

Idempotency: create and checkout accept an ``Idempotency-Key`` header. The
first request stores its response; retries with the same payload replay it
with ``Idempotent-Replay: true``; reusing the key with a different payload
returns HTTP 409.
"""

import logging

from django.conf import settings
from pydantic import ValidationError as SchemaError
from rest_framework import status
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView

from . import providers
from .domain import ListOrdersInput, UpdateStatusInput
from .errors import AppError, InternalError
from .idempotency import IdempotencyConflict, IdempotencyInProgress, claim, finalize
from .schemas import CheckoutDTO, CreateOrderDTO, ListOrdersQuery, OrderReadDTO, StatusUpdateDTO, WebhookDTO
from .webhooks import verify_signature

logger = logging.getLogger(__name__)

UNAUTHORIZED = {"error": "Unauthorized. Please log in.", "code": "UNAUTHORIZED"}


def _schema_error(exc: SchemaError) -> Response:
    first = exc.errors()[0]
    return Response({"error": first["msg"], "code": "INVALID_REQUEST"}, status=status.HTTP_400_BAD_REQUEST)


def _app_error(exc: AppError) -> Response:
    return Response({"error": exc.message, "code": exc.code}, status=exc.status_code)


def _run_idempotent(request, scope: str, handler) -> Response:
    """Run ``handler()`` -> (status, body, order_id) under the request's Idempotency-Key."""
    idem_key = request.headers.get("Idempotency-Key")
    rec = None
    if idem_key:
        try:
            replay, rec = claim(idem_key, scope, request.data)
        except IdempotencyConflict:
            return Response({"error": "Idempotency key reused with a different payload",
                             "code": "IDEMPOTENCY_CONFLICT"}, status=status.HTTP_409_CONFLICT)
        except IdempotencyInProgress:
            return Response({"error": "Request with this idempotency key is in progress",
                             "code": "IDEMPOTENCY_IN_PROGRESS"}, status=status.HTTP_409_CONFLICT)
        if replay:
            resp = Response(rec.response_body, status=rec.response_status)
            resp["Idempotent-Replay"] = "true"
            return resp

    try:
        status_code, body, order_id = handler()
    except AppError as exc:
        if exc.status_code >= 500:
            logger.error("request failed", extra={"scope": scope, "code": exc.code, "error": exc.message})
        status_code, body, order_id = exc.status_code, {"error": exc.message, "code": exc.code}, None
    except Exception:
        logger.exception("unexpected error", extra={"scope": scope})
        status_code, body, order_id = 500, {"error": "Internal server error", "code": "INTERNAL_ERROR"}, None

    if rec:
        finalize(rec, status_code, body, order_id=order_id)
    return Response(body, status=status_code)


class OrdersPingView(APIView):
    """Liveness endpoint for the orders module."""

    def get(self, request):
        return Response({"ok": True})


class OrdersCollectionView(APIView):
    """List a tenant's orders (GET) or create an order from a cart (POST).

    GET requires the caller identity and ``tenant_id``; only the tenant
    owner or a superadmin may list. POST validates the cart against the
    catalog and answers 200 with ``{order_id, total}``.
    """

    throttle_classes = [ScopedRateThrottle]

    def get_throttles(self):
        self.throttle_scope = "orders_list" if self.request.method == "GET" else "orders_create"
        return [throttle() for throttle in self.throttle_classes]

    def get(self, request):
        identity = getattr(request, "identity", None)
        if identity is None:
            return Response(UNAUTHORIZED, status=status.HTTP_401_UNAUTHORIZED)
        try:
            query = ListOrdersQuery.model_validate(request.query_params.dict())
        except SchemaError as e:
            return _schema_error(e)

        try:
            page = providers.get_order_service().list_orders(
                ListOrdersInput(
                    tenant_id=query.tenant_id,
                    user_id=identity.user_id,
                    user_email=identity.email,
                    filters=query.to_filters(),
                )
            )
        except AppError as e:
            return _app_error(e)

        page["orders"] = [OrderReadDTO.from_domain(o).model_dump(mode="json") for o in page["orders"]]
        return Response(page, status=status.HTTP_200_OK)

    def post(self, request):
        try:
            dto = CreateOrderDTO.model_validate(request.data)
        except SchemaError as e:
            return _schema_error(e)

        def handler():
            result = providers.get_order_service().create_order(dto.to_domain())
            body = {"success": True, "order_id": result.order_id, "total": str(result.total)}
            return status.HTTP_200_OK, body, result.order_id

        return _run_idempotent(request, "orders.create", handler)


class RetrieveOrderView(APIView):
    """Order detail used by the checkout success/failure pages."""

    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_detail"

    def get(self, request, oid: int):
        try:
            order = providers.get_order_service().get_order(oid)
        except AppError as e:
            return _app_error(e)
        return Response(OrderReadDTO.from_domain(order).model_dump(mode="json"), status=status.HTTP_200_OK)


class OrderStatusView(APIView):
    """PATCH an order's status; owner or superadmin only."""

    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_detail"

    def patch(self, request, oid: int):
        identity = getattr(request, "identity", None)
        if identity is None:
            return Response(UNAUTHORIZED, status=status.HTTP_401_UNAUTHORIZED)
        try:
            dto = StatusUpdateDTO.model_validate(request.data)
        except SchemaError as e:
            return _schema_error(e)

        try:
            order = providers.get_lifecycle_manager().update_status(
                UpdateStatusInput(
                    order_id=oid,
                    user_id=identity.user_id,
                    user_email=identity.email,
                    new_status=dto.status.value,
                )
            )
        except AppError as e:
            return _app_error(e)
        return Response({"order": OrderReadDTO.from_domain(order).model_dump(mode="json")}, status=status.HTTP_200_OK)


class CheckoutPreferenceView(APIView):
    """Public checkout: create the order and, for MercadoPago, the payment preference.

    Responds 200 with ``{success, order_id}`` for cash and additionally
    ``preference_id`` and ``init_point`` for MercadoPago. A 502 means the
    order exists as ``pending`` but the preference could not be created.
    """

    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "checkout"

    def post(self, request):
        try:
            dto = CheckoutDTO.model_validate(request.data)
        except SchemaError as e:
            return _schema_error(e)

        def handler():
            result = providers.get_checkout_service().execute(dto.to_domain())
            body = {"success": True, "order_id": result.order_id}
            if result.preference_id:
                body["preference_id"] = result.preference_id
                body["init_point"] = result.init_point
            return status.HTTP_200_OK, body, result.order_id

        return _run_idempotent(request, "checkout.create_preference", handler)


class PaymentWebhookView(APIView):
    """MercadoPago payment notifications.

    The signature is checked against the raw body before anything is parsed.
    Verified ``payment`` notifications update the referenced order's status
    and payment id; every other verified notification is acknowledged with
    200 so the provider stops retrying it.
    """

    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "webhooks"

    def post(self, request):
        body = request.body
        try:
            secret = getattr(settings, "MERCADOPAGO_WEBHOOK_SECRET", "")
            if not secret:
                logger.error("webhook secret not configured")
                raise InternalError("Webhook secret not configured")
            verify_signature(request.headers.get("X-Signature"), request.headers.get("X-Request-ID"), body, secret)
        except AppError as e:
            if e.status_code == status.HTTP_403_FORBIDDEN:
                logger.warning("webhook signature rejected", extra={"error": e.message})
            return _app_error(e)

        try:
            dto = WebhookDTO.model_validate_json(body or b"{}")
        except SchemaError as e:
            return _schema_error(e)

        try:
            providers.get_webhook_service().handle(dto.to_domain())
        except AppError as e:
            return _app_error(e)
        return Response({"ok": True}, status=status.HTTP_200_OK)
