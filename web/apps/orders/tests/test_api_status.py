import pytest

from apps.orders.models import OrderModel


def make_order(tenant, status="pending"):
    return OrderModel.objects.create(tenant=tenant, items=[], total="10.00", status=status, payment_method="cash")


def patch_status(client, oid, status, user_id="u1", email=None):
    headers = {"HTTP_X_USER_ID": user_id} if user_id else {}
    if email:
        headers["HTTP_X_USER_EMAIL"] = email
    return client.patch(f"/api/orders/{oid}/status/", data={"status": status},
                        content_type="application/json", **headers)


@pytest.mark.django_db
def test_owner_updates_status(client, shop):
    order = make_order(shop["t"])
    r = patch_status(client, order.id, "preparing")
    assert r.status_code == 200
    assert r.json()["order"]["status"] == "preparing"
    order.refresh_from_db()
    assert order.status == "preparing"


@pytest.mark.django_db
def test_requires_identity(client, shop):
    order = make_order(shop["t"])
    r = patch_status(client, order.id, "paid", user_id=None)
    assert r.status_code == 401


@pytest.mark.django_db
def test_non_owner_forbidden(client, shop):
    order = make_order(shop["t"])
    r = patch_status(client, order.id, "paid", user_id="u2")
    assert r.status_code == 403
    assert r.json() == {"error": "You do not own this order", "code": "FORBIDDEN"}


@pytest.mark.django_db
def test_superadmin_may_update_any_order(client, shop):
    order = make_order(shop["food"])
    r = patch_status(client, order.id, "ready", user_id="ops", email="root@storefront.test")
    assert r.status_code == 200


@pytest.mark.django_db
def test_delivered_to_ready_rejected(client, shop):
    order = make_order(shop["t"], status="delivered")
    r = patch_status(client, order.id, "ready")
    assert r.status_code == 400
    assert r.json() == {"error": "Cannot change status of delivered order", "code": "VALIDATION_ERROR"}

    assert patch_status(client, order.id, "cancelled").status_code == 200


@pytest.mark.django_db
def test_cancelled_is_final(client, shop):
    order = make_order(shop["t"], status="cancelled")
    r = patch_status(client, order.id, "pending")
    assert r.status_code == 400
    assert r.json()["error"] == "Cannot change status of cancelled order"


@pytest.mark.django_db
def test_unknown_status_value(client, shop):
    order = make_order(shop["t"])
    r = patch_status(client, order.id, "shipped")
    assert r.status_code == 400
    assert r.json()["code"] == "INVALID_REQUEST"


@pytest.mark.django_db
def test_missing_order(client, shop):
    r = patch_status(client, 987654, "paid")
    assert r.status_code == 404
