from unittest import mock

from sqlalchemy.exc import OperationalError

from conftest import create_account, create_product
from marketplace.models import Notification, Product, ProductStatus
from marketplace.services.notification_service import NotificationService


def test_admin_deletion_with_reason_notifies_seller_once(client, db_session, seller, admin_headers, seller_headers):
    product = create_product(db_session, seller, name="Counterfeit Watch")

    response = client.delete(
        f"/api/admin/products/{product.productID}",
        json={"reason": "policy violation"},
        headers=admin_headers,
    )

    assert response.status_code == 200
    assert response.get_json()["sellerNotified"] is True
    assert client.get(f"/api/products/{product.productID}").status_code == 404
    notifications = db_session.query(Notification).filter_by(accountID=seller.accountID).all()
    assert len(notifications) == 1
    assert "Counterfeit Watch" in notifications[0].message
    assert "policy violation" in notifications[0].message
    assert notifications[0].payload["reason"] == "policy violation"

    seller_view = client.get("/api/notifications", headers=seller_headers).get_json()
    assert seller_view["unread_count"] == 1


def test_admin_deletion_without_reason_changes_nothing(client, db_session, seller, admin_headers):
    product = create_product(db_session, seller)

    response = client.delete(f"/api/admin/products/{product.productID}", json={}, headers=admin_headers)

    assert response.status_code == 400
    assert response.get_json()["error"]["kind"] == "ValidationError"
    db_session.expire_all()
    assert db_session.get(Product, product.productID) is not None
    assert db_session.query(Notification).count() == 0


def test_admin_deletion_survives_notification_failure(client, db_session, seller, admin_headers):
    product = create_product(db_session, seller)
    failure = OperationalError("INSERT INTO Notification", {}, Exception("disk full"))

    with mock.patch.object(NotificationService, "add_notification", side_effect=failure):
        response = client.delete(
            f"/api/admin/products/{product.productID}",
            json={"reason": "duplicate listing"},
            headers=admin_headers,
        )

    assert response.status_code == 200
    assert response.get_json()["sellerNotified"] is False
    assert db_session.query(Product).filter_by(productID=product.productID).first() is None
    assert client.get(f"/api/products/{product.productID}").status_code == 404


def test_admin_product_overview_includes_sold_and_recent(client, db_session, seller, admin_headers):
    create_product(db_session, seller, name="Active One")
    create_product(db_session, seller, name="Sold One", status=ProductStatus.SOLD)

    body = client.get("/api/admin/products", headers=admin_headers).get_json()

    assert body["totalProducts"] == 2
    assert {p["name"] for p in body["products"]} == {"Active One", "Sold One"}
    assert len(body["recentProducts"]) == 2


def test_admin_routes_reject_regular_users_and_anonymous(client, buyer_headers):
    assert client.get("/api/admin/products", headers=buyer_headers).status_code == 403
    assert client.get("/api/admin/products").status_code == 401
    assert client.delete("/api/admin/products/1", json={"reason": "x"}, headers=buyer_headers).status_code == 403


def test_user_count_excludes_admins(client, db_session, admin_headers):
    create_account(db_session, "user_one")
    create_account(db_session, "user_two", is_verified=False)

    body = client.get("/api/admin/users/count", headers=admin_headers).get_json()

    assert body["totalUsers"] == 2
    assert body["verifiedUsers"] == 1


def test_user_listing_never_exposes_password_hashes(client, db_session, admin_headers):
    create_account(db_session, "user_one")

    response = client.get("/api/admin/users", headers=admin_headers)

    text = response.get_data(as_text=True)
    assert response.status_code == 200
    assert "pbkdf2" not in text and "scrypt" not in text
    assert {u["username"] for u in response.get_json()["users"]} >= {"user_one"}


def test_admin_can_expire_stale_orders_and_read_metrics(client, admin_headers):
    expired = client.post("/api/admin/orders/expire-stale", headers=admin_headers)
    metrics = client.get("/api/admin/metrics", headers=admin_headers)

    assert expired.status_code == 200
    assert expired.get_json()["expired"] == 0
    assert "http_requests_total" in metrics.get_json()["metrics"]["counters"]
