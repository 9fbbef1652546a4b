from datetime import timedelta

from conftest import bearer, create_account, create_product
from marketplace.models import Account, Product
from marketplace.services.auth_service import AuthService


def test_login_returns_account_summary_and_token(client, buyer):
    response = client.post("/api/auth/login", json={"username": buyer.username, "password": "secret123"})

    assert response.status_code == 200
    body = response.get_json()
    assert body["token"]
    assert body["account"]["username"] == buyer.username
    assert "password" not in str(body["account"]).lower()


def test_login_with_bad_password_is_401_invalid_credentials(client, buyer):
    response = client.post("/api/auth/login", json={"username": buyer.username, "password": "wrong-one"})

    assert response.status_code == 401
    body = response.get_json()
    assert body["success"] is False
    assert body["error"]["kind"] == "InvalidCredentials"
    assert "wrong-one" not in response.get_data(as_text=True)


def test_protected_route_without_token_is_unauthenticated(client):
    response = client.get("/api/auth/profile")

    assert response.status_code == 401
    assert response.get_json()["error"]["kind"] == "Unauthenticated"


def test_expired_session_on_protected_route_is_rejected_without_mutation(app, client, db_session, seller):
    product = create_product(db_session, seller, name="Old Lamp")
    with app.app_context():
        expired = AuthService(db_session).issue_token(seller, expires_delta=timedelta(seconds=-5))

    response = client.put(f"/api/products/{product.productID}", json={"name": "Hijacked"}, headers=bearer(expired))

    assert response.status_code == 401
    assert response.get_json()["error"]["kind"] == "TokenExpired"
    db_session.expire_all()
    assert db_session.get(Product, product.productID).name == "Old Lamp"


def test_user_token_on_admin_route_is_forbidden(client, buyer_headers):
    response = client.get("/api/admin/users/count", headers=buyer_headers)

    assert response.status_code == 403
    assert response.get_json()["error"]["kind"] == "Forbidden"


def test_register_then_verify_email(client, mailer, db_session):
    response = client.post(
        "/api/auth/register",
        json={"username": "fresh", "email": "fresh@example.com", "password": "longenough"},
    )
    assert response.status_code == 201
    token = mailer.sent[-1][2].split("token=")[1]

    verify = client.get(f"/api/auth/verify-email?token={token}")

    assert verify.status_code == 200
    assert verify.get_json()["account"]["is_verified"] is True


def test_register_duplicate_is_conflict(client, buyer):
    response = client.post(
        "/api/auth/register",
        json={"username": buyer.username, "email": "different@example.com", "password": "longenough"},
    )

    assert response.status_code == 409
    assert response.get_json()["error"]["kind"] == "Conflict"


def test_forgot_password_never_reveals_account_existence(client, buyer):
    known = client.post("/api/auth/forgot-password", json={"email": buyer.email})
    unknown = client.post("/api/auth/forgot-password", json={"email": "nobody@example.com"})

    assert known.status_code == unknown.status_code == 200
    assert known.get_json()["message"] == unknown.get_json()["message"]


def test_profile_update_and_password_change(client, buyer, buyer_headers, db_session):
    update = client.put(
        "/api/users/profile",
        json={"full_name": "Beatrice", "bio": "Second-hand enthusiast"},
        headers=buyer_headers,
    )
    assert update.status_code == 200
    assert update.get_json()["account"]["full_name"] == "Beatrice"

    wrong = client.post(
        "/api/users/change-password",
        json={"currentPassword": "nope", "newPassword": "newsecret"},
        headers=buyer_headers,
    )
    assert wrong.status_code == 400

    changed = client.post(
        "/api/users/change-password",
        json={"currentPassword": "secret123", "newPassword": "newsecret"},
        headers=buyer_headers,
    )
    assert changed.status_code == 200
    relogin = client.post("/api/auth/login", json={"username": buyer.username, "password": "newsecret"})
    assert relogin.status_code == 200


def test_profile_username_conflict(client, buyer_headers, db_session):
    create_account(db_session, "already_here")

    response = client.put("/api/users/profile", json={"username": "already_here"}, headers=buyer_headers)

    assert response.status_code == 409


def test_admin_cannot_mutate_profile(client, admin, admin_headers, db_session):
    response = client.put("/api/users/profile", json={"full_name": "Changed"}, headers=admin_headers)

    assert response.status_code == 403
    db_session.expire_all()
    assert db_session.get(Account, admin.accountID).full_name is None


def test_admin_login_alias_requires_admin_role(client, admin, buyer):
    ok = client.post("/api/admin/login", json={"username": admin.username, "password": "secret123"})
    denied = client.post("/api/admin/login", json={"username": buyer.username, "password": "secret123"})

    assert ok.status_code == 200
    assert ok.get_json()["account"]["role"] == "admin"
    assert denied.status_code == 403
