from conftest import create_product


def _checkout(client, product, headers, total=None):
    body = {"productId": product.productID, "quantity": 1}
    if total is not None:
        body["totalAmount"] = total
    return client.post("/api/payment/create-transaction", json=body, headers=headers)


def test_purchase_flow_end_to_end(client, db_session, fake_gateway, seller, buyer_headers):
    product = create_product(db_session, seller, name="Rice Cooker", price=50000)

    created = _checkout(client, product, buyer_headers, total=50000)
    assert created.status_code == 201
    session = created.get_json()
    assert session["token"] == "snap-token-1"

    notification = fake_gateway.notification(session["transactionId"], "settlement", 50000)
    callback = client.post("/api/payment/notification", json=notification)
    assert callback.status_code == 200
    assert callback.get_json()["status"] == "success"

    history = client.get("/api/orders", headers=buyer_headers).get_json()
    assert history["orders"][0]["transaction_id"] == session["transactionId"]
    assert history["orders"][0]["status"] == "success"
    assert history["orders"][0]["paid_at"] is not None
    assert history["orders"][0]["line_items"][0]["product_name"] == "Rice Cooker"

    product_view = client.get(f"/api/products/{product.productID}").get_json()["product"]
    assert product_view["status"] == "sold"

    notifications = client.get("/api/notifications", headers=buyer_headers).get_json()
    assert [n["type"] for n in notifications["notifications"]] == ["payment_success"]


def test_amount_mismatch_is_400(client, db_session, seller, buyer_headers):
    product = create_product(db_session, seller, price=50000)

    response = _checkout(client, product, buyer_headers, total=49999)

    assert response.status_code == 400
    assert response.get_json()["error"]["kind"] == "AmountMismatch"


def test_checkout_requires_authentication(client, db_session, seller):
    product = create_product(db_session, seller)
    response = client.post("/api/payment/create-transaction", json={"productId": product.productID})
    assert response.status_code == 401


def test_gateway_outage_is_502(client, db_session, fake_gateway, seller, buyer_headers):
    product = create_product(db_session, seller)
    fake_gateway.fail = True

    response = _checkout(client, product, buyer_headers)

    assert response.status_code == 502
    assert response.get_json()["error"]["kind"] == "GatewayUnavailable"


def test_cart_transaction_from_server_cart(client, db_session, seller, buyer_headers):
    first = create_product(db_session, seller, name="Kettle", price=30000)
    second = create_product(db_session, seller, name="Toaster", price=45000)
    client.post("/api/cart/add", json={"productId": first.productID}, headers=buyer_headers)
    client.post("/api/cart/add", json={"productId": second.productID}, headers=buyer_headers)

    response = client.post(
        "/api/payment/create-cart-transaction", json={"totalAmount": 75000}, headers=buyer_headers
    )

    body = response.get_json()
    assert response.status_code == 201
    assert body["transactionId"].startswith("CART-")
    assert body["totalAmount"] == 75000
    assert len(body["line_items"]) == 2


def test_replayed_callback_over_http_notifies_once(client, db_session, fake_gateway, seller, buyer_headers):
    product = create_product(db_session, seller)
    session = _checkout(client, product, buyer_headers).get_json()
    notification = fake_gateway.notification(session["transactionId"], "settlement", 50000)

    statuses = [client.post("/api/payment/notification", json=notification).get_json()["status"] for _ in range(3)]

    assert statuses == ["success", "success", "success"]
    notifications = client.get("/api/notifications", headers=buyer_headers).get_json()["notifications"]
    assert len(notifications) == 1


def test_callback_with_bad_signature_is_403(client, db_session, fake_gateway, seller, buyer_headers):
    product = create_product(db_session, seller)
    session = _checkout(client, product, buyer_headers).get_json()
    notification = fake_gateway.notification(session["transactionId"], "settlement", 50000)
    notification["signature_key"] = "forged"

    response = client.post("/api/payment/notification", json=notification)

    assert response.status_code == 403


def test_callback_for_unknown_order_is_404(client, fake_gateway):
    response = client.post(
        "/api/payment/notification", json=fake_gateway.notification("ORDER-1-1-missing", "settlement", 50000)
    )

    assert response.status_code == 404
    assert response.get_json()["error"]["kind"] == "UnknownOrder"


def test_callback_with_non_object_body_is_validation_error(client):
    for body in ([{"order_id": "x"}], "settlement", {}):
        response = client.post("/api/payment/notification", json=body)

        assert response.status_code == 400
        assert response.get_json()["error"]["kind"] == "ValidationError"


def test_config_exposes_only_public_settings_and_is_cached(client, fake_gateway):
    first = client.get("/api/payment/config")
    second = client.get("/api/payment/config")

    assert first.get_json() == {"clientKey": "test-client-key", "environment": "sandbox"}
    assert "test-server-key" not in first.get_data(as_text=True)
    assert second.get_json() == first.get_json()
    assert fake_gateway.config_calls == 1


def test_transaction_status_endpoint(client, db_session, seller, buyer_headers, admin_headers):
    product = create_product(db_session, seller)
    session = _checkout(client, product, buyer_headers).get_json()

    own = client.get(f"/api/payment/transaction-status/{session['transactionId']}", headers=buyer_headers)
    foreign = client.get(f"/api/payment/transaction-status/{session['transactionId']}", headers=admin_headers)

    assert own.status_code == 200
    assert own.get_json()["status"] == "pending"
    assert foreign.status_code == 404
