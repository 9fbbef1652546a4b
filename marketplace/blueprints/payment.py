from __future__ import annotations

from flask import Blueprint, current_app, jsonify

from marketplace.blueprints.guards import current_account, json_body, login_required
from marketplace.database import get_db
from marketplace.models import Order, OrderStatus
from marketplace.services.checkout_service import CheckoutService, serialize_line_items

payment_bp = Blueprint("payment", __name__, url_prefix="/api/payment")


def _checkout_service() -> CheckoutService:
    return CheckoutService(get_db(), current_app.extensions["payment_gateway"])


def _client_total(payload):
    for key in ("totalAmount", "total_amount", "amount"):
        if key in payload:
            return payload[key]
    return None


def _session_response(order: Order):
    return jsonify(
        {
            "success": True,
            "token": order.snap_token,
            "redirect_url": order.redirect_url,
            "transactionId": order.transactionID,
            "orderId": order.orderID,
            "totalAmount": order.total_amount,
            "line_items": serialize_line_items(order.line_items),
        }
    ), 201


@payment_bp.route("/create-transaction", methods=["POST"])
@login_required
def create_transaction():
    payload = json_body()
    order = _checkout_service().create_single_checkout(
        current_account(),
        payload.get("productId", payload.get("product_id")),
        payload.get("quantity", 1),
        client_total=_client_total(payload),
    )
    return _session_response(order)


@payment_bp.route("/create-cart-transaction", methods=["POST"])
@login_required
def create_cart_transaction():
    payload = json_body()
    order = _checkout_service().create_cart_checkout(
        current_account(),
        payload.get("items"),
        client_total=_client_total(payload),
    )
    return _session_response(order)


@payment_bp.route("/config", methods=["GET"])
def gateway_config():
    config = current_app.extensions["gateway_config_cache"].get_or_refresh()
    return jsonify({"clientKey": config["clientKey"], "environment": config["environment"]}), 200


@payment_bp.route("/notification", methods=["POST"])
def gateway_notification():
    notification = json_body()
    order = _checkout_service().handle_notification(notification)
    return jsonify({"success": True, "status": OrderStatus(order.status).value}), 200


@payment_bp.route("/transaction-status/<transaction_id>", methods=["GET"])
@login_required
def transaction_status(transaction_id: str):
    order = _checkout_service().transaction_status(current_account(), transaction_id)
    return jsonify(
        {
            "success": True,
            "transactionId": order.transactionID,
            "status": OrderStatus(order.status).value,
            "totalAmount": order.total_amount,
            "paid_at": order.paid_at.isoformat() if order.paid_at else None,
            "expired_at": order.expired_at.isoformat() if order.expired_at else None,
        }
    ), 200
