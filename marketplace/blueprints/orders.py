from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from marketplace.blueprints.guards import current_account, int_arg, login_required
from marketplace.database import get_db
from marketplace.services.checkout_service import CheckoutService
from marketplace.services.order_service import OrderService

orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.route("", methods=["GET"])
@login_required
def order_history():
    db = get_db()
    buyer = current_account()
    # Lingering unpaid orders are closed out before the buyer sees them
    CheckoutService(db, current_app.extensions["payment_gateway"]).expire_stale_orders(buyer_id=buyer.accountID)
    history = OrderService(db).get_order_history(
        buyer.accountID,
        status_filter=request.args.get("status"),
        sort=request.args.get("sort"),
        page=int_arg("page", 1),
        limit=int_arg("limit"),
    )
    return jsonify({"success": True, **history}), 200


@orders_bp.route("/stats", methods=["GET"])
@login_required
def order_stats():
    return jsonify({"success": True, "stats": OrderService(get_db()).get_stats(current_account().accountID)}), 200


@orders_bp.route("/<int:order_id>", methods=["GET"])
@login_required
def order_details(order_id: int):
    order = OrderService(get_db()).get_order(current_account().accountID, order_id)
    return jsonify({"success": True, "order": OrderService.serialize_order(order)}), 200
