from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from marketplace.blueprints.guards import admin_required, current_account, int_arg, json_body
from marketplace.blueprints.serializers import product_to_dict
from marketplace.database import get_db
from marketplace.errors import Forbidden
from marketplace.observability import get_metrics_snapshot
from marketplace.services.admin_service import AdminService
from marketplace.services.auth_service import AuthService
from marketplace.services.checkout_service import CheckoutService
from marketplace.services.order_service import OrderService

admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


@admin_bp.route("/login", methods=["POST"])
def admin_login():
    payload = json_body()
    account, token = AuthService(get_db(), mailer=current_app.extensions.get("mailer")).login(
        payload.get("username"), payload.get("password")
    )
    if not account.is_admin:
        raise Forbidden("Admin access required.")
    return jsonify({"success": True, "account": account.to_summary(), "token": token}), 200


@admin_bp.route("/products", methods=["GET"])
@admin_required
def list_products():
    overview = AdminService(get_db()).product_overview(
        category=request.args.get("category"),
        search=request.args.get("search"),
        sort=request.args.get("sort"),
    )
    return jsonify(
        {
            "success": True,
            "totalProducts": overview["totalProducts"],
            "products": [product_to_dict(p) for p in overview["products"]],
            "recentProducts": [product_to_dict(p) for p in overview["recentProducts"]],
        }
    ), 200


@admin_bp.route("/products/<int:product_id>", methods=["DELETE"])
@admin_required
def delete_product(product_id: int):
    reason = json_body().get("reason") or request.args.get("reason")
    result = AdminService(get_db()).delete_product(current_account(), product_id, reason)
    return jsonify({"success": True, "message": "Product deleted.", **result}), 200


@admin_bp.route("/users/count", methods=["GET"])
@admin_required
def count_users():
    return jsonify({"success": True, **AdminService(get_db()).count_users()}), 200


@admin_bp.route("/users", methods=["GET"])
@admin_required
def list_users():
    result = AdminService(get_db()).list_users(
        page=int_arg("page", 1),
        limit=int_arg("limit", 20),
        search=request.args.get("search"),
    )
    return jsonify({"success": True, **result}), 200


@admin_bp.route("/orders", methods=["GET"])
@admin_required
def list_orders():
    history = OrderService(get_db()).get_order_history(
        None,
        status_filter=request.args.get("status"),
        sort=request.args.get("sort"),
        page=int_arg("page", 1),
        limit=int_arg("limit"),
    )
    return jsonify({"success": True, **history}), 200


@admin_bp.route("/orders/expire-stale", methods=["POST"])
@admin_required
def expire_stale_orders():
    expired = CheckoutService(get_db(), current_app.extensions["payment_gateway"]).expire_stale_orders()
    return jsonify({"success": True, "expired": expired}), 200


@admin_bp.route("/metrics", methods=["GET"])
@admin_required
def metrics():
    return jsonify({"success": True, "metrics": get_metrics_snapshot()}), 200
