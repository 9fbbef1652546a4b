from __future__ import annotations

from flask import Blueprint, jsonify

from marketplace.blueprints.guards import current_account, json_body, login_required
from marketplace.blueprints.serializers import product_to_dict
from marketplace.database import get_db
from marketplace.services.account_service import AccountService

users_bp = Blueprint("users", __name__, url_prefix="/api/users")


@users_bp.route("/profile", methods=["GET"])
@login_required
def get_profile():
    return jsonify({"success": True, "account": AccountService.profile(current_account())}), 200


@users_bp.route("/profile", methods=["PUT"])
@login_required
def update_profile():
    account = AccountService(get_db()).update_profile(current_account(), json_body())
    return jsonify({"success": True, "account": AccountService.profile(account)}), 200


@users_bp.route("/change-password", methods=["POST"])
@login_required
def change_password():
    payload = json_body()
    AccountService(get_db()).change_password(
        current_account(),
        payload.get("currentPassword") or payload.get("current_password"),
        payload.get("newPassword") or payload.get("new_password"),
    )
    return jsonify({"success": True, "message": "Password updated."}), 200


@users_bp.route("/products", methods=["GET"])
@login_required
def my_products():
    products = AccountService(get_db()).own_products(current_account())
    return jsonify(
        {"success": True, "count": len(products), "products": [product_to_dict(p, include_seller=False) for p in products]}
    ), 200
