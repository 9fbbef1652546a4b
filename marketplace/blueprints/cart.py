from __future__ import annotations

from flask import Blueprint, jsonify

from marketplace.blueprints.guards import current_account, json_body, login_required
from marketplace.blueprints.serializers import cart_item_to_dict
from marketplace.database import get_db
from marketplace.services.cart_service import CartService

cart_bp = Blueprint("cart", __name__, url_prefix="/api/cart")


def _cart_response(service: CartService, status: int = 200, message: str = None):
    summary = service.summary(current_account())
    body = {
        "success": True,
        "items": [cart_item_to_dict(item) for item in summary["items"]],
        "total_items": summary["total_items"],
        "total_amount": summary["total_amount"],
    }
    if message:
        body["message"] = message
    return jsonify(body), status


@cart_bp.route("", methods=["GET"])
@login_required
def get_cart():
    return _cart_response(CartService(get_db()))


@cart_bp.route("/add", methods=["POST"])
@login_required
def add_to_cart():
    payload = json_body()
    service = CartService(get_db())
    service.add_item(current_account(), payload.get("productId"), payload.get("quantity", 1))
    return _cart_response(service, 201, "Added to cart.")


@cart_bp.route("/update", methods=["PUT"])
@login_required
def update_cart():
    payload = json_body()
    service = CartService(get_db())
    service.update_item(current_account(), payload.get("productId"), payload.get("quantity"))
    return _cart_response(service, message="Cart updated.")


@cart_bp.route("/remove/<int:product_id>", methods=["DELETE"])
@login_required
def remove_from_cart(product_id: int):
    service = CartService(get_db())
    service.remove_item(current_account(), product_id)
    return _cart_response(service, message="Removed from cart.")


@cart_bp.route("/clear", methods=["DELETE"])
@login_required
def clear_cart():
    service = CartService(get_db())
    service.clear(current_account())
    return _cart_response(service, message="Cart cleared.")
