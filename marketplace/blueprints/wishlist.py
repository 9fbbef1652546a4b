from __future__ import annotations

from flask import Blueprint, jsonify

from marketplace.blueprints.guards import current_account, json_body, login_required
from marketplace.blueprints.serializers import wishlist_entry_to_dict
from marketplace.database import get_db
from marketplace.services.wishlist_service import WishlistService

wishlist_bp = Blueprint("wishlist", __name__, url_prefix="/api/wishlist")


@wishlist_bp.route("", methods=["GET"])
@login_required
def list_wishlist():
    entries = WishlistService(get_db()).list_entries(current_account())
    return jsonify({"success": True, "count": len(entries), "items": [wishlist_entry_to_dict(e) for e in entries]}), 200


@wishlist_bp.route("", methods=["POST"])
@login_required
def add_to_wishlist():
    payload = json_body()
    service = WishlistService(get_db())
    account = current_account()
    entry = service.add(account, payload.get("productId", payload.get("product_id")))
    return jsonify(
        {
            "success": True,
            "message": "Added to wishlist.",
            "item": wishlist_entry_to_dict(entry),
            "count": service.count(account),
        }
    ), 201


@wishlist_bp.route("/<int:product_id>", methods=["DELETE"])
@login_required
def remove_from_wishlist(product_id: int):
    WishlistService(get_db()).remove(current_account(), product_id)
    return jsonify({"success": True, "message": "Removed from wishlist."}), 200


@wishlist_bp.route("/check/<int:product_id>", methods=["GET"])
@login_required
def check_wishlist(product_id: int):
    in_wishlist = WishlistService(get_db()).contains(current_account(), product_id)
    return jsonify({"success": True, "productId": product_id, "inWishlist": in_wishlist}), 200
