from __future__ import annotations

from typing import Any, Dict, List, Tuple

from flask import Blueprint, current_app, jsonify, request

from marketplace.blueprints.guards import current_account, int_arg, json_body, login_required
from marketplace.blueprints.serializers import product_to_dict
from marketplace.database import get_db
from marketplace.services.image_service import ImageStorage
from marketplace.services.product_service import ProductService

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


def _product_service() -> ProductService:
    storage = ImageStorage(
        upload_dir=current_app.config["UPLOAD_DIR"],
        public_prefix=current_app.config["UPLOAD_SUBDIR"],
        max_images=current_app.config["MAX_PRODUCT_IMAGES"],
        allowed_extensions=current_app.config["ALLOWED_IMAGE_EXTENSIONS"],
    )
    return ProductService(get_db(), image_storage=storage)


def _submitted_fields() -> Tuple[Dict[str, Any], List]:
    """Product fields and uploads from a multipart form, or fields from a JSON body."""
    if request.is_json:
        return json_body(), []
    fields: Dict[str, Any] = {key: value for key, value in request.form.items() if key != "existingImages"}
    if "existingImages" in request.form:
        fields["images"] = request.form.getlist("existingImages")
    return fields, request.files.getlist("images")


@products_bp.route("", methods=["GET"])
def list_products():
    products = _product_service().list_products(
        category=request.args.get("category"),
        search=request.args.get("search"),
        sort=request.args.get("sort"),
        limit=int_arg("limit"),
    )
    return jsonify({"success": True, "count": len(products), "products": [product_to_dict(p) for p in products]}), 200


@products_bp.route("/categories", methods=["GET"])
def list_categories():
    return jsonify({"success": True, "categories": _product_service().categories()}), 200


@products_bp.route("/<int:product_id>", methods=["GET"])
def get_product(product_id: int):
    product = _product_service().view_product(product_id)
    return jsonify({"success": True, "product": product_to_dict(product)}), 200


@products_bp.route("", methods=["POST"])
@login_required
def create_product():
    fields, files = _submitted_fields()
    product = _product_service().create_product(current_account(), fields, files)
    return jsonify({"success": True, "message": "Product created.", "product": product_to_dict(product)}), 201


@products_bp.route("/<int:product_id>", methods=["PUT"])
@login_required
def update_product(product_id: int):
    fields, files = _submitted_fields()
    product = _product_service().update_product(current_account(), product_id, fields, files)
    return jsonify({"success": True, "message": "Product updated.", "product": product_to_dict(product)}), 200


@products_bp.route("/<int:product_id>", methods=["DELETE"])
@login_required
def delete_product(product_id: int):
    removed = _product_service().delete_product(current_account(), product_id)
    return jsonify({"success": True, "message": "Product deleted.", "product": {"id": removed["id"], "name": removed["name"]}}), 200
