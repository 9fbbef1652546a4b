from __future__ import annotations

from typing import Any, Dict, Optional

from marketplace.models import CartItem, ListingType, Product, ProductCondition, ProductStatus, WishlistEntry
from marketplace.services.image_service import resolve_image_url, resolve_image_urls


def seller_summary(product: Product) -> Optional[Dict[str, Any]]:
    seller = product.seller
    if seller is None:
        return None
    return {"id": seller.accountID, "username": seller.username, "full_name": seller.full_name}


def product_to_dict(product: Product, include_seller: bool = True) -> Dict[str, Any]:
    images = product.image_list
    data: Dict[str, Any] = {
        "id": product.productID,
        "name": product.name,
        "description": product.description or "",
        "price": product.price,
        "category": product.category,
        "condition": ProductCondition(product.condition).value,
        "listing_type": ListingType(product.listing_type).value,
        "status": ProductStatus(product.status).value,
        "stock": product.stock,
        "images": resolve_image_urls(images),
        "imageUrl": resolve_image_url({"images": images}),
        "view_count": product.view_count or 0,
        "seller_id": product.sellerID,
        "created_at": product.created_at.isoformat() if product.created_at else None,
        "updated_at": product.updated_at.isoformat() if product.updated_at else None,
    }
    if include_seller:
        data["seller"] = seller_summary(product)
    return data


def cart_item_to_dict(item: CartItem) -> Dict[str, Any]:
    product = item.product
    return {
        "id": item.cartItemID,
        "product_id": item.productID,
        "quantity": item.quantity,
        "subtotal": product.price * item.quantity if product is not None else 0,
        "available": bool(product is not None and product.is_purchasable),
        "product": product_to_dict(product) if product is not None else None,
        "added_at": item.added_at.isoformat() if item.added_at else None,
    }


def wishlist_entry_to_dict(entry: WishlistEntry) -> Dict[str, Any]:
    return {
        "id": entry.wishlistID,
        "product_id": entry.productID,
        "product": product_to_dict(entry.product) if entry.product is not None else None,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }
