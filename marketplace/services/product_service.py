"""
Product Service

Listing, search and owner-scoped writes for marketplace products. Writes
check ownership (or the admin role) before anything is changed.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

import bleach
from sqlalchemy import func, or_, update
from sqlalchemy.orm import Session, joinedload

from marketplace.errors import Forbidden, NotFound, ValidationError
from marketplace.models import (
    Account,
    CartItem,
    ListingType,
    Product,
    ProductCondition,
    ProductStatus,
    WishlistEntry,
    utcnow,
)
from marketplace.observability import increment_counter
from marketplace.services.image_service import ImageStorage


def clean_text(value: Any) -> str:
    """Strip markup from user-supplied text."""
    if value is None:
        return ""
    return bleach.clean(str(value), tags=[], strip=True).strip()


class ProductService:
    SORT_KEYS = ("newest", "oldest", "price-asc", "price-desc")

    def __init__(self, db_session: Session, image_storage: Optional[ImageStorage] = None) -> None:
        self.db = db_session
        self.images = image_storage or ImageStorage()
        self.logger = logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def list_products(
        self,
        category: Optional[str] = None,
        search: Optional[str] = None,
        sort: Optional[str] = None,
        limit: Optional[int] = None,
        include_sold: bool = False,
    ) -> List[Product]:
        query = self.filtered_query(category=category, search=search, include_sold=include_sold)
        query = self._apply_sort(query, sort)
        if limit is not None:
            if limit < 1:
                raise ValidationError("limit must be at least 1.")
            query = query.limit(limit)
        return query.all()

    def filtered_query(
        self,
        category: Optional[str] = None,
        search: Optional[str] = None,
        include_sold: bool = False,
    ):
        query = self.db.query(Product).options(joinedload(Product.seller))
        if not include_sold:
            query = query.filter(Product.status == ProductStatus.ACTIVE)
        if category and category.lower() != "all":
            query = query.filter(func.lower(Product.category) == category.strip().lower())
        if search and search.strip():
            pattern = f"%{search.strip()}%"
            query = query.filter(or_(Product.name.ilike(pattern), Product.description.ilike(pattern)))
        return query

    def _apply_sort(self, query, sort: Optional[str]):
        sort = (sort or "newest").lower()
        if sort not in self.SORT_KEYS:
            raise ValidationError(f"Unknown sort key. Use one of: {', '.join(self.SORT_KEYS)}.")
        if sort == "price-asc":
            return query.order_by(Product.price.asc(), Product.created_at.desc(), Product.productID.desc())
        if sort == "price-desc":
            return query.order_by(Product.price.desc(), Product.created_at.desc(), Product.productID.desc())
        if sort == "oldest":
            return query.order_by(Product.created_at.asc(), Product.productID.asc())
        return query.order_by(Product.created_at.desc(), Product.productID.desc())

    def get_product(self, product_id: int) -> Product:
        product = (
            self.db.query(Product)
            .options(joinedload(Product.seller))
            .filter(Product.productID == product_id)
            .first()
        )
        if product is None:
            raise NotFound("Product not found.")
        return product

    def view_product(self, product_id: int) -> Product:
        """Fetch a product for its detail page and bump the view counter."""
        product = self.get_product(product_id)
        # Atomic increment; concurrent viewers must not lose counts
        self.db.execute(
            update(Product)
            .where(Product.productID == product_id)
            .values(view_count=Product.view_count + 1)
        )
        self.db.commit()
        self.db.refresh(product)
        return product

    def categories(self) -> List[Dict[str, Any]]:
        rows = (
            self.db.query(Product.category, func.count(Product.productID))
            .filter(Product.status == ProductStatus.ACTIVE)
            .group_by(Product.category)
            .order_by(Product.category.asc())
            .all()
        )
        return [{"category": category, "count": count} for category, count in rows]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def create_product(self, seller: Account, fields: Mapping[str, Any], files: Sequence = ()) -> Product:
        data = self._validate_fields(fields, partial=False)
        if not files:
            raise ValidationError("At least one product image is required.")
        stored = self.images.save_all(files)

        product = Product(
            sellerID=seller.accountID,
            images=stored,
            status=ProductStatus.ACTIVE,
            view_count=0,
            **data,
        )
        self.db.add(product)
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            self.images.remove(stored)
            raise
        increment_counter("products_created_total", labels={"listing_type": ListingType(product.listing_type).value})
        self.logger.info("Product created", extra={"product_id": product.productID, "seller_id": seller.accountID})
        return product

    def update_product(
        self,
        actor: Account,
        product_id: int,
        fields: Mapping[str, Any],
        files: Sequence = (),
    ) -> Product:
        product = self.get_product(product_id)
        self._ensure_can_modify(actor, product)
        data = self._validate_fields(fields, partial=True, current=product)

        current_images = product.image_list
        kept = current_images
        if "images" in fields and fields["images"] is not None:
            requested = fields["images"]
            if not isinstance(requested, (list, tuple)):
                raise ValidationError("images must be a list of existing image references.")
            kept = [ref for ref in requested if ref in current_images]
        new_refs = self.images.save_all(files, existing_count=len(kept)) if files else []
        if not kept and not new_refs:
            raise ValidationError("A product needs at least one image.")

        for key, value in data.items():
            setattr(product, key, value)
        product.images = kept + new_refs
        product.updated_at = utcnow()
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            self.images.remove(new_refs)
            raise
        self.images.remove([ref for ref in current_images if ref not in kept])
        self.logger.info("Product updated", extra={"product_id": product.productID, "actor_id": actor.accountID})
        return product

    def delete_product(self, actor: Account, product_id: int) -> Dict[str, Any]:
        product = self.get_product(product_id)
        self._ensure_can_modify(actor, product)
        return self.remove(product)

    def remove(self, product: Product) -> Dict[str, Any]:
        """Delete ``product`` and its stored images. Returns a snapshot of the removed listing."""
        snapshot = {
            "id": product.productID,
            "name": product.name,
            "seller_id": product.sellerID,
            "images": product.image_list,
        }
        # Wishlist and cart rows go with the listing; order line items keep their snapshot
        self.db.query(WishlistEntry).filter(WishlistEntry.productID == product.productID).delete(
            synchronize_session=False
        )
        self.db.query(CartItem).filter(CartItem.productID == product.productID).delete(synchronize_session=False)
        self.db.delete(product)
        self.db.commit()
        self.images.remove(snapshot["images"])
        increment_counter("products_deleted_total")
        self.logger.info("Product deleted", extra={"product_id": snapshot["id"]})
        return snapshot

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _ensure_can_modify(actor: Account, product: Product) -> None:
        if actor.is_admin or product.sellerID == actor.accountID:
            return
        raise Forbidden("You can only modify your own products.")

    @staticmethod
    def _validate_fields(
        fields: Mapping[str, Any],
        partial: bool,
        current: Optional[Product] = None,
    ) -> Dict[str, Any]:
        data: Dict[str, Any] = {}

        for key in ("name", "category"):
            if key in fields or not partial:
                value = clean_text(fields.get(key))
                if not value:
                    raise ValidationError(f"{key} is required.")
                data[key] = value

        if "description" in fields or not partial:
            data["description"] = clean_text(fields.get("description"))

        if "condition" in fields or not partial:
            try:
                data["condition"] = ProductCondition(str(fields.get("condition") or "").lower())
            except ValueError as exc:
                raise ValidationError("condition must be 'new' or 'used'.") from exc

        listing_key = "listing_type" if "listing_type" in fields else "listingType"
        if listing_key in fields or not partial:
            raw = str(fields.get(listing_key) or "").strip().capitalize()
            try:
                data["listing_type"] = ListingType(raw)
            except ValueError as exc:
                raise ValidationError("listing_type must be one of Sell, Donation, Swap.") from exc

        if "price" in fields or not partial:
            raw_price = fields.get("price")
            try:
                price = int(raw_price) if raw_price not in (None, "") else 0
            except (TypeError, ValueError) as exc:
                raise ValidationError("price must be a whole number.") from exc
            if price < 0:
                raise ValidationError("price cannot be negative.")
            data["price"] = price

        if "stock" in fields:
            try:
                stock = int(fields["stock"])
            except (TypeError, ValueError) as exc:
                raise ValidationError("stock must be a whole number.") from exc
            if stock < 0:
                raise ValidationError("stock cannot be negative.")
            data["stock"] = stock

        listing_type = data.get("listing_type") or (ListingType(current.listing_type) if current else None)
        price = data.get("price", current.price if current else 0)
        if listing_type == ListingType.SELL and (price or 0) <= 0:
            raise ValidationError("Products listed for sale need a positive price.")
        if listing_type in (ListingType.DONATION, ListingType.SWAP):
            data["price"] = 0
        return data
