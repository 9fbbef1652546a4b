from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from marketplace.errors import Conflict, NotFound, ValidationError
from marketplace.models import Account, CartItem, Product


class CartService:
    """Server-side shopping cart. Totals always come from current product prices."""

    def __init__(self, db_session: Session) -> None:
        self.db = db_session
        self.logger = logging.getLogger(__name__)

    def get_items(self, account_id: int) -> List[CartItem]:
        return (
            self.db.query(CartItem)
            .options(joinedload(CartItem.product).joinedload(Product.seller))
            .filter(CartItem.accountID == account_id)
            .order_by(CartItem.added_at.asc(), CartItem.cartItemID.asc())
            .all()
        )

    def summary(self, account: Account) -> Dict[str, Any]:
        items = [item for item in self.get_items(account.accountID) if item.product is not None]
        total = sum(item.product.price * item.quantity for item in items if item.product.is_purchasable)
        return {
            "items": items,
            "total_items": sum(item.quantity for item in items),
            "total_amount": total,
        }

    def add_item(self, account: Account, product_id, quantity=1) -> CartItem:
        product_id = _as_int(product_id, "productId")
        quantity = _as_int(quantity, "quantity")
        if quantity <= 0:
            raise ValidationError("quantity must be at least 1.")

        product = self.db.get(Product, product_id)
        if product is None:
            raise NotFound("Product not found.")
        self._ensure_addable(account, product)

        item = (
            self.db.query(CartItem)
            .filter(CartItem.accountID == account.accountID, CartItem.productID == product_id)
            .first()
        )
        new_quantity = quantity + (item.quantity if item else 0)
        if new_quantity > product.stock:
            raise ValidationError("Requested quantity exceeds available stock.")

        if item is None:
            item = CartItem(accountID=account.accountID, productID=product_id, quantity=new_quantity)
            self.db.add(item)
        else:
            item.quantity = new_quantity
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise Conflict("Cart was modified concurrently; please retry.") from exc
        self.logger.info("Cart item saved", extra={"product_id": product_id, "quantity": new_quantity})
        return item

    def update_item(self, account: Account, product_id, quantity) -> None:
        product_id = _as_int(product_id, "productId")
        quantity = _as_int(quantity, "quantity")
        item = (
            self.db.query(CartItem)
            .filter(CartItem.accountID == account.accountID, CartItem.productID == product_id)
            .first()
        )
        if item is None:
            raise NotFound("Product is not in your cart.")
        if quantity <= 0:
            self.db.delete(item)
        else:
            if item.product is not None and quantity > item.product.stock:
                raise ValidationError("Requested quantity exceeds available stock.")
            item.quantity = quantity
        self.db.commit()

    def remove_item(self, account: Account, product_id) -> None:
        product_id = _as_int(product_id, "productId")
        deleted = self.remove_products(account.accountID, [product_id])
        self.db.commit()
        if not deleted:
            raise NotFound("Product is not in your cart.")

    def clear(self, account: Account) -> int:
        deleted = (
            self.db.query(CartItem)
            .filter(CartItem.accountID == account.accountID)
            .delete(synchronize_session=False)
        )
        self.db.commit()
        return deleted

    def remove_products(self, account_id: int, product_ids: Iterable[int]) -> int:
        """Drop the given products from a cart without committing."""
        product_ids = [pid for pid in product_ids if pid is not None]
        if not product_ids:
            return 0
        return (
            self.db.query(CartItem)
            .filter(CartItem.accountID == account_id, CartItem.productID.in_(product_ids))
            .delete(synchronize_session=False)
        )

    @staticmethod
    def _ensure_addable(account: Account, product: Product) -> None:
        if product.sellerID == account.accountID:
            raise ValidationError("You cannot add your own product to the cart.")
        if not product.is_purchasable:
            raise ValidationError("Only active products listed for sale can be added to the cart.")


def _as_int(value, field: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{field} must be an integer.") from exc
