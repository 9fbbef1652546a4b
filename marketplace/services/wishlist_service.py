from __future__ import annotations

import logging
from typing import List

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from marketplace.errors import Conflict, NotFound, ValidationError
from marketplace.models import Account, Product, WishlistEntry
from marketplace.observability import increment_counter


class WishlistService:
    """Per-account saved products. One entry per (account, product)."""

    def __init__(self, db_session: Session) -> None:
        self.db = db_session
        self.logger = logging.getLogger(__name__)

    def list_entries(self, account: Account) -> List[WishlistEntry]:
        return (
            self.db.query(WishlistEntry)
            .options(joinedload(WishlistEntry.product).joinedload(Product.seller))
            .filter(WishlistEntry.accountID == account.accountID)
            .order_by(WishlistEntry.created_at.desc(), WishlistEntry.wishlistID.desc())
            .all()
        )

    def add(self, account: Account, product_id) -> WishlistEntry:
        product_id = self._product_id(product_id)
        if self.db.get(Product, product_id) is None:
            raise NotFound("Product not found.")

        entry = WishlistEntry(accountID=account.accountID, productID=product_id)
        self.db.add(entry)
        try:
            self.db.commit()
        except IntegrityError as exc:
            # The unique constraint is the single source of truth for duplicates
            self.db.rollback()
            raise Conflict("Product is already in your wishlist.") from exc

        increment_counter("wishlist_additions_total")
        self.logger.info("Wishlist entry added", extra={"product_id": product_id})
        return entry

    def remove(self, account: Account, product_id) -> None:
        product_id = self._product_id(product_id)
        deleted = (
            self.db.query(WishlistEntry)
            .filter(WishlistEntry.accountID == account.accountID, WishlistEntry.productID == product_id)
            .delete(synchronize_session=False)
        )
        self.db.commit()
        if not deleted:
            raise NotFound("Product is not in your wishlist.")

    def contains(self, account: Account, product_id) -> bool:
        product_id = self._product_id(product_id)
        return (
            self.db.query(WishlistEntry.wishlistID)
            .filter(WishlistEntry.accountID == account.accountID, WishlistEntry.productID == product_id)
            .first()
            is not None
        )

    def count(self, account: Account) -> int:
        return self.db.query(WishlistEntry).filter(WishlistEntry.accountID == account.accountID).count()

    @staticmethod
    def _product_id(value) -> int:
        try:
            return int(value)
        except (TypeError, ValueError) as exc:
            raise ValidationError("productId must be an integer.") from exc
