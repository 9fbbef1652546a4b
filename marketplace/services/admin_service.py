from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from marketplace.config import Config
from marketplace.errors import ValidationError
from marketplace.models import Account, AccountRole, Product
from marketplace.observability import increment_counter, record_event
from marketplace.services.notification_service import NotificationService, NotificationType
from marketplace.services.product_service import ProductService


class AdminService:
    """Back-office operations. Callers must already hold the admin role."""

    def __init__(
        self,
        db_session: Session,
        product_service: Optional[ProductService] = None,
        notification_service: Optional[NotificationService] = None,
        recent_limit: Optional[int] = None,
    ) -> None:
        self.db = db_session
        self.products = product_service or ProductService(db_session)
        self.notifications = notification_service or NotificationService(db_session)
        self.recent_limit = recent_limit or Config.ADMIN_RECENT_PRODUCTS_LIMIT
        self.logger = logging.getLogger(__name__)

    def product_overview(
        self,
        category: Optional[str] = None,
        search: Optional[str] = None,
        sort: Optional[str] = None,
    ) -> Dict[str, Any]:
        products = self.products.list_products(category=category, search=search, sort=sort, include_sold=True)
        recent = self.products.list_products(sort="newest", limit=self.recent_limit, include_sold=True)
        return {
            "totalProducts": self.db.query(Product).count(),
            "products": products,
            "recentProducts": recent,
        }

    def delete_product(self, admin: Account, product_id: int, reason: Optional[str]) -> Dict[str, Any]:
        """
        Delete any product, then tell its seller why.

        The reason is validated before anything is removed. The seller
        notification is best-effort: once the product is gone, a failure to
        store the notification is logged and the deletion stands.
        """
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("A reason is required to delete a product.")

        product = self.products.get_product(product_id)
        removed = self.products.remove(product)
        increment_counter("admin_product_deletions_total")
        record_event(
            "admin_product_deleted",
            {"product_id": removed["id"], "admin_id": admin.accountID, "seller_id": removed["seller_id"]},
        )

        notified = False
        try:
            self.notifications.add_notification(
                removed["seller_id"],
                NotificationType.PRODUCT_DELETED,
                "Your product was removed",
                f'Your product "{removed["name"]}" was removed by an administrator. Reason: {reason}',
                payload={
                    "product_id": removed["id"],
                    "product_name": removed["name"],
                    "reason": reason,
                },
            )
            notified = True
        except SQLAlchemyError:
            self.db.rollback()
            self.logger.exception(
                "Could not notify seller about product removal", extra={"product_id": removed["id"]}
            )

        self.logger.info(
            "Product removed by admin",
            extra={"product_id": removed["id"], "admin_id": admin.accountID, "seller_notified": notified},
        )
        return {"product": {"id": removed["id"], "name": removed["name"]}, "reason": reason, "sellerNotified": notified}

    def count_users(self) -> Dict[str, int]:
        total = self.db.query(Account).filter(Account.role == AccountRole.USER).count()
        verified = (
            self.db.query(Account)
            .filter(Account.role == AccountRole.USER, Account.is_verified.is_(True))
            .count()
        )
        return {"totalUsers": total, "verifiedUsers": verified}

    def list_users(self, page: int = 1, limit: int = 20, search: Optional[str] = None) -> Dict[str, Any]:
        page = max(int(page or 1), 1)
        limit = min(max(int(limit or 20), 1), 100)
        query = self.db.query(Account)
        if search and search.strip():
            pattern = f"%{search.strip()}%"
            query = query.filter(Account.username.ilike(pattern) | Account.email.ilike(pattern))
        total = query.count()
        accounts = (
            query.order_by(Account.created_at.desc(), Account.accountID.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return {
            "users": [account.to_summary() for account in accounts],
            "pagination": {
                "page": page,
                "limit": limit,
                "total_count": total,
                "total_pages": max(1, (total + limit - 1) // limit),
            },
        }
