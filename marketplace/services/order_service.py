"""
Order Service

Read side for a buyer's orders: filtered, sorted and paginated history,
single-order details and summary statistics. Keeps controllers away from
the underlying schema.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload

from marketplace.config import Config
from marketplace.errors import NotFound, ValidationError
from marketplace.models import Order, OrderKind, OrderStatus
from marketplace.services.checkout_service import serialize_line_items


class OrderService:
    SORT_KEYS = {
        "newest": (Order.created_at.desc(), Order.orderID.desc()),
        "oldest": (Order.created_at.asc(), Order.orderID.asc()),
        "amount-high": (Order.total_amount.desc(), Order.created_at.desc()),
        "amount-low": (Order.total_amount.asc(), Order.created_at.desc()),
    }
    MAX_PAGE_SIZE = 100

    def __init__(self, db_session: Session, page_size: Optional[int] = None) -> None:
        self.db = db_session
        self.page_size = page_size or Config.ORDER_HISTORY_PAGE_SIZE
        self.logger = logging.getLogger(__name__)

    def get_order_history(
        self,
        buyer_id: Optional[int],
        status_filter: Optional[str] = None,
        sort: Optional[str] = None,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Retrieve filtered and paginated orders.

        Args:
            buyer_id: Restrict to this buyer; ``None`` lists every order (admin view)
            status_filter: One of the order statuses, or ``all``
            sort: newest (default), oldest, amount-high, amount-low
            page: 1-based page number
            limit: Page size override, capped at ``MAX_PAGE_SIZE``
        """
        page = max(int(page or 1), 1)
        page_size = min(max(int(limit or self.page_size), 1), self.MAX_PAGE_SIZE)

        query = self.db.query(Order).options(selectinload(Order.line_items))
        if buyer_id is not None:
            query = query.filter(Order.buyerID == buyer_id)
        status = self._parse_status(status_filter)
        if status is not None:
            query = query.filter(Order.status == status)

        sort_key = (sort or "newest").lower()
        if sort_key not in self.SORT_KEYS:
            raise ValidationError(f"Unknown sort key. Use one of: {', '.join(self.SORT_KEYS)}.")

        total_count = query.order_by(None).count()
        orders = (
            query.order_by(*self.SORT_KEYS[sort_key])
            .offset((page - 1) * page_size)
            .limit(page_size)
            .all()
        )
        total_pages = max(1, (total_count + page_size - 1) // page_size)

        return {
            "orders": [self.serialize_order(order) for order in orders],
            "pagination": {
                "page": page,
                "limit": page_size,
                "total_count": total_count,
                "total_pages": total_pages,
                "has_next": page < total_pages,
                "has_prev": page > 1,
            },
            "filters_applied": {"status": status.value if status else None, "sort": sort_key},
        }

    def get_order(self, buyer_id: int, order_id: int) -> Order:
        order = (
            self.db.query(Order)
            .options(selectinload(Order.line_items))
            .filter(Order.orderID == order_id)
            .first()
        )
        # Someone else's order looks exactly like a missing one
        if order is None or order.buyerID != buyer_id:
            raise NotFound("Order not found.")
        return order

    def get_stats(self, buyer_id: int) -> Dict[str, Any]:
        rows = (
            self.db.query(Order.status, func.count(Order.orderID), func.coalesce(func.sum(Order.total_amount), 0))
            .filter(Order.buyerID == buyer_id)
            .group_by(Order.status)
            .all()
        )
        by_status = {status.value: 0 for status in OrderStatus}
        total_spent = 0
        for status, count, amount in rows:
            status = OrderStatus(status)
            by_status[status.value] = count
            if status == OrderStatus.SUCCESS:
                total_spent = int(amount)
        return {
            "total_orders": sum(by_status.values()),
            "total_spent": total_spent,
            "by_status": by_status,
        }

    @staticmethod
    def _parse_status(status_filter: Optional[str]) -> Optional[OrderStatus]:
        if not status_filter or status_filter.lower() == "all":
            return None
        try:
            return OrderStatus(status_filter.lower())
        except ValueError as exc:
            raise ValidationError("Unknown order status filter.") from exc

    @staticmethod
    def serialize_order(order: Order) -> Dict[str, Any]:
        return {
            "id": order.orderID,
            "transaction_id": order.transactionID,
            "buyer_id": order.buyerID,
            "kind": OrderKind(order.kind).value,
            "status": OrderStatus(order.status).value,
            "total_amount": order.total_amount,
            "line_items": serialize_line_items(order.line_items),
            "snap_token": order.snap_token,
            "redirect_url": order.redirect_url,
            "payment_type": order.payment_type,
            "created_at": order.created_at.isoformat() if order.created_at else None,
            "paid_at": order.paid_at.isoformat() if order.paid_at else None,
            "expired_at": order.expired_at.isoformat() if order.expired_at else None,
        }
