"""
Checkout / Payment Orchestrator

Turns a single-product purchase or a cart into a pending Order, opens a
payment session with the gateway, and reconciles the Order from gateway
notifications.

Order state machine::

    pending -> success | challenge | expired | failed
    challenge -> success | failed | expired

``success``, ``failed`` and ``expired`` are terminal. Every transition is
a conditional UPDATE guarded by the allowed source statuses, so replayed
or concurrent notifications apply their side effects at most once.
"""
from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple
from uuid import uuid4

from sqlalchemy import update
from sqlalchemy.orm import Session, selectinload

from marketplace.config import Config
from marketplace.errors import (
    AmountMismatch,
    Forbidden,
    GatewayUnavailable,
    NotFound,
    UnknownOrder,
    ValidationError,
)
from marketplace.models import (
    Account,
    Order,
    OrderKind,
    OrderLineItem,
    OrderStatus,
    Product,
    ProductStatus,
    utcnow,
)
from marketplace.observability import increment_counter, record_event
from marketplace.services.cart_service import CartService
from marketplace.services.image_service import resolve_image_url
from marketplace.services.notification_service import NotificationService, NotificationType
from marketplace.services.payment_gateway import build_snap_payload, map_transaction_status

REQUIRED_NOTIFICATION_FIELDS = ("order_id", "status_code", "gross_amount", "signature_key")


class CheckoutService:
    def __init__(
        self,
        db_session: Session,
        gateway,
        notification_service: Optional[NotificationService] = None,
        cart_service: Optional[CartService] = None,
        frontend_url: Optional[str] = None,
        expiry_minutes: Optional[int] = None,
        grace_minutes: Optional[int] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.db = db_session
        self.gateway = gateway
        self.notifications = notification_service or NotificationService(db_session)
        self.cart = cart_service or CartService(db_session)
        self.frontend_url = frontend_url or Config.FRONTEND_URL
        self.expiry_minutes = expiry_minutes or Config.PAYMENT_EXPIRY_MINUTES
        self.grace_minutes = Config.PENDING_ORDER_GRACE_MINUTES if grace_minutes is None else grace_minutes
        self._clock = clock
        self.logger = logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Create checkout
    # ------------------------------------------------------------------
    def create_single_checkout(self, buyer: Account, product_id, quantity=1, client_total=None) -> Order:
        product_id = _as_int(product_id, "productId")
        quantity = _as_int(quantity if quantity not in (None, "") else 1, "quantity")
        return self._create_order(buyer, OrderKind.SINGLE, [(product_id, quantity)], client_total)

    def create_cart_checkout(
        self,
        buyer: Account,
        items: Optional[Sequence[Mapping[str, Any]]] = None,
        client_total=None,
    ) -> Order:
        """Check out explicit ``items`` or, when omitted, the buyer's server-side cart."""
        if items:
            requested: List[Tuple[int, int]] = []
            for raw in items:
                if not isinstance(raw, Mapping):
                    raise ValidationError("Each cart item must be an object.")
                product_id = raw.get("productId", raw.get("product_id"))
                requested.append((_as_int(product_id, "productId"), _as_int(raw.get("quantity", 1), "quantity")))
        else:
            requested = [(item.productID, item.quantity) for item in self.cart.get_items(buyer.accountID)]
        return self._create_order(buyer, OrderKind.CART, requested, client_total)

    def _create_order(
        self,
        buyer: Account,
        kind: OrderKind,
        requested: Sequence[Tuple[int, int]],
        client_total,
    ) -> Order:
        if buyer.is_admin:
            raise Forbidden("Admin accounts cannot make purchases.")
        if not requested:
            raise ValidationError("There is nothing to check out.")

        line_items = self._price_line_items(buyer, requested)
        total = sum(item["unit_price"] * item["quantity"] for item in line_items)
        if client_total is not None and client_total != "":
            asserted = _as_amount(client_total, "totalAmount")
            if asserted != total:
                increment_counter("checkout_amount_mismatch_total")
                raise AmountMismatch(details={"expected": total, "received": asserted})

        order = Order(
            transactionID=self._new_transaction_id(kind, buyer.accountID),
            buyerID=buyer.accountID,
            kind=kind,
            total_amount=total,
            status=OrderStatus.PENDING,
            line_items=[
                OrderLineItem(
                    productID=item["product_id"],
                    sellerID=item["seller_id"],
                    product_name=item["product_name"],
                    product_image=item["product_image"],
                    unit_price=item["unit_price"],
                    quantity=item["quantity"],
                )
                for item in line_items
            ],
        )
        self.db.add(order)
        self.db.commit()

        payload = build_snap_payload(
            order.transactionID,
            total,
            line_items,
            {
                "full_name": buyer.full_name,
                "username": buyer.username,
                "email": buyer.email,
                "phone": buyer.phone,
            },
            frontend_url=self.frontend_url,
            expiry_minutes=self.expiry_minutes,
        )
        try:
            session = self.gateway.create_transaction(payload)
        except GatewayUnavailable:
            # No payment session exists, so the order can never be paid
            self._transition(order.orderID, OrderStatus.FAILED)
            self.db.commit()
            raise

        order.snap_token = session["token"]
        order.redirect_url = session.get("redirect_url")
        self.db.commit()

        increment_counter("orders_created_total", labels={"kind": kind.value})
        record_event(
            "order_created",
            {"order_id": order.orderID, "transaction_id": order.transactionID, "kind": kind.value, "total": total},
        )
        self.logger.info(
            "Checkout created",
            extra={"order_id": order.orderID, "transaction_id": order.transactionID, "kind": kind.value},
        )
        return order

    def _price_line_items(self, buyer: Account, requested: Sequence[Tuple[int, int]]) -> List[Dict[str, Any]]:
        """Validate every requested product and snapshot its authoritative price."""
        merged: Dict[int, int] = {}
        for product_id, quantity in requested:
            if quantity <= 0:
                raise ValidationError("quantity must be at least 1.")
            merged[product_id] = merged.get(product_id, 0) + quantity

        products = {
            product.productID: product
            for product in self.db.query(Product).filter(Product.productID.in_(list(merged))).all()
        }
        line_items: List[Dict[str, Any]] = []
        for product_id, quantity in merged.items():
            product = products.get(product_id)
            if product is None:
                raise NotFound(f"Product {product_id} not found.")
            if product.sellerID == buyer.accountID:
                raise ValidationError("You cannot buy your own product.")
            if not product.is_purchasable:
                raise ValidationError(f"'{product.name}' is not available for purchase.")
            if quantity > product.stock:
                raise ValidationError(f"Requested quantity for '{product.name}' exceeds available stock.")
            line_items.append(
                {
                    "product_id": product.productID,
                    "seller_id": product.sellerID,
                    "product_name": product.name,
                    "product_image": resolve_image_url({"images": product.image_list}),
                    "unit_price": int(product.price),
                    "quantity": quantity,
                }
            )
        return line_items

    @staticmethod
    def _new_transaction_id(kind: OrderKind, buyer_id: int) -> str:
        prefix = "ORDER" if kind == OrderKind.SINGLE else "CART"
        return f"{prefix}-{int(time.time() * 1000)}-{buyer_id}-{uuid4().hex[:6]}"

    # ------------------------------------------------------------------
    # Gateway notifications
    # ------------------------------------------------------------------
    def handle_notification(self, notification: Mapping[str, Any]) -> Order:
        missing = [key for key in REQUIRED_NOTIFICATION_FIELDS if not notification.get(key)]
        if missing:
            raise ValidationError("Notification is missing required fields.", details={"missing": missing})
        if not self.gateway.verify_signature(notification):
            increment_counter("payment_callbacks_total", labels={"outcome": "bad_signature"})
            self.logger.warning("Rejected gateway notification with invalid signature")
            raise Forbidden("Invalid notification signature.")

        order = self._order_by_transaction(str(notification["order_id"]))
        if _as_amount(notification["gross_amount"], "gross_amount") != order.total_amount:
            increment_counter("payment_callbacks_total", labels={"outcome": "amount_mismatch"})
            raise AmountMismatch("Notification amount does not match the order total.")

        return self._reconcile(order, notification, source="notification")

    def _reconcile(self, order: Order, gateway_state: Mapping[str, Any], source: str) -> Order:
        transaction_status = gateway_state.get("transaction_status")
        new_status = map_transaction_status(transaction_status, gateway_state.get("fraud_status"))
        increment_counter(
            "payment_callbacks_total",
            labels={"outcome": new_status.value if new_status else "no_change", "source": source},
        )

        extra = {
            "gateway_status": str(transaction_status or "")[:50] or None,
            "payment_type": str(gateway_state.get("payment_type") or "")[:50] or None,
        }
        if new_status is None:
            self.logger.info(
                "Gateway status leaves order unchanged",
                extra={"transaction_id": order.transactionID, "gateway_status": transaction_status},
            )
            return order

        applied = self._transition(order.orderID, new_status, extra)
        if applied and new_status == OrderStatus.SUCCESS:
            self._apply_success_effects(order)
        self.db.commit()
        self.db.refresh(order)

        if applied:
            record_event(
                "order_status_changed",
                {"order_id": order.orderID, "transaction_id": order.transactionID, "new_status": new_status.value},
            )
            self.logger.info(
                "Order status updated",
                extra={"transaction_id": order.transactionID, "new_status": new_status.value},
            )
        else:
            self.logger.info(
                "Order status transition ignored",
                extra={
                    "transaction_id": order.transactionID,
                    "current_status": OrderStatus(order.status).value,
                    "requested_status": new_status.value,
                },
            )
        return order

    def _transition(self, order_id: int, new_status: OrderStatus, extra: Optional[Dict[str, Any]] = None) -> bool:
        """Conditionally move an order to ``new_status``; True only for the call that applied it."""
        sources = Order.sources_for(new_status)
        if not sources:
            return False
        now = self._clock()
        values: Dict[str, Any] = {"status": new_status, "updated_at": now}
        if new_status == OrderStatus.SUCCESS:
            values["paid_at"] = now
        elif new_status == OrderStatus.EXPIRED:
            values["expired_at"] = now
        values.update({key: value for key, value in (extra or {}).items() if value is not None})

        result = self.db.execute(
            update(Order)
            .where(Order.orderID == order_id, Order.status.in_(sources))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _apply_success_effects(self, order: Order) -> None:
        """Runs inside the transition's transaction, exactly once per paid order."""
        product_ids = [item.productID for item in order.line_items if item.productID is not None]
        now = self._clock()
        if product_ids:
            self.db.execute(
                update(Product)
                .where(Product.productID.in_(product_ids), Product.status == ProductStatus.ACTIVE)
                .values(status=ProductStatus.SOLD, sold_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            self.cart.remove_products(order.buyerID, product_ids)

        names = ", ".join(item.product_name for item in order.line_items)
        self.notifications.add_notification(
            order.buyerID,
            NotificationType.PAYMENT_SUCCESS,
            "Payment successful",
            f"Your payment for {names} has been received.",
            payload={
                "order_id": order.orderID,
                "transaction_id": order.transactionID,
                "total_amount": order.total_amount,
            },
            commit=False,
        )
        increment_counter("orders_paid_total", labels={"kind": OrderKind(order.kind).value})

    # ------------------------------------------------------------------
    # Status lookups and sweeps
    # ------------------------------------------------------------------
    def transaction_status(self, buyer: Account, transaction_id: str, refresh: bool = True) -> Order:
        """Return the buyer's order, reconciling with the gateway while it is open."""
        order = self._order_by_transaction(transaction_id)
        if order.buyerID != buyer.accountID:
            raise UnknownOrder()
        if refresh and not order.is_terminal and getattr(self.gateway, "configured", False):
            try:
                gateway_state = self.gateway.get_transaction_status(order.transactionID)
            except GatewayUnavailable:
                self.logger.warning(
                    "Could not refresh transaction status", extra={"transaction_id": order.transactionID}
                )
                return order
            if str(gateway_state.get("order_id", order.transactionID)) == order.transactionID:
                order = self._reconcile(order, gateway_state, source="status_check")
        return order

    def expire_stale_orders(self, now: Optional[datetime] = None, buyer_id: Optional[int] = None) -> int:
        """Expire pending orders older than the payment window plus the grace period."""
        now = now or self._clock()
        cutoff = now - timedelta(minutes=self.expiry_minutes + self.grace_minutes)
        statement = (
            update(Order)
            .where(Order.status == OrderStatus.PENDING, Order.created_at < cutoff)
            .values(status=OrderStatus.EXPIRED, expired_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if buyer_id is not None:
            statement = statement.where(Order.buyerID == buyer_id)
        result = self.db.execute(statement)
        self.db.commit()
        expired = result.rowcount or 0
        if expired:
            increment_counter("orders_expired_total", amount=expired)
            self.logger.info("Expired stale pending orders", extra={"count": expired})
        return expired

    def _order_by_transaction(self, transaction_id: str) -> Order:
        order = (
            self.db.query(Order)
            .options(selectinload(Order.line_items))
            .filter(Order.transactionID == transaction_id)
            .first()
        )
        if order is None:
            raise UnknownOrder()
        return order


def serialize_line_items(items: Iterable[OrderLineItem]) -> List[Dict[str, Any]]:
    return [
        {
            "product_id": item.productID,
            "seller_id": item.sellerID,
            "product_name": item.product_name,
            "product_image": item.product_image,
            "unit_price": item.unit_price,
            "quantity": item.quantity,
            "subtotal": item.subtotal,
        }
        for item in items
    ]


def _as_int(value, field: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{field} must be an integer.") from exc


def _as_amount(value, field: str) -> int:
    """Gateway amounts arrive as strings like ``"50000.00"``."""
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"{field} must be a number.") from exc
    if not amount.is_finite() or amount != amount.to_integral_value():
        raise ValidationError(f"{field} must be a whole amount.")
    return int(amount)
