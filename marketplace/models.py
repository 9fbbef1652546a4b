# marketplace/models.py
from enum import Enum
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    Column,
    Integer,
    String,
    DateTime,
    ForeignKey,
    Boolean,
    Text,
    UniqueConstraint,
    Index,
    Enum as SAEnum,
)
from sqlalchemy.orm import relationship

# Use a single, shared Base for all models
from marketplace.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; every stored timestamp is UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class AccountRole(str, Enum):
    USER = "user"
    ADMIN = "admin"


class ProductCondition(str, Enum):
    NEW = "new"
    USED = "used"


class ListingType(str, Enum):
    SELL = "Sell"
    DONATION = "Donation"
    SWAP = "Swap"


class ProductStatus(str, Enum):
    ACTIVE = "active"
    SOLD = "sold"


class OrderStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    EXPIRED = "expired"
    CHALLENGE = "challenge"


class OrderKind(str, Enum):
    SINGLE = "single"
    CART = "cart"


class Account(Base):
    __tablename__ = 'Account'

    accountID = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(255), unique=True, nullable=False)
    email = Column(String(255), unique=True)
    _passwordHash = Column('password_hash', String(255), nullable=False)
    role = Column(
        SAEnum(AccountRole, name="account_role", native_enum=False, validate_strings=True),
        default=AccountRole.USER,
        nullable=False,
    )
    full_name = Column(String(255))
    phone = Column(String(50))
    address = Column(Text)
    bio = Column(Text, default="")
    is_verified = Column(Boolean, default=False, nullable=False)
    verification_token = Column(String(128), index=True)
    verification_token_expires = Column(DateTime)
    reset_password_token = Column(String(128), index=True)
    reset_password_expires = Column(DateTime)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    products = relationship("Product", back_populates="seller")
    orders = relationship("Order", back_populates="buyer")

    @property
    def passwordHash(self):
        return self._passwordHash

    @passwordHash.setter
    def passwordHash(self, value):
        self._passwordHash = value

    @property
    def is_admin(self) -> bool:
        return AccountRole(self.role) == AccountRole.ADMIN

    @property
    def display_name(self) -> str:
        return self.full_name or self.username

    def to_summary(self) -> Dict[str, Any]:
        return {
            "id": self.accountID,
            "username": self.username,
            "email": self.email,
            "full_name": self.full_name,
            "role": AccountRole(self.role).value,
            "is_verified": bool(self.is_verified),
        }


class Product(Base):
    __tablename__ = 'Product'
    __table_args__ = (
        Index("ix_product_category_status", "category", "status"),
        Index("ix_product_created_at", "created_at"),
    )

    productID = Column(Integer, primary_key=True, autoincrement=True)
    sellerID = Column(Integer, ForeignKey('Account.accountID'), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    # Minor currency unit
    price = Column(Integer, nullable=False, default=0)
    category = Column(String(120), nullable=False)
    condition = Column(
        SAEnum(ProductCondition, name="product_condition", native_enum=False, validate_strings=True),
        nullable=False,
    )
    listing_type = Column(
        SAEnum(ListingType, name="listing_type", native_enum=False, validate_strings=True),
        nullable=False,
    )
    images = Column(JSON, nullable=False, default=list)
    stock = Column(Integer, nullable=False, default=1)
    status = Column(
        SAEnum(ProductStatus, name="product_status", native_enum=False, validate_strings=True),
        default=ProductStatus.ACTIVE,
        nullable=False,
    )
    view_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    sold_at = Column(DateTime)

    seller = relationship("Account", back_populates="products")

    @property
    def image_list(self) -> List[str]:
        return list(self.images or [])

    @property
    def is_purchasable(self) -> bool:
        return (
            ListingType(self.listing_type) == ListingType.SELL
            and ProductStatus(self.status) == ProductStatus.ACTIVE
            and (self.price or 0) > 0
        )


class Order(Base):
    __tablename__ = 'Order'

    orderID = Column(Integer, primary_key=True, autoincrement=True)
    transactionID = Column(String(64), unique=True, nullable=False)
    buyerID = Column(Integer, ForeignKey('Account.accountID'), nullable=False, index=True)
    kind = Column(
        SAEnum(OrderKind, name="order_kind", native_enum=False, validate_strings=True),
        nullable=False,
    )
    total_amount = Column(Integer, nullable=False)
    status = Column(
        SAEnum(OrderStatus, name="order_status", native_enum=False, validate_strings=True),
        default=OrderStatus.PENDING,
        nullable=False,
        index=True,
    )
    snap_token = Column(String(255))
    redirect_url = Column(String(512))
    payment_type = Column(String(50))
    gateway_status = Column(String(50))
    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    paid_at = Column(DateTime)
    expired_at = Column(DateTime)

    buyer = relationship("Account", back_populates="orders")
    line_items = relationship(
        "OrderLineItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderLineItem.lineItemID",
    )

    TERMINAL_STATUSES = frozenset({OrderStatus.SUCCESS, OrderStatus.FAILED, OrderStatus.EXPIRED})

    _VALID_TRANSITIONS = {
        OrderStatus.PENDING: {
            OrderStatus.SUCCESS,
            OrderStatus.CHALLENGE,
            OrderStatus.EXPIRED,
            OrderStatus.FAILED,
        },
        # A challenged payment is resolved by the gateway's manual review
        OrderStatus.CHALLENGE: {OrderStatus.SUCCESS, OrderStatus.FAILED, OrderStatus.EXPIRED},
    }

    @classmethod
    def sources_for(cls, new_status: OrderStatus) -> List[OrderStatus]:
        """Statuses from which ``new_status`` may be reached."""
        return [source for source, targets in cls._VALID_TRANSITIONS.items() if new_status in targets]

    def can_transition(self, new_status: OrderStatus) -> bool:
        allowed = self._VALID_TRANSITIONS.get(OrderStatus(self.status), set())
        return new_status in allowed

    @property
    def is_terminal(self) -> bool:
        return OrderStatus(self.status) in self.TERMINAL_STATUSES


class OrderLineItem(Base):
    __tablename__ = 'OrderLineItem'

    lineItemID = Column(Integer, primary_key=True, autoincrement=True)
    orderID = Column(Integer, ForeignKey('Order.orderID'), nullable=False, index=True)
    # Weak reference: the product may be deleted after purchase
    productID = Column(Integer, nullable=True, index=True)
    sellerID = Column(Integer, nullable=True)
    product_name = Column(String(255), nullable=False)
    product_image = Column(String(512))
    unit_price = Column(Integer, nullable=False)
    quantity = Column(Integer, nullable=False, default=1)

    order = relationship("Order", back_populates="line_items")

    @property
    def subtotal(self) -> int:
        return int(self.unit_price) * int(self.quantity)


class WishlistEntry(Base):
    __tablename__ = 'WishlistEntry'
    __table_args__ = (
        UniqueConstraint("accountID", "productID", name="uq_wishlist_account_product"),
    )

    wishlistID = Column(Integer, primary_key=True, autoincrement=True)
    accountID = Column(Integer, ForeignKey('Account.accountID'), nullable=False, index=True)
    productID = Column(Integer, ForeignKey('Product.productID', ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime, default=utcnow)

    product = relationship("Product")


class CartItem(Base):
    __tablename__ = 'CartItem'
    __table_args__ = (
        UniqueConstraint("accountID", "productID", name="uq_cart_account_product"),
    )

    cartItemID = Column(Integer, primary_key=True, autoincrement=True)
    accountID = Column(Integer, ForeignKey('Account.accountID'), nullable=False, index=True)
    productID = Column(Integer, ForeignKey('Product.productID', ondelete="CASCADE"), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    added_at = Column(DateTime, default=utcnow)

    product = relationship("Product")


class Notification(Base):
    __tablename__ = 'Notification'

    notificationID = Column(Integer, primary_key=True, autoincrement=True)
    accountID = Column(Integer, ForeignKey('Account.accountID'), nullable=False, index=True)
    notification_type = Column(String(50), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    payload = Column(JSON, nullable=False, default=dict)
    read = Column(Boolean, nullable=False, default=False)
    read_at = Column(DateTime)
    created_at = Column(DateTime, default=utcnow)

    def mark_read(self) -> bool:
        if self.read:
            return False
        self.read = True
        self.read_at = utcnow()
        return True
