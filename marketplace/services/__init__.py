from .auth_service import AuthService
from .account_service import AccountService
from .product_service import ProductService
from .image_service import ImageStorage, resolve_image_url
from .wishlist_service import WishlistService
from .cart_service import CartService
from .notification_service import NotificationService
from .payment_gateway import MidtransGateway
from .gateway_config import TtlCache
from .checkout_service import CheckoutService
from .order_service import OrderService
from .admin_service import AdminService
from .mailer import Mailer

__all__ = [
    "AuthService",
    "AccountService",
    "ProductService",
    "ImageStorage",
    "resolve_image_url",
    "WishlistService",
    "CartService",
    "NotificationService",
    "MidtransGateway",
    "TtlCache",
    "CheckoutService",
    "OrderService",
    "AdminService",
    "Mailer",
]
