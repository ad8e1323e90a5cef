"""
Модели данных магазина знаний.
"""

from .user import User, UserCreate, UserLogin, TokenResponse, UserWithPermissions, PermissionsUpdate
from .category import Category, CategoryCreate, CategoryUpdate
from .product import Product, ProductAdmin, ProductCreate, ProductUpdate
from .cart import CartItem, CartItemCreate, CartItemUpdate, CartSummary
from .order import Order, OrderCreate, OrderItem, OrderWithItems
from .payment import Payment, PaymentCreate, PaymentResponse
from .membership import Membership, MembershipPlan, MembershipPlanCreate, MembershipPlanUpdate
from .banner import Banner, BannerCreate, BannerUpdate

__all__ = [
    # User
    "User", "UserCreate", "UserLogin", "TokenResponse", "UserWithPermissions", "PermissionsUpdate",
    # Category
    "Category", "CategoryCreate", "CategoryUpdate",
    # Product
    "Product", "ProductAdmin", "ProductCreate", "ProductUpdate",
    # Cart
    "CartItem", "CartItemCreate", "CartItemUpdate", "CartSummary",
    # Order
    "Order", "OrderCreate", "OrderItem", "OrderWithItems",
    # Payment
    "Payment", "PaymentCreate", "PaymentResponse",
    # Membership
    "Membership", "MembershipPlan", "MembershipPlanCreate", "MembershipPlanUpdate",
    # Banner
    "Banner", "BannerCreate", "BannerUpdate",
]
