"""
API Routes магазина цифровых товаров.
"""

from .auth import router as auth_router, admin_router as admin_users_router
from .categories import router as categories_router
from .products import router as products_router, admin_router as admin_products_router
from .cart import router as cart_router
from .orders import router as orders_router
from .admin_orders import router as admin_orders_router
from .payments import router as payments_router
from .memberships import (
    plans_router as membership_plans_router,
    router as memberships_router,
    orders_router as membership_orders_router,
    admin_router as admin_memberships_router,
)
from .distribution import router as distribution_router
from .admin_distribution import router as admin_distribution_router
from .cron import router as cron_router
from .admin_security import router as admin_security_router
from .chat import router as chat_router, admin_router as admin_chat_router
from .system_config import router as system_config_router, admin_router as admin_system_config_router
from .logs import router as logs_router
from .banners import router as banners_router, admin_router as admin_banners_router
from .analytics import router as analytics_router, admin_router as admin_analytics_router
from .upload import router as upload_router

__all__ = [
    "auth_router",
    "admin_users_router",
    "categories_router",
    "products_router",
    "admin_products_router",
    "cart_router",
    "orders_router",
    "admin_orders_router",
    "payments_router",
    "membership_plans_router",
    "memberships_router",
    "membership_orders_router",
    "admin_memberships_router",
    "distribution_router",
    "admin_distribution_router",
    "cron_router",
    "admin_security_router",
    "chat_router",
    "admin_chat_router",
    "system_config_router",
    "admin_system_config_router",
    "logs_router",
    "banners_router",
    "admin_banners_router",
    "analytics_router",
    "admin_analytics_router",
    "upload_router",
]
