"""
Zhiku - FastAPI Backend магазина цифровых товаров
"""

import asyncio
from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse

from .config import settings
from .services import database
from .services.database import DatabaseService
from .services.maintenance import MaintenanceService
from .services.media import get_media_service
from .services.schema import init_schema
from .services.system_config import ConfigService
from .services.telegram_notifier import TelegramNotifier
from .routes import (
    auth_router,
    admin_users_router,
    categories_router,
    products_router,
    admin_products_router,
    cart_router,
    orders_router,
    admin_orders_router,
    payments_router,
    membership_plans_router,
    memberships_router,
    membership_orders_router,
    admin_memberships_router,
    distribution_router,
    admin_distribution_router,
    cron_router,
    admin_security_router,
    chat_router,
    admin_chat_router,
    system_config_router,
    admin_system_config_router,
    logs_router,
    banners_router,
    admin_banners_router,
    analytics_router,
    admin_analytics_router,
    upload_router,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle управление приложением."""
    # Startup
    database._db_service = DatabaseService(db_path=settings.DATABASE_PATH)
    await database._db_service.connect()
    print(f"[OK] Database connected: {settings.DATABASE_PATH}")

    await init_schema(database._db_service)
    created = await ConfigService.seed_defaults(database._db_service)
    if created:
        print(f"[CONFIG] Added {created} default settings")

    maintenance_task = None
    if settings.MAINTENANCE_INTERVAL_MINUTES > 0:
        maintenance_task = asyncio.create_task(
            MaintenanceService.start_periodic(database._db_service, settings.MAINTENANCE_INTERVAL_MINUTES)
        )

    yield

    # Shutdown
    if maintenance_task is not None:
        maintenance_task.cancel()
        try:
            await maintenance_task
        except asyncio.CancelledError:
            print("[MAINTENANCE] Periodic maintenance stopped")

    await TelegramNotifier.close()
    if database._db_service:
        await database._db_service.disconnect()
        database._db_service = None
        print("[OK] Database disconnected")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="API магазина цифровых товаров: каталог, заказы, членство и дистрибуция",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Публичные роутеры
app.include_router(auth_router, prefix="/api/auth", tags=["Auth"])
app.include_router(categories_router, prefix="/api/categories", tags=["Categories"])
app.include_router(products_router, prefix="/api/products", tags=["Products"])
app.include_router(cart_router, prefix="/api/cart", tags=["Cart"])
app.include_router(orders_router, prefix="/api/orders", tags=["Orders"])
app.include_router(payments_router, prefix="/api/payment", tags=["Payment"])
app.include_router(membership_plans_router, prefix="/api/membership-plans", tags=["Memberships"])
app.include_router(memberships_router, prefix="/api/memberships", tags=["Memberships"])
app.include_router(membership_orders_router, prefix="/api/membership-orders", tags=["Memberships"])
app.include_router(distribution_router, prefix="/api/distribution", tags=["Distribution"])
app.include_router(cron_router, prefix="/api/cron", tags=["Cron"])
app.include_router(chat_router, prefix="/api/chat", tags=["Chat"])
app.include_router(system_config_router, prefix="/api/system-config", tags=["System config"])
app.include_router(banners_router, prefix="/api/banners", tags=["Banners"])
app.include_router(analytics_router, prefix="/api/analytics", tags=["Analytics"])
app.include_router(upload_router, prefix="/api/upload", tags=["Upload"])

# Админка
app.include_router(admin_users_router, prefix="/api/admin/users", tags=["Admin"])
app.include_router(admin_products_router, prefix="/api/admin/products", tags=["Admin"])
app.include_router(admin_orders_router, prefix="/api/admin", tags=["Admin"])
app.include_router(admin_memberships_router, prefix="/api/admin", tags=["Admin"])
app.include_router(admin_distribution_router, prefix="/api/admin", tags=["Admin"])
app.include_router(admin_security_router, prefix="/api/admin/security-alerts", tags=["Admin"])
app.include_router(admin_chat_router, prefix="/api/admin/chat", tags=["Admin"])
app.include_router(admin_system_config_router, prefix="/api/admin/system-config", tags=["Admin"])
app.include_router(logs_router, prefix="/api/admin/logs", tags=["Admin"])
app.include_router(admin_banners_router, prefix="/api/admin/banners", tags=["Admin"])
app.include_router(admin_analytics_router, prefix="/api/admin/analytics", tags=["Admin"])


@app.get("/health")
async def health():
    """Проверка работоспособности."""
    return {"status": "ok", "version": settings.APP_VERSION}


# Раздача загруженных файлов
@app.get("/media/{folder}/{filename}")
async def serve_media(folder: str, filename: str):
    file_path = get_media_service().get_file_path(f"/media/{folder}/{filename}")
    if not file_path or not file_path.is_file():
        raise HTTPException(status_code=404, detail="File not found")
    return FileResponse(file_path, headers={"Cache-Control": "public, max-age=86400"})
