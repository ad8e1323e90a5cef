"""
Конфигурация приложения.
"""

from pathlib import Path
from pydantic_settings import BaseSettings


# Определяем корень проекта (где лежит .env)
PROJECT_ROOT = Path(__file__).parent.parent.parent
ENV_FILE = PROJECT_ROOT / ".env"


class Settings(BaseSettings):
    """Настройки приложения."""

    # Приложение
    APP_NAME: str = "Zhiku"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = True

    # Сервер
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    PUBLIC_BASE_URL: str = "http://localhost:8000"  # Используется в ссылках для платёжных систем
    FRONTEND_URL: str = "http://localhost:3000"  # Куда перенаправлять пользователя после оплаты

    # База данных
    DATABASE_PATH: Path = PROJECT_ROOT / "database" / "zhiku.db"

    # Загрузка медиа
    UPLOADS_DIR: Path = PROJECT_ROOT / "uploads"
    MAX_FILE_SIZE: int = 5 * 1024 * 1024  # 5 MB
    MAX_IMAGE_DIMENSION: int = 4096
    ALLOWED_IMAGE_TYPES: list = ["image/jpeg", "image/jpg", "image/png", "image/gif", "image/webp"]

    # CORS
    CORS_ORIGINS: list = ["*"]

    # Безопасность
    SECRET_KEY: str = "your-secret-key-change-in-production"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24 * 7
    CRON_SECRET: str = ""  # Если задан, /api/cron/* требует Authorization: Bearer <CRON_SECRET>

    # Часовой пояс для суточных лимитов (членство, выводы, экспорт)
    TIMEZONE: str = "Asia/Shanghai"

    # Платежи: "mock" - тестовая страница оплаты, "live" - реальные провайдеры
    PAYMENT_MODE: str = "mock"
    CNY_TO_USD_RATE: float = 6.5

    # Alipay
    ALIPAY_APP_ID: str = ""
    ALIPAY_PRIVATE_KEY: str = ""
    ALIPAY_PUBLIC_KEY: str = ""
    ALIPAY_GATEWAY_URL: str = "https://openapi.alipay.com/gateway.do"

    # WeChat Pay (API v3)
    WECHAT_APP_ID: str = ""
    WECHAT_MCH_ID: str = ""
    WECHAT_MCH_SERIAL_NO: str = ""
    WECHAT_PRIVATE_KEY: str = ""
    WECHAT_PLATFORM_PUBLIC_KEY: str = ""
    WECHAT_API_V3_KEY: str = ""
    WECHAT_API_URL: str = "https://api.mch.weixin.qq.com"

    # PayPal
    PAYPAL_CLIENT_ID: str = ""
    PAYPAL_CLIENT_SECRET: str = ""
    PAYPAL_MODE: str = "sandbox"

    # Telegram уведомления администраторам
    BOT_TOKEN: str = ""
    ADMIN_CHAT_IDS: str = ""  # Список chat ID через запятую (например: "123456789,987654321")

    # Фоновые задачи (отмена просроченных заказов, начисление комиссий)
    MAINTENANCE_INTERVAL_MINUTES: int = 10

    class Config:
        env_file = str(ENV_FILE)
        env_file_encoding = "utf-8"


# Глобальный экземпляр настроек
settings = Settings()

# Логируем загрузку конфигурации
print(f"[CONFIG] Loading from: {ENV_FILE}")
print(f"[CONFIG] ENV file exists: {ENV_FILE.exists()}")
print(f"[CONFIG] PAYMENT_MODE: {settings.PAYMENT_MODE}")
print(f"[CONFIG] BOT_TOKEN configured: {'Yes' if settings.BOT_TOKEN else 'No'}")
