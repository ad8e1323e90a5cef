"""
Скрипт инициализации базы данных.
Создаёт схему, добавляет настройки по умолчанию и (по желанию) первого администратора.
"""

import argparse
import asyncio
import os

from dotenv import load_dotenv

load_dotenv()

from zhiku.app.config import settings  # noqa: E402
from zhiku.app.services.database import DatabaseService  # noqa: E402
from zhiku.app.services.schema import init_schema  # noqa: E402
from zhiku.app.services.security import hash_password  # noqa: E402
from zhiku.app.services.system_config import ConfigService  # noqa: E402


async def init_database(reset: bool = False, admin_email: str = None, admin_password: str = None) -> None:
    """
    Инициализирует базу данных.

    Args:
        reset: Если True, удаляет существующую базу и создаёт новую.
        admin_email: Email первого администратора (создаётся, если не существует).
        admin_password: Пароль администратора.
    """
    if reset and settings.DATABASE_PATH.exists():
        os.remove(settings.DATABASE_PATH)
        print(f"[OK] Удалена существующая база данных: {settings.DATABASE_PATH}")

    db = DatabaseService(settings.DATABASE_PATH)
    await db.connect()
    try:
        await init_schema(db)
        print("[OK] Схема создана")

        created = await ConfigService.seed_defaults(db)
        print(f"[OK] Добавлено настроек по умолчанию: {created}")

        if admin_email and admin_password:
            existing = await db.fetch_one("SELECT id FROM users WHERE email = ?", (admin_email,))
            if existing:
                print(f"[INFO] Пользователь {admin_email} уже существует (ID: {existing['id']})")
            else:
                user_id = await db.insert("users", {
                    "name": admin_email.split("@")[0],
                    "email": admin_email,
                    "password_hash": hash_password(admin_password),
                    "role": "ADMIN",
                    "account_status": "APPROVED",
                })
                print(f"[OK] Создан администратор {admin_email} (ID: {user_id})")
    finally:
        await db.disconnect()

    print(f"[OK] База данных готова: {settings.DATABASE_PATH}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Инициализация базы данных")
    parser.add_argument("--reset", action="store_true", help="Удалить существующую базу")
    parser.add_argument("--admin-email", help="Email первого администратора")
    parser.add_argument("--admin-password", help="Пароль первого администратора")
    args = parser.parse_args()

    asyncio.run(init_database(args.reset, args.admin_email, args.admin_password))
