"""
Pytest configuration and fixtures.
"""

import sqlite3
from pathlib import Path
from typing import Any, Dict, Optional

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from zhiku.app.config import settings
from zhiku.app.main import app
from zhiku.app.services import database, media
from zhiku.app.services.database import DatabaseService
from zhiku.app.services.rate_limiter import rate_limiter
from zhiku.app.services.schema import init_schema
from zhiku.app.services.security import create_access_token, hash_password
from zhiku.app.services.system_config import ConfigService


@pytest.fixture
def app_settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    """Изолированная база и каталог загрузок для каждого теста."""
    monkeypatch.setattr(settings, "DATABASE_PATH", tmp_path / "test.db")
    monkeypatch.setattr(settings, "UPLOADS_DIR", tmp_path / "uploads")
    monkeypatch.setattr(settings, "MAINTENANCE_INTERVAL_MINUTES", 0)
    monkeypatch.setattr(settings, "PAYMENT_MODE", "mock")
    monkeypatch.setattr(settings, "BOT_TOKEN", "")
    monkeypatch.setattr(settings, "CRON_SECRET", "")
    monkeypatch.setattr(database, "_db_service", None)
    monkeypatch.setattr(media, "_media_service", None)
    rate_limiter.reset()
    yield settings
    rate_limiter.reset()


@pytest.fixture
def client(app_settings) -> TestClient:
    with TestClient(app) as test_client:
        yield test_client


@pytest_asyncio.fixture
async def db(app_settings):
    """Сервис базы данных без HTTP-слоя (для тестов сервисов)."""
    service = DatabaseService(app_settings.DATABASE_PATH)
    await service.connect()
    await init_schema(service)
    await ConfigService.seed_defaults(service)
    yield service
    await service.disconnect()


class Seeder:
    """Наполнение тестовой базы напрямую, в обход API и лимитов."""

    def __init__(self, path: Path):
        self.path = path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.path)
        conn.row_factory = sqlite3.Row
        return conn

    def execute(self, query: str, params: tuple = ()) -> int:
        conn = self._connect()
        try:
            cursor = conn.execute(query, params)
            conn.commit()
            return cursor.lastrowid
        finally:
            conn.close()

    def insert(self, table: str, data: Dict[str, Any]) -> int:
        columns = ", ".join(data.keys())
        placeholders = ", ".join(["?" for _ in data])
        return self.execute(
            f"INSERT INTO {table} ({columns}) VALUES ({placeholders})",
            tuple(data.values())
        )

    def fetch_one(self, query: str, params: tuple = ()) -> Optional[Dict[str, Any]]:
        conn = self._connect()
        try:
            row = conn.execute(query, params).fetchone()
            return dict(row) if row else None
        finally:
            conn.close()

    def fetch_all(self, query: str, params: tuple = ()) -> list:
        conn = self._connect()
        try:
            return [dict(row) for row in conn.execute(query, params).fetchall()]
        finally:
            conn.close()

    def user(
        self,
        email: str,
        role: str = "USER",
        status: str = "APPROVED",
        password: str = "secret123"
    ) -> Dict[str, Any]:
        user_id = self.insert("users", {
            "name": email.split("@")[0],
            "email": email,
            "password_hash": hash_password(password),
            "role": role,
            "account_status": status,
        })
        token = create_access_token(user_id, role)
        return {
            "id": user_id,
            "email": email,
            "token": token,
            "headers": {"Authorization": f"Bearer {token}"},
        }

    def grant(self, user_id: int, module: str, level: str) -> None:
        self.insert("permissions", {"user_id": user_id, "module": module, "level": level})

    def product(
        self,
        title: str = "Курс Python",
        price: float = 100,
        status: str = "active",
        link: str = "https://pan.example.com/s/abc"
    ) -> int:
        return self.insert("products", {
            "title": title,
            "price": price,
            "status": status,
            "network_disk_link": link,
        })

    def distributor(
        self,
        user_id: int,
        code: str = "DIST0001",
        rate: float = 0.1,
        status: str = "active",
        **extra
    ) -> int:
        values = {
            "user_id": user_id,
            "code": code,
            "status": status,
            "commission_rate": rate,
            "contact_name": "Partner",
            "contact_phone": "13800000000",
            "contact_email": "partner@example.com",
            "bank_name": "ICBC",
            "bank_account": "6222020000001234",
            "bank_account_name": "Partner",
        }
        values.update(extra)
        return self.insert("distributors", values)

    def plan(self, price: float = 99, discount: float = 0.8, daily_limit: int = 2, duration: int = 30) -> int:
        return self.insert("membership_plans", {
            "name": "Годовой",
            "price": price,
            "duration": duration,
            "discount": discount,
            "daily_limit": daily_limit,
            "status": "active",
        })

    def set_config(self, key: str, value: str) -> None:
        self.execute("UPDATE system_configs SET value = ? WHERE key = ?", (value, key))


@pytest.fixture
def seed(client) -> Seeder:
    """Seeder поверх базы, созданной при старте приложения."""
    return Seeder(settings.DATABASE_PATH)


@pytest.fixture
def admin(seed) -> Dict[str, Any]:
    return seed.user("admin@example.com", role="ADMIN")


@pytest.fixture
def buyer(seed) -> Dict[str, Any]:
    return seed.user("buyer@example.com")
