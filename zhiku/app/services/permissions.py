"""
Модель прав доступа: модуль × уровень поверх ролей.

ADMIN всегда имеет WRITE на все модули. Для остальных пользователей права
хранятся в таблице permissions (не более одной строки на модуль),
отсутствие строки означает NONE.
"""

from typing import Dict, List, Optional

from .database import DatabaseService


MODULES = [
    "CATEGORIES",
    "MEMBERSHIPS",
    "ORDERS",
    "PRODUCTS",
    "BANNERS",
    "SYSTEM_SETTINGS",
    "SECURITY_ALERTS",
    "CUSTOMER_CHAT",
    "USER_MANAGEMENT",
    "ORDER_LOOKUP",
    "ANALYTICS",
    "DISTRIBUTION",
    "SYSTEM_LOGS",
]

LEVELS = ["NONE", "READ", "WRITE"]

_LEVEL_RANK = {level: rank for rank, level in enumerate(LEVELS)}


def level_allows(level: Optional[str], required: str) -> bool:
    """Проверяет, что уровень не ниже требуемого."""
    return _LEVEL_RANK.get(level or "NONE", 0) >= _LEVEL_RANK[required]


async def get_user_permission(db: DatabaseService, user_id: int, role: str, module: str) -> str:
    """Возвращает уровень доступа пользователя к модулю."""
    if role == "ADMIN":
        return "WRITE"
    level = await db.fetch_value(
        "SELECT level FROM permissions WHERE user_id = ? AND module = ?",
        (user_id, module)
    )
    return level or "NONE"


async def get_user_permissions(db: DatabaseService, user_id: int, role: str) -> Dict[str, str]:
    """Возвращает все права пользователя в виде {MODULE: LEVEL}."""
    if role == "ADMIN":
        return {module: "WRITE" for module in MODULES}
    rows = await db.fetch_all(
        "SELECT module, level FROM permissions WHERE user_id = ?",
        (user_id,)
    )
    return {row["module"]: row["level"] for row in rows}


async def can_read(db: DatabaseService, user_id: int, role: str, module: str) -> bool:
    return level_allows(await get_user_permission(db, user_id, role, module), "READ")


async def can_write(db: DatabaseService, user_id: int, role: str, module: str) -> bool:
    return level_allows(await get_user_permission(db, user_id, role, module), "WRITE")


async def set_user_permissions(db: DatabaseService, user_id: int, permissions: List[Dict[str, str]]) -> Dict[str, str]:
    """
    Полностью заменяет права пользователя.

    Строки с уровнем NONE не сохраняются. Выполняется в одной транзакции.
    """
    # Повторы модуля: побеждает последний
    levels = {item["module"]: item["level"] for item in permissions}
    async with db.transaction():
        await db.delete("permissions", "user_id = ?", (user_id,))
        for module, level in levels.items():
            if level == "NONE":
                continue
            await db.insert("permissions", {
                "user_id": user_id,
                "module": module,
                "level": level,
            })
    return await get_user_permissions(db, user_id, "USER")
