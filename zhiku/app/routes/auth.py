"""
API Routes для авторизации и управления пользователями.
"""

import logging
from fastapi import APIRouter, Depends, HTTPException, Header, Query, Request
from typing import Optional

from ..models.user import User, UserCreate, UserLogin, TokenResponse, PermissionsUpdate
from ..services.database import DatabaseService, get_db
from ..services.permissions import get_user_permissions, level_allows, get_user_permission, set_user_permissions
from ..services.rate_limiter import rate_limit
from ..services.sanitize import sanitize_text
from ..services.security import hash_password, verify_password, create_access_token, decode_access_token
from ..services.system_logger import SystemLogger

logger = logging.getLogger(__name__)

router = APIRouter()
admin_router = APIRouter()


STATUS_MESSAGES = {
    "PENDING": "Аккаунт ожидает подтверждения администратором",
    "REJECTED": "Аккаунт отклонён администратором",
}


def _extract_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def _load_user(token: Optional[str], db: DatabaseService) -> Optional[User]:
    if not token:
        return None
    payload = decode_access_token(token)
    if not payload or "sub" not in payload:
        return None
    try:
        user_id = int(payload["sub"])
    except (TypeError, ValueError):
        return None
    user = await db.fetch_one("SELECT * FROM users WHERE id = ?", (user_id,))
    return User(**user) if user else None


def _is_blocked(user: User) -> bool:
    """Неподтверждённые и отклонённые аккаунты теряют доступ сразу, не дожидаясь истечения токена."""
    return not user.is_admin and user.account_status != "APPROVED"


async def get_current_user(
    authorization: Optional[str] = Header(None),
    db: DatabaseService = Depends(get_db)
) -> User:
    """Получает текущего пользователя по Bearer-токену."""
    token = _extract_token(authorization)
    if not token:
        raise HTTPException(status_code=401, detail="Требуется авторизация")

    user = await _load_user(token, db)
    if not user:
        raise HTTPException(status_code=401, detail="Недействительный или просроченный токен")
    if _is_blocked(user):
        raise HTTPException(status_code=403, detail=STATUS_MESSAGES.get(user.account_status, "Аккаунт недоступен"))
    return user


async def get_current_user_optional(
    authorization: Optional[str] = Header(None),
    db: DatabaseService = Depends(get_db)
) -> Optional[User]:
    """Как get_current_user, но возвращает None для анонимных запросов и заблокированных аккаунтов."""
    user = await _load_user(_extract_token(authorization), db)
    if user and _is_blocked(user):
        return None
    return user


def require_level(*modules: str, level: str = "READ"):
    """
    Фабрика dependency: пропускает пользователя, у которого есть нужный
    уровень доступа хотя бы к одному из модулей.
    """
    async def dependency(
        current_user: User = Depends(get_current_user),
        db: DatabaseService = Depends(get_db)
    ) -> User:
        if current_user.is_admin:
            return current_user
        for module in modules:
            user_level = await get_user_permission(db, current_user.id, current_user.role, module)
            if level_allows(user_level, level):
                return current_user
        raise HTTPException(status_code=403, detail="Недостаточно прав")

    return dependency


def require_read(*modules: str):
    return require_level(*modules, level="READ")


def require_write(*modules: str):
    return require_level(*modules, level="WRITE")


async def require_admin(current_user: User = Depends(get_current_user)) -> User:
    """Только для роли ADMIN."""
    if not current_user.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return current_user


# ==================== Авторизация ====================

@router.post("/register", status_code=201, dependencies=[Depends(rate_limit("REGISTER"))])
async def register(
    user_data: UserCreate,
    request: Request,
    db: DatabaseService = Depends(get_db)
):
    """Регистрирует пользователя. Новый аккаунт ждёт подтверждения."""
    name = sanitize_text(user_data.name)
    if len(name) < 2:
        raise HTTPException(status_code=400, detail="Имя должно содержать минимум 2 символа")

    existing = await db.fetch_one("SELECT id FROM users WHERE email = ?", (user_data.email,))
    if existing:
        raise HTTPException(status_code=400, detail="Email уже зарегистрирован")

    user_id = await db.insert("users", {
        "name": name,
        "email": user_data.email,
        "password_hash": hash_password(user_data.password),
        "role": "USER",
        "account_status": "PENDING",
    })

    user = await db.fetch_one("SELECT * FROM users WHERE id = ?", (user_id,))
    await SystemLogger.info(db, "auth", "register", f"User registered: {user_data.email}",
                            user_id=user_id, request=request)
    logger.info(f"[AUTH] Registered user {user_id}")

    return {
        "user": User(**user),
        "message": "Регистрация прошла успешно, ожидайте подтверждения администратора",
    }


@router.post("/login", response_model=TokenResponse, dependencies=[Depends(rate_limit("LOGIN"))])
async def login(
    credentials: UserLogin,
    request: Request,
    db: DatabaseService = Depends(get_db)
):
    """Вход по email и паролю."""
    email = credentials.email.strip().lower()
    user = await db.fetch_one("SELECT * FROM users WHERE email = ?", (email,))

    if not user or not verify_password(credentials.password, user["password_hash"]):
        await SystemLogger.warn(db, "auth", "login_failed", f"Failed login for {email}",
                                request=request, status_code=401)
        raise HTTPException(status_code=401, detail="Неверный email или пароль")

    if user["role"] != "ADMIN" and user["account_status"] != "APPROVED":
        detail = STATUS_MESSAGES.get(user["account_status"], "Аккаунт недоступен")
        raise HTTPException(status_code=403, detail=detail)

    token = create_access_token(user["id"], user["role"])
    await SystemLogger.info(db, "auth", "login", f"User logged in: {email}",
                            user_id=user["id"], request=request, status_code=200)

    return TokenResponse(access_token=token, user=User(**user))


@router.get("/me", response_model=User)
async def get_me(current_user: User = Depends(get_current_user)):
    """Данные текущего пользователя."""
    return current_user


@router.get("/permissions")
async def get_my_permissions(
    current_user: Optional[User] = Depends(get_current_user_optional),
    db: DatabaseService = Depends(get_db)
):
    """Права текущего пользователя по модулям."""
    if not current_user:
        return {"permissions": {}}
    permissions = await get_user_permissions(db, current_user.id, current_user.role)
    return {"permissions": permissions, "role": current_user.role}


# ==================== Управление пользователями ====================

async def _get_user_or_404(db: DatabaseService, user_id: int) -> dict:
    user = await db.fetch_one("SELECT * FROM users WHERE id = ?", (user_id,))
    if not user:
        raise HTTPException(status_code=404, detail="Пользователь не найден")
    return user


@admin_router.get("/")
async def list_users(
    status: Optional[str] = Query(None, pattern="^(PENDING|APPROVED|REJECTED)$"),
    current_user: User = Depends(require_read("USER_MANAGEMENT")),
    db: DatabaseService = Depends(get_db)
):
    """Список пользователей с правами и количеством заказов."""
    where = "WHERE u.account_status = ?" if status else ""
    params = (status,) if status else ()

    users = await db.fetch_all(
        f"""SELECT u.id, u.name, u.email, u.role, u.account_status, u.created_at, u.updated_at,
                   (SELECT COUNT(*) FROM orders o WHERE o.user_id = u.id) as order_count
            FROM users u
            {where}
            ORDER BY u.created_at DESC, u.id DESC""",
        params
    )

    result = []
    for user in users:
        user["permissions"] = await get_user_permissions(db, user["id"], user["role"])
        result.append(user)
    return {"users": result}


async def _set_account_status(db: DatabaseService, user_id: int, status: str, admin: User) -> dict:
    await _get_user_or_404(db, user_id)
    await db.update("users", {"account_status": status}, "id = ?", (user_id,))
    await SystemLogger.info(db, "auth", f"user_{status.lower()}",
                            f"User {user_id} set to {status}", user_id=admin.id)
    user = await db.fetch_one(
        "SELECT id, name, email, role, account_status, created_at, updated_at FROM users WHERE id = ?",
        (user_id,)
    )
    return {"user": user, "message": "Статус обновлён"}


@admin_router.post("/{user_id}/approve")
async def approve_user(
    user_id: int,
    admin: User = Depends(require_admin),
    db: DatabaseService = Depends(get_db)
):
    return await _set_account_status(db, user_id, "APPROVED", admin)


@admin_router.post("/{user_id}/reject")
async def reject_user(
    user_id: int,
    admin: User = Depends(require_admin),
    db: DatabaseService = Depends(get_db)
):
    return await _set_account_status(db, user_id, "REJECTED", admin)


@admin_router.get("/{user_id}/permissions")
async def get_permissions_of_user(
    user_id: int,
    admin: User = Depends(require_admin),
    db: DatabaseService = Depends(get_db)
):
    user = await _get_user_or_404(db, user_id)
    permissions = await get_user_permissions(db, user["id"], user["role"])
    return {"user_id": user_id, "role": user["role"], "permissions": permissions}


@admin_router.post("/{user_id}/permissions")
async def update_permissions_of_user(
    user_id: int,
    data: PermissionsUpdate,
    admin: User = Depends(require_admin),
    db: DatabaseService = Depends(get_db)
):
    """Заменяет все права пользователя."""
    user = await _get_user_or_404(db, user_id)
    if user["role"] == "ADMIN":
        raise HTTPException(status_code=400, detail="Нельзя изменять права администратора")

    permissions = await set_user_permissions(
        db, user_id, [item.model_dump() for item in data.permissions]
    )
    logger.info(f"[AUTH] Permissions of user {user_id} updated by {admin.id}")
    return {"user_id": user_id, "permissions": permissions, "message": "Права обновлены"}
