"""
Хэширование паролей и токены доступа.
"""

from datetime import timedelta
from typing import Optional, Dict, Any

import bcrypt
import jwt

from ..config import settings
from .database import utc_now


JWT_ALGORITHM = "HS256"


def hash_password(password: str) -> str:
    """Возвращает bcrypt-хэш пароля."""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Проверяет пароль по хэшу."""
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Повреждённый хэш в базе
        return False


def create_access_token(user_id: int, role: str, expires_minutes: Optional[int] = None) -> str:
    """Создаёт JWT для пользователя."""
    expire = utc_now() + timedelta(minutes=expires_minutes or settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    payload = {
        "sub": str(user_id),
        "role": role,
        "exp": expire,
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=JWT_ALGORITHM)


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """Декодирует JWT. Возвращает None для просроченных и невалидных токенов."""
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except jwt.PyJWTError:
        return None
