"""
Модели пользователя и авторизации.
"""

from datetime import datetime
from typing import Optional, List, Dict
from pydantic import BaseModel, Field, field_validator

from ..services.permissions import MODULES, LEVELS
from ..services.sanitize import is_valid_email


class UserBase(BaseModel):
    """Базовая модель пользователя."""
    name: str
    email: str


class UserCreate(UserBase):
    """Модель регистрации."""
    name: str = Field(..., min_length=2, max_length=100)
    email: str = Field(..., max_length=254)
    password: str = Field(..., min_length=6, max_length=128)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        v = v.strip().lower()
        if not is_valid_email(v):
            raise ValueError("Некорректный email")
        return v


class UserLogin(BaseModel):
    """Модель входа."""
    email: str
    password: str


class User(UserBase):
    """Полная модель пользователя."""
    id: int
    role: str = "USER"
    account_status: str = "PENDING"
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @property
    def is_admin(self) -> bool:
        return self.role == "ADMIN"


class TokenResponse(BaseModel):
    """Ответ на успешный вход."""
    access_token: str
    token_type: str = "bearer"
    user: User


class UserWithPermissions(User):
    """Пользователь со списком прав (для админки)."""
    permissions: Dict[str, str] = {}
    order_count: int = 0


class PermissionItem(BaseModel):
    """Право доступа к модулю."""
    module: str
    level: str

    @field_validator("module")
    @classmethod
    def validate_module(cls, v: str) -> str:
        if v not in MODULES:
            raise ValueError(f"Неизвестный модуль: {v}")
        return v

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        if v not in LEVELS:
            raise ValueError(f"Неизвестный уровень доступа: {v}")
        return v


class PermissionsUpdate(BaseModel):
    """Полная замена прав пользователя."""
    permissions: List[PermissionItem]
