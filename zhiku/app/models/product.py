"""
Модели товара.
"""

import json
from datetime import datetime
from decimal import Decimal
from typing import Optional, List
from pydantic import BaseModel, Field, field_validator


PRODUCT_STATUSES = "^(active|inactive|archived)$"


def _parse_tags(v):
    """Теги хранятся в базе JSON-строкой."""
    if v is None:
        return []
    if isinstance(v, str):
        try:
            parsed = json.loads(v)
        except ValueError:
            return [tag.strip() for tag in v.split(",") if tag.strip()]
        return parsed if isinstance(parsed, list) else []
    return v


class ProductBase(BaseModel):
    """Базовая модель товара."""
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    content: Optional[str] = None
    price: Decimal = Field(..., gt=0)
    cover_image: Optional[str] = None
    show_image: Optional[str] = None
    category_id: Optional[int] = None
    tags: List[str] = []

    @field_validator("tags", mode="before")
    @classmethod
    def parse_tags(cls, v):
        return _parse_tags(v)


class ProductCreate(ProductBase):
    """Модель для создания товара."""
    status: str = Field("active", pattern=PRODUCT_STATUSES)
    network_disk_link: Optional[str] = None


class ProductUpdate(BaseModel):
    """Модель для обновления товара."""
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    content: Optional[str] = None
    price: Optional[Decimal] = Field(None, gt=0)
    cover_image: Optional[str] = None
    show_image: Optional[str] = None
    category_id: Optional[int] = None
    tags: Optional[List[str]] = None
    status: Optional[str] = Field(None, pattern=PRODUCT_STATUSES)
    network_disk_link: Optional[str] = None


class Product(ProductBase):
    """Публичная модель товара (без ссылки на материалы)."""
    id: int
    category: Optional[str] = None
    status: str = "active"
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ProductAdmin(Product):
    """Товар для админки (со ссылкой на материалы)."""
    network_disk_link: Optional[str] = None
