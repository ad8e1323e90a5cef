"""
Модели категории товаров.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


class CategoryBase(BaseModel):
    """Базовая модель категории."""
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    cover_image: Optional[str] = None
    sort_order: int = 0


class CategoryCreate(CategoryBase):
    """Модель для создания категории."""
    pass


class CategoryUpdate(BaseModel):
    """Модель для обновления категории."""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    cover_image: Optional[str] = None
    sort_order: Optional[int] = None


class Category(CategoryBase):
    """Полная модель категории."""
    id: int
    created_at: datetime
    updated_at: Optional[datetime] = None
    product_count: int = 0

    class Config:
        from_attributes = True
