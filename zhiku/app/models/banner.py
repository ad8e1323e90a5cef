"""
Модели баннеров.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


class BannerBase(BaseModel):
    """Базовая модель баннера."""
    title: str = Field(..., min_length=1, max_length=200, description="Заголовок баннера")
    image: str = Field(..., min_length=1, max_length=2000, description="URL изображения (http/https)")
    link: Optional[str] = Field(None, max_length=2000, description="Ссылка при клике")
    description: Optional[str] = Field(None, max_length=1000, description="Описание баннера")
    sort_order: int = Field(0, ge=-100, le=9999, description="Порядок отображения (меньше = выше)")
    status: str = Field("active", pattern="^(active|inactive)$")


class BannerCreate(BannerBase):
    """Модель для создания баннера."""
    pass


class BannerUpdate(BaseModel):
    """Модель для обновления баннера."""
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    image: Optional[str] = Field(None, min_length=1, max_length=2000)
    link: Optional[str] = Field(None, max_length=2000)
    description: Optional[str] = Field(None, max_length=1000)
    sort_order: Optional[int] = Field(None, ge=-100, le=9999)
    status: Optional[str] = Field(None, pattern="^(active|inactive)$")


class Banner(BannerBase):
    """Полная модель баннера."""
    id: int
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
