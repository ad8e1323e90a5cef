"""
Модели корзины.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional, List
from pydantic import BaseModel, Field


class CartItemBase(BaseModel):
    """Базовая модель элемента корзины."""
    product_id: int
    quantity: int = Field(1, ge=1)


class CartItemCreate(CartItemBase):
    """Модель для добавления в корзину."""
    pass


class CartItemUpdate(BaseModel):
    """Модель для обновления элемента корзины."""
    quantity: int = Field(..., ge=1)


class CartItem(CartItemBase):
    """Полная модель элемента корзины."""
    id: int
    user_id: int
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CartItemWithProduct(CartItem):
    """Элемент корзины с информацией о товаре."""
    product_title: str
    product_price: Decimal
    product_cover_image: Optional[str] = None
    product_status: str = "active"


class CartSummary(BaseModel):
    """Корзина с итогами."""
    items: List[CartItemWithProduct] = []
    total_items: int = 0
    total_amount: Decimal = Decimal("0")
