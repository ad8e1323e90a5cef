"""
Модели заказа.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional, List
from pydantic import BaseModel, Field, model_validator


PAYMENT_METHOD_PATTERN = "^(alipay|wechat|paypal)$"


class OrderItem(BaseModel):
    """Товар в заказе."""
    id: int
    order_id: int
    product_id: Optional[int] = None
    product_title: Optional[str] = None
    quantity: int
    price: Decimal
    cover_image: Optional[str] = None
    network_disk_link: Optional[str] = None

    class Config:
        from_attributes = True


class OrderCreate(BaseModel):
    """Модель для создания заказа."""
    type: str = Field(..., pattern="^(cart|direct)$")
    product_id: Optional[int] = None
    quantity: Optional[int] = Field(None, ge=1)
    payment_method: Optional[str] = Field(None, pattern=PAYMENT_METHOD_PATTERN)
    distribution_code: Optional[str] = Field(None, max_length=32)


class Order(BaseModel):
    """Полная модель заказа."""
    id: int
    order_number: str
    user_id: Optional[int] = None
    total_amount: Decimal
    original_amount: Optional[Decimal] = None
    discount: Decimal = Decimal("0")
    status: str = "pending"
    payment_method: Optional[str] = None
    membership_id: Optional[int] = None
    expires_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    refund_reason: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class OrderWithItems(Order):
    """Заказ с товарами и платежом."""
    items: List[OrderItem] = []
    payment: Optional[dict] = None


class OrderRefund(BaseModel):
    """Параметры возврата."""
    reason: Optional[str] = Field(None, max_length=500)


class OrderCancelBatch(BaseModel):
    """Список заказов для отмены."""
    order_ids: Optional[List[int]] = None
    order_numbers: Optional[List[str]] = None

    @model_validator(mode="after")
    def check_any(self):
        if not self.order_ids and not self.order_numbers:
            raise ValueError("Укажите order_ids или order_numbers")
        return self


class ApplyMembership(BaseModel):
    """Применение кода членства к заказу."""
    membership_code: str = Field(..., min_length=1, max_length=64)


class OrderExportRequest(BaseModel):
    """Выгрузка заказов анонимным покупателем."""
    visitor_id: str = Field(..., min_length=1, max_length=128)
    order_numbers: List[str] = Field(..., min_length=1, max_length=100)


class OrderCleanup(BaseModel):
    """Удаление заказов из админки."""
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    status: Optional[str] = Field(None, pattern="^(pending|paid|cancelled|refunded)$")
    confirm_delete: bool = False
