"""
Модели платежей.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field

from .order import PAYMENT_METHOD_PATTERN


class PaymentCreate(BaseModel):
    """Запрос на создание платежа по заказу."""
    order_id: int
    payment_method: str = Field(..., pattern=PAYMENT_METHOD_PATTERN)


class MembershipPaymentCreate(BaseModel):
    """Запрос на оплату членства."""
    membership_id: int
    payment_method: str = Field(..., pattern=PAYMENT_METHOD_PATTERN)


class MockPaymentCallback(BaseModel):
    """Результат тестовой оплаты заказа."""
    payment_id: int
    order_number: str
    status: str = Field(..., pattern="^(success|failed)$")


class MockMembershipCallback(BaseModel):
    """Результат тестовой оплаты членства."""
    membership_id: int
    membership_code: str
    status: str = Field(..., pattern="^(success|failed)$")


class PaymentResponse(BaseModel):
    """Ответ на создание платежа."""
    payment_id: int
    payment_url: str
    amount: Decimal
    currency: str = "CNY"


class Payment(BaseModel):
    """Полная модель платежа."""
    id: int
    order_id: int
    amount: Decimal
    currency: str = "CNY"
    payment_method: str
    status: str = "pending"
    transaction_id: Optional[str] = None
    paid_at: Optional[datetime] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
