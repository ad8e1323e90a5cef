"""
Модели тарифов и членства.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field, field_validator


class MembershipPlanBase(BaseModel):
    """Базовая модель тарифа."""
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    price: Decimal = Field(..., gt=0)
    duration: int = Field(..., description="Срок в днях, -1 = бессрочно")
    discount: float = Field(..., gt=0, le=1, description="Множитель цены, 0.8 = скидка 20%")
    daily_limit: int = Field(..., gt=0)
    sort_order: int = 0
    status: str = Field("active", pattern="^(active|inactive)$")

    @field_validator("duration")
    @classmethod
    def validate_duration(cls, v: int) -> int:
        if v != -1 and v <= 0:
            raise ValueError("Срок должен быть положительным или -1")
        return v


class MembershipPlanCreate(MembershipPlanBase):
    """Модель для создания тарифа."""
    pass


class MembershipPlanUpdate(BaseModel):
    """Модель для обновления тарифа."""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    price: Optional[Decimal] = Field(None, gt=0)
    duration: Optional[int] = None
    discount: Optional[float] = Field(None, gt=0, le=1)
    daily_limit: Optional[int] = Field(None, gt=0)
    sort_order: Optional[int] = None
    status: Optional[str] = Field(None, pattern="^(active|inactive)$")

    @field_validator("duration")
    @classmethod
    def validate_duration(cls, v):
        if v is not None and v != -1 and v <= 0:
            raise ValueError("Срок должен быть положительным или -1")
        return v


class MembershipPlan(MembershipPlanBase):
    """Полная модель тарифа."""
    id: int
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class MembershipPurchase(BaseModel):
    """Покупка членства."""
    plan_id: int


class Membership(BaseModel):
    """Купленное членство."""
    id: int
    membership_code: str
    plan_id: int
    user_id: Optional[int] = None
    order_number: Optional[str] = None
    purchase_price: Decimal
    discount: float
    daily_limit: int
    duration: int
    start_date: datetime
    end_date: Optional[datetime] = None
    status: str
    payment_status: str
    payment_method: Optional[str] = None
    paid_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True
