"""
Модели партнёрской программы.
"""

from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field, field_validator

from ..services.sanitize import is_valid_email


class DistributorApply(BaseModel):
    """Заявка на участие в партнёрской программе."""
    contact_name: str = Field(..., min_length=1, max_length=100)
    contact_phone: str = Field(..., min_length=3, max_length=32)
    contact_email: str = Field(..., max_length=254)
    bank_name: Optional[str] = Field(None, max_length=100)
    bank_account: Optional[str] = Field(None, max_length=64)
    bank_account_name: Optional[str] = Field(None, max_length=100)

    @field_validator("contact_email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        if not is_valid_email(v):
            raise ValueError("Некорректный email")
        return v.lower()


class DistributorUpdate(BaseModel):
    """Обновление контактов и банковских реквизитов."""
    contact_name: Optional[str] = Field(None, min_length=1, max_length=100)
    contact_phone: Optional[str] = Field(None, min_length=3, max_length=32)
    contact_email: Optional[str] = Field(None, max_length=254)
    bank_name: Optional[str] = Field(None, max_length=100)
    bank_account: Optional[str] = Field(None, max_length=64)
    bank_account_name: Optional[str] = Field(None, max_length=100)

    @field_validator("contact_email")
    @classmethod
    def validate_email(cls, v):
        if v is not None and not is_valid_email(v):
            raise ValueError("Некорректный email")
        return v.lower() if v else v


class TrackClick(BaseModel):
    """Переход по партнёрской ссылке."""
    code: str = Field(..., min_length=1, max_length=32)
    product_id: Optional[int] = None
    visitor_id: Optional[str] = Field(None, max_length=128)


class WithdrawalCreate(BaseModel):
    """Запрос на вывод средств."""
    amount: Decimal = Field(..., gt=0)


class DistributorApprove(BaseModel):
    commission_rate: Optional[float] = Field(None, ge=0, le=1)


class ReasonBody(BaseModel):
    """Причина отклонения или заморозки."""
    reason: str = Field(..., min_length=1, max_length=500)


class WithdrawalComplete(BaseModel):
    transaction_id: str = Field(..., min_length=1, max_length=128)
