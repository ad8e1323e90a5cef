"""
Модели оповещений безопасности.
"""

from typing import Optional, List
from pydantic import BaseModel, Field


ALERT_STATUS_PATTERN = "^(unresolved|investigating|resolved|false_positive)$"


class SecurityAlertUpdate(BaseModel):
    """Изменение статуса оповещения."""
    status: Optional[str] = Field(None, pattern=ALERT_STATUS_PATTERN)
    notes: Optional[str] = Field(None, max_length=2000)


class SecurityAlertBatchUpdate(BaseModel):
    """Массовое изменение статуса."""
    ids: List[int] = Field(..., min_length=1, max_length=100)
    status: str = Field(..., pattern=ALERT_STATUS_PATTERN)
    notes: Optional[str] = Field(None, max_length=2000)


class SecurityAlertBatchDelete(BaseModel):
    """Массовое удаление."""
    ids: List[int] = Field(..., min_length=1, max_length=100)
