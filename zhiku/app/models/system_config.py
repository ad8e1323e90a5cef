"""
Модели системных настроек.
"""

from typing import Optional, List, Any
from pydantic import BaseModel, Field


class SystemConfigItem(BaseModel):
    """Одна настройка."""
    key: str = Field(..., min_length=1, max_length=100)
    value: Any
    type: str = Field("string", pattern="^(boolean|string|number|json)$")
    category: str = Field("general", max_length=50)
    description: Optional[str] = Field(None, max_length=500)


class SystemConfigBatch(BaseModel):
    """Пакетное обновление настроек."""
    configs: List[SystemConfigItem] = Field(..., min_length=1)


class WithdrawalConfigUpdate(BaseModel):
    """Обновление настроек вывода средств: ключ -> значение."""
    configs: dict = Field(..., min_length=1)
