"""
Модели чата поддержки.
"""

from typing import Optional
from pydantic import BaseModel, Field


class ChatSessionCreate(BaseModel):
    """Открытие сессии посетителем."""
    visitor_id: str = Field(..., min_length=1, max_length=128)
    visitor_name: Optional[str] = Field(None, max_length=100)
    visitor_email: Optional[str] = Field(None, max_length=254)


class ChatMessageCreate(BaseModel):
    """Новое сообщение."""
    session_id: int
    message: str = Field("", max_length=5000)
    sender_type: str = Field("visitor", pattern="^(visitor|admin)$")
    visitor_id: Optional[str] = Field(None, max_length=128)
    sender_name: Optional[str] = Field(None, max_length=100)
    image_url: Optional[str] = Field(None, max_length=500)
