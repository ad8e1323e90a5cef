"""
Модели аналитики посещений.
"""

from typing import Optional
from pydantic import BaseModel, Field


class PageViewTrack(BaseModel):
    path: str = Field(..., min_length=1, max_length=500)
    referer: Optional[str] = Field(None, max_length=2000)
