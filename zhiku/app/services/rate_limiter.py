"""
Ограничение частоты запросов (в памяти процесса).
"""

import math
import time
from typing import Dict, Optional

from fastapi import HTTPException, Request


# Пресеты: (лимит, окно в секундах)
RATE_LIMITS = {
    "LOGIN": (5, 60),
    "REGISTER": (3, 3600),
    "CHAT": (20, 60),
    "ORDER": (10, 60),
    "API": (60, 60),
    "UPLOAD": (20, 3600),
    "CHAT_UPLOAD": (5, 60),
}


class RateLimitResult:
    """Результат проверки лимита."""

    def __init__(self, allowed: bool, limit: int, remaining: int, reset_at: float):
        self.allowed = allowed
        self.limit = limit
        self.remaining = remaining
        self.reset_at = reset_at

    @property
    def retry_after(self) -> int:
        return max(0, math.ceil(self.reset_at - time.time()))

    def headers(self) -> Dict[str, str]:
        return {
            "Retry-After": str(self.retry_after),
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(int(self.reset_at)),
        }


class RateLimiter:
    """Фиксированное окно: ключ -> {count, reset_at}."""

    def __init__(self):
        self._entries: Dict[str, Dict[str, float]] = {}

    def check(self, key: str, limit: int, window_seconds: int, now: Optional[float] = None) -> RateLimitResult:
        """Учитывает запрос и возвращает результат."""
        now = now if now is not None else time.time()
        entry = self._entries.get(key)

        if entry is None or entry["reset_at"] <= now:
            entry = {"count": 0, "reset_at": now + window_seconds}
            self._entries[key] = entry

        if entry["count"] >= limit:
            return RateLimitResult(False, limit, 0, entry["reset_at"])

        entry["count"] += 1
        return RateLimitResult(True, limit, limit - int(entry["count"]), entry["reset_at"])

    def cleanup(self, now: Optional[float] = None) -> int:
        """Удаляет истёкшие записи. Возвращает количество удалённых."""
        now = now if now is not None else time.time()
        expired = [key for key, entry in self._entries.items() if entry["reset_at"] <= now]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def reset(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


# Глобальный экземпляр
rate_limiter = RateLimiter()


def get_client_ip(request: Request) -> str:
    """Определяет IP клиента с учётом прокси."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    for header in ("x-real-ip", "cf-connecting-ip"):
        value = request.headers.get(header)
        if value:
            return value.strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def rate_limit(preset: str):
    """
    Dependency для FastAPI: ограничивает частоту запросов по IP.

    При превышении возвращает 429 с заголовками Retry-After и X-RateLimit-*.
    """
    limit, window = RATE_LIMITS[preset]

    async def dependency(request: Request) -> None:
        key = f"{preset}:{get_client_ip(request)}"
        result = rate_limiter.check(key, limit, window)
        if not result.allowed:
            raise HTTPException(
                status_code=429,
                detail="Слишком много запросов, попробуйте позже",
                headers=result.headers()
            )

    return dependency
