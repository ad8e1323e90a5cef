"""
Журнал событий в таблице system_logs.
"""

import json
import logging
from typing import Any, Dict, Optional

from fastapi import Request

from .database import DatabaseService
from .rate_limiter import get_client_ip


logger = logging.getLogger(__name__)

LOG_LEVELS = ("info", "warn", "error", "debug")
LOG_CATEGORIES = ("api", "auth", "payment", "system", "security", "database")


class SystemLogger:
    """Запись бизнес-событий в базу. Ошибка записи не ломает запрос."""

    @staticmethod
    async def log(
        db: DatabaseService,
        level: str,
        category: str,
        action: str,
        message: str,
        user_id: Optional[int] = None,
        request: Optional[Request] = None,
        status_code: Optional[int] = None,
        duration: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None
    ) -> Optional[int]:
        data = {
            "level": level if level in LOG_LEVELS else "info",
            "category": category if category in LOG_CATEGORIES else "system",
            "action": action,
            "message": message,
            "user_id": user_id,
            "status_code": status_code,
            "duration": duration,
            "metadata": json.dumps(metadata, ensure_ascii=False, default=str) if metadata else None,
            "error": error,
        }
        if request is not None:
            data.update({
                "ip_address": get_client_ip(request),
                "user_agent": request.headers.get("user-agent"),
                "path": request.url.path,
                "method": request.method,
            })

        try:
            return await db.insert("system_logs", data)
        except Exception as e:
            logger.error(f"[SYSTEM_LOG] Failed to write log {category}/{action}: {e}")
            return None

    @staticmethod
    async def info(db: DatabaseService, category: str, action: str, message: str, **kwargs) -> Optional[int]:
        return await SystemLogger.log(db, "info", category, action, message, **kwargs)

    @staticmethod
    async def warn(db: DatabaseService, category: str, action: str, message: str, **kwargs) -> Optional[int]:
        return await SystemLogger.log(db, "warn", category, action, message, **kwargs)

    @staticmethod
    async def error(db: DatabaseService, category: str, action: str, message: str, **kwargs) -> Optional[int]:
        return await SystemLogger.log(db, "error", category, action, message, **kwargs)
