"""
API Routes для системного журнала.
"""

from fastapi import APIRouter, Depends, Query
from typing import Optional

from ..models.user import User
from ..services.database import DatabaseService, get_db
from ..services.exporter import export_xlsx
from .admin_orders import parse_date_range
from .auth import require_read

router = APIRouter()

EXPORT_LIMIT = 10000


def _log_filters(
    level: Optional[str],
    category: Optional[str],
    action: Optional[str],
    keyword: Optional[str],
    start_date: Optional[str],
    end_date: Optional[str]
) -> tuple:
    conditions = []
    params: list = []
    if level:
        conditions.append("level = ?")
        params.append(level)
    if category:
        conditions.append("category = ?")
        params.append(category)
    if action:
        conditions.append("action = ?")
        params.append(action)
    if keyword:
        conditions.append("(casefold(message) LIKE ? OR casefold(path) LIKE ? OR ip_address LIKE ?)")
        params.extend([f"%{keyword.casefold()}%"] * 3)

    start, end = parse_date_range(start_date, end_date)
    if start:
        conditions.append("created_at >= ?")
        params.append(start)
    if end:
        conditions.append("created_at < ?")
        params.append(end)
    return (" AND ".join(conditions) if conditions else "1=1"), params


@router.get("/")
async def list_logs(
    level: Optional[str] = Query(None, pattern="^(info|warn|error|debug)$"),
    category: Optional[str] = None,
    action: Optional[str] = None,
    keyword: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    current_user: User = Depends(require_read("SYSTEM_LOGS")),
    db: DatabaseService = Depends(get_db)
):
    where_clause, params = _log_filters(level, category, action, keyword, start_date, end_date)
    total = await db.count("system_logs", where_clause, tuple(params))
    logs = await db.fetch_all(
        f"""SELECT * FROM system_logs WHERE {where_clause}
            ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?""",
        tuple(params) + (limit, (page - 1) * limit)
    )
    return {
        "logs": logs,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": (total + limit - 1) // limit,
        },
    }


@router.get("/export")
async def export_logs(
    level: Optional[str] = Query(None, pattern="^(info|warn|error|debug)$"),
    category: Optional[str] = None,
    action: Optional[str] = None,
    keyword: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    current_user: User = Depends(require_read("SYSTEM_LOGS")),
    db: DatabaseService = Depends(get_db)
):
    where_clause, params = _log_filters(level, category, action, keyword, start_date, end_date)
    logs = await db.fetch_all(
        f"SELECT * FROM system_logs WHERE {where_clause} ORDER BY created_at DESC, id DESC LIMIT ?",
        tuple(params) + (EXPORT_LIMIT,)
    )
    return export_xlsx(
        "Журнал",
        ["Время", "Уровень", "Категория", "Действие", "Сообщение", "Пользователь",
         "IP", "Метод", "Путь", "Код", "Длительность (мс)", "Ошибка"],
        (
            [
                log["created_at"], log["level"], log["category"], log["action"], log["message"],
                log["user_id"] or "", log["ip_address"] or "", log["method"] or "", log["path"] or "",
                log["status_code"] or "", log["duration"] or "", log["error"] or "",
            ]
            for log in logs
        ),
        "system_logs"
    )
