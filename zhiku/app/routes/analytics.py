"""
API Routes для аналитики посещений.
"""

import hashlib
import logging
from datetime import timedelta
from fastapi import APIRouter, Depends, Query, Request
from typing import Optional

import aiosqlite

from ..models.analytics import PageViewTrack
from ..models.user import User
from ..services.database import DatabaseService, get_db, local_today, local_offset_modifier
from ..services.rate_limiter import get_client_ip, rate_limit
from ..services.sanitize import sanitize_text
from .admin_orders import parse_date_range
from .auth import get_current_user_optional, require_read

logger = logging.getLogger(__name__)

router = APIRouter()
admin_router = APIRouter()

# Формат группировки для strftime в SQLite
GRANULARITY_FORMATS = {
    "hour": "%Y-%m-%d %H:00",
    "day": "%Y-%m-%d",
    "week": "%Y-W%W",
    "month": "%Y-%m",
}

TOP_LIMIT = 10
DEFAULT_RANGE_DAYS = 7


def make_visitor_id(ip: str, user_agent: str) -> str:
    """Анонимный идентификатор посетителя: первые 32 символа SHA-256 от ip-ua."""
    return hashlib.sha256(f"{ip}-{user_agent}".encode("utf-8")).hexdigest()[:32]


@router.post("/track", dependencies=[Depends(rate_limit("API"))])
async def track_page_view(
    data: PageViewTrack,
    request: Request,
    current_user: Optional[User] = Depends(get_current_user_optional),
    db: DatabaseService = Depends(get_db)
):
    """Записывает просмотр страницы. Ошибки записи не возвращаются клиенту."""
    ip = get_client_ip(request)
    user_agent = request.headers.get("user-agent", "")
    try:
        await db.insert("page_views", {
            "visitor_id": make_visitor_id(ip, user_agent),
            "user_id": current_user.id if current_user else None,
            "ip_address": ip,
            "user_agent": user_agent[:500],
            "path": sanitize_text(data.path)[:500] or "/",
            "referer": data.referer,
        })
    except aiosqlite.Error as e:
        logger.error(f"[ANALYTICS] Failed to record page view: {e}")
        return {"success": False}
    return {"success": True}


@admin_router.get("/stats")
async def get_stats(
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    granularity: str = Query("day", pattern="^(hour|day|week|month)$"),
    current_user: User = Depends(require_read("ANALYTICS")),
    db: DatabaseService = Depends(get_db)
):
    """Сводка посещений: PV, UV, динамика по периодам, популярные IP и страницы."""
    if not start_date and not end_date:
        today = local_today()
        start_date = (today - timedelta(days=DEFAULT_RANGE_DAYS - 1)).isoformat()
        end_date = today.isoformat()

    start, end = parse_date_range(start_date, end_date)
    conditions = []
    params: list = []
    if start:
        conditions.append("timestamp >= ?")
        params.append(start)
    if end:
        conditions.append("timestamp < ?")
        params.append(end)
    where_clause = " AND ".join(conditions) if conditions else "1=1"
    params_t = tuple(params)

    overview = await db.fetch_one(
        f"""SELECT COUNT(*) as pv, COUNT(DISTINCT visitor_id) as uv
            FROM page_views WHERE {where_clause}""",
        params_t
    )
    pv = overview["pv"] or 0
    uv = overview["uv"] or 0

    period_fmt = GRANULARITY_FORMATS[granularity]
    series = await db.fetch_all(
        f"""SELECT strftime(?, timestamp, ?) as period,
                   COUNT(*) as pv,
                   COUNT(DISTINCT visitor_id) as uv
            FROM page_views
            WHERE {where_clause}
            GROUP BY period
            ORDER BY period""",
        (period_fmt, local_offset_modifier()) + params_t
    )

    top_ips = await db.fetch_all(
        f"""SELECT ip_address, COUNT(*) as count FROM page_views
            WHERE {where_clause}
            GROUP BY ip_address ORDER BY count DESC LIMIT ?""",
        params_t + (TOP_LIMIT,)
    )
    top_paths = await db.fetch_all(
        f"""SELECT path, COUNT(*) as count, COUNT(DISTINCT visitor_id) as visitors
            FROM page_views
            WHERE {where_clause}
            GROUP BY path ORDER BY count DESC LIMIT ?""",
        params_t + (TOP_LIMIT,)
    )

    return {
        "overview": {
            "pv": pv,
            "uv": uv,
            "avg_pages_per_visitor": round(pv / uv, 2) if uv else 0,
        },
        "series": series,
        "top_ips": top_ips,
        "top_paths": top_paths,
        "range": {"start_date": start_date, "end_date": end_date, "granularity": granularity},
    }
