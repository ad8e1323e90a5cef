"""
API Routes для журнала событий безопасности.
"""

import json
import logging
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from typing import Optional

from ..models.security_alert import SecurityAlertUpdate, SecurityAlertBatchUpdate, SecurityAlertBatchDelete
from ..models.user import User
from ..services.database import DatabaseService, get_db, db_now
from ..services.rate_limiter import get_client_ip
from ..services.security_alerts import SecurityAlertService
from .auth import require_read, require_write

logger = logging.getLogger(__name__)

router = APIRouter()

CLOSED_STATUSES = ("resolved", "false_positive")


def _present(alert: dict) -> dict:
    alert["metadata"] = json.loads(alert.get("metadata") or "{}")
    return alert


def _status_update(status: Optional[str], notes: Optional[str], admin_id: int) -> dict:
    data = {"updated_at": db_now()}
    if status:
        data["status"] = status
        if status in CLOSED_STATUSES:
            data["resolved_by"] = admin_id
            data["resolved_at"] = db_now()
    if notes is not None:
        data["notes"] = notes
    return data


@router.get("/")
async def list_alerts(
    type: Optional[str] = None,
    severity: Optional[str] = Query(None, pattern="^(info|low|medium|high|critical)$"),
    status: Optional[str] = Query(None, pattern="^(unresolved|investigating|resolved|false_positive)$"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(require_read("SECURITY_ALERTS")),
    db: DatabaseService = Depends(get_db)
):
    conditions = []
    params: list = []
    if type:
        conditions.append("type = ?")
        params.append(type)
    if severity:
        conditions.append("severity = ?")
        params.append(severity)
    if status:
        conditions.append("status = ?")
        params.append(status)
    where_clause = " AND ".join(conditions) if conditions else "1=1"

    total = await db.count("security_alerts", where_clause, tuple(params))
    alerts = await db.fetch_all(
        f"""SELECT * FROM security_alerts WHERE {where_clause}
            ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?""",
        tuple(params) + (limit, (page - 1) * limit)
    )
    unresolved = await db.count("security_alerts", "status = 'unresolved'")

    return {
        "alerts": [_present(a) for a in alerts],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": (total + limit - 1) // limit,
        },
        "unresolved_count": unresolved,
    }


@router.patch("/batch")
async def batch_update_alerts(
    data: SecurityAlertBatchUpdate,
    request: Request,
    admin: User = Depends(require_write("SECURITY_ALERTS")),
    db: DatabaseService = Depends(get_db)
):
    """Массовое изменение статуса с записью в журнал."""
    placeholders = ", ".join(["?" for _ in data.ids])
    updated = await db.update(
        "security_alerts",
        _status_update(data.status, data.notes, admin.id),
        f"id IN ({placeholders})",
        tuple(data.ids)
    )
    await SecurityAlertService.create_alert(
        db,
        "BATCH_ALERT_UPDATE",
        "info",
        f"Массовое изменение {updated} событий: статус {data.status}",
        user_id=admin.id,
        ip_address=get_client_ip(request),
        user_agent=request.headers.get("user-agent"),
        metadata={"ids": data.ids, "status": data.status},
    )
    return {"updated": updated}


@router.delete("/batch")
async def batch_delete_alerts(
    data: SecurityAlertBatchDelete,
    request: Request,
    admin: User = Depends(require_write("SECURITY_ALERTS")),
    db: DatabaseService = Depends(get_db)
):
    placeholders = ", ".join(["?" for _ in data.ids])
    deleted = await db.delete("security_alerts", f"id IN ({placeholders})", tuple(data.ids))
    await SecurityAlertService.create_alert(
        db,
        "BATCH_ALERT_DELETE",
        "info",
        f"Массовое удаление {deleted} событий",
        user_id=admin.id,
        ip_address=get_client_ip(request),
        user_agent=request.headers.get("user-agent"),
        metadata={"ids": data.ids},
    )
    return {"deleted": deleted}


@router.patch("/{alert_id}")
async def update_alert(
    alert_id: int,
    data: SecurityAlertUpdate,
    admin: User = Depends(require_write("SECURITY_ALERTS")),
    db: DatabaseService = Depends(get_db)
):
    existing = await db.fetch_one("SELECT id FROM security_alerts WHERE id = ?", (alert_id,))
    if not existing:
        raise HTTPException(status_code=404, detail="Событие не найдено")
    await db.update("security_alerts", _status_update(data.status, data.notes, admin.id), "id = ?", (alert_id,))
    alert = await db.fetch_one("SELECT * FROM security_alerts WHERE id = ?", (alert_id,))
    return {"alert": _present(alert)}


@router.delete("/{alert_id}")
async def delete_alert(
    alert_id: int,
    admin: User = Depends(require_write("SECURITY_ALERTS")),
    db: DatabaseService = Depends(get_db)
):
    deleted = await db.delete("security_alerts", "id = ?", (alert_id,))
    if not deleted:
        raise HTTPException(status_code=404, detail="Событие не найдено")
    return {"message": "Событие удалено"}
