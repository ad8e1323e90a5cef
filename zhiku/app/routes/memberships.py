"""
API Routes для тарифов и членства.
"""

import json
import logging
from fastapi import APIRouter, Depends, HTTPException, Query
from typing import List, Optional

from ..models.membership import MembershipPlan, MembershipPlanCreate, MembershipPlanUpdate, MembershipPurchase
from ..models.user import User
from ..services.database import DatabaseService, get_db, db_now
from ..services.exporter import export_xlsx
from ..services.membership_service import MembershipService, MembershipError
from .auth import get_current_user_optional, require_read, require_write

logger = logging.getLogger(__name__)

plans_router = APIRouter()
router = APIRouter()
orders_router = APIRouter()
admin_router = APIRouter()

PAYMENT_STATUS_LABELS = {"pending": "Ожидает оплаты", "completed": "Оплачено", "failed": "Ошибка оплаты"}


def _with_snapshot(membership: dict) -> dict:
    if isinstance(membership.get("plan_snapshot"), str):
        membership["plan_snapshot"] = json.loads(membership["plan_snapshot"] or "{}")
    return membership


# ==================== Тарифы ====================

@plans_router.get("/", response_model=List[MembershipPlan])
async def get_plans(db: DatabaseService = Depends(get_db)):
    """Активные тарифы."""
    plans = await db.fetch_all(
        "SELECT * FROM membership_plans WHERE status = 'active' ORDER BY sort_order, id"
    )
    return [MembershipPlan(**plan) for plan in plans]


@plans_router.get("/{plan_id}", response_model=MembershipPlan)
async def get_plan(plan_id: int, db: DatabaseService = Depends(get_db)):
    plan = await db.fetch_one("SELECT * FROM membership_plans WHERE id = ?", (plan_id,))
    if not plan:
        raise HTTPException(status_code=404, detail="Тариф не найден")
    return MembershipPlan(**plan)


# ==================== Членство ====================

@router.post("/purchase", status_code=201)
async def purchase_membership(
    data: MembershipPurchase,
    current_user: Optional[User] = Depends(get_current_user_optional),
    db: DatabaseService = Depends(get_db)
):
    """Создаёт неоплаченное членство по тарифу."""
    try:
        membership = await MembershipService.purchase(
            db, data.plan_id, current_user.id if current_user else None
        )
    except MembershipError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {"membership": _with_snapshot(membership), "message": "Членство создано, ожидает оплаты"}


@router.get("/verify")
async def verify_membership(
    code: str = Query(..., min_length=1),
    db: DatabaseService = Depends(get_db)
):
    """Проверка кода членства."""
    try:
        membership = await MembershipService.verify(db, code)
    except MembershipError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {"membership": membership}


@router.get("/{membership_id}")
async def get_membership(membership_id: int, db: DatabaseService = Depends(get_db)):
    membership = await db.fetch_one("SELECT * FROM memberships WHERE id = ?", (membership_id,))
    if not membership:
        raise HTTPException(status_code=404, detail="Членство не найдено")
    return {"membership": _with_snapshot(membership)}


@orders_router.get("/")
async def get_membership_orders(
    search: Optional[str] = None,
    codes: Optional[str] = None,
    current_user: Optional[User] = Depends(get_current_user_optional),
    db: DatabaseService = Depends(get_db)
):
    """Оплаченные членства пользователя или перечисленных кодов."""
    conditions = ["m.payment_status = 'completed'"]
    params: list = []

    if current_user:
        conditions.append("m.user_id = ?")
        params.append(current_user.id)
    else:
        code_list = [c.strip().upper() for c in (codes or "").split(",") if c.strip()]
        if not code_list:
            return {"memberships": []}
        conditions.append(f"m.membership_code IN ({', '.join(['?' for _ in code_list])})")
        params.extend(code_list)

    if search:
        conditions.append("(m.membership_code LIKE ? OR m.order_number LIKE ?)")
        params.extend([f"%{search.upper()}%", f"%{search.upper()}%"])

    rows = await db.fetch_all(
        f"""SELECT m.* FROM memberships m
            WHERE {' AND '.join(conditions)}
            ORDER BY m.created_at DESC, m.id DESC""",
        tuple(params)
    )
    return {"memberships": [_with_snapshot(row) for row in rows]}


# ==================== Админка: тарифы ====================

@admin_router.get("/membership-plans", response_model=List[MembershipPlan])
async def admin_list_plans(
    current_user: User = Depends(require_read("MEMBERSHIPS")),
    db: DatabaseService = Depends(get_db)
):
    plans = await db.fetch_all("SELECT * FROM membership_plans ORDER BY sort_order, id")
    return [MembershipPlan(**plan) for plan in plans]


@admin_router.post("/membership-plans", response_model=MembershipPlan, status_code=201)
async def create_plan(
    data: MembershipPlanCreate,
    current_user: User = Depends(require_write("MEMBERSHIPS")),
    db: DatabaseService = Depends(get_db)
):
    values = data.model_dump()
    values["price"] = float(values["price"])
    plan_id = await db.insert("membership_plans", values)
    logger.info(f"[MEMBERSHIP] Plan #{plan_id} created by user #{current_user.id}")
    return await get_plan(plan_id, db)


@admin_router.put("/membership-plans/{plan_id}", response_model=MembershipPlan)
async def update_plan(
    plan_id: int,
    data: MembershipPlanUpdate,
    current_user: User = Depends(require_write("MEMBERSHIPS")),
    db: DatabaseService = Depends(get_db)
):
    """Изменения тарифа не затрагивают уже купленные членства."""
    await get_plan(plan_id, db)
    update_data = data.model_dump(exclude_unset=True)
    if update_data.get("price") is not None:
        update_data["price"] = float(update_data["price"])
    if update_data:
        update_data["updated_at"] = db_now()
        await db.update("membership_plans", update_data, "id = ?", (plan_id,))
    return await get_plan(plan_id, db)


@admin_router.delete("/membership-plans/{plan_id}")
async def delete_plan(
    plan_id: int,
    current_user: User = Depends(require_write("MEMBERSHIPS")),
    db: DatabaseService = Depends(get_db)
):
    await get_plan(plan_id, db)
    used = await db.count("memberships", "plan_id = ?", (plan_id,))
    if used:
        raise HTTPException(status_code=400, detail="По тарифу уже есть членства, отключите его вместо удаления")
    await db.delete("membership_plans", "id = ?", (plan_id,))
    return {"message": "Тариф удалён"}


# ==================== Админка: записи членства ====================

def _record_filters(search: Optional[str], status: Optional[str], payment_status: Optional[str]) -> tuple:
    conditions = []
    params: list = []
    if search:
        conditions.append("(m.membership_code LIKE ? OR m.order_number LIKE ? OR u.email LIKE ?)")
        params.extend([f"%{search}%"] * 3)
    if status:
        conditions.append("m.status = ?")
        params.append(status)
    if payment_status:
        conditions.append("m.payment_status = ?")
        params.append(payment_status)
    return (" AND ".join(conditions) if conditions else "1=1"), params


_RECORD_SELECT = """
    SELECT m.*, u.email as user_email, u.name as user_name, p.name as plan_name
    FROM memberships m
    LEFT JOIN users u ON u.id = m.user_id
    LEFT JOIN membership_plans p ON p.id = m.plan_id
"""


@admin_router.get("/membership-records")
async def admin_membership_records(
    search: Optional[str] = None,
    status: Optional[str] = Query(None, pattern="^(active|expired|cancelled)$"),
    payment_status: Optional[str] = Query(None, pattern="^(pending|completed|failed)$"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(require_read("MEMBERSHIPS")),
    db: DatabaseService = Depends(get_db)
):
    where_clause, params = _record_filters(search, status, payment_status)
    total = await db.fetch_value(
        f"SELECT COUNT(*) FROM memberships m LEFT JOIN users u ON u.id = m.user_id WHERE {where_clause}",
        tuple(params),
        default=0
    )
    rows = await db.fetch_all(
        f"""{_RECORD_SELECT} WHERE {where_clause}
            ORDER BY m.created_at DESC, m.id DESC LIMIT ? OFFSET ?""",
        tuple(params) + (limit, (page - 1) * limit)
    )
    return {
        "records": [_with_snapshot(row) for row in rows],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": (total + limit - 1) // limit,
        },
    }


@admin_router.get("/membership-records/export")
async def export_membership_records(
    search: Optional[str] = None,
    status: Optional[str] = Query(None, pattern="^(active|expired|cancelled)$"),
    payment_status: Optional[str] = Query(None, pattern="^(pending|completed|failed)$"),
    current_user: User = Depends(require_read("MEMBERSHIPS")),
    db: DatabaseService = Depends(get_db)
):
    """Выгрузка записей членства в Excel."""
    where_clause, params = _record_filters(search, status, payment_status)
    rows = await db.fetch_all(
        f"{_RECORD_SELECT} WHERE {where_clause} ORDER BY m.created_at DESC LIMIT 10000",
        tuple(params)
    )

    return export_xlsx(
        "Членство",
        ["Код", "Тариф", "Покупатель", "Цена", "Скидка", "Лимит в день", "Начало", "Окончание",
         "Статус", "Оплата", "Номер заказа"],
        (
            [
                r["membership_code"], r["plan_name"] or "", r["user_email"] or "",
                float(r["purchase_price"]), r["discount"], r["daily_limit"],
                r["start_date"], r["end_date"] or "бессрочно", r["status"],
                PAYMENT_STATUS_LABELS.get(r["payment_status"], r["payment_status"]),
                r["order_number"] or "",
            ]
            for r in rows
        ),
        "membership_records"
    )
