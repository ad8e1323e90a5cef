"""
API Routes для управления заказами в админке и статистики продаж.
"""

import logging
from fastapi import APIRouter, Depends, HTTPException, Query
from typing import Optional, List

from ..models.order import OrderCleanup
from ..models.user import User
from ..services.database import DatabaseService, get_db, local_range_bounds, local_offset_modifier
from ..services.exporter import export_xlsx
from ..services.order_service import OrderManager
from .auth import require_admin, require_read
from .orders import ORDER_STATUS_LABELS

logger = logging.getLogger(__name__)

router = APIRouter()

PERIOD_FORMATS = {
    "hour": "%Y-%m-%d %H:00",
    "day": "%Y-%m-%d",
    "month": "%Y-%m",
    "year": "%Y",
}


def parse_date_range(start_date: Optional[str], end_date: Optional[str]) -> tuple:
    """Границы периода в UTC; 400 при неверном формате даты."""
    try:
        return local_range_bounds(start_date, end_date)
    except ValueError:
        raise HTTPException(status_code=400, detail="Неверный формат даты, ожидается YYYY-MM-DD")


def _order_filters(
    search: Optional[str],
    status: Optional[str],
    start_date: Optional[str],
    end_date: Optional[str]
) -> tuple:
    conditions: List[str] = []
    params: list = []

    if search:
        conditions.append("(o.order_number LIKE ? OR casefold(u.email) LIKE ? OR casefold(u.name) LIKE ?)")
        params.extend([f"%{search.casefold()}%"] * 3)
    if status:
        conditions.append("o.status = ?")
        params.append(status)

    start, end = parse_date_range(start_date, end_date)
    if start:
        conditions.append("o.created_at >= ?")
        params.append(start)
    if end:
        conditions.append("o.created_at < ?")
        params.append(end)

    where_clause = " AND ".join(conditions) if conditions else "1=1"
    return where_clause, params


_ORDER_SELECT = """
    SELECT o.*,
           u.name as user_name,
           u.email as user_email,
           m.membership_code
    FROM orders o
    LEFT JOIN users u ON u.id = o.user_id
    LEFT JOIN memberships m ON m.id = o.membership_id
"""


@router.get("/orders")
async def admin_list_orders(
    search: Optional[str] = None,
    status: Optional[str] = Query(None, pattern="^(pending|paid|cancelled|refunded)$"),
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(require_read("ORDERS")),
    db: DatabaseService = Depends(get_db)
):
    """Все заказы с пользователем, позициями, платежом и членством."""
    where_clause, params = _order_filters(search, status, start_date, end_date)

    total = await db.fetch_value(
        f"""SELECT COUNT(*) FROM orders o
            LEFT JOIN users u ON u.id = o.user_id
            WHERE {where_clause}""",
        tuple(params),
        default=0
    )
    orders = await db.fetch_all(
        f"""{_ORDER_SELECT}
            WHERE {where_clause}
            ORDER BY o.created_at DESC, o.id DESC
            LIMIT ? OFFSET ?""",
        tuple(params) + (limit, (page - 1) * limit)
    )

    for order in orders:
        details = await OrderManager.get_order_details(db, order["id"])
        order["items"] = details["items"]
        order["payment"] = details["payment"]

    return {
        "orders": orders,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": (total + limit - 1) // limit,
        },
    }


@router.post("/orders/cleanup")
async def cleanup_orders(
    data: OrderCleanup,
    admin: User = Depends(require_admin),
    db: DatabaseService = Depends(get_db)
):
    """Удаляет заказы по фильтру. Требует явного подтверждения."""
    if not data.confirm_delete:
        raise HTTPException(status_code=400, detail="Подтвердите удаление (confirm_delete: true)")

    conditions = []
    params = []
    start, end = parse_date_range(data.start_date, data.end_date)
    if start:
        conditions.append("created_at >= ?")
        params.append(start)
    if end:
        conditions.append("created_at < ?")
        params.append(end)
    if data.status:
        conditions.append("status = ?")
        params.append(data.status)

    where_clause = " AND ".join(conditions) if conditions else "1=1"
    deleted = await db.delete("orders", where_clause, tuple(params))
    logger.warning(f"[ORDERS] Admin #{admin.id} deleted {deleted} orders ({where_clause} {params})")
    return {"deleted_count": deleted, "message": f"Удалено заказов: {deleted}"}


@router.get("/orders/export")
async def export_admin_orders(
    search: Optional[str] = None,
    status: Optional[str] = Query(None, pattern="^(pending|paid|cancelled|refunded)$"),
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    current_user: User = Depends(require_read("ORDERS")),
    db: DatabaseService = Depends(get_db)
):
    """Выгрузка заказов в Excel."""
    where_clause, params = _order_filters(search, status, start_date, end_date)
    orders = await db.fetch_all(
        f"""{_ORDER_SELECT}
            WHERE {where_clause}
            ORDER BY o.created_at DESC, o.id DESC
            LIMIT 10000""",
        tuple(params)
    )

    rows = []
    for order in orders:
        items = await db.fetch_all(
            "SELECT product_title, quantity FROM order_items WHERE order_id = ? ORDER BY id",
            (order["id"],)
        )
        rows.append([
            order["order_number"],
            order["user_email"] or "",
            "; ".join(f"{i['product_title']} x{i['quantity']}" for i in items),
            float(order["original_amount"] or order["total_amount"]),
            float(order["discount"] or 0),
            float(order["total_amount"]),
            ORDER_STATUS_LABELS.get(order["status"], order["status"]),
            order["payment_method"] or "",
            order["membership_code"] or "",
            order["created_at"],
            order["paid_at"] or "",
        ])

    return export_xlsx(
        "Заказы",
        ["Номер", "Покупатель", "Товары", "Сумма", "Скидка", "Итого", "Статус",
         "Способ оплаты", "Членство", "Создан", "Оплачен"],
        rows,
        "orders"
    )


@router.get("/order-statistics")
async def get_order_statistics(
    type: str = Query("product", pattern="^(product|membership)$"),
    dimension: str = Query("day", pattern="^(hour|day|month|year)$"),
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    current_user: User = Depends(require_read("ORDERS", "MEMBERSHIPS")),
    db: DatabaseService = Depends(get_db)
):
    """Количество и сумма заказов по периодам (в часовом поясе магазина)."""
    if type == "product":
        table, amount_col, paid_cond = "orders", "total_amount", "status = 'paid'"
    else:
        table, amount_col, paid_cond = "memberships", "purchase_price", "payment_status = 'completed'"

    conditions = []
    params: list = [PERIOD_FORMATS[dimension], local_offset_modifier()]
    start, end = parse_date_range(start_date, end_date)
    if start:
        conditions.append("created_at >= ?")
        params.append(start)
    if end:
        conditions.append("created_at < ?")
        params.append(end)
    where_clause = " AND ".join(conditions) if conditions else "1=1"

    rows = await db.fetch_all(
        f"""SELECT strftime(?, datetime(created_at, ?)) as period,
                   COUNT(*) as count,
                   COALESCE(SUM({amount_col}), 0) as amount,
                   SUM(CASE WHEN {paid_cond} THEN 1 ELSE 0 END) as paid_count,
                   COALESCE(SUM(CASE WHEN {paid_cond} THEN {amount_col} ELSE 0 END), 0) as paid_amount
            FROM {table}
            WHERE {where_clause}
            GROUP BY period
            ORDER BY period""",
        tuple(params)
    )

    statistics = [
        {
            "period": row["period"],
            "count": row["count"],
            "amount": round(float(row["amount"]), 2),
            "paid_count": row["paid_count"],
            "paid_amount": round(float(row["paid_amount"]), 2),
        }
        for row in rows
    ]
    return {"type": type, "dimension": dimension, "statistics": statistics}
