"""
API Routes для заказов.
"""

import logging
from fastapi import APIRouter, Cookie, Depends, HTTPException, Query, Request
from typing import Optional

from ..models.order import OrderCreate, OrderRefund, OrderCancelBatch, ApplyMembership, OrderExportRequest
from ..models.user import User
from ..services.database import DatabaseService, get_db
from ..services.export_limiter import check_export_limit, record_export
from ..services.exporter import export_xlsx
from ..services.membership_service import MembershipService, MembershipError
from ..services.order_service import OrderManager, OrderStateError
from ..services.permissions import can_read
from ..services.rate_limiter import rate_limit
from ..services.system_logger import SystemLogger
from .auth import get_current_user, require_write

logger = logging.getLogger(__name__)

router = APIRouter()

ORDER_STATUS_LABELS = {
    "pending": "Ожидает оплаты",
    "paid": "Оплачен",
    "cancelled": "Отменён",
    "refunded": "Возврат",
}


def hide_links_unless_paid(order: dict) -> dict:
    """Ссылка на материалы доступна только после оплаты."""
    if order.get("status") != "paid":
        for item in order.get("items", []):
            item.pop("network_disk_link", None)
    return order


async def _get_order_or_404(db: DatabaseService, order_id: int) -> dict:
    order = await db.fetch_one("SELECT * FROM orders WHERE id = ?", (order_id,))
    if not order:
        raise HTTPException(status_code=404, detail="Заказ не найден")
    return order


async def _get_own_order(db: DatabaseService, order_id: int, user: User) -> dict:
    order = await _get_order_or_404(db, order_id)
    if order["user_id"] != user.id:
        raise HTTPException(status_code=403, detail="Нет доступа к этому заказу")
    return order


@router.post("/", status_code=201, dependencies=[Depends(rate_limit("ORDER"))])
async def create_order(
    order_data: OrderCreate,
    request: Request,
    dist_code: Optional[str] = Cookie(None),
    current_user: User = Depends(get_current_user),
    db: DatabaseService = Depends(get_db)
):
    """Создаёт заказ из корзины или на один товар."""
    if order_data.type == "direct":
        if not order_data.product_id or not order_data.quantity:
            raise HTTPException(status_code=400, detail="Укажите товар и количество")
        product = await db.fetch_one(
            "SELECT * FROM products WHERE id = ? AND status = 'active'",
            (order_data.product_id,)
        )
        if not product:
            raise HTTPException(status_code=404, detail="Product not found")
        lines = [(product, order_data.quantity)]
    else:
        cart_items = await db.fetch_all(
            """SELECT ci.quantity, p.*
               FROM cart_items ci
               JOIN products p ON ci.product_id = p.id
               WHERE ci.user_id = ?
               ORDER BY ci.id""",
            (current_user.id,)
        )
        if not cart_items:
            raise HTTPException(status_code=400, detail="Корзина пуста")
        for item in cart_items:
            if item["status"] != "active":
                raise HTTPException(
                    status_code=400,
                    detail=f"Товар «{item['title']}» недоступен для покупки"
                )
        lines = [(item, item["quantity"]) for item in cart_items]

    order = await OrderManager.create_order(
        db,
        current_user.id,
        lines,
        payment_method=order_data.payment_method,
        distribution_code=order_data.distribution_code or dist_code,
        clear_cart=order_data.type == "cart",
    )

    await SystemLogger.info(
        db, "api", "order_created", f"Order {order['order_number']} created",
        user_id=current_user.id, request=request, status_code=201,
        metadata={"order_id": order["id"], "total_amount": order["total_amount"]}
    )
    details = await OrderManager.get_order_details(db, order["id"])
    return {
        "order": hide_links_unless_paid(details),
        "message": "Заказ создан",
    }


@router.get("/")
async def get_my_orders(
    current_user: User = Depends(get_current_user),
    db: DatabaseService = Depends(get_db)
):
    """Заказы текущего пользователя."""
    rows = await db.fetch_all(
        "SELECT id FROM orders WHERE user_id = ? ORDER BY created_at DESC, id DESC",
        (current_user.id,)
    )
    orders = []
    for row in rows:
        orders.append(hide_links_unless_paid(await OrderManager.get_order_details(db, row["id"])))
    return {"orders": orders}


@router.get("/lookup")
async def lookup_order(
    order_number: str = Query(..., min_length=1),
    db: DatabaseService = Depends(get_db)
):
    """Публичный поиск заказа по номеру."""
    order = await db.fetch_one(
        "SELECT id FROM orders WHERE order_number = ?",
        (order_number.strip(),)
    )
    if not order:
        raise HTTPException(status_code=404, detail="Заказ не найден")

    details = await OrderManager.get_order_details(db, order["id"])
    details.pop("payment", None)
    return {"order": hide_links_unless_paid(details)}


@router.get("/cancel-expired")
async def cancel_expired_orders(db: DatabaseService = Depends(get_db)):
    """Отменяет все просроченные неоплаченные заказы."""
    return await OrderManager.cancel_expired_orders(db)


@router.post("/cancel-expired")
async def cancel_listed_orders(
    data: OrderCancelBatch,
    current_user: User = Depends(require_write("ORDERS")),
    db: DatabaseService = Depends(get_db)
):
    """Отменяет перечисленные заказы, которые ещё не оплачены."""
    return await OrderManager.cancel_orders(db, data.order_ids, data.order_numbers)


@router.get("/export-info")
async def get_export_info(
    visitor_id: str = Query(...),
    order_numbers: str = Query(""),
    db: DatabaseService = Depends(get_db)
):
    """Сколько выгрузок ещё доступно посетителю сегодня."""
    numbers = [n.strip() for n in order_numbers.split(",") if n.strip()]
    return await check_export_limit(db, visitor_id, numbers)


@router.post("/export")
async def export_orders(
    data: OrderExportRequest,
    db: DatabaseService = Depends(get_db)
):
    """Выгрузка оплаченных заказов посетителя в Excel."""
    limit = await check_export_limit(db, data.visitor_id, data.order_numbers)
    if not limit["allowed"]:
        raise HTTPException(status_code=429, detail=limit["reason"])

    placeholders = ", ".join(["?" for _ in data.order_numbers])
    rows = await db.fetch_all(
        f"""SELECT o.order_number, o.total_amount, o.paid_at,
                   oi.product_title, oi.quantity, oi.price, p.network_disk_link
            FROM orders o
            JOIN order_items oi ON oi.order_id = o.id
            LEFT JOIN products p ON p.id = oi.product_id
            WHERE o.status = 'paid' AND o.order_number IN ({placeholders})
            ORDER BY o.created_at, oi.id""",
        tuple(data.order_numbers)
    )

    await record_export(db, data.visitor_id)

    return export_xlsx(
        "Заказы",
        ["Номер заказа", "Товар", "Количество", "Цена", "Сумма заказа", "Дата оплаты", "Ссылка"],
        (
            [
                r["order_number"], r["product_title"], r["quantity"], float(r["price"]),
                float(r["total_amount"]), r["paid_at"], r["network_disk_link"] or "",
            ]
            for r in rows
        ),
        "orders"
    )


@router.get("/{order_id}")
async def get_order(
    order_id: int,
    current_user: User = Depends(get_current_user),
    db: DatabaseService = Depends(get_db)
):
    """Заказ владельца или пользователя с правом чтения заказов."""
    order = await _get_order_or_404(db, order_id)
    if order["user_id"] != current_user.id:
        if not await can_read(db, current_user.id, current_user.role, "ORDERS"):
            raise HTTPException(status_code=403, detail="Нет доступа к этому заказу")
    return {"order": hide_links_unless_paid(await OrderManager.get_order_details(db, order_id))}


@router.post("/{order_id}/cancel")
async def cancel_order(
    order_id: int,
    current_user: User = Depends(get_current_user),
    db: DatabaseService = Depends(get_db)
):
    """Отмена неоплаченного заказа владельцем."""
    order = await _get_own_order(db, order_id, current_user)
    try:
        cancelled = await OrderManager.cancel_order(db, order)
    except OrderStateError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"order": cancelled, "message": "Заказ отменён"}


@router.post("/{order_id}/refund")
async def refund_order(
    order_id: int,
    data: OrderRefund,
    request: Request,
    current_user: User = Depends(require_write("ORDERS")),
    db: DatabaseService = Depends(get_db)
):
    """Возврат оплаченного заказа со сторно комиссии."""
    order = await _get_order_or_404(db, order_id)
    try:
        refunded = await OrderManager.refund_order(db, order, data.reason)
    except OrderStateError as e:
        raise HTTPException(status_code=400, detail=str(e))

    await SystemLogger.info(
        db, "payment", "order_refunded", f"Order {order['order_number']} refunded",
        user_id=current_user.id, request=request,
        metadata={"order_id": order_id, "reason": data.reason, "commission": refunded["commission_status"]}
    )
    return {"order": refunded, "message": "Возврат выполнен"}


@router.post("/{order_id}/apply-membership")
async def apply_membership(
    order_id: int,
    data: ApplyMembership,
    current_user: User = Depends(get_current_user),
    db: DatabaseService = Depends(get_db)
):
    """Применяет скидку по коду членства."""
    order = await _get_own_order(db, order_id, current_user)
    try:
        result = await MembershipService.apply_to_order(db, order, data.membership_code)
    except MembershipError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    return {**result, "message": "Скидка применена"}
