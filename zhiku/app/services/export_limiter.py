"""
Ограничение выгрузки заказов для анонимных покупателей.

Каждый оплаченный заказ даёт 2 выгрузки в сутки (локальная дата).
"""

from typing import Any, Dict, List, Optional

from .database import DatabaseService, local_today


EXPORTS_PER_PAID_ORDER = 2


async def check_export_limit(
    db: DatabaseService,
    visitor_id: Optional[str],
    order_numbers: Optional[List[str]]
) -> Dict[str, Any]:
    """Возвращает {allowed, reason, paid_order_count, used_exports, remaining_exports, total_allowed}."""
    if not visitor_id:
        return {
            "allowed": False,
            "reason": "Не удалось определить посетителя",
            "paid_order_count": 0,
            "used_exports": 0,
            "remaining_exports": 0,
            "total_allowed": 0,
        }

    paid_count = 0
    if order_numbers:
        placeholders = ", ".join(["?" for _ in order_numbers])
        paid_count = await db.fetch_value(
            f"SELECT COUNT(*) FROM orders WHERE status = 'paid' AND order_number IN ({placeholders})",
            tuple(order_numbers),
            default=0
        )

    if paid_count == 0:
        return {
            "allowed": False,
            "reason": "Выгрузка доступна только для оплаченных заказов",
            "paid_order_count": 0,
            "used_exports": 0,
            "remaining_exports": 0,
            "total_allowed": 0,
        }

    total_allowed = paid_count * EXPORTS_PER_PAID_ORDER
    used = await db.fetch_value(
        "SELECT export_count FROM order_export_records WHERE visitor_id = ? AND export_date = ?",
        (visitor_id, local_today().isoformat()),
        default=0
    )

    if used >= total_allowed:
        return {
            "allowed": False,
            "reason": f"Каждый оплаченный заказ можно выгрузить не более {EXPORTS_PER_PAID_ORDER} раз в день",
            "paid_order_count": paid_count,
            "used_exports": used,
            "remaining_exports": 0,
            "total_allowed": total_allowed,
        }

    return {
        "allowed": True,
        "reason": None,
        "paid_order_count": paid_count,
        "used_exports": used,
        "remaining_exports": total_allowed - used,
        "total_allowed": total_allowed,
    }


async def record_export(db: DatabaseService, visitor_id: str) -> None:
    """Увеличивает счётчик выгрузок посетителя за сегодня."""
    await db.execute(
        """INSERT INTO order_export_records (visitor_id, export_date, export_count)
           VALUES (?, ?, 1)
           ON CONFLICT(visitor_id, export_date)
           DO UPDATE SET export_count = export_count + 1, updated_at = CURRENT_TIMESTAMP""",
        (visitor_id, local_today().isoformat())
    )
    await db.commit()
