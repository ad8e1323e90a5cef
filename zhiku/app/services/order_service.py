"""
Сервис заказов: создание, отмена, просрочка и возврат.

Переходы статусов: pending -> paid | cancelled, paid -> refunded.
"""

import logging
import secrets
import string
import time
from datetime import timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from .commission import CommissionManager
from .database import DatabaseService, db_now, to_money
from .system_config import ConfigService


logger = logging.getLogger(__name__)

DEFAULT_EXPIRE_MINUTES = 30
_ORDER_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits


class OrderStateError(Exception):
    """Недопустимый переход статуса заказа."""


def generate_order_number() -> str:
    """ORD + метка времени в мс + 9 случайных символов."""
    suffix = "".join(secrets.choice(_ORDER_SUFFIX_ALPHABET) for _ in range(9))
    return f"ORD{int(time.time() * 1000)}{suffix}"


class OrderManager:
    """Операции над заказами, затрагивающие несколько таблиц."""

    @staticmethod
    async def get_expire_minutes(db: DatabaseService) -> int:
        minutes = await ConfigService.get_value(db, "order_expire_minutes", DEFAULT_EXPIRE_MINUTES)
        try:
            minutes = int(minutes)
        except (TypeError, ValueError):
            minutes = DEFAULT_EXPIRE_MINUTES
        return minutes if minutes > 0 else DEFAULT_EXPIRE_MINUTES

    @staticmethod
    async def create_order(
        db: DatabaseService,
        user_id: int,
        lines: List[Tuple[Dict[str, Any], int]],
        payment_method: Optional[str] = None,
        distribution_code: Optional[str] = None,
        clear_cart: bool = False
    ) -> Dict[str, Any]:
        """
        Создаёт заказ из списка (товар, количество).

        Все записи (заказ, позиции, реферальная комиссия, очистка корзины)
        создаются в одной транзакции.
        """
        total = sum(
            (to_money(product["price"]) * quantity for product, quantity in lines),
            Decimal("0.00")
        )
        total = to_money(total)
        expire_minutes = await OrderManager.get_expire_minutes(db)
        order_number = generate_order_number()

        async with db.transaction():
            order_id = await db.insert("orders", {
                "order_number": order_number,
                "user_id": user_id,
                "total_amount": float(total),
                "original_amount": float(total),
                "discount": 0,
                "status": "pending",
                "payment_method": payment_method,
                "expires_at": db_now(timedelta(minutes=expire_minutes)),
            })

            for product, quantity in lines:
                await db.insert("order_items", {
                    "order_id": order_id,
                    "product_id": product["id"],
                    "product_title": product["title"],
                    "quantity": quantity,
                    "price": float(to_money(product["price"])),
                })

            if distribution_code:
                referral = await CommissionManager.create_referral(
                    db, order_id, total, distribution_code, user_id
                )
                if referral:
                    logger.info(
                        f"[ORDERS] Order {order_number} referred by distributor #{referral['distributor_id']}"
                    )

            if clear_cart:
                await db.delete("cart_items", "user_id = ?", (user_id,))

        logger.info(f"[ORDERS] Created order {order_number} for user #{user_id}: ¥{total}")
        return await db.fetch_one("SELECT * FROM orders WHERE id = ?", (order_id,))

    @staticmethod
    async def get_order_details(db: DatabaseService, order_id: int) -> Optional[Dict[str, Any]]:
        """Заказ с позициями и платежом."""
        order = await db.fetch_one("SELECT * FROM orders WHERE id = ?", (order_id,))
        if not order:
            return None
        order["items"] = await db.fetch_all(
            """SELECT oi.*, p.cover_image, p.network_disk_link
               FROM order_items oi
               LEFT JOIN products p ON p.id = oi.product_id
               WHERE oi.order_id = ?
               ORDER BY oi.id""",
            (order_id,)
        )
        order["payment"] = await db.fetch_one(
            "SELECT * FROM payments WHERE order_id = ?",
            (order_id,)
        )
        return order

    @staticmethod
    async def cancel_order(db: DatabaseService, order: Dict[str, Any]) -> Dict[str, Any]:
        """Отменяет неоплаченный заказ вместе с неподтверждённой комиссией."""
        if order["status"] != "pending":
            raise OrderStateError("Отменить можно только неоплаченный заказ")

        async with db.transaction():
            changed = await db.update(
                "orders",
                {"status": "cancelled", "cancelled_at": db_now(), "expires_at": None, "updated_at": db_now()},
                "id = ? AND status = 'pending'",
                (order["id"],)
            )
            if not changed:
                raise OrderStateError("Статус заказа изменился")
            await CommissionManager.cancel_pending_for_order(db, order["id"])

        logger.info(f"[ORDERS] Order {order['order_number']} cancelled")
        return await db.fetch_one("SELECT * FROM orders WHERE id = ?", (order["id"],))

    @staticmethod
    async def cancel_expired_orders(db: DatabaseService) -> Dict[str, Any]:
        """Отменяет все неоплаченные заказы с истёкшим сроком оплаты."""
        expired = await db.fetch_all(
            """SELECT * FROM orders
               WHERE status = 'pending' AND expires_at IS NOT NULL AND expires_at <= ?""",
            (db_now(),)
        )
        return await OrderManager._cancel_many(db, expired)

    @staticmethod
    async def cancel_orders(
        db: DatabaseService,
        order_ids: Optional[List[int]] = None,
        order_numbers: Optional[List[str]] = None
    ) -> Dict[str, Any]:
        """Отменяет перечисленные заказы, которые ещё ожидают оплаты."""
        if order_ids:
            placeholders = ", ".join(["?" for _ in order_ids])
            orders = await db.fetch_all(
                f"SELECT * FROM orders WHERE status = 'pending' AND id IN ({placeholders})",
                tuple(order_ids)
            )
        else:
            placeholders = ", ".join(["?" for _ in order_numbers])
            orders = await db.fetch_all(
                f"SELECT * FROM orders WHERE status = 'pending' AND order_number IN ({placeholders})",
                tuple(order_numbers)
            )
        return await OrderManager._cancel_many(db, orders)

    @staticmethod
    async def _cancel_many(db: DatabaseService, orders: List[Dict[str, Any]]) -> Dict[str, Any]:
        cancelled = []
        for order in orders:
            try:
                await OrderManager.cancel_order(db, order)
                cancelled.append(order["order_number"])
            except OrderStateError:
                # Заказ успели оплатить
                continue
        if cancelled:
            logger.info(f"[ORDERS] Cancelled {len(cancelled)} orders: {', '.join(cancelled)}")
        return {"cancelled": len(cancelled), "order_numbers": cancelled}

    @staticmethod
    async def refund_order(db: DatabaseService, order: Dict[str, Any], reason: Optional[str] = None) -> Dict[str, Any]:
        """
        Возврат оплаченного заказа.

        В одной транзакции: заказ и платёж -> refunded, затем сторно комиссии.
        """
        if order["status"] != "paid":
            raise OrderStateError("Возврат возможен только для оплаченного заказа")

        async with db.transaction():
            changed = await db.update(
                "orders",
                {
                    "status": "refunded",
                    "refunded_at": db_now(),
                    "refund_reason": reason,
                    "updated_at": db_now(),
                },
                "id = ? AND status = 'paid'",
                (order["id"],)
            )
            if not changed:
                raise OrderStateError("Статус заказа изменился")
            await db.update(
                "payments",
                {"status": "refunded", "updated_at": db_now()},
                "order_id = ?",
                (order["id"],)
            )
            commission_status = await CommissionManager.reverse_for_refund(db, order)

        logger.info(f"[ORDERS] Order {order['order_number']} refunded (commission: {commission_status})")
        refunded = await db.fetch_one("SELECT * FROM orders WHERE id = ?", (order["id"],))
        refunded["commission_status"] = commission_status
        return refunded
