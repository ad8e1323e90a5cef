"""
Обработка результатов оплаты.

Все платёжные колбэки после проверки подписи сходятся сюда:
обновить платёж, обновить заказ, подтвердить комиссию.
"""

import json
import logging
from decimal import Decimal
from typing import Any, Dict, Optional

from ..config import settings
from .commission import CommissionManager
from .database import DatabaseService, db_now, to_money
from .system_logger import SystemLogger


logger = logging.getLogger(__name__)

PAYMENT_METHODS = ("alipay", "wechat", "paypal")


def convert_to_usd(amount: Any) -> Decimal:
    """Перевод юаней в доллары по курсу CNY_TO_USD_RATE."""
    return to_money(to_money(amount) / Decimal(str(settings.CNY_TO_USD_RATE)))


class PaymentProcessor:
    """Общая бизнес-логика после подтверждения оплаты."""

    @staticmethod
    async def complete_order_payment(
        db: DatabaseService,
        order_id: int,
        transaction_id: Optional[str] = None,
        payment_data: Optional[Dict[str, Any]] = None
    ) -> bool:
        """
        Переводит заказ в оплаченные.

        Идемпотентно: для заказа не в статусе pending ничего не меняется
        и возвращается False.
        """
        order = await db.fetch_one("SELECT * FROM orders WHERE id = ?", (order_id,))
        if not order:
            logger.warning(f"[PAYMENT] Order #{order_id} not found")
            return False
        if order["status"] != "pending":
            logger.info(f"[PAYMENT] Order {order['order_number']} already {order['status']}, callback ignored")
            return False

        now = db_now()
        async with db.transaction():
            changed = await db.update(
                "orders",
                {"status": "paid", "paid_at": now, "expires_at": None, "updated_at": now},
                "id = ? AND status = 'pending'",
                (order_id,)
            )
            if not changed:
                return False
            await db.update(
                "payments",
                {
                    "status": "success",
                    "transaction_id": transaction_id,
                    "payment_data": json.dumps(payment_data, ensure_ascii=False, default=str) if payment_data else None,
                    "paid_at": now,
                    "updated_at": now,
                },
                "order_id = ?",
                (order_id,)
            )
            await CommissionManager.confirm_for_order(db, order_id)

        logger.info(f"[PAYMENT] Order {order['order_number']} paid, transaction {transaction_id}")
        await SystemLogger.info(
            db, "payment", "order_paid",
            f"Заказ {order['order_number']} оплачен",
            user_id=order["user_id"],
            metadata={"order_id": order_id, "transaction_id": transaction_id, "amount": order["total_amount"]}
        )
        return True

    @staticmethod
    async def fail_order_payment(
        db: DatabaseService,
        order_id: int,
        payment_data: Optional[Dict[str, Any]] = None,
        cancel_order: bool = False
    ) -> bool:
        """Отмечает платёж неуспешным. Заказ остаётся pending, если не cancel_order."""
        order = await db.fetch_one("SELECT * FROM orders WHERE id = ?", (order_id,))
        if not order or order["status"] != "pending":
            return False

        async with db.transaction():
            await db.update(
                "payments",
                {
                    "status": "failed",
                    "payment_data": json.dumps(payment_data, ensure_ascii=False, default=str) if payment_data else None,
                    "updated_at": db_now(),
                },
                "order_id = ? AND status != 'success'",
                (order_id,)
            )
            if cancel_order:
                await db.update(
                    "orders",
                    {"status": "cancelled", "cancelled_at": db_now(), "expires_at": None, "updated_at": db_now()},
                    "id = ? AND status = 'pending'",
                    (order_id,)
                )
                await CommissionManager.cancel_pending_for_order(db, order_id)

        logger.info(f"[PAYMENT] Payment failed for order {order['order_number']} (cancel={cancel_order})")
        await SystemLogger.warn(
            db, "payment", "payment_failed",
            f"Оплата заказа {order['order_number']} не прошла",
            user_id=order["user_id"],
            metadata={"order_id": order_id, "cancelled": cancel_order}
        )
        return True

    @staticmethod
    async def prepare_payment(db: DatabaseService, order: Dict[str, Any], payment_method: str) -> Dict[str, Any]:
        """Создаёт запись платежа или сбрасывает существующую в pending."""
        if payment_method == "paypal":
            amount, currency = convert_to_usd(order["total_amount"]), "USD"
        else:
            amount, currency = to_money(order["total_amount"]), "CNY"

        existing = await db.fetch_one("SELECT * FROM payments WHERE order_id = ?", (order["id"],))
        async with db.transaction():
            if existing:
                await db.update(
                    "payments",
                    {
                        "amount": float(amount),
                        "currency": currency,
                        "payment_method": payment_method,
                        "status": "pending",
                        "transaction_id": None,
                        "updated_at": db_now(),
                    },
                    "id = ?",
                    (existing["id"],)
                )
                payment_id = existing["id"]
            else:
                payment_id = await db.insert("payments", {
                    "order_id": order["id"],
                    "amount": float(amount),
                    "currency": currency,
                    "payment_method": payment_method,
                    "status": "pending",
                })
            await db.update(
                "orders",
                {"payment_method": payment_method, "updated_at": db_now()},
                "id = ?",
                (order["id"],)
            )
        return await db.fetch_one("SELECT * FROM payments WHERE id = ?", (payment_id,))
