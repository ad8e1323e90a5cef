"""
Сервис комиссий дистрибьюторов.

Жизненный цикл записи distribution_orders:
pending (заказ создан) -> confirmed (заказ оплачен, комиссия в pending_commission)
-> settled (после периода охлаждения, комиссия в available_balance).
Отмена или возврат заказа переводят запись в cancelled/refunded.
"""

import logging
from datetime import timedelta
from decimal import Decimal
from typing import Any, Dict, Optional

from .database import DatabaseService, db_now, to_money
from .security_alerts import SecurityAlertService
from .system_config import ConfigService


logger = logging.getLogger(__name__)

# Тестовые аккаунты: период охлаждения 0 дней (совпадение по префиксу email)
TEST_USERS = ("test001", "test002")
DEFAULT_COOLDOWN_DAYS = 15


def is_test_email(email: Optional[str]) -> bool:
    """Проверяет, принадлежит ли email тестовому пользователю."""
    if not email or "@" not in email:
        return False
    return email.split("@")[0] in TEST_USERS


def calculate_commission(amount: Any, rate: Any) -> Decimal:
    """Комиссия = сумма × ставка, с округлением до 0.01."""
    return to_money(to_money(amount) * Decimal(str(rate)))


class CommissionManager:
    """Учёт комиссий и балансов дистрибьюторов."""

    @staticmethod
    async def get_active_distributor(db: DatabaseService, code: Optional[str]) -> Optional[Dict[str, Any]]:
        """Возвращает активного дистрибьютора по коду."""
        if not code:
            return None
        return await db.fetch_one(
            "SELECT * FROM distributors WHERE code = ? AND status = 'active'",
            (code.strip().upper(),)
        )

    @staticmethod
    async def create_referral(
        db: DatabaseService,
        order_id: int,
        order_amount: Any,
        code: Optional[str],
        buyer_id: Optional[int]
    ) -> Optional[Dict[str, Any]]:
        """
        Создаёт запись о реферальном заказе.

        Возвращает None, если код не найден, дистрибьютор неактивен
        или покупатель сам является этим дистрибьютором.
        """
        distributor = await CommissionManager.get_active_distributor(db, code)
        if not distributor:
            return None
        if buyer_id is not None and distributor["user_id"] == buyer_id:
            logger.info(f"[COMMISSION] Self-referral ignored for order {order_id}")
            return None

        rate = distributor["commission_rate"]
        commission = calculate_commission(order_amount, rate)
        record_id = await db.insert("distribution_orders", {
            "order_id": order_id,
            "distributor_id": distributor["id"],
            "order_amount": float(to_money(order_amount)),
            "commission_rate": rate,
            "commission_amount": float(commission),
            "status": "pending",
        })

        # Последний неконвертированный клик дистрибьютора отмечается заказом
        await db.execute(
            """UPDATE distribution_clicks SET converted = 1, order_id = ?
               WHERE id = (
                   SELECT id FROM distribution_clicks
                   WHERE distributor_id = ? AND converted = 0
                   ORDER BY clicked_at DESC, id DESC LIMIT 1
               )""",
            (order_id, distributor["id"])
        )
        await db.commit()

        return await db.fetch_one("SELECT * FROM distribution_orders WHERE id = ?", (record_id,))

    @staticmethod
    async def confirm_for_order(db: DatabaseService, order_id: int) -> Optional[Dict[str, Any]]:
        """
        Подтверждает комиссию после оплаты заказа.

        Вызывается внутри транзакции оплаты.
        """
        record = await db.fetch_one(
            "SELECT * FROM distribution_orders WHERE order_id = ? AND status = 'pending'",
            (order_id,)
        )
        if not record:
            return None

        commission = float(to_money(record["commission_amount"]))
        await db.update(
            "distribution_orders",
            {"status": "confirmed", "confirmed_at": db_now(), "updated_at": db_now()},
            "id = ?",
            (record["id"],)
        )
        await db.execute(
            """UPDATE distributors SET
                   total_earnings = ROUND(total_earnings + ?, 2),
                   pending_commission = ROUND(pending_commission + ?, 2),
                   total_orders = total_orders + 1,
                   updated_at = ?
               WHERE id = ?""",
            (commission, commission, db_now(), record["distributor_id"])
        )
        await db.commit()
        logger.info(f"[COMMISSION] Confirmed ¥{commission:.2f} for order {order_id}")
        return record

    @staticmethod
    async def cancel_pending_for_order(db: DatabaseService, order_id: int) -> int:
        """Отменяет неподтверждённую комиссию (заказ отменён до оплаты)."""
        return await db.update(
            "distribution_orders",
            {"status": "cancelled", "updated_at": db_now()},
            "order_id = ? AND status = 'pending'",
            (order_id,)
        )

    @staticmethod
    async def recalculate_pending(db: DatabaseService, order_id: int, new_amount: Any) -> Optional[Decimal]:
        """Пересчитывает неподтверждённую комиссию после изменения суммы заказа."""
        record = await db.fetch_one(
            "SELECT * FROM distribution_orders WHERE order_id = ? AND status = 'pending'",
            (order_id,)
        )
        if not record:
            return None
        commission = calculate_commission(new_amount, record["commission_rate"])
        await db.update(
            "distribution_orders",
            {
                "order_amount": float(to_money(new_amount)),
                "commission_amount": float(commission),
                "updated_at": db_now(),
            },
            "id = ?",
            (record["id"],)
        )
        return commission

    @staticmethod
    async def reverse_for_refund(db: DatabaseService, order: Dict[str, Any]) -> Optional[str]:
        """
        Сторнирует комиссию при возврате заказа.

        Вызывается внутри транзакции возврата. Возвращает новый статус
        записи distribution_orders или None, если записи нет.
        """
        record = await db.fetch_one(
            "SELECT * FROM distribution_orders WHERE order_id = ?",
            (order["id"],)
        )
        if not record:
            return None

        commission = to_money(record["commission_amount"])
        now = db_now()

        if record["status"] == "confirmed":
            await db.update(
                "distribution_orders",
                {"status": "cancelled", "updated_at": now},
                "id = ?",
                (record["id"],)
            )
            await db.execute(
                """UPDATE distributors SET
                       total_earnings = ROUND(total_earnings - ?, 2),
                       pending_commission = ROUND(pending_commission - ?, 2),
                       total_orders = MAX(total_orders - 1, 0),
                       updated_at = ?
                   WHERE id = ?""",
                (float(commission), float(commission), now, record["distributor_id"])
            )
            logger.info(f"[COMMISSION] Reversed confirmed commission for order {order['order_number']}")
            return "cancelled"

        if record["status"] == "settled":
            distributor = await db.fetch_one(
                "SELECT * FROM distributors WHERE id = ?",
                (record["distributor_id"],)
            )
            balance = to_money(distributor["available_balance"]) if distributor else Decimal("0.00")

            if balance >= commission:
                await db.update(
                    "distribution_orders",
                    {"status": "refunded", "updated_at": now},
                    "id = ?",
                    (record["id"],)
                )
                await db.execute(
                    """UPDATE distributors SET
                           total_earnings = ROUND(total_earnings - ?, 2),
                           available_balance = ROUND(available_balance - ?, 2),
                           total_orders = MAX(total_orders - 1, 0),
                           updated_at = ?
                       WHERE id = ?""",
                    (float(commission), float(commission), now, record["distributor_id"])
                )
                logger.info(f"[COMMISSION] Clawed back settled commission for order {order['order_number']}")
                return "refunded"

            # Баланса не хватает: запись отменяется, баланс не трогаем
            shortage = commission - balance
            await db.update(
                "distribution_orders",
                {"status": "cancelled", "updated_at": now},
                "id = ?",
                (record["id"],)
            )
            await SecurityAlertService.create_alert(
                db,
                alert_type="REFUND_COMMISSION_SHORTAGE",
                severity="high",
                description=(
                    f"Возврат заказа {order['order_number']}: комиссия ¥{commission} "
                    f"не может быть списана, баланс ¥{balance}, недостача ¥{shortage}"
                ),
                user_id=distributor["user_id"] if distributor else None,
                metadata={
                    "order_id": order["id"],
                    "order_number": order["order_number"],
                    "distributor_id": record["distributor_id"],
                    "commission": float(commission),
                    "available_balance": float(balance),
                    "shortage": float(shortage),
                }
            )
            logger.warning(f"[COMMISSION] Commission shortage ¥{shortage} for order {order['order_number']}")
            return "cancelled"

        if record["status"] == "pending":
            await db.update(
                "distribution_orders",
                {"status": "cancelled", "updated_at": now},
                "id = ?",
                (record["id"],)
            )
            return "cancelled"

        return record["status"]

    @staticmethod
    async def settle_due_commissions(db: DatabaseService) -> Dict[str, Any]:
        """
        Начисляет на баланс комиссии, у которых истёк период охлаждения.

        Каждая запись начисляется в отдельной транзакции; ошибка по одной
        записи не останавливает остальные.
        """
        cooldown_days = await ConfigService.get_value(
            db, "commission_settlement_cooldown_days", DEFAULT_COOLDOWN_DAYS
        )
        deadline = db_now(-timedelta(days=int(cooldown_days)))

        candidates = await db.fetch_all(
            """SELECT dor.*, o.order_number, o.status AS order_status, u.email AS distributor_email
               FROM distribution_orders dor
               JOIN orders o ON o.id = dor.order_id
               JOIN distributors d ON d.id = dor.distributor_id
               LEFT JOIN users u ON u.id = d.user_id
               WHERE dor.status = 'confirmed'
               ORDER BY dor.confirmed_at""",
        )

        settled = 0
        skipped = 0
        failed = 0
        errors = []

        for record in candidates:
            is_test = is_test_email(record["distributor_email"])
            if not is_test and (record["confirmed_at"] or "") > deadline:
                continue
            if record["order_status"] != "paid":
                # Заказ возвращён или отменён после подтверждения
                logger.warning(
                    f"[COMMISSION] Order {record['order_number']} is {record['order_status']}, skipping settlement"
                )
                skipped += 1
                continue

            try:
                async with db.transaction():
                    commission = float(to_money(record["commission_amount"]))
                    changed = await db.update(
                        "distribution_orders",
                        {"status": "settled", "settled_at": db_now(), "updated_at": db_now()},
                        "id = ? AND status = 'confirmed'",
                        (record["id"],)
                    )
                    if not changed:
                        raise RuntimeError("distribution order changed concurrently")
                    await db.execute(
                        """UPDATE distributors SET
                               pending_commission = ROUND(pending_commission - ?, 2),
                               available_balance = ROUND(available_balance + ?, 2),
                               updated_at = ?
                           WHERE id = ?""",
                        (commission, commission, db_now(), record["distributor_id"])
                    )
                settled += 1
                label = " [test user]" if is_test else ""
                logger.info(f"[COMMISSION] Settled {record['order_number']}: ¥{commission:.2f}{label}")
            except Exception as e:
                failed += 1
                errors.append({"order_number": record["order_number"], "error": str(e)})
                logger.error(f"[COMMISSION] Settlement failed for {record['order_number']}: {e}")

        return {
            "settled": settled,
            "skipped": skipped,
            "failed": failed,
            "errors": errors,
        }

    @staticmethod
    async def recalculate_distributor_stats(db: DatabaseService, distributor_id: int) -> Dict[str, float]:
        """Пересчитывает балансы дистрибьютора по заказам и выводам."""
        orders = await db.fetch_all(
            "SELECT status, commission_amount FROM distribution_orders WHERE distributor_id = ?",
            (distributor_id,)
        )
        withdrawals = await db.fetch_all(
            "SELECT status, amount FROM commission_withdrawals WHERE distributor_id = ?",
            (distributor_id,)
        )

        total_earnings = Decimal("0")
        pending_commission = Decimal("0")
        available_balance = Decimal("0")
        withdrawn_amount = Decimal("0")
        total_orders = 0

        for order in orders:
            amount = to_money(order["commission_amount"])
            if order["status"] in ("confirmed", "settled"):
                total_earnings += amount
                total_orders += 1
            if order["status"] == "confirmed":
                pending_commission += amount
            if order["status"] == "settled":
                available_balance += amount

        for withdrawal in withdrawals:
            amount = to_money(withdrawal["amount"])
            if withdrawal["status"] in ("pending", "processing"):
                available_balance -= amount
            elif withdrawal["status"] == "completed":
                withdrawn_amount += amount
                available_balance -= amount

        stats = {
            "total_earnings": float(total_earnings),
            "pending_commission": float(pending_commission),
            "available_balance": float(available_balance),
            "withdrawn_amount": float(withdrawn_amount),
            "total_orders": total_orders,
        }
        await db.update(
            "distributors",
            {**stats, "updated_at": db_now()},
            "id = ?",
            (distributor_id,)
        )
        return stats
