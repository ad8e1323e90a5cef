"""
Сервис членства: покупка, проверка кода, применение скидки к заказу.
"""

import hashlib
import json
import logging
import secrets
import time
from datetime import timedelta
from decimal import Decimal
from typing import Any, Dict, Optional

from .commission import CommissionManager
from .database import DatabaseService, db_now, local_today, parse_db_time, to_db_time, to_money, utc_now


logger = logging.getLogger(__name__)

LIFETIME_DURATION = -1


class MembershipError(Exception):
    """Ошибка проверки членства. status_code подсказывает HTTP-ответ."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def generate_membership_code() -> str:
    """Первые 16 символов SHA-256 от случайного токена, в верхнем регистре."""
    token = f"{time.time_ns()}-{secrets.token_hex(16)}"
    return hashlib.sha256(token.encode("utf-8")).hexdigest()[:16].upper()


def generate_membership_order_number() -> str:
    return f"MEM-{int(time.time() * 1000)}-{secrets.token_hex(4).upper()}"


def calculate_membership_discount(items: list, discountable: int, discount_rate: float) -> Decimal:
    """
    Скидка на первые `discountable` единиц товара в порядке позиций.

    Для каждой единицы скидка равна price × (1 − discount_rate).
    """
    remaining = discountable
    multiplier = Decimal("1") - Decimal(str(discount_rate))
    total_discount = Decimal("0")
    for item in items:
        if remaining <= 0:
            break
        count = min(item["quantity"], remaining)
        total_discount += to_money(item["price"]) * count * multiplier
        remaining -= count
    return to_money(total_discount)


class MembershipService:
    """Операции над членствами."""

    @staticmethod
    async def purchase(db: DatabaseService, plan_id: int, user_id: Optional[int] = None) -> Dict[str, Any]:
        plan = await db.fetch_one("SELECT * FROM membership_plans WHERE id = ?", (plan_id,))
        if not plan or plan["status"] != "active":
            raise MembershipError("План членства не найден или отключён")

        start = utc_now()
        end = None
        if plan["duration"] != LIFETIME_DURATION:
            end = start + timedelta(days=plan["duration"])

        snapshot = {
            "name": plan["name"],
            "price": plan["price"],
            "duration": plan["duration"],
            "discount": plan["discount"],
            "daily_limit": plan["daily_limit"],
        }
        membership_id = await db.insert("memberships", {
            "membership_code": generate_membership_code(),
            "plan_id": plan["id"],
            "user_id": user_id,
            "plan_snapshot": json.dumps(snapshot, ensure_ascii=False),
            "purchase_price": plan["price"],
            "discount": plan["discount"],
            "daily_limit": plan["daily_limit"],
            "duration": plan["duration"],
            "start_date": to_db_time(start),
            "end_date": to_db_time(end) if end else None,
            "status": "active",
            "payment_status": "pending",
        })
        logger.info(f"[MEMBERSHIP] Membership #{membership_id} created for plan {plan['name']}")
        return await db.fetch_one("SELECT * FROM memberships WHERE id = ?", (membership_id,))

    @staticmethod
    async def mark_expired_if_needed(db: DatabaseService, membership: Dict[str, Any]) -> bool:
        """Помечает членство истёкшим, если дата окончания прошла."""
        end_date = parse_db_time(membership.get("end_date"))
        if end_date and utc_now() > end_date:
            if membership["status"] != "expired":
                await db.update(
                    "memberships",
                    {"status": "expired", "updated_at": db_now()},
                    "id = ?",
                    (membership["id"],)
                )
                membership["status"] = "expired"
            return True
        return False

    @staticmethod
    async def get_today_usage(db: DatabaseService, membership_id: int) -> int:
        return await db.fetch_value(
            "SELECT used_count FROM membership_usage WHERE membership_id = ? AND usage_date = ?",
            (membership_id, local_today().isoformat()),
            default=0
        )

    @staticmethod
    async def verify(db: DatabaseService, code: str) -> Dict[str, Any]:
        """Проверяет код и возвращает членство с остатком на сегодня."""
        membership = await db.fetch_one(
            "SELECT * FROM memberships WHERE membership_code = ?",
            (code.strip().upper(),)
        )
        if not membership:
            raise MembershipError("Код членства не найден", status_code=404)
        if membership["payment_status"] != "completed":
            raise MembershipError("Членство не оплачено")

        await MembershipService.mark_expired_if_needed(db, membership)

        used = await MembershipService.get_today_usage(db, membership["id"])
        membership["today_used"] = used
        membership["remaining_today"] = max(0, membership["daily_limit"] - used)
        membership["plan_snapshot"] = json.loads(membership["plan_snapshot"] or "{}")
        return membership

    @staticmethod
    async def apply_to_order(db: DatabaseService, order: Dict[str, Any], code: str) -> Dict[str, Any]:
        """
        Применяет скидку членства к неоплаченному заказу.

        Заказ, счётчик использования и неподтверждённая комиссия
        обновляются в одной транзакции.
        """
        if order["status"] != "pending":
            raise MembershipError("Скидку можно применить только к неоплаченному заказу")
        if order.get("membership_id"):
            raise MembershipError("К заказу уже применено членство")

        membership = await db.fetch_one(
            "SELECT * FROM memberships WHERE membership_code = ?",
            (code.strip().upper(),)
        )
        if not membership:
            raise MembershipError("Код членства не найден", status_code=404)

        if await MembershipService.mark_expired_if_needed(db, membership):
            raise MembershipError("Срок действия членства истёк")
        if membership["status"] != "active":
            raise MembershipError("Членство неактивно")
        if membership["payment_status"] != "completed":
            raise MembershipError("Членство не оплачено")

        usage_date = local_today().isoformat()
        used = await MembershipService.get_today_usage(db, membership["id"])
        remaining_today = max(0, membership["daily_limit"] - used)
        if remaining_today == 0:
            raise MembershipError("Лимит скидок на сегодня исчерпан")

        items = await db.fetch_all(
            "SELECT * FROM order_items WHERE order_id = ? ORDER BY id",
            (order["id"],)
        )
        total_items = sum(item["quantity"] for item in items)
        discountable = min(total_items, remaining_today)

        original_amount = to_money(sum(
            (to_money(item["price"]) * item["quantity"] for item in items),
            Decimal("0")
        ))
        discount = calculate_membership_discount(items, discountable, membership["discount"])
        new_total = to_money(original_amount - discount)

        async with db.transaction():
            changed = await db.update(
                "orders",
                {
                    "membership_id": membership["id"],
                    "original_amount": float(original_amount),
                    "discount": float(discount),
                    "total_amount": float(new_total),
                    "updated_at": db_now(),
                },
                "id = ? AND status = 'pending' AND membership_id IS NULL",
                (order["id"],)
            )
            if not changed:
                raise MembershipError("Статус заказа изменился")
            await db.execute(
                """INSERT INTO membership_usage (membership_id, usage_date, used_count)
                   VALUES (?, ?, ?)
                   ON CONFLICT(membership_id, usage_date)
                   DO UPDATE SET used_count = used_count + excluded.used_count,
                                 updated_at = CURRENT_TIMESTAMP""",
                (membership["id"], usage_date, discountable)
            )
            await CommissionManager.recalculate_pending(db, order["id"], new_total)

        logger.info(
            f"[MEMBERSHIP] Applied {membership['membership_code']} to order {order['order_number']}: "
            f"-¥{discount} on {discountable} items"
        )
        updated = await db.fetch_one("SELECT * FROM orders WHERE id = ?", (order["id"],))
        return {
            "order": updated,
            "applied_discount": {
                "discount_rate": membership["discount"],
                "original_amount": float(original_amount),
                "final_amount": float(new_total),
                "saved": float(discount),
                "discountable_count": discountable,
            },
        }

    @staticmethod
    async def complete_payment(
        db: DatabaseService,
        membership: Dict[str, Any],
        payment_method: Optional[str] = None
    ) -> Dict[str, Any]:
        """Отмечает членство оплаченным (идемпотентно)."""
        if membership["payment_status"] == "completed":
            return membership
        await db.update(
            "memberships",
            {
                "payment_status": "completed",
                "payment_method": payment_method,
                "paid_at": db_now(),
                "order_number": membership.get("order_number") or generate_membership_order_number(),
                "updated_at": db_now(),
            },
            "id = ?",
            (membership["id"],)
        )
        logger.info(f"[MEMBERSHIP] Membership #{membership['id']} paid via {payment_method}")
        return await db.fetch_one("SELECT * FROM memberships WHERE id = ?", (membership["id"],))

    @staticmethod
    async def fail_payment(db: DatabaseService, membership: Dict[str, Any]) -> Dict[str, Any]:
        if membership["payment_status"] != "completed":
            await db.update(
                "memberships",
                {"payment_status": "failed", "updated_at": db_now()},
                "id = ?",
                (membership["id"],)
            )
        return await db.fetch_one("SELECT * FROM memberships WHERE id = ?", (membership["id"],))
