"""
API Routes для партнёрской программы (кабинет дистрибьютора).
"""

import json
import logging
import secrets
from datetime import timedelta
from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from typing import Optional

from ..models.distribution import DistributorApply, DistributorUpdate, TrackClick, WithdrawalCreate
from ..models.user import User
from ..services.commission import CommissionManager
from ..services.database import DatabaseService, get_db, db_now, to_money
from ..services.rate_limiter import get_client_ip
from ..services.security_alerts import SecurityAlertService
from ..services.system_config import ConfigService
from ..services.telegram_notifier import TelegramNotifier
from ..services.withdrawal_risk import (
    WithdrawalRiskChecker,
    WithdrawalValidationError,
    get_withdrawal_config,
    validate_withdrawal_basics,
)
from .auth import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter()

DIST_COOKIE_NAME = "dist_code"
DIST_COOKIE_MAX_AGE = 7 * 24 * 60 * 60

APPLY_STATUS_MESSAGES = {
    "pending": "Ваша заявка уже на рассмотрении",
    "active": "Вы уже являетесь дистрибьютором",
    "suspended": "Ваш аккаунт дистрибьютора приостановлен, обратитесь в поддержку",
}

BANK_FIELDS = ("bank_name", "bank_account", "bank_account_name")


def mask_account(account: Optional[str]) -> Optional[str]:
    """Оставляет видимыми последние 4 цифры счёта."""
    if not account:
        return account
    return f"****{account[-4:]}"


async def _generate_code(db: DatabaseService) -> str:
    while True:
        code = secrets.token_hex(4).upper()
        if not await db.fetch_one("SELECT id FROM distributors WHERE code = ?", (code,)):
            return code


async def get_current_distributor(
    current_user: User = Depends(get_current_user),
    db: DatabaseService = Depends(get_db)
) -> dict:
    distributor = await db.fetch_one(
        "SELECT * FROM distributors WHERE user_id = ?", (current_user.id,)
    )
    if not distributor:
        raise HTTPException(status_code=404, detail="Вы не являетесь дистрибьютором")
    return distributor


@router.post("/apply", status_code=201)
async def apply_distributor(
    data: DistributorApply,
    current_user: User = Depends(get_current_user),
    db: DatabaseService = Depends(get_db)
):
    """Заявка на участие в партнёрской программе."""
    existing = await db.fetch_one(
        "SELECT * FROM distributors WHERE user_id = ?", (current_user.id,)
    )
    if existing:
        if existing["status"] == "rejected":
            reason = existing["reject_reason"] or "причина не указана"
            raise HTTPException(status_code=400, detail=f"Ваша заявка отклонена: {reason}")
        raise HTTPException(
            status_code=400,
            detail=APPLY_STATUS_MESSAGES.get(existing["status"], "Заявка уже существует")
        )

    rate = await ConfigService.get_value(db, "distribution_default_commission_rate", 0.1)
    values = data.model_dump()
    values.update({
        "user_id": current_user.id,
        "code": await _generate_code(db),
        "status": "pending",
        "commission_rate": float(rate),
    })
    if any(values.get(field) for field in BANK_FIELDS):
        values["last_bank_info_update"] = db_now()

    distributor_id = await db.insert("distributors", values)
    logger.info(f"[DISTRIBUTION] User #{current_user.id} applied as distributor #{distributor_id}")

    distributor = await db.fetch_one("SELECT * FROM distributors WHERE id = ?", (distributor_id,))
    return {"distributor": distributor, "message": "Заявка отправлена на рассмотрение"}


@router.get("/info")
async def get_distributor_info(distributor: dict = Depends(get_current_distributor)):
    return {"distributor": distributor}


@router.put("/info")
async def update_distributor_info(
    data: DistributorUpdate,
    distributor: dict = Depends(get_current_distributor),
    db: DatabaseService = Depends(get_db)
):
    """Обновляет контакты и реквизиты. Смена реквизитов фиксируется."""
    update_data = data.model_dump(exclude_unset=True)
    if not update_data:
        return {"distributor": distributor}

    if any(field in update_data and update_data[field] != distributor[field] for field in BANK_FIELDS):
        update_data["last_bank_info_update"] = db_now()
        logger.info(f"[DISTRIBUTION] Distributor #{distributor['id']} changed bank info")

    update_data["updated_at"] = db_now()
    await db.update("distributors", update_data, "id = ?", (distributor["id"],))
    updated = await db.fetch_one("SELECT * FROM distributors WHERE id = ?", (distributor["id"],))
    return {"distributor": updated, "message": "Данные обновлены"}


# ==================== Переходы ====================

@router.post("/track")
async def track_click(
    data: TrackClick,
    request: Request,
    response: Response,
    db: DatabaseService = Depends(get_db)
):
    """Фиксирует переход по партнёрской ссылке и ставит cookie на 7 дней."""
    distributor = await CommissionManager.get_active_distributor(db, data.code)
    if not distributor:
        raise HTTPException(status_code=404, detail="Код дистрибьютора не найден")

    async with db.transaction():
        await db.insert("distribution_clicks", {
            "distributor_id": distributor["id"],
            "product_id": data.product_id,
            "visitor_id": data.visitor_id,
            "ip_address": get_client_ip(request),
            "user_agent": request.headers.get("user-agent"),
            "referer": request.headers.get("referer"),
        })
        await db.execute(
            "UPDATE distributors SET total_clicks = total_clicks + 1 WHERE id = ?",
            (distributor["id"],)
        )

    response.set_cookie(
        DIST_COOKIE_NAME,
        distributor["code"],
        max_age=DIST_COOKIE_MAX_AGE,
        httponly=True,
        samesite="lax",
    )
    return {"success": True, "code": distributor["code"]}


@router.get("/track")
async def validate_code(
    code: str = Query(..., min_length=1),
    db: DatabaseService = Depends(get_db)
):
    """Проверяет, что код принадлежит активному дистрибьютору."""
    distributor = await CommissionManager.get_active_distributor(db, code)
    return {"valid": distributor is not None, "code": code.strip().upper()}


# ==================== Статистика ====================

@router.get("/stats")
async def get_stats(
    type: str = Query("overview", pattern="^(overview|orders|clicks)$"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    days: int = Query(30, ge=1, le=365),
    distributor: dict = Depends(get_current_distributor),
    db: DatabaseService = Depends(get_db)
):
    """Статистика дистрибьютора: сводка, заказы или переходы."""
    distributor_id = distributor["id"]
    since = db_now(-timedelta(days=days))

    if type == "orders":
        total = await db.count("distribution_orders", "distributor_id = ?", (distributor_id,))
        orders = await db.fetch_all(
            """SELECT dor.*, o.order_number, o.status as order_status
               FROM distribution_orders dor
               JOIN orders o ON o.id = dor.order_id
               WHERE dor.distributor_id = ?
               ORDER BY dor.created_at DESC, dor.id DESC
               LIMIT ? OFFSET ?""",
            (distributor_id, limit, (page - 1) * limit)
        )
        return {"orders": orders, "pagination": {"page": page, "limit": limit, "total": total}}

    if type == "clicks":
        total = await db.count(
            "distribution_clicks", "distributor_id = ? AND clicked_at >= ?", (distributor_id, since)
        )
        clicks = await db.fetch_all(
            """SELECT id, product_id, visitor_id, referer, converted, order_id, clicked_at
               FROM distribution_clicks
               WHERE distributor_id = ? AND clicked_at >= ?
               ORDER BY clicked_at DESC, id DESC
               LIMIT ? OFFSET ?""",
            (distributor_id, since, limit, (page - 1) * limit)
        )
        return {"clicks": clicks, "pagination": {"page": page, "limit": limit, "total": total}}

    period = await db.fetch_one(
        """SELECT COUNT(*) as clicks,
                  COALESCE(SUM(converted), 0) as conversions
           FROM distribution_clicks
           WHERE distributor_id = ? AND clicked_at >= ?""",
        (distributor_id, since)
    )
    by_status = await db.fetch_all(
        """SELECT status, COUNT(*) as count, COALESCE(SUM(commission_amount), 0) as amount
           FROM distribution_orders
           WHERE distributor_id = ?
           GROUP BY status""",
        (distributor_id,)
    )
    clicks = period["clicks"]
    return {
        "overview": {
            "code": distributor["code"],
            "status": distributor["status"],
            "commission_rate": distributor["commission_rate"],
            "total_earnings": distributor["total_earnings"],
            "available_balance": distributor["available_balance"],
            "pending_commission": distributor["pending_commission"],
            "withdrawn_amount": distributor["withdrawn_amount"],
            "total_orders": distributor["total_orders"],
            "total_clicks": distributor["total_clicks"],
        },
        "period": {
            "days": days,
            "clicks": clicks,
            "conversions": period["conversions"],
            "conversion_rate": round(period["conversions"] / clicks * 100, 2) if clicks else 0,
        },
        "commissions": {
            row["status"]: {"count": row["count"], "amount": round(float(row["amount"]), 2)}
            for row in by_status
        },
    }


# ==================== Вывод средств ====================

def _present_withdrawal(withdrawal: dict) -> dict:
    withdrawal["bank_account"] = mask_account(withdrawal.get("bank_account"))
    if isinstance(withdrawal.get("risk_reasons"), str):
        withdrawal["risk_reasons"] = json.loads(withdrawal["risk_reasons"] or "[]")
    return withdrawal


@router.get("/withdrawals")
async def get_withdrawals(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    distributor: dict = Depends(get_current_distributor),
    db: DatabaseService = Depends(get_db)
):
    total = await db.count("commission_withdrawals", "distributor_id = ?", (distributor["id"],))
    withdrawals = await db.fetch_all(
        """SELECT * FROM commission_withdrawals
           WHERE distributor_id = ?
           ORDER BY created_at DESC, id DESC
           LIMIT ? OFFSET ?""",
        (distributor["id"], limit, (page - 1) * limit)
    )
    return {
        "withdrawals": [_present_withdrawal(w) for w in withdrawals],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": (total + limit - 1) // limit,
        },
    }


@router.post("/withdrawals", status_code=201)
async def create_withdrawal(
    data: WithdrawalCreate,
    request: Request,
    current_user: User = Depends(get_current_user),
    distributor: dict = Depends(get_current_distributor),
    db: DatabaseService = Depends(get_db)
):
    """Заявка на вывод с оценкой риска."""
    amount = to_money(data.amount)

    if not (distributor["bank_name"] and distributor["bank_account"] and distributor["bank_account_name"]):
        raise HTTPException(status_code=400, detail="Сначала заполните банковские реквизиты")
    if distributor["status"] != "active":
        raise HTTPException(status_code=400, detail="Аккаунт дистрибьютора не активен")
    if distributor["is_frozen"]:
        raise HTTPException(status_code=400, detail="Аккаунт заморожен, вывод невозможен")

    try:
        await validate_withdrawal_basics(db, float(amount), distributor["id"])
    except WithdrawalValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if to_money(distributor["available_balance"]) < amount:
        raise HTTPException(status_code=400, detail="Недостаточно средств на балансе")

    config = await get_withdrawal_config(db)
    fee = to_money(amount * to_money(config["withdrawal_fee_rate"]))
    actual = to_money(amount - fee)
    risk = await WithdrawalRiskChecker.check(db, float(amount), distributor)
    status = "processing" if risk.can_auto_approve else "pending"
    now = db_now()

    async with db.transaction():
        changed = await db.execute(
            """UPDATE distributors
               SET available_balance = ROUND(available_balance - ?, 2),
                   first_withdrawal_at = COALESCE(first_withdrawal_at, ?),
                   updated_at = ?
               WHERE id = ? AND available_balance >= ?""",
            (float(amount), now, now, distributor["id"], float(amount))
        )
        if changed.rowcount == 0:
            raise HTTPException(status_code=400, detail="Недостаточно средств на балансе")

        withdrawal_id = await db.insert("commission_withdrawals", {
            "distributor_id": distributor["id"],
            "amount": float(amount),
            "fee": float(fee),
            "actual_amount": float(actual),
            "status": status,
            "bank_name": distributor["bank_name"],
            "bank_account": distributor["bank_account"],
            "bank_account_name": distributor["bank_account_name"],
            "risk_score": int(risk.risk_score),
            "risk_level": risk.risk_level,
            "risk_reasons": json.dumps(risk.reasons, ensure_ascii=False),
            "processed_at": now if status == "processing" else None,
        })

    logger.info(
        f"[DISTRIBUTION] Withdrawal #{withdrawal_id} ¥{amount} by distributor #{distributor['id']} "
        f"({status}, risk {risk.risk_level}/{risk.risk_score})"
    )

    if risk.should_alert:
        await SecurityAlertService.create_alert(
            db,
            "HIGH_RISK_WITHDRAWAL",
            "high",
            f"Заявка на вывод ¥{amount} с высоким риском ({int(risk.risk_score)})",
            user_id=current_user.id,
            ip_address=get_client_ip(request),
            user_agent=request.headers.get("user-agent"),
            metadata={"withdrawal_id": withdrawal_id, **risk.to_dict()},
        )

    await TelegramNotifier.send_withdrawal_request(
        withdrawal_id, distributor["code"], float(amount), risk.risk_level, int(risk.risk_score)
    )

    withdrawal = await db.fetch_one("SELECT * FROM commission_withdrawals WHERE id = ?", (withdrawal_id,))
    message = "Заявка одобрена автоматически" if status == "processing" else "Заявка отправлена на проверку"
    return {"withdrawal": _present_withdrawal(withdrawal), "risk": risk.to_dict(), "message": message}
