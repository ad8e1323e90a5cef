"""
API Routes для управления партнёрской программой в админке.
"""

import json
import logging
from fastapi import APIRouter, Depends, HTTPException, Query
from typing import Optional

from ..models.distribution import DistributorApprove, ReasonBody, WithdrawalComplete
from ..models.system_config import WithdrawalConfigUpdate
from ..models.user import User
from ..services.database import DatabaseService, get_db, db_now
from ..services.system_config import (
    ConfigService,
    ConfigValueError,
    WITHDRAWAL_CONFIGS,
    parse_config_value,
    stringify_config_value,
)
from ..services.withdrawal_risk import get_withdrawal_config
from .auth import require_read, require_write

logger = logging.getLogger(__name__)

router = APIRouter()

MIN_SETTLEMENT_COOLDOWN_DAYS = 7
_WITHDRAWAL_CONFIG_META = {key: (value_type, category, description)
                           for key, _value, value_type, category, description in WITHDRAWAL_CONFIGS}


def _pagination(page: int, limit: int, total: int) -> dict:
    return {"page": page, "limit": limit, "total": total, "total_pages": (total + limit - 1) // limit}


# ==================== Дистрибьюторы ====================

@router.get("/distribution/distributors")
async def list_distributors(
    status: Optional[str] = Query(None, pattern="^(pending|active|rejected|suspended)$"),
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(require_read("DISTRIBUTION")),
    db: DatabaseService = Depends(get_db)
):
    conditions = []
    params: list = []
    if status:
        conditions.append("d.status = ?")
        params.append(status)
    if search:
        conditions.append(
            "(d.code LIKE ? OR casefold(d.contact_name) LIKE ? OR casefold(d.contact_email) LIKE ? OR casefold(u.email) LIKE ?)"
        )
        params.extend([f"%{search.casefold()}%"] * 4)
    where_clause = " AND ".join(conditions) if conditions else "1=1"

    total = await db.fetch_value(
        f"SELECT COUNT(*) FROM distributors d LEFT JOIN users u ON u.id = d.user_id WHERE {where_clause}",
        tuple(params),
        default=0
    )
    distributors = await db.fetch_all(
        f"""SELECT d.*, u.name as user_name, u.email as user_email
            FROM distributors d
            LEFT JOIN users u ON u.id = d.user_id
            WHERE {where_clause}
            ORDER BY d.created_at DESC, d.id DESC
            LIMIT ? OFFSET ?""",
        tuple(params) + (limit, (page - 1) * limit)
    )
    return {"distributors": distributors, "pagination": _pagination(page, limit, total)}


async def _get_distributor_or_404(db: DatabaseService, distributor_id: int) -> dict:
    distributor = await db.fetch_one("SELECT * FROM distributors WHERE id = ?", (distributor_id,))
    if not distributor:
        raise HTTPException(status_code=404, detail="Дистрибьютор не найден")
    return distributor


async def _update_distributor(db: DatabaseService, distributor_id: int, data: dict) -> dict:
    data["updated_at"] = db_now()
    await db.update("distributors", data, "id = ?", (distributor_id,))
    return await db.fetch_one("SELECT * FROM distributors WHERE id = ?", (distributor_id,))


@router.post("/distribution/distributors/{distributor_id}/approve")
async def approve_distributor(
    distributor_id: int,
    data: DistributorApprove,
    admin: User = Depends(require_write("DISTRIBUTION")),
    db: DatabaseService = Depends(get_db)
):
    distributor = await _get_distributor_or_404(db, distributor_id)
    if distributor["status"] != "pending":
        raise HTTPException(status_code=400, detail="Можно одобрить только заявку на рассмотрении")

    update = {"status": "active", "approved_at": db_now(), "approved_by": admin.id, "reject_reason": None}
    if data.commission_rate is not None:
        update["commission_rate"] = data.commission_rate
    updated = await _update_distributor(db, distributor_id, update)
    logger.info(f"[DISTRIBUTION] Distributor #{distributor_id} approved by #{admin.id}")
    return {"distributor": updated, "message": "Заявка одобрена"}


@router.post("/distribution/distributors/{distributor_id}/reject")
async def reject_distributor(
    distributor_id: int,
    data: ReasonBody,
    admin: User = Depends(require_write("DISTRIBUTION")),
    db: DatabaseService = Depends(get_db)
):
    distributor = await _get_distributor_or_404(db, distributor_id)
    if distributor["status"] != "pending":
        raise HTTPException(status_code=400, detail="Можно отклонить только заявку на рассмотрении")
    updated = await _update_distributor(db, distributor_id, {"status": "rejected", "reject_reason": data.reason})
    return {"distributor": updated, "message": "Заявка отклонена"}


@router.post("/distribution/distributors/{distributor_id}/freeze")
async def freeze_distributor(
    distributor_id: int,
    data: ReasonBody,
    admin: User = Depends(require_write("DISTRIBUTION")),
    db: DatabaseService = Depends(get_db)
):
    await _get_distributor_or_404(db, distributor_id)
    updated = await _update_distributor(db, distributor_id, {"is_frozen": 1, "frozen_reason": data.reason})
    logger.warning(f"[DISTRIBUTION] Distributor #{distributor_id} frozen by #{admin.id}: {data.reason}")
    return {"distributor": updated, "message": "Аккаунт заморожен"}


@router.post("/distribution/distributors/{distributor_id}/unfreeze")
async def unfreeze_distributor(
    distributor_id: int,
    admin: User = Depends(require_write("DISTRIBUTION")),
    db: DatabaseService = Depends(get_db)
):
    await _get_distributor_or_404(db, distributor_id)
    updated = await _update_distributor(db, distributor_id, {"is_frozen": 0, "frozen_reason": None})
    return {"distributor": updated, "message": "Аккаунт разморожен"}


@router.post("/distribution/distributors/{distributor_id}/verify")
async def verify_distributor(
    distributor_id: int,
    admin: User = Depends(require_write("DISTRIBUTION")),
    db: DatabaseService = Depends(get_db)
):
    await _get_distributor_or_404(db, distributor_id)
    updated = await _update_distributor(db, distributor_id, {"is_verified": 1, "verified_at": db_now()})
    return {"distributor": updated, "message": "Дистрибьютор верифицирован"}


# ==================== Заявки на вывод ====================

@router.get("/distribution/withdrawals")
async def list_withdrawals(
    status: Optional[str] = Query(None, pattern="^(pending|processing|completed|rejected)$"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(require_read("DISTRIBUTION")),
    db: DatabaseService = Depends(get_db)
):
    where_clause = "w.status = ?" if status else "1=1"
    params = (status,) if status else ()

    total = await db.fetch_value(
        f"SELECT COUNT(*) FROM commission_withdrawals w WHERE {where_clause}", params, default=0
    )
    withdrawals = await db.fetch_all(
        f"""SELECT w.*, d.code as distributor_code, d.contact_name, u.email as user_email
            FROM commission_withdrawals w
            JOIN distributors d ON d.id = w.distributor_id
            LEFT JOIN users u ON u.id = d.user_id
            WHERE {where_clause}
            ORDER BY w.created_at DESC, w.id DESC
            LIMIT ? OFFSET ?""",
        params + (limit, (page - 1) * limit)
    )
    for withdrawal in withdrawals:
        withdrawal["risk_reasons"] = json.loads(withdrawal["risk_reasons"] or "[]")
    return {"withdrawals": withdrawals, "pagination": _pagination(page, limit, total)}


async def _get_withdrawal_or_404(db: DatabaseService, withdrawal_id: int) -> dict:
    withdrawal = await db.fetch_one("SELECT * FROM commission_withdrawals WHERE id = ?", (withdrawal_id,))
    if not withdrawal:
        raise HTTPException(status_code=404, detail="Заявка не найдена")
    return withdrawal


@router.post("/distribution/withdrawals/{withdrawal_id}/approve")
async def approve_withdrawal(
    withdrawal_id: int,
    admin: User = Depends(require_write("DISTRIBUTION")),
    db: DatabaseService = Depends(get_db)
):
    withdrawal = await _get_withdrawal_or_404(db, withdrawal_id)
    if withdrawal["status"] != "pending":
        raise HTTPException(status_code=400, detail="Можно одобрить только заявку в статусе pending")
    await db.update(
        "commission_withdrawals",
        {"status": "processing", "processed_by": admin.id, "processed_at": db_now(), "updated_at": db_now()},
        "id = ?",
        (withdrawal_id,)
    )
    logger.info(f"[DISTRIBUTION] Withdrawal #{withdrawal_id} approved by #{admin.id}")
    return {"withdrawal": await _get_withdrawal_or_404(db, withdrawal_id), "message": "Заявка одобрена"}


@router.post("/distribution/withdrawals/{withdrawal_id}/reject")
async def reject_withdrawal(
    withdrawal_id: int,
    data: ReasonBody,
    admin: User = Depends(require_write("DISTRIBUTION")),
    db: DatabaseService = Depends(get_db)
):
    """Отклоняет заявку и возвращает сумму на баланс."""
    withdrawal = await _get_withdrawal_or_404(db, withdrawal_id)
    if withdrawal["status"] != "pending":
        raise HTTPException(status_code=400, detail="Можно отклонить только заявку в статусе pending")

    async with db.transaction():
        await db.update(
            "commission_withdrawals",
            {
                "status": "rejected",
                "reject_reason": data.reason,
                "processed_by": admin.id,
                "processed_at": db_now(),
                "updated_at": db_now(),
            },
            "id = ?",
            (withdrawal_id,)
        )
        await db.execute(
            """UPDATE distributors
               SET available_balance = ROUND(available_balance + ?, 2), updated_at = ?
               WHERE id = ?""",
            (withdrawal["amount"], db_now(), withdrawal["distributor_id"])
        )

    return {"withdrawal": await _get_withdrawal_or_404(db, withdrawal_id), "message": "Заявка отклонена"}


@router.post("/distribution/withdrawals/{withdrawal_id}/complete")
async def complete_withdrawal(
    withdrawal_id: int,
    data: WithdrawalComplete,
    admin: User = Depends(require_write("DISTRIBUTION")),
    db: DatabaseService = Depends(get_db)
):
    """Отмечает выплату выполненной."""
    withdrawal = await _get_withdrawal_or_404(db, withdrawal_id)
    if withdrawal["status"] != "processing":
        raise HTTPException(status_code=400, detail="Завершить можно только заявку в обработке")

    async with db.transaction():
        await db.update(
            "commission_withdrawals",
            {
                "status": "completed",
                "transaction_id": data.transaction_id,
                "completed_at": db_now(),
                "updated_at": db_now(),
            },
            "id = ?",
            (withdrawal_id,)
        )
        await db.execute(
            """UPDATE distributors
               SET withdrawn_amount = ROUND(withdrawn_amount + ?, 2), updated_at = ?
               WHERE id = ?""",
            (withdrawal["amount"], db_now(), withdrawal["distributor_id"])
        )

    return {"withdrawal": await _get_withdrawal_or_404(db, withdrawal_id), "message": "Выплата завершена"}


# ==================== Настройки вывода ====================

async def _grouped_withdrawal_config(db: DatabaseService) -> dict:
    config = await get_withdrawal_config(db)
    grouped = {"basic": {}, "risk": {}}
    for key, value in config.items():
        group = "risk" if _WITHDRAWAL_CONFIG_META[key][1] == "withdrawal_risk" else "basic"
        grouped[group][key] = value
    return grouped


@router.get("/withdrawal-config")
async def get_withdrawal_config_route(
    current_user: User = Depends(require_write("DISTRIBUTION")),
    db: DatabaseService = Depends(get_db)
):
    return await _grouped_withdrawal_config(db)


@router.put("/withdrawal-config")
async def update_withdrawal_config(
    data: WithdrawalConfigUpdate,
    admin: User = Depends(require_write("DISTRIBUTION")),
    db: DatabaseService = Depends(get_db)
):
    """Обновляет настройки вывода одной транзакцией."""
    prepared = []
    for key, raw_value in data.configs.items():
        if key not in _WITHDRAWAL_CONFIG_META:
            raise HTTPException(status_code=400, detail=f"Неизвестная настройка: {key}")
        value_type = _WITHDRAWAL_CONFIG_META[key][0]
        value = stringify_config_value(raw_value, value_type)
        if key == "commission_settlement_cooldown_days":
            try:
                cooldown = parse_config_value(value, "number")
            except ValueError:
                raise HTTPException(status_code=400, detail=f"Значение {key} должно быть числом")
            if cooldown < MIN_SETTLEMENT_COOLDOWN_DAYS:
                raise HTTPException(
                    status_code=400,
                    detail=f"Период охлаждения не может быть меньше {MIN_SETTLEMENT_COOLDOWN_DAYS} дней"
                )
        prepared.append((key, value, value_type))

    try:
        async with db.transaction():
            for key, value, value_type in prepared:
                _type, category, description = _WITHDRAWAL_CONFIG_META[key]
                await ConfigService.upsert(db, key, value, value_type, category, description)
    except ConfigValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    logger.info(f"[CONFIG] Withdrawal config updated by #{admin.id}: {', '.join(k for k, _, _ in prepared)}")
    return {**await _grouped_withdrawal_config(db), "message": "Настройки сохранены"}


@router.post("/init-withdrawal-configs")
async def init_withdrawal_configs(
    admin: User = Depends(require_write("DISTRIBUTION")),
    db: DatabaseService = Depends(get_db)
):
    """Добавляет отсутствующие настройки вывода со значениями по умолчанию."""
    created = await ConfigService.seed_defaults(db, WITHDRAWAL_CONFIGS)
    return {"created": created, "message": f"Добавлено настроек: {created}"}
