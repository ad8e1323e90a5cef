"""
API Routes для системных настроек.
"""

import logging
from fastapi import APIRouter, Depends, HTTPException
from typing import Optional

from ..models.system_config import SystemConfigItem, SystemConfigBatch
from ..models.user import User
from ..services.database import DatabaseService, get_db
from ..services.system_config import (
    ConfigService,
    ConfigValueError,
    PUBLIC_CONFIG_KEYS,
    parse_config_value,
    stringify_config_value,
)
from .auth import require_read, require_write

logger = logging.getLogger(__name__)

router = APIRouter()
admin_router = APIRouter()


def _present(row: dict) -> dict:
    try:
        row["parsed_value"] = parse_config_value(row["value"], row["type"])
    except (TypeError, ValueError):
        row["parsed_value"] = None
    return row


@router.get("/")
async def get_public_config(db: DatabaseService = Depends(get_db)):
    """Публичные флаги: баннеры и доступные способы оплаты."""
    values = await ConfigService.get_values(db, PUBLIC_CONFIG_KEYS)
    return {key: values.get(key, True) for key in PUBLIC_CONFIG_KEYS}


@admin_router.get("/")
async def list_configs(
    category: Optional[str] = None,
    current_user: User = Depends(require_read("SYSTEM_SETTINGS")),
    db: DatabaseService = Depends(get_db)
):
    if category:
        rows = await db.fetch_all(
            "SELECT * FROM system_configs WHERE category = ? ORDER BY key", (category,)
        )
    else:
        rows = await db.fetch_all("SELECT * FROM system_configs ORDER BY category, key")
    return {"configs": [_present(row) for row in rows]}


async def _upsert_item(db: DatabaseService, item: SystemConfigItem) -> dict:
    return await ConfigService.upsert(
        db,
        item.key,
        stringify_config_value(item.value, item.type),
        item.type,
        item.category,
        item.description,
    )


@admin_router.post("/")
async def upsert_config(
    item: SystemConfigItem,
    current_user: User = Depends(require_write("SYSTEM_SETTINGS")),
    db: DatabaseService = Depends(get_db)
):
    try:
        row = await _upsert_item(db, item)
    except ConfigValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    logger.info(f"[CONFIG] {item.key} set by user #{current_user.id}")
    return {"config": _present(row)}


@admin_router.put("/")
async def batch_upsert_configs(
    data: SystemConfigBatch,
    current_user: User = Depends(require_write("SYSTEM_SETTINGS")),
    db: DatabaseService = Depends(get_db)
):
    """Пакетное сохранение: всё или ничего."""
    try:
        async with db.transaction():
            rows = [await _upsert_item(db, item) for item in data.configs]
    except ConfigValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"configs": [_present(row) for row in rows], "message": "Настройки сохранены"}
