"""
API Routes для задач по расписанию.
"""

import logging
import secrets
from fastapi import APIRouter, Depends, HTTPException, Header
from typing import Optional

from ..config import settings
from ..services.commission import CommissionManager
from ..services.database import DatabaseService, get_db

logger = logging.getLogger(__name__)

router = APIRouter()


async def verify_cron_secret(authorization: Optional[str] = Header(None)) -> None:
    """Если CRON_SECRET задан, требуется Authorization: Bearer <CRON_SECRET>."""
    if not settings.CRON_SECRET:
        return
    expected = f"Bearer {settings.CRON_SECRET}"
    if not authorization or not secrets.compare_digest(authorization, expected):
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.api_route("/settle-commissions", methods=["GET", "POST"], dependencies=[Depends(verify_cron_secret)])
async def settle_commissions(db: DatabaseService = Depends(get_db)):
    """Начисляет комиссии с истёкшим периодом охлаждения."""
    result = await CommissionManager.settle_due_commissions(db)
    logger.info(
        f"[CRON] Settlement: settled={result['settled']} skipped={result['skipped']} failed={result['failed']}"
    )
    return {"success": True, **result}
