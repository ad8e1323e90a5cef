"""
Периодическое обслуживание: просроченные заказы, начисление комиссий,
очистка счётчиков ограничения частоты.
"""

import asyncio
import logging
from typing import Any, Dict

from .commission import CommissionManager
from .database import DatabaseService
from .order_service import OrderManager
from .rate_limiter import rate_limiter


logger = logging.getLogger(__name__)


class MaintenanceService:
    """Фоновые задачи, запускаемые из lifespan приложения."""

    @staticmethod
    async def run_once(db: DatabaseService) -> Dict[str, Any]:
        """Один проход обслуживания. Ошибка одного шага не мешает остальным."""
        result: Dict[str, Any] = {}

        try:
            expired = await OrderManager.cancel_expired_orders(db)
            result["expired_orders"] = expired["cancelled"]
        except Exception as e:
            logger.exception(f"[MAINTENANCE] Error cancelling expired orders: {e}")

        try:
            settlement = await CommissionManager.settle_due_commissions(db)
            result["settled_commissions"] = settlement["settled"]
        except Exception as e:
            logger.exception(f"[MAINTENANCE] Error settling commissions: {e}")

        result["rate_limit_evicted"] = rate_limiter.cleanup()
        return result

    @staticmethod
    async def start_periodic(db: DatabaseService, interval_minutes: int) -> None:
        """Запускает бесконечный цикл обслуживания."""
        print(f"[MAINTENANCE] Starting periodic maintenance (every {interval_minutes} minutes)")

        while True:
            try:
                result = await MaintenanceService.run_once(db)
                if result.get("expired_orders") or result.get("settled_commissions"):
                    logger.info(f"[MAINTENANCE] {result}")
            except Exception as e:
                logger.exception(f"[MAINTENANCE] Error in periodic run: {e}")

            await asyncio.sleep(interval_minutes * 60)
