"""
Сервис событий безопасности.
"""

import json
import logging
from typing import Any, Dict, Optional

from .database import DatabaseService
from .telegram_notifier import TelegramNotifier


logger = logging.getLogger(__name__)

SEVERITIES = ("info", "low", "medium", "high", "critical")
ALERT_STATUSES = ("unresolved", "investigating", "resolved", "false_positive")
NOTIFY_SEVERITIES = ("high", "critical")


class SecurityAlertService:
    """Создание событий безопасности с оповещением администраторов."""

    @staticmethod
    async def create_alert(
        db: DatabaseService,
        alert_type: str,
        severity: str,
        description: str,
        user_id: Optional[int] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> int:
        """Сохраняет событие. Для high/critical отправляет уведомление в Telegram после фиксации."""
        if severity not in SEVERITIES:
            raise ValueError(f"Unknown severity: {severity}")

        alert_id = await db.insert("security_alerts", {
            "type": alert_type,
            "severity": severity,
            "user_id": user_id,
            "ip_address": ip_address,
            "user_agent": user_agent,
            "description": description,
            "metadata": json.dumps(metadata or {}, ensure_ascii=False, default=str),
            "status": "unresolved",
        })
        logger.info(f"[SECURITY] Alert #{alert_id} {alert_type} ({severity}): {description}")

        if severity in NOTIFY_SEVERITIES:
            async def notify() -> None:
                await TelegramNotifier.send_security_alert(
                    alert_type=alert_type,
                    severity=severity,
                    description=description,
                    ip_address=ip_address,
                    user_id=user_id
                )

            # Внутри транзакции уведомление уходит только после commit
            await db.run_after_commit(notify)

        return alert_id
