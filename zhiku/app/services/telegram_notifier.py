"""
Сервис для отправки уведомлений администраторам в Telegram.
"""

import html
from datetime import datetime
from typing import List, Optional
from aiogram import Bot
from aiogram.enums import ParseMode
from aiogram.client.default import DefaultBotProperties

from ..config import settings


SEVERITY_ICONS = {
    "critical": "🚨",
    "high": "⚠️",
    "medium": "🔶",
    "low": "🔹",
    "info": "ℹ️",
}


class TelegramNotifier:
    """Уведомления администраторов через Telegram-бота."""

    _bot: Optional[Bot] = None

    @classmethod
    def get_bot(cls) -> Optional[Bot]:
        """Возвращает экземпляр бота или None если токен не настроен."""
        if not settings.BOT_TOKEN:
            return None

        if cls._bot is None:
            print(f"[TELEGRAM] Creating bot instance with token: {settings.BOT_TOKEN[:10]}...")
            cls._bot = Bot(
                token=settings.BOT_TOKEN,
                default=DefaultBotProperties(parse_mode=ParseMode.HTML)
            )

        return cls._bot

    @classmethod
    async def close(cls) -> None:
        """Закрывает сессию бота (при остановке приложения)."""
        if cls._bot is not None:
            await cls._bot.session.close()
            cls._bot = None

    @staticmethod
    def get_admin_chat_ids() -> List[int]:
        """Разбирает ADMIN_CHAT_IDS из настроек."""
        chat_ids = []
        for raw in settings.ADMIN_CHAT_IDS.split(","):
            raw = raw.strip()
            if not raw:
                continue
            try:
                chat_ids.append(int(raw))
            except ValueError:
                print(f"[WARNING] Invalid admin chat id: {raw}")
        return chat_ids

    @classmethod
    async def send_message(cls, chat_id: int, text: str) -> bool:
        """
        Отправляет сообщение в Telegram.

        Returns:
            bool: True если сообщение отправлено успешно
        """
        bot = cls.get_bot()
        if not bot:
            print(f"[WARNING] BOT_TOKEN not configured, message not sent to {chat_id}")
            return False

        try:
            await bot.send_message(chat_id=chat_id, text=text)
            return True
        except Exception as e:
            print(f"[ERROR] Failed to send Telegram message to {chat_id}: {e}")
            return False

    @classmethod
    async def notify_admins(cls, text: str) -> int:
        """Рассылает сообщение всем администраторам. Возвращает число доставленных."""
        chat_ids = cls.get_admin_chat_ids()
        if not chat_ids or not settings.BOT_TOKEN:
            print("[WARNING] Admin notifications are not configured, skipping")
            return 0

        sent = 0
        for chat_id in chat_ids:
            if await cls.send_message(chat_id, text):
                sent += 1
        return sent

    @classmethod
    async def send_security_alert(
        cls,
        alert_type: str,
        severity: str,
        description: str,
        ip_address: Optional[str] = None,
        user_id: Optional[int] = None
    ) -> int:
        """Уведомление о событии безопасности."""
        icon = SEVERITY_ICONS.get(severity, "ℹ️")
        lines = [
            f"{icon} <b>Событие безопасности: {html.escape(alert_type)}</b>",
            f"<b>Уровень:</b> {html.escape(severity)}",
            f"<b>Описание:</b> {html.escape(description)}",
        ]
        if user_id:
            lines.append(f"<b>Пользователь:</b> #{user_id}")
        if ip_address:
            lines.append(f"<b>IP:</b> {html.escape(ip_address)}")
        lines.append(f"<i>{datetime.now().strftime('%d.%m.%Y %H:%M')}</i>")
        return await cls.notify_admins("\n".join(lines))

    @classmethod
    async def send_withdrawal_request(
        cls,
        withdrawal_id: int,
        distributor_code: str,
        amount: float,
        risk_level: str,
        risk_score: int
    ) -> int:
        """Уведомление о новой заявке на вывод комиссии."""
        text = (
            f"💸 <b>Новая заявка на вывод #{withdrawal_id}</b>\n"
            f"<b>Дистрибьютор:</b> {html.escape(distributor_code)}\n"
            f"<b>Сумма:</b> ¥{amount:.2f}\n"
            f"<b>Риск:</b> {html.escape(risk_level)} ({risk_score})"
        )
        return await cls.notify_admins(text)
