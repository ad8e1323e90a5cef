"""
Сервис системных настроек (таблица system_configs).
"""

import json
import logging
from typing import Any, Dict, List, Optional

from .database import DatabaseService, db_now


logger = logging.getLogger(__name__)


# (key, value, type, category, description)
ORDER_CONFIGS = [
    ("order_expire_minutes", "30", "number", "order", "Время на оплату заказа (минуты), после чего заказ отменяется"),
]

FEATURE_CONFIGS = [
    ("banner_enabled", "true", "boolean", "feature", "Показывать баннеры на главной"),
    ("payment_alipay_enabled", "true", "boolean", "payment", "Приём оплаты через Alipay"),
    ("payment_wechat_enabled", "true", "boolean", "payment", "Приём оплаты через WeChat Pay"),
    ("payment_paypal_enabled", "true", "boolean", "payment", "Приём оплаты через PayPal"),
]

DISTRIBUTION_CONFIGS = [
    ("distribution_default_commission_rate", "0.1", "number", "distribution", "Ставка комиссии по умолчанию для новых дистрибьюторов"),
]

WITHDRAWAL_CONFIGS = [
    # Базовые настройки
    ("withdrawal_auto_approve", "false", "boolean", "withdrawal", "Автоматическое одобрение выводов (по умолчанию выключено)"),
    ("withdrawal_min_amount", "100", "number", "withdrawal", "Минимальная сумма вывода (юань)"),
    ("withdrawal_max_amount", "50000", "number", "withdrawal", "Максимальная сумма вывода (юань)"),
    ("withdrawal_fee_rate", "0.02", "number", "withdrawal", "Комиссия за вывод (0.02 = 2%)"),
    ("commission_settlement_cooldown_days", "15", "number", "withdrawal", "Период охлаждения (дни) перед начислением комиссии на баланс"),
    # Условия автоодобрения
    ("withdrawal_auto_max_amount", "5000", "number", "withdrawal", "Максимальная сумма для автоодобрения (юань)"),
    ("withdrawal_auto_min_days", "30", "number", "withdrawal", "Минимальный возраст аккаунта дистрибьютора для автоодобрения (дни)"),
    ("withdrawal_auto_require_verified", "false", "boolean", "withdrawal", "Требовать верификацию для автоодобрения"),
    ("withdrawal_bank_info_stable_days", "7", "number", "withdrawal", "Период стабильности банковских реквизитов (дни)"),
    # Лимиты
    ("withdrawal_daily_count_limit", "3", "number", "withdrawal", "Количество выводов в сутки"),
    ("withdrawal_daily_amount_limit", "10000", "number", "withdrawal", "Сумма выводов в сутки (юань)"),
    ("withdrawal_monthly_amount_limit", "50000", "number", "withdrawal", "Сумма выводов в месяц (юань)"),
    # Веса риска
    ("withdrawal_risk_weight_frozen", "100", "number", "withdrawal_risk", "Вес риска: аккаунт заморожен"),
    ("withdrawal_risk_weight_large_amount", "30", "number", "withdrawal_risk", "Вес риска: крупная сумма"),
    ("withdrawal_risk_weight_first_withdrawal", "20", "number", "withdrawal_risk", "Вес риска: первый вывод"),
    ("withdrawal_risk_weight_not_verified", "15", "number", "withdrawal_risk", "Вес риска: не верифицирован"),
    ("withdrawal_risk_weight_new_account", "15", "number", "withdrawal_risk", "Вес риска: новый аккаунт"),
    ("withdrawal_risk_weight_high_risk_account", "10", "number", "withdrawal_risk", "Вес риска: аккаунт высокого риска"),
    ("withdrawal_risk_weight_bank_changed", "10", "number", "withdrawal_risk", "Вес риска: недавняя смена реквизитов"),
    ("withdrawal_risk_weight_medium_risk_account", "5", "number", "withdrawal_risk", "Вес риска: аккаунт среднего риска"),
    ("withdrawal_risk_weight_daily_limit", "5", "number", "withdrawal_risk", "Вес риска: превышение лимитов"),
    ("withdrawal_risk_threshold_auto", "10", "number", "withdrawal_risk", "Порог среднего риска (ручная проверка)"),
    ("withdrawal_risk_threshold_manual", "30", "number", "withdrawal_risk", "Порог высокого риска (оповещение)"),
]

DEFAULT_CONFIGS = ORDER_CONFIGS + FEATURE_CONFIGS + DISTRIBUTION_CONFIGS + WITHDRAWAL_CONFIGS

# Ключи, доступные без авторизации
PUBLIC_CONFIG_KEYS = [
    "banner_enabled",
    "payment_alipay_enabled",
    "payment_wechat_enabled",
    "payment_paypal_enabled",
]


class ConfigValueError(ValueError):
    """Значение не соответствует типу настройки."""


def parse_config_value(value: Optional[str], value_type: str) -> Any:
    """Преобразует строковое значение настройки в значение нужного типа."""
    if value is None:
        return None
    if value_type == "boolean":
        return str(value).strip().lower() == "true"
    if value_type == "number":
        number = float(value)
        return int(number) if number.is_integer() else number
    if value_type == "json":
        return json.loads(value)
    return value


def stringify_config_value(value: Any, value_type: str) -> str:
    """Приводит значение из JSON-запроса к строке для хранения."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if value_type == "json" and not isinstance(value, str):
        return json.dumps(value, ensure_ascii=False)
    if value_type == "boolean":
        return str(value).strip().lower()
    return str(value)


def validate_config_value(key: str, value: str, value_type: str) -> None:
    """Проверяет значение настройки перед сохранением."""
    if value_type == "boolean" and value not in ("true", "false"):
        raise ConfigValueError(f"Значение {key} должно быть true или false")
    if value_type == "number":
        try:
            number = float(value)
        except (TypeError, ValueError):
            raise ConfigValueError(f"Значение {key} должно быть числом")
        if key == "withdrawal_fee_rate" and not (0 <= number <= 1):
            raise ConfigValueError("Комиссия за вывод должна быть в диапазоне 0-1")
        if "amount" in key and number < 0:
            raise ConfigValueError(f"{key}: сумма не может быть отрицательной")
    if value_type == "json":
        try:
            json.loads(value)
        except (TypeError, ValueError):
            raise ConfigValueError(f"Значение {key} должно быть корректным JSON")


class ConfigService:
    """Чтение и запись системных настроек."""

    @staticmethod
    async def get_value(db: DatabaseService, key: str, default: Any = None) -> Any:
        """Возвращает типизированное значение настройки или default."""
        row = await db.fetch_one(
            "SELECT value, type FROM system_configs WHERE key = ?",
            (key,)
        )
        if not row:
            return default
        try:
            return parse_config_value(row["value"], row["type"])
        except (TypeError, ValueError) as e:
            logger.warning(f"[CONFIG] Invalid value for {key}: {row['value']!r} ({e})")
            return default

    @staticmethod
    async def get_values(db: DatabaseService, keys: List[str]) -> Dict[str, Any]:
        """Возвращает типизированные значения набора ключей."""
        if not keys:
            return {}
        placeholders = ", ".join(["?" for _ in keys])
        rows = await db.fetch_all(
            f"SELECT key, value, type FROM system_configs WHERE key IN ({placeholders})",
            tuple(keys)
        )
        values = {}
        for row in rows:
            try:
                values[row["key"]] = parse_config_value(row["value"], row["type"])
            except (TypeError, ValueError):
                logger.warning(f"[CONFIG] Invalid value for {row['key']}: {row['value']!r}")
        return values

    @staticmethod
    async def upsert(
        db: DatabaseService,
        key: str,
        value: str,
        value_type: str = "string",
        category: str = "general",
        description: Optional[str] = None
    ) -> Dict[str, Any]:
        """Создаёт или обновляет настройку."""
        validate_config_value(key, value, value_type)
        existing = await db.fetch_one("SELECT id FROM system_configs WHERE key = ?", (key,))
        if existing:
            data = {
                "value": value,
                "type": value_type,
                "category": category,
                "updated_at": db_now(),
            }
            if description is not None:
                data["description"] = description
            await db.update("system_configs", data, "id = ?", (existing["id"],))
        else:
            await db.insert("system_configs", {
                "key": key,
                "value": value,
                "type": value_type,
                "category": category,
                "description": description,
            })
        return await db.fetch_one("SELECT * FROM system_configs WHERE key = ?", (key,))

    @staticmethod
    async def seed_defaults(db: DatabaseService, configs: list = None) -> int:
        """Добавляет отсутствующие настройки по умолчанию. Возвращает количество добавленных."""
        created = 0
        for key, value, value_type, category, description in (configs or DEFAULT_CONFIGS):
            cursor = await db.execute(
                """INSERT OR IGNORE INTO system_configs (key, value, type, category, description)
                   VALUES (?, ?, ?, ?, ?)""",
                (key, value, value_type, category, description)
            )
            created += cursor.rowcount
        await db.commit()
        return created
