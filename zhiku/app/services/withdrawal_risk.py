"""
Оценка риска заявок на вывод комиссии.

Итоговый балл определяет, можно ли одобрить вывод автоматически,
нужна ли ручная проверка и нужно ли создать событие безопасности.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from .commission import is_test_email
from .database import DatabaseService, local_day_bounds, local_today, parse_db_time, to_money, utc_now
from .system_config import ConfigService, WITHDRAWAL_CONFIGS, parse_config_value


TEST_USER_RISK_SCORE = 50

# Значения по умолчанию, если настройка отсутствует в базе
WITHDRAWAL_DEFAULTS: Dict[str, Any] = {
    key: parse_config_value(value, value_type)
    for key, value, value_type, _category, _description in WITHDRAWAL_CONFIGS
}


class WithdrawalValidationError(ValueError):
    """Заявка не проходит базовые проверки."""


class RiskCheckResult:
    """Результат оценки риска."""

    def __init__(
        self,
        risk_score: float,
        risk_level: str,
        can_auto_approve: bool,
        should_alert: bool,
        risks: List[str],
        reasons: List[str]
    ):
        self.risk_score = risk_score
        self.risk_level = risk_level
        self.can_auto_approve = can_auto_approve
        self.should_alert = should_alert
        self.risks = risks
        self.reasons = reasons

    def to_dict(self) -> Dict[str, Any]:
        return {
            "risk_score": self.risk_score,
            "risk_level": self.risk_level,
            "can_auto_approve": self.can_auto_approve,
            "should_alert": self.should_alert,
            "risks": self.risks,
            "reasons": self.reasons,
        }


def days_between(later: datetime, earlier: datetime) -> int:
    """Количество полных суток между датами (с округлением)."""
    return round(abs((later - earlier).total_seconds()) / 86400)


def local_month_start() -> str:
    """Начало текущего месяца (локальное время) в формате БД."""
    today = local_today()
    start, _ = local_day_bounds(today.replace(day=1))
    return start


async def get_withdrawal_config(db: DatabaseService) -> Dict[str, Any]:
    """Настройки вывода с подстановкой значений по умолчанию."""
    stored = await ConfigService.get_values(db, list(WITHDRAWAL_DEFAULTS.keys()))
    return {**WITHDRAWAL_DEFAULTS, **stored}


async def get_today_withdrawals(db: DatabaseService, distributor_id: int) -> Dict[str, Any]:
    """Выводы за текущие локальные сутки (кроме отклонённых)."""
    start, end = local_day_bounds()
    row = await db.fetch_one(
        """SELECT COUNT(*) AS count, COALESCE(SUM(amount), 0) AS amount
           FROM commission_withdrawals
           WHERE distributor_id = ? AND created_at >= ? AND created_at < ?
             AND status != 'rejected'""",
        (distributor_id, start, end)
    )
    return {"count": row["count"], "amount": to_money(row["amount"])}


async def get_monthly_withdrawals(db: DatabaseService, distributor_id: int) -> Dict[str, Any]:
    """Выводы за текущий месяц (в обработке и завершённые)."""
    row = await db.fetch_one(
        """SELECT COUNT(*) AS count, COALESCE(SUM(amount), 0) AS amount
           FROM commission_withdrawals
           WHERE distributor_id = ? AND created_at >= ?
             AND status IN ('processing', 'completed')""",
        (distributor_id, local_month_start())
    )
    return {"count": row["count"], "amount": to_money(row["amount"])}


async def validate_withdrawal_basics(db: DatabaseService, amount: float, distributor_id: int) -> None:
    """
    Проверяет сумму и лимиты заявки.

    Raises:
        WithdrawalValidationError: с текстом ошибки для пользователя
    """
    config = await get_withdrawal_config(db)
    money = to_money(amount)

    if money < to_money(config["withdrawal_min_amount"]):
        raise WithdrawalValidationError(f"Сумма вывода не может быть меньше ¥{config['withdrawal_min_amount']}")
    if money > to_money(config["withdrawal_max_amount"]):
        raise WithdrawalValidationError(f"Сумма вывода не может превышать ¥{config['withdrawal_max_amount']}")

    pending = await db.count(
        "commission_withdrawals",
        "distributor_id = ? AND status IN ('pending', 'processing')",
        (distributor_id,)
    )
    if pending > 0:
        raise WithdrawalValidationError("У вас уже есть заявка на вывод в обработке, дождитесь её завершения")

    today = await get_today_withdrawals(db, distributor_id)
    if today["count"] >= config["withdrawal_daily_count_limit"]:
        raise WithdrawalValidationError(
            f"Превышен лимит выводов в сутки ({int(config['withdrawal_daily_count_limit'])})"
        )
    if today["amount"] + money > to_money(config["withdrawal_daily_amount_limit"]):
        raise WithdrawalValidationError(
            f"Превышен суточный лимит суммы вывода ¥{config['withdrawal_daily_amount_limit']}"
        )

    monthly = await get_monthly_withdrawals(db, distributor_id)
    if monthly["amount"] + money > to_money(config["withdrawal_monthly_amount_limit"]):
        raise WithdrawalValidationError(
            f"Превышен месячный лимит суммы вывода ¥{config['withdrawal_monthly_amount_limit']}"
        )


class WithdrawalRiskChecker:
    """Подсчёт балла риска по настройкам withdrawal_risk_*."""

    @staticmethod
    async def check(
        db: DatabaseService,
        amount: float,
        distributor: Dict[str, Any],
        now: Optional[datetime] = None
    ) -> RiskCheckResult:
        config = await get_withdrawal_config(db)
        now = now or utc_now()
        money = to_money(amount)
        risks: List[str] = []
        reasons: List[str] = []
        score = 0.0

        email = await db.fetch_value(
            "SELECT email FROM users WHERE id = ?",
            (distributor["user_id"],)
        )
        if is_test_email(email):
            risks.append("Тестовый пользователь")
            reasons.append(f"Выводы тестового пользователя ({email.split('@')[0]}) проверяются вручную")
            score += TEST_USER_RISK_SCORE

        if distributor.get("is_frozen"):
            risks.append("Аккаунт заморожен")
            reasons.append(f"Аккаунт заморожен: {distributor.get('frozen_reason') or 'причина не указана'}")
            score += config["withdrawal_risk_weight_frozen"]

        if money >= to_money(config["withdrawal_auto_max_amount"]):
            risks.append("Крупная сумма")
            reasons.append(
                f"Сумма ¥{money} не меньше лимита автоодобрения ¥{config['withdrawal_auto_max_amount']}"
            )
            score += config["withdrawal_risk_weight_large_amount"]

        if not distributor.get("first_withdrawal_at"):
            risks.append("Первый вывод")
            reasons.append("Первая заявка дистрибьютора на вывод")
            score += config["withdrawal_risk_weight_first_withdrawal"]

        created_at = parse_db_time(distributor.get("created_at"))
        if created_at:
            account_days = days_between(now, created_at)
            if account_days < config["withdrawal_auto_min_days"]:
                risks.append("Новый дистрибьютор")
                reasons.append(
                    f"Аккаунту {account_days} дн., требуется {int(config['withdrawal_auto_min_days'])}"
                )
                score += config["withdrawal_risk_weight_new_account"]

        if config["withdrawal_auto_require_verified"] and not distributor.get("is_verified"):
            risks.append("Не верифицирован")
            reasons.append("Аккаунт не прошёл верификацию")
            score += config["withdrawal_risk_weight_not_verified"]

        bank_updated = parse_db_time(distributor.get("last_bank_info_update"))
        if bank_updated:
            bank_days = days_between(now, bank_updated)
            if bank_days < config["withdrawal_bank_info_stable_days"]:
                risks.append("Недавняя смена реквизитов")
                reasons.append(
                    f"Банковские реквизиты изменены {bank_days} дн. назад, "
                    f"период стабильности {int(config['withdrawal_bank_info_stable_days'])} дн."
                )
                score += config["withdrawal_risk_weight_bank_changed"]

        today = await get_today_withdrawals(db, distributor["id"])
        if today["count"] >= config["withdrawal_daily_count_limit"]:
            risks.append("Лимит выводов в сутки")
            reasons.append(f"Сегодня уже {today['count']} заявок")
            score += config["withdrawal_risk_weight_daily_limit"]
        if today["amount"] + money > to_money(config["withdrawal_daily_amount_limit"]):
            risks.append("Суточный лимит суммы")
            reasons.append(
                f"Сегодня выведено ¥{today['amount']}, заявка ¥{money}, "
                f"лимит ¥{config['withdrawal_daily_amount_limit']}"
            )
            score += config["withdrawal_risk_weight_daily_limit"]

        monthly = await get_monthly_withdrawals(db, distributor["id"])
        if monthly["amount"] + money > to_money(config["withdrawal_monthly_amount_limit"]):
            risks.append("Месячный лимит суммы")
            reasons.append(
                f"В этом месяце выведено ¥{monthly['amount']}, заявка ¥{money}, "
                f"лимит ¥{config['withdrawal_monthly_amount_limit']}"
            )
            score += config["withdrawal_risk_weight_daily_limit"]

        if distributor.get("risk_level") == "high":
            risks.append("Аккаунт высокого риска")
            reasons.append("Аккаунт отмечен как высокорисковый")
            score += config["withdrawal_risk_weight_high_risk_account"]
        elif distributor.get("risk_level") == "medium":
            risks.append("Аккаунт среднего риска")
            reasons.append("Аккаунт отмечен как среднерисковый")
            score += config["withdrawal_risk_weight_medium_risk_account"]

        if score >= config["withdrawal_risk_threshold_manual"]:
            level, can_auto, alert = "high", False, True
        elif score >= config["withdrawal_risk_threshold_auto"]:
            level, can_auto, alert = "medium", False, False
        else:
            level, can_auto, alert = "low", bool(config["withdrawal_auto_approve"]), False

        score = int(score) if float(score).is_integer() else score
        return RiskCheckResult(score, level, can_auto, alert, risks, reasons)
