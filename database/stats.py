#!/usr/bin/env python3
"""
Скрипт для просмотра статистики базы данных.
"""

import sqlite3
from datetime import datetime

from dotenv import load_dotenv

load_dotenv()

from zhiku.app.config import settings  # noqa: E402


def _count(cursor: sqlite3.Cursor, query: str) -> int:
    cursor.execute(query)
    return cursor.fetchone()[0]


def show_stats():
    """Показывает статистику базы данных."""
    conn = sqlite3.connect(settings.DATABASE_PATH)
    conn.row_factory = sqlite3.Row
    cursor = conn.cursor()

    print("=" * 60)
    print("СТАТИСТИКА БАЗЫ ДАННЫХ")
    print("=" * 60)
    print(f"Дата: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print()

    try:
        users = _count(cursor, "SELECT COUNT(*) FROM users")
        pending = _count(cursor, "SELECT COUNT(*) FROM users WHERE account_status = 'PENDING'")
        print(f"Пользователей: {users} (ожидают подтверждения: {pending})")

        products = _count(cursor, "SELECT COUNT(*) FROM products")
        active = _count(cursor, "SELECT COUNT(*) FROM products WHERE status = 'active'")
        print(f"Товаров: {products} (активных: {active})")

        print()
        print("Заказы по статусам:")
        cursor.execute(
            """SELECT status, COUNT(*) as cnt, COALESCE(SUM(total_amount), 0) as amount
               FROM orders GROUP BY status ORDER BY status"""
        )
        for row in cursor.fetchall():
            print(f"   {row['status']:<10} {row['cnt']:>6}  {row['amount']:>12.2f}")

        print()
        memberships = _count(cursor, "SELECT COUNT(*) FROM memberships WHERE status = 'active'")
        print(f"Активных членств: {memberships}")

        distributors = _count(cursor, "SELECT COUNT(*) FROM distributors WHERE status = 'active'")
        pending_withdrawals = _count(cursor, "SELECT COUNT(*) FROM commission_withdrawals WHERE status = 'pending'")
        print(f"Дистрибьюторов: {distributors} (выводов на проверке: {pending_withdrawals})")

        alerts = _count(cursor, "SELECT COUNT(*) FROM security_alerts WHERE status = 'unresolved'")
        print(f"Нерешённых событий безопасности: {alerts}")
    except sqlite3.OperationalError as e:
        print(f"[ERROR] Схема не создана ({e}). Запустите database/init_db.py")
    finally:
        conn.close()

    print("=" * 60)


if __name__ == "__main__":
    show_stats()
