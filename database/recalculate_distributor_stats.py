#!/usr/bin/env python3
"""
Пересчёт балансов дистрибьюторов по заказам и выводам.
Используется после ручных правок в базе.
"""

import argparse
import asyncio

from dotenv import load_dotenv

load_dotenv()

from zhiku.app.services.commission import CommissionManager  # noqa: E402
from zhiku.app.services.database import get_db_context  # noqa: E402


async def recalculate(distributor_id: int = None) -> None:
    async with get_db_context() as db:
        if distributor_id:
            distributors = await db.fetch_all("SELECT id, code FROM distributors WHERE id = ?", (distributor_id,))
        else:
            distributors = await db.fetch_all("SELECT id, code FROM distributors ORDER BY id")

        if not distributors:
            print("[INFO] Дистрибьюторы не найдены")
            return

        for distributor in distributors:
            stats = await CommissionManager.recalculate_distributor_stats(db, distributor["id"])
            print(
                f"[OK] #{distributor['id']} {distributor['code']}: "
                f"заработано {stats['total_earnings']:.2f}, "
                f"в ожидании {stats['pending_commission']:.2f}, "
                f"доступно {stats['available_balance']:.2f}, "
                f"выведено {stats['withdrawn_amount']:.2f}, "
                f"заказов {stats['total_orders']}"
            )


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Пересчёт статистики дистрибьюторов")
    parser.add_argument("--id", type=int, help="ID дистрибьютора (по умолчанию все)")
    args = parser.parse_args()
    asyncio.run(recalculate(args.id))
