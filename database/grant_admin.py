#!/usr/bin/env python3
"""
Управление ролью администратора.

    python database/grant_admin.py grant user@example.com
    python database/grant_admin.py revoke user@example.com
    python database/grant_admin.py list
"""

import argparse
import asyncio
import sys

from dotenv import load_dotenv

load_dotenv()

from zhiku.app.services.database import db_now, get_db_context  # noqa: E402


async def set_role(email: str, role: str) -> bool:
    async with get_db_context() as db:
        user = await db.fetch_one("SELECT id, role FROM users WHERE email = ?", (email,))
        if not user:
            print(f"[ERROR] Пользователь {email} не найден")
            return False
        if user["role"] == role:
            print(f"[INFO] У пользователя {email} уже роль {role}")
            return True

        data = {"role": role, "updated_at": db_now()}
        if role == "ADMIN":
            data["account_status"] = "APPROVED"
        await db.update("users", data, "id = ?", (user["id"],))
        print(f"[OK] {email}: роль {user['role']} -> {role}")
        return True


async def list_admins() -> None:
    async with get_db_context() as db:
        admins = await db.fetch_all(
            "SELECT id, name, email, created_at FROM users WHERE role = 'ADMIN' ORDER BY id"
        )
    if not admins:
        print("[INFO] Администраторов нет")
        return
    for admin in admins:
        print(f"  #{admin['id']} {admin['email']} ({admin['name']}) - {admin['created_at']}")


def main() -> int:
    parser = argparse.ArgumentParser(description="Управление администраторами")
    subparsers = parser.add_subparsers(dest="command", required=True)
    grant = subparsers.add_parser("grant", help="Назначить администратором")
    grant.add_argument("email")
    revoke = subparsers.add_parser("revoke", help="Снять роль администратора")
    revoke.add_argument("email")
    subparsers.add_parser("list", help="Список администраторов")
    args = parser.parse_args()

    if args.command == "list":
        asyncio.run(list_admins())
        return 0
    role = "ADMIN" if args.command == "grant" else "USER"
    return 0 if asyncio.run(set_role(args.email, role)) else 1


if __name__ == "__main__":
    sys.exit(main())
