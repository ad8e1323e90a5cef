"""
Сервис для работы с базой данных SQLite.
"""

import asyncio
import aiosqlite
from datetime import datetime, timedelta, timezone, date
from decimal import Decimal, ROUND_HALF_UP
from pathlib import Path
from typing import Optional, List, Dict, Any, AsyncGenerator, Awaitable, Callable
from contextlib import asynccontextmanager
from contextvars import ContextVar

import pytz

from ..config import settings


# Формат хранения времени (UTC), совпадает с datetime('now') в SQLite
DB_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


def utc_now() -> datetime:
    """Текущее время в UTC без tzinfo."""
    return datetime.now(timezone.utc).replace(tzinfo=None, microsecond=0)


def to_db_time(value: datetime) -> str:
    """Преобразует datetime в строку для хранения."""
    return value.strftime(DB_TIME_FORMAT)


def db_now(offset: Optional[timedelta] = None) -> str:
    """Текущее время (со смещением) в формате БД."""
    moment = utc_now()
    if offset:
        moment = moment + offset
    return to_db_time(moment)


def parse_db_time(value: Optional[str]) -> Optional[datetime]:
    """Разбирает время из БД."""
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("T", " ").split(".")[0])


def local_today() -> date:
    """Текущая дата в часовом поясе магазина."""
    return datetime.now(pytz.timezone(settings.TIMEZONE)).date()


def local_day_bounds(day: Optional[date] = None) -> tuple:
    """Границы локальных суток в UTC (строки БД)."""
    tz = pytz.timezone(settings.TIMEZONE)
    day = day or local_today()
    start = tz.localize(datetime(day.year, day.month, day.day))
    end = start + timedelta(days=1)
    return (
        to_db_time(start.astimezone(pytz.utc).replace(tzinfo=None)),
        to_db_time(end.astimezone(pytz.utc).replace(tzinfo=None)),
    )


def local_range_bounds(start_date: Optional[str], end_date: Optional[str]) -> tuple:
    """
    Переводит локальные даты YYYY-MM-DD в границы UTC для фильтра
    created_at >= start AND created_at < end. Пустая дата даёт None.
    """
    start = end = None
    if start_date:
        start = local_day_bounds(date.fromisoformat(start_date))[0]
    if end_date:
        end = local_day_bounds(date.fromisoformat(end_date))[1]
    return start, end


def local_offset_modifier() -> str:
    """Смещение часового пояса магазина для datetime() в SQLite, например '+480 minutes'."""
    offset = datetime.now(pytz.timezone(settings.TIMEZONE)).utcoffset() or timedelta(0)
    return f"{int(offset.total_seconds() // 60):+d} minutes"


def to_money(value: Any) -> Decimal:
    """Приводит сумму к Decimal с точностью до копейки (фэня)."""
    if value is None:
        return Decimal("0.00")
    return Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


# Транзакция, открытая в текущей задаче
_active_transaction: ContextVar[Optional[object]] = ContextVar("active_transaction", default=None)


def sql_casefold(value: Any) -> Any:
    """casefold() для SQL: LOWER() в SQLite понимает только ASCII."""
    if isinstance(value, str):
        return value.casefold()
    return value


class DatabaseService:
    """
    Асинхронный сервис для работы с SQLite.

    Одно соединение делится между запросами и фоновыми задачами.
    Открытая transaction() принадлежит задаче, которая её открыла:
    остальные задачи ждут её commit/rollback, а их одиночные
    запросы фиксируются сразу.
    """

    def __init__(self, db_path: Path = None):
        self.db_path = db_path or settings.DATABASE_PATH
        self._connection: Optional[aiosqlite.Connection] = None
        self._lock: Optional[asyncio.Lock] = None
        self._transaction_token: Optional[object] = None
        self._after_commit: List[Callable[[], Awaitable[Any]]] = []

    async def connect(self) -> None:
        """Устанавливает соединение с базой данных."""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._connection = await aiosqlite.connect(self.db_path)
        self._connection.row_factory = aiosqlite.Row
        self._lock = asyncio.Lock()
        await self._connection.create_function("casefold", 1, sql_casefold, deterministic=True)
        await self._connection.execute("PRAGMA foreign_keys = ON")
        await self._connection.execute("PRAGMA encoding = 'UTF-8'")

    async def disconnect(self) -> None:
        """Закрывает соединение с базой данных."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    @property
    def connection(self) -> aiosqlite.Connection:
        """Возвращает текущее соединение."""
        if not self._connection:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._connection

    def in_transaction(self) -> bool:
        """Выполняется ли текущая задача внутри transaction() этого сервиса."""
        token = self._transaction_token
        return token is not None and _active_transaction.get() is token

    @asynccontextmanager
    async def _exclusive(self) -> AsyncGenerator[None, None]:
        """Доступ к соединению: чужая транзакция должна завершиться."""
        if self.in_transaction():
            yield
            return
        async with self._lock:
            yield

    async def _autocommit(self) -> None:
        # Вне transaction() изменения фиксируются сразу, пока удерживается блокировка
        if not self.in_transaction() and self.connection.in_transaction:
            await self.connection.commit()

    async def execute(
        self,
        query: str,
        params: tuple = ()
    ) -> aiosqlite.Cursor:
        """Выполняет SQL запрос."""
        async with self._exclusive():
            cursor = await self.connection.execute(query, params)
            await self._autocommit()
            return cursor

    async def executemany(
        self,
        query: str,
        params_list: List[tuple]
    ) -> aiosqlite.Cursor:
        """Выполняет SQL запрос для множества параметров."""
        async with self._exclusive():
            cursor = await self.connection.executemany(query, params_list)
            await self._autocommit()
            return cursor

    async def commit(self) -> None:
        """Фиксирует изменения (внутри transaction() фиксация откладывается до конца блока)."""
        if self.in_transaction():
            return
        async with self._lock:
            await self.connection.commit()

    async def rollback(self) -> None:
        """Откатывает незафиксированные изменения вне transaction()."""
        if self.in_transaction():
            raise RuntimeError("Use an exception to roll back transaction()")
        async with self._lock:
            await self.connection.rollback()

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator["DatabaseService", None]:
        """
        Выполняет группу операций атомарно.

        Все insert/update/delete внутри блока фиксируются одним commit,
        при любом исключении выполняется rollback. Другие задачи ждут
        окончания блока. Вложенный вызов работает в рамках внешнего.
        """
        if self.in_transaction():
            yield self
            return

        async with self._lock:
            token = object()
            self._transaction_token = token
            self._after_commit = []
            context_token = _active_transaction.set(token)
            try:
                yield self
            except BaseException:
                await self.connection.rollback()
                raise
            else:
                await self.connection.commit()
            finally:
                callbacks, self._after_commit = self._after_commit, []
                self._transaction_token = None
                _active_transaction.reset(context_token)

        for callback in callbacks:
            await callback()

    async def run_after_commit(self, callback: Callable[[], Awaitable[Any]]) -> None:
        """
        Откладывает callback до commit текущей транзакции.

        Вне transaction() вызывает сразу. После rollback callback отбрасывается.
        """
        if self.in_transaction():
            self._after_commit.append(callback)
        else:
            await callback()

    async def fetch_one(
        self,
        query: str,
        params: tuple = ()
    ) -> Optional[Dict[str, Any]]:
        """Выполняет запрос и возвращает одну строку."""
        async with self._exclusive():
            cursor = await self.connection.execute(query, params)
            row = await cursor.fetchone()
        return dict(row) if row else None

    async def fetch_all(
        self,
        query: str,
        params: tuple = ()
    ) -> List[Dict[str, Any]]:
        """Выполняет запрос и возвращает все строки."""
        async with self._exclusive():
            cursor = await self.connection.execute(query, params)
            rows = await cursor.fetchall()
        return [dict(row) for row in rows]

    async def fetch_value(
        self,
        query: str,
        params: tuple = (),
        default: Any = None
    ) -> Any:
        """Выполняет запрос и возвращает первое поле первой строки."""
        async with self._exclusive():
            cursor = await self.connection.execute(query, params)
            row = await cursor.fetchone()
        if row is None or row[0] is None:
            return default
        return row[0]

    async def insert(
        self,
        table: str,
        data: Dict[str, Any]
    ) -> int:
        """Вставляет запись и возвращает ID."""
        columns = ", ".join(data.keys())
        placeholders = ", ".join(["?" for _ in data])
        query = f"INSERT INTO {table} ({columns}) VALUES ({placeholders})"

        cursor = await self.execute(query, tuple(data.values()))
        return cursor.lastrowid

    async def update(
        self,
        table: str,
        data: Dict[str, Any],
        where: str,
        where_params: tuple = ()
    ) -> int:
        """Обновляет записи и возвращает количество затронутых строк."""
        set_clause = ", ".join([f"{k} = ?" for k in data.keys()])
        query = f"UPDATE {table} SET {set_clause} WHERE {where}"

        cursor = await self.execute(query, tuple(data.values()) + tuple(where_params))
        return cursor.rowcount

    async def delete(
        self,
        table: str,
        where: str,
        where_params: tuple = ()
    ) -> int:
        """Удаляет записи и возвращает количество затронутых строк."""
        query = f"DELETE FROM {table} WHERE {where}"
        cursor = await self.execute(query, tuple(where_params))
        return cursor.rowcount

    async def count(
        self,
        table: str,
        where: str = "1=1",
        where_params: tuple = ()
    ) -> int:
        """Возвращает количество записей."""
        return await self.fetch_value(
            f"SELECT COUNT(*) FROM {table} WHERE {where}",
            tuple(where_params),
            default=0
        )


# Глобальный экземпляр сервиса
_db_service: Optional[DatabaseService] = None


async def get_db() -> AsyncGenerator[DatabaseService, None]:
    """Dependency для FastAPI - возвращает сервис базы данных."""
    global _db_service

    if _db_service is None:
        # Используем глобальный экземпляр, если он уже создан в lifespan
        # Иначе создаем новый с путем из настроек
        _db_service = DatabaseService()
        await _db_service.connect()

    yield _db_service


@asynccontextmanager
async def get_db_context() -> AsyncGenerator[DatabaseService, None]:
    """Контекстный менеджер для работы с базой данных (скрипты, фоновые задачи)."""
    db = DatabaseService()
    await db.connect()
    try:
        yield db
    finally:
        await db.disconnect()
