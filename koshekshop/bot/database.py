"""Подписчики бота - все, кто хоть раз нажимал /start. Нужны только для рассылки."""

from contextlib import asynccontextmanager

import aiosqlite

from koshekshop import config


@asynccontextmanager
async def get_db():
    """Подключение к БД с WAL и таймаутом на блокировку"""
    db = await aiosqlite.connect(config.BOT_DB_PATH)
    try:
        await db.execute("PRAGMA busy_timeout=30000")
        await db.execute("PRAGMA journal_mode=WAL")
        await db.execute("PRAGMA synchronous=NORMAL")
        yield db
    finally:
        await db.close()


async def init_db():
    async with get_db() as db:
        await db.execute("""
            CREATE TABLE IF NOT EXISTS subscribers (
                user_id INTEGER PRIMARY KEY,
                username TEXT,
                first_name TEXT,
                first_seen TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                last_seen TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)
        await db.commit()


async def save_subscriber(user_id: int, username: str = None, first_name: str = None):
    """Новый подписчик или обновление имени и last_seen у существующего"""
    async with get_db() as db:
        await db.execute(
            """
            INSERT INTO subscribers (user_id, username, first_name) VALUES (?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                username = excluded.username,
                first_name = excluded.first_name,
                last_seen = CURRENT_TIMESTAMP
            """,
            (user_id, username, first_name)
        )
        await db.commit()


async def get_subscriber(user_id: int):
    async with get_db() as db:
        db.row_factory = aiosqlite.Row
        async with db.execute("SELECT * FROM subscribers WHERE user_id = ?", (user_id,)) as cursor:
            row = await cursor.fetchone()
    return dict(row) if row else None


async def get_subscriber_ids():
    async with get_db() as db:
        async with db.execute("SELECT user_id FROM subscribers ORDER BY first_seen, user_id") as cursor:
            return [row[0] for row in await cursor.fetchall()]
