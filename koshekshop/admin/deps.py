import asyncio
import logging

from fastapi import HTTPException

from koshekshop import config, importer, sheets

logger = logging.getLogger(__name__)


async def get_spreadsheet():
    """Dependency: таблица, которой управляет админка"""
    if not config.GOOGLE_SHEET_ID:
        raise HTTPException(status_code=500, detail="GOOGLE_SHEET_ID not configured")
    return await asyncio.to_thread(sheets.open_spreadsheet, config.GOOGLE_SHEET_ID)


async def run_sheet(func, *args):
    """Вызов синхронного адаптера таблиц из async-роута"""
    return await asyncio.to_thread(func, *args)


async def refresh_storefront():
    # ошибки логируются внутри, изменение в таблице уже сохранено
    await importer.trigger_backend_import()


def to_bool(value, default: bool = True) -> bool:
    """Флаг из JSON: bool как есть, строки и числа - как в таблице"""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return sheets.parse_bool(value)
