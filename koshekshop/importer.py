"""
Импорт каталога из Google Sheets в память витрины
и вызов этого импорта со стороны админки.
"""

import asyncio
import logging

import httpx

from koshekshop import config, sheets, store
from koshekshop.promocodes import fetch_promocodes

logger = logging.getLogger(__name__)


async def open_import_sheet():
    return await asyncio.to_thread(sheets.open_spreadsheet, config.IMPORT_SHEET_ID)


async def import_products() -> int:
    """Товары из всех листов категорий -> catalog. Ошибки только логируются."""
    if not config.IMPORT_SHEET_ID:
        logger.warning("IMPORT_SHEET_ID is not set, products import skipped")
        return 0

    try:
        logger.info("Importing products from Google Sheets...")
        spreadsheet = await open_import_sheet()
        products = await asyncio.to_thread(sheets.fetch_products, spreadsheet)
        store.catalog.upsert_products(products)
        logger.info(f"Products imported: {len(products)}")
        return len(products)
    except Exception as e:
        logger.error(f"Products import error: {e}", exc_info=True)
        return 0


async def import_promocodes() -> int:
    if not config.IMPORT_SHEET_ID:
        logger.warning("IMPORT_SHEET_ID is not set, promocodes import skipped")
        return 0

    try:
        logger.info("Importing promocodes from Google Sheets...")
        spreadsheet = await open_import_sheet()
        promocodes = await asyncio.to_thread(fetch_promocodes, spreadsheet)
        store.catalog.load_promocodes(promocodes)
        logger.info(f"Promocodes imported: {len(promocodes)}")
        return len(promocodes)
    except Exception as e:
        logger.error(f"Promocodes import error: {e}", exc_info=True)
        return 0


async def import_catalog():
    await import_products()
    await import_promocodes()


async def periodic_import_task(interval_minutes: int):
    """Фоновый переимпорт каталога каждые interval_minutes минут"""
    logger.info(f"Periodic import task started (every {interval_minutes} min)")
    while True:
        await asyncio.sleep(interval_minutes * 60)
        try:
            await import_catalog()
        except Exception as e:
            logger.error(f"Periodic import error: {e}", exc_info=True)


async def trigger_backend_import():
    """
    Попросить витрину переимпортировать таблицу после изменений в админке.
    Ошибки только логируются - изменение в таблице уже сохранено.
    """
    if not config.ADMIN_IMPORT_KEY:
        logger.warning("ADMIN_IMPORT_KEY is not set, backend import skipped")
        return False

    url = f"{config.BACKEND_URL}/admin/import/sheets"
    try:
        async with httpx.AsyncClient(timeout=config.IMPORT_TIMEOUT) as client:
            response = await client.post(url, json={}, headers={"x-admin-key": config.ADMIN_IMPORT_KEY})

        if response.status_code != 200:
            logger.warning(f"Backend import failed: {response.status_code} - {response.text[:200]}")
            return False

        logger.info("Backend import triggered")
        return True
    except httpx.HTTPError as e:
        logger.warning(f"Failed to trigger backend import: {e}")
        return False
