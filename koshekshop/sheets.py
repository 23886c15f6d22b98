"""
Google Sheets как база данных
=============================

Одна таблица, несколько листов:
- по листу на категорию товаров (имена из SHEET_NAMES)
- categories - карточки категорий
- promocodes - промокоды
- settings - настройки приёма заказов (ключ/значение)

gspread синхронный, поэтому из async-кода все вызовы адаптера
идут через asyncio.to_thread.
"""

import json
import logging
import os
import re
from dataclasses import dataclass, field, asdict
from typing import Dict, List, Optional

import gspread
from google.oauth2.service_account import Credentials
from gspread.utils import rowcol_to_a1

from koshekshop import config

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]

PRODUCT_HEADERS = [
    "id", "slug", "title", "description", "price_rub", "discount_price_rub",
    "badge_text", "images", "active", "stock", "article",
]

TRUE_VALUES = ("true", "1", "yes")


class SheetsError(Exception):
    """Ошибка работы с Google Sheets"""


class SheetsConfigError(SheetsError):
    """Не заданы ключи сервисного аккаунта"""


class RowNotFoundError(SheetsError):
    """Строка с нужным ключом не найдена в листе"""


# ============================================
# ПОДКЛЮЧЕНИЕ
# ============================================

_gspread_client = None


def load_service_account_info() -> dict:
    """GOOGLE_SA_FILE (путь к json) или GOOGLE_SA_JSON (json строкой)"""
    if config.GOOGLE_SA_FILE:
        if not os.path.exists(config.GOOGLE_SA_FILE):
            raise SheetsConfigError(f"Service account file not found: {config.GOOGLE_SA_FILE}")
        with open(config.GOOGLE_SA_FILE, "r", encoding="utf-8") as f:
            return json.load(f)
    if config.GOOGLE_SA_JSON:
        try:
            return json.loads(config.GOOGLE_SA_JSON)
        except ValueError as e:
            raise SheetsConfigError(f"GOOGLE_SA_JSON is not valid JSON: {e}") from e
    raise SheetsConfigError("GOOGLE_SA_JSON or GOOGLE_SA_FILE is required")


def get_gspread_client() -> gspread.Client:
    """Получить или создать gspread клиент (переиспользуется между запросами)"""
    global _gspread_client
    if _gspread_client is None:
        creds = Credentials.from_service_account_info(load_service_account_info(), scopes=SCOPES)
        _gspread_client = gspread.authorize(creds)
    return _gspread_client


def open_spreadsheet(sheet_id: str) -> gspread.Spreadsheet:
    return get_gspread_client().open_by_key(sheet_id)


def get_worksheet(spreadsheet, title: str):
    """Лист по имени: сначала точное совпадение, затем без учёта регистра"""
    try:
        return spreadsheet.worksheet(title)
    except gspread.exceptions.WorksheetNotFound:
        pass
    for ws in spreadsheet.worksheets():
        if ws.title.lower() == title.lower():
            return ws
    raise SheetsError(f'Worksheet "{title}" not found')


def worksheet_exists(spreadsheet, title: str) -> bool:
    return any(ws.title == title for ws in spreadsheet.worksheets())


def ensure_worksheet(spreadsheet, title: str, headers: List[str]):
    """Лист по имени; если его нет - создаём с заголовками"""
    if worksheet_exists(spreadsheet, title):
        return spreadsheet.worksheet(title)
    ws = spreadsheet.add_worksheet(title=title, rows=1000, cols=max(len(headers), 2))
    write_rows(ws, 1, [headers])
    logger.info(f"Worksheet '{title}' created")
    return ws


def write_rows(ws, start_row: int, rows: List[list]):
    """Перезаписать прямоугольный диапазон начиная с колонки A"""
    if not rows:
        return
    width = max(len(r) for r in rows) or 1
    end_cell = rowcol_to_a1(start_row + len(rows) - 1, width)
    ws.update(
        range_name=f"A{start_row}:{end_cell}",
        values=rows,
        value_input_option="USER_ENTERED"
    )


# ============================================
# РАЗБОР ЯЧЕЕК
# ============================================

def header_index(header_row: List[str]) -> Dict[str, int]:
    """Карта имя колонки (lower) -> индекс"""
    index = {}
    for i, h in enumerate(header_row):
        name = str(h).strip().lower()
        if name and name not in index:
            index[name] = i
    return index


def cell(row: list, index: Dict[str, int], *names: str) -> str:
    """Значение ячейки по первому найденному имени колонки, всегда строка"""
    for name in names:
        i = index.get(name)
        if i is not None and i < len(row) and row[i] is not None:
            value = str(row[i]).strip()
            if value:
                return value
    return ""


def parse_float(raw: str) -> Optional[float]:
    raw = str(raw).strip().replace(" ", "").replace(",", ".")
    if not raw:
        return None
    try:
        value = float(raw)
    except ValueError:
        return None
    if value != value or value in (float("inf"), float("-inf")):
        return None
    return value


def parse_int(raw: str) -> Optional[int]:
    value = parse_float(raw)
    return int(value) if value is not None else None


def parse_bool(raw: str) -> bool:
    return str(raw).strip().lower() in TRUE_VALUES


def find_row(rows: List[list], column: str, value: str, normalize=str.strip) -> Optional[int]:
    """Номер строки (1-based, как в Google Sheets) по значению в колонке"""
    if not rows:
        return None
    idx = header_index(rows[0]).get(column)
    if idx is None:
        return None
    target = normalize(value)
    for i, row in enumerate(rows[1:], start=2):
        if idx < len(row) and normalize(str(row[idx])) == target:
            return i
    return None


# ============================================
# ТОВАРЫ
# ============================================

@dataclass
class SheetProduct:
    slug: str
    title: str
    category: str
    price_rub: float = 0.0
    images: List[str] = field(default_factory=list)
    active: bool = True
    id: Optional[str] = None
    description: Optional[str] = None
    discount_price_rub: Optional[float] = None
    badge_text: Optional[str] = None
    stock: Optional[int] = None
    article: Optional[str] = None

    @property
    def actual_price(self) -> float:
        """Цена со скидкой, если она заполнена, иначе обычная"""
        if self.discount_price_rub is not None and self.discount_price_rub > 0:
            return self.discount_price_rub
        return self.price_rub

    def to_dict(self) -> dict:
        return asdict(self)


def split_images(raw: str) -> List[str]:
    # разделители - запятая или перенос строки
    return [s.strip() for s in re.split(r"[,\n]", raw or "") if s.strip()]


def parse_product_rows(rows: List[list], category: str) -> List[SheetProduct]:
    """Строки листа (с заголовком) -> список товаров категории"""
    if not rows:
        return []

    index = header_index(rows[0])
    products = []

    for row in rows[1:]:
        if not row or not any(str(c).strip() for c in row):
            continue

        slug = cell(row, index, "slug")
        title = cell(row, index, "title")
        if not slug or not title:
            continue

        price = parse_float(cell(row, index, "price_rub"))
        discount = parse_float(cell(row, index, "discount_price_rub"))

        products.append(SheetProduct(
            id=cell(row, index, "id") or None,
            slug=slug,
            title=title,
            description=cell(row, index, "description") or None,
            category=category,
            price_rub=price if price is not None else 0.0,
            discount_price_rub=discount if discount else None,
            badge_text=cell(row, index, "badge_text") or None,
            images=split_images(cell(row, index, "images")),
            active=parse_bool(cell(row, index, "active")),
            stock=parse_int(cell(row, index, "stock")),
            article=cell(row, index, "article") or None,
        ))

    return products


def product_to_row(product: SheetProduct, header: List[str]) -> list:
    """Товар -> строка листа в порядке его заголовков"""
    values = {
        "id": product.id or "",
        "slug": product.slug,
        "title": product.title,
        "description": product.description or "",
        "price_rub": product.price_rub,
        "discount_price_rub": product.discount_price_rub if product.discount_price_rub is not None else "",
        "badge_text": product.badge_text or "",
        "images": "\n".join(product.images),
        "active": 1 if product.active else 0,
        "stock": product.stock if product.stock is not None else "",
        "article": product.article or "",
    }
    return [values.get(str(h).strip().lower(), "") for h in header]


def normalize_sheet_name(category: str) -> str:
    """Категория -> точное имя листа из SHEET_NAMES (с учётом регистра листа)"""
    for name in config.SHEET_NAMES:
        if name.lower() == category.strip().lower():
            return name
    return category.strip().lower()


def find_category_sheet(category: str) -> Optional[str]:
    """Имя листа из SHEET_NAMES или None, если такой категории нет"""
    for name in config.SHEET_NAMES:
        if name.lower() == (category or "").strip().lower():
            return name
    return None


def fetch_products(spreadsheet, sheet_names: Optional[List[str]] = None) -> List[SheetProduct]:
    """Все товары из листов категорий в порядке строк таблицы"""
    products = []
    for sheet_name in sheet_names or config.SHEET_NAMES:
        try:
            ws = get_worksheet(spreadsheet, sheet_name)
            products.extend(parse_product_rows(ws.get_all_values(), sheet_name))
        except Exception as e:
            # один сломанный лист не должен ронять весь импорт
            logger.warning(f"Failed to read sheet '{sheet_name}': {e}")
    return products


def _product_sheet(spreadsheet, category: str):
    ws = get_worksheet(spreadsheet, normalize_sheet_name(category))
    rows = ws.get_all_values()
    return ws, rows


def append_product(spreadsheet, category: str, product: SheetProduct):
    ws, rows = _product_sheet(spreadsheet, category)
    if rows:
        header = rows[0]
    else:
        header = PRODUCT_HEADERS
        write_rows(ws, 1, [header])

    ws.append_row(product_to_row(product, header), value_input_option="USER_ENTERED")
    logger.info(f"Product '{product.slug}' appended to sheet '{ws.title}'")


def update_product(spreadsheet, category: str, old_slug: str, product: SheetProduct):
    ws, rows = _product_sheet(spreadsheet, category)
    row_number = find_row(rows, "slug", old_slug)
    if not row_number:
        raise RowNotFoundError(f'Product "{old_slug}" not found in sheet "{ws.title}"')

    write_rows(ws, row_number, [product_to_row(product, rows[0])])
    logger.info(f"Product '{old_slug}' -> '{product.slug}' updated in sheet '{ws.title}' row {row_number}")


def delete_product(spreadsheet, category: str, slug: str):
    ws, rows = _product_sheet(spreadsheet, category)
    row_number = find_row(rows, "slug", slug)
    if not row_number:
        raise RowNotFoundError(f'Product "{slug}" not found in sheet "{ws.title}"')

    ws.delete_rows(row_number)
    logger.info(f"Product '{slug}' deleted from sheet '{ws.title}'")


def reorder_rows(all_rows: List[list], slugs: List[str]) -> List[list]:
    """
    Новый порядок строк листа: заголовок, затем товары из slugs в заданном
    порядке, затем все остальные строки в исходном порядке.
    """
    header = all_rows[0]
    slug_idx = header_index(header).get("slug")
    if slug_idx is None:
        raise SheetsError("Column 'slug' not found")

    def row_slug(row):
        return str(row[slug_idx]).strip() if slug_idx < len(row) else ""

    by_slug = {}
    for row in all_rows[1:]:
        s = row_slug(row)
        if s and s not in by_slug:
            by_slug[s] = row

    ordered = []
    taken = set()
    for s in slugs:
        row = by_slug.get(s)
        if row is not None and s not in taken:
            ordered.append(row)
            taken.add(s)

    for row in all_rows[1:]:
        s = row_slug(row)
        if s in taken and by_slug.get(s) is row:
            continue
        ordered.append(row)

    if len(ordered) != len(all_rows) - 1:
        raise SheetsError(
            f"Row count changed during reorder (was {len(all_rows) - 1}, now {len(ordered)}), aborted"
        )

    return [header] + ordered


def reorder_products(spreadsheet, category: str, slugs: List[str]):
    ws, rows = _product_sheet(spreadsheet, category)
    if len(rows) < 2:
        logger.warning(f"Not enough rows to reorder in sheet '{ws.title}'")
        return

    write_rows(ws, 1, reorder_rows(rows, slugs))
    logger.info(f"Sheet '{ws.title}' reordered ({len(slugs)} slugs, {len(rows)} rows)")
