import logging
import re
from dataclasses import dataclass, asdict
from typing import List, Optional

from koshekshop import sheets

logger = logging.getLogger(__name__)

CATEGORIES_SHEET = "categories"
CATEGORY_HEADERS = ["key", "title", "description", "image", "image_position", "order"]
ORDER_RE = re.compile(r"^\s*([+-]?\d+)")


@dataclass
class Category:
    key: str
    title: str
    description: Optional[str] = None
    image: str = ""
    image_position: str = "center"
    order: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


def parse_order(raw: str) -> Optional[int]:
    """Целая часть из начала строки: "2.5" -> 2, "abc" -> None"""
    match = ORDER_RE.match(str(raw))
    return int(match.group(1)) if match else None


def parse_category_rows(rows: List[list]) -> List[Category]:
    """Строки листа categories -> категории, отсортированные по order"""
    if not rows:
        return []

    index = sheets.header_index(rows[0])
    categories = []

    # row_number - номер строки в листе без заголовка, начиная с 1
    for row_number, row in enumerate(rows[1:], start=1):
        key = sheets.cell(row, index, "key")
        if not key:
            continue

        order = parse_order(sheets.cell(row, index, "order"))
        categories.append(Category(
            key=key,
            title=sheets.cell(row, index, "title") or key,
            description=sheets.cell(row, index, "description") or None,
            image=sheets.cell(row, index, "image") or "",
            image_position=sheets.cell(row, index, "image_position") or "center",
            order=order if order is not None else row_number,
        ))

    categories.sort(key=lambda c: c.order)
    return categories


def fetch_categories(spreadsheet) -> List[Category]:
    if not sheets.worksheet_exists(spreadsheet, CATEGORIES_SHEET):
        logger.info(f"Sheet '{CATEGORIES_SHEET}' not found, no categories")
        return []
    ws = spreadsheet.worksheet(CATEGORIES_SHEET)
    return parse_category_rows(ws.get_all_values())


def save_categories(spreadsheet, categories: List[Category]):
    """Полностью перезаписывает лист; order = позиция в списке"""
    ws = sheets.ensure_worksheet(spreadsheet, CATEGORIES_SHEET, CATEGORY_HEADERS)

    rows = [CATEGORY_HEADERS]
    for i, cat in enumerate(categories):
        rows.append([
            cat.key,
            cat.title,
            cat.description or "",
            cat.image or "",
            cat.image_position or "center",
            i,
        ])

    # старые строки могут быть длиннее нового списка
    ws.clear()
    sheets.write_rows(ws, 1, rows)
    logger.info(f"Saved {len(categories)} categories")
