"""
Промокоды: чтение/запись листа promocodes и расчёт скидки.

Колонки листа: code, type, value, expires_at, active, product_slugs.
type - amount (скидка в рублях) или percent (процент от суммы заказа).
Пустой product_slugs - промокод действует на все товары.
"""

import logging
import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from koshekshop import sheets

logger = logging.getLogger(__name__)

PROMOCODES_SHEET = "promocodes"
PROMOCODE_HEADERS = ["code", "type", "value", "expires_at", "active", "product_slugs"]
PROMOCODE_TYPES = ("amount", "percent")

# форматы, в которых дата может вернуться из таблицы
DATE_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%d",
    "%d.%m.%Y %H:%M:%S",
    "%d.%m.%Y %H:%M",
    "%d.%m.%Y",
)
SHEET_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass
class Promocode:
    code: str
    type: str
    value: float
    active: bool = True
    expires_at: Optional[datetime] = None
    product_slugs: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "type": self.type,
            "value": self.value,
            "expiresAt": self.expires_at.isoformat() if self.expires_at else None,
            "active": self.active,
            "productSlugs": self.product_slugs or None,
        }


def parse_datetime(raw: str) -> Optional[datetime]:
    """Дата из таблицы или из запроса -> aware UTC datetime; мусор -> None"""
    raw = (raw or "").strip()
    if not raw:
        return None

    parsed = None
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        for fmt in DATE_FORMATS:
            try:
                parsed = datetime.strptime(raw, fmt)
                break
            except ValueError:
                continue

    if parsed is None:
        return None
    # время без зоны считаем UTC
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def split_slugs(raw: str) -> List[str]:
    return [s for s in re.split(r"[,\s]+", raw or "") if s]


def parse_promocode_rows(rows: List[list]) -> List[Promocode]:
    if not rows:
        return []

    index = sheets.header_index(rows[0])
    out = []

    for row in rows[1:]:
        if not row:
            continue

        code = sheets.cell(row, index, "code").upper()
        kind = sheets.cell(row, index, "type").lower()
        value = sheets.parse_float(sheets.cell(row, index, "value"))

        if not code:
            continue
        if kind not in PROMOCODE_TYPES:
            continue
        if value is None or value <= 0:
            continue
        if kind == "percent" and value > 100:
            continue

        out.append(Promocode(
            code=code,
            type=kind,
            value=value,
            active=sheets.parse_bool(sheets.cell(row, index, "active")),
            expires_at=parse_datetime(sheets.cell(row, index, "expires_at", "expiresat")),
            product_slugs=split_slugs(sheets.cell(row, index, "product_slugs", "productslugs")),
        ))

    return out


def promocode_to_row(promo: Promocode, header: List[str]) -> list:
    values = {
        "code": promo.code.upper(),
        "type": promo.type,
        "value": promo.value,
        "expires_at": promo.expires_at.astimezone(timezone.utc).strftime(SHEET_DATE_FORMAT) if promo.expires_at else "",
        "active": 1 if promo.active else 0,
        "product_slugs": ",".join(promo.product_slugs),
    }
    return [values.get(str(h).strip().lower(), "") for h in header]


def fetch_promocodes(spreadsheet) -> List[Promocode]:
    """Все промокоды; отсутствующий или сломанный лист - пустой список"""
    try:
        ws = spreadsheet.worksheet(PROMOCODES_SHEET)
        return parse_promocode_rows(ws.get_all_values())
    except Exception as e:
        logger.warning(f"Failed to read sheet '{PROMOCODES_SHEET}': {e}")
        return []


def _promocodes_sheet(spreadsheet):
    ws = sheets.ensure_worksheet(spreadsheet, PROMOCODES_SHEET, PROMOCODE_HEADERS)
    rows = ws.get_all_values()
    if not rows:
        sheets.write_rows(ws, 1, [PROMOCODE_HEADERS])
        rows = [PROMOCODE_HEADERS]
    return ws, rows


def _find_code_row(rows: List[list], code: str) -> int:
    row_number = sheets.find_row(rows, "code", code, normalize=lambda v: v.strip().upper())
    if not row_number:
        raise sheets.RowNotFoundError(f'Promocode "{code}" not found')
    return row_number


def append_promocode(spreadsheet, promo: Promocode):
    ws, rows = _promocodes_sheet(spreadsheet)
    ws.append_row(promocode_to_row(promo, rows[0]), value_input_option="USER_ENTERED")
    logger.info(f"Promocode {promo.code} appended")


def update_promocode(spreadsheet, code: str, promo: Promocode):
    ws, rows = _promocodes_sheet(spreadsheet)
    row_number = _find_code_row(rows, code)
    sheets.write_rows(ws, row_number, [promocode_to_row(promo, rows[0])])
    logger.info(f"Promocode {code} updated (row {row_number})")


def delete_promocode(spreadsheet, code: str):
    ws, rows = _promocodes_sheet(spreadsheet)
    row_number = _find_code_row(rows, code)
    ws.delete_rows(row_number)
    logger.info(f"Promocode {code} deleted")


def round_half_up(value: float) -> float:
    return math.floor(value * 100 + 0.5) / 100


def validate_promocode(
    promo: Promocode,
    order_total: float,
    item_slugs: Optional[List[str]] = None,
    now: Optional[datetime] = None
) -> Optional[float]:
    """
    Скидка по промокоду для заказа на сумму order_total.

    None - промокод неприменим: выключен, истёк или привязан к товарам,
    которых нет в заказе.
    """
    if not promo.active:
        return None

    now = now or datetime.now(timezone.utc)
    if promo.expires_at and now > promo.expires_at:
        return None

    if promo.product_slugs:
        slugs = item_slugs or []
        if not any(slug in promo.product_slugs for slug in slugs):
            return None

    if promo.type == "amount":
        return min(promo.value, order_total)

    percent = min(promo.value, 100)
    return round_half_up(order_total * percent / 100)
