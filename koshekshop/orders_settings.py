import logging
from dataclasses import dataclass
from typing import List, Optional

from koshekshop import sheets

logger = logging.getLogger(__name__)

SETTINGS_SHEET = "settings"
SETTINGS_HEADERS = ["key", "value"]
ORDERS_CLOSED_KEYS = ("orders_closed", "order_closed")


@dataclass
class OrdersSettings:
    orders_closed: bool = False
    close_date: Optional[str] = None

    def to_dict(self) -> dict:
        data = {"ordersClosed": self.orders_closed}
        if self.close_date:
            data["closeDate"] = self.close_date
        return data


def parse_settings_rows(rows: List[list]) -> OrdersSettings:
    """Строки key/value (первая - заголовок) -> настройки"""
    settings = OrdersSettings()
    for row in rows[1:]:
        if not row or len(row) < 2:
            continue
        key = str(row[0]).strip().lower()
        value = str(row[1]).strip()
        if key in ORDERS_CLOSED_KEYS:
            settings.orders_closed = sheets.parse_bool(value)
        elif key == "close_date" and value:
            settings.close_date = value
    return settings


def fetch_orders_settings(spreadsheet, create_missing: bool = False) -> OrdersSettings:
    """
    Настройки приёма заказов. Никогда не бросает исключений: при любой ошибке
    заказы считаются открытыми.

    create_missing=True (админка) создаёт лист settings со значениями по умолчанию.
    """
    try:
        if not sheets.worksheet_exists(spreadsheet, SETTINGS_SHEET):
            if create_missing:
                ws = sheets.ensure_worksheet(spreadsheet, SETTINGS_SHEET, SETTINGS_HEADERS)
                sheets.write_rows(ws, 2, [["orders_closed", "false"], ["close_date", ""]])
            return OrdersSettings()

        rows = spreadsheet.worksheet(SETTINGS_SHEET).get_all_values()
        settings = parse_settings_rows(rows)
        logger.debug(f"Orders settings: closed={settings.orders_closed}, close_date={settings.close_date}")
        return settings
    except Exception as e:
        logger.error(f"Failed to read orders settings: {e}")
        return OrdersSettings()


def save_orders_settings(spreadsheet, settings: OrdersSettings):
    """Обновляет существующие строки ключей, недостающие дописывает в конец"""
    ws = sheets.ensure_worksheet(spreadsheet, SETTINGS_SHEET, SETTINGS_HEADERS)
    rows = ws.get_all_values()

    if not rows or str(rows[0][0]).strip() != "key":
        sheets.write_rows(ws, 1, [SETTINGS_HEADERS])
        rows = [SETTINGS_HEADERS] + rows[1:]

    values = {
        "orders_closed": "true" if settings.orders_closed else "false",
        "close_date": settings.close_date or "",
    }

    for key, value in values.items():
        row_number = sheets.find_row(rows, "key", key, normalize=lambda v: v.strip().lower())
        if row_number:
            ws.update(range_name=f"B{row_number}", values=[[value]], value_input_option="USER_ENTERED")
        else:
            ws.append_row([key, value], value_input_option="USER_ENTERED")

    logger.info(f"Orders settings saved: closed={settings.orders_closed}, close_date={settings.close_date}")
