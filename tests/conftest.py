import hashlib
import hmac
import json
from urllib.parse import urlencode

import gspread
import pytest
from gspread.utils import a1_to_rowcol

from koshekshop import orders, store


class FakeWorksheet:
    """Лист в памяти с тем подмножеством API gspread, которое использует адаптер"""

    def __init__(self, title, rows=None):
        self.title = title
        self.rows = [list(r) for r in (rows or [])]

    def get_all_values(self):
        # gspread отдаёт прямоугольную таблицу строк
        width = max((len(r) for r in self.rows), default=0)
        return [[str(c) for c in r] + [""] * (width - len(r)) for r in self.rows]

    def append_row(self, values, value_input_option=None):
        self.rows.append(list(values))

    def update(self, range_name=None, values=None, value_input_option=None):
        start = range_name.split(":")[0]
        row, col = a1_to_rowcol(start)
        for r_offset, new_row in enumerate(values):
            r = row - 1 + r_offset
            while len(self.rows) <= r:
                self.rows.append([])
            target = self.rows[r]
            for c_offset, value in enumerate(new_row):
                c = col - 1 + c_offset
                while len(target) <= c:
                    target.append("")
                target[c] = value

    def delete_rows(self, index):
        del self.rows[index - 1]

    def clear(self):
        self.rows = []


class FakeSpreadsheet:
    def __init__(self, sheets=None):
        self._sheets = {title: FakeWorksheet(title, rows) for title, rows in (sheets or {}).items()}

    def worksheet(self, title):
        if title not in self._sheets:
            raise gspread.exceptions.WorksheetNotFound(title)
        return self._sheets[title]

    def worksheets(self):
        return list(self._sheets.values())

    def add_worksheet(self, title, rows, cols):
        ws = FakeWorksheet(title)
        self._sheets[title] = ws
        return ws

    def values(self, title):
        """Строки листа как строки (как их вернёт get_all_values)"""
        return self.worksheet(title).get_all_values()


@pytest.fixture
def spreadsheet_factory():
    return FakeSpreadsheet


@pytest.fixture(autouse=True)
def fresh_state(monkeypatch):
    """Каждый тест - с пустыми каталогом и заказами"""
    monkeypatch.setattr(store, "catalog", store.CatalogStore())
    monkeypatch.setattr(orders, "order_store", orders.OrderStore())


def make_init_data(user: dict, bot_token: str, auth_date: int = 1700000000) -> str:
    """initData, подписанная так же, как это делает Telegram"""
    fields = {
        "auth_date": str(auth_date),
        "query_id": "AAHdF6IQAAAAAN0XohDhrOrc",
        "user": json.dumps(user, separators=(",", ":")),
    }
    data_check_string = "\n".join(f"{k}={v}" for k, v in sorted(fields.items()))
    secret_key = hmac.new(b"WebAppData", bot_token.encode(), hashlib.sha256).digest()
    fields["hash"] = hmac.new(secret_key, data_check_string.encode(), hashlib.sha256).hexdigest()
    return urlencode(fields)


@pytest.fixture
def init_data_factory():
    return make_init_data
