from datetime import datetime, timedelta, timezone

import pytest

from koshekshop import promocodes, sheets
from koshekshop.promocodes import Promocode, validate_promocode

HEADER = ["code", "type", "value", "expires_at", "active", "product_slugs"]
NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


def test_parse_promocode_rows_filters_invalid():
    rows = [
        HEADER,
        ["summer10", "Percent", "10", "2025-08-31 23:59:59", "TRUE", ""],
        ["", "amount", "100", "", "true", ""],
        ["BAD_TYPE", "gift", "100", "", "true", ""],
        ["ZERO", "amount", "0", "", "true", ""],
        ["TOO_MUCH", "percent", "150", "", "true", ""],
        ["RUB500", "amount", "500,5", "not a date", "0", "ring-a, ring-b  chain"],
    ]

    result = promocodes.parse_promocode_rows(rows)

    assert [p.code for p in result] == ["SUMMER10", "RUB500"]
    summer = result[0]
    assert summer.type == "percent"
    assert summer.active is True
    assert summer.expires_at == datetime(2025, 8, 31, 23, 59, 59, tzinfo=timezone.utc)
    rub = result[1]
    assert rub.value == 500.5
    assert rub.active is False
    assert rub.expires_at is None
    assert rub.product_slugs == ["ring-a", "ring-b", "chain"]


@pytest.mark.parametrize("raw, expected", [
    ("2025-01-02", datetime(2025, 1, 2, tzinfo=timezone.utc)),
    ("2025-01-02T10:30:00Z", datetime(2025, 1, 2, 10, 30, tzinfo=timezone.utc)),
    ("2025-01-02T13:30:00+03:00", datetime(2025, 1, 2, 10, 30, tzinfo=timezone.utc)),
    ("02.01.2025 10:30:00", datetime(2025, 1, 2, 10, 30, tzinfo=timezone.utc)),
    ("", None),
    ("завтра", None),
])
def test_parse_datetime(raw, expected):
    assert promocodes.parse_datetime(raw) == expected


def test_amount_discount_is_capped_by_total():
    promo = Promocode(code="RUB500", type="amount", value=500)

    assert validate_promocode(promo, 1200, now=NOW) == 500
    assert validate_promocode(promo, 300, now=NOW) == 300


def test_percent_discount_rounds_half_up():
    promo = Promocode(code="P10", type="percent", value=10)

    # 10% от 1.25 = 0.125
    assert validate_promocode(promo, 1.25, now=NOW) == 0.13
    assert validate_promocode(promo, 1000, now=NOW) == 100.0


def test_inactive_and_expired_codes_give_none():
    inactive = Promocode(code="OFF", type="amount", value=100, active=False)
    expired = Promocode(code="OLD", type="amount", value=100, expires_at=NOW - timedelta(seconds=1))
    fresh = Promocode(code="NEW", type="amount", value=100, expires_at=NOW + timedelta(days=1))

    assert validate_promocode(inactive, 1000, now=NOW) is None
    assert validate_promocode(expired, 1000, now=NOW) is None
    assert validate_promocode(fresh, 1000, now=NOW) == 100


def test_product_restricted_code():
    promo = Promocode(code="RING", type="percent", value=10, product_slugs=["ring-a"])

    assert validate_promocode(promo, 1000, ["chain"], now=NOW) is None
    assert validate_promocode(promo, 1000, [], now=NOW) is None
    assert validate_promocode(promo, 1000, ["chain", "ring-a"], now=NOW) == 100.0


def test_fetch_promocodes_missing_tab(spreadsheet_factory):
    assert promocodes.fetch_promocodes(spreadsheet_factory({})) == []


def test_append_update_delete(spreadsheet_factory):
    spreadsheet = spreadsheet_factory()
    promo = Promocode(code="welcome", type="amount", value=300,
                      expires_at=datetime(2025, 12, 31, 20, 0, tzinfo=timezone.utc),
                      product_slugs=["ring-a", "chain"])

    promocodes.append_promocode(spreadsheet, promo)

    rows = spreadsheet.values("promocodes")
    assert rows[0] == HEADER
    assert rows[1] == ["WELCOME", "amount", "300", "2025-12-31 20:00:00", "1", "ring-a,chain"]

    promocodes.update_promocode(spreadsheet, "Welcome", Promocode(code="WELCOME", type="percent", value=5, active=False))
    [stored] = promocodes.fetch_promocodes(spreadsheet)
    assert (stored.type, stored.value, stored.active, stored.expires_at) == ("percent", 5.0, False, None)

    promocodes.delete_promocode(spreadsheet, "welcome")
    assert promocodes.fetch_promocodes(spreadsheet) == []


def test_update_missing_code_raises(spreadsheet_factory):
    spreadsheet = spreadsheet_factory({"promocodes": [HEADER]})

    with pytest.raises(sheets.RowNotFoundError):
        promocodes.update_promocode(spreadsheet, "NOPE", Promocode(code="NOPE", type="amount", value=1))
    with pytest.raises(sheets.RowNotFoundError):
        promocodes.delete_promocode(spreadsheet, "NOPE")


def test_to_dict_uses_camel_case():
    promo = Promocode(code="A1B", type="amount", value=100,
                      expires_at=datetime(2025, 1, 1, tzinfo=timezone.utc))

    assert promo.to_dict() == {
        "code": "A1B",
        "type": "amount",
        "value": 100,
        "expiresAt": "2025-01-01T00:00:00+00:00",
        "active": True,
        "productSlugs": None,
    }
