import asyncio
import hashlib
from urllib.parse import parse_qs, urlparse

import pytest
from fastapi.testclient import TestClient

from koshekshop import config, orders, sheets, store
from koshekshop.miniapp import api
from koshekshop.orders import OrderStatus
from koshekshop.orders_settings import OrdersSettings
from koshekshop.promocodes import Promocode
from koshekshop.sheets import SheetProduct

BOT_TOKEN = "123456:TEST-TOKEN"


@pytest.fixture
def notified(monkeypatch):
    sent = []

    async def fake_notifications(order):
        sent.append(order.order_id)

    monkeypatch.setattr(api, "send_order_notifications", fake_notifications)
    return sent


@pytest.fixture
def client(monkeypatch, notified):
    monkeypatch.setattr(config, "ROBOKASSA_MERCHANT_LOGIN", "koshek")
    monkeypatch.setattr(config, "ROBOKASSA_PASSWORD_1", "pass1")
    monkeypatch.setattr(config, "ROBOKASSA_PASSWORD_2", "pass2")
    monkeypatch.setattr(config, "ROBOKASSA_TEST", True)
    monkeypatch.setattr(config, "IMPORT_SHEET_ID", "")
    monkeypatch.setattr(config, "TG_BOT_TOKEN", BOT_TOKEN)
    monkeypatch.setattr(config, "TG_BOT_USERNAME", "@koshek_bot")
    monkeypatch.setattr(config, "TG_WEBAPP_URL", "https://shop.example")
    monkeypatch.setattr(config, "ADMIN_IMPORT_KEY", "import-secret")
    api.general_limiter.reset()
    api.order_limiter.reset()
    api.cache.invalidate()

    store.catalog.upsert_products([
        SheetProduct(slug="ring", title="Кольцо", category="Руки", price_rub=1000,
                     discount_price_rub=800, stock=3, article="0001"),
        SheetProduct(slug="chain", title="Цепочка", category="Шея", price_rub=500),
        SheetProduct(slug="hidden", title="Скрытый", category="Шея", price_rub=100, active=False),
    ])
    store.catalog.load_promocodes([
        Promocode(code="SALE", type="amount", value=500),
        Promocode(code="CHAINONLY", type="percent", value=10, product_slugs=["chain"]),
    ])

    return TestClient(api.app)


def order_body(**overrides):
    body = {
        "items": [{"slug": "ring", "quantity": 2}, {"slug": "chain", "quantity": 1.7}],
        "fullName": "Анна Иванова",
        "phone": "+79990000000",
        "country": "Россия",
        "city": "Москва",
        "address": "ПВЗ на Тверской",
        "deliveryRegion": "russia",
        "deliveryCost": 300,
        "total": 1,
    }
    body.update(overrides)
    return body


def signed_callback(out_sum, inv_id, **extra):
    signature = hashlib.md5(f"{out_sum}:{inv_id}:pass2".encode()).hexdigest().upper()
    return {"OutSum": out_sum, "InvId": str(inv_id), "SignatureValue": signature, **extra}


def create_order(client, **overrides):
    response = client.post("/api/orders", json=order_body(**overrides))
    assert response.status_code == 200, response.text
    return orders.order_store.get_order(response.json()["orderId"])


def test_health(client):
    assert client.get("/health").json() == {"ok": True}


def test_products_lists_only_active(client):
    data = client.get("/api/products").json()

    assert data["total"] == 2
    assert {p["slug"] for p in data["items"]} == {"ring", "chain"}


def test_create_order_recalculates_prices(client):
    response = client.post("/api/orders", json=order_body())

    assert response.status_code == 200
    data = response.json()
    assert data["ok"] is True
    order = orders.order_store.get_order(data["orderId"])
    assert order.status == OrderStatus.PENDING
    assert [(i["slug"], i["price"], i["quantity"]) for i in order.data["items"]] == [("ring", 800, 2), ("chain", 500, 1)]
    assert order.data["itemsTotal"] == 2100
    assert order.total == 2400
    assert order.customer_chat_id is None

    params = parse_qs(urlparse(data["paymentUrl"]).query)
    assert params["OutSum"] == ["2400.00"]
    assert params["InvId"] == [str(order.invoice_id)]
    assert params["IsTest"] == ["1"]
    assert params["SuccessURL"] == ["https://shop.example/payment/success"]


def test_create_order_takes_chat_id_from_signed_init_data(client, init_data_factory):
    init_data = init_data_factory({"id": 777, "first_name": "Аня"}, BOT_TOKEN)

    order = create_order(client, initData=init_data)

    assert order.customer_chat_id == "777"


def test_create_order_ignores_forged_init_data(client, init_data_factory):
    init_data = init_data_factory({"id": 777}, "999:OTHER")

    order = create_order(client, initData=init_data)

    assert order.customer_chat_id is None


def test_negative_delivery_cost_is_zero(client):
    order = create_order(client, deliveryCost=-50)

    assert order.data["deliveryCost"] == 0
    assert order.total == 2100


@pytest.mark.parametrize("items", [None, []])
def test_create_order_requires_items(client, items):
    response = client.post("/api/orders", json=order_body(items=items))

    assert response.status_code == 400
    assert response.json() == {"error": "invalid_items", "success": False}


@pytest.mark.parametrize("slug", ["missing", "hidden"])
def test_create_order_with_unknown_product(client, slug):
    response = client.post("/api/orders", json=order_body(items=[{"slug": slug, "quantity": 1}]))

    assert response.status_code == 400
    assert response.json()["error"] == "some_items_not_found"
    assert orders.order_store.list_orders() == []


def test_malformed_body_is_invalid_request(client):
    response = client.post("/api/orders", json={"items": "ring"})

    assert response.status_code == 400
    assert response.json()["error"] == "invalid_request"


def test_create_order_with_promocode(client):
    order = create_order(client, promocode=" sale ")

    assert order.data["promocode"] == "SALE"
    assert order.data["discount"] == 500
    assert order.total == 1900


@pytest.mark.parametrize("code, error", [("NOPE", "promocode_not_found"), ("CHAINONLY", "invalid_promocode")])
def test_create_order_with_bad_promocode(client, code, error):
    body = order_body(promocode=code, items=[{"slug": "ring", "quantity": 1}])

    response = client.post("/api/orders", json=body)

    assert response.status_code == 400
    assert response.json()["error"] == error


def test_orders_closed(client, monkeypatch):
    async def closed():
        return OrdersSettings(orders_closed=True, close_date="2025-12-25")

    monkeypatch.setattr(api, "load_orders_settings", closed)

    response = client.post("/api/orders", json=order_body())

    assert response.status_code == 403
    assert response.json() == {"error": "orders_closed", "closeDate": "2025-12-25", "success": False}


def test_payment_config_error(client, monkeypatch):
    monkeypatch.setattr(config, "ROBOKASSA_PASSWORD_1", "")

    response = client.post("/api/orders", json=order_body())

    assert response.status_code == 500
    assert response.json()["error"] == "payment_config_error"
    assert orders.order_store.list_orders() == []


def test_order_rate_limit(client, monkeypatch):
    monkeypatch.setattr(api.order_limiter, "limit", 1)

    assert client.post("/api/orders", json=order_body()).status_code == 200
    response = client.post("/api/orders", json=order_body())

    assert response.status_code == 429
    assert response.json()["error"] == "too_many_orders"


def test_general_rate_limit(client, monkeypatch):
    monkeypatch.setattr(api.general_limiter, "limit", 2)

    client.get("/health")
    client.get("/health")
    response = client.get("/health")

    assert response.status_code == 429
    assert response.json() == {"error": "too_many_requests"}


def test_robokassa_result_marks_paid_once(client, notified):
    order = create_order(client)

    response = client.post("/api/robokassa/result", data=signed_callback("2400.000000", order.invoice_id))

    assert response.status_code == 200
    assert response.text == f"OK{order.invoice_id}"
    assert order.status == OrderStatus.PAID
    assert store.catalog.get_product("ring").stock == 1
    assert notified == [order.order_id]

    repeat = client.post("/api/robokassa/result", data=signed_callback("2400.000000", order.invoice_id))

    assert repeat.text == f"OK{order.invoice_id}"
    assert store.catalog.get_product("ring").stock == 1
    assert notified == [order.order_id]


def test_robokassa_result_with_shp_params(client):
    order = create_order(client)
    out_sum = "2400.00"
    signature = hashlib.md5(f"{out_sum}:{order.invoice_id}:pass2:tg".encode()).hexdigest()
    form = {"OutSum": out_sum, "InvId": str(order.invoice_id), "SignatureValue": signature, "Shp_source": "tg"}

    response = client.post("/api/robokassa/result", data=form)

    assert response.text == f"OK{order.invoice_id}"
    assert order.status == OrderStatus.PAID


def test_robokassa_result_survives_notification_failure(client, monkeypatch):
    async def broken(order):
        raise RuntimeError("telegram is down")

    monkeypatch.setattr(api, "send_order_notifications", broken)
    order = create_order(client)

    response = client.post("/api/robokassa/result", data=signed_callback("2400.00", order.invoice_id))

    assert response.text == f"OK{order.invoice_id}"
    assert order.status == OrderStatus.PAID


def test_robokassa_result_amount_mismatch(client, notified):
    order = create_order(client)

    response = client.post("/api/robokassa/result", data=signed_callback("100.00", order.invoice_id))

    assert response.status_code == 400
    assert response.text == "ERROR"
    assert order.status == OrderStatus.PENDING
    assert notified == []


def test_robokassa_result_bad_signature(client):
    order = create_order(client)
    form = signed_callback("2400.00", order.invoice_id)
    form["SignatureValue"] = "0" * 32

    response = client.post("/api/robokassa/result", data=form)

    assert response.status_code == 400
    assert order.status == OrderStatus.PENDING


def test_robokassa_result_unknown_order(client):
    response = client.post("/api/robokassa/result", data=signed_callback("100.00", 12345))

    assert response.status_code == 404
    assert response.text == "ERROR"


def test_robokassa_result_invalid_inv_id(client):
    response = client.post("/api/robokassa/result", data=signed_callback("100.00", "abc"))

    assert response.status_code == 400
    assert response.text == "ERROR"


def test_success_redirects_to_bot(client):
    response = client.get("/api/robokassa/success?InvId=5", follow_redirects=False)

    assert response.status_code == 302
    assert response.headers["location"] == "https://t.me/koshek_bot?start=order_5_success"


def test_fail_redirects_to_webapp_without_bot_username(client, monkeypatch):
    monkeypatch.setattr(config, "TG_BOT_USERNAME", "")

    response = client.get("/api/robokassa/fail?InvId=5", follow_redirects=False)

    assert response.status_code == 302
    assert response.headers["location"] == "https://shop.example/payment/fail?orderId=5"


def test_fail_marks_pending_order_failed(client):
    order = create_order(client)

    response = client.post("/api/robokassa/fail", data={"InvId": str(order.invoice_id)}, follow_redirects=False)

    assert response.status_code == 302
    assert order.status == OrderStatus.FAILED


def test_signed_callback_pays_order_marked_failed(client, notified):
    order = create_order(client)
    client.get(f"/api/robokassa/fail?InvId={order.invoice_id}", follow_redirects=False)
    assert order.status == OrderStatus.FAILED

    response = client.post("/api/robokassa/result", data=signed_callback("2400.00", order.invoice_id))
    repeat = client.post("/api/robokassa/result", data=signed_callback("2400.00", order.invoice_id))

    assert response.text == f"OK{order.invoice_id}"
    assert repeat.text == f"OK{order.invoice_id}"
    assert order.status == OrderStatus.PAID
    assert store.catalog.get_product("ring").stock == 1
    assert notified == [order.order_id]


def test_failed_order_callback_checks_amount(client, notified):
    order = create_order(client)
    client.get(f"/api/robokassa/fail?InvId={order.invoice_id}", follow_redirects=False)

    response = client.post("/api/robokassa/result", data=signed_callback("1.00", order.invoice_id))

    assert response.status_code == 400
    assert order.status == OrderStatus.FAILED
    assert notified == []


@pytest.mark.parametrize("bot_username, expected", [
    ("@koshek_bot", "https://t.me/koshek_bot?start=order_5%26x%3Dy_fail"),
    ("", "https://shop.example/payment/fail?orderId=5%26x%3Dy"),
])
def test_redirect_quotes_inv_id(client, monkeypatch, bot_username, expected):
    monkeypatch.setattr(config, "TG_BOT_USERNAME", bot_username)

    response = client.get("/api/robokassa/fail", params={"InvId": "5&x=y"}, follow_redirects=False)

    assert response.headers["location"] == expected


def test_rate_limiter_forgets_idle_ips(monkeypatch):
    now = [1000.0]
    monkeypatch.setattr(api.time, "time", lambda: now[0])
    limiter = api.RateLimiter(limit=2, window=60)

    assert limiter.is_allowed("10.0.0.1")
    assert limiter.is_allowed("10.0.0.2")
    assert limiter.tracked_ips() == 2

    now[0] += 61
    assert limiter.is_allowed("10.0.0.3")
    assert limiter.tracked_ips() == 1


def test_lifespan_imports_and_cancels_periodic_task(client, monkeypatch):
    events = []

    async def fake_import():
        events.append("import")

    async def fake_periodic(interval):
        events.append(("periodic", interval))
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            events.append("cancelled")
            raise

    monkeypatch.setattr(api, "import_catalog", fake_import)
    monkeypatch.setattr(api, "periodic_import_task", fake_periodic)
    monkeypatch.setattr(config, "IMPORT_INTERVAL_MINUTES", 15)

    with TestClient(api.app) as running:
        assert running.get("/health").json() == {"ok": True}

    assert events == ["import", ("periodic", 15), "cancelled"]


def test_lifespan_without_periodic_import(client, monkeypatch):
    events = []

    async def fake_import():
        events.append("import")

    async def fake_periodic(interval):
        events.append("periodic")

    monkeypatch.setattr(api, "import_catalog", fake_import)
    monkeypatch.setattr(api, "periodic_import_task", fake_periodic)
    monkeypatch.setattr(config, "IMPORT_INTERVAL_MINUTES", 0)

    with TestClient(api.app):
        pass

    assert events == ["import"]


def test_fail_does_not_touch_paid_order(client):
    order = create_order(client)
    orders.order_store.mark_paid(order.order_id)

    client.get(f"/api/robokassa/fail?InvId={order.invoice_id}", follow_redirects=False)

    assert order.status == OrderStatus.PAID


def test_validate_promocode(client):
    response = client.post("/api/promocodes/validate", json={"code": "sale", "orderTotal": 1000})

    assert response.json() == {"valid": True, "discount": 500, "type": "amount", "value": 500}


def test_validate_promocode_restricted_to_products(client):
    body = {"code": "CHAINONLY", "orderTotal": 1000, "orderItemSlugs": ["ring"]}
    assert client.post("/api/promocodes/validate", json=body).json() == {"valid": False, "error": "invalid"}

    body["orderItemSlugs"] = ["ring", "chain"]
    assert client.post("/api/promocodes/validate", json=body).json()["discount"] == 100.0


@pytest.mark.parametrize("body, error", [
    ({"orderTotal": 100}, "invalid_code"),
    ({"code": 5, "orderTotal": 100}, "invalid_code"),
    ({"code": "SALE", "orderTotal": "100"}, "invalid_order_total"),
    ({"code": "SALE", "orderTotal": 0}, "invalid_order_total"),
])
def test_validate_promocode_bad_request(client, body, error):
    response = client.post("/api/promocodes/validate", json=body)

    assert response.status_code == 400
    assert response.json()["error"] == error


def test_validate_unknown_promocode(client):
    response = client.post("/api/promocodes/validate", json={"code": "NOPE", "orderTotal": 100})

    assert response.json() == {"valid": False, "error": "not_found"}


def test_categories_without_sheet(client):
    assert client.get("/api/categories").json() == {"categories": []}


def test_categories_are_cached(client, monkeypatch, spreadsheet_factory):
    spreadsheet = spreadsheet_factory({"categories": [["key", "title"], ["rings", "Кольца"]]})
    monkeypatch.setattr(config, "IMPORT_SHEET_ID", "sheet-id")
    monkeypatch.setattr(sheets, "open_spreadsheet", lambda sheet_id: spreadsheet)

    first = client.get("/api/categories").json()
    spreadsheet.worksheet("categories").rows.append(["chains", "Цепочки"])
    second = client.get("/api/categories").json()

    assert [c["key"] for c in first["categories"]] == ["rings"]
    assert second == first


def test_categories_error_gives_empty_list(client, monkeypatch):
    def broken(sheet_id):
        raise RuntimeError("no access")

    monkeypatch.setattr(config, "IMPORT_SHEET_ID", "sheet-id")
    monkeypatch.setattr(sheets, "open_spreadsheet", broken)

    assert client.get("/api/categories").json() == {"categories": []}


def test_orders_status_from_sheet(client, monkeypatch, spreadsheet_factory):
    spreadsheet = spreadsheet_factory({"settings": [["key", "value"], ["orders_closed", "true"], ["close_date", "2025-12-25"]]})
    monkeypatch.setattr(config, "IMPORT_SHEET_ID", "sheet-id")
    monkeypatch.setattr(sheets, "open_spreadsheet", lambda sheet_id: spreadsheet)

    assert client.get("/api/settings/orders-status").json() == {"ordersClosed": True, "closeDate": "2025-12-25"}


def test_orders_status_without_sheet(client):
    assert client.get("/api/settings/orders-status").json() == {"ordersClosed": False}


def test_import_requires_admin_key(client):
    response = client.post("/admin/import/sheets", headers={"x-admin-key": "wrong"})

    assert response.status_code == 401
    assert response.json()["error"] == "unauthorized"
    assert client.post("/admin/import/sheets").status_code == 401


def test_import_reloads_catalog(client, monkeypatch):
    async def fake_import():
        store.catalog.upsert_products([SheetProduct(slug="new", title="Новинка", category="Руки")])

    monkeypatch.setattr(api, "import_catalog", fake_import)
    api.cache.set("categories", [{"key": "stale"}])

    response = client.post("/admin/import/sheets", headers={"x-admin-key": "import-secret"})

    assert response.status_code == 200
    assert response.json() == {"ok": True, "total": 4, "promocodes": 2}
    assert api.cache.get("categories") is None


def test_import_timeout(client, monkeypatch):
    async def slow_import():
        await asyncio.sleep(1)

    monkeypatch.setattr(api, "import_catalog", slow_import)
    monkeypatch.setattr(config, "IMPORT_TIMEOUT", 0.01)

    response = client.post("/admin/import/sheets", headers={"x-admin-key": "import-secret"})

    assert response.status_code == 504
    assert response.json()["error"] == "import_timeout"
