"""
FastAPI сервер витрины (Telegram Mini App)

Каталог и промокоды импортируются из Google Sheets в память,
заказы оплачиваются через Робокассу, уведомления уходят через Bot API.
"""

from fastapi import FastAPI, HTTPException, Request, Header, Depends
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, RedirectResponse
from pydantic import BaseModel, ConfigDict, Field
from contextlib import asynccontextmanager
from typing import Any, List, Optional
from urllib.parse import quote
import asyncio
import logging
import math
import time

from koshekshop import config, orders, store
from koshekshop import sheets
from koshekshop.categories import fetch_categories
from koshekshop.errors import install_error_handlers
from koshekshop.importer import import_catalog, periodic_import_task
from koshekshop.log import setup_logging
from koshekshop.notifications import send_order_notifications
from koshekshop.orders import OrderStatus
from koshekshop.orders_settings import OrdersSettings, fetch_orders_settings
from koshekshop.promocodes import validate_promocode
from koshekshop.robokassa import RobokassaConfigError, generate_payment_url, verify_result_signature
from koshekshop.telegram_api import chat_id_from_init_data

setup_logging()
logger = logging.getLogger(__name__)


# ============================================
# ЖИЗНЕННЫЙ ЦИКЛ: ИМПОРТ КАТАЛОГА
# ============================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    if not config.TG_BOT_TOKEN:
        logger.warning("⚠️ TG_BOT_TOKEN is not set, order notifications are OFF")

    await import_catalog()

    task = None
    if config.IMPORT_INTERVAL_MINUTES > 0:
        task = asyncio.create_task(periodic_import_task(config.IMPORT_INTERVAL_MINUTES))
    else:
        logger.warning("Periodic import DISABLED (IMPORT_INTERVAL_MINUTES=0)")

    yield

    if task:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


app = FastAPI(title="Koshek Jewerly Shop API", lifespan=lifespan)
install_error_handlers(app)


# ===== КЕШИРОВАНИЕ =====
class SimpleCache:
    """Простой in-memory кеш с TTL"""

    def __init__(self):
        self._cache = {}
        self._timestamps = {}

    def get(self, key: str, ttl: int = 300):
        """Получить значение из кеша (TTL в секундах)"""
        if key in self._cache:
            if time.time() - self._timestamps[key] < ttl:
                return self._cache[key]
            # кеш устарел
            del self._cache[key]
            del self._timestamps[key]
        return None

    def set(self, key: str, value):
        self._cache[key] = value
        self._timestamps[key] = time.time()

    def invalidate(self):
        self._cache.clear()
        self._timestamps.clear()


cache = SimpleCache()


# ===== RATE LIMITING =====
class RateLimiter:
    """Скользящее окно: не больше limit запросов с одного IP за window секунд"""

    def __init__(self, limit: int, window: int):
        self._requests = {}  # IP -> список timestamps
        self._last_cleanup = time.time()
        self.limit = limit
        self.window = window

    def is_allowed(self, ip: str) -> bool:
        now = time.time()
        recent = [t for t in self._requests.get(ip, []) if now - t < self.window]

        if len(recent) >= self.limit:
            self._requests[ip] = recent
            return False

        recent.append(now)
        self._requests[ip] = recent
        self._cleanup(now)
        return True

    def _cleanup(self, now: float):
        """Раз в окно выкидывает IP без запросов внутри окна"""
        if now - self._last_cleanup < self.window:
            return
        self._last_cleanup = now
        for ip in [ip for ip, stamps in self._requests.items() if not stamps or now - stamps[-1] >= self.window]:
            del self._requests[ip]

    def tracked_ips(self) -> int:
        return len(self._requests)

    def reset(self):
        self._requests.clear()


general_limiter = RateLimiter(config.GENERAL_RATE_LIMIT, config.RATE_LIMIT_WINDOW)
order_limiter = RateLimiter(config.ORDER_RATE_LIMIT, config.RATE_LIMIT_WINDOW)


def client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


async def check_order_rate_limit(request: Request):
    ip = client_ip(request)
    if not order_limiter.is_allowed(ip):
        logger.warning(f"⛔ Order rate limit exceeded for {ip}")
        raise HTTPException(status_code=429, detail="too_many_orders")


@app.middleware("http")
async def security_middleware(request: Request, call_next):
    start_time = time.time()
    ip = client_ip(request)

    if not general_limiter.is_allowed(ip):
        logger.warning(f"⛔ BLOCKED {request.method} {request.url.path} from {ip}")
        return JSONResponse(status_code=429, content={"error": "too_many_requests"})

    logger.info(f"→ {request.method} {request.url.path} from {ip}")

    response = await call_next(request)
    process_time = time.time() - start_time
    logger.info(f"← {request.method} {request.url.path} - Status: {response.status_code} - Time: {process_time:.3f}s")
    return response


if not config.TG_WEBAPP_URL:
    logger.warning("⚠️ TG_WEBAPP_URL is not set, CORS will reject browser requests")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[config.TG_WEBAPP_URL] if config.TG_WEBAPP_URL else [],
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=86400,
)


# ============================================
# МОДЕЛИ
# ============================================

class OrderItemIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    slug: str = ""
    quantity: Optional[float] = 1


class OrderRequest(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    items: Optional[List[OrderItemIn]] = None
    full_name: Optional[str] = Field("", alias="fullName")
    phone: Optional[str] = ""
    username: Optional[str] = None
    country: Optional[str] = ""
    city: Optional[str] = ""
    address: Optional[str] = ""
    delivery_region: Optional[str] = Field("", alias="deliveryRegion")
    delivery_cost: Any = Field(None, alias="deliveryCost")
    comments: Optional[str] = None
    promocode: Optional[str] = None
    init_data: Optional[str] = Field(None, alias="initData")
    # сумма от клиента только логируется
    total: Any = None


class PromocodeValidateRequest(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    code: Any = None
    order_total: Any = Field(None, alias="orderTotal")
    order_item_slugs: Any = Field(None, alias="orderItemSlugs")


def is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


# ============================================
# ROUTES
# ============================================

@app.get("/health")
async def health():
    return {"ok": True}


@app.get("/api/products")
async def get_products():
    items = [p.to_dict() for p in store.catalog.list_products() if p.active]
    return {"items": items, "total": len(items)}


@app.get("/api/categories")
async def get_categories():
    cached = cache.get("categories", ttl=config.CATEGORIES_CACHE_TTL)
    if cached is not None:
        return {"categories": cached}

    if not config.IMPORT_SHEET_ID:
        return {"categories": []}

    try:
        spreadsheet = await asyncio.to_thread(sheets.open_spreadsheet, config.IMPORT_SHEET_ID)
        categories = [c.to_dict() for c in await asyncio.to_thread(fetch_categories, spreadsheet)]
    except Exception as e:
        logger.error(f"Failed to load categories: {e}")
        return {"categories": []}

    cache.set("categories", categories)
    return {"categories": categories}


async def load_orders_settings() -> OrdersSettings:
    """Настройки приёма заказов; без таблицы или при ошибке заказы открыты"""
    if not config.IMPORT_SHEET_ID:
        return OrdersSettings()
    try:
        spreadsheet = await asyncio.to_thread(sheets.open_spreadsheet, config.IMPORT_SHEET_ID)
        return await asyncio.to_thread(fetch_orders_settings, spreadsheet)
    except Exception as e:
        logger.error(f"Failed to load orders settings: {e}")
        return OrdersSettings()


@app.get("/api/settings/orders-status")
async def get_orders_status():
    settings = await load_orders_settings()
    return settings.to_dict()


@app.post("/api/promocodes/validate")
async def validate_promocode_route(body: PromocodeValidateRequest):
    if not body.code or not isinstance(body.code, str):
        raise HTTPException(status_code=400, detail="invalid_code")

    if not is_number(body.order_total) or body.order_total <= 0:
        raise HTTPException(status_code=400, detail="invalid_order_total")

    promo = store.catalog.find_promocode(body.code)
    if not promo:
        return {"valid": False, "error": "not_found"}

    slugs = body.order_item_slugs if isinstance(body.order_item_slugs, list) else []
    slugs = [s for s in slugs if isinstance(s, str)]

    discount = validate_promocode(promo, float(body.order_total), slugs)
    if discount is None:
        return {"valid": False, "error": "invalid"}

    return {"valid": True, "discount": discount, "type": promo.type, "value": promo.value}


@app.post("/api/orders", dependencies=[Depends(check_order_rate_limit)])
async def create_order(body: OrderRequest):
    logger.info(
        f"Order request: items={len(body.items or [])}, has_init_data={bool(body.init_data)}, "
        f"region={body.delivery_region}"
    )

    settings = await load_orders_settings()
    if settings.orders_closed:
        logger.warning("Order rejected: orders are closed")
        raise HTTPException(status_code=403, detail={"error": "orders_closed", "closeDate": settings.close_date})

    if not body.items:
        raise HTTPException(status_code=400, detail="invalid_items")

    # цены пересчитываются по каталогу, присланные клиентом игнорируются
    items = []
    for item in body.items:
        product = store.catalog.get_product(item.slug)
        if product is None or not product.active:
            logger.warning(f"Product '{item.slug}' not found or inactive")
            raise HTTPException(status_code=400, detail="some_items_not_found")

        quantity = item.quantity if item.quantity and math.isfinite(item.quantity) else 1
        items.append({
            "slug": product.slug,
            "title": product.title,
            "price": product.actual_price,
            "quantity": max(1, math.floor(quantity)),
            "article": product.article,
        })

    items_total = sum(i["price"] * i["quantity"] for i in items)
    delivery_cost = body.delivery_cost if is_number(body.delivery_cost) and body.delivery_cost >= 0 else 0

    discount = 0
    promocode_info = None
    if body.promocode and body.promocode.strip():
        promo = store.catalog.find_promocode(body.promocode)
        if not promo:
            logger.warning(f"Promocode {body.promocode.strip().upper()} not found")
            raise HTTPException(status_code=400, detail="promocode_not_found")

        discount = validate_promocode(promo, items_total + delivery_cost, [i["slug"] for i in items])
        if not discount:
            logger.warning(f"Promocode {promo.code} is not applicable")
            raise HTTPException(status_code=400, detail="invalid_promocode")

        promocode_info = {"code": promo.code, "type": promo.type, "value": promo.value, "discount": discount}
        logger.info(f"Promocode {promo.code} applied, discount {discount}")

    total = max(0, items_total + delivery_cost - discount)

    if not config.ROBOKASSA_MERCHANT_LOGIN or not config.ROBOKASSA_PASSWORD_1:
        logger.error("ROBOKASSA_MERCHANT_LOGIN or ROBOKASSA_PASSWORD_1 is not set")
        raise HTTPException(status_code=500, detail="payment_config_error")

    order = orders.order_store.create_order({
        "items": items,
        "fullName": body.full_name or "",
        "phone": body.phone or "",
        "username": body.username,
        "country": body.country or "",
        "city": body.city or "",
        "address": body.address or "",
        "deliveryRegion": body.delivery_region or "",
        "deliveryCost": delivery_cost,
        "itemsTotal": items_total,
        "total": total,
        "comments": body.comments,
        "promocode": promocode_info["code"] if promocode_info else None,
        "discount": discount,
    }, customer_chat_id=chat_id_from_init_data(body.init_data))

    logger.info(
        f"Order {order.order_id} created: items_total={items_total}, delivery={delivery_cost}, "
        f"discount={discount}, total={total}, client_total={body.total}"
    )

    webapp_url = config.TG_WEBAPP_URL or config.DEFAULT_WEBAPP_URL
    try:
        payment_url = generate_payment_url(
            order_id=order.order_id,
            invoice_id=order.invoice_id,
            amount=total,
            description=f"Заказ {order.order_id}",
            success_url=f"{webapp_url}/payment/success",
            fail_url=f"{webapp_url}/payment/fail",
        )
    except RobokassaConfigError as e:
        logger.error(f"Robokassa config error: {e}")
        raise HTTPException(status_code=500, detail="payment_config_error")

    return {"ok": True, "orderId": order.order_id, "paymentUrl": payment_url}


# ============================================
# РОБОКАССА
# ============================================

def parse_invoice_id(raw) -> Optional[int]:
    try:
        value = int(str(raw).strip())
    except (TypeError, ValueError):
        return None
    return value if value > 0 else None


@app.post("/api/robokassa/result")
async def robokassa_result(request: Request):
    """Result URL: Робокасса сообщает об оплате, ждёт в ответ OK{InvId}"""
    form = dict(await request.form())
    out_sum = str(form.pop("OutSum", "") or "")
    inv_id = str(form.pop("InvId", "") or "")
    signature = str(form.pop("SignatureValue", "") or "")

    logger.info(f"Robokassa callback: InvId={inv_id}, OutSum={out_sum}, extra={sorted(form)}")

    invoice_id = parse_invoice_id(inv_id)
    if invoice_id is None:
        logger.error(f"Invalid InvId from Robokassa: {inv_id!r}")
        return PlainTextResponse("ERROR", status_code=400)

    if not verify_result_signature(out_sum, inv_id, signature, {k: str(v) for k, v in form.items()}):
        logger.error(f"Invalid Robokassa signature for InvId={inv_id}")
        return PlainTextResponse("ERROR", status_code=400)

    order = orders.order_store.get_order_by_invoice(invoice_id)
    if order is None:
        logger.error(f"Order for InvId={inv_id} not found")
        return PlainTextResponse("ERROR", status_code=404)

    if order.status in orders.PAYABLE_STATUSES:
        if order.status == OrderStatus.FAILED:
            logger.warning(f"Paid callback for failed order {order.order_id}, accepting payment")

        amount = float(out_sum)
        if abs(amount - order.total) > 0.01:
            logger.error(f"Amount mismatch for {order.order_id}: robokassa={amount}, order={order.total}")
            return PlainTextResponse("ERROR", status_code=400)

        if orders.order_store.mark_paid(order.order_id):
            for item in order.data.get("items", []):
                if not store.catalog.decrease_product_stock(item["slug"], item["quantity"]):
                    logger.warning(f"Stock not decreased for '{item['slug']}' (not tracked or not enough)")

            try:
                await send_order_notifications(order)
            except Exception as e:
                logger.error(f"Order notifications failed for {order.order_id}: {e}", exc_info=True)

            logger.info(f"Order {order.order_id} paid, amount {amount}")
    else:
        logger.info(f"Repeat callback for {order.order_id} (status {order.status.value}), ignored")

    return PlainTextResponse(f"OK{inv_id}")


async def read_inv_id(request: Request) -> str:
    inv_id = request.query_params.get("InvId")
    if not inv_id and request.method == "POST":
        form = await request.form()
        inv_id = form.get("InvId")
    return str(inv_id or "")


def payment_redirect(inv_id: str, outcome: str) -> RedirectResponse:
    """Deep link в бота, а если username бота не задан - страница Mini App"""
    inv_id = quote(inv_id, safe="")
    bot_username = config.TG_BOT_USERNAME.replace("https://t.me/", "").replace("@", "")
    if bot_username:
        return RedirectResponse(f"https://t.me/{bot_username}?start=order_{inv_id}_{outcome}", status_code=302)

    webapp_url = config.TG_WEBAPP_URL or config.DEFAULT_WEBAPP_URL
    return RedirectResponse(f"{webapp_url}/payment/{outcome}?orderId={inv_id}", status_code=302)


@app.api_route("/api/robokassa/success", methods=["GET", "POST"])
async def robokassa_success(request: Request):
    return payment_redirect(await read_inv_id(request), "success")


@app.api_route("/api/robokassa/fail", methods=["GET", "POST"])
async def robokassa_fail(request: Request):
    inv_id = await read_inv_id(request)
    invoice_id = parse_invoice_id(inv_id)

    if invoice_id is not None:
        order = orders.order_store.get_order_by_invoice(invoice_id)
        if order and order.status == OrderStatus.PENDING:
            orders.order_store.update_order_status(order.order_id, OrderStatus.FAILED)
            logger.info(f"Order {order.order_id} marked as failed")

    return payment_redirect(inv_id, "fail")


# ============================================
# РУЧНОЙ ИМПОРТ
# ============================================

@app.post("/admin/import/sheets")
async def import_sheets(x_admin_key: str = Header(None, alias="x-admin-key")):
    if not x_admin_key or not config.ADMIN_IMPORT_KEY or x_admin_key != config.ADMIN_IMPORT_KEY:
        raise HTTPException(status_code=401, detail="unauthorized")

    logger.info("Manual import of products and promocodes started")
    try:
        await asyncio.wait_for(import_catalog(), timeout=config.IMPORT_TIMEOUT)
    except asyncio.TimeoutError:
        logger.error("Manual import timed out")
        raise HTTPException(status_code=504, detail="import_timeout")

    cache.invalidate()
    return {
        "ok": True,
        "total": len(store.catalog.list_products()),
        "promocodes": len(store.catalog.list_promocodes()),
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
