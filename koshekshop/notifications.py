import html
import logging

from koshekshop import config
from koshekshop.orders import Order
from koshekshop.telegram_api import send_telegram_message

logger = logging.getLogger(__name__)


def escape_html(text) -> str:
    """Экранирование пользовательского текста для parse_mode=HTML"""
    if text is None or text == "":
        return ""
    return html.escape(str(text), quote=True)


def format_rub(amount) -> str:
    """1500.0 -> '1500', 99.5 -> '99.50'"""
    amount = float(amount or 0)
    if amount == int(amount):
        return str(int(amount))
    return f"{amount:.2f}"


def format_items(items: list) -> str:
    lines = []
    for item in items:
        article = f" (арт: {escape_html(item['article'])})" if item.get("article") else ""
        line_sum = float(item.get("price", 0)) * int(item.get("quantity", 1))
        lines.append(
            f"• {escape_html(item.get('title'))}{article} × {item.get('quantity', 1)} — {format_rub(line_sum)} ₽"
        )
    return "\n".join(lines)


def address_heading(delivery_region: str) -> str:
    return "📍 Адрес доставки:" if delivery_region == "europe" else "📍 Пункт СДЭК:"


def build_customer_message(order: Order) -> str:
    data = order.data
    support = config.SUPPORT_USERNAME.replace("@", "")

    return (
        f"🎉 <b>Ваш заказ оформлен!</b>\n\n"
        f"Номер заказа: <code>{escape_html(order.order_id)}</code>\n\n"
        f"Товары:\n"
        f"{format_items(data.get('items', []))}\n\n"
        f"Доставка: {format_rub(data.get('deliveryCost'))} ₽\n"
        f"Итого: {format_rub(data.get('total'))} ₽\n\n"
        f"{address_heading(data.get('deliveryRegion'))}\n"
        f"{escape_html(data.get('address'))}\n\n"
        f"Ваш заказ будет отправлен в течение 3-5 дней, мы пришлём уведомление "
        f"с трек-номером для отслеживания. Благодарим за заказ 🤍\n\n"
        f"💬 Для связи: @{support}"
    )


def build_manager_message(order: Order) -> str:
    data = order.data
    username = escape_html(data.get("username")) if data.get("username") else "не указан"
    comments = f"\n\nКомментарии: {escape_html(data['comments'])}" if data.get("comments") else ""
    promocode = ""
    if data.get("promocode"):
        promocode = (
            f"\nПромокод: {escape_html(data['promocode'])} "
            f"(−{format_rub(data.get('discount'))} ₽)"
        )

    return (
        f"🛒 <b>Новый заказ!</b>\n\n"
        f"Номер: <code>{escape_html(order.order_id)}</code>\n"
        f"Покупатель: {escape_html(data.get('fullName'))}\n"
        f"Телефон: {escape_html(data.get('phone'))}\n"
        f"TG: {username}\n\n"
        f"{address_heading(data.get('deliveryRegion'))}\n"
        f"{escape_html(data.get('country'))}, {escape_html(data.get('city'))}\n"
        f"{escape_html(data.get('address'))}\n\n"
        f"Товары:\n"
        f"{format_items(data.get('items', []))}\n\n"
        f"Доставка: {format_rub(data.get('deliveryCost'))} ₽ ({escape_html(data.get('deliveryRegion'))})"
        f"{promocode}\n"
        f"Итого: {format_rub(data.get('total'))} ₽"
        f"{comments}"
    )


async def send_order_notifications(order: Order):
    """Уведомить покупателя и менеджера об оплаченном заказе"""
    if order.customer_chat_id:
        await send_telegram_message(order.customer_chat_id, build_customer_message(order))
    else:
        logger.warning(f"No customer chat_id for {order.order_id}, customer message skipped")

    if config.TG_MANAGER_CHAT_ID:
        await send_telegram_message(config.TG_MANAGER_CHAT_ID, build_manager_message(order))
    else:
        logger.warning("TG_MANAGER_CHAT_ID is not set, manager message skipped")
