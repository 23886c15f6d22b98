from aiogram.types import InlineKeyboardMarkup, InlineKeyboardButton, WebAppInfo

from koshekshop import config


def webapp_url() -> str:
    return config.TG_WEBAPP_URL or config.DEFAULT_WEBAPP_URL


def get_shop_menu():
    """Кнопка открытия Mini App"""
    keyboard = [
        [InlineKeyboardButton(text="🛍 Открыть магазин", web_app=WebAppInfo(url=webapp_url()))]
    ]
    return InlineKeyboardMarkup(inline_keyboard=keyboard)


def get_support_menu():
    keyboard = [
        [InlineKeyboardButton(text="Написать менеджеру", url=f"https://t.me/{config.SUPPORT_USERNAME.replace('@', '')}")],
        [InlineKeyboardButton(text="🛍 Открыть магазин", web_app=WebAppInfo(url=webapp_url()))]
    ]
    return InlineKeyboardMarkup(inline_keyboard=keyboard)


def get_broadcast_confirm():
    return InlineKeyboardMarkup(inline_keyboard=[
        [
            InlineKeyboardButton(text="✅ Отправить", callback_data="confirm_broadcast_yes"),
            InlineKeyboardButton(text="❌ Отменить", callback_data="confirm_broadcast_no")
        ]
    ])
