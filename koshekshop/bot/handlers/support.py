from aiogram import Router
from aiogram.filters import Command
from aiogram.types import Message

from koshekshop import config
from koshekshop.bot.keyboards import get_support_menu

router = Router()


@router.message(Command("support"))
async def cmd_support(message: Message):
    """Контакт менеджера"""
    await message.answer(
        f"Написать менеджеру: https://t.me/{config.SUPPORT_USERNAME.replace('@', '')}",
        reply_markup=get_support_menu()
    )


# регистрируется последним роутером
fallback_router = Router()


@fallback_router.message()
async def fallback(message: Message):
    await message.answer("Используй /start, чтобы открыть мини-приложение")
