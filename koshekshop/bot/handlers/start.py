import logging

from aiogram import Router
from aiogram.exceptions import TelegramRetryAfter
from aiogram.filters import CommandStart, CommandObject
from aiogram.types import Message

from koshekshop import config
from koshekshop.bot.database import save_subscriber
from koshekshop.bot.keyboards import get_shop_menu
from koshekshop.bot.utils import parse_payment_payload, send_with_retry

logger = logging.getLogger(__name__)

router = Router()

WELCOME_TEXT = (
    "👋 Добро пожаловать в магазин украшений Koshek Jewerly!\n\n"
    "Каталог и оформление заказа - в мини-приложении по кнопке ниже 👇"
)


def payment_result_text(invoice_id: str, outcome: str) -> str:
    support = config.SUPPORT_USERNAME.replace("@", "")
    if outcome == "success":
        return (
            f"🎉 Спасибо за покупку!\n\n"
            f"Оплата заказа ORD-{invoice_id} прошла успешно. "
            f"Подробности заказа придут отдельным сообщением.\n\n"
            f"💬 Вопросы по заказу: @{support}"
        )
    return (
        f"😔 Оплата заказа ORD-{invoice_id} не прошла.\n\n"
        f"Попробуйте оформить заказ ещё раз или напишите нам: @{support}"
    )


@router.message(CommandStart())
async def cmd_start(message: Message, command: CommandObject):
    """Обработчик команды /start (в том числе deep link после оплаты)"""
    user_id = message.from_user.id
    logger.info(f"START command from user {user_id} (@{message.from_user.username}), args={command.args!r}")

    try:
        await save_subscriber(user_id, message.from_user.username or "", message.from_user.first_name)
    except Exception as e:
        # пользователь просто не попадёт в рассылку
        logger.error(f"Failed to save user {user_id}: {e}", exc_info=True)

    payment = parse_payment_payload(command.args)
    text = payment_result_text(*payment) if payment else WELCOME_TEXT

    try:
        await send_with_retry(lambda: message.answer(text, reply_markup=get_shop_menu()))
    except TelegramRetryAfter:
        logger.error(f"Failed to send start message to {user_id} after retries")
