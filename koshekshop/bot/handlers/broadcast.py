import asyncio
import logging
import re

from aiogram import Router, F
from aiogram.filters import Command
from aiogram.fsm.context import FSMContext
from aiogram.fsm.state import State, StatesGroup
from aiogram.types import Message, CallbackQuery, InlineKeyboardMarkup, InlineKeyboardButton

from koshekshop import config
from koshekshop.bot.database import get_subscriber_ids
from koshekshop.bot.keyboards import get_broadcast_confirm
from koshekshop.bot.utils import send_with_retry

logger = logging.getLogger(__name__)

router = Router()

# [[Текст|https://url]] в тексте поста превращается в inline-кнопку
BUTTON_PATTERN = r'\[\[([^\|]+)\|([^\]]+)\]\]'


class BroadcastStates(StatesGroup):
    waiting_for_message = State()
    confirm_broadcast = State()


def is_admin(user_id: int) -> bool:
    return user_id in config.ADMIN_IDS


def extract_buttons(text: str):
    """Вырезает [[Текст|url]] из текста. Возвращает (текст, клавиатура или None)."""
    if not text or "[[" not in text:
        return text, None

    buttons = [
        [InlineKeyboardButton(text=label.strip(), url=url.strip())]
        for label, url in re.findall(BUTTON_PATTERN, text)
    ]
    if not buttons:
        return text, None

    return re.sub(BUTTON_PATTERN, '', text).strip(), InlineKeyboardMarkup(inline_keyboard=buttons)


@router.message(Command("broadcast"))
async def start_broadcast(message: Message, state: FSMContext):
    """Начать создание рассылки"""
    if not is_admin(message.from_user.id):
        await message.answer("У вас нет доступа")
        return

    await message.answer(
        "Отправьте готовый пост (текст или фото с подписью)\n\n"
        "Для добавления кнопок используйте формат:\n"
        "[[Текст|url]]\n"
        "Пример: [[Открыть магазин|https://t.me/...]]\n\n"
        "/cancel - отмена"
    )
    await state.set_state(BroadcastStates.waiting_for_message)


@router.message(BroadcastStates.waiting_for_message, F.text == "/cancel")
@router.message(BroadcastStates.confirm_broadcast, F.text == "/cancel")
async def cancel_broadcast(message: Message, state: FSMContext):
    await state.clear()
    await message.answer("Рассылка отменена")


@router.message(BroadcastStates.waiting_for_message)
async def receive_broadcast_message(message: Message, state: FSMContext):
    """Получить пост и показать превью"""
    text = message.html_text if (message.text or message.caption) else ""
    photo = message.photo[-1].file_id if message.photo else None
    text, keyboard = extract_buttons(text)

    if not text and not photo:
        await message.answer("Пост пустой, отправьте текст или фото")
        return

    await state.update_data(text=text, photo=photo, keyboard=keyboard)

    try:
        if photo:
            await message.answer_photo(photo=photo, caption=text, reply_markup=keyboard, parse_mode="HTML")
        else:
            await message.answer(text, reply_markup=keyboard, parse_mode="HTML")
    except Exception as e:
        logger.warning(f"Broadcast preview failed: {e}")
        await message.answer(f"Ошибка при создании превью: {e}")
        await state.clear()
        return

    users_count = len(await get_subscriber_ids())
    await message.answer(
        f"Отправить рассылку {users_count} пользователям?",
        reply_markup=get_broadcast_confirm()
    )
    await state.set_state(BroadcastStates.confirm_broadcast)


@router.callback_query(F.data == "confirm_broadcast_no")
async def cancel_broadcast_confirm(callback: CallbackQuery, state: FSMContext):
    await state.clear()
    await callback.message.edit_text("Рассылка отменена")
    await callback.answer()


@router.callback_query(BroadcastStates.confirm_broadcast, F.data == "confirm_broadcast_yes")
async def send_broadcast(callback: CallbackQuery, state: FSMContext):
    """Отправить рассылку всем, кто запускал бота"""
    if not is_admin(callback.from_user.id):
        await callback.answer("У вас нет доступа", show_alert=True)
        return

    data = await state.get_data()
    await state.clear()
    users_ids = await get_subscriber_ids()

    await callback.message.edit_text("Начинаю рассылку...")
    await callback.answer()

    success_count = 0
    fail_count = 0

    for user_id in users_ids:
        try:
            if data.get("photo"):
                await send_with_retry(lambda: callback.bot.send_photo(
                    chat_id=user_id,
                    photo=data["photo"],
                    caption=data["text"],
                    reply_markup=data.get("keyboard"),
                    parse_mode="HTML"
                ))
            else:
                await send_with_retry(lambda: callback.bot.send_message(
                    chat_id=user_id,
                    text=data["text"],
                    reply_markup=data.get("keyboard"),
                    parse_mode="HTML"
                ))
            success_count += 1
        except Exception as e:
            logger.debug(f"Broadcast to {user_id} failed: {e}")
            fail_count += 1
        await asyncio.sleep(0.05)

    logger.info(f"Broadcast finished: {success_count} ok, {fail_count} failed")
    await callback.message.answer(
        f"Рассылка завершена!\n\n"
        f"✅ Успешно: {success_count}\n"
        f"❌ Ошибок: {fail_count}"
    )
