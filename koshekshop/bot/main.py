import asyncio
import logging

from aiogram import Bot, Dispatcher
from aiogram.exceptions import TelegramRetryAfter
from aiogram.fsm.storage.memory import MemoryStorage

from koshekshop import config
from koshekshop.bot.database import init_db
from koshekshop.bot.handlers import broadcast, start, support
from koshekshop.log import setup_logging

setup_logging()
logger = logging.getLogger(__name__)

dp = Dispatcher(storage=MemoryStorage())


@dp.errors()
async def errors_handler(event, exception=None):
    """Глобальный обработчик ошибок"""
    # aiogram 3 передаёт ErrorEvent, исключение лежит в нём
    exception = exception or getattr(event, "exception", None)
    if isinstance(exception, TelegramRetryAfter):
        logger.warning(f"Telegram flood control: retry in {exception.retry_after}s")
        return True
    logger.error(f"Unhandled exception: {exception}", exc_info=exception)
    return True


def setup_routers(dispatcher: Dispatcher):
    # FSM рассылки первой, fallback - последним
    dispatcher.include_router(broadcast.router)
    dispatcher.include_router(start.router)
    dispatcher.include_router(support.router)
    dispatcher.include_router(support.fallback_router)


async def main():
    """Главная функция запуска бота"""
    if not config.TG_BOT_TOKEN:
        raise RuntimeError("TG_BOT_TOKEN is not set")

    logger.info("Инициализация базы данных...")
    await init_db()

    setup_routers(dp)
    bot = Bot(token=config.TG_BOT_TOKEN)

    logger.info(f"Бот запущен, Mini App: {config.TG_WEBAPP_URL or config.DEFAULT_WEBAPP_URL}")
    await dp.start_polling(bot)


if __name__ == "__main__":
    asyncio.run(main())
