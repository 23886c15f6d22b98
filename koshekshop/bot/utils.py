import asyncio
import logging
import re
from typing import Optional, Tuple

from aiogram.exceptions import TelegramRetryAfter

logger = logging.getLogger(__name__)

# order_{InvId}_success / order_{InvId}_fail из Success/Fail URL витрины
PAYMENT_PAYLOAD_RE = re.compile(r"^order_(\d+)_(success|fail)$")


async def send_with_retry(coro_func, max_retries: int = 3):
    """
    Выполняет корутину с автоматическим retry при TelegramRetryAfter.

    Args:
        coro_func: Функция, возвращающая корутину (lambda или callable)
        max_retries: Максимальное количество попыток
    """
    for attempt in range(max_retries):
        try:
            return await coro_func()
        except TelegramRetryAfter as e:
            if attempt < max_retries - 1:
                wait_time = e.retry_after + 1
                logger.warning(f"Telegram flood control, waiting {wait_time}s (attempt {attempt + 1}/{max_retries})")
                await asyncio.sleep(wait_time)
            else:
                logger.error("Max retries reached for Telegram API call")
                raise


def parse_payment_payload(payload: Optional[str]) -> Optional[Tuple[str, str]]:
    """'order_123_success' -> ('123', 'success'); всё остальное -> None"""
    if not payload:
        return None
    match = PAYMENT_PAYLOAD_RE.match(payload.strip())
    if not match:
        return None
    return match.group(1), match.group(2)
